# crm_database.py

from extensions import db
from utils.datetime_utils import utc_now


class FacebookConfig(db.Model):
    """A connected Facebook page and the owner it belongs to"""
    __tablename__ = 'facebook_configs'

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.String(64), nullable=False, index=True)
    page_id = db.Column(db.String(64), nullable=False, unique=True)
    page_name = db.Column(db.String(255), nullable=True)
    page_access_token = db.Column(db.Text, nullable=False)
    ad_account_id = db.Column(db.String(64), nullable=True)
    dataset_id = db.Column(db.String(64), nullable=True)  # a.k.a. pixel id
    webhook_subscribed = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=utc_now, nullable=False)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    def __repr__(self):
        return f'<FacebookConfig page={self.page_id} owner={self.owner_id}>'


class Contact(db.Model):
    __tablename__ = 'contacts'
    __table_args__ = (
        db.UniqueConstraint('owner_id', 'facebook_lead_id', name='uq_contact_owner_lead'),
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.String(64), nullable=False, index=True)

    # Identity
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(50), nullable=True)
    first_name = db.Column(db.String(100), nullable=True)
    last_name = db.Column(db.String(100), nullable=True)
    full_name = db.Column(db.String(255), nullable=True)
    custom_fields = db.Column(db.JSON, nullable=False, default=dict)

    # Facebook lead and Messenger identifiers
    facebook_lead_id = db.Column(db.String(64), nullable=True)
    facebook_page_id = db.Column(db.String(64), nullable=True, index=True)
    messenger_psid = db.Column(db.String(64), nullable=True, index=True)

    # Ad attribution
    facebook_ad_id = db.Column(db.String(64), nullable=True)
    facebook_adset_id = db.Column(db.String(64), nullable=True)
    facebook_campaign_id = db.Column(db.String(64), nullable=True)
    facebook_form_id = db.Column(db.String(64), nullable=True)
    ad_name = db.Column(db.String(255), nullable=True)
    adset_name = db.Column(db.String(255), nullable=True)
    campaign_name = db.Column(db.String(255), nullable=True)

    # Analysis and scoring
    ai_analysis = db.Column(db.JSON(none_as_null=True), nullable=True)
    analyzed_at = db.Column(db.DateTime, nullable=True)
    lead_quality_score = db.Column(db.Integer, nullable=False, default=0)

    # 'webhook', 'manual' or 'import'
    source = db.Column(db.String(20), nullable=False, default='manual')

    # Revenue
    lead_value = db.Column(db.Numeric(12, 2), nullable=True)
    actual_revenue = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    converted_at = db.Column(db.DateTime, nullable=True)
    conversion_event_sent = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, default=utc_now, nullable=False)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    messages = db.relationship('Message', backref='contact', lazy=True, cascade="all, delete-orphan")
    stage_assignments = db.relationship('ContactStageAssignment', backref='contact', lazy=True,
                                        cascade="all, delete-orphan")

    @property
    def is_analyzed(self):
        return self.ai_analysis is not None

    def __repr__(self):
        return f'<Contact {self.id} owner={self.owner_id} source={self.source}>'


class Pipeline(db.Model):
    __tablename__ = 'pipelines'

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    ai_generated = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=utc_now, nullable=False)

    stages = db.relationship(
        'PipelineStage',
        backref='pipeline',
        lazy=True,
        cascade="all, delete-orphan",
        order_by='PipelineStage.order_index'
    )

    def __repr__(self):
        return f'<Pipeline {self.id} {self.name!r} default={self.is_default}>'


class PipelineStage(db.Model):
    __tablename__ = 'pipeline_stages'

    id = db.Column(db.Integer, primary_key=True)
    pipeline_id = db.Column(db.Integer, db.ForeignKey('pipelines.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    order_index = db.Column(db.Integer, nullable=False, default=0)
    color = db.Column(db.String(16), nullable=False, default='#6366f1')
    requirements = db.Column(db.JSON, nullable=True)  # {"criteria": [...]}
    capi_event_name = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime, default=utc_now, nullable=False)

    @property
    def criteria(self):
        return list((self.requirements or {}).get('criteria') or [])

    def __repr__(self):
        return f'<PipelineStage {self.id} {self.name!r} order={self.order_index}>'


class ContactStageAssignment(db.Model):
    """Current placement of a contact in a pipeline, one row per (contact, pipeline)"""
    __tablename__ = 'contact_stage_assignments'
    __table_args__ = (
        db.UniqueConstraint('contact_id', 'pipeline_id', name='uq_assignment_contact_pipeline'),
    )

    id = db.Column(db.Integer, primary_key=True)
    contact_id = db.Column(db.Integer, db.ForeignKey('contacts.id', ondelete='CASCADE'), nullable=False)
    pipeline_id = db.Column(db.Integer, db.ForeignKey('pipelines.id', ondelete='CASCADE'), nullable=False)
    stage_id = db.Column(db.Integer, db.ForeignKey('pipeline_stages.id', ondelete='CASCADE'), nullable=False)
    assigned_by = db.Column(db.String(20), nullable=False, default='ai')  # 'ai' or 'manual'
    notes = db.Column(db.Text, nullable=True)
    assigned_at = db.Column(db.DateTime, default=utc_now, nullable=False)

    stage = db.relationship('PipelineStage', lazy='joined')

    def __repr__(self):
        return f'<ContactStageAssignment contact={self.contact_id} stage={self.stage_id}>'


class Message(db.Model):
    __tablename__ = 'messages'

    id = db.Column(db.Integer, primary_key=True)
    contact_id = db.Column(db.Integer, db.ForeignKey('contacts.id', ondelete='CASCADE'), nullable=False, index=True)
    owner_id = db.Column(db.String(64), nullable=False)
    direction = db.Column(db.String(10), nullable=False)  # 'inbound' or 'outbound'
    content = db.Column(db.Text, nullable=False)
    platform = db.Column(db.String(20), nullable=False, default='messenger')
    facebook_message_id = db.Column(db.String(128), nullable=True, unique=True)
    created_at = db.Column(db.DateTime, default=utc_now, nullable=False, index=True)

    def __repr__(self):
        return f'<Message {self.id} {self.direction} contact={self.contact_id}>'


class AIAnalysisLog(db.Model):
    """Append-only audit record of a model invocation"""
    __tablename__ = 'ai_analysis_logs'

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.String(64), nullable=False, index=True)
    contact_id = db.Column(db.Integer, db.ForeignKey('contacts.id', ondelete='SET NULL'), nullable=True)
    action_type = db.Column(db.String(32), nullable=False)
    model_used = db.Column(db.String(128), nullable=False)
    input_summary = db.Column(db.Text, nullable=True)
    output_summary = db.Column(db.Text, nullable=True)
    tokens_used = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utc_now, nullable=False)


class RevenueRecord(db.Model):
    __tablename__ = 'revenue_tracking'

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.String(64), nullable=False, index=True)
    contact_id = db.Column(db.Integer, db.ForeignKey('contacts.id', ondelete='CASCADE'), nullable=False)
    facebook_ad_id = db.Column(db.String(64), nullable=True)
    facebook_campaign_id = db.Column(db.String(64), nullable=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default='USD')
    revenue_type = db.Column(db.String(32), nullable=False, default='sale')
    description = db.Column(db.Text, nullable=True)
    capi_event_sent = db.Column(db.Boolean, nullable=False, default=False)
    capi_event_id = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime, default=utc_now, nullable=False)


class CampaignMetrics(db.Model):
    """Ads Insights totals of one campaign over the sync window"""
    __tablename__ = 'campaign_metrics'
    __table_args__ = (
        db.UniqueConstraint('owner_id', 'campaign_id', name='uq_campaign_metrics_owner_campaign'),
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.String(64), nullable=False, index=True)
    campaign_id = db.Column(db.String(64), nullable=False)
    campaign_name = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(32), nullable=True)
    objective = db.Column(db.String(64), nullable=True)
    lifetime_impressions = db.Column(db.BigInteger, nullable=False, default=0)
    lifetime_clicks = db.Column(db.BigInteger, nullable=False, default=0)
    lifetime_reach = db.Column(db.BigInteger, nullable=False, default=0)
    lifetime_spend = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    lifetime_leads = db.Column(db.Integer, nullable=False, default=0)
    avg_ctr = db.Column(db.Numeric(10, 4), nullable=False, default=0)
    avg_cpc = db.Column(db.Numeric(10, 4), nullable=False, default=0)
    avg_cpm = db.Column(db.Numeric(10, 4), nullable=False, default=0)
    avg_cost_per_lead = db.Column(db.Numeric(10, 4), nullable=False, default=0)
    last_synced_at = db.Column(db.DateTime, default=utc_now, nullable=False)

    def __repr__(self):
        return f'<CampaignMetrics {self.campaign_id} owner={self.owner_id}>'


class AdMetricsDaily(db.Model):
    """Ads Insights figures of one ad on one day"""
    __tablename__ = 'ad_metrics_daily'
    __table_args__ = (
        db.UniqueConstraint('owner_id', 'ad_id', 'date', name='uq_ad_metrics_owner_ad_date'),
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.String(64), nullable=False, index=True)
    ad_id = db.Column(db.String(64), nullable=False, index=True)
    ad_name = db.Column(db.String(255), nullable=True)
    adset_id = db.Column(db.String(64), nullable=True)
    campaign_id = db.Column(db.String(64), nullable=True, index=True)
    date = db.Column(db.Date, nullable=False, index=True)
    impressions = db.Column(db.BigInteger, nullable=False, default=0)
    clicks = db.Column(db.BigInteger, nullable=False, default=0)
    reach = db.Column(db.BigInteger, nullable=False, default=0)
    spend = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    ctr = db.Column(db.Numeric(10, 4), nullable=False, default=0)
    cpc = db.Column(db.Numeric(10, 4), nullable=False, default=0)
    cpm = db.Column(db.Numeric(10, 4), nullable=False, default=0)
    cpp = db.Column(db.Numeric(10, 4), nullable=False, default=0)
    frequency = db.Column(db.Numeric(10, 4), nullable=False, default=0)
    leads = db.Column(db.Integer, nullable=False, default=0)
    cost_per_lead = db.Column(db.Numeric(10, 4), nullable=False, default=0)
    actions = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.DateTime, default=utc_now, nullable=False)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    def __repr__(self):
        return f'<AdMetricsDaily {self.ad_id} {self.date} owner={self.owner_id}>'
