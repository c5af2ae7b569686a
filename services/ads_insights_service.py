"""
Ads Insights sync

Periodically copies Facebook ad performance into the CRM so cost per lead can
be read next to the pipeline:

- campaign level over the configured date preset -> campaign_metrics
- ad level, one row per ad and day over the lookback window -> ad_metrics_daily

Lead counts and cost per lead come from the `actions` and
`cost_per_action_type` lists. Each ad account is synced and committed on its
own; an account that fails is rolled back and reported without stopping the
rest.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence

from logging_config import get_logger
from repositories.ad_metrics_repository import AdMetricsRepository, CampaignMetricsRepository
from repositories.facebook_config_repository import FacebookConfigRepository
from services.common.result import Result
from services.facebook_graph_client import FacebookGraphClient, ad_account_path
from utils.datetime_utils import utc_now

logger = get_logger(__name__)

LEAD_ACTION_TYPES = ('lead', 'onsite_conversion.lead_grouped')

CAMPAIGN_FIELDS = ','.join([
    'campaign_id', 'campaign_name', 'impressions', 'clicks', 'reach', 'spend',
    'ctr', 'cpc', 'cpm', 'frequency', 'actions', 'cost_per_action_type',
    'date_start', 'date_stop',
])

AD_FIELDS = ','.join([
    'ad_id', 'ad_name', 'adset_id', 'adset_name', 'campaign_id', 'campaign_name',
    'impressions', 'clicks', 'reach', 'spend', 'ctr', 'cpc', 'cpm', 'cpp', 'frequency',
    'actions', 'cost_per_action_type', 'date_start', 'date_stop',
])


def _int(value: Any) -> int:
    try:
        return int(Decimal(str(value)))
    except (InvalidOperation, ValueError, TypeError):
        return 0


def _decimal(value: Any) -> Decimal:
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return Decimal('0')
    return number if number.is_finite() else Decimal('0')


def _lead_action(actions: Optional[Sequence[Any]]) -> Optional[Dict[str, Any]]:
    for action in actions or []:
        if isinstance(action, dict) and action.get('action_type') in LEAD_ACTION_TYPES:
            return action
    return None


def lead_count(actions: Optional[Sequence[Any]]) -> int:
    """Leads reported in an insight's actions list, 0 when absent."""
    action = _lead_action(actions)
    return _int(action.get('value')) if action else 0


def cost_per_lead(cost_per_action_type: Optional[Sequence[Any]]) -> Decimal:
    """Cost per lead from cost_per_action_type, 0 when absent."""
    action = _lead_action(cost_per_action_type)
    return _decimal(action.get('value')) if action else Decimal('0')


def insight_date(value: Any) -> Optional[date]:
    try:
        return datetime.strptime(str(value), '%Y-%m-%d').date()
    except (TypeError, ValueError):
        return None


class AdMetricsSyncSummary:
    """Per-run counters"""

    def __init__(self):
        self.accounts = 0
        self.campaigns = 0
        self.ad_days = 0
        self.errors = 0
        self.results: List[Dict[str, Any]] = []

    def to_dict(self) -> Dict[str, Any]:
        return {
            'accounts': self.accounts,
            'campaigns': self.campaigns,
            'ad_days': self.ad_days,
            'errors': self.errors,
            'results': self.results,
            'synced_at': utc_now().isoformat(),
        }


class AdsInsightsService:
    """Syncs Ads Insights figures for owners with an ad account"""

    def __init__(self,
                 facebook_config_repository: FacebookConfigRepository,
                 ad_metrics_repository: AdMetricsRepository,
                 campaign_metrics_repository: CampaignMetricsRepository,
                 graph_client: FacebookGraphClient,
                 date_preset: str = 'last_30d',
                 lookback_days: int = 7):
        self.facebook_config_repository = facebook_config_repository
        self.ad_metrics_repository = ad_metrics_repository
        self.campaign_metrics_repository = campaign_metrics_repository
        self.graph_client = graph_client
        self.date_preset = date_preset
        self.lookback_days = max(1, lookback_days)

    def sync_all(self, owner_id: Optional[str] = None) -> Result[Dict[str, Any]]:
        """Sync every ad account, or only those of owner_id."""
        summary = AdMetricsSyncSummary()
        seen = set()
        for config in self.facebook_config_repository.list_with_ad_account(owner_id):
            account = (config.owner_id, ad_account_path(config.ad_account_id))
            if account in seen:
                continue
            seen.add(account)
            summary.accounts += 1
            try:
                campaigns, ad_days = self.sync_account(config)
            except Exception as e:
                self.ad_metrics_repository.rollback()
                summary.errors += 1
                summary.results.append({'owner_id': config.owner_id, 'ad_account_id': account[1],
                                        'campaigns': 0, 'ad_days': 0, 'error': str(e)})
                logger.exception("Ad metrics sync failed", owner_id=config.owner_id,
                                 ad_account_id=account[1], error=str(e))
                continue
            summary.campaigns += campaigns
            summary.ad_days += ad_days
            summary.results.append({'owner_id': config.owner_id, 'ad_account_id': account[1],
                                    'campaigns': campaigns, 'ad_days': ad_days})

        logger.info("Ad metrics sync completed", accounts=summary.accounts, campaigns=summary.campaigns,
                    ad_days=summary.ad_days, errors=summary.errors)
        return Result.success(summary.to_dict())

    def sync_account(self, config) -> tuple:
        """
        Sync one ad account and commit it.

        Returns:
            (campaign rows written, ad-day rows written)
        """
        token = config.page_access_token
        campaigns = self._sync_campaigns(config.owner_id, config.ad_account_id, token)
        ad_days = self._sync_ad_days(config.owner_id, config.ad_account_id, token)
        self.ad_metrics_repository.commit()
        logger.info("Ad account synced", owner_id=config.owner_id, campaigns=campaigns, ad_days=ad_days)
        return campaigns, ad_days

    def _sync_campaigns(self, owner_id: str, ad_account_id: str, token: str) -> int:
        insights = self.graph_client.fetch_insights(
            ad_account_id, token, 'campaign', CAMPAIGN_FIELDS, date_preset=self.date_preset
        )
        campaigns = {str(c.get('id')): c for c in self.graph_client.list_campaigns(ad_account_id, token)}

        written = 0
        for row in insights:
            campaign_id = row.get('campaign_id')
            if not campaign_id:
                continue
            meta = campaigns.get(str(campaign_id), {})
            self.campaign_metrics_repository.upsert_campaign(
                owner_id, str(campaign_id),
                campaign_name=row.get('campaign_name') or meta.get('name'),
                status=meta.get('status') or 'UNKNOWN',
                objective=meta.get('objective') or 'UNKNOWN',
                lifetime_impressions=_int(row.get('impressions')),
                lifetime_clicks=_int(row.get('clicks')),
                lifetime_reach=_int(row.get('reach')),
                lifetime_spend=_decimal(row.get('spend')),
                lifetime_leads=lead_count(row.get('actions')),
                avg_ctr=_decimal(row.get('ctr')),
                avg_cpc=_decimal(row.get('cpc')),
                avg_cpm=_decimal(row.get('cpm')),
                avg_cost_per_lead=cost_per_lead(row.get('cost_per_action_type')),
            )
            written += 1
        return written

    def _sync_ad_days(self, owner_id: str, ad_account_id: str, token: str) -> int:
        until = utc_now().date()
        since = until - timedelta(days=self.lookback_days - 1)
        insights = self.graph_client.fetch_insights(
            ad_account_id, token, 'ad', AD_FIELDS,
            since=since.isoformat(), until=until.isoformat(), time_increment=1
        )

        written = 0
        for row in insights:
            day = insight_date(row.get('date_start'))
            if not row.get('ad_id') or day is None:
                continue
            self.ad_metrics_repository.upsert_day(
                owner_id, str(row['ad_id']), day,
                ad_name=row.get('ad_name'),
                adset_id=row.get('adset_id'),
                campaign_id=row.get('campaign_id'),
                impressions=_int(row.get('impressions')),
                clicks=_int(row.get('clicks')),
                reach=_int(row.get('reach')),
                spend=_decimal(row.get('spend')),
                ctr=_decimal(row.get('ctr')),
                cpc=_decimal(row.get('cpc')),
                cpm=_decimal(row.get('cpm')),
                cpp=_decimal(row.get('cpp')),
                frequency=_decimal(row.get('frequency')),
                leads=lead_count(row.get('actions')),
                cost_per_lead=cost_per_lead(row.get('cost_per_action_type')),
                actions=[a for a in row.get('actions') or [] if isinstance(a, dict)],
            )
            written += 1
        return written
