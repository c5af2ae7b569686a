# app.py

from flask import Flask, g, request, jsonify
from config import get_config
from extensions import db
import os
import uuid
from werkzeug.middleware.proxy_fix import ProxyFix
from logging_config import setup_logging, get_logger

# Configure logging as early as possible
setup_logging(app_name="lead-pipeline", log_level=os.environ.get('LOG_LEVEL', 'INFO'))
logger = get_logger(__name__)

# Configure Sentry for production error tracking
def init_sentry():
    """Initialize Sentry error tracking in production."""
    sentry_dsn = os.environ.get('SENTRY_DSN')
    if sentry_dsn and os.environ.get('FLASK_ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
        from sentry_sdk.integrations.celery import CeleryIntegration

        sentry_sdk.init(
            dsn=sentry_dsn,
            integrations=[
                FlaskIntegration(
                    transaction_style='endpoint'
                ),
                SqlalchemyIntegration(),
                CeleryIntegration()
            ],
            traces_sample_rate=0.1,
            send_default_pii=False,
            environment=os.environ.get('FLASK_ENV', 'development'),
            release=os.environ.get('GIT_SHA', 'unknown')
        )
        logger.info("Sentry error tracking initialized")

init_sentry()

def create_app(config_name=None, test_config=None):
    """Create and configure an instance of the Flask application."""
    app = Flask(__name__)

    config_class = get_config(config_name)
    app.config.from_object(config_class)

    # Initialize app with config
    config_class.init_app(app)

    if test_config:
        app.config.update(test_config)

    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    db.init_app(app)

    from services.registry import ServiceRegistry, ServiceLifecycle
    registry = ServiceRegistry()
    config = app.config

    # Session of the current app context; rebuilt per lookup
    registry.register_factory(
        'db_session',
        lambda: db.session,
        lifecycle=ServiceLifecycle.TRANSIENT
    )

    # External clients, one per process
    registry.register_singleton(
        'llm_client',
        lambda: _create_llm_client(config)
    )

    registry.register_singleton(
        'graph_client',
        lambda: _create_graph_client(config)
    )

    registry.register_singleton(
        'conversions',
        lambda graph_client: _create_conversions_service(graph_client),
        dependencies=['graph_client']
    )

    registry.register_singleton(
        'lead_analysis',
        lambda llm_client: _create_lead_analysis_service(llm_client, config),
        dependencies=['llm_client']
    )

    registry.register_singleton(
        'stage_selection',
        lambda llm_client: _create_stage_selection_service(llm_client, config),
        dependencies=['llm_client']
    )

    # Repositories bound to the current session
    for name, factory in (
        ('contact_repository', _create_contact_repository),
        ('pipeline_repository', _create_pipeline_repository),
        ('assignment_repository', _create_assignment_repository),
        ('message_repository', _create_message_repository),
        ('analysis_log_repository', _create_analysis_log_repository),
        ('facebook_config_repository', _create_facebook_config_repository),
        ('revenue_repository', _create_revenue_repository),
        ('ad_metrics_repository', _create_ad_metrics_repository),
        ('campaign_metrics_repository', _create_campaign_metrics_repository),
    ):
        registry.register_transient(name, factory, dependencies=['db_session'])

    # Services built on repositories
    registry.register_transient(
        'lead_pipeline',
        lambda contact_repository, pipeline_repository, assignment_repository, message_repository,
               analysis_log_repository, facebook_config_repository, lead_analysis, stage_selection,
               conversions: _create_lead_pipeline_service(
                   contact_repository, pipeline_repository, assignment_repository, message_repository,
                   analysis_log_repository, facebook_config_repository, lead_analysis, stage_selection,
                   conversions, config),
        dependencies=['contact_repository', 'pipeline_repository', 'assignment_repository',
                      'message_repository', 'analysis_log_repository', 'facebook_config_repository',
                      'lead_analysis', 'stage_selection', 'conversions']
    )

    registry.register_transient(
        'facebook_webhook',
        _create_facebook_webhook_service,
        dependencies=['facebook_config_repository', 'contact_repository', 'message_repository',
                      'graph_client', 'lead_pipeline']
    )

    registry.register_transient(
        'contact',
        _create_contact_service,
        dependencies=['contact_repository', 'lead_pipeline']
    )

    registry.register_transient(
        'pipeline',
        _create_pipeline_service,
        dependencies=['pipeline_repository', 'contact_repository', 'analysis_log_repository',
                      'lead_analysis']
    )

    registry.register_transient(
        'revenue',
        _create_revenue_service,
        dependencies=['revenue_repository', 'contact_repository', 'facebook_config_repository',
                      'conversions']
    )

    registry.register_transient(
        'ads_insights',
        lambda facebook_config_repository, ad_metrics_repository, campaign_metrics_repository,
               graph_client: _create_ads_insights_service(
                   facebook_config_repository, ad_metrics_repository, campaign_metrics_repository,
                   graph_client, config),
        dependencies=['facebook_config_repository', 'ad_metrics_repository',
                      'campaign_metrics_repository', 'graph_client']
    )

    # Validate all dependencies are registered
    errors = registry.validate_dependencies()
    if errors:
        for error in errors:
            logger.error(f"Service dependency error: {error}")
        raise RuntimeError(f"Service dependency errors: {errors}")

    # Log initialization order for debugging
    if app.debug:
        order = registry.get_initialization_order()
        logger.debug("Service initialization order", order=order)

    # Attach registry to app
    app.services = registry

    # Add request tracking middleware
    @app.before_request
    def before_request():
        g.request_id = request.headers.get('X-Request-Id') or str(uuid.uuid4())
        logger.info("Request started",
                   request_id=g.request_id,
                   method=request.method,
                   path=request.path)

    @app.after_request
    def after_request(response):
        response.headers['X-Request-Id'] = getattr(g, 'request_id', '')
        logger.info("Request completed",
                   request_id=getattr(g, 'request_id', None),
                   status_code=response.status_code)
        return response

    # Global error handlers
    def _error_response(error, status_code, message):
        description = getattr(error, 'description', None)
        return jsonify({
            'error': message,
            'message': description if status_code < 500 and description else message,
            'request_id': getattr(g, 'request_id', None)
        }), status_code

    @app.errorhandler(400)
    def bad_request_error(error):
        return _error_response(error, 400, 'Bad request')

    @app.errorhandler(401)
    def unauthorized_error(error):
        return _error_response(error, 401, 'Unauthorized')

    @app.errorhandler(403)
    def forbidden_error(error):
        return _error_response(error, 403, 'Forbidden')

    @app.errorhandler(404)
    def not_found_error(error):
        logger.warning("Page not found",
                      request_id=getattr(g, 'request_id', None),
                      path=request.path)
        return _error_response(error, 404, 'Not found')

    @app.errorhandler(500)
    def internal_error(error):
        logger.error("Internal server error",
                    request_id=getattr(g, 'request_id', None),
                    error=str(error))
        db.session.rollback()
        return _error_response(error, 500, 'Internal server error')

    # Health check endpoint - no auth required
    @app.route('/health')
    def health_check():
        """Health check endpoint for monitoring"""
        from sqlalchemy import text
        health_status = {
            'status': 'healthy',
            'service': 'lead-pipeline'
        }

        try:
            db.session.execute(text('SELECT 1'))
            health_status['database'] = 'connected'
        except Exception as e:
            health_status['database'] = 'error'
            health_status['status'] = 'degraded'
            logger.error(f"Health check database error: {e}")

        return jsonify(health_status), 200 if health_status['status'] == 'healthy' else 503

    # Register blueprints for routes
    from routes.webhook_routes import webhooks_bp
    from routes.api_routes import api_bp

    app.register_blueprint(webhooks_bp, url_prefix='/webhooks')
    app.register_blueprint(api_bp, url_prefix='/api')

    # Register CLI commands
    from scripts import commands
    commands.init_app(app)

    return app


# Service Factory Functions
# These are only called when the service is first requested

def _create_llm_client(config):
    """Create the chat-completion client"""
    from services.llm_client import LLMClient
    logger.info("Initializing LLMClient", base_url=config.get('LLM_API_BASE'))
    return LLMClient(
        api_key=config.get('LLM_API_KEY'),
        base_url=config.get('LLM_API_BASE'),
        default_model=config.get('DEFAULT_AI_MODEL'),
        timeout=config.get('LLM_REQUEST_TIMEOUT', 60)
    )

def _create_graph_client(config):
    """Create the Facebook Graph API client"""
    from services.facebook_graph_client import FacebookGraphClient
    logger.info("Initializing FacebookGraphClient", api_version=config.get('GRAPH_API_VERSION'))
    return FacebookGraphClient(
        api_version=config.get('GRAPH_API_VERSION', 'v24.0'),
        timeout=config.get('GRAPH_API_TIMEOUT', 30)
    )

def _create_conversions_service(graph_client):
    from services.conversions_api_service import ConversionsAPIService
    return ConversionsAPIService(graph_client=graph_client)

def _create_lead_analysis_service(llm_client, config):
    from services.lead_analysis_service import LeadAnalysisService
    return LeadAnalysisService(llm_client=llm_client, default_model=config.get('DEFAULT_AI_MODEL'))

def _create_stage_selection_service(llm_client, config):
    from services.stage_selection_service import StageSelectionService
    return StageSelectionService(llm_client=llm_client, default_model=config.get('DEFAULT_AI_MODEL'))

def _create_contact_repository(db_session):
    from repositories.contact_repository import ContactRepository
    return ContactRepository(session=db_session)

def _create_pipeline_repository(db_session):
    from repositories.pipeline_repository import PipelineRepository
    return PipelineRepository(session=db_session)

def _create_assignment_repository(db_session):
    from repositories.stage_assignment_repository import StageAssignmentRepository
    return StageAssignmentRepository(session=db_session)

def _create_message_repository(db_session):
    from repositories.message_repository import MessageRepository
    return MessageRepository(session=db_session)

def _create_analysis_log_repository(db_session):
    from repositories.analysis_log_repository import AnalysisLogRepository
    return AnalysisLogRepository(session=db_session)

def _create_facebook_config_repository(db_session):
    from repositories.facebook_config_repository import FacebookConfigRepository
    return FacebookConfigRepository(session=db_session)

def _create_revenue_repository(db_session):
    from repositories.revenue_repository import RevenueRepository
    return RevenueRepository(session=db_session)

def _create_ad_metrics_repository(db_session):
    from repositories.ad_metrics_repository import AdMetricsRepository
    return AdMetricsRepository(session=db_session)

def _create_campaign_metrics_repository(db_session):
    from repositories.ad_metrics_repository import CampaignMetricsRepository
    return CampaignMetricsRepository(session=db_session)

def _create_lead_pipeline_service(contact_repository, pipeline_repository, assignment_repository,
                                  message_repository, analysis_log_repository,
                                  facebook_config_repository, lead_analysis, stage_selection,
                                  conversions, config):
    """Create LeadPipelineService with repositories and model-backed components"""
    from services.lead_pipeline_service import LeadPipelineService
    return LeadPipelineService(
        contact_repository=contact_repository,
        pipeline_repository=pipeline_repository,
        assignment_repository=assignment_repository,
        message_repository=message_repository,
        analysis_log_repository=analysis_log_repository,
        facebook_config_repository=facebook_config_repository,
        analysis_service=lead_analysis,
        stage_selection_service=stage_selection,
        conversions_service=conversions,
        message_history_limit=config.get('MESSAGE_HISTORY_LIMIT', 20),
        batch_limit=config.get('BATCH_ANALYSIS_LIMIT', 50)
    )

def _create_facebook_webhook_service(facebook_config_repository, contact_repository,
                                     message_repository, graph_client, lead_pipeline):
    from services.facebook_webhook_service import FacebookWebhookService
    return FacebookWebhookService(
        facebook_config_repository=facebook_config_repository,
        contact_repository=contact_repository,
        message_repository=message_repository,
        graph_client=graph_client,
        lead_pipeline_service=lead_pipeline
    )

def _create_contact_service(contact_repository, lead_pipeline):
    from services.contact_service import ContactService
    return ContactService(contact_repository=contact_repository, lead_pipeline_service=lead_pipeline)

def _create_pipeline_service(pipeline_repository, contact_repository, analysis_log_repository,
                             lead_analysis):
    from services.pipeline_service import PipelineService
    return PipelineService(
        pipeline_repository=pipeline_repository,
        contact_repository=contact_repository,
        analysis_log_repository=analysis_log_repository,
        analysis_service=lead_analysis
    )

def _create_revenue_service(revenue_repository, contact_repository, facebook_config_repository,
                            conversions):
    from services.revenue_service import RevenueService
    return RevenueService(
        revenue_repository=revenue_repository,
        contact_repository=contact_repository,
        facebook_config_repository=facebook_config_repository,
        conversions_service=conversions
    )

def _create_ads_insights_service(facebook_config_repository, ad_metrics_repository,
                                 campaign_metrics_repository, graph_client, config):
    from services.ads_insights_service import AdsInsightsService
    return AdsInsightsService(
        facebook_config_repository=facebook_config_repository,
        ad_metrics_repository=ad_metrics_repository,
        campaign_metrics_repository=campaign_metrics_repository,
        graph_client=graph_client,
        date_preset=config.get('AD_METRICS_DATE_PRESET', 'last_30d'),
        lookback_days=config.get('AD_METRICS_LOOKBACK_DAYS', 7)
    )
