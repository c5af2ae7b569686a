"""
Celery tasks for lead analysis
Periodic catch-up analysis and asynchronous lead ingestion
"""

from flask import current_app

from celery_worker import celery
from logging_config import get_logger
from utils.datetime_utils import utc_now

logger = get_logger(__name__)


@celery.task(bind=True)
def analyze_pending_contacts(self, owner_id=None, limit=None):
    """
    Analyze and assign contacts that have no analysis yet, for one owner or
    every owner with a Facebook configuration
    """
    lead_pipeline_service = current_app.services.get('lead_pipeline')
    processed = lead_pipeline_service.process_pending_for_owners(owner_id=owner_id, limit=limit)

    logger.info("Pending contact analysis completed",
                owners=len(processed), contacts=sum(processed.values()))
    return {
        'processed': processed,
        'timestamp': utc_now().isoformat()
    }


@celery.task(bind=True, max_retries=3)
def process_leadgen_event(self, event):
    """Ingest one lead event outside the webhook request"""
    webhook_service = current_app.services.get('facebook_webhook')
    try:
        result = webhook_service.handle_lead_event(event)
    except Exception as e:
        logger.error("Lead event task failed", leadgen_id=(event or {}).get('leadgen_id'), error=str(e))
        current_app.services.get('db_session').rollback()
        raise self.retry(exc=e, countdown=60 * (2 ** self.request.retries))

    if result.is_failure:
        logger.warning("Lead event skipped", leadgen_id=(event or {}).get('leadgen_id'),
                       error_kind=getattr(result.error_code, 'value', result.error_code))
        return {'success': False, 'error': result.error}
    return {'success': True, 'outcome': result.data}
