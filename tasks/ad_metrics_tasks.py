"""
Celery tasks for Ads Insights
Periodic sync of campaign and daily ad metrics
"""

from flask import current_app

from celery_worker import celery
from logging_config import get_logger

logger = get_logger(__name__)


@celery.task(bind=True)
def sync_ad_metrics(self, owner_id=None):
    """Sync campaign and daily ad metrics for every owner with an ad account"""
    ads_insights_service = current_app.services.get('ads_insights')
    result = ads_insights_service.sync_all(owner_id=owner_id)

    summary = result.data
    if summary['errors']:
        logger.warning("Ad metrics sync finished with errors",
                       accounts=summary['accounts'], errors=summary['errors'])
    return summary
