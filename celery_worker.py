# celery_worker.py
from app import create_app
from celery_config import create_celery_app
from logging_config import get_logger

logger = get_logger(__name__)

# Create Celery instance with shared configuration
celery = create_celery_app(__name__)

# The Flask app provides context (config, db session, service registry) for tasks.
flask_app = create_app()

# Set the custom Task class to ensure tasks run within the Flask app context.
class ContextTask(celery.Task):
    def __call__(self, *args, **kwargs):
        with flask_app.app_context():
            return self.run(*args, **kwargs)

celery.Task = ContextTask

# --- Celery Beat Schedule ---
celery.conf.beat_schedule = {
    'analyze-pending-contacts': {
        'task': 'tasks.lead_analysis_tasks.analyze_pending_contacts',
        # Catch contacts whose analysis never ran, e.g. after a model outage
        'schedule': 900.0,  # 15 minutes
    },
    'sync-ad-metrics': {
        'task': 'tasks.ad_metrics_tasks.sync_ad_metrics',
        'schedule': flask_app.config.get('AD_METRICS_SYNC_INTERVAL', 21600.0),  # 6 hours
    },
}
celery.conf.timezone = 'UTC'

# Import tasks to ensure they're registered with Celery
# This must be done after the Flask app is created
with flask_app.app_context():
    import tasks.lead_analysis_tasks  # noqa: F401
    import tasks.ad_metrics_tasks  # noqa: F401
    logger.info("Celery tasks registered", tasks=sorted(
        name for name in celery.tasks.keys() if not name.startswith('celery.')))
