"""
Shared Celery configuration for both Flask app and Celery workers
"""
import os
import ssl
from urllib.parse import urlparse, parse_qs
from celery import Celery
from logging_config import get_logger

logger = get_logger(__name__)

SSL_OPTIONS = {
    'ssl_cert_reqs': ssl.CERT_NONE,
    'ssl_ca_certs': None,
    'ssl_certfile': None,
    'ssl_keyfile': None,
}


def add_ssl_params(url):
    """Append ssl_cert_reqs to a rediss:// URL that does not carry it."""
    if not url.startswith('rediss://'):
        return url
    parsed = urlparse(url)
    if 'ssl_cert_reqs' in parse_qs(parsed.query):
        return url
    separator = '&' if parsed.query else '?'
    return url + f"{separator}ssl_cert_reqs=CERT_NONE"


def create_celery_app(app_name=__name__):
    """Create a Celery app with proper SSL Redis configuration"""
    broker_url = os.environ.get('CELERY_BROKER_URL') or os.environ.get('REDIS_URL') or 'redis://redis:6379/0'
    result_backend_url = os.environ.get('CELERY_RESULT_BACKEND') or broker_url

    broker_uses_ssl = broker_url.startswith('rediss://')
    backend_uses_ssl = result_backend_url.startswith('rediss://')

    options = {}
    if broker_uses_ssl or backend_uses_ssl:
        options.update(
            broker_use_ssl=SSL_OPTIONS if broker_uses_ssl else None,
            redis_backend_use_ssl=SSL_OPTIONS if backend_uses_ssl else None,
            broker_connection_retry_on_startup=True,
            broker_connection_retry=True,
            broker_connection_max_retries=3,
            broker_transport_options={
                'socket_connect_timeout': 30,
                'socket_timeout': 30,
            }
        )

    celery = Celery(
        app_name,
        broker=add_ssl_params(broker_url),
        backend=add_ssl_params(result_backend_url),
        **options
    )

    # Lead events are redelivered on worker loss; ingestion is idempotent
    celery.conf.update(
        task_serializer='json',
        result_serializer='json',
        accept_content=['json'],
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        result_expires=3600 * 24,
    )

    logger.info("Celery configured",
                broker_uses_ssl=broker_uses_ssl,
                backend_uses_ssl=backend_uses_ssl)

    return celery
