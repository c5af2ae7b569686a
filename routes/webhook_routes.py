import hmac
import hashlib
from functools import wraps
from flask import Blueprint, jsonify, request, current_app, abort

from logging_config import get_logger, security_logger

webhooks_bp = Blueprint('webhooks', __name__)
logger = get_logger(__name__)

SIGNATURE_HEADER = 'X-Hub-Signature-256'


def verify_facebook_signature(f):
    """Decorator to verify the X-Hub-Signature-256 header of a webhook POST."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        app_secret = current_app.config.get('FACEBOOK_APP_SECRET')
        if not app_secret:
            logger.error("Facebook app secret is not configured")
            abort(500)

        received = request.headers.get(SIGNATURE_HEADER, '')
        if not received.startswith('sha256='):
            security_logger.log_signature_failure(request.path, 'missing or malformed header',
                                                  request.remote_addr)
            abort(403)

        expected = 'sha256=' + hmac.new(
            app_secret.encode('utf-8'), request.get_data(), hashlib.sha256
        ).hexdigest()
        if not hmac.compare_digest(expected, received):
            security_logger.log_signature_failure(request.path, 'signature mismatch',
                                                  request.remote_addr)
            abort(403)

        return f(*args, **kwargs)
    return decorated_function


def _verify_subscription():
    """Facebook's GET handshake when a webhook subscription is created."""
    mode = request.args.get('hub.mode')
    token = request.args.get('hub.verify_token')
    challenge = request.args.get('hub.challenge', '')
    verify_token = current_app.config.get('WEBHOOK_VERIFY_TOKEN')

    if mode == 'subscribe' and verify_token and token and hmac.compare_digest(token, verify_token):
        logger.info("Webhook subscription verified", path=request.path)
        return challenge, 200, {'Content-Type': 'text/plain'}

    logger.warning("Webhook verification rejected", path=request.path, mode=mode)
    return 'Forbidden', 403


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        abort(400)
    return data


def _batch_response(result):
    if result.is_failure:
        return jsonify({'status': 'error', 'message': result.error}), 400
    summary = result.data
    status = 'ok' if summary['failed'] == 0 else 'partial_failure'
    return jsonify({'status': status, **summary}), 200 if summary['failed'] == 0 else 500


@webhooks_bp.route('/facebook', methods=['GET'])
def verify_leadgen_subscription():
    return _verify_subscription()


@webhooks_bp.route('/facebook', methods=['POST'])
@verify_facebook_signature
def facebook_leadgen_webhook():
    data = _json_body()
    webhook_service = current_app.services.get('facebook_webhook')
    result = webhook_service.process_leadgen_payload(data)
    return _batch_response(result)


@webhooks_bp.route('/messenger', methods=['GET'])
def verify_messenger_subscription():
    return _verify_subscription()


@webhooks_bp.route('/messenger', methods=['POST'])
@verify_facebook_signature
def messenger_webhook():
    data = _json_body()
    webhook_service = current_app.services.get('facebook_webhook')
    result = webhook_service.process_messenger_payload(data)
    return _batch_response(result)
