import hmac
from functools import wraps
from flask import Blueprint, jsonify, request, current_app, g, abort

from logging_config import get_logger, security_logger
from services.enums import ErrorKind

api_bp = Blueprint('api', __name__)
logger = get_logger(__name__)

ERROR_STATUS = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.CONTACT_NOT_FOUND: 404,
}


def require_api_token(f):
    """Decorator: bearer ADMIN_API_TOKEN plus an X-Owner-Id scoping header."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        expected = current_app.config.get('ADMIN_API_TOKEN')
        if not expected:
            logger.error("Admin API token is not configured")
            abort(500)

        header = request.headers.get('Authorization', '')
        token = header[len('Bearer '):] if header.startswith('Bearer ') else ''
        if not token or not hmac.compare_digest(token, expected):
            security_logger.log_api_token_usage(False, request.remote_addr)
            abort(401)

        owner_id = request.headers.get('X-Owner-Id', '').strip()
        if not owner_id:
            abort(400, description='X-Owner-Id header is required')

        security_logger.log_api_token_usage(True, request.remote_addr)
        g.owner_id = owner_id
        return f(*args, **kwargs)
    return decorated_function


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        abort(400, description='Request body must be a JSON object')
    return data


def _result_response(result, success_status=200):
    if result.is_success:
        return jsonify(result.data), success_status
    status = ERROR_STATUS.get(result.error_code, 500)
    if status == 500:
        logger.error("API operation failed", error=result.error,
                     error_kind=getattr(result.error_code, 'value', result.error_code))
    return jsonify({'error': result.error}), status


@api_bp.route('/contacts', methods=['POST'])
@require_api_token
def create_contact():
    data = _json_body()
    contact_service = current_app.services.get('contact')
    result = contact_service.create_manual_contact(
        g.owner_id, data, analyze=bool(data.get('analyze', True))
    )
    return _result_response(result, 201)


@api_bp.route('/contacts/<int:contact_id>/quality', methods=['POST'])
@require_api_token
def update_contact_quality(contact_id):
    data = _json_body()
    contact_service = current_app.services.get('contact')
    result = contact_service.update_quality(
        g.owner_id, contact_id,
        lead_quality_score=data.get('lead_quality_score'),
        lead_value=data.get('lead_value')
    )
    return _result_response(result)


@api_bp.route('/contacts/<int:contact_id>/messenger', methods=['POST'])
@require_api_token
def link_messenger(contact_id):
    data = _json_body()
    contact_service = current_app.services.get('contact')
    result = contact_service.link_messenger_psid(g.owner_id, contact_id, data.get('psid'))
    return _result_response(result)


@api_bp.route('/ai/analyze', methods=['POST'])
@require_api_token
def analyze_contacts():
    data = _json_body()
    contact_ids = data.get('contact_ids')
    if contact_ids is not None and (
            not isinstance(contact_ids, list) or not all(isinstance(i, int) for i in contact_ids)):
        abort(400, description='contact_ids must be a list of integers')

    lead_pipeline_service = current_app.services.get('lead_pipeline')
    result = lead_pipeline_service.analyze_contacts_batch(
        g.owner_id,
        contact_ids=contact_ids,
        pipeline_id=data.get('pipeline_id'),
        model=data.get('model')
    )
    return _result_response(result)


@api_bp.route('/ai/suggest-pipeline', methods=['POST'])
@require_api_token
def suggest_pipeline():
    data = _json_body()
    pipeline_service = current_app.services.get('pipeline')
    result = pipeline_service.suggest_pipeline(
        g.owner_id,
        business_context=data.get('business_context'),
        model=data.get('model'),
        create=bool(data.get('create', False)),
        make_default=bool(data.get('is_default', False))
    )
    return _result_response(result)


@api_bp.route('/pipelines', methods=['POST'])
@require_api_token
def create_pipeline():
    data = _json_body()
    pipeline_service = current_app.services.get('pipeline')
    result = pipeline_service.create_pipeline(
        g.owner_id,
        name=data.get('name'),
        stages=data.get('stages'),
        description=data.get('description'),
        is_default=bool(data.get('is_default', False))
    )
    return _result_response(result, 201)


@api_bp.route('/revenue', methods=['POST'])
@require_api_token
def record_revenue():
    data = _json_body()
    if data.get('contact_id') is None or data.get('amount') is None:
        abort(400, description='contact_id and amount are required')

    revenue_service = current_app.services.get('revenue')
    result = revenue_service.record_revenue(
        g.owner_id,
        contact_id=data['contact_id'],
        amount=data['amount'],
        currency=data.get('currency', 'USD'),
        revenue_type=data.get('revenue_type', 'sale'),
        description=data.get('description'),
        send_to_facebook=bool(data.get('send_to_facebook', True))
    )
    return _result_response(result, 201)
