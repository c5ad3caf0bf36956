"""Returns blueprint - open returns against completed sales and process them."""
from flask import Blueprint, request, jsonify, current_app, Response
from orderdesk.database import get_session
from orderdesk.exceptions import ValidationError
from orderdesk.services import return_service
from orderdesk.services.return_service import parse_items
from orderdesk.utils.serializers import return_to_dict

returns_bp = Blueprint('returns', __name__, url_prefix='/api/returns')


@returns_bp.route('', methods=['POST'])
def create_return() -> Response:
    """Open a PENDING return: {"sale_id": 1, "items": [{"sale_line_id": 1, "quantity": 1}], "reason": "..."}."""
    db_session = get_session()
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    sale_id = data.get('sale_id')
    if isinstance(sale_id, bool) or not isinstance(sale_id, int):
        raise ValidationError('sale_id must be an integer', 'sale_id')

    sale_return = return_service.create_return(db_session, sale_id, parse_items(data.get('items')), data.get('reason'))
    current_app.logger.info(f"POST /api/returns -> return {sale_return.id}")
    return jsonify(return_to_dict(sale_return)), 201


@returns_bp.route('/<int:return_id>', methods=['GET'])
def get_return(return_id: int) -> Response:
    db_session = get_session()
    return jsonify(return_to_dict(return_service.get_return(db_session, return_id)))


@returns_bp.route('/customer/<int:customer_id>', methods=['GET'])
def get_customer_returns(customer_id: int) -> Response:
    db_session = get_session()
    returns = return_service.get_returns_by_customer(db_session, customer_id)
    return jsonify([return_to_dict(r) for r in returns])


@returns_bp.route('/<int:return_id>/approve', methods=['POST'])
def approve_return(return_id: int) -> Response:
    db_session = get_session()
    return jsonify(return_to_dict(return_service.approve_return(db_session, return_id)))


@returns_bp.route('/<int:return_id>/reject', methods=['POST'])
def reject_return(return_id: int) -> Response:
    db_session = get_session()
    data = request.get_json(silent=True) or {}
    sale_return = return_service.reject_return(db_session, return_id, data.get('reason'))
    return jsonify(return_to_dict(sale_return))


@returns_bp.route('/<int:return_id>/cancel', methods=['POST'])
def cancel_return(return_id: int) -> Response:
    db_session = get_session()
    return jsonify(return_to_dict(return_service.cancel_return(db_session, return_id)))


@returns_bp.route('/<int:return_id>/refund', methods=['POST'])
def process_refund(return_id: int) -> Response:
    """Refund an APPROVED return and put its units back in stock."""
    db_session = get_session()
    return jsonify(return_to_dict(return_service.process_refund(db_session, return_id)))
