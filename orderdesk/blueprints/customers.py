"""Customers blueprint - guarded deletion."""
from flask import Blueprint, request, jsonify, current_app, Response
from orderdesk.database import get_session
from orderdesk.exceptions import DataIntegrityError
from orderdesk.services import integrity_service
from orderdesk.blueprints.metrics import record_deletion

customers_bp = Blueprint('customers', __name__, url_prefix='/api/customers')


def is_force_requested() -> bool:
    return request.args.get('force', 'false').strip().lower() in ('1', 'true', 'yes')


@customers_bp.route('/<int:customer_id>', methods=['DELETE'])
def delete_customer(customer_id: int) -> Response:
    """Delete a customer; ?force=true also deletes their sales and returns."""
    db_session = get_session()
    force = is_force_requested()
    try:
        result = integrity_service.delete_customer(db_session, customer_id, force=force)
    except DataIntegrityError:
        record_deletion('customer', 'refused')
        raise
    record_deletion('customer', 'forced' if result.cascaded else 'deleted')
    current_app.logger.info(f"DELETE /api/customers/{customer_id} force={force}")
    return jsonify(result.to_dict())
