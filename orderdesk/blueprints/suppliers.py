"""Suppliers blueprint - guarded deletion."""
from flask import Blueprint, jsonify, Response
from orderdesk.database import get_session
from orderdesk.exceptions import DataIntegrityError
from orderdesk.services import integrity_service
from orderdesk.blueprints.customers import is_force_requested
from orderdesk.blueprints.metrics import record_deletion

suppliers_bp = Blueprint('suppliers', __name__, url_prefix='/api/suppliers')


@suppliers_bp.route('/<int:supplier_id>', methods=['DELETE'])
def delete_supplier(supplier_id: int) -> Response:
    """Delete a supplier; ?force=true also deletes its open purchase orders."""
    db_session = get_session()
    try:
        result = integrity_service.delete_supplier(db_session, supplier_id, force=is_force_requested())
    except DataIntegrityError:
        record_deletion('supplier', 'refused')
        raise
    record_deletion('supplier', 'forced' if result.forced else 'deleted')
    return jsonify(result.to_dict())
