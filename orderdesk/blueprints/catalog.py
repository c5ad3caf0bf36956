"""Catalog blueprint - product and category deletion."""
from flask import Blueprint, jsonify, Response
from orderdesk.database import get_session
from orderdesk.exceptions import DataIntegrityError
from orderdesk.services import integrity_service
from orderdesk.blueprints.metrics import record_deletion
from orderdesk.utils.serializers import product_to_dict

catalog_bp = Blueprint('catalog', __name__, url_prefix='/api')


@catalog_bp.route('/products/<int:product_id>', methods=['DELETE'])
def delete_product(product_id: int) -> Response:
    """Delete a product without sales, return or purchase history."""
    db_session = get_session()
    try:
        result = integrity_service.delete_product(db_session, product_id)
    except DataIntegrityError:
        record_deletion('product', 'refused')
        raise
    record_deletion('product', 'deleted')
    return jsonify(result.to_dict())


@catalog_bp.route('/products/<int:product_id>/deactivate', methods=['POST'])
def deactivate_product(product_id: int) -> Response:
    db_session = get_session()
    product = integrity_service.deactivate_product(db_session, product_id)
    return jsonify(product_to_dict(product))


@catalog_bp.route('/categories/<int:category_id>', methods=['DELETE'])
def delete_category(category_id: int) -> Response:
    db_session = get_session()
    result = integrity_service.delete_category(db_session, category_id)
    record_deletion('category', 'deleted')
    return jsonify(result.to_dict())


@catalog_bp.route('/<entity_type>/<int:entity_id>/dependents', methods=['GET'])
def dependents(entity_type: str, entity_id: int) -> Response:
    """Dependent record counts for a customer, product, category or supplier."""
    db_session = get_session()
    counts = integrity_service.count_dependents(db_session, entity_type, entity_id)
    return jsonify({'entity_type': entity_type, 'entity_id': entity_id, 'dependents': counts})
