"""Sales blueprint - create, modify, complete and cancel sales."""
from flask import Blueprint, request, jsonify, current_app, Response
from orderdesk.database import get_session
from orderdesk.exceptions import OrderDeskError
from orderdesk.services import sales_service
from orderdesk.services.sales_service import CreateSaleRequest, parse_lines
from orderdesk.blueprints.metrics import record_sale_operation
from orderdesk.utils.serializers import sale_to_dict, to_json_value

sales_bp = Blueprint('sales', __name__, url_prefix='/api/sales')


def _run(operation: str, fn, *args):
    """Call a sales operation and record its outcome."""
    try:
        result = fn(*args)
    except OrderDeskError as e:
        record_sale_operation(operation, e.payload.get('error_code', 'error') if e.payload else 'error')
        raise
    record_sale_operation(operation, 'success')
    return result


@sales_bp.route('', methods=['POST'])
def create_sale() -> Response:
    """Create a PENDING sale from a JSON order."""
    db_session = get_session()
    sale_request = CreateSaleRequest.from_dict(request.get_json(silent=True))
    sale = _run('create', sales_service.create_sale, db_session, sale_request)
    current_app.logger.info(f"POST /api/sales -> sale {sale.id}")
    return jsonify(sale_to_dict(sale)), 201


@sales_bp.route('/preview', methods=['POST'])
def preview_sale() -> Response:
    """Totals a create would produce, without writing anything."""
    db_session = get_session()
    sale_request = CreateSaleRequest.from_dict(request.get_json(silent=True))
    totals = sales_service.preview_sale_totals(db_session, sale_request)
    return jsonify(to_json_value(totals))


@sales_bp.route('/<int:sale_id>', methods=['GET'])
def get_sale(sale_id: int) -> Response:
    db_session = get_session()
    sale = sales_service.get_sale(db_session, sale_id)
    return jsonify(sale_to_dict(sale))


@sales_bp.route('/<int:sale_id>', methods=['PUT'])
def update_sale(sale_id: int) -> Response:
    """Replace the lines of a PENDING sale; "coupon_code": "" removes its coupon."""
    db_session = get_session()
    data = request.get_json(silent=True) or {}
    lines = parse_lines(data.get('lines'))
    sale = _run('update', sales_service.update_sale, db_session, sale_id, lines, data.get('coupon_code'))
    return jsonify(sale_to_dict(sale))


@sales_bp.route('/<int:sale_id>/complete', methods=['POST'])
def complete_sale(sale_id: int) -> Response:
    db_session = get_session()
    sale = _run('complete', sales_service.complete_sale, db_session, sale_id)
    return jsonify(sale_to_dict(sale))


@sales_bp.route('/<int:sale_id>/cancel', methods=['POST'])
def cancel_sale(sale_id: int) -> Response:
    db_session = get_session()
    sale = _run('cancel', sales_service.cancel_sale, db_session, sale_id)
    return jsonify(sale_to_dict(sale))
