"""Reports blueprint."""
from datetime import date, datetime, timedelta
from flask import Blueprint, request, jsonify, current_app, Response
from orderdesk.database import get_session
from orderdesk.exceptions import ValidationError
from orderdesk.services.report_service import get_cached_sales_report
from orderdesk.utils.serializers import to_json_value

reports_bp = Blueprint('reports', __name__, url_prefix='/api/reports')


def _parse_date_arg(name: str):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        if 'T' in raw:
            return datetime.fromisoformat(raw)
        return date.fromisoformat(raw)
    except ValueError:
        raise ValidationError(f'{name} must be an ISO date (YYYY-MM-DD)', name)


@reports_bp.route('/sales', methods=['GET'])
def sales_report() -> Response:
    """
    Sales report for ?start=YYYY-MM-DD&end=YYYY-MM-DD (end inclusive).

    Defaults to the last DEFAULT_REPORT_DAYS days.
    """
    end = _parse_date_arg('end') or date.today()
    start = _parse_date_arg('start') or (end - timedelta(days=current_app.config.get('DEFAULT_REPORT_DAYS', 30)))

    db_session = get_session()
    report = get_cached_sales_report(db_session, start, end, ttl=current_app.config.get('CACHE_REPORTS_TTL'))
    return jsonify(to_json_value(report))
