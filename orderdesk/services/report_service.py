"""
Sales report service.
Aggregates completed sales over a date window: summary figures, growth
against the previous window, customer segments, regions, payment methods,
a daily breakdown and top products.

Every aggregation tolerates missing data: NULL money fields count as zero,
sales without a customer are left out of customer figures and lines whose
product no longer exists are left out of product figures.
"""
import logging
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, date, time, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import selectinload

from orderdesk.models import Sale, SaleLine, SaleStatus
from orderdesk.models.customer import customer_segment
from orderdesk.exceptions import ValidationError
from orderdesk.services.cache_service import get_cache, REPORTS_MODULE
from orderdesk.utils import money

logger = logging.getLogger(__name__)

SEGMENTS = ('VIP', 'Premium', 'Loyal', 'Regular')
TOP_PRODUCTS_LIMIT = 10
UNKNOWN_REGION = 'Unknown'
UNKNOWN_PAYMENT_METHOD = 'UNKNOWN'

_DIRECTION_KEYWORDS = (
    ('north', 'North Region'),
    ('south', 'South Region'),
    ('east', 'East Region'),
    ('west', 'West Region'),
    ('central', 'Central Region'),
    ('center', 'Central Region'),
)

_STATE_REGIONS = (
    (('ca', 'california'), 'West Region'),
    (('ny', 'new york'), 'East Region'),
    (('tx', 'texas'), 'South Region'),
    (('il', 'illinois'), 'Central Region'),
)


@dataclass
class SalesReport:
    start: datetime
    end: datetime
    summary: Dict[str, Any] = field(default_factory=dict)
    customer_segments: Dict[str, int] = field(default_factory=dict)
    regions: List[Dict[str, Any]] = field(default_factory=list)
    payment_methods: List[Dict[str, Any]] = field(default_factory=list)
    daily: List[Dict[str, Any]] = field(default_factory=list)
    top_products: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'period': {'start': self.start, 'end': self.end},
            'summary': self.summary,
            'customer_segments': self.customer_segments,
            'regions': self.regions,
            'payment_methods': self.payment_methods,
            'daily': self.daily,
            'top_products': self.top_products,
        }


def parse_region(address: Optional[str]) -> str:
    """
    Derive a sales region from a free-text address.

    Direction keywords win, then a few state names/codes, then the last
    comma-separated part of the address.
    """
    if not address or not address.strip():
        return UNKNOWN_REGION

    lowered = address.lower()
    for keyword, region in _DIRECTION_KEYWORDS:
        if keyword in lowered:
            return region

    tokens = set(re.findall(r'[a-z]+', lowered))
    for (code, name), region in _STATE_REGIONS:
        if code in tokens or name in lowered:
            return region

    parts = [p.strip() for p in address.split(',')]
    if len(parts) > 1 and parts[-1]:
        return f"{parts[-1]} Region"
    return UNKNOWN_REGION


def normalize_window(start, end):
    """
    Turn a (start, end) pair into a half-open datetime window.

    A date start means midnight; a date end includes that whole day.
    """
    if start is None or end is None:
        raise ValidationError('Both start and end are required')
    if isinstance(start, date) and not isinstance(start, datetime):
        start = datetime.combine(start, time.min)
    if isinstance(end, date) and not isinstance(end, datetime):
        end = datetime.combine(end + timedelta(days=1), time.min)
    if end <= start:
        raise ValidationError('end must be after start', 'end')
    return start, end


def _completed_sales(session, start: datetime, end: datetime) -> List[Sale]:
    return session.query(Sale).options(
        selectinload(Sale.customer),
        selectinload(Sale.lines).selectinload(SaleLine.product)
    ).filter(
        Sale.status == SaleStatus.COMPLETED,
        Sale.sale_date >= start,
        Sale.sale_date < end
    ).order_by(Sale.sale_date, Sale.id).all()


def _window_totals(session, start: datetime, end: datetime):
    """(completed count, completed revenue) for a window, computed in SQL."""
    row = session.query(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total), 0)
    ).filter(
        Sale.status == SaleStatus.COMPLETED,
        Sale.sale_date >= start,
        Sale.sale_date < end
    ).first()
    return (row[0] or 0), money.quantize(row[1])


def _build_summary(session, sales: List[Sale], start: datetime, end: datetime) -> Dict[str, Any]:
    revenue = money.total(s.total for s in sales)
    discounts = money.total(s.discount_amount for s in sales)
    tax = money.total(s.tax_amount for s in sales)
    net_revenue = money.total(s.net_revenue for s in sales)
    unique_customers = len({s.customer_id for s in sales if s.customer_id is not None})

    all_sales = session.query(func.count(Sale.id)).filter(
        Sale.sale_date >= start,
        Sale.sale_date < end
    ).scalar() or 0

    previous_start = start - (end - start)
    previous_count, previous_revenue = _window_totals(session, previous_start, start)

    return {
        'total_sales': len(sales),
        'total_revenue': money.quantize(revenue),
        'total_discounts': money.quantize(discounts),
        'total_tax': money.quantize(tax),
        'net_revenue': money.quantize(net_revenue),
        'average_order_value': money.divide(revenue, len(sales)),
        'unique_customers': unique_customers,
        'conversion_rate': money.divide(money.multiply(len(sales), money.HUNDRED), all_sales),
        'revenue_growth': money.percent_change(revenue, previous_revenue),
        'sales_growth': money.percent_change(len(sales), previous_count),
    }


def _segment_counts(sales: List[Sale]) -> Dict[str, int]:
    counts = OrderedDict((segment, 0) for segment in SEGMENTS)
    seen = set()
    for sale in sales:
        customer = sale.customer
        if customer is None or customer.id in seen:
            continue
        seen.add(customer.id)
        counts[customer_segment(customer.total_purchases, customer.order_count)] += 1
    return dict(counts)


def _group(sales: List[Sale], key_fn, key_name: str) -> List[Dict[str, Any]]:
    """Revenue and sale count per key, highest revenue first."""
    groups: Dict[str, Dict[str, Any]] = {}
    for sale in sales:
        key = key_fn(sale)
        if key is None:
            continue
        bucket = groups.setdefault(key, {key_name: key, 'revenue': money.ZERO, 'sales_count': 0})
        bucket['revenue'] = money.add(bucket['revenue'], sale.total)
        bucket['sales_count'] += 1

    rows = sorted(groups.values(), key=lambda r: (-r['revenue'], str(r[key_name])))
    for row in rows:
        row['revenue'] = money.quantize(row['revenue'])
    return rows


def _sale_region(sale: Sale) -> Optional[str]:
    customer = sale.customer
    if customer is None:
        return None
    return parse_region(customer.address or customer.billing_address)


def _daily_breakdown(sales: List[Sale]) -> List[Dict[str, Any]]:
    days: Dict[date, Dict[str, Any]] = OrderedDict()
    for sale in sales:
        day = sale.sale_date.date()
        bucket = days.setdefault(day, {'date': day, 'revenue': money.ZERO, 'sales_count': 0})
        bucket['revenue'] = money.add(bucket['revenue'], sale.total)
        bucket['sales_count'] += 1
    for bucket in days.values():
        bucket['revenue'] = money.quantize(bucket['revenue'])
    return list(days.values())


def _top_products(sales: List[Sale], limit: int = TOP_PRODUCTS_LIMIT) -> List[Dict[str, Any]]:
    products: Dict[int, Dict[str, Any]] = {}
    for sale in sales:
        for line in sale.lines:
            product = line.product
            if product is None:
                continue
            bucket = products.setdefault(product.id, {
                'product_id': product.id,
                'name': product.name,
                'quantity': 0,
                'revenue': money.ZERO,
            })
            bucket['quantity'] += line.quantity or 0
            bucket['revenue'] = money.add(bucket['revenue'], line.line_total)

    rows = sorted(products.values(), key=lambda r: (-r['revenue'], r['product_id']))[:limit]
    for row in rows:
        row['revenue'] = money.quantize(row['revenue'])
    return rows


def generate_sales_report(session, start, end) -> SalesReport:
    """
    Build the sales report for the window [start, end).

    Args:
        session: SQLAlchemy session
        start: Window start (datetime, or date for midnight)
        end: Window end (datetime exclusive, or date inclusive)

    Returns:
        SalesReport
    """
    start, end = normalize_window(start, end)
    sales = _completed_sales(session, start, end)

    report = SalesReport(
        start=start,
        end=end,
        summary=_build_summary(session, sales, start, end),
        customer_segments=_segment_counts(sales),
        regions=_group(sales, _sale_region, 'region'),
        payment_methods=_group(sales, lambda s: s.payment_method or UNKNOWN_PAYMENT_METHOD, 'payment_method'),
        daily=_daily_breakdown(sales),
        top_products=_top_products(sales),
    )
    logger.debug(f"Sales report {start:%Y-%m-%d} -> {end:%Y-%m-%d}: {len(sales)} completed sale(s)")
    return report


def get_cached_sales_report(session, start, end, ttl: Optional[int] = None) -> Dict[str, Any]:
    """Serialized sales report, served from redis when available."""
    start, end = normalize_window(start, end)
    key = f"sales:{start.isoformat()}:{end.isoformat()}"

    def loader():
        return generate_sales_report(session, start, end).to_dict()

    try:
        cache = get_cache()
    except RuntimeError:
        return loader()
    return cache.memoize(REPORTS_MODULE, key, loader, ttl)
