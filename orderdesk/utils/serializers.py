"""JSON-ready representations of models and service results."""
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from orderdesk.utils import money


def to_json_value(value: Any) -> Any:
    """Decimals become 2-place strings, datetimes ISO strings, enums their value."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return str(money.quantize(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_value(v) for v in value]
    return value


def sale_line_to_dict(line) -> dict:
    return to_json_value({
        'id': line.id,
        'product_id': line.product_id,
        'quantity': line.quantity,
        'unit_price': line.unit_price,
        'discount_percentage': line.discount_percentage,
        'discount_amount': line.discount_amount,
        'tax_percentage': line.tax_percentage,
        'tax_amount': line.tax_amount,
        'subtotal': line.subtotal,
        'line_total': line.line_total,
    })


def applied_promotion_to_dict(record) -> dict:
    return to_json_value({
        'promotion_id': record.promotion_id,
        'promotion_name': record.promotion_name,
        'promotion_type': record.promotion_type,
        'coupon_code': record.coupon_code,
        'discount_amount': record.discount_amount,
        'original_amount': record.original_amount,
        'final_amount': record.final_amount,
        'is_auto_applied': record.is_auto_applied,
    })


def sale_to_dict(sale) -> dict:
    data = to_json_value({
        'id': sale.id,
        'sale_number': sale.sale_number,
        'customer_id': sale.customer_id,
        'status': sale.status,
        'subtotal': sale.subtotal,
        'discount_amount': sale.discount_amount,
        'promotion_discount_amount': sale.promotion_discount_amount,
        'tax_amount': sale.tax_amount,
        'shipping_cost': sale.shipping_cost,
        'total': sale.total,
        'net_revenue': sale.net_revenue,
        'payment_method': sale.payment_method,
        'payment_status': sale.payment_status,
        'delivery_status': sale.delivery_status,
        'loyalty_points_earned': sale.loyalty_points_earned,
        'coupon_code': sale.coupon_code,
        'sale_date': sale.sale_date,
        'completed_at': sale.completed_at,
        'cancelled_at': sale.cancelled_at,
    })
    data['lines'] = [sale_line_to_dict(line) for line in sale.lines]
    data['applied_promotions'] = [applied_promotion_to_dict(r) for r in sale.applied_promotions]
    return data


def product_to_dict(product) -> dict:
    return to_json_value({
        'id': product.id,
        'sku': product.sku,
        'name': product.name,
        'price': product.price,
        'stock_quantity': product.stock_quantity,
        'is_active': product.is_active,
        'category_id': product.category_id,
    })


def return_item_to_dict(item) -> dict:
    return to_json_value({
        'id': item.id,
        'sale_line_id': item.sale_line_id,
        'product_id': item.product_id,
        'quantity': item.quantity,
        'refund_amount': item.refund_amount,
    })


def return_to_dict(sale_return) -> dict:
    data = to_json_value({
        'id': sale_return.id,
        'return_number': sale_return.return_number,
        'sale_id': sale_return.sale_id,
        'customer_id': sale_return.customer_id,
        'status': sale_return.status,
        'reason': sale_return.reason,
        'rejection_reason': sale_return.rejection_reason,
        'refund_amount': sale_return.refund_amount,
        'created_at': sale_return.created_at,
        'processed_at': sale_return.processed_at,
        'refunded_at': sale_return.refunded_at,
    })
    data['items'] = [return_item_to_dict(item) for item in sale_return.items]
    return data
