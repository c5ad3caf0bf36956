"""
Sales service with transactional logic.
Handles sale creation, modification, completion and cancellation together
with the stock, loyalty and promotion state each of them mutates.
"""
import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Dict, Optional, Any

from flask import current_app, has_app_context
from sqlalchemy import func

from orderdesk.models import (
    Product, Customer, Sale, SaleLine, Return,
    SaleStatus, PaymentStatus, INACTIVE_RETURN_STATUSES, normalize_payment_method
)
from orderdesk.exceptions import (
    OrderDeskError, ValidationError, BusinessLogicError, NotFoundError,
    InsufficientStockError, InvalidStateTransitionError, DataIntegrityError
)
from orderdesk.services import promotion_service
from orderdesk.services.cache_service import invalidate_reports
from orderdesk.utils import money

logger = logging.getLogger(__name__)

DEFAULT_SPEND_PER_POINT = 10


@dataclass
class LineRequest:
    product_id: int
    quantity: int
    unit_price_override: Optional[Decimal] = None
    discount_percentage: Optional[Decimal] = None
    tax_percentage: Optional[Decimal] = None


@dataclass
class CreateSaleRequest:
    lines: List[LineRequest] = field(default_factory=list)
    customer_id: Optional[int] = None
    payment_method: Optional[str] = None
    coupon_code: Optional[str] = None
    shipping_cost: Optional[Decimal] = None
    notes: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CreateSaleRequest':
        """Build a request from a JSON body, rejecting malformed fields."""
        if not isinstance(data, dict):
            raise ValidationError('Request body must be a JSON object')
        return cls(
            lines=parse_lines(data.get('lines')),
            customer_id=_parse_int(data.get('customer_id'), 'customer_id', required=False),
            payment_method=data.get('payment_method'),
            coupon_code=data.get('coupon_code') or None,
            shipping_cost=_parse_decimal(data.get('shipping_cost'), 'shipping_cost'),
            notes=data.get('notes')
        )


def parse_lines(raw_lines) -> List[LineRequest]:
    if raw_lines is None:
        return []
    if not isinstance(raw_lines, list):
        raise ValidationError('lines must be a list', 'lines')

    lines = []
    for raw in raw_lines:
        if not isinstance(raw, dict):
            raise ValidationError('Each line must be an object', 'lines')
        lines.append(LineRequest(
            product_id=_parse_int(raw.get('product_id'), 'product_id'),
            quantity=_parse_int(raw.get('quantity'), 'quantity'),
            unit_price_override=_parse_decimal(raw.get('unit_price'), 'unit_price'),
            discount_percentage=_parse_decimal(raw.get('discount_percentage'), 'discount_percentage'),
            tax_percentage=_parse_decimal(raw.get('tax_percentage'), 'tax_percentage')
        ))
    return lines


def _parse_int(value, field_name: str, required: bool = True) -> Optional[int]:
    if value is None:
        if required:
            raise ValidationError(f'{field_name} is required', field_name)
        return None
    if isinstance(value, bool):
        raise ValidationError(f'{field_name} must be an integer', field_name)
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field_name} must be an integer', field_name)
    if isinstance(value, float) and parsed != value:
        raise ValidationError(f'{field_name} must be an integer', field_name)
    return parsed


def _parse_decimal(value, field_name: str) -> Optional[Decimal]:
    if value is None or value == '':
        return None
    try:
        return money.to_decimal(value)
    except ValueError:
        raise ValidationError(f'{field_name} must be a number', field_name)


# ============================================================================
# PUBLIC OPERATIONS
# ============================================================================

def create_sale(session, request: CreateSaleRequest) -> Sale:
    """
    Create a PENDING sale in a single transaction.

    Steps:
        1. Validate lines, customer and payment method
        2. Lock product rows and verify stock for the aggregate quantities
        3. Snapshot prices and compute line amounts
        4. Apply auto promotions, then the coupon
        5. Recompute totals, decrement stock, commit

    Raises:
        ValidationError, NotFoundError, BusinessLogicError,
        InsufficientStockError, InvalidCouponError
    """
    try:
        payment_method = _validate_request(request)
        customer = _get_customer(session, request.customer_id)

        quantities = _aggregate_quantities(request.lines)
        products = _lock_products(session, list(quantities))
        _check_products(products, quantities)
        _check_stock(products, quantities)

        now = datetime.now()
        sale = Sale(
            sale_number=_generate_sale_number(now),
            customer_id=customer.id if customer else None,
            status=SaleStatus.PENDING,
            payment_method=payment_method,
            payment_status=PaymentStatus.PENDING,
            shipping_cost=money.quantize(request.shipping_cost),
            notes=request.notes,
            sale_date=now
        )
        _build_lines(sale, request.lines, products)

        evaluation = promotion_service.evaluate_promotions(
            session, customer, _promotion_base_amount(sale), request.coupon_code, now
        )
        session.add(sale)
        promotion_service.apply_promotions(session, sale, evaluation)
        sale.recalculate_totals()

        for product_id, qty in quantities.items():
            products[product_id].adjust_stock(-qty)

        session.commit()

    except OrderDeskError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        logger.exception('Unexpected error creating sale')
        raise OrderDeskError('Internal error while creating sale') from e

    logger.info(
        f"Sale {sale.sale_number} (id={sale.id}) created: total={sale.total}, "
        f"discount={sale.discount_amount}, lines={len(sale.lines)}"
    )
    invalidate_reports()
    return sale


def update_sale(session, sale_id: int, lines: List[LineRequest], coupon_code: Optional[str] = None) -> Sale:
    """
    Replace the lines of a PENDING sale.

    Old stock is restored and old promotion usage released before the new
    lines go through the same validation, stock check and promotion pipeline
    as a create, so the net effect equals a single create. Without a
    coupon_code the sale keeps its current coupon; an empty string drops it.
    """
    try:
        sale = _get_sale_for_update(session, sale_id)
        if not sale.is_editable:
            raise BusinessLogicError(
                f'Sale #{sale_id} is {sale.status.value} and can no longer be modified',
                status_code=409,
                payload={'error_code': 'SALE_NOT_EDITABLE', 'sale_id': sale_id}
            )

        if coupon_code is None:
            coupon_code = sale.coupon_code
        coupon_code = coupon_code or None

        new_request = CreateSaleRequest(
            lines=lines,
            customer_id=sale.customer_id,
            payment_method=sale.payment_method,
            coupon_code=coupon_code,
            shipping_cost=sale.shipping_cost
        )
        _validate_request(new_request)
        customer = _get_customer(session, sale.customer_id)

        old_quantities = _aggregate_quantities(sale.lines)
        new_quantities = _aggregate_quantities(lines)
        products = _lock_products(session, sorted(set(old_quantities) | set(new_quantities)))
        _check_products(products, new_quantities)

        # Undo the previous version of the order
        for product_id, qty in old_quantities.items():
            products[product_id].adjust_stock(qty)
        promotion_service.release_promotions(session, sale)
        sale.lines.clear()
        session.flush()

        _check_stock(products, new_quantities)
        _build_lines(sale, lines, products)

        evaluation = promotion_service.evaluate_promotions(
            session, customer, _promotion_base_amount(sale), coupon_code
        )
        promotion_service.apply_promotions(session, sale, evaluation)
        sale.recalculate_totals()

        for product_id, qty in new_quantities.items():
            products[product_id].adjust_stock(-qty)

        session.commit()

    except OrderDeskError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        logger.exception(f'Unexpected error updating sale {sale_id}')
        raise OrderDeskError('Internal error while updating sale') from e

    logger.info(f"Sale id={sale_id} updated: total={sale.total}, lines={len(sale.lines)}")
    invalidate_reports()
    return sale


def complete_sale(session, sale_id: int) -> Sale:
    """
    PENDING -> COMPLETED.

    Credits loyalty points, updates the customer's running totals and the
    lifetime statistics of every sold product.
    """
    try:
        sale = _get_sale_for_update(session, sale_id)
        if not sale.can_transition_to(SaleStatus.COMPLETED):
            raise InvalidStateTransitionError(sale_id, sale.status, SaleStatus.COMPLETED)

        now = datetime.now()
        sale.status = SaleStatus.COMPLETED
        sale.completed_at = now
        sale.payment_status = PaymentStatus.PAID
        sale.loyalty_points_earned = compute_loyalty_points(sale.total)

        if sale.customer_id is not None:
            customer = _lock_customer(session, sale.customer_id)
            customer.record_purchase(sale.total, now)
            customer.add_loyalty_points(sale.loyalty_points_earned)

        products = _lock_products(session, sorted({line.product_id for line in sale.lines}))
        for line in sale.lines:
            products[line.product_id].record_sale(line.quantity, line.line_total, now)

        session.commit()

    except OrderDeskError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        logger.exception(f'Unexpected error completing sale {sale_id}')
        raise OrderDeskError('Internal error while completing sale') from e

    logger.info(f"Sale id={sale_id} completed: total={sale.total}, points={sale.loyalty_points_earned}")
    invalidate_reports()
    return sale


def cancel_sale(session, sale_id: int) -> Sale:
    """
    PENDING|COMPLETED -> CANCELLED.

    Restores stock. A completed sale additionally gives back its loyalty
    points and is removed from the customer totals and product statistics.
    Refused while an active return references the sale.
    """
    try:
        sale = _get_sale_for_update(session, sale_id)
        if not sale.can_transition_to(SaleStatus.CANCELLED):
            raise InvalidStateTransitionError(sale_id, sale.status, SaleStatus.CANCELLED)

        active_returns = session.query(func.count(Return.id)).filter(
            Return.sale_id == sale_id,
            Return.status.notin_(INACTIVE_RETURN_STATUSES)
        ).scalar()
        if active_returns:
            logger.warning(f"Refusing to cancel sale id={sale_id}: {active_returns} active return(s)")
            raise DataIntegrityError.sale_has_returns(sale_id, active_returns)

        was_completed = sale.status == SaleStatus.COMPLETED
        quantities = _aggregate_quantities(sale.lines)
        products = _lock_products(session, list(quantities))
        for product_id, qty in quantities.items():
            products[product_id].adjust_stock(qty)

        if was_completed:
            previous_sold_at = {pid: _previous_sold_at(session, sale, pid) for pid in quantities}
            for line in sale.lines:
                products[line.product_id].reverse_sale(
                    line.quantity, line.line_total, previous_sold_at[line.product_id]
                )

            if sale.customer_id is not None:
                customer = _lock_customer(session, sale.customer_id)
                customer.add_loyalty_points(-(sale.loyalty_points_earned or 0))
                customer.reverse_purchase(sale.total, _previous_purchase_at(session, sale))
            sale.payment_status = PaymentStatus.REFUNDED

        sale.status = SaleStatus.CANCELLED
        sale.cancelled_at = datetime.now()

        session.commit()

    except OrderDeskError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        logger.exception(f'Unexpected error cancelling sale {sale_id}')
        raise OrderDeskError('Internal error while cancelling sale') from e

    logger.info(f"Sale id={sale_id} cancelled (was_completed={was_completed})")
    invalidate_reports()
    return sale


def get_sale(session, sale_id: int) -> Sale:
    sale = session.query(Sale).filter(Sale.id == sale_id).first()
    if not sale:
        raise NotFoundError(f'Sale #{sale_id} not found')
    return sale


def preview_sale_totals(session, request: CreateSaleRequest) -> Dict[str, Any]:
    """
    Compute what create_sale would charge, without locking or writing.

    Stock is not checked; promotions are evaluated but their usage counters
    are left untouched.
    """
    try:
        _validate_request(request)
        customer = _get_customer(session, request.customer_id)

        quantities = _aggregate_quantities(request.lines)
        products = {
            p.id: p for p in session.query(Product).filter(Product.id.in_(list(quantities))).all()
        }
        _check_products(products, quantities)

        sale = Sale(shipping_cost=money.quantize(request.shipping_cost))
        _build_lines(sale, request.lines, products)

        evaluation = promotion_service.evaluate_promotions(
            session, customer, _promotion_base_amount(sale), request.coupon_code
        )
        sale.promotion_discount_amount = evaluation.total_discount
        sale.recalculate_totals()

        return {
            'subtotal': sale.subtotal,
            'discount_amount': sale.discount_amount,
            'promotion_discount_amount': sale.promotion_discount_amount,
            'tax_amount': sale.tax_amount,
            'shipping_cost': sale.shipping_cost,
            'total': sale.total,
            'net_revenue': sale.net_revenue,
            'loyalty_points': compute_loyalty_points(sale.total),
            'promotions': [
                {
                    'promotion_id': c.promotion.id,
                    'name': c.promotion.name,
                    'source': c.source.value,
                    'discount_amount': c.discount,
                }
                for c in evaluation.candidates
            ],
        }
    finally:
        # Release the read transaction (and the SQLite write lock it holds)
        session.rollback()


def compute_loyalty_points(amount) -> int:
    """One point per full spend unit (default 10); absent amounts earn nothing."""
    spend_per_point = DEFAULT_SPEND_PER_POINT
    if has_app_context():
        spend_per_point = current_app.config.get('LOYALTY_SPEND_PER_POINT', DEFAULT_SPEND_PER_POINT)
    return max(money.floor_divide(amount, spend_per_point), 0)


# ============================================================================
# HELPERS
# ============================================================================

def _validate_request(request: CreateSaleRequest) -> Optional[str]:
    """Validate request data; returns the normalized payment method."""
    if not request.lines:
        raise ValidationError('Sale must contain at least one item', 'lines')

    for line in request.lines:
        if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity <= 0:
            raise ValidationError('Item quantity must be a positive integer', 'quantity')
        for name in ('discount_percentage', 'tax_percentage'):
            value = _parse_decimal(getattr(line, name), name)
            if value is not None and not (0 <= value <= 100):
                raise ValidationError(f'{name} must be between 0 and 100', name)
        unit_price = _parse_decimal(line.unit_price_override, 'unit_price')
        if unit_price is not None and money.is_negative(unit_price):
            raise ValidationError('unit_price cannot be negative', 'unit_price')

    shipping_cost = _parse_decimal(request.shipping_cost, 'shipping_cost')
    if shipping_cost is not None and money.is_negative(shipping_cost):
        raise ValidationError('shipping_cost cannot be negative', 'shipping_cost')

    try:
        return normalize_payment_method(request.payment_method)
    except ValueError as e:
        raise ValidationError(str(e), 'payment_method')


def _get_customer(session, customer_id: Optional[int]) -> Optional[Customer]:
    if customer_id is None:
        return None
    customer = session.query(Customer).filter(Customer.id == customer_id).first()
    if not customer:
        raise NotFoundError(f'Customer #{customer_id} not found')
    return customer


def _aggregate_quantities(lines) -> Dict[int, int]:
    """Total quantity per product id, in first-seen order."""
    quantities: Dict[int, int] = OrderedDict()
    for line in lines:
        quantities[line.product_id] = quantities.get(line.product_id, 0) + line.quantity
    return quantities


def _lock_products(session, product_ids: List[int]) -> Dict[int, Product]:
    """Lock product rows FOR UPDATE (ordered by id) and return them by id."""
    if not product_ids:
        return {}
    rows = session.query(Product).filter(
        Product.id.in_(product_ids)
    ).order_by(Product.id).with_for_update().populate_existing().all()
    return {p.id: p for p in rows}


def _lock_customer(session, customer_id: int) -> Customer:
    customer = session.query(Customer).filter(
        Customer.id == customer_id
    ).with_for_update().populate_existing().first()
    if not customer:
        raise NotFoundError(f'Customer #{customer_id} not found')
    return customer


def _get_sale_for_update(session, sale_id: int) -> Sale:
    sale = session.query(Sale).filter(
        Sale.id == sale_id
    ).with_for_update().populate_existing().first()
    if not sale:
        raise NotFoundError(f'Sale #{sale_id} not found')
    return sale


def _check_products(products: Dict[int, Product], quantities: Dict[int, int]) -> None:
    for product_id in quantities:
        product = products.get(product_id)
        if product is None:
            raise NotFoundError(f'Product #{product_id} not found')
        if not product.is_active:
            raise BusinessLogicError(f'Product "{product.name}" is not active')


def _check_stock(products: Dict[int, Product], quantities: Dict[int, int]) -> None:
    """Every product must cover the total requested across all lines."""
    for product_id, requested in quantities.items():
        product = products[product_id]
        available = product.stock_quantity or 0
        if available < requested:
            raise InsufficientStockError(product_id, requested, available, product.name)


def _build_lines(sale: Sale, line_requests: List[LineRequest], products: Dict[int, Product]) -> None:
    for req in line_requests:
        product = products[req.product_id]
        unit_price = req.unit_price_override if req.unit_price_override is not None else product.price
        line = SaleLine(
            product_id=product.id,
            quantity=req.quantity,
            unit_price=money.quantize(unit_price),
            discount_percentage=money.quantize(req.discount_percentage),
            tax_percentage=money.quantize(req.tax_percentage)
        )
        line.calculate()
        sale.lines.append(line)


def _promotion_base_amount(sale: Sale) -> Decimal:
    """Amount promotions are computed on: line subtotals after line discounts."""
    return money.subtract(
        money.total(line.subtotal for line in sale.lines),
        money.total(line.discount_amount for line in sale.lines)
    )


def _previous_purchase_at(session, sale: Sale) -> Optional[datetime]:
    """Most recent completion among the customer's other completed sales."""
    return session.query(func.max(Sale.completed_at)).filter(
        Sale.customer_id == sale.customer_id,
        Sale.status == SaleStatus.COMPLETED,
        Sale.id != sale.id
    ).scalar()


def _previous_sold_at(session, sale: Sale, product_id: int) -> Optional[datetime]:
    """Most recent completion among other completed sales containing the product."""
    return session.query(func.max(Sale.completed_at)).join(
        SaleLine, SaleLine.sale_id == Sale.id
    ).filter(
        SaleLine.product_id == product_id,
        Sale.status == SaleStatus.COMPLETED,
        Sale.id != sale.id
    ).scalar()


def _generate_sale_number(now: datetime) -> str:
    return f"SO-{now:%Y%m%d}-{uuid.uuid4().hex[:8].upper()}"
