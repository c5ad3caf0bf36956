"""
Return service with transactional logic.
Handles the lifecycle of customer returns against completed sales:
PENDING -> APPROVED -> REFUNDED, or PENDING -> REJECTED | CANCELLED.
Stock comes back only when the refund is processed.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Dict, Optional

from flask import current_app, has_app_context
from sqlalchemy import func

from orderdesk.models import (
    Product, Sale, SaleLine, SaleStatus, Return, ReturnItem, ReturnStatus, INACTIVE_RETURN_STATUSES
)
from orderdesk.exceptions import (
    OrderDeskError, ValidationError, BusinessLogicError, NotFoundError
)
from orderdesk.utils import money

logger = logging.getLogger(__name__)

DEFAULT_RETURN_POLICY_DAYS = 30


@dataclass
class ReturnItemRequest:
    sale_line_id: int
    quantity: int


def parse_items(raw_items) -> List[ReturnItemRequest]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError('items must be a non-empty list', 'items')

    items = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ValidationError('Each item must be an object', 'items')
        items.append(ReturnItemRequest(
            sale_line_id=_parse_int(raw.get('sale_line_id'), 'sale_line_id'),
            quantity=_parse_int(raw.get('quantity'), 'quantity')
        ))
    return items


def _parse_int(value, field_name: str) -> int:
    if value is None:
        raise ValidationError(f'{field_name} is required', field_name)
    if isinstance(value, bool):
        raise ValidationError(f'{field_name} must be an integer', field_name)
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field_name} must be an integer', field_name)
    if isinstance(value, float) and parsed != value:
        raise ValidationError(f'{field_name} must be an integer', field_name)
    return parsed


def return_policy_days() -> int:
    if has_app_context():
        return current_app.config.get('RETURN_POLICY_DAYS', DEFAULT_RETURN_POLICY_DAYS)
    return DEFAULT_RETURN_POLICY_DAYS


def is_within_return_period(sale_date: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """True up to and including sale_date + policy days; a sale without a date is never returnable."""
    if sale_date is None:
        return False
    now = now or datetime.now()
    return now <= sale_date + timedelta(days=return_policy_days())


# ============================================================================
# PUBLIC OPERATIONS
# ============================================================================

def create_return(session, sale_id: int, items: List[ReturnItemRequest], reason: Optional[str] = None) -> Return:
    """
    Open a PENDING return against a completed sale.

    Each item refers to one line of the sale. The quantity may not exceed
    what is left on that line after the sale's other active returns. The
    refund of an item is its share of the line total.

    Raises:
        ValidationError, NotFoundError, BusinessLogicError
    """
    try:
        if not items:
            raise ValidationError('Return must contain at least one item', 'items')

        sale = _get_sale_for_update(session, sale_id)
        if sale.status != SaleStatus.COMPLETED:
            raise BusinessLogicError(
                f'Only completed sales can be returned (sale #{sale_id} is {sale.status.value})',
                409, {'error_code': 'SALE_NOT_RETURNABLE'}
            )
        if not is_within_return_period(sale.sale_date):
            raise BusinessLogicError(
                f'Return request is outside the allowed return period of {return_policy_days()} days',
                payload={'error_code': 'RETURN_PERIOD_EXPIRED'}
            )

        lines = {line.id: line for line in sale.lines}
        already_returned = _returned_quantities(session, sale_id)
        requested: Dict[int, int] = {}

        now = datetime.now()
        sale_return = Return(
            sale_id=sale.id,
            customer_id=sale.customer_id,
            status=ReturnStatus.PENDING,
            reason=reason,
            return_number=_generate_return_number(now),
            created_at=now
        )

        for item in items:
            line = lines.get(item.sale_line_id)
            if line is None:
                raise ValidationError(
                    f'Sale line #{item.sale_line_id} does not belong to sale #{sale_id}', 'sale_line_id'
                )
            if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity <= 0:
                raise ValidationError('Return quantity must be a positive integer', 'quantity')

            requested[line.id] = requested.get(line.id, 0) + item.quantity
            returnable = line.quantity - already_returned.get(line.id, 0)
            if requested[line.id] > returnable:
                raise BusinessLogicError(
                    f'Invalid return quantity for sale line #{line.id}: '
                    f'requested {requested[line.id]}, returnable {returnable}',
                    payload={'error_code': 'INVALID_RETURN_QUANTITY', 'returnable': returnable}
                )

            sale_return.items.append(ReturnItem(
                sale_line_id=line.id,
                product_id=line.product_id,
                quantity=item.quantity,
                refund_amount=_item_refund(line, item.quantity)
            ))

        sale_return.refund_amount = money.quantize(money.total(i.refund_amount for i in sale_return.items))
        session.add(sale_return)
        session.commit()

    except OrderDeskError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        logger.exception(f'Unexpected error creating return for sale {sale_id}')
        raise OrderDeskError('Internal error while creating return') from e

    logger.info(
        f"Return {sale_return.return_number} created for sale id={sale_id}: "
        f"refund={sale_return.refund_amount}, items={len(sale_return.items)}"
    )
    return sale_return


def approve_return(session, return_id: int) -> Return:
    """PENDING -> APPROVED."""
    return _transition(session, return_id, 'approve', ReturnStatus.APPROVED)


def reject_return(session, return_id: int, rejection_reason: Optional[str] = None) -> Return:
    """PENDING -> REJECTED. The returned quantities become available again."""
    return _transition(session, return_id, 'reject', ReturnStatus.REJECTED, rejection_reason)


def cancel_return(session, return_id: int) -> Return:
    """PENDING -> CANCELLED."""
    return _transition(session, return_id, 'cancel', ReturnStatus.CANCELLED)


def process_refund(session, return_id: int) -> Return:
    """
    APPROVED -> REFUNDED.

    Puts every returned unit back in stock. Customer totals and product
    sales statistics are left as they are.
    """
    try:
        sale_return = _get_return_for_update(session, return_id)
        if sale_return.status != ReturnStatus.APPROVED:
            raise _invalid_status(sale_return, 'refund')

        quantities: Dict[int, int] = {}
        for item in sale_return.items:
            quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity

        rows = session.query(Product).filter(
            Product.id.in_(list(quantities))
        ).order_by(Product.id).with_for_update().populate_existing().all()
        for product in rows:
            product.adjust_stock(quantities[product.id])

        now = datetime.now()
        sale_return.status = ReturnStatus.REFUNDED
        sale_return.refunded_at = now
        session.commit()

    except OrderDeskError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        logger.exception(f'Unexpected error refunding return {return_id}')
        raise OrderDeskError('Internal error while processing refund') from e

    logger.info(f"Return id={return_id} refunded: amount={sale_return.refund_amount}")
    return sale_return


def get_return(session, return_id: int) -> Return:
    sale_return = session.get(Return, return_id)
    if not sale_return:
        raise NotFoundError(f'Return #{return_id} not found')
    return sale_return


def get_returns_by_customer(session, customer_id: int) -> List[Return]:
    return session.query(Return).filter(
        Return.customer_id == customer_id
    ).order_by(Return.created_at.desc(), Return.id.desc()).all()


# ============================================================================
# HELPERS
# ============================================================================

def _transition(session, return_id: int, action: str, target: ReturnStatus,
                rejection_reason: Optional[str] = None) -> Return:
    try:
        sale_return = _get_return_for_update(session, return_id)
        if not sale_return.is_pending:
            raise _invalid_status(sale_return, action)

        sale_return.status = target
        sale_return.processed_at = datetime.now()
        if rejection_reason:
            sale_return.rejection_reason = rejection_reason
        session.commit()

    except OrderDeskError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        logger.exception(f'Unexpected error during {action} of return {return_id}')
        raise OrderDeskError(f'Internal error while trying to {action} return') from e

    logger.info(f"Return id={return_id} -> {target.value}")
    return sale_return


def _invalid_status(sale_return: Return, action: str) -> BusinessLogicError:
    return BusinessLogicError(
        f'Cannot {action} return #{sale_return.id} in status {sale_return.status.value}',
        409,
        {'error_code': 'INVALID_RETURN_STATUS', 'current_status': sale_return.status.value}
    )


def _get_sale_for_update(session, sale_id: int) -> Sale:
    sale = session.query(Sale).filter(
        Sale.id == sale_id
    ).with_for_update().populate_existing().first()
    if not sale:
        raise NotFoundError(f'Sale #{sale_id} not found')
    return sale


def _get_return_for_update(session, return_id: int) -> Return:
    sale_return = session.query(Return).filter(
        Return.id == return_id
    ).with_for_update().populate_existing().first()
    if not sale_return:
        raise NotFoundError(f'Return #{return_id} not found')
    return sale_return


def _returned_quantities(session, sale_id: int) -> Dict[int, int]:
    """Quantity per sale line already claimed by the sale's active returns."""
    rows = session.query(ReturnItem.sale_line_id, func.sum(ReturnItem.quantity)).join(
        Return, Return.id == ReturnItem.return_id
    ).filter(
        Return.sale_id == sale_id,
        Return.status.notin_(INACTIVE_RETURN_STATUSES),
        ReturnItem.sale_line_id.isnot(None)
    ).group_by(ReturnItem.sale_line_id).all()
    return {line_id: int(qty or 0) for line_id, qty in rows}


def _item_refund(line: SaleLine, quantity: int) -> Decimal:
    """Pro-rata share of the line total for the returned units."""
    if quantity == line.quantity:
        return money.quantize(line.line_total)
    return money.divide(money.multiply(line.line_total, quantity), line.quantity)


def _generate_return_number(now: datetime) -> str:
    return f"RET-{now:%Y%m%d}-{uuid.uuid4().hex[:8].upper()}"
