"""
Promotion eligibility and application.

Promotions go through a filter -> rank -> select pipeline:

* filter: ``is_promotion_eligible`` (active window, usage limit, minimum order
  amount, customer eligibility, coupon match);
* rank: auto-apply candidates by descending discount, ties by promotion id;
* select: the single best non-stackable candidate plus every stackable one,
  with the coupon candidate evaluated after the auto pass. The cumulative
  discount never exceeds the order amount.
"""
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from orderdesk.models import (
    Promotion, PromotionType, CustomerEligibility, AppliedPromotion, Customer
)
from orderdesk.exceptions import InvalidCouponError
from orderdesk.utils import money

logger = logging.getLogger(__name__)


class PromotionSource(enum.Enum):
    """How a promotion reached the order."""
    AUTO = "AUTO"
    COUPON = "COUPON"


@dataclass(frozen=True)
class PromotionCandidate:
    promotion: Promotion
    source: PromotionSource
    discount: Decimal


@dataclass
class PromotionEvaluation:
    """Selected promotions for one order amount."""
    order_amount: Decimal
    candidates: List[PromotionCandidate] = field(default_factory=list)
    total_discount: Decimal = money.ZERO

    @property
    def coupon_code(self) -> Optional[str]:
        for candidate in self.candidates:
            if candidate.source == PromotionSource.COUPON:
                return candidate.promotion.coupon_code
        return None


def customer_qualifies(eligibility: CustomerEligibility, customer: Optional[Customer]) -> bool:
    """Check a customer against a promotion's eligibility rule; no customer only matches ALL."""
    if eligibility == CustomerEligibility.ALL:
        return True
    if customer is None:
        return False
    if eligibility == CustomerEligibility.NEW_CUSTOMERS:
        return not customer.has_purchase_history
    if eligibility == CustomerEligibility.RETURNING_CUSTOMERS:
        return customer.has_purchase_history
    if eligibility == CustomerEligibility.VIP_ONLY:
        return customer.segment == 'VIP'
    if eligibility == CustomerEligibility.PREMIUM_ONLY:
        return customer.segment == 'Premium'
    return False


def is_promotion_eligible(
    promotion: Promotion,
    customer: Optional[Customer],
    order_amount,
    now: Optional[datetime] = None,
    coupon_code: Optional[str] = None
) -> bool:
    """
    Decide whether a promotion applies to an order.

    Args:
        promotion: Candidate promotion
        customer: Ordering customer, or None for anonymous orders
        order_amount: Amount the discount is computed on
        now: Evaluation instant (defaults to the current time)
        coupon_code: Code supplied with the order; required (exact,
            case-sensitive match) for promotions that are not auto-applied

    Returns:
        bool: True when every rule passes
    """
    now = now or datetime.now()

    if not promotion.is_currently_active(now):
        return False
    if promotion.is_usage_limit_reached():
        return False
    if not money.optional_at_least(order_amount, promotion.minimum_order_amount):
        return False
    if not customer_qualifies(promotion.customer_eligibility, customer):
        return False
    if not promotion.auto_apply:
        return coupon_code is not None and promotion.coupon_code == coupon_code
    return True


def calculate_promotion_discount(promotion: Promotion, order_amount) -> Decimal:
    """
    Discount granted by a promotion on an order amount.

    PERCENTAGE: amount * value / 100 (2dp, HALF_UP). FIXED_AMOUNT: value.
    Capped by maximum_discount_amount and by the order amount; never negative.
    """
    order_amount = money.clamp_non_negative(order_amount)

    if promotion.type == PromotionType.PERCENTAGE:
        discount = money.percentage_of(order_amount, promotion.discount_value)
    else:
        discount = money.quantize(promotion.discount_value)

    if promotion.maximum_discount_amount is not None:
        discount = money.min_amount(discount, promotion.maximum_discount_amount)

    discount = money.min_amount(discount, order_amount)
    return money.quantize(money.clamp_non_negative(discount))


def find_active_promotions(session, now: Optional[datetime] = None) -> List[Promotion]:
    """Active promotions whose validity window contains now."""
    now = now or datetime.now()
    return session.query(Promotion).filter(
        Promotion.is_active.is_(True),
        Promotion.start_date <= now,
        Promotion.end_date >= now
    ).order_by(Promotion.id).all()


def find_eligible_promotions(session, customer: Optional[Customer], order_amount,
                             now: Optional[datetime] = None) -> List[Promotion]:
    """Auto-apply promotions that pass every eligibility rule."""
    now = now or datetime.now()
    return [
        p for p in find_active_promotions(session, now)
        if p.auto_apply and is_promotion_eligible(p, customer, order_amount, now)
    ]


def validate_coupon_code(session, coupon_code: str, customer: Optional[Customer], order_amount,
                         now: Optional[datetime] = None) -> Promotion:
    """
    Resolve a coupon code to its promotion.

    Raises:
        InvalidCouponError: unknown, inactive, expired, exhausted or not
            applicable to this customer/amount
    """
    now = now or datetime.now()

    promotion = session.query(Promotion).filter(Promotion.coupon_code == coupon_code).first()
    if promotion is None:
        raise InvalidCouponError(coupon_code, 'does not exist')
    if not promotion.is_currently_active(now):
        raise InvalidCouponError(coupon_code, 'is not active')
    if promotion.is_usage_limit_reached():
        raise InvalidCouponError(coupon_code, 'has reached its usage limit')
    if not money.optional_at_least(order_amount, promotion.minimum_order_amount):
        raise InvalidCouponError(
            coupon_code,
            f'requires a minimum order amount of {money.quantize(promotion.minimum_order_amount)}'
        )
    if not customer_qualifies(promotion.customer_eligibility, customer):
        raise InvalidCouponError(coupon_code, 'is not available for this customer')
    return promotion


def rank_candidates(candidates: List[PromotionCandidate]) -> List[PromotionCandidate]:
    return sorted(candidates, key=lambda c: (-c.discount, c.promotion.id))


def select_promotions(order_amount, auto_candidates: List[PromotionCandidate],
                      coupon_candidate: Optional[PromotionCandidate] = None) -> PromotionEvaluation:
    """
    Pick the promotions to apply.

    Keeps the best non-stackable candidate (auto or coupon) and every
    stackable one. Discounts are clipped in order so the running total never
    exceeds the order amount; candidates left with nothing to discount are
    dropped.
    """
    order_amount = money.quantize(money.clamp_non_negative(order_amount))

    ordered = rank_candidates(auto_candidates)
    if coupon_candidate is not None:
        ordered.append(coupon_candidate)

    best_exclusive = None
    for candidate in ordered:
        if candidate.promotion.stackable:
            continue
        if best_exclusive is None or candidate.discount > best_exclusive.discount:
            best_exclusive = candidate

    chosen = [c for c in ordered if c.promotion.stackable or c is best_exclusive]

    evaluation = PromotionEvaluation(order_amount=order_amount)
    remaining = order_amount
    for candidate in chosen:
        applied = money.min_amount(candidate.discount, remaining)
        if not money.is_positive(applied):
            continue
        evaluation.candidates.append(
            PromotionCandidate(candidate.promotion, candidate.source, applied)
        )
        remaining = money.subtract(remaining, applied)

    evaluation.total_discount = money.quantize(money.subtract(order_amount, remaining))
    return evaluation


def evaluate_promotions(session, customer: Optional[Customer], order_amount,
                        coupon_code: Optional[str] = None,
                        now: Optional[datetime] = None) -> PromotionEvaluation:
    """
    Run the auto-apply pass, then the coupon pass, and select the result.

    Raises:
        InvalidCouponError: a coupon code was supplied but cannot be used
    """
    now = now or datetime.now()

    auto_candidates = [
        PromotionCandidate(p, PromotionSource.AUTO, calculate_promotion_discount(p, order_amount))
        for p in find_eligible_promotions(session, customer, order_amount, now)
    ]

    coupon_candidate = None
    if coupon_code:
        promotion = validate_coupon_code(session, coupon_code, customer, order_amount, now)
        if not any(c.promotion.id == promotion.id for c in auto_candidates):
            coupon_candidate = PromotionCandidate(
                promotion, PromotionSource.COUPON, calculate_promotion_discount(promotion, order_amount)
            )

    evaluation = select_promotions(order_amount, auto_candidates, coupon_candidate)
    logger.debug(
        "Promotion evaluation for amount %s: %s -> discount %s",
        evaluation.order_amount,
        [(c.promotion.id, c.source.value, str(c.discount)) for c in evaluation.candidates],
        evaluation.total_discount
    )
    return evaluation


def _lock_promotions(session, promotion_ids: List[int]):
    """Lock promotion rows FOR UPDATE (ordered by id) and refresh their counters."""
    if not promotion_ids:
        return {}
    rows = session.query(Promotion).filter(
        Promotion.id.in_(promotion_ids)
    ).order_by(Promotion.id).with_for_update().populate_existing().all()
    return {p.id: p for p in rows}


def apply_promotions(session, sale, evaluation: PromotionEvaluation) -> List[AppliedPromotion]:
    """
    Record the selected promotions on a sale and bump their usage counters.

    Usage limits are re-checked on the locked rows; a promotion exhausted by a
    concurrent order since evaluation is refused. Does not commit.

    Raises:
        InvalidCouponError: a selected promotion reached its usage limit
    """
    locked = _lock_promotions(session, sorted({c.promotion.id for c in evaluation.candidates}))

    applied = []
    running_amount = evaluation.order_amount
    for candidate in evaluation.candidates:
        promotion = locked[candidate.promotion.id]
        if promotion.is_usage_limit_reached():
            raise InvalidCouponError(
                promotion.coupon_code or promotion.name, 'has reached its usage limit'
            )
        promotion.increment_usage()

        final_amount = money.subtract(running_amount, candidate.discount)
        record = AppliedPromotion(
            promotion_id=promotion.id,
            promotion_name=promotion.name,
            promotion_type=promotion.type.value,
            coupon_code=promotion.coupon_code if candidate.source == PromotionSource.COUPON else None,
            discount_amount=candidate.discount,
            discount_percentage=(
                promotion.discount_value if promotion.type == PromotionType.PERCENTAGE else None
            ),
            original_amount=running_amount,
            final_amount=final_amount,
            is_auto_applied=candidate.source == PromotionSource.AUTO,
            applied_at=datetime.now()
        )
        sale.applied_promotions.append(record)
        applied.append(record)
        running_amount = final_amount

    sale.promotion_discount_amount = evaluation.total_discount
    sale.coupon_code = evaluation.coupon_code
    return applied


def release_promotions(session, sale) -> int:
    """
    Undo the promotions applied to a sale: decrement usage counters and
    remove the AppliedPromotion rows. Does not commit.

    Returns:
        int: number of promotion applications released
    """
    records = list(sale.applied_promotions)
    locked = _lock_promotions(session, sorted({r.promotion_id for r in records}))
    for record in records:
        promotion = locked.get(record.promotion_id)
        if promotion is not None:
            promotion.decrement_usage()
        sale.applied_promotions.remove(record)

    sale.promotion_discount_amount = money.ZERO
    sale.coupon_code = None
    return len(records)
