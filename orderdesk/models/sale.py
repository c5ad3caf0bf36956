"""Sale model."""
from datetime import datetime
from sqlalchemy import Column, String, Integer, Numeric, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from orderdesk.database import Base, IdType
from orderdesk.utils import money
import enum


class SaleStatus(enum.Enum):
    """Sale status enum."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentStatus(enum.Enum):
    """Payment status enum."""
    PENDING = "PENDING"
    PAID = "PAID"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    REFUNDED = "REFUNDED"
    FAILED = "FAILED"


class DeliveryStatus(enum.Enum):
    """Delivery status enum."""
    NOT_SHIPPED = "NOT_SHIPPED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    RETURNED = "RETURNED"


class PaymentMethod(enum.Enum):
    """Payment method enum."""
    CASH = "CASH"
    CREDIT_CARD = "CREDIT_CARD"
    DEBIT_CARD = "DEBIT_CARD"
    BANK_TRANSFER = "BANK_TRANSFER"
    CHECK = "CHECK"
    PAYPAL = "PAYPAL"
    OTHER = "OTHER"


PAYMENT_METHODS = frozenset(m.value for m in PaymentMethod)

# Allowed lifecycle moves; CANCELLED is terminal
SALE_TRANSITIONS = {
    SaleStatus.PENDING: {SaleStatus.COMPLETED, SaleStatus.CANCELLED},
    SaleStatus.COMPLETED: {SaleStatus.CANCELLED},
    SaleStatus.CANCELLED: set(),
}


def normalize_payment_method(value):
    """
    Normalize payment method value to string for DB storage.

    Args:
        value: None, PaymentMethod enum, or string (case-insensitive)

    Returns:
        str or None: canonical method name, None when absent

    Raises:
        ValueError: If value is not a known payment method
    """
    if value is None:
        return None

    if isinstance(value, PaymentMethod):
        return value.value

    normalized = str(value).upper().strip().replace(' ', '_')
    if not normalized:
        return None
    if normalized in PAYMENT_METHODS:
        return normalized
    raise ValueError(
        f"Invalid payment method: {value}. Must be one of {', '.join(sorted(PAYMENT_METHODS))}."
    )


class Sale(Base):
    """Sale order: lines, applied promotions and the computed money fields."""

    __tablename__ = 'sale'

    id = Column(IdType, primary_key=True, autoincrement=True)
    sale_number = Column(String(40), nullable=False, unique=True, index=True)
    customer_id = Column(IdType, ForeignKey('customer.id'), nullable=True)
    status = Column(Enum(SaleStatus, name='sale_status'), nullable=False, default=SaleStatus.PENDING)

    # Money (total/net_revenue are always computed, never NULL for new rows)
    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(12, 2), nullable=True, default=0)
    promotion_discount_amount = Column(Numeric(12, 2), nullable=True, default=0)
    tax_amount = Column(Numeric(12, 2), nullable=True, default=0)
    shipping_cost = Column(Numeric(12, 2), nullable=True, default=0)
    total = Column(Numeric(12, 2), nullable=False, default=0)
    net_revenue = Column(Numeric(12, 2), nullable=True, default=0)

    payment_method = Column(String(30), nullable=True)
    payment_status = Column(Enum(PaymentStatus, name='payment_status'), nullable=False, default=PaymentStatus.PENDING)
    delivery_status = Column(Enum(DeliveryStatus, name='delivery_status'), nullable=False, default=DeliveryStatus.NOT_SHIPPED)

    loyalty_points_earned = Column(Integer, nullable=False, default=0, server_default='0')
    loyalty_points_used = Column(Integer, nullable=False, default=0, server_default='0')
    coupon_code = Column(String(64), nullable=True)
    notes = Column(String(500), nullable=True)

    sale_date = Column(DateTime, nullable=False, default=datetime.now, index=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    customer = relationship('Customer', back_populates='sales')
    lines = relationship('SaleLine', back_populates='sale', cascade='all, delete-orphan', order_by='SaleLine.id')
    applied_promotions = relationship(
        'AppliedPromotion', back_populates='sale', cascade='all, delete-orphan', order_by='AppliedPromotion.id'
    )
    returns = relationship('Return', back_populates='sale')

    def __repr__(self):
        return f"<Sale(id={self.id}, number='{self.sale_number}', total={self.total}, status={self.status.value})>"

    def can_transition_to(self, new_status: SaleStatus) -> bool:
        return new_status in SALE_TRANSITIONS.get(self.status, set())

    @property
    def is_editable(self) -> bool:
        return self.status == SaleStatus.PENDING

    def recalculate_totals(self) -> None:
        """
        Recompute every money field from the lines and the promotion discount.

        discount_amount = line discounts + promotion discount, capped at subtotal.
        total = subtotal - discount_amount + tax_amount + shipping_cost.
        """
        subtotal = money.total(line.subtotal for line in self.lines)
        line_discounts = money.total(line.discount_amount for line in self.lines)
        tax = money.total(line.tax_amount for line in self.lines)

        discount = money.min_amount(money.add(line_discounts, self.promotion_discount_amount), subtotal)
        shipping = money.to_decimal(self.shipping_cost)

        self.subtotal = money.quantize(subtotal)
        self.discount_amount = money.quantize(discount)
        self.tax_amount = money.quantize(tax)
        self.shipping_cost = money.quantize(shipping)
        self.net_revenue = money.quantize(money.subtract(subtotal, discount))
        self.total = money.quantize(
            money.clamp_non_negative(money.add(money.subtract(subtotal, discount), tax, shipping))
        )
