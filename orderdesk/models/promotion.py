"""Promotion model."""
from sqlalchemy import Column, String, Text, Boolean, Integer, Numeric, DateTime, Enum, true, false
from sqlalchemy.sql import func
from orderdesk.database import Base, IdType
import enum


class PromotionType(enum.Enum):
    """Promotion type enum."""
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"


class CustomerEligibility(enum.Enum):
    """Which customers a promotion applies to."""
    ALL = "ALL"
    NEW_CUSTOMERS = "NEW_CUSTOMERS"
    RETURNING_CUSTOMERS = "RETURNING_CUSTOMERS"
    VIP_ONLY = "VIP_ONLY"
    PREMIUM_ONLY = "PREMIUM_ONLY"


class Promotion(Base):
    """Discount rule, applied automatically or through a coupon code."""

    __tablename__ = 'promotion'

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(Enum(PromotionType, name='promotion_type'), nullable=False)
    discount_value = Column(Numeric(12, 2), nullable=False)

    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())

    # NULL means "no minimum" and "no cap"
    minimum_order_amount = Column(Numeric(12, 2), nullable=True)
    maximum_discount_amount = Column(Numeric(12, 2), nullable=True)

    customer_eligibility = Column(
        Enum(CustomerEligibility, name='customer_eligibility'),
        nullable=False, default=CustomerEligibility.ALL
    )
    auto_apply = Column(Boolean, nullable=False, default=False, server_default=false())
    stackable = Column(Boolean, nullable=False, default=False, server_default=false())

    usage_limit = Column(Integer, nullable=True)
    usage_count = Column(Integer, nullable=False, default=0, server_default='0')
    coupon_code = Column(String(64), nullable=True, unique=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<Promotion(id={self.id}, name='{self.name}', type={self.type.value})>"

    def is_currently_active(self, now) -> bool:
        if not self.is_active:
            return False
        return self.start_date <= now <= self.end_date

    def is_usage_limit_reached(self) -> bool:
        if self.usage_limit is None:
            return False
        return (self.usage_count or 0) >= self.usage_limit

    def increment_usage(self) -> None:
        self.usage_count = (self.usage_count or 0) + 1

    def decrement_usage(self) -> None:
        self.usage_count = max((self.usage_count or 0) - 1, 0)
