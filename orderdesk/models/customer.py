"""Customer model."""
from sqlalchemy import Column, String, Text, Integer, Numeric, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from orderdesk.database import Base, IdType
from orderdesk.utils import money

VIP_SPEND_THRESHOLD = 10000
PREMIUM_SPEND_THRESHOLD = 5000
LOYAL_ORDER_THRESHOLD = 10


def customer_segment(total_spent, order_count) -> str:
    """
    Derive the customer segment from spend and order history.

    Segments are never stored; they are recomputed whenever needed.
    """
    total_spent = money.to_decimal(total_spent)
    if total_spent > VIP_SPEND_THRESHOLD:
        return 'VIP'
    if total_spent > PREMIUM_SPEND_THRESHOLD:
        return 'Premium'
    if (order_count or 0) > LOYAL_ORDER_THRESHOLD:
        return 'Loyal'
    return 'Regular'


class Customer(Base):
    """Customer with running purchase totals and loyalty balance."""

    __tablename__ = 'customer'

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=True, unique=True)
    phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)
    billing_address = Column(Text, nullable=True)

    # Running totals maintained by the sales engine. Legacy rows may hold NULL.
    total_purchases = Column(Numeric(14, 2), nullable=True, default=0)
    order_count = Column(Integer, nullable=True, default=0)
    loyalty_points = Column(Integer, nullable=True, default=0)
    last_purchase_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships (no cascade: the integrity guard decides what goes)
    sales = relationship('Sale', back_populates='customer')
    returns = relationship('Return', back_populates='customer')

    def __repr__(self):
        return f"<Customer(id={self.id}, name='{self.name}')>"

    @property
    def segment(self) -> str:
        return customer_segment(self.total_purchases, self.order_count)

    @property
    def has_purchase_history(self) -> bool:
        return (self.order_count or 0) > 0 or money.is_positive(self.total_purchases)

    def add_loyalty_points(self, points: int) -> None:
        """Add (or, with a negative value, remove) loyalty points; never below zero."""
        self.loyalty_points = max((self.loyalty_points or 0) + points, 0)

    def record_purchase(self, amount, purchased_at) -> None:
        self.total_purchases = money.add(self.total_purchases, amount)
        self.order_count = (self.order_count or 0) + 1
        self.last_purchase_at = purchased_at

    def reverse_purchase(self, amount, previous_purchase_at=None) -> None:
        self.total_purchases = money.clamp_non_negative(money.subtract(self.total_purchases, amount))
        self.order_count = max((self.order_count or 0) - 1, 0)
        self.last_purchase_at = previous_purchase_at
