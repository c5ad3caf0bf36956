"""Product model."""
from sqlalchemy import Column, String, Boolean, Integer, Numeric, DateTime, ForeignKey, true
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from orderdesk.database import Base, IdType
from orderdesk.utils import money


class Product(Base):
    """Catalog item with on-hand stock and lifetime sales statistics."""

    __tablename__ = 'product'

    id = Column(IdType, primary_key=True, autoincrement=True)
    sku = Column(String(64), nullable=True, unique=True)
    name = Column(String(200), nullable=False)
    category_id = Column(IdType, ForeignKey('category.id'), nullable=True)
    price = Column(Numeric(12, 2), nullable=False)
    cost_price = Column(Numeric(12, 2), nullable=True)
    stock_quantity = Column(Integer, nullable=False, default=0, server_default='0')
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())

    # Lifetime statistics, updated when a sale completes (and reversed on cancel)
    total_sold = Column(Integer, nullable=False, default=0, server_default='0')
    total_revenue = Column(Numeric(14, 2), nullable=True, default=0)
    last_sold_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    category = relationship('Category', back_populates='products')

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', stock={self.stock_quantity})>"

    def adjust_stock(self, delta: int) -> None:
        """Apply a signed stock delta. Callers must hold the row lock."""
        new_qty = (self.stock_quantity or 0) + delta
        if new_qty < 0:
            raise ValueError(f'Stock for product {self.id} cannot go below zero')
        self.stock_quantity = new_qty

    def record_sale(self, quantity: int, revenue, sold_at) -> None:
        self.total_sold = (self.total_sold or 0) + quantity
        self.total_revenue = money.add(self.total_revenue, revenue)
        self.last_sold_at = sold_at

    def reverse_sale(self, quantity: int, revenue, previous_sold_at=None) -> None:
        self.total_sold = max((self.total_sold or 0) - quantity, 0)
        self.total_revenue = money.clamp_non_negative(money.subtract(self.total_revenue, revenue))
        self.last_sold_at = previous_sold_at
