"""Purchase Order Line model."""
from sqlalchemy import Column, Integer, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from orderdesk.database import Base, IdType


class PurchaseOrderLine(Base):
    """Purchase Order Line."""

    __tablename__ = 'purchase_order_line'

    id = Column(IdType, primary_key=True, autoincrement=True)
    purchase_order_id = Column(IdType, ForeignKey('purchase_order.id'), nullable=False)
    product_id = Column(IdType, ForeignKey('product.id'), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_cost = Column(Numeric(12, 2), nullable=False)

    # Relationships
    purchase_order = relationship('PurchaseOrder', back_populates='lines')
    product = relationship('Product')

    def __repr__(self):
        return f"<PurchaseOrderLine(id={self.id}, product_id={self.product_id}, quantity={self.quantity})>"
