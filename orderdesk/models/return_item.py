"""Return Item model."""
from sqlalchemy import Column, Integer, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from orderdesk.database import Base, IdType


class ReturnItem(Base):
    """Return Item (one returned sale line)."""

    __tablename__ = 'return_item'

    id = Column(IdType, primary_key=True, autoincrement=True)
    return_id = Column(IdType, ForeignKey('sale_return.id'), nullable=False)
    sale_line_id = Column(IdType, ForeignKey('sale_line.id'), nullable=True)
    product_id = Column(IdType, ForeignKey('product.id'), nullable=False)
    quantity = Column(Integer, nullable=False)
    refund_amount = Column(Numeric(12, 2), nullable=True, default=0)

    # Relationships
    sale_return = relationship('Return', back_populates='items')
    product = relationship('Product')

    def __repr__(self):
        return f"<ReturnItem(id={self.id}, product_id={self.product_id}, quantity={self.quantity})>"
