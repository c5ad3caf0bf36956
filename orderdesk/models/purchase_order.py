"""Purchase Order model."""
from datetime import datetime
from sqlalchemy import Column, String, Numeric, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from orderdesk.database import Base, IdType
import enum


class PurchaseOrderStatus(enum.Enum):
    """Purchase order status enum."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    ORDERED = "ORDERED"
    PARTIALLY_RECEIVED = "PARTIALLY_RECEIVED"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"


OPEN_PURCHASE_ORDER_STATUSES = (
    PurchaseOrderStatus.PENDING,
    PurchaseOrderStatus.APPROVED,
    PurchaseOrderStatus.ORDERED,
)


class PurchaseOrder(Base):
    """Purchase order placed with a supplier."""

    __tablename__ = 'purchase_order'

    id = Column(IdType, primary_key=True, autoincrement=True)
    supplier_id = Column(IdType, ForeignKey('supplier.id'), nullable=False)
    order_number = Column(String(40), nullable=False, unique=True)
    status = Column(
        Enum(PurchaseOrderStatus, name='purchase_order_status'),
        nullable=False, default=PurchaseOrderStatus.PENDING
    )
    total_amount = Column(Numeric(14, 2), nullable=True, default=0)
    order_date = Column(DateTime, nullable=False, default=datetime.now)

    # Relationships
    supplier = relationship('Supplier', back_populates='purchase_orders')
    lines = relationship('PurchaseOrderLine', back_populates='purchase_order', cascade='all, delete-orphan')

    def __repr__(self):
        return f"<PurchaseOrder(id={self.id}, order_number='{self.order_number}', status={self.status.value})>"

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_PURCHASE_ORDER_STATUSES
