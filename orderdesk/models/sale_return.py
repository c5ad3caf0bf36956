"""Return model."""
from datetime import datetime
from sqlalchemy import Column, String, Text, Numeric, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from orderdesk.database import Base, IdType
import enum


class ReturnStatus(enum.Enum):
    """Return status enum."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    REFUNDED = "REFUNDED"
    EXCHANGED = "EXCHANGED"
    CANCELLED = "CANCELLED"


# A return in one of these states no longer blocks changes to its sale
INACTIVE_RETURN_STATUSES = (ReturnStatus.CANCELLED, ReturnStatus.REJECTED)


class Return(Base):
    """Customer return against a sale."""

    __tablename__ = 'sale_return'

    id = Column(IdType, primary_key=True, autoincrement=True)
    sale_id = Column(IdType, ForeignKey('sale.id'), nullable=False)
    customer_id = Column(IdType, ForeignKey('customer.id'), nullable=True)
    status = Column(Enum(ReturnStatus, name='return_status'), nullable=False, default=ReturnStatus.PENDING)
    reason = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    refund_amount = Column(Numeric(12, 2), nullable=True, default=0)
    return_number = Column(String(40), nullable=True, unique=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    processed_at = Column(DateTime, nullable=True)
    refunded_at = Column(DateTime, nullable=True)

    # Relationships
    sale = relationship('Sale', back_populates='returns')
    customer = relationship('Customer', back_populates='returns')
    items = relationship('ReturnItem', back_populates='sale_return', cascade='all, delete-orphan')

    def __repr__(self):
        return f"<Return(id={self.id}, sale_id={self.sale_id}, status={self.status.value})>"

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_RETURN_STATUSES

    @property
    def is_pending(self) -> bool:
        """Only pending returns can be edited, approved, rejected or cancelled."""
        return self.status == ReturnStatus.PENDING
