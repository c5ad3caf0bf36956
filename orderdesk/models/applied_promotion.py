"""Applied Promotion model."""
from datetime import datetime
from sqlalchemy import Column, String, Boolean, Numeric, DateTime, ForeignKey, false
from sqlalchemy.orm import relationship
from orderdesk.database import Base, IdType


class AppliedPromotion(Base):
    """Record of one promotion applied to a sale (append-only)."""

    __tablename__ = 'applied_promotion'

    id = Column(IdType, primary_key=True, autoincrement=True)
    sale_id = Column(IdType, ForeignKey('sale.id'), nullable=False)
    promotion_id = Column(IdType, ForeignKey('promotion.id'), nullable=False)

    # Snapshot of the promotion at the time it was applied
    promotion_name = Column(String(200), nullable=False)
    promotion_type = Column(String(30), nullable=False)
    coupon_code = Column(String(64), nullable=True)
    discount_amount = Column(Numeric(12, 2), nullable=False)
    discount_percentage = Column(Numeric(5, 2), nullable=True)
    original_amount = Column(Numeric(12, 2), nullable=False)
    final_amount = Column(Numeric(12, 2), nullable=False)
    is_auto_applied = Column(Boolean, nullable=False, default=False, server_default=false())
    applied_at = Column(DateTime, nullable=False, default=datetime.now)

    # Relationships
    sale = relationship('Sale', back_populates='applied_promotions')
    promotion = relationship('Promotion')

    def __repr__(self):
        return f"<AppliedPromotion(sale_id={self.sale_id}, promotion_id={self.promotion_id}, discount={self.discount_amount})>"
