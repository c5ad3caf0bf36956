"""Sale Line model."""
from sqlalchemy import Column, Integer, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from orderdesk.database import Base, IdType
from orderdesk.utils import money


class SaleLine(Base):
    """Sale Line with the unit price captured at order time."""

    __tablename__ = 'sale_line'

    id = Column(IdType, primary_key=True, autoincrement=True)
    sale_id = Column(IdType, ForeignKey('sale.id'), nullable=False)
    product_id = Column(IdType, ForeignKey('product.id'), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    discount_percentage = Column(Numeric(5, 2), nullable=True, default=0)
    discount_amount = Column(Numeric(12, 2), nullable=True, default=0)
    tax_percentage = Column(Numeric(5, 2), nullable=True, default=0)
    tax_amount = Column(Numeric(12, 2), nullable=True, default=0)
    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    line_total = Column(Numeric(12, 2), nullable=False, default=0)

    # Relationships
    sale = relationship('Sale', back_populates='lines')
    product = relationship('Product')

    def __repr__(self):
        return f"<SaleLine(id={self.id}, product_id={self.product_id}, quantity={self.quantity})>"

    def calculate(self) -> None:
        """subtotal = qty * price; tax applies to the discounted subtotal."""
        subtotal = money.quantize(money.multiply(self.quantity, self.unit_price))
        discount = money.percentage_of(subtotal, self.discount_percentage)
        tax = money.percentage_of(money.subtract(subtotal, discount), self.tax_percentage)

        self.subtotal = subtotal
        self.discount_amount = discount
        self.tax_amount = tax
        self.line_total = money.quantize(money.add(money.subtract(subtotal, discount), tax))
