"""Models package - exports all SQLAlchemy models."""
# Catalog
from orderdesk.models.category import Category
from orderdesk.models.product import Product
from orderdesk.models.supplier import Supplier
from orderdesk.models.purchase_order import PurchaseOrder, PurchaseOrderStatus, OPEN_PURCHASE_ORDER_STATUSES
from orderdesk.models.purchase_order_line import PurchaseOrderLine

# Sales
from orderdesk.models.customer import Customer, customer_segment
from orderdesk.models.sale import (
    Sale, SaleStatus, PaymentStatus, DeliveryStatus, PaymentMethod, normalize_payment_method
)
from orderdesk.models.sale_line import SaleLine
from orderdesk.models.promotion import Promotion, PromotionType, CustomerEligibility
from orderdesk.models.applied_promotion import AppliedPromotion
from orderdesk.models.sale_return import Return, ReturnStatus, INACTIVE_RETURN_STATUSES
from orderdesk.models.return_item import ReturnItem

__all__ = [
    # Catalog
    'Category', 'Product', 'Supplier',
    'PurchaseOrder', 'PurchaseOrderStatus', 'OPEN_PURCHASE_ORDER_STATUSES', 'PurchaseOrderLine',
    # Sales
    'Customer', 'customer_segment',
    'Sale', 'SaleStatus', 'PaymentStatus', 'DeliveryStatus', 'PaymentMethod', 'normalize_payment_method',
    'SaleLine', 'Promotion', 'PromotionType', 'CustomerEligibility', 'AppliedPromotion',
    'Return', 'ReturnStatus', 'INACTIVE_RETURN_STATUSES', 'ReturnItem',
]
