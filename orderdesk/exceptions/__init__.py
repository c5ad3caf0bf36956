"""Custom exceptions for the OrderDesk application."""
from decimal import Decimal


class OrderDeskError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv


class ValidationError(OrderDeskError):
    """Raised when request data is rejected before any mutation."""
    def __init__(self, message, field=None):
        super().__init__(message, 400, {'field': field} if field else None)
        self.field = field


class BusinessLogicError(OrderDeskError):
    """Exception raised for business logic violations."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class NotFoundError(OrderDeskError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


def _fmt_qty(value) -> str:
    value = Decimal(str(value))
    return f"{int(value)}" if value % 1 == 0 else f"{value:.2f}".rstrip('0').rstrip('.')


class InsufficientStockError(BusinessLogicError):
    """Raised when an operation fails due to lack of stock."""
    def __init__(self, product_id, requested, available, product_name=None):
        label = product_name or f"product #{product_id}"
        message = (
            f"Insufficient stock for {label}: "
            f"requested {_fmt_qty(requested)}, available {_fmt_qty(available)}"
        )
        super().__init__(message, status_code=409, payload={
            'error_code': 'INSUFFICIENT_STOCK',
            'product_id': product_id,
            'requested': int(requested),
            'available': int(available),
        })
        self.product_id = product_id
        self.requested = requested
        self.available = available


class InvalidStateTransitionError(BusinessLogicError):
    """Raised when a sale is moved to a status its lifecycle does not allow."""
    def __init__(self, sale_id, current_status, attempted_status):
        current = getattr(current_status, 'value', current_status)
        attempted = getattr(attempted_status, 'value', attempted_status)
        message = f"Sale #{sale_id} cannot move from {current} to {attempted}"
        super().__init__(message, status_code=409, payload={
            'error_code': 'INVALID_STATE_TRANSITION',
            'sale_id': sale_id,
            'current_status': current,
            'attempted_status': attempted,
        })
        self.sale_id = sale_id
        self.current_status = current
        self.attempted_status = attempted


class InvalidCouponError(BusinessLogicError):
    """Raised when a coupon code is unknown, inactive or not applicable."""
    def __init__(self, coupon_code, reason):
        super().__init__(
            f"Coupon code {coupon_code!r} {reason}",
            payload={'error_code': 'INVALID_COUPON', 'coupon_code': coupon_code}
        )
        self.coupon_code = coupon_code


DEFAULT_SUGGESTION = "Please remove or reassign all dependent records before deletion."

_SUGGESTIONS = {
    ('sale', 'returns'): "Please process or cancel all associated returns before cancelling or deleting this sale.",
    ('customer', 'sales'): "Please complete, cancel, or reassign all customer sales before deleting this customer, or retry with force=true.",
    ('customer', 'returns'): "Please process or cancel all returns first, or retry with force=true.",
    ('product', 'sale lines'): "This product has been sold and cannot be deleted. Mark it as inactive instead.",
    ('product', 'return items'): "This product has associated returns and cannot be deleted. Mark it as inactive instead.",
    ('product', 'purchase order lines'): "This product appears in purchase orders and cannot be deleted. Mark it as inactive instead.",
    ('supplier', 'purchase orders'): "Please complete or cancel all open purchase orders before deleting this supplier, or retry with force=true.",
}


def suggestion_for(resource_type: str, dependent_resource: str) -> str:
    """Human-actionable remedy for a refused deletion."""
    return _SUGGESTIONS.get((resource_type.lower(), dependent_resource.lower()), DEFAULT_SUGGESTION)


class DataIntegrityError(OrderDeskError):
    """
    Raised when an operation would orphan or corrupt dependent records.

    Distinct from a raw storage IntegrityError: carries the dependent resource,
    how many rows depend on the target and what the caller can do about it.
    """
    def __init__(self, resource_type, resource_id, dependent_resource, dependent_count,
                 message=None, error_code='DATA_INTEGRITY_VIOLATION', suggestion=None):
        if message is None:
            plural = '' if dependent_count == 1 else 's'
            message = (
                f"Cannot delete {resource_type.lower()} because it has "
                f"{dependent_count} associated {dependent_resource.lower().rstrip('s')} record{plural}"
            )
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.dependent_resource = dependent_resource
        self.dependent_count = dependent_count
        self.error_code = error_code
        self.suggestion = suggestion or suggestion_for(resource_type, dependent_resource)
        super().__init__(message, 409, {
            'error_code': error_code,
            'resource_type': resource_type,
            'resource_id': resource_id,
            'dependent_resource': dependent_resource,
            'dependent_count': dependent_count,
            'suggestion': self.suggestion,
        })

    @classmethod
    def sale_has_returns(cls, sale_id, return_count):
        plural = '' if return_count == 1 else 's'
        return cls(
            'Sale', sale_id, 'Returns', return_count,
            message=f"Cannot cancel sale because it has {return_count} active return{plural}",
            error_code='SALE_HAS_RETURNS'
        )

    @classmethod
    def customer_has_dependents(cls, customer_id, sales_count, returns_count):
        # Report the dominant dependency, keep both counts in the payload
        dependent = 'Sales' if sales_count else 'Returns'
        count = sales_count if sales_count else returns_count
        error = cls(
            'Customer', customer_id, dependent, count,
            message=(
                f"Cannot delete customer because they have {sales_count} associated "
                f"sale{'' if sales_count == 1 else 's'} and {returns_count} "
                f"return{'' if returns_count == 1 else 's'}"
            ),
            error_code='CUSTOMER_HAS_SALES' if sales_count else 'CUSTOMER_HAS_RETURNS'
        )
        error.payload['sales_count'] = sales_count
        error.payload['returns_count'] = returns_count
        error.sales_count = sales_count
        error.returns_count = returns_count
        return error

    @classmethod
    def product_has_history(cls, product_id, dependent_resource, count):
        code = 'PRODUCT_HAS_' + dependent_resource.upper().replace(' ', '_')
        plural = '' if count == 1 else 's'
        return cls(
            'Product', product_id, dependent_resource, count,
            message=f"Cannot delete product because it appears in {count} {dependent_resource.lower().rstrip('s')} record{plural}",
            error_code=code
        )

    @classmethod
    def supplier_has_purchase_orders(cls, supplier_id, order_count):
        plural = '' if order_count == 1 else 's'
        return cls(
            'Supplier', supplier_id, 'Purchase Orders', order_count,
            message=f"Cannot delete supplier because they have {order_count} active purchase order{plural}",
            error_code='SUPPLIER_HAS_PURCHASE_ORDERS'
        )
