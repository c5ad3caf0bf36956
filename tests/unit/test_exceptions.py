"""
Unit tests for the exception hierarchy and its JSON payloads.
"""

from orderdesk.exceptions import (
    OrderDeskError, ValidationError, NotFoundError, InsufficientStockError,
    InvalidStateTransitionError, InvalidCouponError, DataIntegrityError, DEFAULT_SUGGESTION
)
from orderdesk.models import SaleStatus


class TestStatusCodes:

    def test_codes(self):
        assert OrderDeskError().status_code == 500
        assert ValidationError('bad', 'quantity').status_code == 400
        assert NotFoundError().status_code == 404
        assert InsufficientStockError(1, 2, 1).status_code == 409
        assert InvalidStateTransitionError(1, 'CANCELLED', 'COMPLETED').status_code == 409
        assert InvalidCouponError('X', 'does not exist').status_code == 400
        assert DataIntegrityError('Customer', 1, 'Sales', 3).status_code == 409

    def test_to_dict_merges_payload(self):
        data = ValidationError('quantity must be positive', 'quantity').to_dict()
        assert data == {'field': 'quantity', 'message': 'quantity must be positive', 'status': 'error'}


class TestInsufficientStock:

    def test_payload(self):
        error = InsufficientStockError(7, 3, 1, product_name='Drill')
        assert error.product_id == 7
        assert error.requested == 3
        assert error.available == 1
        assert 'Drill' in error.message
        assert error.to_dict()['error_code'] == 'INSUFFICIENT_STOCK'


class TestInvalidStateTransition:

    def test_accepts_enums(self):
        error = InvalidStateTransitionError(4, SaleStatus.CANCELLED, SaleStatus.COMPLETED)
        assert error.current_status == 'CANCELLED'
        assert error.attempted_status == 'COMPLETED'
        assert 'CANCELLED' in error.message


class TestDataIntegrityError:

    def test_customer_with_sales(self):
        error = DataIntegrityError.customer_has_dependents(9, sales_count=3, returns_count=1)
        payload = error.to_dict()
        assert error.resource_type == 'Customer'
        assert error.dependent_resource == 'Sales'
        assert error.dependent_count == 3
        assert payload['error_code'] == 'CUSTOMER_HAS_SALES'
        assert payload['sales_count'] == 3
        assert payload['returns_count'] == 1
        assert 'force=true' in payload['suggestion']

    def test_customer_with_only_returns(self):
        error = DataIntegrityError.customer_has_dependents(9, sales_count=0, returns_count=2)
        assert error.dependent_resource == 'Returns'
        assert error.error_code == 'CUSTOMER_HAS_RETURNS'

    def test_product_history_suggests_deactivation(self):
        error = DataIntegrityError.product_has_history(5, 'Sale Lines', 2)
        assert error.error_code == 'PRODUCT_HAS_SALE_LINES'
        assert 'inactive' in error.suggestion

    def test_unknown_pair_uses_default_suggestion(self):
        error = DataIntegrityError('Widget', 1, 'Gadgets', 2)
        assert error.suggestion == DEFAULT_SUGGESTION
        assert error.message == 'Cannot delete widget because it has 2 associated gadget records'
