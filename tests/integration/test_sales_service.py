"""
Integration tests for the sale transaction engine.
"""

from decimal import Decimal

import pytest

from orderdesk.models import (
    Product, Customer, Promotion, Sale, SaleStatus, PaymentStatus, PromotionType,
    Return, ReturnStatus, AppliedPromotion
)
from orderdesk.exceptions import (
    ValidationError, NotFoundError, BusinessLogicError, InsufficientStockError,
    InvalidStateTransitionError, InvalidCouponError, DataIntegrityError
)
from orderdesk.services import sales_service
from orderdesk.services.sales_service import LineRequest


def assert_totals_identity(sale):
    assert sale.total == sale.subtotal - sale.discount_amount + sale.tax_amount + sale.shipping_cost
    assert sale.total >= 0


class TestCreateSale:

    def test_create_pending_sale_decrements_stock(self, session, product, customer, build_request):
        sale = sales_service.create_sale(
            session, build_request((product.id, 3), customer_id=customer.id, payment_method='cash')
        )

        assert sale.status == SaleStatus.PENDING
        assert sale.payment_status == PaymentStatus.PENDING
        assert sale.payment_method == 'CASH'
        assert sale.subtotal == Decimal('300.00')
        assert sale.total == Decimal('300.00')
        assert sale.sale_number.startswith('SO-')
        assert len(sale.lines) == 1
        assert sale.lines[0].unit_price == Decimal('100.00')
        assert_totals_identity(sale)

        assert session.get(Product, product.id).stock_quantity == 7

    def test_line_discount_tax_and_shipping(self, session, product, build_request):
        request = build_request(shipping_cost=Decimal('12.00'))
        request.lines = [LineRequest(product.id, 2, discount_percentage=Decimal('10'), tax_percentage=Decimal('20'))]

        sale = sales_service.create_sale(session, request)

        assert sale.subtotal == Decimal('200.00')
        assert sale.discount_amount == Decimal('20.00')
        assert sale.tax_amount == Decimal('36.00')
        assert sale.total == Decimal('228.00')
        assert sale.net_revenue == Decimal('180.00')
        assert_totals_identity(sale)

    def test_unit_price_override_is_snapshotted(self, session, product, build_request):
        request = build_request()
        request.lines = [LineRequest(product.id, 1, unit_price_override=Decimal('80.00'))]

        sale = sales_service.create_sale(session, request)
        sale_id = sale.id

        product = session.get(Product, product.id)
        product.price = Decimal('150.00')
        session.commit()

        assert sales_service.get_sale(session, sale_id).lines[0].unit_price == Decimal('80.00')

    def test_empty_lines_rejected(self, session, build_request):
        with pytest.raises(ValidationError):
            sales_service.create_sale(session, build_request())

    @pytest.mark.parametrize('quantity', [0, -1])
    def test_non_positive_quantity_rejected(self, session, product, build_request, quantity):
        with pytest.raises(ValidationError):
            sales_service.create_sale(session, build_request((product.id, quantity)))

    def test_bad_percentage_rejected(self, session, product, build_request):
        request = build_request()
        request.lines = [LineRequest(product.id, 1, discount_percentage=Decimal('101'))]
        with pytest.raises(ValidationError):
            sales_service.create_sale(session, request)

    @pytest.mark.parametrize('field_name,value', [
        ('discount_percentage', Decimal('NaN')),
        ('tax_percentage', Decimal('Infinity')),
        ('unit_price_override', Decimal('-Infinity')),
    ])
    def test_non_finite_line_amount_rejected(self, session, product, build_request, field_name, value):
        request = build_request()
        request.lines = [LineRequest(product.id, 1, **{field_name: value})]

        with pytest.raises(ValidationError) as exc_info:
            sales_service.create_sale(session, request)

        assert exc_info.value.field == field_name.replace('_override', '')
        assert session.get(Product, product.id).stock_quantity == 10

    def test_non_finite_shipping_rejected(self, session, product, build_request):
        with pytest.raises(ValidationError) as exc_info:
            sales_service.create_sale(session, build_request((product.id, 1), shipping_cost=Decimal('NaN')))
        assert exc_info.value.field == 'shipping_cost'

    def test_unknown_payment_method_rejected(self, session, product, build_request):
        with pytest.raises(ValidationError):
            sales_service.create_sale(session, build_request((product.id, 1), payment_method='BARTER'))

    def test_unknown_product_and_customer(self, session, product, build_request):
        with pytest.raises(NotFoundError):
            sales_service.create_sale(session, build_request((999, 1)))
        with pytest.raises(NotFoundError):
            sales_service.create_sale(session, build_request((product.id, 1), customer_id=999))

    def test_inactive_product_rejected(self, session, product, build_request):
        product.is_active = False
        session.commit()
        with pytest.raises(BusinessLogicError):
            sales_service.create_sale(session, build_request((product.id, 1)))


class TestInsufficientStock:
    """A failed create leaves every dependent counter untouched."""

    def test_over_stock_create_changes_nothing(self, session, product, customer, make_promotion, build_request):
        promotion = make_promotion(usage_limit=10)
        promotion_id = promotion.id

        with pytest.raises(InsufficientStockError) as exc_info:
            sales_service.create_sale(session, build_request((product.id, 11), customer_id=customer.id))

        assert exc_info.value.product_id == product.id
        assert exc_info.value.requested == 11
        assert exc_info.value.available == 10

        assert session.get(Product, product.id).stock_quantity == 10
        refreshed = session.get(Customer, customer.id)
        assert refreshed.total_purchases == Decimal('0')
        assert refreshed.loyalty_points == 0
        assert session.get(Promotion, promotion_id).usage_count == 0
        assert session.query(Sale).count() == 0

    def test_quantities_aggregate_across_lines(self, session, product, build_request):
        with pytest.raises(InsufficientStockError) as exc_info:
            sales_service.create_sale(session, build_request((product.id, 6), (product.id, 5)))

        assert exc_info.value.requested == 11
        assert session.get(Product, product.id).stock_quantity == 10


class TestPromotionsOnCreate:

    def test_percentage_promotion_without_minimum(self, session, product, make_promotion, build_request):
        make_promotion(discount_value=Decimal('10'), minimum_order_amount=None)

        sale = sales_service.create_sale(session, build_request((product.id, 2)))

        assert sale.subtotal == Decimal('200.00')
        assert sale.promotion_discount_amount == Decimal('20.00')
        assert sale.discount_amount == Decimal('20.00')
        assert sale.total == Decimal('180.00')
        assert len(sale.applied_promotions) == 1
        assert sale.applied_promotions[0].is_auto_applied is True

    def test_minimum_not_met(self, session, product_b, make_promotion, build_request):
        make_promotion(discount_value=Decimal('10'), minimum_order_amount=Decimal('50.00'))
        request = build_request()
        request.lines = [LineRequest(product_b.id, 1, unit_price_override=Decimal('44.00'))]

        sale = sales_service.create_sale(session, request)

        assert sale.subtotal == Decimal('44.00')
        assert sale.discount_amount == Decimal('0.00')
        assert sale.total == Decimal('44.00')
        assert sale.applied_promotions == []

    def test_usage_counter_incremented(self, session, product, make_promotion, build_request):
        promotion_id = make_promotion().id

        sales_service.create_sale(session, build_request((product.id, 1)))

        assert session.get(Promotion, promotion_id).usage_count == 1

    def test_coupon_applied(self, session, product, make_promotion, build_request):
        make_promotion(
            auto_apply=False, coupon_code='SPRING15',
            type=PromotionType.FIXED_AMOUNT, discount_value=Decimal('15.00')
        )

        sale = sales_service.create_sale(session, build_request((product.id, 1), coupon_code='SPRING15'))

        assert sale.coupon_code == 'SPRING15'
        assert sale.total == Decimal('85.00')
        assert sale.applied_promotions[0].coupon_code == 'SPRING15'
        assert sale.applied_promotions[0].is_auto_applied is False

    def test_unknown_coupon_rolls_back(self, session, product, build_request):
        with pytest.raises(InvalidCouponError):
            sales_service.create_sale(session, build_request((product.id, 1), coupon_code='NOPE'))
        assert session.get(Product, product.id).stock_quantity == 10

    def test_exhausted_coupon_rejected(self, session, product, make_promotion, build_request):
        make_promotion(auto_apply=False, coupon_code='ONCE', usage_limit=1, usage_count=1)
        with pytest.raises(InvalidCouponError):
            sales_service.create_sale(session, build_request((product.id, 1), coupon_code='ONCE'))

    def test_customer_restricted_promotion_skipped_for_anonymous(self, session, product, make_promotion, build_request):
        from orderdesk.models import CustomerEligibility
        make_promotion(customer_eligibility=CustomerEligibility.NEW_CUSTOMERS)

        sale = sales_service.create_sale(session, build_request((product.id, 1)))

        assert sale.discount_amount == Decimal('0.00')


class TestLifecycle:

    def test_complete_credits_customer_and_product(self, session, product, customer, build_request):
        sale = sales_service.create_sale(session, build_request((product.id, 2), customer_id=customer.id))
        sale = sales_service.complete_sale(session, sale.id)

        assert sale.status == SaleStatus.COMPLETED
        assert sale.payment_status == PaymentStatus.PAID
        assert sale.completed_at is not None
        assert sale.loyalty_points_earned == 20

        refreshed = session.get(Customer, customer.id)
        assert refreshed.total_purchases == Decimal('200.00')
        assert refreshed.order_count == 1
        assert refreshed.loyalty_points == 20
        assert refreshed.last_purchase_at == sale.completed_at

        stats = session.get(Product, product.id)
        assert stats.total_sold == 2
        assert stats.total_revenue == Decimal('200.00')

    def test_loyalty_points_round_down(self, session, product_b, customer, build_request):
        sale = sales_service.create_sale(session, build_request((product_b.id, 1), customer_id=customer.id))
        sale = sales_service.complete_sale(session, sale.id)
        assert sale.total == Decimal('25.50')
        assert sale.loyalty_points_earned == 2

    def test_create_complete_cancel_restores_state(self, session, product, customer, build_request):
        before_customer = session.get(Customer, customer.id)
        before_product = session.get(Product, product.id)
        product_snapshot = (before_product.total_sold, before_product.last_sold_at)
        snapshot = (before_customer.total_purchases, before_customer.order_count,
                    before_customer.loyalty_points, before_customer.last_purchase_at)

        sale = sales_service.create_sale(session, build_request((product.id, 4), customer_id=customer.id))
        sales_service.complete_sale(session, sale.id)
        cancelled = sales_service.cancel_sale(session, sale.id)

        assert cancelled.status == SaleStatus.CANCELLED
        assert cancelled.payment_status == PaymentStatus.REFUNDED
        assert cancelled.cancelled_at is not None

        restored = session.get(Product, product.id)
        assert restored.stock_quantity == 10
        assert restored.total_sold == 0
        assert restored.total_revenue == Decimal('0')
        assert (restored.total_sold, restored.last_sold_at) == product_snapshot
        assert restored.last_sold_at is None

        after_customer = session.get(Customer, customer.id)
        assert (after_customer.total_purchases, after_customer.order_count,
                after_customer.loyalty_points, after_customer.last_purchase_at) == snapshot

    def test_cancel_falls_back_to_earlier_sale_date(self, session, product, product_b, build_request):
        first = sales_service.create_sale(session, build_request((product.id, 1)))
        first_completed_at = sales_service.complete_sale(session, first.id).completed_at
        second = sales_service.create_sale(session, build_request((product.id, 1), (product_b.id, 1)))
        sales_service.complete_sale(session, second.id)

        sales_service.cancel_sale(session, second.id)

        assert session.get(Product, product.id).last_sold_at == first_completed_at
        assert session.get(Product, product_b.id).last_sold_at is None

    def test_cancel_pending_restores_stock(self, session, product, build_request):
        sale = sales_service.create_sale(session, build_request((product.id, 3)))
        sales_service.cancel_sale(session, sale.id)
        assert session.get(Product, product.id).stock_quantity == 10

    def test_cancelled_is_terminal(self, session, product, build_request):
        sale = sales_service.create_sale(session, build_request((product.id, 1)))
        sales_service.cancel_sale(session, sale.id)

        with pytest.raises(InvalidStateTransitionError):
            sales_service.complete_sale(session, sale.id)
        with pytest.raises(InvalidStateTransitionError):
            sales_service.cancel_sale(session, sale.id)

    def test_complete_twice_refused(self, session, product, build_request):
        sale = sales_service.create_sale(session, build_request((product.id, 1)))
        sales_service.complete_sale(session, sale.id)
        with pytest.raises(InvalidStateTransitionError):
            sales_service.complete_sale(session, sale.id)

    def test_cancel_refused_with_active_return(self, session, product, customer, build_request):
        sale = sales_service.create_sale(session, build_request((product.id, 2), customer_id=customer.id))
        sales_service.complete_sale(session, sale.id)
        session.add(Return(sale_id=sale.id, customer_id=customer.id, status=ReturnStatus.PENDING))
        session.commit()

        with pytest.raises(DataIntegrityError) as exc_info:
            sales_service.cancel_sale(session, sale.id)

        assert exc_info.value.error_code == 'SALE_HAS_RETURNS'
        assert session.get(Sale, sale.id).status == SaleStatus.COMPLETED
        assert session.get(Product, product.id).stock_quantity == 8

    def test_cancel_allowed_when_returns_inactive(self, session, product, build_request):
        sale = sales_service.create_sale(session, build_request((product.id, 2)))
        sales_service.complete_sale(session, sale.id)
        session.add(Return(sale_id=sale.id, status=ReturnStatus.REJECTED))
        session.commit()

        assert sales_service.cancel_sale(session, sale.id).status == SaleStatus.CANCELLED

    def test_unknown_sale(self, session):
        with pytest.raises(NotFoundError):
            sales_service.complete_sale(session, 12345)
        with pytest.raises(NotFoundError):
            sales_service.get_sale(session, 12345)


class TestUpdateSale:

    def test_update_equals_single_create(self, session, product, product_b, make_promotion, build_request):
        promotion_id = make_promotion(discount_value=Decimal('10')).id
        sale = sales_service.create_sale(session, build_request((product.id, 5)))

        updated = sales_service.update_sale(
            session, sale.id, [LineRequest(product.id, 1), LineRequest(product_b.id, 2)]
        )

        assert updated.subtotal == Decimal('151.00')
        assert updated.promotion_discount_amount == Decimal('15.10')
        assert updated.total == Decimal('135.90')
        assert_totals_identity(updated)
        assert len(updated.lines) == 2

        assert session.get(Product, product.id).stock_quantity == 9
        assert session.get(Product, product_b.id).stock_quantity == 3
        assert session.get(Promotion, promotion_id).usage_count == 1
        assert session.query(AppliedPromotion).filter_by(sale_id=sale.id).count() == 1

    def test_update_can_use_restored_stock(self, session, product, build_request):
        sale = sales_service.create_sale(session, build_request((product.id, 10)))
        updated = sales_service.update_sale(session, sale.id, [LineRequest(product.id, 10)])
        assert updated.subtotal == Decimal('1000.00')
        assert session.get(Product, product.id).stock_quantity == 0

    def test_failed_update_leaves_sale_untouched(self, session, product, build_request):
        sale = sales_service.create_sale(session, build_request((product.id, 2)))

        with pytest.raises(InsufficientStockError):
            sales_service.update_sale(session, sale.id, [LineRequest(product.id, 50)])

        reloaded = sales_service.get_sale(session, sale.id)
        assert [line.quantity for line in reloaded.lines] == [2]
        assert session.get(Product, product.id).stock_quantity == 8

    def test_update_keeps_existing_coupon(self, session, product, make_promotion, build_request):
        promotion_id = make_promotion(
            auto_apply=False, coupon_code='SPRING15',
            type=PromotionType.FIXED_AMOUNT, discount_value=Decimal('15.00')
        ).id
        sale = sales_service.create_sale(session, build_request((product.id, 1), coupon_code='SPRING15'))

        updated = sales_service.update_sale(session, sale.id, [LineRequest(product.id, 2)])

        assert updated.coupon_code == 'SPRING15'
        assert updated.total == Decimal('185.00')
        assert session.get(Promotion, promotion_id).usage_count == 1

    def test_empty_coupon_code_removes_coupon(self, session, product, make_promotion, build_request):
        promotion_id = make_promotion(
            auto_apply=False, coupon_code='SPRING15',
            type=PromotionType.FIXED_AMOUNT, discount_value=Decimal('15.00')
        ).id
        sale = sales_service.create_sale(session, build_request((product.id, 1), coupon_code='SPRING15'))

        updated = sales_service.update_sale(session, sale.id, [LineRequest(product.id, 1)], coupon_code='')

        assert updated.coupon_code is None
        assert updated.total == Decimal('100.00')
        assert session.get(Promotion, promotion_id).usage_count == 0

    def test_only_pending_sales_are_editable(self, session, product, build_request):
        sale = sales_service.create_sale(session, build_request((product.id, 1)))
        sales_service.complete_sale(session, sale.id)

        with pytest.raises(BusinessLogicError) as exc_info:
            sales_service.update_sale(session, sale.id, [LineRequest(product.id, 2)])
        assert exc_info.value.status_code == 409


class TestPreview:

    def test_preview_writes_nothing(self, session, product, make_promotion, build_request):
        promotion_id = make_promotion().id

        totals = sales_service.preview_sale_totals(session, build_request((product.id, 2)))

        assert totals['subtotal'] == Decimal('200.00')
        assert totals['discount_amount'] == Decimal('20.00')
        assert totals['total'] == Decimal('180.00')
        assert totals['loyalty_points'] == 18
        assert session.get(Product, product.id).stock_quantity == 10
        assert session.get(Promotion, promotion_id).usage_count == 0
        assert session.query(Sale).count() == 0


def test_compute_loyalty_points():
    assert sales_service.compute_loyalty_points(Decimal('99.99')) == 9
    assert sales_service.compute_loyalty_points(None) == 0
