"""
Integration tests for the sales report.
Sales are inserted directly so dates and NULL fields can be controlled.
"""

from datetime import datetime, date
from decimal import Decimal

import pytest

from orderdesk.models import Sale, SaleLine, SaleStatus, Customer
from orderdesk.exceptions import ValidationError
from orderdesk.services import report_service

WINDOW_START = datetime(2024, 3, 1)
WINDOW_END = datetime(2024, 3, 11)


@pytest.fixture
def add_sale(session):
    counter = {'n': 0}

    def _add(sale_date, total, customer=None, status=SaleStatus.COMPLETED, payment_method='CASH',
             discount=Decimal('0.00'), tax=Decimal('0.00'), lines=()):
        counter['n'] += 1
        sale = Sale(
            sale_number=f'SO-TEST-{counter["n"]:04d}',
            customer_id=customer.id if customer else None,
            status=status,
            subtotal=Decimal(total),
            discount_amount=discount,
            tax_amount=tax,
            total=Decimal(total),
            net_revenue=Decimal(total),
            payment_method=payment_method,
            sale_date=sale_date,
        )
        for product, quantity, line_total in lines:
            sale.lines.append(SaleLine(
                product_id=product.id,
                quantity=quantity,
                unit_price=product.price,
                subtotal=Decimal(line_total),
                line_total=Decimal(line_total),
            ))
        session.add(sale)
        session.commit()
        return sale
    return _add


def add_customer(session, name, address, total_purchases='0', order_count=0):
    customer = Customer(
        name=name,
        email=f'{name.lower()}@example.com',
        address=address,
        total_purchases=Decimal(total_purchases),
        order_count=order_count,
    )
    session.add(customer)
    session.commit()
    return customer


class TestMissingData:

    def test_null_discount_and_missing_customer(self, session, add_sale):
        add_sale(datetime(2024, 3, 2, 10), '50.00', discount=None, tax=None, payment_method=None)

        report = report_service.generate_sales_report(session, WINDOW_START, WINDOW_END)

        assert report.summary['total_sales'] == 1
        assert report.summary['total_discounts'] == Decimal('0.00')
        assert report.summary['total_tax'] == Decimal('0.00')
        assert report.summary['unique_customers'] == 0
        assert report.regions == []
        assert report.customer_segments == {'VIP': 0, 'Premium': 0, 'Loyal': 0, 'Regular': 0}
        assert report.payment_methods == [
            {'payment_method': 'UNKNOWN', 'revenue': Decimal('50.00'), 'sales_count': 1}
        ]

    def test_empty_window(self, session):
        report = report_service.generate_sales_report(session, WINDOW_START, WINDOW_END)

        assert report.summary['total_sales'] == 0
        assert report.summary['average_order_value'] == Decimal('0.00')
        assert report.summary['conversion_rate'] == Decimal('0.00')
        assert report.summary['revenue_growth'] == Decimal('0.00')
        assert report.daily == []
        assert report.top_products == []


class TestSummary:

    def test_only_completed_sales_count(self, session, customer, add_sale):
        add_sale(datetime(2024, 3, 2), '100.00', customer=customer)
        add_sale(datetime(2024, 3, 3), '50.00', customer=customer)
        add_sale(datetime(2024, 3, 4), '70.00', status=SaleStatus.PENDING)
        add_sale(datetime(2024, 3, 5), '30.00', status=SaleStatus.CANCELLED)

        summary = report_service.generate_sales_report(session, WINDOW_START, WINDOW_END).summary

        assert summary['total_sales'] == 2
        assert summary['total_revenue'] == Decimal('150.00')
        assert summary['average_order_value'] == Decimal('75.00')
        assert summary['unique_customers'] == 1
        assert summary['conversion_rate'] == Decimal('50.00')

    def test_window_end_is_exclusive(self, session, add_sale):
        add_sale(WINDOW_START, '10.00')
        add_sale(WINDOW_END, '99.00')

        summary = report_service.generate_sales_report(session, WINDOW_START, WINDOW_END).summary

        assert summary['total_sales'] == 1
        assert summary['total_revenue'] == Decimal('10.00')

    def test_date_end_includes_the_whole_day(self, session, add_sale):
        add_sale(datetime(2024, 3, 10, 23, 30), '10.00')

        report = report_service.generate_sales_report(session, date(2024, 3, 1), date(2024, 3, 10))

        assert report.summary['total_sales'] == 1
        assert report.end == datetime(2024, 3, 11)

    def test_growth_against_previous_window(self, session, add_sale):
        # previous window of equal length: 2024-02-20 .. 2024-03-01
        add_sale(datetime(2024, 2, 25), '100.00')
        add_sale(datetime(2024, 3, 2), '100.00')
        add_sale(datetime(2024, 3, 3), '50.00')

        summary = report_service.generate_sales_report(session, WINDOW_START, WINDOW_END).summary

        assert summary['revenue_growth'] == Decimal('50.00')
        assert summary['sales_growth'] == Decimal('100.00')

    def test_growth_without_previous_activity(self, session, add_sale):
        add_sale(datetime(2024, 3, 2), '10.00')

        summary = report_service.generate_sales_report(session, WINDOW_START, WINDOW_END).summary

        assert summary['revenue_growth'] == Decimal('100.00')

    def test_invalid_window(self, session):
        with pytest.raises(ValidationError):
            report_service.generate_sales_report(session, WINDOW_END, WINDOW_START)
        with pytest.raises(ValidationError):
            report_service.generate_sales_report(session, None, WINDOW_END)


class TestBreakdowns:

    def test_segments_and_regions(self, session, add_sale):
        vip = add_customer(session, 'Vera', '1 Market St, San Francisco, CA', '15000.00', 4)
        loyal = add_customer(session, 'Lou', '9 North Road, Leeds', '900.00', 12)
        regular = add_customer(session, 'Rae', '4 Rue Royale, Paris, France')

        add_sale(datetime(2024, 3, 2), '300.00', customer=vip)
        add_sale(datetime(2024, 3, 3), '200.00', customer=vip)
        add_sale(datetime(2024, 3, 4), '80.00', customer=loyal)
        add_sale(datetime(2024, 3, 5), '20.00', customer=regular)

        report = report_service.generate_sales_report(session, WINDOW_START, WINDOW_END)

        assert report.customer_segments == {'VIP': 1, 'Premium': 0, 'Loyal': 1, 'Regular': 1}
        assert [(r['region'], r['revenue'], r['sales_count']) for r in report.regions] == [
            ('West Region', Decimal('500.00'), 2),
            ('North Region', Decimal('80.00'), 1),
            ('France Region', Decimal('20.00'), 1),
        ]

    def test_payment_methods(self, session, add_sale):
        add_sale(datetime(2024, 3, 2), '40.00', payment_method='CASH')
        add_sale(datetime(2024, 3, 3), '60.00', payment_method='CREDIT_CARD')
        add_sale(datetime(2024, 3, 4), '30.00', payment_method='CASH')

        methods = report_service.generate_sales_report(session, WINDOW_START, WINDOW_END).payment_methods

        assert methods == [
            {'payment_method': 'CASH', 'revenue': Decimal('70.00'), 'sales_count': 2},
            {'payment_method': 'CREDIT_CARD', 'revenue': Decimal('60.00'), 'sales_count': 1},
        ]

    def test_daily_and_top_products(self, session, product, product_b, add_sale):
        add_sale(datetime(2024, 3, 2, 9), '200.00', lines=[(product, 2, '200.00')])
        add_sale(datetime(2024, 3, 2, 15), '76.50', lines=[(product_b, 3, '76.50')])
        add_sale(datetime(2024, 3, 4, 11), '100.00', lines=[(product, 1, '100.00')])

        report = report_service.generate_sales_report(session, WINDOW_START, WINDOW_END)

        assert report.daily == [
            {'date': date(2024, 3, 2), 'revenue': Decimal('276.50'), 'sales_count': 2},
            {'date': date(2024, 3, 4), 'revenue': Decimal('100.00'), 'sales_count': 1},
        ]
        assert [(p['product_id'], p['quantity'], p['revenue']) for p in report.top_products] == [
            (product.id, 3, Decimal('300.00')),
            (product_b.id, 3, Decimal('76.50')),
        ]


def test_disabled_cache_loads_report_directly(session, add_sale):
    add_sale(datetime(2024, 3, 2), '12.00')

    data = report_service.get_cached_sales_report(session, WINDOW_START, WINDOW_END)

    assert data['summary']['total_sales'] == 1
    assert data['period']['end'] == WINDOW_END
