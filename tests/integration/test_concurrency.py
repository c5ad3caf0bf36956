"""
Concurrent sale creation against the last unit of stock and a single-use coupon.
"""

import threading

from orderdesk import database
from orderdesk.models import Product, Promotion, Sale
from orderdesk.exceptions import InsufficientStockError, InvalidCouponError
from orderdesk.services import sales_service


def test_last_unit_is_sold_once(session, product, build_request):
    product.stock_quantity = 1
    session.commit()
    product_id = product.id
    database.db_session.remove()

    barrier = threading.Barrier(2)
    outcomes = []
    lock = threading.Lock()

    def worker():
        thread_session = database.get_session()
        try:
            barrier.wait(timeout=10)
            sale = sales_service.create_sale(thread_session, build_request((product_id, 1)))
            with lock:
                outcomes.append(('ok', sale.id))
        except InsufficientStockError as e:
            with lock:
                outcomes.append(('insufficient', e.available))
        finally:
            database.db_session.remove()

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert sorted(kind for kind, _ in outcomes) == ['insufficient', 'ok']
    assert dict(outcomes)['insufficient'] == 0

    fresh = database.get_session()
    assert fresh.get(Product, product_id).stock_quantity == 0
    assert fresh.query(Sale).count() == 1


def test_limited_coupon_redeemed_once(session, product, make_promotion, build_request):
    promotion = make_promotion(auto_apply=False, coupon_code='ONCE', usage_limit=1)
    promotion_id, product_id = promotion.id, product.id
    database.db_session.remove()

    barrier = threading.Barrier(2)
    outcomes = []
    lock = threading.Lock()

    def worker():
        thread_session = database.get_session()
        try:
            barrier.wait(timeout=10)
            sale = sales_service.create_sale(thread_session, build_request((product_id, 1), coupon_code='ONCE'))
            with lock:
                outcomes.append(('ok', sale.id))
        except InvalidCouponError as e:
            with lock:
                outcomes.append(('coupon', e.coupon_code))
        finally:
            database.db_session.remove()

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert sorted(kind for kind, _ in outcomes) == ['coupon', 'ok']

    fresh = database.get_session()
    assert fresh.get(Promotion, promotion_id).usage_count == 1
    assert fresh.query(Sale).count() == 1
    assert fresh.get(Product, product_id).stock_quantity == 9
