"""
Guarded deletion of customers, products, categories and suppliers.

Safe mode (the default) refuses a deletion that would orphan dependent
records and raises DataIntegrityError with the dependent counts. Force mode,
where supported, deletes the owned records in dependency order inside the
same transaction.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from orderdesk.models import (
    Customer, Product, Category, Supplier, Sale, SaleLine, Return, ReturnItem,
    PurchaseOrder, PurchaseOrderLine, OPEN_PURCHASE_ORDER_STATUSES
)
from orderdesk.exceptions import OrderDeskError, ValidationError, NotFoundError, DataIntegrityError
from orderdesk.services.cache_service import invalidate_reports

logger = logging.getLogger(__name__)

ENTITY_TYPES = ('customer', 'product', 'category', 'supplier')


@dataclass
class DeletionResult:
    entity_type: str
    entity_id: int
    forced: bool = False
    cascaded: Dict[str, int] = field(default_factory=dict)

    def to_dict(self):
        return {
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'forced': self.forced,
            'cascaded': dict(self.cascaded),
        }


def _count(session, column, *criteria) -> int:
    return session.query(func.count(column)).filter(*criteria).scalar() or 0


def _get_or_404(session, model, entity_id, label):
    entity = session.query(model).filter(model.id == entity_id).first()
    if not entity:
        raise NotFoundError(f'{label} #{entity_id} not found')
    return entity


def _normalize_type(entity_type: str) -> str:
    normalized = (entity_type or '').lower().rstrip('s')
    if normalized == 'categorie':
        normalized = 'category'
    if normalized not in ENTITY_TYPES:
        raise ValidationError(f'Unknown entity type: {entity_type}', 'entity_type')
    return normalized


def count_dependents(session, entity_type: str, entity_id: int) -> Dict[str, int]:
    """
    Pre-flight dependent counts for an entity, without deleting anything.

    Raises:
        ValidationError: unknown entity type
        NotFoundError: entity does not exist
    """
    entity_type = _normalize_type(entity_type)

    if entity_type == 'customer':
        _get_or_404(session, Customer, entity_id, 'Customer')
        return {
            'sales': _count(session, Sale.id, Sale.customer_id == entity_id),
            'returns': _count(session, Return.id, Return.customer_id == entity_id),
        }
    if entity_type == 'product':
        _get_or_404(session, Product, entity_id, 'Product')
        return {
            'sale_lines': _count(session, SaleLine.id, SaleLine.product_id == entity_id),
            'return_items': _count(session, ReturnItem.id, ReturnItem.product_id == entity_id),
            'purchase_order_lines': _count(
                session, PurchaseOrderLine.id, PurchaseOrderLine.product_id == entity_id
            ),
        }
    if entity_type == 'category':
        _get_or_404(session, Category, entity_id, 'Category')
        return {'products': _count(session, Product.id, Product.category_id == entity_id)}

    _get_or_404(session, Supplier, entity_id, 'Supplier')
    return {
        'purchase_orders': _count(session, PurchaseOrder.id, PurchaseOrder.supplier_id == entity_id),
        'open_purchase_orders': _count(
            session, PurchaseOrder.id,
            PurchaseOrder.supplier_id == entity_id,
            PurchaseOrder.status.in_(OPEN_PURCHASE_ORDER_STATUSES)
        ),
    }


def delete_entity(session, entity_type: str, entity_id: int, force: bool = False) -> DeletionResult:
    """Dispatch a deletion request to the guard for its entity type."""
    entity_type = _normalize_type(entity_type)
    if entity_type == 'customer':
        return delete_customer(session, entity_id, force=force)
    if entity_type == 'product':
        return delete_product(session, entity_id)
    if entity_type == 'category':
        return delete_category(session, entity_id)
    return delete_supplier(session, entity_id, force=force)


def delete_customer(session, customer_id: int, force: bool = False) -> DeletionResult:
    """
    Delete a customer.

    Safe mode refuses while sales or returns reference the customer. Force
    mode deletes, in order: return items and returns, sale lines, applied
    promotions and sales, then the customer. Products are never touched.
    """
    try:
        customer = _get_or_404(session, Customer, customer_id, 'Customer')

        sales_count = _count(session, Sale.id, Sale.customer_id == customer_id)
        returns_count = _count(session, Return.id, Return.customer_id == customer_id)

        if (sales_count or returns_count) and not force:
            logger.warning(
                f"Refused deletion of customer id={customer_id}: "
                f"{sales_count} sale(s), {returns_count} return(s)"
            )
            raise DataIntegrityError.customer_has_dependents(customer_id, sales_count, returns_count)

        result = DeletionResult('customer', customer_id, forced=force)

        if sales_count or returns_count:
            sale_ids = [row[0] for row in session.query(Sale.id).filter(Sale.customer_id == customer_id)]

            # Step 1: Returns (own their items), including returns filed against these sales
            criteria = [Return.customer_id == customer_id]
            if sale_ids:
                criteria.append(Return.sale_id.in_(sale_ids))
            returns = session.query(Return).filter(or_(*criteria)).all()
            for sale_return in returns:
                session.delete(sale_return)
            session.flush()

            # Step 2: Sales (own their lines and applied promotions)
            sales = session.query(Sale).filter(Sale.id.in_(sale_ids)).all() if sale_ids else []
            line_count = 0
            for sale in sales:
                line_count += len(sale.lines)
                session.delete(sale)
            session.flush()

            result.cascaded = {'returns': len(returns), 'sales': len(sales), 'sale_lines': line_count}
            logger.warning(
                f"Force deleting customer id={customer_id}: cascaded "
                f"{len(sales)} sale(s), {len(returns)} return(s)"
            )
            session.expire(customer, ['sales', 'returns'])

        # Step 3: Customer
        session.delete(customer)
        session.commit()

    except OrderDeskError:
        session.rollback()
        raise
    except IntegrityError as e:
        session.rollback()
        raise _translate_integrity_error(session, 'Customer', customer_id, e)
    except Exception as e:
        session.rollback()
        logger.exception(f'Unexpected error deleting customer {customer_id}')
        raise OrderDeskError('Internal error while deleting customer') from e

    logger.info(f"Customer id={customer_id} deleted")
    if result.cascaded:
        invalidate_reports()
    return result


def delete_product(session, product_id: int) -> DeletionResult:
    """
    Delete a product that never took part in a sale, return or purchase order.

    There is no force mode: history-bearing products are deactivated instead.
    """
    try:
        product = _get_or_404(session, Product, product_id, 'Product')

        dependents = (
            ('Sale Lines', SaleLine.id, SaleLine.product_id),
            ('Return Items', ReturnItem.id, ReturnItem.product_id),
            ('Purchase Order Lines', PurchaseOrderLine.id, PurchaseOrderLine.product_id),
        )
        for label, id_column, fk_column in dependents:
            count = _count(session, id_column, fk_column == product_id)
            if count:
                logger.warning(f"Refused deletion of product id={product_id}: {count} {label.lower()}")
                raise DataIntegrityError.product_has_history(product_id, label, count)

        session.delete(product)
        session.commit()

    except OrderDeskError:
        session.rollback()
        raise
    except IntegrityError as e:
        session.rollback()
        raise _translate_integrity_error(session, 'Product', product_id, e)
    except Exception as e:
        session.rollback()
        logger.exception(f'Unexpected error deleting product {product_id}')
        raise OrderDeskError('Internal error while deleting product') from e

    logger.info(f"Product id={product_id} deleted")
    return DeletionResult('product', product_id)


def deactivate_product(session, product_id: int) -> Product:
    """Mark a product inactive so it can no longer be sold; history stays intact."""
    try:
        product = _get_or_404(session, Product, product_id, 'Product')
        product.is_active = False
        session.commit()
    except OrderDeskError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        logger.exception(f'Unexpected error deactivating product {product_id}')
        raise OrderDeskError('Internal error while deactivating product') from e

    logger.info(f"Product id={product_id} deactivated")
    return product


def delete_category(session, category_id: int) -> DeletionResult:
    """Delete a category; its products are kept and become uncategorised."""
    try:
        category = _get_or_404(session, Category, category_id, 'Category')

        detached = session.query(Product).filter(
            Product.category_id == category_id
        ).update({Product.category_id: None}, synchronize_session='fetch')

        session.expire(category, ['products'])
        session.delete(category)
        session.commit()

    except OrderDeskError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        logger.exception(f'Unexpected error deleting category {category_id}')
        raise OrderDeskError('Internal error while deleting category') from e

    logger.info(f"Category id={category_id} deleted, {detached} product(s) uncategorised")
    return DeletionResult('category', category_id, cascaded={'products_uncategorised': detached})


def delete_supplier(session, supplier_id: int, force: bool = False) -> DeletionResult:
    """
    Delete a supplier.

    Safe mode refuses while open purchase orders (PENDING, APPROVED, ORDERED)
    exist. Force mode deletes every purchase order of the supplier with its
    lines; closed orders are deleted in both modes.
    """
    try:
        supplier = _get_or_404(session, Supplier, supplier_id, 'Supplier')

        open_count = _count(
            session, PurchaseOrder.id,
            PurchaseOrder.supplier_id == supplier_id,
            PurchaseOrder.status.in_(OPEN_PURCHASE_ORDER_STATUSES)
        )
        if open_count and not force:
            logger.warning(f"Refused deletion of supplier id={supplier_id}: {open_count} open purchase order(s)")
            raise DataIntegrityError.supplier_has_purchase_orders(supplier_id, open_count)

        orders = session.query(PurchaseOrder).filter(PurchaseOrder.supplier_id == supplier_id).all()
        line_count = 0
        for order in orders:
            line_count += len(order.lines)
            session.delete(order)
        session.flush()

        if force and open_count:
            logger.warning(
                f"Force deleting supplier id={supplier_id}: cascaded {len(orders)} purchase order(s)"
            )
        session.expire(supplier, ['purchase_orders'])
        session.delete(supplier)
        session.commit()

    except OrderDeskError:
        session.rollback()
        raise
    except IntegrityError as e:
        session.rollback()
        raise _translate_integrity_error(session, 'Supplier', supplier_id, e)
    except Exception as e:
        session.rollback()
        logger.exception(f'Unexpected error deleting supplier {supplier_id}')
        raise OrderDeskError('Internal error while deleting supplier') from e

    logger.info(f"Supplier id={supplier_id} deleted")
    return DeletionResult(
        'supplier', supplier_id, forced=force,
        cascaded={'purchase_orders': len(orders), 'purchase_order_lines': line_count}
    )


def _translate_integrity_error(session, resource_type: str, resource_id: int, error: IntegrityError):
    """Last-resort mapping of a storage constraint violation to DataIntegrityError."""
    logger.error(f"Storage integrity violation deleting {resource_type.lower()} id={resource_id}: {error.orig}")
    try:
        counts = count_dependents(session, resource_type, resource_id)
    except OrderDeskError:
        counts = {}
    return DataIntegrityError(
        resource_type, resource_id, 'Related Records', sum(counts.values()),
        message=f"Cannot delete {resource_type.lower()} because other records still reference it",
        error_code='FOREIGN_KEY_CONSTRAINT'
    )
