# Overview: Inventory ledger; the only code path that changes Product.stock_quantity.

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import Product
from .concurrency import lock_for_update, guarded_update
from .errors import InvalidReferenceError, ValidationError
"""
Inventory Ledger Invariants (authoritative)

- Product.stock_quantity is a committed counter that never goes negative.
- Every decrement is a guarded conditional UPDATE:
      UPDATE products SET stock_quantity = stock_quantity - :qty
      WHERE id = :id AND stock_quantity >= :qty
  and success is judged from the affected-row count, never from a value read
  earlier in the transaction.
- A guard miss returns STOCK_INSUFFICIENT. It is an expected outcome, not an
  exception; callers decide whether it aborts their unit of work.
- Nothing here commits. Callers own the transaction.
"""


STOCK_OK = "ok"
STOCK_INSUFFICIENT = "insufficient_stock"


def _require_positive(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("quantity must be a positive integer", details={"quantity": quantity})
    return quantity


def _expire_cached(product_id: int) -> None:
    # Guarded updates bypass the identity map; drop any stale in-session copy.
    key = db.session.identity_key(Product, product_id)
    cached = db.session.identity_map.get(key)
    if cached is not None:
        db.session.expire(cached, ["stock_quantity"])


def _product_exists(product_id: int) -> bool:
    return db.session.query(Product.id).filter_by(id=product_id).scalar() is not None


def get_products(product_ids, *, lock: bool = False) -> dict[int, Product]:
    """
    Batch-load products by id (one query for the whole cart).

    Rows are ordered by id so concurrent lockers acquire locks in the same order.
    """
    ids = sorted(set(product_ids))
    if not ids:
        return {}
    query = db.session.query(Product).filter(Product.id.in_(ids)).order_by(Product.id)
    if lock:
        # Locked reads must see committed stock, not a stale in-session copy
        query = lock_for_update(query).populate_existing()
    return {product.id: product for product in query.all()}


def get_stock_level(product_id: int) -> int:
    qty = db.session.query(Product.stock_quantity).filter_by(id=product_id).scalar()
    if qty is None:
        raise InvalidReferenceError(f"Product {product_id} not found", details={"product_id": product_id})
    return int(qty)


def reserve_and_check(product_id: int, quantity: int) -> str:
    """
    Lock the product row and report whether `quantity` is currently available.

    Does not mutate stock.
    """
    _require_positive(quantity)
    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if product is None:
        raise InvalidReferenceError(f"Product {product_id} not found", details={"product_id": product_id})
    return STOCK_OK if product.stock_quantity >= quantity else STOCK_INSUFFICIENT


def debit(product_id: int, quantity: int) -> str:
    """Guarded decrement. Returns STOCK_OK or STOCK_INSUFFICIENT."""
    _require_positive(quantity)
    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.stock_quantity >= quantity)
        .values(stock_quantity=Product.stock_quantity - quantity)
    )
    if guarded_update(stmt):
        _expire_cached(product_id)
        return STOCK_OK

    if not _product_exists(product_id):
        raise InvalidReferenceError(f"Product {product_id} not found", details={"product_id": product_id})
    return STOCK_INSUFFICIENT


def credit(product_id: int, quantity: int) -> str:
    """Unconditional increment (restock, sale reversal)."""
    _require_positive(quantity)
    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(stock_quantity=Product.stock_quantity + quantity)
    )
    if not guarded_update(stmt):
        raise InvalidReferenceError(f"Product {product_id} not found", details={"product_id": product_id})
    _expire_cached(product_id)
    return STOCK_OK


def is_low_stock(product: Product) -> bool:
    return product.stock_quantity <= product.reorder_level


def get_low_stock_products() -> list[Product]:
    return (
        db.session.query(Product)
        .filter(Product.stock_quantity <= Product.reorder_level)
        .order_by(Product.stock_quantity, Product.id)
        .all()
    )
