# Overview: Restock (stock-in) and manual stock-out operations.

from __future__ import annotations

import uuid
from datetime import date

from ..extensions import db
from ..models import Product, StockIn, StockOut, Supplier, User
from ..time_utils import utcnow
from . import activity_service
from .concurrency import claim_row, run_with_retry
from .errors import InsufficientStockError, InvalidReferenceError, NotFoundError, ValidationError
from .inventory_service import STOCK_OK, credit, debit, get_stock_level
from .payment_service import (
    METHOD_CASH,
    PAYMENT_TYPE_EXPENSE,
    delete_payments_for,
    purchase_reference,
    record_payment,
)
from .reporting_service import invalidate_reports


MODULE_STOCK_INS = "stock_ins"
MODULE_STOCK_OUTS = "stock_outs"


def generate_stock_in_code(stock_in_id: int, year: int | None = None) -> str:
    """STK-<year>-<6-digit zero-padded stock-in id>."""
    if year is None:
        year = utcnow().year
    return f"STK-{year}-{stock_in_id:06d}"


def _require_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("quantity must be an integer >= 1", details={"quantity": quantity})
    return quantity


def _require(model, row_id, name: str):
    row = db.session.get(model, row_id) if isinstance(row_id, int) else None
    if row is None:
        raise InvalidReferenceError(f"{name.capitalize()} {row_id} not found", details={f"{name}_id": row_id})
    return row


def receive_stock(
    supplier_id: int,
    product_id: int,
    quantity: int,
    unit_cost_cents: int,
    received_by: int,
    received_date: date | None = None,
    remarks: str | None = None,
) -> StockIn:
    """
    Record a restock: StockIn row, ledger credit and one expense PaymentRecord,
    all in one transaction.
    """
    _require_quantity(quantity)
    if isinstance(unit_cost_cents, bool) or not isinstance(unit_cost_cents, int) or unit_cost_cents < 0:
        raise ValidationError("unit_cost_cents must be a non-negative integer")

    def _op():
        supplier = _require(Supplier, supplier_id, "supplier")
        _require(Product, product_id, "product")
        _require(User, received_by, "user")

        stock_in = StockIn(
            stock_in_code=f"PENDING-{uuid.uuid4().hex}",
            supplier_id=supplier_id,
            product_id=product_id,
            quantity=quantity,
            unit_cost_cents=unit_cost_cents,
            total_cost_cents=quantity * unit_cost_cents,
            received_date=received_date or utcnow().date(),
            received_by=received_by,
            remarks=remarks,
        )
        db.session.add(stock_in)
        db.session.flush()  # Get stock-in ID
        stock_in.stock_in_code = generate_stock_in_code(stock_in.id)

        credit(product_id, quantity)

        record_payment(
            purchase_reference(stock_in.id),
            amount_cents=stock_in.total_cost_cents,
            payment_type=PAYMENT_TYPE_EXPENSE,
            payment_method=METHOD_CASH,
            paid_to_from=supplier.name,
            recorded_by=received_by,
            bill_number=stock_in.stock_in_code,
            payment_date=stock_in.received_date,
        )

        db.session.commit()
        return stock_in

    stock_in = run_with_retry(_op)

    invalidate_reports()
    activity_service.record(received_by, activity_service.ACTION_CREATED, MODULE_STOCK_INS, stock_in.id)
    return stock_in


def delete_stock_in(stock_in_id: int, user_id: int | None = None) -> None:
    """
    Reverse a restock. The goods must still be on hand: the guarded debit
    fails with insufficient_stock if they were already sold.
    """
    def _op():
        if not claim_row(StockIn, stock_in_id):
            raise NotFoundError(f"Stock in {stock_in_id} not found", details={"stock_in_id": stock_in_id})
        stock_in = db.session.get(StockIn, stock_in_id, populate_existing=True)

        if debit(stock_in.product_id, stock_in.quantity) != STOCK_OK:
            raise InsufficientStockError(
                stock_in.product_id,
                stock_in.quantity,
                get_stock_level(stock_in.product_id),
                message=f"Cannot reverse stock in {stock_in.stock_in_code}: stock already consumed",
            )

        delete_payments_for(purchase_reference(stock_in_id))
        db.session.delete(stock_in)
        db.session.commit()

    run_with_retry(_op)

    invalidate_reports()
    activity_service.record(user_id, activity_service.ACTION_DELETED, MODULE_STOCK_INS, stock_in_id)


def record_stock_out(product_id: int, quantity: int, recorded_by: int, reason: str | None = None) -> StockOut:
    """Manual deduction through the guarded debit."""
    _require_quantity(quantity)

    def _op():
        _require(Product, product_id, "product")
        _require(User, recorded_by, "user")

        if debit(product_id, quantity) != STOCK_OK:
            raise InsufficientStockError(product_id, quantity, get_stock_level(product_id))

        stock_out = StockOut(product_id=product_id, quantity=quantity, reason=reason, recorded_by=recorded_by)
        db.session.add(stock_out)
        db.session.commit()
        return stock_out

    stock_out = run_with_retry(_op)

    invalidate_reports()
    activity_service.record(recorded_by, activity_service.ACTION_CREATED, MODULE_STOCK_OUTS, stock_out.id)
    return stock_out


def delete_stock_out(stock_out_id: int, user_id: int | None = None) -> None:
    """Reverse a manual deduction: credit the quantity back and drop the row."""
    def _op():
        if not claim_row(StockOut, stock_out_id):
            raise NotFoundError(f"Stock out {stock_out_id} not found", details={"stock_out_id": stock_out_id})
        stock_out = db.session.get(StockOut, stock_out_id, populate_existing=True)

        credit(stock_out.product_id, stock_out.quantity)
        db.session.delete(stock_out)
        db.session.commit()

    run_with_retry(_op)

    invalidate_reports()
    activity_service.record(user_id, activity_service.ACTION_DELETED, MODULE_STOCK_OUTS, stock_out_id)


def list_stock_ins(product_id: int | None = None) -> list[StockIn]:
    query = db.session.query(StockIn)
    if product_id is not None:
        query = query.filter_by(product_id=product_id)
    return query.order_by(StockIn.received_date, StockIn.id).all()


def list_stock_outs(product_id: int | None = None) -> list[StockOut]:
    query = db.session.query(StockOut)
    if product_id is not None:
        query = query.filter_by(product_id=product_id)
    return query.order_by(StockOut.created_at, StockOut.id).all()
