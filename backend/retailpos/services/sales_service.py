"""
Sales Service - sale lookup, invoice numbering and sale deletion/reversal

WHY: Checkout (checkout_service) and reconciliation (reconcile_service) create
and settle sales; this module owns what is shared between them and the
inverse operation, deletion.
"""

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import Sale, SaleItem
from ..time_utils import utcnow
from . import activity_service
from .concurrency import claim_row, run_with_retry
from .errors import SaleNotFoundError, ValidationError
from .inventory_service import credit
from .payment_service import delete_payments_for, find_payment, sale_reference
from .reporting_service import invalidate_reports


# =============================================================================
# SALE STATUS (CONSTANTS)
# =============================================================================

SALE_STATUS_PENDING = "pending"
SALE_STATUS_PAID = "paid"

VALID_SALE_STATUSES = [SALE_STATUS_PENDING, SALE_STATUS_PAID]

PAYMENT_STATUS_UNPAID = "unpaid"
PAYMENT_STATUS_PARTIAL = "partial"
PAYMENT_STATUS_PAID = "paid"

PAYMENT_METHOD_CASH = "Cash"
PAYMENT_METHOD_QR = "QR"

VALID_PAYMENT_METHODS = [PAYMENT_METHOD_CASH, PAYMENT_METHOD_QR]

MODULE_SALES = "sales"


def generate_invoice_number(sale_id: int, year: int | None = None) -> str:
    """INV-<year>-<6-digit zero-padded sale id>."""
    if year is None:
        year = utcnow().year
    return f"INV-{year}-{sale_id:06d}"


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise SaleNotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    return sale


def get_sale_items(sale_id: int) -> list[SaleItem]:
    return db.session.query(SaleItem).filter_by(sale_id=sale_id).order_by(SaleItem.id).all()


def get_sale_detail(sale_id: int) -> dict:
    """Sale with its items and payment record, for API responses."""
    sale = get_sale(sale_id)
    payment = find_payment(sale_reference(sale_id))
    return {
        "sale": sale.to_dict(),
        "items": [item.to_dict() for item in get_sale_items(sale_id)],
        "payment": payment.to_dict() if payment else None,
    }


def list_sales(status: str | None = None, limit: int = 200) -> list[Sale]:
    """Most recent sales first, optionally filtered by status."""
    query = db.session.query(Sale)
    if status is not None:
        if status not in VALID_SALE_STATUSES:
            raise ValidationError(f"Invalid status: {status}. Must be one of {VALID_SALE_STATUSES}")
        query = query.filter(Sale.status == status)
    return query.order_by(Sale.id.desc()).limit(limit).all()


def list_pending_sales(older_than: datetime | None = None) -> list[Sale]:
    """
    QR sales still awaiting confirmation, oldest first.

    older_than filters on created_at (inclusive) for re-polling jobs.
    """
    query = db.session.query(Sale).filter(
        Sale.status == SALE_STATUS_PENDING,
        Sale.pending_payment_reference.isnot(None),
    )
    if older_than is not None:
        query = query.filter(Sale.created_at <= older_than)
    return query.order_by(Sale.created_at, Sale.id).all()


def delete_sale(sale_id: int, user_id: int | None = None) -> dict:
    """
    Delete a sale and reverse its effects in one transaction.

    - Stock is credited back only if the sale was paid (cash checkout or a
      reconciled QR sale). A pending QR sale never debited stock.
    - Items and payment records referencing the sale are removed with it.

    The sale row is claimed before payment_status is read, so a reconciliation
    racing with the deletion either settles first (and is reversed here) or
    finds the sale gone.

    Returns:
        {"sale_id": ..., "restocked": bool, "items": n, "payments_removed": n}
    """
    def _op():
        if not claim_row(Sale, sale_id):
            raise SaleNotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})

        sale = db.session.get(Sale, sale_id, populate_existing=True)
        items = get_sale_items(sale_id)
        was_paid = sale.payment_status == PAYMENT_STATUS_PAID

        if was_paid:
            for item in items:
                credit(item.product_id, item.quantity)

        payments_removed = delete_payments_for(sale_reference(sale_id))

        for item in items:
            db.session.delete(item)
        db.session.delete(sale)

        db.session.commit()
        return {
            "sale_id": sale_id,
            "restocked": was_paid,
            "items": len(items),
            "payments_removed": payments_removed,
        }

    result = run_with_retry(_op)

    invalidate_reports()
    activity_service.record(user_id, activity_service.ACTION_DELETED, MODULE_SALES, sale_id)
    return result
