# Overview: Service-layer operations for the payment record ledger.

"""
Payment Record Ledger

WHY: Every money movement (sale income, restock expense) is written once to
payment_records so cash flow can be audited independently of sales/stock.

DESIGN PRINCIPLES:
- Append-only: records are inserted, never edited. They are only removed
  together with the sale/stock-in they reference.
- Typed references: a record points at a Sale or a StockIn through a
  PaymentReference built by sale_reference()/purchase_reference().
- Callers own the transaction: record_payment() flushes, never commits.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from sqlalchemy import func

from ..extensions import db
from ..models import PaymentRecord
from ..time_utils import utcnow
from .errors import ValidationError


# =============================================================================
# REFERENCE TYPES (CONSTANTS)
# =============================================================================

REFERENCE_SALE = "sale"
REFERENCE_PURCHASE = "purchase"

VALID_REFERENCE_TYPES = [REFERENCE_SALE, REFERENCE_PURCHASE]

PAYMENT_TYPE_INCOME = "income"
PAYMENT_TYPE_EXPENSE = "expense"

VALID_PAYMENT_TYPES = [PAYMENT_TYPE_INCOME, PAYMENT_TYPE_EXPENSE]

METHOD_CASH = "Cash"
METHOD_BAKONG = "Bakong"

RECORD_STATUS_COMPLETED = "completed"


@dataclass(frozen=True)
class PaymentReference:
    """What a payment record pays for: a sale or a purchase (stock-in)."""
    reference_type: str
    reference_id: int

    def __post_init__(self):
        if self.reference_type not in VALID_REFERENCE_TYPES:
            raise ValidationError(
                f"Invalid reference type: {self.reference_type}. Must be one of {VALID_REFERENCE_TYPES}"
            )


def sale_reference(sale_id: int) -> PaymentReference:
    return PaymentReference(REFERENCE_SALE, sale_id)


def purchase_reference(stock_in_id: int) -> PaymentReference:
    return PaymentReference(REFERENCE_PURCHASE, stock_in_id)


# =============================================================================
# RECORDING
# =============================================================================

def record_payment(
    reference: PaymentReference,
    *,
    amount_cents: int,
    payment_type: str,
    payment_method: str,
    paid_to_from: str,
    recorded_by: int,
    bill_number: str | None = None,
    confirmation_reference: str | None = None,
    payment_date: date | None = None,
) -> PaymentRecord:
    """
    Append a payment record inside the caller's transaction.

    Raises:
        ValidationError: If payment type is unknown or amount is negative
    """
    if payment_type not in VALID_PAYMENT_TYPES:
        raise ValidationError(f"Invalid payment type: {payment_type}. Must be one of {VALID_PAYMENT_TYPES}")

    if amount_cents < 0:
        raise ValidationError("Payment amount cannot be negative")

    record = PaymentRecord(
        reference_type=reference.reference_type,
        reference_id=reference.reference_id,
        amount_cents=amount_cents,
        payment_type=payment_type,
        payment_method=payment_method,
        paid_to_from=paid_to_from,
        payment_date=payment_date or utcnow().date(),
        bill_number=bill_number,
        recorded_by=recorded_by,
        status=RECORD_STATUS_COMPLETED,
        confirmation_reference=confirmation_reference,
    )
    db.session.add(record)
    db.session.flush()  # Get record ID
    return record


def find_payment(reference: PaymentReference) -> PaymentRecord | None:
    """The first record for a reference, or None."""
    return (
        db.session.query(PaymentRecord)
        .filter_by(reference_type=reference.reference_type, reference_id=reference.reference_id)
        .order_by(PaymentRecord.id)
        .first()
    )


def list_payments(reference_type: str | None = None, reference_id: int | None = None) -> list[PaymentRecord]:
    query = db.session.query(PaymentRecord)
    if reference_type is not None:
        if reference_type not in VALID_REFERENCE_TYPES:
            raise ValidationError(f"Invalid reference type: {reference_type}")
        query = query.filter_by(reference_type=reference_type)
    if reference_id is not None:
        query = query.filter_by(reference_id=reference_id)
    return query.order_by(PaymentRecord.id).all()


def delete_payments_for(reference: PaymentReference) -> int:
    """Remove every record for a reference (used only by reversals). Returns count."""
    records = list_payments(reference.reference_type, reference.reference_id)
    for record in records:
        db.session.delete(record)
    return len(records)


# =============================================================================
# REPORTING
# =============================================================================

def payment_totals() -> dict:
    """
    Income/expense totals over all completed records.

    Returns:
        {"income_cents": ..., "expense_cents": ..., "net_cents": ...}
    """
    rows = (
        db.session.query(PaymentRecord.payment_type, func.coalesce(func.sum(PaymentRecord.amount_cents), 0))
        .filter(PaymentRecord.status == RECORD_STATUS_COMPLETED)
        .group_by(PaymentRecord.payment_type)
        .all()
    )
    totals = {payment_type: int(total) for payment_type, total in rows}
    income = totals.get(PAYMENT_TYPE_INCOME, 0)
    expense = totals.get(PAYMENT_TYPE_EXPENSE, 0)
    return {
        "income_cents": income,
        "expense_cents": expense,
        "net_cents": income - expense,
    }
