# Overview: Settles pending QR sales against gateway confirmations, exactly once.

"""
Payment Reconciliation Service

WHY: QR payments are confirmed asynchronously and confirmation callbacks can
arrive late, twice, or concurrently. Settlement (sale -> paid, stock debit,
income PaymentRecord) must happen exactly once per sale.

ALGORITHM:
1. Load the sale (not_found if absent).
2. Already paid -> return the existing state and PaymentRecord; no effects.
3. The supplied key is only a lookup handle: it must equal the sale's
   pending_payment_reference, and the gateway is always asked whether that
   charge is acknowledged. Otherwise payment_not_confirmed, sale untouched.
4. In one transaction: compare-and-set the sale to paid
   (UPDATE ... WHERE payment_status != 'paid'), debit every item with the
   guarded ledger debit, append one income PaymentRecord, commit.

The compare-and-set in step 4 is the concurrency gate: of two near-simultaneous
callbacks only one matches the guard; the other observes "already settled"
and returns the winner's state.

A failed debit in step 4 is a consistency anomaly (the sale was accepted
without reserving stock and the stock is gone): it is logged at CRITICAL, the
transaction rolls back, and ConsistencyAnomalyError propagates.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import PaymentRecord, Sale
from ..time_utils import utcnow
from . import activity_service
from .concurrency import guarded_update, run_with_retry
from .errors import (
    ConsistencyAnomalyError,
    PaymentNotConfirmedError,
    SaleNotFoundError,
    ServiceError,
    ValidationError,
)
from .gateway import ConfirmationStatus, PaymentGateway, get_payment_gateway
from .inventory_service import STOCK_OK, debit, get_stock_level
from .payment_service import (
    METHOD_BAKONG,
    PAYMENT_TYPE_INCOME,
    find_payment,
    record_payment,
    sale_reference,
)
from .reporting_service import invalidate_reports
from .sales_service import (
    MODULE_SALES,
    PAYMENT_STATUS_PAID,
    SALE_STATUS_PAID,
    get_sale,
    get_sale_items,
    list_pending_sales,
)


@dataclass
class ReconcileResult:
    sale: Sale
    payment: PaymentRecord | None
    already_settled: bool

    def to_dict(self) -> dict:
        return {
            "sale": self.sale.to_dict(),
            "payment": self.payment.to_dict() if self.payment is not None else None,
            "already_settled": self.already_settled,
        }


def _settled(sale_id: int) -> ReconcileResult:
    sale = get_sale(sale_id)
    return ReconcileResult(sale=sale, payment=find_payment(sale_reference(sale_id)), already_settled=True)


def _verify(sale: Sale, confirmation_key: str, gateway: PaymentGateway) -> ConfirmationStatus:
    reference = sale.pending_payment_reference
    if not reference or not hmac.compare_digest(reference, confirmation_key):
        raise PaymentNotConfirmedError(
            "Confirmation key does not match this sale",
            details={"sale_id": sale.id},
        )

    status = gateway.check_confirmation(confirmation_key)
    if not status.acknowledged:
        raise PaymentNotConfirmedError(
            "Payment not confirmed by gateway",
            details={"sale_id": sale.id},
        )

    if status.amount_cents is not None and status.amount_cents != sale.total_amount_cents:
        current_app.logger.error(
            "Gateway amount mismatch for sale %s: expected %s cents, got %s",
            sale.id, sale.total_amount_cents, status.amount_cents,
        )
        raise PaymentNotConfirmedError(
            "Confirmed amount does not match sale total",
            details={
                "sale_id": sale.id,
                "expected_cents": sale.total_amount_cents,
                "confirmed_cents": status.amount_cents,
            },
        )
    return status


def _settle(sale_id: int, status: ConfirmationStatus, user_id: int | None) -> ReconcileResult:
    now = utcnow()
    stmt = (
        update(Sale)
        .where(Sale.id == sale_id, Sale.payment_status != PAYMENT_STATUS_PAID)
        .values(status=SALE_STATUS_PAID, payment_status=PAYMENT_STATUS_PAID, paid_at=now)
    )
    if not guarded_update(stmt):
        # Lost the race (or the sale was deleted); report the winner's state
        db.session.rollback()
        return _settled(sale_id)

    sale = db.session.get(Sale, sale_id, populate_existing=True)

    for item in get_sale_items(sale_id):
        if debit(item.product_id, item.quantity) != STOCK_OK:
            available = get_stock_level(item.product_id)
            current_app.logger.critical(
                "CONSISTENCY ANOMALY: cannot settle sale %s (%s); product %s needs %s, only %s in stock",
                sale.id, sale.invoice_number, item.product_id, item.quantity, available,
            )
            raise ConsistencyAnomalyError(
                f"Stock for product {item.product_id} went missing before sale {sale.id} was settled",
                details={
                    "sale_id": sale.id,
                    "product_id": item.product_id,
                    "requested_quantity": item.quantity,
                    "available_quantity": available,
                },
            )

    payment = find_payment(sale_reference(sale_id))
    if payment is None:
        payment = record_payment(
            sale_reference(sale_id),
            amount_cents=sale.total_amount_cents,
            payment_type=PAYMENT_TYPE_INCOME,
            payment_method=METHOD_BAKONG,
            paid_to_from=sale.customer.name,
            recorded_by=user_id or sale.sold_by,
            bill_number=sale.invoice_number,
            confirmation_reference=status.external_ref,
        )

    db.session.commit()
    return ReconcileResult(sale=sale, payment=payment, already_settled=False)


def reconcile(
    sale_id: int,
    confirmation_key: str,
    user_id: int | None = None,
    *,
    gateway: PaymentGateway | None = None,
) -> ReconcileResult:
    """
    Settle a pending QR sale. Safe to call any number of times.

    Raises:
        ValidationError: Missing confirmation key
        SaleNotFoundError: No such sale
        PaymentNotConfirmedError: Key mismatch or gateway says unpaid
        GatewayUnavailableError: Gateway unreachable; nothing changed
        ConsistencyAnomalyError: Stock missing at settlement; rolled back
    """
    if not confirmation_key or not isinstance(confirmation_key, str):
        raise ValidationError("confirmation_key required")

    sale = get_sale(sale_id)
    if sale.payment_status == PAYMENT_STATUS_PAID:
        current_app.logger.info("Duplicate reconciliation for sale %s ignored", sale_id)
        return _settled(sale_id)

    status = _verify(sale, confirmation_key, gateway or get_payment_gateway())

    result = run_with_retry(lambda: _settle(sale_id, status, user_id))

    if not result.already_settled:
        invalidate_reports()
        activity_service.record(
            user_id or result.sale.sold_by, activity_service.ACTION_PAID, MODULE_SALES, sale_id
        )
    return result


def reconcile_by_reference(
    confirmation_key: str,
    user_id: int | None = None,
    *,
    gateway: PaymentGateway | None = None,
) -> ReconcileResult:
    """Callback path: resolve the sale from its pending reference, then reconcile()."""
    if not confirmation_key or not isinstance(confirmation_key, str):
        raise ValidationError("confirmation_key required")

    sale_id = (
        db.session.query(Sale.id)
        .filter(Sale.pending_payment_reference == confirmation_key)
        .scalar()
    )
    if sale_id is None:
        raise SaleNotFoundError(
            "No sale is waiting for this confirmation",
            details={"confirmation_key": confirmation_key},
        )
    return reconcile(sale_id, confirmation_key, user_id, gateway=gateway)


def reconcile_pending(older_than=None, *, gateway: PaymentGateway | None = None) -> dict:
    """
    Re-poll the gateway for every pending QR sale.

    Caller-side retry loop: each sale is reconciled independently and
    unconfirmed ones are simply left pending for the next run.

    Returns:
        {"settled": [ids], "unconfirmed": [ids], "failed": {id: code}}
    """
    gateway = gateway or get_payment_gateway()
    summary = {"settled": [], "unconfirmed": [], "failed": {}}
    for sale_id, key in [(s.id, s.pending_payment_reference) for s in list_pending_sales(older_than)]:
        try:
            result = reconcile(sale_id, key, gateway=gateway)
        except PaymentNotConfirmedError:
            summary["unconfirmed"].append(sale_id)
        except ServiceError as exc:
            current_app.logger.error("Reconciliation of sale %s failed: %s", sale_id, exc)
            summary["failed"][sale_id] = exc.code
        else:
            if not result.already_settled:
                summary["settled"].append(sale_id)
    return summary
