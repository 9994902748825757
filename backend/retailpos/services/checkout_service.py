# Overview: Checkout orchestration; turns a cart into a persisted sale plus its settlement path.

"""
Checkout Service

WHY: A checkout must either fully commit (sale, items, stock effects, payment
artifact) or leave nothing behind.

FLOW (one transaction, retried as a whole on lock contention):
1. Validate input shape (before any transaction opens).
2. Batch-load and lock every referenced product; verify cumulative demand per
   product against current stock without decrementing. The first failing
   product aborts the checkout.
3. Price every line with pricing.price_line.
4. Insert the sale with a placeholder invoice number and bulk-insert items
   carrying the price snapshot.
5. Assign INV-YYYY-NNNNNN from the sale id.
6. Cash: guarded debit per line, then one income PaymentRecord.
   QR: ask the gateway for a QR charge and store its confirmation key as the
   sale's pending_payment_reference; stock is untouched until reconciliation.
7. Commit. Activity log and report cache invalidation happen after commit.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Customer, Sale, SaleItem, User
from ..time_utils import utcnow
from . import activity_service
from .concurrency import run_with_retry
from .errors import InsufficientStockError, InvalidReferenceError, ValidationError
from .gateway import PaymentGateway, get_payment_gateway, is_chargeable, merchant_from_config
from .inventory_service import STOCK_OK, debit, get_products
from .payment_service import (
    METHOD_CASH,
    PAYMENT_TYPE_INCOME,
    record_payment,
    sale_reference,
)
from .pricing import LinePrice, parse_discount_percent, price_line
from .reporting_service import invalidate_reports
from .sales_service import (
    MODULE_SALES,
    PAYMENT_METHOD_CASH,
    PAYMENT_METHOD_QR,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_UNPAID,
    SALE_STATUS_PAID,
    SALE_STATUS_PENDING,
    VALID_PAYMENT_METHODS,
    generate_invoice_number,
)


@dataclass(frozen=True)
class CheckoutLine:
    product_id: int
    quantity: int
    discount_percent: Decimal = Decimal("0")


@dataclass
class CheckoutResult:
    sale: Sale
    items: list[SaleItem]
    total_amount_cents: int
    invoice_number: str
    payment: object | None = None
    qr_payload: str | None = None
    confirmation_key: str | None = None

    def to_dict(self) -> dict:
        return {
            "sale": self.sale.to_dict(),
            "items": [item.to_dict() for item in self.items],
            "total_amount_cents": self.total_amount_cents,
            "invoice_number": self.invoice_number,
            "payment": self.payment.to_dict() if self.payment is not None else None,
            "qr_payload": self.qr_payload,
            "confirmation_key": self.confirmation_key,
        }


# =============================================================================
# INPUT VALIDATION
# =============================================================================

def _require_id(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"{name} must be a positive integer", details={name: value})
    return value


def parse_checkout_lines(raw_items) -> list[CheckoutLine]:
    """
    Convert request items into CheckoutLines.

    Accepts CheckoutLine instances or dicts with product_id, quantity and an
    optional discount_percent. Order is preserved.
    """
    if not isinstance(raw_items, (list, tuple)) or not raw_items:
        raise ValidationError("items must be a non-empty list")

    lines = []
    for index, raw in enumerate(raw_items):
        if isinstance(raw, CheckoutLine):
            raw = {
                "product_id": raw.product_id,
                "quantity": raw.quantity,
                "discount_percent": raw.discount_percent,
            }
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")

        try:
            product_id = _require_id(raw.get("product_id"), "product_id")
            quantity = raw.get("quantity")
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
                raise ValidationError("quantity must be an integer >= 1", details={"quantity": quantity})
            discount = parse_discount_percent(raw.get("discount_percent"))
        except ValidationError as exc:
            exc.details = {"line": index, **exc.details}
            raise

        lines.append(CheckoutLine(product_id=product_id, quantity=quantity, discount_percent=discount))
    return lines


def _validate_request(customer_id, items, payment_method, user_id) -> list[CheckoutLine]:
    _require_id(customer_id, "customer_id")
    _require_id(user_id, "user_id")
    if payment_method not in VALID_PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {payment_method}. Must be one of {VALID_PAYMENT_METHODS}"
        )
    return parse_checkout_lines(items)


# =============================================================================
# CHECKOUT
# =============================================================================

def _verify_stock(lines: list[CheckoutLine], products: dict) -> None:
    """Abort on the first line whose cumulative demand exceeds current stock."""
    demanded: dict[int, int] = {}
    for line in lines:
        demanded[line.product_id] = demanded.get(line.product_id, 0) + line.quantity
        on_hand = products[line.product_id].stock_quantity
        if demanded[line.product_id] > on_hand:
            raise InsufficientStockError(line.product_id, demanded[line.product_id], on_hand)


def checkout(
    customer_id: int,
    items,
    payment_method: str,
    user_id: int,
    *,
    gateway: PaymentGateway | None = None,
) -> CheckoutResult:
    """
    Create a sale from a cart and settle it (Cash) or open it for QR payment.

    Raises:
        ValidationError: Bad input shape (no transaction was opened)
        InvalidReferenceError: Unknown customer, user or product
        InsufficientStockError: A line asks for more than is in stock
        GatewayUnavailableError: QR path only; the sale was rolled back
    """
    lines = _validate_request(customer_id, items, payment_method, user_id)

    if payment_method == PAYMENT_METHOD_QR and gateway is None:
        gateway = get_payment_gateway()

    merchant = merchant_from_config(current_app.config) if payment_method == PAYMENT_METHOD_QR else None

    def _op() -> CheckoutResult:
        customer = db.session.get(Customer, customer_id)
        if not customer:
            raise InvalidReferenceError(f"Customer {customer_id} not found", details={"customer_id": customer_id})

        if not db.session.get(User, user_id):
            raise InvalidReferenceError(f"User {user_id} not found", details={"user_id": user_id})

        products = get_products([line.product_id for line in lines], lock=True)
        missing = [line.product_id for line in lines if line.product_id not in products]
        if missing:
            raise InvalidReferenceError(
                f"Product {missing[0]} not found",
                details={"product_ids": sorted(set(missing))},
            )

        _verify_stock(lines, products)

        priced: list[tuple[CheckoutLine, LinePrice]] = [
            (line, price_line(products[line.product_id].unit_price_cents, line.quantity, line.discount_percent))
            for line in lines
        ]
        total = sum(price.line_total_cents for _, price in priced)
        discount = sum(price.discount_cents for _, price in priced)

        if payment_method == PAYMENT_METHOD_QR and total <= 0:
            raise ValidationError("QR payment requires a positive total", details={"total_amount_cents": total})

        if payment_method == PAYMENT_METHOD_QR and not is_chargeable(total, merchant.currency):
            raise ValidationError(
                f"Total cannot be charged exactly in {merchant.currency}",
                details={"total_amount_cents": total, "currency": merchant.currency},
            )

        is_cash = payment_method == PAYMENT_METHOD_CASH
        sale = Sale(
            customer_id=customer_id,
            sold_by=user_id,
            invoice_number=f"PENDING-{uuid.uuid4().hex}",
            total_amount_cents=total,
            discount_cents=discount,
            payment_method=payment_method,
            payment_status=PAYMENT_STATUS_PAID if is_cash else PAYMENT_STATUS_UNPAID,
            status=SALE_STATUS_PAID if is_cash else SALE_STATUS_PENDING,
        )
        db.session.add(sale)
        db.session.flush()  # Get sale ID

        sale_items = [
            SaleItem(
                sale_id=sale.id,
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price_cents=price.unit_price_cents,
                discount_percent=price.discount_percent,
                discount_amount_cents=price.discount_cents,
                line_total_cents=price.line_total_cents,
            )
            for line, price in priced
        ]
        db.session.add_all(sale_items)

        sale.invoice_number = generate_invoice_number(sale.id)
        db.session.flush()

        result = CheckoutResult(
            sale=sale,
            items=sale_items,
            total_amount_cents=total,
            invoice_number=sale.invoice_number,
        )

        if is_cash:
            for line in lines:
                if debit(line.product_id, line.quantity) != STOCK_OK:
                    # Lost a race after the pre-check; the whole sale rolls back
                    raise InsufficientStockError(
                        line.product_id,
                        line.quantity,
                        None,
                        message=f"Insufficient stock for product {line.product_id} (concurrent checkout)",
                    )
            sale.paid_at = utcnow()
            result.payment = record_payment(
                sale_reference(sale.id),
                amount_cents=total,
                payment_type=PAYMENT_TYPE_INCOME,
                payment_method=METHOD_CASH,
                paid_to_from=customer.name,
                recorded_by=user_id,
                bill_number=sale.invoice_number,
            )
        else:
            charge = gateway.generate_qr(total, merchant, sale.invoice_number)
            sale.pending_payment_reference = charge.confirmation_key
            sale.qr_payload = charge.qr_payload
            result.qr_payload = charge.qr_payload
            result.confirmation_key = charge.confirmation_key

        db.session.commit()
        return result

    result = run_with_retry(_op)

    invalidate_reports()
    activity_service.record(user_id, activity_service.ACTION_CREATED, MODULE_SALES, result.sale.id)
    return result
