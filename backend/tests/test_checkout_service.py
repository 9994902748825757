"""
Checkout tests.

Verifies:
- Cash checkout debits stock and records exactly one income payment
- QR checkout leaves stock alone and stores the gateway confirmation key
- Every failure leaves no sale, no items, no payment and unchanged stock
- KHR QR totals must be whole riel
- Concurrent cash checkouts never sell more than is in stock
"""

import re
import threading

import pytest

from conftest import seed_rows, stock_of
from retailpos.extensions import db
from retailpos.models import ActivityLog, PaymentRecord, Product, Sale, SaleItem
from retailpos.services import checkout_service, reconcile_service
from retailpos.services.checkout_service import CheckoutLine
from retailpos.services.errors import (
    GatewayUnavailableError,
    InsufficientStockError,
    InvalidReferenceError,
    ValidationError,
)
from retailpos.services.inventory_service import STOCK_INSUFFICIENT


def assert_nothing_persisted():
    assert db.session.query(Sale).count() == 0
    assert db.session.query(SaleItem).count() == 0
    assert db.session.query(PaymentRecord).count() == 0


# =============================================================================
# CASH
# =============================================================================


class TestCashCheckout:

    def test_cash_sale_is_paid_and_debits_stock(self, seed):
        result = checkout_service.checkout(
            seed.customer_id,
            [{"product_id": seed.rice_id, "quantity": 3, "discount_percent": "10"}],
            "Cash",
            seed.cashier_id,
        )

        sale = result.sale
        assert sale.status == "paid"
        assert sale.payment_status == "paid"
        assert sale.paid_at is not None
        assert sale.total_amount_cents == 1755
        assert sale.discount_cents == 195
        assert re.fullmatch(r"INV-\d{4}-\d{6}", sale.invoice_number)
        assert sale.invoice_number.endswith(f"{sale.id:06d}")
        assert stock_of(seed.rice_id) == 7

    def test_cash_sale_records_one_income_payment(self, seed):
        result = checkout_service.checkout(
            seed.customer_id,
            [{"product_id": seed.rice_id, "quantity": 1}, {"product_id": seed.soap_id, "quantity": 2}],
            "Cash",
            seed.cashier_id,
        )

        payments = db.session.query(PaymentRecord).all()
        assert len(payments) == 1
        payment = payments[0]
        assert payment.reference_type == "sale"
        assert payment.reference_id == result.sale.id
        assert payment.payment_type == "income"
        assert payment.payment_method == "Cash"
        assert payment.amount_cents == 650 + 2 * 199
        assert payment.paid_to_from == "Sokha Chan"
        assert payment.bill_number == result.invoice_number

    def test_items_snapshot_price_in_request_order(self, seed):
        result = checkout_service.checkout(
            seed.customer_id,
            [CheckoutLine(seed.soap_id, 1), CheckoutLine(seed.rice_id, 2)],
            "Cash",
            seed.cashier_id,
        )

        items = db.session.query(SaleItem).filter_by(sale_id=result.sale.id).order_by(SaleItem.id).all()
        assert [i.product_id for i in items] == [seed.soap_id, seed.rice_id]
        assert [i.unit_price_cents for i in items] == [199, 650]
        assert sum(i.line_total_cents for i in items) == result.total_amount_cents

    def test_duplicate_lines_are_checked_cumulatively(self, seed):
        # 3 + 3 soap against 5 on hand
        with pytest.raises(InsufficientStockError) as exc_info:
            checkout_service.checkout(
                seed.customer_id,
                [{"product_id": seed.soap_id, "quantity": 3}, {"product_id": seed.soap_id, "quantity": 3}],
                "Cash",
                seed.cashier_id,
            )
        assert exc_info.value.details["requested_quantity"] == 6
        assert stock_of(seed.soap_id) == 5
        assert_nothing_persisted()

    def test_records_activity_after_commit(self, seed):
        result = checkout_service.checkout(
            seed.customer_id, [{"product_id": seed.rice_id, "quantity": 1}], "Cash", seed.cashier_id
        )
        entry = db.session.query(ActivityLog).one()
        assert (entry.action, entry.module, entry.record_id) == ("created", "sales", result.sale.id)

    def test_activity_failure_does_not_fail_checkout(self, seed, monkeypatch):
        from sqlalchemy.exc import SQLAlchemyError
        from retailpos.services import activity_service

        def broken(**kwargs):
            raise SQLAlchemyError("activity table unavailable")

        monkeypatch.setattr(activity_service, "ActivityLog", broken)

        result = checkout_service.checkout(
            seed.customer_id, [{"product_id": seed.rice_id, "quantity": 1}], "Cash", seed.cashier_id
        )
        assert db.session.get(Sale, result.sale.id).status == "paid"
        assert stock_of(seed.rice_id) == 9


# =============================================================================
# QR
# =============================================================================


class TestQRCheckout:

    def test_qr_sale_is_pending_and_stock_untouched(self, seed, gateway):
        result = checkout_service.checkout(
            seed.customer_id, [{"product_id": seed.rice_id, "quantity": 2}], "QR", seed.cashier_id
        )

        sale = db.session.get(Sale, result.sale.id)
        assert sale.status == "pending"
        assert sale.payment_status == "unpaid"
        assert sale.paid_at is None
        assert sale.pending_payment_reference == result.confirmation_key
        assert sale.qr_payload == result.qr_payload
        assert result.qr_payload.startswith("000201010212")
        assert stock_of(seed.rice_id) == 10
        assert db.session.query(PaymentRecord).count() == 0

    def test_qr_without_gateway_is_unavailable(self, seed):
        with pytest.raises(GatewayUnavailableError):
            checkout_service.checkout(
                seed.customer_id, [{"product_id": seed.rice_id, "quantity": 1}], "QR", seed.cashier_id
            )
        assert_nothing_persisted()

    def test_gateway_failure_rolls_back_sale(self, seed, gateway):
        gateway.unavailable = True
        with pytest.raises(GatewayUnavailableError):
            checkout_service.checkout(
                seed.customer_id, [{"product_id": seed.rice_id, "quantity": 1}], "QR", seed.cashier_id
            )
        assert_nothing_persisted()

    def test_qr_requires_positive_total(self, seed, gateway):
        with pytest.raises(ValidationError):
            checkout_service.checkout(
                seed.customer_id,
                [{"product_id": seed.rice_id, "quantity": 1, "discount_percent": 100}],
                "QR",
                seed.cashier_id,
            )
        assert_nothing_persisted()

    def test_qr_still_checks_stock(self, seed, gateway):
        with pytest.raises(InsufficientStockError):
            checkout_service.checkout(
                seed.customer_id, [{"product_id": seed.soap_id, "quantity": 6}], "QR", seed.cashier_id
            )
        assert_nothing_persisted()

    @pytest.fixture
    def riel_product(self, app, seed):
        app.config["PAYMENT_CURRENCY"] = "KHR"
        product = Product(name="Fish sauce", unit_price_cents=123400, unit_cost_cents=90000, stock_quantity=5)
        db.session.add(product)
        db.session.commit()
        return product.id

    def test_riel_total_with_fraction_is_rejected(self, seed, gateway, riel_product):
        # 1234 riel less 33% is 826.78 riel
        with pytest.raises(ValidationError) as exc_info:
            checkout_service.checkout(
                seed.customer_id,
                [{"product_id": riel_product, "quantity": 1, "discount_percent": "33"}],
                "QR",
                seed.cashier_id,
            )

        assert exc_info.value.details == {"total_amount_cents": 82678, "currency": "KHR"}
        assert stock_of(riel_product) == 5
        assert_nothing_persisted()

    def test_riel_cash_sale_with_fraction_is_allowed(self, seed, riel_product):
        result = checkout_service.checkout(
            seed.customer_id,
            [{"product_id": riel_product, "quantity": 1, "discount_percent": "33"}],
            "Cash",
            seed.cashier_id,
        )
        assert result.total_amount_cents == 82678
        assert stock_of(riel_product) == 4

    def test_whole_riel_sale_settles(self, seed, gateway, riel_product):
        result = checkout_service.checkout(
            seed.customer_id, [{"product_id": riel_product, "quantity": 1}], "QR", seed.cashier_id
        )

        assert "5303116" in result.qr_payload
        assert "54041234" in result.qr_payload

        gateway.confirm(result.confirmation_key, amount_cents=123400)
        settled = reconcile_service.reconcile(result.sale.id, result.confirmation_key)

        assert settled.already_settled is False
        assert db.session.get(Sale, result.sale.id).status == "paid"
        assert stock_of(riel_product) == 4


# =============================================================================
# FAILURES
# =============================================================================


class TestCheckoutFailures:

    def test_insufficient_stock_reports_product(self, seed):
        with pytest.raises(InsufficientStockError) as exc_info:
            checkout_service.checkout(
                seed.customer_id,
                [{"product_id": seed.rice_id, "quantity": 2}, {"product_id": seed.soap_id, "quantity": 9}],
                "Cash",
                seed.cashier_id,
            )
        assert exc_info.value.details == {
            "product_id": seed.soap_id,
            "requested_quantity": 9,
            "available_quantity": 5,
        }
        assert stock_of(seed.rice_id) == 10
        assert_nothing_persisted()

    def test_unknown_product(self, seed):
        with pytest.raises(InvalidReferenceError):
            checkout_service.checkout(
                seed.customer_id, [{"product_id": 9999, "quantity": 1}], "Cash", seed.cashier_id
            )
        assert_nothing_persisted()

    def test_unknown_customer(self, seed):
        with pytest.raises(InvalidReferenceError):
            checkout_service.checkout(9999, [{"product_id": seed.rice_id, "quantity": 1}], "Cash", seed.cashier_id)
        assert_nothing_persisted()

    @pytest.mark.parametrize("items", [
        [],
        None,
        [{"product_id": 1, "quantity": 0}],
        [{"product_id": 1, "quantity": "2"}],
        [{"product_id": 1, "quantity": 1, "discount_percent": 150}],
        ["not-an-object"],
    ])
    def test_invalid_items(self, seed, items):
        with pytest.raises(ValidationError):
            checkout_service.checkout(seed.customer_id, items, "Cash", seed.cashier_id)
        assert_nothing_persisted()

    def test_invalid_line_is_identified(self, seed):
        with pytest.raises(ValidationError) as exc_info:
            checkout_service.checkout(
                seed.customer_id,
                [{"product_id": seed.rice_id, "quantity": 1}, {"product_id": seed.soap_id, "quantity": -1}],
                "Cash",
                seed.cashier_id,
            )
        assert exc_info.value.details["line"] == 1

    def test_unknown_payment_method(self, seed):
        with pytest.raises(ValidationError):
            checkout_service.checkout(
                seed.customer_id, [{"product_id": seed.rice_id, "quantity": 1}], "Card", seed.cashier_id
            )

    def test_lost_debit_race_rolls_back_everything(self, seed, monkeypatch):
        real_debit = checkout_service.debit
        calls = []

        def racing_debit(product_id, quantity):
            calls.append(product_id)
            if product_id == seed.soap_id:
                return STOCK_INSUFFICIENT
            return real_debit(product_id, quantity)

        monkeypatch.setattr(checkout_service, "debit", racing_debit)

        with pytest.raises(InsufficientStockError):
            checkout_service.checkout(
                seed.customer_id,
                [{"product_id": seed.rice_id, "quantity": 2}, {"product_id": seed.soap_id, "quantity": 1}],
                "Cash",
                seed.cashier_id,
            )

        assert calls == [seed.rice_id, seed.soap_id]
        assert stock_of(seed.rice_id) == 10
        assert_nothing_persisted()


# =============================================================================
# CONCURRENCY (file-backed SQLite, real threads)
# =============================================================================


class TestConcurrentCheckout:

    def test_oversubscribed_cash_checkouts_never_oversell(self, file_app):
        with file_app.app_context():
            seed = seed_rows()

        successes = []
        stock_errors = []
        other_errors = []
        lock = threading.Lock()
        start = threading.Barrier(6)

        def worker():
            with file_app.app_context():
                try:
                    start.wait()
                    result = checkout_service.checkout(
                        seed.customer_id,
                        [{"product_id": seed.rice_id, "quantity": 4}],
                        "Cash",
                        seed.cashier_id,
                    )
                    with lock:
                        successes.append(result.sale.id)
                except InsufficientStockError as exc:
                    with lock:
                        stock_errors.append(exc)
                except Exception as exc:
                    with lock:
                        other_errors.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert other_errors == []
        assert len(successes) == 2
        assert len(stock_errors) == 4

        with file_app.app_context():
            assert db.session.get(Product, seed.rice_id).stock_quantity == 2
            assert db.session.query(Sale).count() == 2
            assert db.session.query(PaymentRecord).count() == 2
            assert db.session.query(SaleItem).count() == 2
