"""Inventory ledger: guarded debit, credit and availability checks."""

import pytest

from conftest import stock_of
from retailpos.extensions import db
from retailpos.services import inventory_service
from retailpos.services.errors import InvalidReferenceError, ValidationError
from retailpos.services.inventory_service import STOCK_INSUFFICIENT, STOCK_OK


class TestDebit:

    def test_debit_decrements(self, seed):
        assert inventory_service.debit(seed.rice_id, 4) == STOCK_OK
        db.session.commit()
        assert stock_of(seed.rice_id) == 6

    def test_debit_to_exactly_zero(self, seed):
        assert inventory_service.debit(seed.soap_id, 5) == STOCK_OK
        db.session.commit()
        assert stock_of(seed.soap_id) == 0

    def test_debit_beyond_stock_is_refused(self, seed):
        assert inventory_service.debit(seed.soap_id, 6) == STOCK_INSUFFICIENT
        db.session.commit()
        assert stock_of(seed.soap_id) == 5

    def test_debit_unknown_product(self, seed):
        with pytest.raises(InvalidReferenceError):
            inventory_service.debit(9999, 1)

    @pytest.mark.parametrize("qty", [0, -3, True, 1.5])
    def test_debit_rejects_bad_quantity(self, seed, qty):
        with pytest.raises(ValidationError):
            inventory_service.debit(seed.rice_id, qty)

    def test_guard_uses_committed_value_not_cached_object(self, seed):
        product = inventory_service.get_products([seed.soap_id])[seed.soap_id]
        assert inventory_service.debit(seed.soap_id, 3) == STOCK_OK
        # The cached object is expired, so this reads the post-debit value
        assert product.stock_quantity == 2
        assert inventory_service.debit(seed.soap_id, 3) == STOCK_INSUFFICIENT


class TestCreditAndChecks:

    def test_credit_increments(self, seed):
        assert inventory_service.credit(seed.rice_id, 5) == STOCK_OK
        db.session.commit()
        assert stock_of(seed.rice_id) == 15

    def test_credit_unknown_product(self, seed):
        with pytest.raises(InvalidReferenceError):
            inventory_service.credit(9999, 1)

    def test_reserve_and_check_does_not_mutate(self, seed):
        assert inventory_service.reserve_and_check(seed.soap_id, 5) == STOCK_OK
        assert inventory_service.reserve_and_check(seed.soap_id, 6) == STOCK_INSUFFICIENT
        assert stock_of(seed.soap_id) == 5

    def test_get_stock_level(self, seed):
        assert inventory_service.get_stock_level(seed.rice_id) == 10
        with pytest.raises(InvalidReferenceError):
            inventory_service.get_stock_level(9999)

    def test_get_products_batches_and_skips_missing(self, seed):
        products = inventory_service.get_products([seed.soap_id, seed.rice_id, seed.rice_id, 9999])
        assert sorted(products) == sorted([seed.rice_id, seed.soap_id])

    def test_low_stock(self, seed):
        # soap: 5 on hand, reorder level 5
        low = inventory_service.get_low_stock_products()
        assert [p.id for p in low] == [seed.soap_id]
        assert inventory_service.is_low_stock(low[0])
