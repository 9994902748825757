"""KHQR payload construction and the Bakong HTTP client."""

import json

import httpx
import pytest

from retailpos.services.errors import GatewayUnavailableError, ValidationError
from retailpos.services.gateway import (
    BakongGateway,
    MerchantInfo,
    PaymentGateway,
    QRCharge,
    build_khqr_payload,
    confirmation_key_for,
    crc16_ccitt,
    format_amount,
    gateway_from_config,
    is_chargeable,
)


MERCHANT = MerchantInfo(account_id="shop@test", name="Test Shop", city="Phnom Penh")


class TestPayload:

    def test_crc_check_value(self):
        # CRC-16/CCITT-FALSE check value
        assert crc16_ccitt("123456789") == "29B1"

    def test_payload_layout(self):
        payload = build_khqr_payload(MERCHANT, 1755, "INV-2026-000001", created_at_ms=1700000000000)

        assert payload.startswith("000201" "010212")
        assert "2913" "0009shop@test" in payload
        assert "5303840" in payload
        assert "540517.55" in payload
        assert "5802KH" in payload
        assert "5909Test Shop" in payload
        assert "6219" "0115INV-2026-000001" in payload

    def test_crc_seals_payload(self):
        payload = build_khqr_payload(MERCHANT, 100, "INV-1", created_at_ms=1)
        body, crc = payload[:-4], payload[-4:]
        assert body.endswith("6304")
        assert crc == crc16_ccitt(body)

    def test_confirmation_key_is_md5_hex(self):
        payload = build_khqr_payload(MERCHANT, 100, "INV-1", created_at_ms=1)
        key = confirmation_key_for(payload)
        assert len(key) == 32
        assert key == confirmation_key_for(payload)
        assert key != confirmation_key_for(build_khqr_payload(MERCHANT, 100, "INV-1", created_at_ms=2))

    def test_riel_has_no_minor_unit(self):
        assert format_amount(1755, "USD") == "17.55"
        assert format_amount(400000, "KHR") == "4000"

    def test_fractional_riel_is_refused(self):
        riel = MerchantInfo(account_id="shop@test", name="Test Shop", city="Phnom Penh", currency="KHR")
        # 1234 riel less 33%
        with pytest.raises(ValidationError):
            format_amount(82678, "KHR")
        with pytest.raises(ValidationError):
            build_khqr_payload(riel, 82678, "INV-1", created_at_ms=1)

    def test_chargeable_amounts(self):
        assert is_chargeable(82678, "USD")
        assert is_chargeable(82600, "KHR")
        assert not is_chargeable(82678, "KHR")

    def test_rejects_bad_input(self):
        with pytest.raises(ValidationError):
            build_khqr_payload(MERCHANT, 0, "INV-1")
        with pytest.raises(ValidationError):
            build_khqr_payload(MerchantInfo("a@b", "n", "c", currency="EUR"), 100, "INV-1")
        with pytest.raises(ValidationError):
            build_khqr_payload(MerchantInfo("x" * 120, "n", "c"), 100, "INV-1")


# =============================================================================
# BAKONG CLIENT
# =============================================================================


def bakong(handler):
    return BakongGateway(
        "https://bakong.example", "secret-token", timeout=2.0, transport=httpx.MockTransport(handler)
    )


class TestBakongCheck:

    def test_acknowledged(self, app):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "responseCode": 0,
                "responseMessage": "Success",
                "data": {"hash": "8465d722d7d5065f", "amount": 17.55, "currency": "USD"},
            })

        status = bakong(handler).check_confirmation("abc123")

        assert status.acknowledged is True
        assert status.external_ref == "8465d722d7d5065f"
        assert status.amount_cents == 1755
        assert seen == {
            "path": "/v1/check_transaction_by_md5",
            "auth": "Bearer secret-token",
            "body": {"md5": "abc123"},
        }

    def test_not_found_is_not_acknowledged(self, app):
        def handler(request):
            return httpx.Response(200, json={"responseCode": 1, "responseMessage": "Transaction could not be found", "data": None})

        status = bakong(handler).check_confirmation("abc123")
        assert status.acknowledged is False

    def test_error_status_is_unavailable(self, app):
        with pytest.raises(GatewayUnavailableError):
            bakong(lambda request: httpx.Response(502, text="bad gateway")).check_confirmation("abc")

    def test_connection_error_is_unavailable(self, app):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GatewayUnavailableError):
            bakong(handler).check_confirmation("abc")

    def test_timeout_is_unavailable(self, app):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(GatewayUnavailableError):
            bakong(handler).check_confirmation("abc")

    def test_invalid_json_is_unavailable(self, app):
        with pytest.raises(GatewayUnavailableError):
            bakong(lambda request: httpx.Response(200, text="<html>")).check_confirmation("abc")

    def test_generate_qr_is_local(self, app):
        def handler(request):
            raise AssertionError("generate_qr must not call the network")

        charge = bakong(handler).generate_qr(500, MERCHANT, "INV-2026-000007")
        assert charge.confirmation_key == confirmation_key_for(charge.qr_payload)


class TestGatewayFromConfig:

    def test_none(self):
        assert gateway_from_config({"PAYMENT_GATEWAY": "none"}) is None

    def test_bakong(self):
        gateway = gateway_from_config({
            "PAYMENT_GATEWAY": "bakong",
            "BAKONG_API_BASE_URL": "https://bakong.example/",
            "BAKONG_API_TOKEN": "t",
            "PAYMENT_GATEWAY_TIMEOUT": 3,
        })
        assert isinstance(gateway, BakongGateway)
        assert gateway.base_url == "https://bakong.example"
        assert gateway.timeout == 3.0

    def test_unknown(self):
        with pytest.raises(ValueError):
            gateway_from_config({"PAYMENT_GATEWAY": "paypal"})


# =============================================================================
# GATEWAY CONTRACT
# =============================================================================


class TestGatewayContract:

    def test_partial_implementation_cannot_be_instantiated(self):
        class QROnly(PaymentGateway):
            def generate_qr(self, amount_cents, merchant, bill_reference):
                return QRCharge(qr_payload="", confirmation_key="")

        with pytest.raises(TypeError):
            QROnly()

    def test_base_class_cannot_be_instantiated(self):
        with pytest.raises(TypeError):
            PaymentGateway()
