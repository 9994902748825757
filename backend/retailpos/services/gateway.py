# Overview: Payment gateway client for QR push payments (Bakong KHQR).

"""
Payment Gateway

WHY: QR sales are settled asynchronously. The gateway produces the QR payload
the customer scans and later answers "has this QR been paid?".

CONTRACT (PaymentGateway):
- generate_qr(amount_cents, merchant, bill_reference) -> QRCharge
- check_confirmation(confirmation_key) -> ConfirmationStatus

Any transport failure, timeout or error response raises
GatewayUnavailableError. A "not paid yet" answer is NOT an error: it is
ConfirmationStatus(acknowledged=False).

BAKONG:
- The QR payload is an EMVCo merchant-presented string (KHQR profile), built
  locally and sealed with CRC-16/CCITT-FALSE (tag 63).
- The confirmation key is the md5 hex digest of the payload; Bakong indexes
  transactions by it (POST /v1/check_transaction_by_md5).
"""

from __future__ import annotations

import hashlib
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

import httpx
from flask import current_app

from .errors import GatewayUnavailableError, ValidationError


# ISO 4217 numeric codes accepted by KHQR
CURRENCY_CODES = {
    "USD": "840",
    "KHR": "116",
}

# Currencies charged in whole units only
ZERO_DECIMAL_CURRENCIES = {"KHR"}

MERCHANT_CATEGORY_CODE = "5999"
COUNTRY_CODE = "KH"


@dataclass(frozen=True)
class MerchantInfo:
    account_id: str
    name: str
    city: str
    currency: str = "USD"


@dataclass(frozen=True)
class QRCharge:
    qr_payload: str
    confirmation_key: str


@dataclass(frozen=True)
class ConfirmationStatus:
    acknowledged: bool
    external_ref: str | None = None
    amount_cents: int | None = None


class PaymentGateway(ABC):
    """Interface implemented by every gateway client."""

    @abstractmethod
    def generate_qr(self, amount_cents: int, merchant: MerchantInfo, bill_reference: str) -> QRCharge:
        raise NotImplementedError

    @abstractmethod
    def check_confirmation(self, confirmation_key: str) -> ConfirmationStatus:
        raise NotImplementedError


# =============================================================================
# KHQR PAYLOAD
# =============================================================================

def crc16_ccitt(data: str) -> str:
    """CRC-16/CCITT-FALSE (poly 0x1021, init 0xFFFF) as 4 upper-case hex digits."""
    crc = 0xFFFF
    for byte in data.encode("utf-8"):
        crc ^= byte << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ 0x1021) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return f"{crc:04X}"


def _tlv(tag: str, value: str) -> str:
    if len(value) > 99:
        raise ValidationError(f"QR field {tag} too long", details={"tag": tag, "length": len(value)})
    return f"{tag}{len(value):02d}{value}"


def is_chargeable(amount_cents: int, currency: str) -> bool:
    """A QR amount must be expressible exactly in the currency's smallest unit."""
    return currency not in ZERO_DECIMAL_CURRENCIES or amount_cents % 100 == 0


def format_amount(amount_cents: int, currency: str) -> str:
    if currency in ZERO_DECIMAL_CURRENCIES:
        if amount_cents % 100:
            raise ValidationError(
                f"{currency} amounts must be whole units",
                details={"amount_cents": amount_cents, "currency": currency},
            )
        return str(amount_cents // 100)
    return f"{amount_cents // 100}.{amount_cents % 100:02d}"


def build_khqr_payload(
    merchant: MerchantInfo,
    amount_cents: int,
    bill_reference: str,
    created_at_ms: int | None = None,
) -> str:
    """
    Build a dynamic (amount-bearing) KHQR payload.

    Tag order follows the EMVCo layout; tag 63 (CRC) is always last and covers
    everything before it including its own "6304" header.
    """
    currency_code = CURRENCY_CODES.get(merchant.currency)
    if currency_code is None:
        raise ValidationError(f"Unsupported currency: {merchant.currency}")
    if amount_cents <= 0:
        raise ValidationError("QR amount must be positive")

    if created_at_ms is None:
        created_at_ms = int(time.time() * 1000)

    payload = "".join([
        _tlv("00", "01"),
        _tlv("01", "12"),
        _tlv("29", _tlv("00", merchant.account_id)),
        _tlv("52", MERCHANT_CATEGORY_CODE),
        _tlv("53", currency_code),
        _tlv("54", format_amount(amount_cents, merchant.currency)),
        _tlv("58", COUNTRY_CODE),
        _tlv("59", merchant.name[:25]),
        _tlv("60", merchant.city[:15]),
        _tlv("62", _tlv("01", bill_reference[:25])),
        _tlv("99", _tlv("00", str(created_at_ms))),
    ])
    payload += "6304"
    return payload + crc16_ccitt(payload)


def confirmation_key_for(qr_payload: str) -> str:
    return hashlib.md5(qr_payload.encode("utf-8")).hexdigest()


# =============================================================================
# BAKONG CLIENT
# =============================================================================

class BakongGateway(PaymentGateway):
    """
    Bakong open API client.

    `transport` lets tests plug an httpx.MockTransport in place of the network.
    """

    CHECK_PATH = "/v1/check_transaction_by_md5"

    def __init__(
        self,
        base_url: str,
        api_token: str,
        *,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
            headers={"Authorization": f"Bearer {self.api_token}"},
        )

    def generate_qr(self, amount_cents: int, merchant: MerchantInfo, bill_reference: str) -> QRCharge:
        payload = build_khqr_payload(merchant, amount_cents, bill_reference)
        return QRCharge(qr_payload=payload, confirmation_key=confirmation_key_for(payload))

    def check_confirmation(self, confirmation_key: str) -> ConfirmationStatus:
        try:
            with self._client() as client:
                response = client.post(self.CHECK_PATH, json={"md5": confirmation_key})
        except httpx.HTTPError as exc:
            current_app.logger.error("Bakong connection error: %s", exc)
            raise GatewayUnavailableError(
                "Unable to connect to payment gateway",
                details={"confirmation_key": confirmation_key},
            )

        if response.status_code != 200:
            current_app.logger.error(
                "Bakong check failed. Status: %s, Body: %s", response.status_code, response.text
            )
            raise GatewayUnavailableError(
                "Payment gateway returned an error",
                details={"status_code": response.status_code},
            )

        try:
            body = response.json()
        except ValueError:
            current_app.logger.error("Bakong returned invalid JSON")
            raise GatewayUnavailableError("Invalid response from payment gateway")

        data = body.get("data") or None
        if body.get("responseCode") != 0 or not data:
            return ConfirmationStatus(acknowledged=False)

        return ConfirmationStatus(
            acknowledged=True,
            external_ref=data.get("hash") or data.get("externalRef"),
            amount_cents=_amount_to_cents(data.get("amount")),
        )


def _amount_to_cents(value) -> int | None:
    if value is None:
        return None
    try:
        return int((Decimal(str(value)) * 100).to_integral_value())
    except (InvalidOperation, ValueError):
        return None


# =============================================================================
# APP WIRING
# =============================================================================

def gateway_from_config(config) -> PaymentGateway | None:
    """Build the configured gateway; None when QR payments are disabled."""
    kind = (config.get("PAYMENT_GATEWAY") or "none").lower()
    if kind == "none":
        return None
    if kind == "bakong":
        return BakongGateway(
            config["BAKONG_API_BASE_URL"],
            config.get("BAKONG_API_TOKEN", ""),
            timeout=float(config.get("PAYMENT_GATEWAY_TIMEOUT", 10)),
        )
    raise ValueError(f"Unknown PAYMENT_GATEWAY: {kind}")


def merchant_from_config(config) -> MerchantInfo:
    return MerchantInfo(
        account_id=config["BAKONG_ACCOUNT_ID"],
        name=config["MERCHANT_NAME"],
        city=config["MERCHANT_CITY"],
        currency=config.get("PAYMENT_CURRENCY", "USD"),
    )


def get_payment_gateway() -> PaymentGateway:
    gateway = current_app.extensions.get("payment_gateway")
    if gateway is None:
        raise GatewayUnavailableError("No payment gateway configured")
    return gateway
