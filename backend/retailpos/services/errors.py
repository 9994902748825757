# Overview: Error taxonomy for checkout, reconciliation and stock operations.

"""
Every business failure raised by the service layer is a ServiceError with a
stable machine-readable ``code`` and a ``details`` dict naming what the caller
needs to act on (which product, which sale). Routes map codes to HTTP statuses.

Lower-level failures (storage unavailable, programming errors) are not wrapped
here; they propagate after rollback and surface as internal errors.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for business-rule failures."""
    code = "service_error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code, "details": self.details}


class ValidationError(ServiceError):
    """Bad input shape; raised before any transaction opens."""
    code = "validation_error"


class InsufficientStockError(ServiceError):
    """Expected business condition: not enough stock for a product."""
    code = "insufficient_stock"

    def __init__(self, product_id: int, requested: int, available: int | None, message: str | None = None):
        super().__init__(
            message or f"Insufficient stock for product {product_id}",
            details={
                "product_id": product_id,
                "requested_quantity": requested,
                "available_quantity": available,
            },
        )
        self.product_id = product_id


class NotFoundError(ServiceError):
    code = "not_found"


class SaleNotFoundError(NotFoundError):
    pass


class InvalidReferenceError(NotFoundError):
    """A referenced customer, user, supplier or product does not exist."""
    code = "invalid_reference"


class GatewayUnavailableError(ServiceError):
    """The payment gateway could not be reached or answered with an error."""
    code = "gateway_unavailable"


class PaymentNotConfirmedError(ServiceError):
    """The gateway does not (yet) confirm the payment; the sale is untouched."""
    code = "payment_not_confirmed"


class ConsistencyAnomalyError(ServiceError):
    """
    Stock went missing between accepting a QR sale and settling it.

    Raised after rollback and logged at CRITICAL; never absorbed.
    """
    code = "consistency_anomaly"
