# Overview: Flask API routes for the payment ledger and gateway callbacks.

# backend/retailpos/routes/payments.py
"""
Payment API Routes

WHY: The gateway notifies us when a QR charge is paid. The callback is only a
hint: reconciliation re-verifies with the gateway before settling, so a forged
or replayed callback can at most trigger a no-op.

SECURITY:
- When PAYMENT_CALLBACK_SECRET is set, the raw body must carry a matching
  HMAC-SHA256 hex digest in X-Callback-Signature.
- Duplicate callbacks are answered 200 (already settled).
"""

from __future__ import annotations

import hashlib
import hmac

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth
from ..services import payment_service, reconcile_service
from ..services.errors import ServiceError
from . import error_response


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


def verify_callback_signature(payload: bytes, signature: str | None, secret: str) -> bool:
    if not signature:
        return False
    expected = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


@payments_bp.get("")
@require_auth
def list_payments_route():
    """
    List payment records.

    Query params:
        reference_type: sale | purchase
        reference_id: int
    """
    try:
        records = payment_service.list_payments(
            request.args.get("reference_type"),
            request.args.get("reference_id", type=int),
        )
        return jsonify({
            "payments": [record.to_dict() for record in records],
            "totals": payment_service.payment_totals(),
        }), 200
    except ServiceError as e:
        return error_response(e)


@payments_bp.post("/bakong/callback")
def bakong_callback_route():
    """
    Gateway push notification.

    Request body:
    {
        "md5": "<confirmation key>"
    }
    """
    secret = current_app.config.get("PAYMENT_CALLBACK_SECRET")
    if secret and not verify_callback_signature(
        request.get_data(), request.headers.get("X-Callback-Signature"), secret
    ):
        current_app.logger.warning("Rejected payment callback with bad signature from %s", request.remote_addr)
        return jsonify({"error": "Invalid signature"}), 401

    try:
        data = request.get_json(silent=True) or {}
        result = reconcile_service.reconcile_by_reference(data.get("md5"))
        return jsonify(result.to_dict()), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Payment callback processing failed")
        return jsonify({"error": "Internal server error"}), 500
