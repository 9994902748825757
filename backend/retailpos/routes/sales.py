# Overview: Flask API routes for checkout, sale lookup, reconciliation and deletion.

# backend/retailpos/routes/sales.py
"""Sales API routes with role enforcement"""

from datetime import timedelta

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..services import checkout_service, reconcile_service, sales_service
from ..services.errors import ServiceError
from ..time_utils import utcnow
from . import error_response


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("/checkout")
@require_auth
def checkout_route():
    """
    Create a sale from a cart.

    Available to: admin, manager, cashier

    Request body:
    {
        "customer_id": 1,
        "payment_method": "Cash" | "QR",
        "items": [{"product_id": 3, "quantity": 2, "discount_percent": "10"}]
    }

    Returns:
        201: Sale created (Cash: paid; QR: pending with qr_payload)
        400: Invalid input
        404: Unknown customer or product
        409: Insufficient stock
        503: Payment gateway unavailable (QR only)
    """
    try:
        data = request.get_json(silent=True) or {}
        result = checkout_service.checkout(
            customer_id=data.get("customer_id"),
            items=data.get("items"),
            payment_method=data.get("payment_method"),
            user_id=g.current_user.id,
        )
        return jsonify(result.to_dict()), 201

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Checkout failed")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@require_auth
def list_sales_route():
    """
    Most recent sales first.

    Query params:
        status: pending | paid (optional)
        limit: max rows (default 200)
    """
    try:
        sales = sales_service.list_sales(
            status=request.args.get("status"),
            limit=request.args.get("limit", default=200, type=int),
        )
        return jsonify({"sales": [sale.to_dict() for sale in sales]}), 200
    except ServiceError as e:
        return error_response(e)


@sales_bp.get("/pending")
@require_auth
def list_pending_route():
    """
    QR sales awaiting confirmation.

    Query params:
        older_than_minutes: only sales created at least this long ago
    """
    older_than = None
    minutes = request.args.get("older_than_minutes", type=int)
    if minutes is not None:
        older_than = utcnow() - timedelta(minutes=minutes)

    sales = sales_service.list_pending_sales(older_than)
    return jsonify({"sales": [sale.to_dict() for sale in sales]}), 200


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    """Get sale with items and payment record."""
    try:
        return jsonify(sales_service.get_sale_detail(sale_id)), 200
    except ServiceError as e:
        return error_response(e)


@sales_bp.post("/<int:sale_id>/reconcile")
@require_auth
def reconcile_route(sale_id: int):
    """
    Settle a pending QR sale after the customer paid.

    Request body:
    {
        "confirmation_key": "<md5 of the QR payload>"
    }

    Idempotent: a sale that is already paid returns 200 with
    already_settled=true and no new effects.
    """
    try:
        data = request.get_json(silent=True) or {}
        result = reconcile_service.reconcile(
            sale_id, data.get("confirmation_key"), g.current_user.id
        )
        return jsonify(result.to_dict()), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reconcile sale %s", sale_id)
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.delete("/<int:sale_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def delete_sale_route(sale_id: int):
    """
    Delete a sale and reverse its stock and payment effects.

    Available to: admin, manager
    """
    try:
        result = sales_service.delete_sale(sale_id, g.current_user.id)
        return jsonify(result), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete sale %s", sale_id)
        return jsonify({"error": "Internal server error"}), 500
