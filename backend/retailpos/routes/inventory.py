# Overview: Flask API routes for restocks, manual stock-outs and low-stock lookup.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..services import reporting_service, stock_service
from ..services.errors import ServiceError, ValidationError
from ..time_utils import parse_iso_date
from . import error_response


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/stock-in")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def receive_stock_route():
    """
    Record a restock from a supplier.

    Request body:
    {
        "supplier_id": 1,
        "product_id": 3,
        "quantity": 24,
        "unit_cost_cents": 150,
        "received_date": "2026-01-15",  (optional, defaults to today)
        "remarks": "..."  (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        received_date = None
        if data.get("received_date"):
            try:
                received_date = parse_iso_date(data["received_date"])
            except (ValueError, AttributeError):
                raise ValidationError("received_date must be YYYY-MM-DD")

        stock_in = stock_service.receive_stock(
            supplier_id=data.get("supplier_id"),
            product_id=data.get("product_id"),
            quantity=data.get("quantity"),
            unit_cost_cents=data.get("unit_cost_cents"),
            received_by=g.current_user.id,
            received_date=received_date,
            remarks=data.get("remarks"),
        )
        return jsonify({"stock_in": stock_in.to_dict()}), 201

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to receive stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.delete("/stock-in/<int:stock_in_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def delete_stock_in_route(stock_in_id: int):
    try:
        stock_service.delete_stock_in(stock_in_id, g.current_user.id)
        return jsonify({"deleted": stock_in_id}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete stock in %s", stock_in_id)
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/stock-out")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def stock_out_route():
    """
    Manual stock deduction.

    Request body:
    {
        "product_id": 3,
        "quantity": 2,
        "reason": "damaged"  (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        stock_out = stock_service.record_stock_out(
            product_id=data.get("product_id"),
            quantity=data.get("quantity"),
            recorded_by=g.current_user.id,
            reason=data.get("reason"),
        )
        return jsonify({"stock_out": stock_out.to_dict()}), 201

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record stock out")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/low-stock")
@require_auth
def low_stock_route():
    return jsonify({"products": reporting_service.low_stock_products()}), 200


@inventory_bp.get("/stock-in")
@require_auth
def list_stock_in_route():
    """Query params: product_id (optional)"""
    stock_ins = stock_service.list_stock_ins(request.args.get("product_id", type=int))
    return jsonify({"stock_ins": [row.to_dict() for row in stock_ins]}), 200


@inventory_bp.get("/stock-out")
@require_auth
def list_stock_out_route():
    """Query params: product_id (optional)"""
    stock_outs = stock_service.list_stock_outs(request.args.get("product_id", type=int))
    return jsonify({"stock_outs": [row.to_dict() for row in stock_outs]}), 200


@inventory_bp.delete("/stock-out/<int:stock_out_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def delete_stock_out_route(stock_out_id: int):
    try:
        stock_service.delete_stock_out(stock_out_id, g.current_user.id)
        return jsonify({"deleted": stock_out_id}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete stock out %s", stock_out_id)
        return jsonify({"error": "Internal server error"}), 500
