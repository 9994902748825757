# Overview: Flask API route for reading the activity log.

from flask import Blueprint, request, jsonify

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..services import activity_service


activity_bp = Blueprint("activity", __name__, url_prefix="/api/activity")


@activity_bp.get("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def list_activity_route():
    """
    Recent activity, newest first.

    Query params:
        module: e.g. sales, stock_ins (optional)
        record_id: only entries for this record (optional)
        limit: max rows (default 100)
    """
    entries = activity_service.list_activity(
        module=request.args.get("module"),
        record_id=request.args.get("record_id", type=int),
        limit=request.args.get("limit", default=100, type=int),
    )
    return jsonify({"activity": [entry.to_dict() for entry in entries]}), 200
