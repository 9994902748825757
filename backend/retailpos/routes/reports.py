# Overview: Flask API routes for cached dashboard figures.

from flask import Blueprint, jsonify

from ..decorators import require_auth
from ..services import reporting_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/summary")
@require_auth
def sales_summary_route():
    """Sale counts, paid revenue and income/expense totals (cached)."""
    return jsonify(reporting_service.sales_summary()), 200
