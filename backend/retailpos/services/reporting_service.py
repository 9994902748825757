# Overview: Cached dashboard figures derived from sales, payments and stock.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Sale
from .cache import TTLCache
from .inventory_service import get_low_stock_products
from .payment_service import payment_totals


REPORT_PREFIX = "report:"
SALES_SUMMARY_KEY = REPORT_PREFIX + "sales_summary"
LOW_STOCK_KEY = REPORT_PREFIX + "low_stock"


def get_report_cache() -> TTLCache:
    cache = current_app.extensions.get("report_cache")
    if cache is None:
        cache = TTLCache(ttl=current_app.config.get("REPORT_CACHE_TTL", 300))
        current_app.extensions["report_cache"] = cache
    return cache


def invalidate_reports() -> None:
    """Drop every cached report; called after any sale or stock mutation."""
    get_report_cache().invalidate_prefix(REPORT_PREFIX)


def _compute_sales_summary() -> dict:
    from .sales_service import SALE_STATUS_PAID, SALE_STATUS_PENDING

    counts = dict(
        db.session.query(Sale.status, func.count(Sale.id)).group_by(Sale.status).all()
    )
    revenue = (
        db.session.query(func.coalesce(func.sum(Sale.total_amount_cents), 0))
        .filter(Sale.status == SALE_STATUS_PAID)
        .scalar()
    )
    return {
        "sale_count": sum(counts.values()),
        "paid_count": counts.get(SALE_STATUS_PAID, 0),
        "pending_count": counts.get(SALE_STATUS_PENDING, 0),
        "revenue_cents": int(revenue or 0),
        "payments": payment_totals(),
    }


def sales_summary() -> dict:
    return get_report_cache().get_or_set(SALES_SUMMARY_KEY, _compute_sales_summary)


def low_stock_products() -> list[dict]:
    return get_report_cache().get_or_set(
        LOW_STOCK_KEY,
        lambda: [product.to_dict() for product in get_low_stock_products()],
    )
