# Overview: Shared helpers for API blueprints.

from flask import jsonify

from ..services.errors import ServiceError


# Service error code -> HTTP status
ERROR_STATUS = {
    "validation_error": 400,
    "payment_not_confirmed": 402,
    "not_found": 404,
    "invalid_reference": 404,
    "insufficient_stock": 409,
    "consistency_anomaly": 500,
    "gateway_unavailable": 503,
}


def error_response(exc: ServiceError):
    return jsonify(exc.to_dict()), ERROR_STATUS.get(exc.code, 400)
