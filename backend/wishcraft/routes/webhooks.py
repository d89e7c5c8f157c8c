# Overview: Flask routes for Shopify order webhooks; verifies signatures and returns reconciliation summaries.

# backend/wishcraft/routes/webhooks.py
"""
Shopify order webhooks.

Status codes drive Shopify's redelivery:
- 200: processed (including duplicates and skipped lines)
- 400: malformed body, redelivery would not help
- 401: bad signature
- 503: transient failure, Shopify retries
"""

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_shopify_hmac
from ..errors import MalformedPayloadError, TransientInfrastructureError
from ..services import reconciliation_service


webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/webhooks")


def _handle(reconcile, topic: str):
    payload = request.get_json(silent=True)
    if payload is None:
        return jsonify({"error": "Request body must be JSON"}), 400

    try:
        result = reconcile(payload)
        return jsonify(result.to_dict()), 200

    except MalformedPayloadError as e:
        current_app.logger.warning("Malformed %s webhook: %s", topic, e)
        return jsonify({"error": str(e)}), 400
    except TransientInfrastructureError as e:
        return jsonify({"error": str(e)}), 503
    except Exception:
        current_app.logger.exception("Failed to process %s webhook", topic)
        return jsonify({"error": "Internal server error"}), 500


@webhooks_bp.post("/orders/create")
@require_shopify_hmac
def orders_create_route():
    return _handle(reconciliation_service.reconcile_order_created, "orders/create")


@webhooks_bp.post("/orders/cancelled")
@require_shopify_hmac
def orders_cancelled_route():
    return _handle(reconciliation_service.reconcile_order_cancelled, "orders/cancelled")


@webhooks_bp.post("/orders/fulfilled")
@require_shopify_hmac
def orders_fulfilled_route():
    return _handle(reconciliation_service.reconcile_order_fulfilled, "orders/fulfilled")
