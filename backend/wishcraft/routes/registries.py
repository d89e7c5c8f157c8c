# Overview: Flask API routes for registries and registry items; parses input and returns JSON responses.

# backend/wishcraft/routes/registries.py
"""Registry API routes"""

from flask import Blueprint, current_app, jsonify, request

from ..errors import NotFoundError, ValidationError
from ..models.activity import ACTOR_CUSTOMER
from ..services import activity_service, purchase_service, registry_service
from ..services.activity_service import Actor
from ..validation import parse_money_cents


registries_bp = Blueprint("registries", __name__, url_prefix="/api/registries")


def _get_item_in_registry(registry_id: int, item_id: int):
    item = registry_service.get_item(item_id)
    if item.registry_id != registry_id:
        raise NotFoundError(f"Registry item {item_id} not found in registry {registry_id}")
    return item


@registries_bp.post("")
def create_registry_route():
    try:
        data = request.get_json() or {}
        registry = registry_service.create_registry(
            shop_domain=data.get("shop_domain"),
            title=data.get("title"),
            customer_email=data.get("customer_email"),
        )
        return jsonify({"registry": registry.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create registry")
        return jsonify({"error": "Internal server error"}), 500


@registries_bp.get("/<int:registry_id>")
def get_registry_route(registry_id: int):
    try:
        registry = registry_service.get_registry(registry_id)
        include_inactive = request.args.get("include_inactive", "false").lower() == "true"
        items = registry_service.list_items(registry_id, include_inactive=include_inactive)
        return jsonify({
            "registry": registry.to_dict(),
            "items": [item.to_dict() for item in items],
        }), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to get registry")
        return jsonify({"error": "Internal server error"}), 500


@registries_bp.post("/<int:registry_id>/items")
def add_item_route(registry_id: int):
    """
    Add a product to a registry.

    Body: product_id, product_title, price (decimal string) or unit_price_cents,
    quantity (default 1), variant_id, currency_code.
    """
    try:
        data = request.get_json() or {}

        if data.get("unit_price_cents") is not None:
            unit_price_cents = data.get("unit_price_cents")
        else:
            unit_price_cents = parse_money_cents(data.get("price"), field="price")

        actor = None
        if data.get("actor_email"):
            actor = Actor(actor_type=ACTOR_CUSTOMER, email=data.get("actor_email"), name=data.get("actor_name"))

        item = registry_service.add_item(
            registry_id=registry_id,
            product_id=data.get("product_id"),
            product_title=data.get("product_title"),
            unit_price_cents=unit_price_cents,
            quantity=data.get("quantity", 1),
            variant_id=data.get("variant_id"),
            currency_code=data.get("currency_code"),
            actor=actor,
        )
        return jsonify({"item": item.to_dict()}), 201

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to add registry item")
        return jsonify({"error": "Internal server error"}), 500


@registries_bp.get("/<int:registry_id>/items/<int:item_id>")
def get_item_route(registry_id: int, item_id: int):
    try:
        item = _get_item_in_registry(registry_id, item_id)
        purchases = purchase_service.list_item_purchases(item.id)
        return jsonify({
            "item": item.to_dict(),
            "purchases": [p.to_dict() for p in purchases],
        }), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to get registry item")
        return jsonify({"error": "Internal server error"}), 500


@registries_bp.delete("/<int:registry_id>/items/<int:item_id>")
def remove_item_route(registry_id: int, item_id: int):
    """Soft-remove: the item is deactivated, its purchases are kept."""
    try:
        _get_item_in_registry(registry_id, item_id)
        item = registry_service.deactivate_item(item_id)
        return jsonify({"item": item.to_dict()}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to remove registry item")
        return jsonify({"error": "Internal server error"}), 500


@registries_bp.get("/<int:registry_id>/activity")
def list_activity_route(registry_id: int):
    try:
        registry_service.get_registry(registry_id)
        limit = min(request.args.get("limit", 100, type=int), 500)
        activities = activity_service.list_activity(
            registry_id,
            action=request.args.get("action"),
            limit=limit,
        )
        return jsonify({"activity": [a.to_dict() for a in activities]}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to list registry activity")
        return jsonify({"error": "Internal server error"}), 500
