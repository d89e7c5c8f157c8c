# Overview: Flask API routes for group gifts and contributions; parses input and returns JSON responses.

# backend/wishcraft/routes/group_gifts.py
"""Group gift API routes"""

from flask import Blueprint, current_app, jsonify, request

from ..errors import (
    GroupGiftError,
    InactiveItemError,
    InvalidTransitionError,
    NotFoundError,
    OverfundingError,
    ValidationError,
)
from ..models.activity import ACTOR_ORGANIZER
from ..services import contribution_service
from ..services.activity_service import Actor
from ..services.contribution_service import Contributor
from ..validation import parse_flag, parse_money_cents


group_gifts_bp = Blueprint("group_gifts", __name__, url_prefix="/api")


def _gift_response(purchase_id: int, *, include_private: bool):
    gift = contribution_service.get_group_gift(purchase_id)
    state = contribution_service.get_completion_state(purchase_id)
    return {
        "group_gift": gift.to_dict(),
        "completion": state.to_dict(),
        "contributions": contribution_service.list_contributions(purchase_id, include_private=include_private),
    }


@group_gifts_bp.post("/group-gifts")
def create_group_gift_route():
    try:
        data = request.get_json() or {}

        registry_item_id = data.get("registry_item_id")
        if not registry_item_id:
            return jsonify({"error": "registry_item_id required"}), 400

        target = data.get("target_amount_cents")
        if target is None and data.get("target_amount") is not None:
            target = parse_money_cents(data.get("target_amount"), field="target_amount")

        organizer = None
        if data.get("organizer_email") or data.get("organizer_name"):
            organizer = Actor(
                actor_type=ACTOR_ORGANIZER,
                email=data.get("organizer_email"),
                name=data.get("organizer_name"),
            )

        gift = contribution_service.create_group_gift(
            registry_item_id=registry_item_id,
            quantity=data.get("quantity", 1),
            target_amount_cents=target,
            organizer=organizer,
        )
        return jsonify({"group_gift": gift.to_dict()}), 201

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except (ValidationError, InactiveItemError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create group gift")
        return jsonify({"error": "Internal server error"}), 500


@group_gifts_bp.get("/group-gifts/<int:purchase_id>")
def get_group_gift_route(purchase_id: int):
    """
    Group gift with its completion state.

    ?view=owner returns the private contribution view (registry owner);
    the default is the public view shown to guests.
    """
    try:
        include_private = request.args.get("view") == "owner"
        return jsonify(_gift_response(purchase_id, include_private=include_private)), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except GroupGiftError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to get group gift")
        return jsonify({"error": "Internal server error"}), 500


@group_gifts_bp.get("/group-gifts/<int:purchase_id>/contributions")
def list_contributions_route(purchase_id: int):
    try:
        include_private = request.args.get("view") == "owner"
        contributions = contribution_service.list_contributions(purchase_id, include_private=include_private)
        return jsonify({"contributions": contributions}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except GroupGiftError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list contributions")
        return jsonify({"error": "Internal server error"}), 500


@group_gifts_bp.post("/group-gifts/<int:purchase_id>/contributions")
def add_contribution_route(purchase_id: int):
    """
    Pledge a contribution. Body: amount (decimal string) or amount_cents,
    currency_code, contributor_email, contributor_name, message,
    is_anonymous, show_amount.
    """
    try:
        data = request.get_json() or {}

        if data.get("amount_cents") is not None:
            amount_cents = data.get("amount_cents")
        else:
            amount_cents = parse_money_cents(data.get("amount"), field="amount")

        contribution = contribution_service.add_contribution(
            purchase_id,
            contributor=Contributor(
                email=data.get("contributor_email"),
                name=data.get("contributor_name"),
                message=data.get("message"),
                is_anonymous=parse_flag(data.get("is_anonymous"), default=False),
                show_amount=parse_flag(data.get("show_amount"), default=True),
            ),
            amount_cents=amount_cents,
            currency_code=data.get("currency_code"),
        )
        return jsonify({"contribution": contribution.to_dict()}), 201

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except (ValidationError, GroupGiftError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to add contribution")
        return jsonify({"error": "Internal server error"}), 500


@group_gifts_bp.post("/contributions/<int:contribution_id>/status")
def update_contribution_status_route(contribution_id: int):
    """
    Payment collaborator callback. Body: {"status": "completed|failed|refunded"}.

    409 on an illegal transition or when the overage tolerance is exceeded.
    """
    try:
        data = request.get_json() or {}
        new_status = data.get("status")
        if not new_status:
            return jsonify({"error": "status required"}), 400

        contribution = contribution_service.mark_contribution_status(contribution_id, new_status)
        state = contribution_service.get_completion_state(contribution.purchase_id)
        return jsonify({
            "contribution": contribution.to_dict(),
            "completion": state.to_dict(),
        }), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except (InvalidTransitionError, OverfundingError) as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update contribution status")
        return jsonify({"error": "Internal server error"}), 500
