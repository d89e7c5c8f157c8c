# Overview: Service-layer operations for registry purchases; encapsulates business logic and database work.

"""
Purchase Ledger

WHY: Shopify delivers order webhooks at-least-once, and concurrently.
A purchase must be counted exactly once per (order_id, line_item_id).

DESIGN PRINCIPLES:
- The unique constraint on (order_id, line_item_id) is the gate.
  Check-then-insert is only the fast path; a concurrent winner surfaces
  as IntegrityError and is treated as "already processed".
- The ledger insert is the FIRST write of its transaction. The race path
  rolls back the whole transaction, so nothing else may be pending.
- Quantity is credited only when a row was actually inserted.
- Cancellation never deletes: status=cancelled, payment_status=refunded,
  quantity released back to the item.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import (
    GroupGiftError,
    InactiveItemError,
    PurchaseNotFoundError,
    UnresolvableReferenceError,
    ValidationError,
)
from ..extensions import db
from ..models import Purchase, RegistryItem
from ..models.activity import ACTION_ITEM_PURCHASED, ACTION_PURCHASE_CANCELLED
from ..models.purchases import (
    PURCHASE_PAYMENT_PENDING,
    PURCHASE_PAYMENT_REFUNDED,
    PURCHASE_STATUS_CANCELLED,
    PURCHASE_STATUS_CONFIRMED,
    PURCHASER_GUEST,
    VALID_FULFILLMENT_STATUSES,
)
from ..sanitization import sanitize_gift_message
from ..validation import parse_currency_code, parse_positive_int
from .activity_service import Actor, record_activity
from .concurrency import lock_for_update, run_with_retry
from .order_payload import Purchaser
from .registry_service import increment_purchased, release_purchased

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PurchaseRecord:
    """Ledger result: the row, and whether this call inserted it."""
    purchase: Purchase
    created: bool


def get_purchase(purchase_id: int) -> Purchase:
    purchase = db.session.get(Purchase, purchase_id)
    if purchase is None:
        raise PurchaseNotFoundError(f"Purchase {purchase_id} not found")
    return purchase


def _find_existing_purchase(order_id: str, line_item_id: str) -> Purchase | None:
    return (
        db.session.query(Purchase)
        .filter_by(order_id=order_id, line_item_id=line_item_id)
        .first()
    )


def _resolve_item(registry_item_id: int, registry_id: int | None) -> RegistryItem:
    item = db.session.get(RegistryItem, registry_item_id)
    if item is None:
        raise UnresolvableReferenceError(
            f"Registry item {registry_item_id} does not exist",
            reference=f"registry_item:{registry_item_id}",
        )
    if registry_id is not None and item.registry_id != registry_id:
        raise UnresolvableReferenceError(
            f"Registry item {registry_item_id} does not belong to registry {registry_id}",
            reference=f"registry:{registry_id}",
        )
    return item


def _resolve_group_gift(group_gift_id: int, item: RegistryItem) -> Purchase:
    gift = db.session.get(Purchase, group_gift_id)
    if gift is None:
        raise UnresolvableReferenceError(
            f"Group gift {group_gift_id} does not exist",
            reference=f"group_gift:{group_gift_id}",
        )
    if not gift.is_aggregating_group_gift:
        raise GroupGiftError(f"Purchase {group_gift_id} is not a group gift")
    if gift.registry_item_id != item.id:
        raise GroupGiftError(f"Group gift {group_gift_id} is for a different registry item")
    if gift.status == PURCHASE_STATUS_CANCELLED:
        raise GroupGiftError(f"Group gift {group_gift_id} is cancelled")
    return gift


# =============================================================================
# RECORDING
# =============================================================================

def _activity_actor(purchaser: Purchaser, is_anonymous: bool) -> Actor:
    """The activity feed is visible to the registry owner; anonymous buyers stay unnamed there."""
    if is_anonymous:
        return Actor(actor_type=purchaser.purchaser_type)
    return Actor(actor_type=purchaser.purchaser_type, email=purchaser.email, name=purchaser.name)


def _record_purchase_locked(
    *,
    order_id: str,
    line_item_id: str,
    registry_item_id: int,
    quantity: int,
    unit_price_cents: int,
    currency_code: str | None = None,
    purchaser: Purchaser | None = None,
    gift_message: str | None = None,
    is_gift: bool = True,
    order_name: str | None = None,
    payment_status: str = PURCHASE_PAYMENT_PENDING,
    ordered_at: datetime | None = None,
    registry_id: int | None = None,
    group_gift_id: int | None = None,
    is_anonymous: bool = False,
) -> PurchaseRecord:
    """
    Check-or-insert one ledger row inside the caller's transaction.

    Must be the first write of the transaction (see module docstring).
    Group-gift lines (group_gift_id set) are recorded without crediting
    quantity; the item is credited when the group gift becomes funded.
    """
    if not order_id or not line_item_id:
        raise ValidationError("order_id and line_item_id are required")
    quantity = parse_positive_int(quantity, field="quantity")
    if isinstance(unit_price_cents, bool) or not isinstance(unit_price_cents, int) or unit_price_cents < 0:
        raise ValidationError("unit_price_cents must be a non-negative integer")
    currency = parse_currency_code(currency_code)

    existing = _find_existing_purchase(order_id, line_item_id)
    if existing is not None:
        return PurchaseRecord(purchase=existing, created=False)

    item = _resolve_item(registry_item_id, registry_id)
    allow_inactive = current_app.config.get("ALLOW_INACTIVE_ITEM_PURCHASES", True)
    if not item.is_active and not allow_inactive:
        raise InactiveItemError(f"Registry item {item.id} is inactive")

    gift = _resolve_group_gift(group_gift_id, item) if group_gift_id is not None else None
    purchaser = purchaser or Purchaser(purchaser_type=PURCHASER_GUEST)

    purchase = Purchase(
        registry_item_id=item.id,
        order_id=order_id,
        line_item_id=line_item_id,
        order_name=order_name,
        quantity=quantity,
        unit_price_cents=unit_price_cents,
        total_amount_cents=quantity * unit_price_cents,
        currency_code=currency,
        purchaser_type=purchaser.purchaser_type,
        purchaser_name=purchaser.name,
        purchaser_email=purchaser.email,
        is_gift=is_gift,
        gift_message=sanitize_gift_message(
            gift_message,
            max_length=current_app.config.get("GIFT_MESSAGE_MAX_LENGTH", 500),
        ),
        status=PURCHASE_STATUS_CONFIRMED,
        payment_status=payment_status,
        is_group_gift=gift is not None,
        group_gift_id=gift.id if gift is not None else None,
        ordered_at=ordered_at,
    )
    db.session.add(purchase)
    try:
        db.session.flush()
    except IntegrityError:
        # Concurrent delivery committed the same line first
        db.session.rollback()
        winner = _find_existing_purchase(order_id, line_item_id)
        if winner is None:
            raise
        logger.info("Order %s line %s recorded concurrently; treating as duplicate", order_id, line_item_id)
        return PurchaseRecord(purchase=winner, created=False)

    registry_id = item.registry_id
    product_title = item.product_title
    if gift is None:
        increment_purchased(item.id, quantity, allow_inactive=allow_inactive)

    record_activity(
        registry_id=registry_id,
        action=ACTION_ITEM_PURCHASED,
        description=f"{quantity} x {product_title} purchased",
        actor=_activity_actor(purchaser, is_anonymous),
        registry_item_id=purchase.registry_item_id,
        purchase_id=purchase.id,
        metadata={
            "order_id": order_id,
            "line_item_id": line_item_id,
            "quantity": quantity,
            "unit_price_cents": unit_price_cents,
            "total_amount_cents": purchase.total_amount_cents,
            "group_gift_id": purchase.group_gift_id,
        },
    )

    return PurchaseRecord(purchase=purchase, created=True)


def record_purchase(
    *,
    order_id: str,
    line_item_id: str,
    registry_item_id: int,
    quantity: int,
    unit_price_cents: int,
    currency_code: str | None = None,
    purchaser: Purchaser | None = None,
    gift_message: str | None = None,
    is_gift: bool = True,
    order_name: str | None = None,
    payment_status: str = PURCHASE_PAYMENT_PENDING,
    ordered_at: datetime | None = None,
    registry_id: int | None = None,
    group_gift_id: int | None = None,
    is_anonymous: bool = False,
) -> Purchase:
    """
    Record a purchase exactly once per (order_id, line_item_id).

    A repeat call returns the existing row unchanged: no increment, no
    activity.

    Raises:
        UnresolvableReferenceError: registry item (or group gift) missing
        InactiveItemError: item inactive and ALLOW_INACTIVE_ITEM_PURCHASES is off
        ValidationError: bad quantity, price or currency
    """
    def _op():
        record = _record_purchase_locked(
            order_id=order_id,
            line_item_id=line_item_id,
            registry_item_id=registry_item_id,
            quantity=quantity,
            unit_price_cents=unit_price_cents,
            currency_code=currency_code,
            purchaser=purchaser,
            gift_message=gift_message,
            is_gift=is_gift,
            order_name=order_name,
            payment_status=payment_status,
            ordered_at=ordered_at,
            registry_id=registry_id,
            group_gift_id=group_gift_id,
            is_anonymous=is_anonymous,
        )
        db.session.commit()
        return record.purchase

    return run_with_retry(_op)


# =============================================================================
# ORDER LIFECYCLE
# =============================================================================

def _cancel_order_purchases_locked(order_id: str) -> list[Purchase]:
    purchases = (
        lock_for_update(db.session.query(Purchase).filter_by(order_id=order_id))
        .order_by(Purchase.id)
        .all()
    )

    cancelled = []
    for purchase in purchases:
        if purchase.status == PURCHASE_STATUS_CANCELLED:
            continue

        purchase.status = PURCHASE_STATUS_CANCELLED
        purchase.payment_status = PURCHASE_PAYMENT_REFUNDED
        db.session.flush()

        # Group-gift lines never credited the item directly
        if not purchase.is_group_gift:
            release_purchased(purchase.registry_item_id, purchase.quantity)

        record_activity(
            registry_id=purchase.registry_item.registry_id,
            action=ACTION_PURCHASE_CANCELLED,
            description=f"Order {purchase.order_name or order_id} cancelled",
            registry_item_id=purchase.registry_item_id,
            purchase_id=purchase.id,
            metadata={
                "order_id": order_id,
                "line_item_id": purchase.line_item_id,
                "quantity": purchase.quantity,
            },
        )
        cancelled.append(purchase)

    return cancelled


def cancel_order_purchases(order_id: str) -> list[Purchase]:
    """
    Cancel every ledger row of an order. Idempotent: already-cancelled rows
    are left alone and not returned.
    """
    def _op():
        cancelled = _cancel_order_purchases_locked(order_id)
        db.session.commit()
        return cancelled

    return run_with_retry(_op)


def _update_fulfillment_status_locked(
    order_id: str,
    status: str,
    line_item_ids: list[str] | None = None,
) -> list[Purchase]:
    if status not in VALID_FULFILLMENT_STATUSES:
        raise ValidationError(f"Invalid fulfillment status: {status}")

    query = db.session.query(Purchase).filter_by(order_id=order_id, status=PURCHASE_STATUS_CONFIRMED)
    if line_item_ids is not None:
        query = query.filter(Purchase.line_item_id.in_([str(li) for li in line_item_ids]))

    updated = []
    for purchase in query.order_by(Purchase.id).all():
        if purchase.fulfillment_status != status:
            purchase.fulfillment_status = status
            updated.append(purchase)
    db.session.flush()
    return updated


def update_fulfillment_status(
    order_id: str,
    status: str,
    line_item_ids: list[str] | None = None,
) -> list[Purchase]:
    """Set fulfillment_status on confirmed purchases of an order; returns the rows that changed."""
    def _op():
        updated = _update_fulfillment_status_locked(order_id, status, line_item_ids)
        db.session.commit()
        return updated

    return run_with_retry(_op)


def list_item_purchases(item_id: int, *, include_cancelled: bool = True) -> list[Purchase]:
    query = db.session.query(Purchase).filter(
        Purchase.registry_item_id == item_id,
        Purchase.order_id.isnot(None),
    )
    if not include_cancelled:
        query = query.filter(Purchase.status == PURCHASE_STATUS_CONFIRMED)
    return query.order_by(Purchase.created_at, Purchase.id).all()
