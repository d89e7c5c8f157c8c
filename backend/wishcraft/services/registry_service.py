# Overview: Service-layer operations for registries and registry items; encapsulates business logic and database work.

"""
Registry Item Store

WHY: quantity_purchased on a registry item is the one value with real write
contention (two different orders for the same gift can land at once).

DESIGN PRINCIPLES:
- Increments are a single UPDATE ... SET quantity_purchased = quantity_purchased + n,
  never read-modify-write in Python
- Increments run inside the caller's transaction (the purchase ledger's)
- No clamping to the target quantity: over-purchase is recorded and flagged
- Items are soft-deactivated, never hard-deleted while purchases reference them
"""

from __future__ import annotations

from sqlalchemy import case, update

from ..errors import (
    InactiveItemError,
    RegistryItemNotFoundError,
    RegistryNotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Registry, RegistryItem
from ..models.activity import ACTION_ITEM_ADDED, ACTION_ITEM_REMOVED, ACTOR_CUSTOMER
from ..models.registries import ITEM_STATUS_ACTIVE, ITEM_STATUS_INACTIVE
from ..validation import optional_str, parse_currency_code, parse_positive_int
from .activity_service import Actor, record_activity
from .concurrency import run_with_retry


# =============================================================================
# ITEM READS
# =============================================================================

def get_item(item_id: int) -> RegistryItem:
    """
    Load a registry item, always re-reading the row from the database.

    Raises:
        RegistryItemNotFoundError
    """
    item = db.session.get(RegistryItem, item_id, populate_existing=True)
    if item is None:
        raise RegistryItemNotFoundError(f"Registry item {item_id} not found")
    return item


def list_items(registry_id: int, *, include_inactive: bool = False) -> list[RegistryItem]:
    query = db.session.query(RegistryItem).filter_by(registry_id=registry_id)
    if not include_inactive:
        query = query.filter_by(status=ITEM_STATUS_ACTIVE)
    return query.order_by(RegistryItem.id).all()


# =============================================================================
# QUANTITY MUTATORS (caller owns the transaction)
# =============================================================================

def increment_purchased(item_id: int, delta: int, *, allow_inactive: bool = False) -> RegistryItem:
    """
    Atomically add delta to quantity_purchased.

    Runs inside the caller's transaction and does not commit.

    Args:
        item_id: Registry item
        delta: Units purchased (integer > 0)
        allow_inactive: Reconcile against an item deactivated after the order was placed

    Returns:
        The refreshed RegistryItem

    Raises:
        ValidationError: delta is not a positive integer
        RegistryItemNotFoundError: item missing
        InactiveItemError: item inactive and allow_inactive is False
    """
    if isinstance(delta, bool) or not isinstance(delta, int) or delta <= 0:
        raise ValidationError("delta must be a positive integer")

    item = get_item(item_id)
    if not item.is_active and not allow_inactive:
        raise InactiveItemError(f"Registry item {item_id} is inactive")

    db.session.execute(
        update(RegistryItem)
        .where(RegistryItem.id == item_id)
        .values(quantity_purchased=RegistryItem.quantity_purchased + delta)
        .execution_options(synchronize_session=False)
    )
    return get_item(item_id)


def release_purchased(item_id: int, delta: int) -> RegistryItem:
    """
    Atomically subtract delta from quantity_purchased, flooring at zero.

    Used to reverse a cancelled order line or an unfunded group gift.
    Inactive items are allowed: reversals must always land.
    """
    if isinstance(delta, bool) or not isinstance(delta, int) or delta <= 0:
        raise ValidationError("delta must be a positive integer")

    get_item(item_id)
    db.session.execute(
        update(RegistryItem)
        .where(RegistryItem.id == item_id)
        .values(
            quantity_purchased=case(
                (RegistryItem.quantity_purchased >= delta, RegistryItem.quantity_purchased - delta),
                else_=0,
            )
        )
        .execution_options(synchronize_session=False)
    )
    return get_item(item_id)


# =============================================================================
# REGISTRY / ITEM MANAGEMENT
# =============================================================================

def create_registry(*, shop_domain: str, title: str, customer_email: str | None = None) -> Registry:
    shop_domain = optional_str(shop_domain)
    title = optional_str(title)
    if not shop_domain or not title:
        raise ValidationError("shop_domain and title are required")

    def _op():
        registry = Registry(
            shop_domain=shop_domain,
            title=title,
            customer_email=optional_str(customer_email),
        )
        db.session.add(registry)
        db.session.commit()
        return registry

    return run_with_retry(_op)


def get_registry(registry_id: int) -> Registry:
    registry = db.session.get(Registry, registry_id)
    if registry is None:
        raise RegistryNotFoundError(f"Registry {registry_id} not found")
    return registry


def add_item(
    *,
    registry_id: int,
    product_id: str,
    product_title: str,
    unit_price_cents: int,
    quantity: int = 1,
    variant_id: str | None = None,
    currency_code: str | None = None,
    actor: Actor | None = None,
) -> RegistryItem:
    """
    Add a product to a registry and log item_added.

    Raises:
        RegistryNotFoundError, ValidationError
    """
    quantity = parse_positive_int(quantity, field="quantity")
    if isinstance(unit_price_cents, bool) or not isinstance(unit_price_cents, int) or unit_price_cents < 0:
        raise ValidationError("unit_price_cents must be a non-negative integer")
    product_id = optional_str(product_id, max_length=64)
    product_title = optional_str(product_title)
    if not product_id or not product_title:
        raise ValidationError("product_id and product_title are required")
    currency = parse_currency_code(currency_code)

    def _op():
        registry = get_registry(registry_id)

        item = RegistryItem(
            registry_id=registry.id,
            product_id=product_id,
            variant_id=optional_str(variant_id, max_length=64),
            product_title=product_title,
            quantity=quantity,
            quantity_purchased=0,
            unit_price_cents=unit_price_cents,
            currency_code=currency,
            status=ITEM_STATUS_ACTIVE,
        )
        db.session.add(item)
        db.session.flush()

        record_activity(
            registry_id=registry.id,
            action=ACTION_ITEM_ADDED,
            description=f"{product_title} added (wants {quantity})",
            actor=actor or Actor(actor_type=ACTOR_CUSTOMER, email=registry.customer_email),
            registry_item_id=item.id,
            metadata={"product_id": product_id, "variant_id": variant_id, "quantity": quantity},
        )

        db.session.commit()
        return item

    return run_with_retry(_op)


def deactivate_item(item_id: int, *, actor: Actor | None = None) -> RegistryItem:
    """
    Soft-remove an item (status=inactive). Idempotent.

    Purchases keep pointing at the row; late webhooks for it still reconcile
    when ALLOW_INACTIVE_ITEM_PURCHASES is on.
    """
    def _op():
        item = get_item(item_id)
        if item.status == ITEM_STATUS_INACTIVE:
            return item

        item.status = ITEM_STATUS_INACTIVE
        db.session.flush()

        record_activity(
            registry_id=item.registry_id,
            action=ACTION_ITEM_REMOVED,
            description=f"{item.product_title} removed",
            actor=actor,
            registry_item_id=item.id,
        )

        db.session.commit()
        return item

    return run_with_retry(_op)
