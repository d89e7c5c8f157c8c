# Overview: Typed views over Shopify order webhook payloads.

"""
Order webhook payload parsing.

Structure is validated once for the whole order (MalformedPayloadError),
line items are parsed lazily one at a time so that a single bad line only
skips itself (ValidationError).

Registry tagging uses line-item custom properties ("properties": [{name, value}]).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..errors import MalformedPayloadError, ValidationError
from ..models.purchases import PURCHASER_CUSTOMER, PURCHASER_GUEST
from ..time_utils import parse_shopify_datetime
from ..validation import (
    optional_str,
    parse_currency_code,
    parse_flag,
    parse_money_cents,
    parse_positive_int,
)

logger = logging.getLogger(__name__)


# =============================================================================
# LINE-ITEM PROPERTY KEYS
# =============================================================================

PROP_REGISTRY_ITEM_ID = "_registry_item_id"
PROP_REGISTRY_ID = "_registry_id"
PROP_GROUP_GIFT_ID = "_group_gift_id"
PROP_GIFT_PURCHASE = "_gift_purchase"
PROP_GIFT_MESSAGE = "_gift_message"
PROP_CONTRIBUTOR_ANONYMOUS = "_contributor_anonymous"
PROP_SHOW_AMOUNT = "_show_amount"

# Storefront theme extension spelling
PROP_GIFT_MESSAGE_VISIBLE = "gift_message"

RESERVED_PROPERTIES = frozenset({
    PROP_REGISTRY_ITEM_ID,
    PROP_REGISTRY_ID,
    PROP_GROUP_GIFT_ID,
    PROP_GIFT_PURCHASE,
    PROP_CONTRIBUTOR_ANONYMOUS,
    PROP_SHOW_AMOUNT,
})

GIFT_MESSAGE_KEYWORDS = ("gift", "message")

FINANCIAL_STATUS_PAID = "paid"


@dataclass(frozen=True)
class Purchaser:
    purchaser_type: str
    email: str | None = None
    name: str | None = None


@dataclass(frozen=True)
class RegistryTag:
    """What a line item says about its registry target."""
    registry_item_id: int
    registry_id: int | None = None
    group_gift_id: int | None = None
    is_gift: bool = True
    is_anonymous: bool = False
    show_amount: bool = True


@dataclass(frozen=True)
class LineItem:
    line_item_id: str
    quantity: int
    unit_price_cents: int
    title: str | None
    properties: dict[str, Any]

    @property
    def total_cents(self) -> int:
        return self.quantity * self.unit_price_cents


@dataclass
class OrderPayload:
    order_id: str
    order_name: str | None
    currency_code: str
    financial_status: str | None
    purchaser: Purchaser
    ordered_at: datetime | None
    raw_line_items: list[dict] = field(default_factory=list)

    @property
    def is_paid(self) -> bool:
        return self.financial_status == FINANCIAL_STATUS_PAID


# =============================================================================
# ORDER LEVEL
# =============================================================================

def parse_order(payload: Any, *, require_line_items: bool = True) -> OrderPayload:
    """
    Validate the order envelope.

    Raises:
        MalformedPayloadError: not an object, no id, or line_items is not a list of objects
    """
    if not isinstance(payload, dict):
        raise MalformedPayloadError("Order payload must be a JSON object")

    order_id = payload.get("id")
    if order_id is None or isinstance(order_id, (bool, dict, list)) or str(order_id).strip() == "":
        raise MalformedPayloadError("Order payload is missing id")

    line_items = payload.get("line_items")
    if line_items is None and not require_line_items:
        line_items = []
    if not isinstance(line_items, list):
        raise MalformedPayloadError("Order payload line_items must be a list")
    if any(not isinstance(li, dict) for li in line_items):
        raise MalformedPayloadError("Order payload line_items must contain objects")

    try:
        currency = parse_currency_code(payload.get("currency"))
    except ValidationError as exc:
        raise MalformedPayloadError(str(exc)) from exc

    return OrderPayload(
        order_id=str(order_id),
        order_name=optional_str(payload.get("name"), max_length=64),
        currency_code=currency,
        financial_status=optional_str(payload.get("financial_status"), max_length=32),
        purchaser=extract_purchaser(payload),
        ordered_at=parse_shopify_datetime(payload.get("created_at")),
        raw_line_items=line_items,
    )


def extract_purchaser(payload: dict) -> Purchaser:
    customer = payload.get("customer") if isinstance(payload.get("customer"), dict) else None
    email = optional_str(payload.get("email"))
    if customer:
        email = email or optional_str(customer.get("email"))
        name = _join_name(customer.get("first_name"), customer.get("last_name"))
        return Purchaser(purchaser_type=PURCHASER_CUSTOMER, email=email, name=name)

    billing = payload.get("billing_address") if isinstance(payload.get("billing_address"), dict) else {}
    name = optional_str(billing.get("name")) or _join_name(billing.get("first_name"), billing.get("last_name"))
    return Purchaser(purchaser_type=PURCHASER_GUEST, email=email, name=name)


def _join_name(first: Any, last: Any) -> str | None:
    parts = [optional_str(first), optional_str(last)]
    joined = " ".join(p for p in parts if p)
    return joined or None


# =============================================================================
# LINE LEVEL
# =============================================================================

def properties_to_dict(raw_properties: Any) -> dict[str, Any]:
    """
    Shopify sends properties as [{name, value}] (REST) or occasionally a flat
    object. Anything else yields no properties. First occurrence wins.
    """
    if isinstance(raw_properties, dict):
        return {str(k): v for k, v in raw_properties.items()}
    if not isinstance(raw_properties, list):
        return {}

    props: dict[str, Any] = {}
    for prop in raw_properties:
        if not isinstance(prop, dict):
            continue
        name = prop.get("name")
        if not isinstance(name, str) or not name:
            continue
        props.setdefault(name, prop.get("value"))
    return props


def is_registry_tagged(raw_line_item: dict) -> bool:
    props = properties_to_dict(raw_line_item.get("properties"))
    return props.get(PROP_REGISTRY_ITEM_ID) not in (None, "")


def parse_line_item(raw_line_item: dict) -> LineItem:
    """
    Raises:
        ValidationError: missing id, bad quantity or bad price
    """
    line_item_id = raw_line_item.get("id")
    if line_item_id is None or isinstance(line_item_id, (bool, dict, list)) or str(line_item_id).strip() == "":
        raise ValidationError("line item is missing id")

    return LineItem(
        line_item_id=str(line_item_id),
        quantity=parse_positive_int(raw_line_item.get("quantity"), field="quantity"),
        unit_price_cents=parse_money_cents(raw_line_item.get("price"), field="price"),
        title=optional_str(raw_line_item.get("title")),
        properties=properties_to_dict(raw_line_item.get("properties")),
    )


def parse_registry_tag(line: LineItem) -> RegistryTag:
    """
    Raises:
        ValidationError: registry/group-gift ids are not positive integers
    """
    props = line.properties
    registry_id = props.get(PROP_REGISTRY_ID)
    group_gift_id = props.get(PROP_GROUP_GIFT_ID)

    return RegistryTag(
        registry_item_id=parse_positive_int(props.get(PROP_REGISTRY_ITEM_ID), field=PROP_REGISTRY_ITEM_ID),
        registry_id=parse_positive_int(registry_id, field=PROP_REGISTRY_ID) if registry_id not in (None, "") else None,
        group_gift_id=parse_positive_int(group_gift_id, field=PROP_GROUP_GIFT_ID) if group_gift_id not in (None, "") else None,
        is_gift=parse_flag(props.get(PROP_GIFT_PURCHASE), default=True),
        is_anonymous=parse_flag(props.get(PROP_CONTRIBUTOR_ANONYMOUS), default=False),
        show_amount=parse_flag(props.get(PROP_SHOW_AMOUNT), default=True),
    )


def extract_gift_message(properties: dict[str, Any]) -> str | None:
    """
    Raw (unsanitized) gift message for a line item.

    Looks up the explicit keys first. Falling back to any property whose name
    contains "gift" or "message" (case-insensitive) keeps older theme
    snippets working; reserved registry keys are never treated as messages.
    """
    for key in (PROP_GIFT_MESSAGE, PROP_GIFT_MESSAGE_VISIBLE):
        value = properties.get(key)
        if isinstance(value, str) and value.strip():
            return value

    for name, value in properties.items():
        if name in RESERVED_PROPERTIES:
            continue
        lowered = name.lower()
        if any(keyword in lowered for keyword in GIFT_MESSAGE_KEYWORDS):
            if isinstance(value, str) and value.strip():
                logger.debug("Gift message taken from legacy property %r", name)
                return value
    return None
