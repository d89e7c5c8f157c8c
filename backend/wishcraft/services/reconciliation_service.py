# Overview: Webhook reconciliation orchestrator; turns Shopify order events into ledger and contribution writes.

"""
Webhook Reconciliation Orchestrator

WHY: a single order can touch several registries, items and group gifts.
One bad line must not lose the others, and a database outage must make
Shopify redeliver rather than silently drop the order.

DESIGN PRINCIPLES:
- Envelope errors reject the whole payload (MalformedPayloadError -> 400)
- Each tagged line item is its own transaction (run_with_retry)
- Per-line domain errors roll back that line only; it is reported "skipped"
- Transient database errors that survive retries abort the webhook
  (TransientInfrastructureError -> 503); lines already committed are
  deduplicated on redelivery
- Redelivery of a recorded line is a no-op reported "duplicate"

STATES (per webhook): received -> extracting -> recorded
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..errors import (
    GroupGiftError,
    InactiveItemError,
    NotFoundError,
    OverfundingError,
    TransientInfrastructureError,
    UnresolvableReferenceError,
    ValidationError,
)
from ..extensions import db
from ..models.purchases import (
    CONTRIBUTION_COMPLETED,
    FULFILLMENT_FULFILLED,
    FULFILLMENT_PARTIAL,
    PURCHASE_PAYMENT_PAID,
    PURCHASE_PAYMENT_PENDING,
)
from .concurrency import TRANSIENT_DB_ERRORS, run_with_retry
from .contribution_service import (
    Contributor,
    _add_contribution_locked,
    _mark_contribution_status_locked,
    _reverse_order_contributions_locked,
)
from .order_payload import (
    LineItem,
    OrderPayload,
    extract_gift_message,
    is_registry_tagged,
    parse_line_item,
    parse_order,
    parse_registry_tag,
)
from .purchase_service import (
    _cancel_order_purchases_locked,
    _record_purchase_locked,
    _update_fulfillment_status_locked,
)

logger = logging.getLogger(__name__)


STATE_RECEIVED = "received"
STATE_EXTRACTING = "extracting"
STATE_RECORDED = "recorded"

OUTCOME_RECORDED = "recorded"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_SKIPPED = "skipped"

# Contained per line: the line is skipped, the webhook still succeeds
LINE_SKIP_ERRORS = (
    UnresolvableReferenceError,
    InactiveItemError,
    ValidationError,
    GroupGiftError,
    OverfundingError,
    NotFoundError,
)


@dataclass
class LineItemOutcome:
    line_item_id: str | None
    outcome: str
    purchase_id: int | None = None
    contribution_id: int | None = None
    reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "line_item_id": self.line_item_id,
            "outcome": self.outcome,
            "purchase_id": self.purchase_id,
            "contribution_id": self.contribution_id,
            "reason": self.reason,
        }


@dataclass
class ReconciliationResult:
    order_id: str | None
    topic: str
    state: str = STATE_RECEIVED
    lines: list[LineItemOutcome] = field(default_factory=list)
    untagged_count: int = 0
    affected_count: int = 0

    def _count(self, outcome: str) -> int:
        return sum(1 for line in self.lines if line.outcome == outcome)

    @property
    def recorded_count(self) -> int:
        return self._count(OUTCOME_RECORDED)

    @property
    def duplicate_count(self) -> int:
        return self._count(OUTCOME_DUPLICATE)

    @property
    def skipped_count(self) -> int:
        return self._count(OUTCOME_SKIPPED)

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "topic": self.topic,
            "state": self.state,
            "recorded": self.recorded_count,
            "duplicates": self.duplicate_count,
            "skipped": self.skipped_count,
            "untagged": self.untagged_count,
            "affected": self.affected_count,
            "lines": [line.to_dict() for line in self.lines],
        }


def _transient(order_id: str, exc: Exception) -> TransientInfrastructureError:
    logger.error("Order %s: database unavailable after retries (%s)", order_id, type(exc).__name__)
    return TransientInfrastructureError(f"Database unavailable while reconciling order {order_id}")


# =============================================================================
# orders/create
# =============================================================================

def _reconcile_line_locked(order: OrderPayload, line: LineItem) -> LineItemOutcome:
    tag = parse_registry_tag(line)
    record = _record_purchase_locked(
        order_id=order.order_id,
        line_item_id=line.line_item_id,
        registry_item_id=tag.registry_item_id,
        registry_id=tag.registry_id,
        group_gift_id=tag.group_gift_id,
        is_anonymous=tag.is_anonymous,
        quantity=line.quantity,
        unit_price_cents=line.unit_price_cents,
        currency_code=order.currency_code,
        purchaser=order.purchaser,
        gift_message=extract_gift_message(line.properties),
        is_gift=tag.is_gift,
        order_name=order.order_name,
        payment_status=PURCHASE_PAYMENT_PAID if order.is_paid else PURCHASE_PAYMENT_PENDING,
        ordered_at=order.ordered_at,
    )
    purchase = record.purchase
    if not record.created:
        return LineItemOutcome(line.line_item_id, OUTCOME_DUPLICATE, purchase_id=purchase.id)

    contribution_id = None
    if tag.group_gift_id is not None:
        contribution = _add_contribution_locked(
            tag.group_gift_id,
            contributor=Contributor(
                email=order.purchaser.email,
                name=order.purchaser.name,
                message=purchase.gift_message,
                is_anonymous=tag.is_anonymous,
                show_amount=tag.show_amount,
            ),
            amount_cents=purchase.total_amount_cents,
            currency_code=order.currency_code,
            order_id=order.order_id,
            line_item_id=line.line_item_id,
        )
        if order.is_paid:
            _mark_contribution_status_locked(contribution, CONTRIBUTION_COMPLETED)
        contribution_id = contribution.id

    return LineItemOutcome(
        line.line_item_id,
        OUTCOME_RECORDED,
        purchase_id=purchase.id,
        contribution_id=contribution_id,
    )


def reconcile_order_created(payload: Any) -> ReconciliationResult:
    """
    Reconcile an orders/create webhook.

    Untagged line items are ignored. Each tagged line is recorded in its own
    transaction and reported as recorded, duplicate or skipped.

    Raises:
        MalformedPayloadError: envelope unusable (nothing written)
        TransientInfrastructureError: database still failing after retries
    """
    order = parse_order(payload)
    result = ReconciliationResult(order_id=order.order_id, topic="orders/create")

    result.state = STATE_EXTRACTING
    for raw_line in order.raw_line_items:
        if not is_registry_tagged(raw_line):
            result.untagged_count += 1
            continue

        raw_id = raw_line.get("id")
        line_item_id = str(raw_id) if raw_id is not None else None
        try:
            line = parse_line_item(raw_line)

            def _op(line=line):
                outcome = _reconcile_line_locked(order, line)
                db.session.commit()
                return outcome

            outcome = run_with_retry(_op)
        except LINE_SKIP_ERRORS as exc:
            db.session.rollback()
            logger.warning(
                "Order %s line %s skipped: %s: %s",
                order.order_id,
                line_item_id,
                type(exc).__name__,
                exc,
            )
            outcome = LineItemOutcome(line_item_id, OUTCOME_SKIPPED, reason=str(exc))
        except TRANSIENT_DB_ERRORS as exc:
            db.session.rollback()
            raise _transient(order.order_id, exc) from exc

        if outcome.outcome == OUTCOME_DUPLICATE:
            logger.info("Order %s line %s already recorded", order.order_id, line_item_id)
        result.lines.append(outcome)

    result.state = STATE_RECORDED
    logger.info(
        "Order %s reconciled: %d recorded, %d duplicate, %d skipped, %d untagged",
        order.order_id,
        result.recorded_count,
        result.duplicate_count,
        result.skipped_count,
        result.untagged_count,
    )
    return result


# =============================================================================
# orders/cancelled, orders/fulfilled
# =============================================================================

def reconcile_order_cancelled(payload: Any) -> ReconciliationResult:
    """
    Reverse an order: ledger rows cancelled (quantity released), contributions
    that came through the order refunded or failed. Idempotent.
    """
    order = parse_order(payload, require_line_items=False)
    result = ReconciliationResult(order_id=order.order_id, topic="orders/cancelled")

    def _op():
        # Contributions first: refunding them releases group-gift funding
        contributions = _reverse_order_contributions_locked(order.order_id)
        purchases = _cancel_order_purchases_locked(order.order_id)
        db.session.commit()
        return len(purchases) + len(contributions)

    result.state = STATE_EXTRACTING
    try:
        result.affected_count = run_with_retry(_op)
    except TRANSIENT_DB_ERRORS as exc:
        db.session.rollback()
        raise _transient(order.order_id, exc) from exc

    result.state = STATE_RECORDED
    logger.info("Order %s cancelled: %d rows reversed", order.order_id, result.affected_count)
    return result


def _fulfilled_line_ids(payload: dict) -> list[str] | None:
    """Line ids named by the payload's fulfillments, or None when it carries none."""
    fulfillments = payload.get("fulfillments")
    if not isinstance(fulfillments, list) or not fulfillments:
        return None

    line_ids = []
    for fulfillment in fulfillments:
        if not isinstance(fulfillment, dict):
            continue
        for line in fulfillment.get("line_items") or []:
            if isinstance(line, dict) and line.get("id") is not None:
                line_ids.append(str(line["id"]))
    return line_ids or None


def reconcile_order_fulfilled(payload: Any) -> ReconciliationResult:
    """
    Mark ledger rows fulfilled.

    Shopify's fulfillment_status "partial" applies to the lines listed in the
    payload's fulfillments; otherwise every line of the order is fulfilled.
    """
    order = parse_order(payload, require_line_items=False)
    result = ReconciliationResult(order_id=order.order_id, topic="orders/fulfilled")

    line_ids = None
    if payload.get("fulfillment_status") == FULFILLMENT_PARTIAL:
        line_ids = _fulfilled_line_ids(payload)

    def _op():
        updated = _update_fulfillment_status_locked(order.order_id, FULFILLMENT_FULFILLED, line_ids)
        db.session.commit()
        return len(updated)

    result.state = STATE_EXTRACTING
    try:
        result.affected_count = run_with_retry(_op)
    except TRANSIENT_DB_ERRORS as exc:
        db.session.rollback()
        raise _transient(order.order_id, exc) from exc

    result.state = STATE_RECORDED
    logger.info("Order %s fulfilled: %d purchases updated", order.order_id, result.affected_count)
    return result
