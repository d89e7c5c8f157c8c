# Overview: Service-layer operations for group gifts and their contributions; encapsulates business logic and database work.

"""
Group-Gift Contribution Tracker

WHY: many guests fund one gift. The amount collected is money, so it is
never cached: completion is always a SQL SUM over completed contributions.

DESIGN PRINCIPLES:
- A group gift is an aggregating Purchase (is_group_gift=True, no order);
  its total_amount_cents is the target
- Contributions move pending -> completed | failed, completed -> refunded.
  Nothing else. Rows are never deleted.
- Every status change locks the aggregating purchase (FOR UPDATE) and the
  contribution row carries version_id, so concurrent callbacks serialize
- Funding is bookkeeping on top of the ledger: the first time the gift is
  funded its quantity is credited to the registry item; a refund that drops
  it below target releases that quantity again
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from flask import current_app
from sqlalchemy import func

from ..errors import (
    ContributionNotFoundError,
    GroupGiftError,
    InactiveItemError,
    InvalidTransitionError,
    OverfundingError,
    PurchaseNotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import GroupGiftContribution, Purchase
from ..models.activity import (
    ACTION_CONTRIBUTION_COMPLETED,
    ACTION_CONTRIBUTION_FAILED,
    ACTION_CONTRIBUTION_RECEIVED,
    ACTION_CONTRIBUTION_REFUNDED,
    ACTION_GROUP_GIFT_CREATED,
    ACTION_GROUP_GIFT_FUNDED,
    ACTION_GROUP_GIFT_UNFUNDED,
    ACTOR_GUEST,
)
from ..models.purchases import (
    CONTRIBUTION_COMPLETED,
    CONTRIBUTION_FAILED,
    CONTRIBUTION_PENDING,
    CONTRIBUTION_REFUNDED,
    PURCHASE_PAYMENT_PAID,
    PURCHASE_PAYMENT_PENDING,
    PURCHASE_STATUS_CANCELLED,
    PURCHASE_STATUS_CONFIRMED,
    PURCHASER_CUSTOMER,
)
from ..sanitization import sanitize_gift_message
from ..time_utils import utcnow
from ..validation import optional_str, parse_currency_code, parse_positive_int
from .activity_service import Actor, record_activity
from .concurrency import lock_for_update, run_with_retry
from .registry_service import get_item, increment_purchased, release_purchased

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS = {
    CONTRIBUTION_PENDING: (CONTRIBUTION_COMPLETED, CONTRIBUTION_FAILED),
    CONTRIBUTION_COMPLETED: (CONTRIBUTION_REFUNDED,),
    CONTRIBUTION_FAILED: (),
    CONTRIBUTION_REFUNDED: (),
}

_TRANSITION_ACTIONS = {
    CONTRIBUTION_COMPLETED: ACTION_CONTRIBUTION_COMPLETED,
    CONTRIBUTION_FAILED: ACTION_CONTRIBUTION_FAILED,
    CONTRIBUTION_REFUNDED: ACTION_CONTRIBUTION_REFUNDED,
}


@dataclass(frozen=True)
class Contributor:
    email: str | None = None
    name: str | None = None
    message: str | None = None
    is_anonymous: bool = False
    show_amount: bool = True


@dataclass(frozen=True)
class CompletionState:
    purchase_id: int
    total_collected_cents: int
    target_amount_cents: int
    percent_complete: float
    remaining_cents: int
    is_funded: bool
    is_overfunded: bool
    contributor_count: int

    def to_dict(self) -> dict:
        return asdict(self)


# =============================================================================
# GROUP GIFTS
# =============================================================================

def get_group_gift(purchase_id: int, *, lock: bool = False) -> Purchase:
    query = db.session.query(Purchase).filter_by(id=purchase_id)
    if lock:
        query = lock_for_update(query)
    gift = query.first()
    if gift is None:
        raise PurchaseNotFoundError(f"Purchase {purchase_id} not found")
    if not gift.is_aggregating_group_gift:
        raise GroupGiftError(f"Purchase {purchase_id} is not a group gift")
    return gift


def create_group_gift(
    *,
    registry_item_id: int,
    quantity: int = 1,
    target_amount_cents: int | None = None,
    organizer: Actor | None = None,
) -> Purchase:
    """
    Open a group gift for a registry item.

    The target defaults to quantity x the item's unit price.

    Raises:
        RegistryItemNotFoundError, InactiveItemError, ValidationError
    """
    quantity = parse_positive_int(quantity, field="quantity")
    if target_amount_cents is not None and (
        isinstance(target_amount_cents, bool)
        or not isinstance(target_amount_cents, int)
        or target_amount_cents < 0
    ):
        raise ValidationError("target_amount_cents must be a non-negative integer")

    def _op():
        item = get_item(registry_item_id)
        if not item.is_active:
            raise InactiveItemError(f"Registry item {item.id} is inactive")

        target = target_amount_cents if target_amount_cents is not None else item.unit_price_cents * quantity
        gift = Purchase(
            registry_item_id=item.id,
            quantity=quantity,
            unit_price_cents=item.unit_price_cents,
            total_amount_cents=target,
            currency_code=item.currency_code,
            purchaser_type=PURCHASER_CUSTOMER,
            purchaser_name=organizer.name if organizer else None,
            purchaser_email=organizer.email if organizer else None,
            is_gift=True,
            status=PURCHASE_STATUS_CONFIRMED,
            payment_status=PURCHASE_PAYMENT_PENDING,
            is_group_gift=True,
        )
        db.session.add(gift)
        db.session.flush()

        record_activity(
            registry_id=item.registry_id,
            action=ACTION_GROUP_GIFT_CREATED,
            description=f"Group gift opened for {item.product_title}",
            actor=organizer,
            registry_item_id=item.id,
            purchase_id=gift.id,
            metadata={"target_amount_cents": target, "quantity": quantity},
        )

        db.session.commit()
        return gift

    return run_with_retry(_op)


# =============================================================================
# COMPLETION STATE
# =============================================================================

def _completed_totals(purchase_id: int) -> tuple[int, int]:
    total, count = (
        db.session.query(
            func.coalesce(func.sum(GroupGiftContribution.amount_cents), 0),
            func.count(GroupGiftContribution.id),
        )
        .filter(
            GroupGiftContribution.purchase_id == purchase_id,
            GroupGiftContribution.payment_status == CONTRIBUTION_COMPLETED,
        )
        .one()
    )
    return int(total), int(count)


def _build_state(gift: Purchase) -> CompletionState:
    total, count = _completed_totals(gift.id)
    target = gift.total_amount_cents

    if target > 0:
        percent = round(total * 100 / target, 2)
    else:
        percent = 100.0 if total > 0 else 0.0

    is_funded = total >= target and (target > 0 or total > 0)
    return CompletionState(
        purchase_id=gift.id,
        total_collected_cents=total,
        target_amount_cents=target,
        percent_complete=percent,
        remaining_cents=max(target - total, 0),
        is_funded=is_funded,
        is_overfunded=total > target,
        contributor_count=count,
    )


def get_completion_state(purchase_id: int) -> CompletionState:
    """
    Derive funding progress from completed contributions.

    Pending, failed and refunded contributions never count. percent_complete
    is not capped at 100; is_overfunded flags the excess.

    Raises:
        PurchaseNotFoundError, GroupGiftError
    """
    return _build_state(get_group_gift(purchase_id))


def _sync_group_gift_funding(gift: Purchase) -> CompletionState:
    """Credit or release the gift's quantity when funding crosses the target. Caller holds the lock."""
    state = _build_state(gift)
    registry_id = gift.registry_item.registry_id

    if state.is_funded and gift.funded_at is None:
        gift.funded_at = utcnow()
        gift.payment_status = PURCHASE_PAYMENT_PAID
        db.session.flush()
        if gift.status == PURCHASE_STATUS_CONFIRMED:
            increment_purchased(gift.registry_item_id, gift.quantity, allow_inactive=True)
        record_activity(
            registry_id=registry_id,
            action=ACTION_GROUP_GIFT_FUNDED,
            description=f"Group gift fully funded ({state.total_collected_cents} of {state.target_amount_cents} cents)",
            registry_item_id=gift.registry_item_id,
            purchase_id=gift.id,
            metadata=state.to_dict(),
        )
        logger.info("Group gift %s funded", gift.id)

    elif not state.is_funded and gift.funded_at is not None:
        gift.funded_at = None
        gift.payment_status = PURCHASE_PAYMENT_PENDING
        db.session.flush()
        if gift.status == PURCHASE_STATUS_CONFIRMED:
            release_purchased(gift.registry_item_id, gift.quantity)
        record_activity(
            registry_id=registry_id,
            action=ACTION_GROUP_GIFT_UNFUNDED,
            description=f"Group gift dropped below target ({state.total_collected_cents} of {state.target_amount_cents} cents)",
            registry_item_id=gift.registry_item_id,
            purchase_id=gift.id,
            metadata=state.to_dict(),
        )
        logger.info("Group gift %s no longer funded", gift.id)

    return state


# =============================================================================
# CONTRIBUTIONS
# =============================================================================

def _add_contribution_locked(
    purchase_id: int,
    *,
    contributor: Contributor,
    amount_cents: int,
    currency_code: str | None = None,
    order_id: str | None = None,
    line_item_id: str | None = None,
) -> GroupGiftContribution:
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise ValidationError("amount_cents must be a positive integer")

    gift = get_group_gift(purchase_id, lock=True)
    if gift.status == PURCHASE_STATUS_CANCELLED:
        raise GroupGiftError(f"Group gift {purchase_id} is cancelled")

    currency = parse_currency_code(currency_code, default=gift.currency_code)
    if currency != gift.currency_code:
        raise GroupGiftError(
            f"Contribution currency {currency} does not match group gift currency {gift.currency_code}"
        )

    contribution = GroupGiftContribution(
        purchase_id=gift.id,
        contributor_email=optional_str(contributor.email),
        contributor_name=optional_str(contributor.name),
        contributor_message=sanitize_gift_message(
            contributor.message,
            max_length=current_app.config.get("GIFT_MESSAGE_MAX_LENGTH", 500),
        ),
        is_anonymous=bool(contributor.is_anonymous),
        show_amount=bool(contributor.show_amount),
        amount_cents=amount_cents,
        currency_code=currency,
        payment_status=CONTRIBUTION_PENDING,
        order_id=order_id,
        line_item_id=line_item_id,
    )
    db.session.add(contribution)
    db.session.flush()

    record_activity(
        registry_id=gift.registry_item.registry_id,
        action=ACTION_CONTRIBUTION_RECEIVED,
        description=f"Contribution of {amount_cents} cents pledged",
        actor=(
            Actor(actor_type=ACTOR_GUEST)
            if contribution.is_anonymous
            else Actor(actor_type=ACTOR_GUEST, email=contribution.contributor_email, name=contribution.contributor_name)
        ),
        registry_item_id=gift.registry_item_id,
        purchase_id=gift.id,
        metadata={
            "contribution_id": contribution.id,
            "amount_cents": amount_cents,
            "is_anonymous": contribution.is_anonymous,
            "order_id": order_id,
        },
    )
    return contribution


def add_contribution(
    purchase_id: int,
    *,
    contributor: Contributor,
    amount_cents: int,
    currency_code: str | None = None,
) -> GroupGiftContribution:
    """
    Pledge a contribution (payment_status=pending). It counts toward the
    gift only once the payment collaborator marks it completed.

    Raises:
        ValidationError: non-positive amount
        PurchaseNotFoundError, GroupGiftError: not an open group gift, currency mismatch
    """
    def _op():
        contribution = _add_contribution_locked(
            purchase_id,
            contributor=contributor,
            amount_cents=amount_cents,
            currency_code=currency_code,
        )
        db.session.commit()
        return contribution

    return run_with_retry(_op)


def _mark_contribution_status_locked(contribution: GroupGiftContribution, new_status: str) -> GroupGiftContribution:
    current = contribution.payment_status
    if new_status not in ALLOWED_TRANSITIONS.get(current, ()):
        raise InvalidTransitionError(current, new_status)

    gift = get_group_gift(contribution.purchase_id, lock=True)

    if new_status == CONTRIBUTION_COMPLETED:
        tolerance = current_app.config.get("GROUP_GIFT_OVERAGE_TOLERANCE_CENTS")
        if tolerance is not None:
            collected, _ = _completed_totals(gift.id)
            if collected + contribution.amount_cents > gift.total_amount_cents + tolerance:
                raise OverfundingError(
                    f"Contribution {contribution.id} would collect "
                    f"{collected + contribution.amount_cents} cents against a target of "
                    f"{gift.total_amount_cents} (tolerance {tolerance})"
                )

    contribution.payment_status = new_status
    db.session.flush()

    record_activity(
        registry_id=gift.registry_item.registry_id,
        action=_TRANSITION_ACTIONS[new_status],
        description=f"Contribution {contribution.id} {current} -> {new_status}",
        registry_item_id=gift.registry_item_id,
        purchase_id=gift.id,
        metadata={
            "contribution_id": contribution.id,
            "amount_cents": contribution.amount_cents,
            "from": current,
            "to": new_status,
        },
    )

    _sync_group_gift_funding(gift)
    return contribution


def mark_contribution_status(contribution_id: int, new_status: str) -> GroupGiftContribution:
    """
    Apply a payment outcome to a contribution.

    Allowed: pending -> completed, pending -> failed, completed -> refunded.

    Raises:
        ContributionNotFoundError
        InvalidTransitionError: anything else (state is left unchanged)
        OverfundingError: completing would exceed target + configured tolerance
    """
    def _op():
        contribution = db.session.get(GroupGiftContribution, contribution_id, populate_existing=True)
        if contribution is None:
            raise ContributionNotFoundError(f"Contribution {contribution_id} not found")
        _mark_contribution_status_locked(contribution, new_status)
        db.session.commit()
        return contribution

    return run_with_retry(_op)


def _reverse_order_contributions_locked(order_id: str) -> list[GroupGiftContribution]:
    """Order cancelled: refund completed contributions, fail pending ones."""
    contributions = (
        db.session.query(GroupGiftContribution)
        .filter_by(order_id=order_id)
        .order_by(GroupGiftContribution.id)
        .all()
    )

    reversed_rows = []
    for contribution in contributions:
        if contribution.payment_status == CONTRIBUTION_COMPLETED:
            _mark_contribution_status_locked(contribution, CONTRIBUTION_REFUNDED)
        elif contribution.payment_status == CONTRIBUTION_PENDING:
            _mark_contribution_status_locked(contribution, CONTRIBUTION_FAILED)
        else:
            continue
        reversed_rows.append(contribution)
    return reversed_rows


def get_contribution(contribution_id: int) -> GroupGiftContribution:
    contribution = db.session.get(GroupGiftContribution, contribution_id)
    if contribution is None:
        raise ContributionNotFoundError(f"Contribution {contribution_id} not found")
    return contribution


def list_contributions(purchase_id: int, *, include_private: bool = False) -> list[dict]:
    """
    Contributions to a group gift.

    include_private=False is the guest view: completed contributions only,
    anonymous contributors masked, hidden amounts omitted.
    include_private=True is the registry owner's view: every row, every field.
    """
    get_group_gift(purchase_id)

    query = db.session.query(GroupGiftContribution).filter_by(purchase_id=purchase_id)
    if not include_private:
        query = query.filter_by(payment_status=CONTRIBUTION_COMPLETED)
    rows = query.order_by(GroupGiftContribution.created_at, GroupGiftContribution.id).all()

    if include_private:
        return [c.to_dict() for c in rows]
    return [c.to_public_dict() for c in rows]
