# Overview: Service-layer operations for the registry activity log.

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from ..errors import ValidationError
from ..extensions import db
from ..models import RegistryActivity
from ..models.activity import VALID_ACTIONS, ACTOR_SYSTEM
from ..time_utils import utcnow

logger = logging.getLogger(__name__)

"""
Registry Activity Invariants (authoritative)

- Append-only: rows are inserted, never updated.
- Written inside the same DB transaction as the event they describe.
- Best-effort: a failed audit write is logged and dropped; the enclosing
  reconciliation still commits (financial accuracy outranks audit
  completeness).
"""


@dataclass(frozen=True)
class Actor:
    """Who caused an activity. actor_type: customer, guest, organizer."""
    actor_type: str
    email: str | None = None
    name: str | None = None


def record_activity(
    *,
    registry_id: int,
    action: str,
    description: str | None = None,
    metadata: dict | None = None,
    actor: Actor | None = None,
    is_system: bool = False,
    registry_item_id: int | None = None,
    purchase_id: int | None = None,
) -> RegistryActivity | None:
    """
    Append an activity row inside a SAVEPOINT of the caller's transaction.

    Returns the row, or None if the write failed (logged, not raised).

    Raises:
        ValidationError: unknown action (a programming error, not an audit failure)
    """
    if action not in VALID_ACTIONS:
        raise ValidationError(f"Unknown activity action: {action}")

    if actor is None:
        is_system = True

    activity = RegistryActivity(
        registry_id=registry_id,
        action=action,
        description=description[:512] if description else None,
        actor_type=actor.actor_type if actor else ACTOR_SYSTEM,
        actor_email=actor.email if actor else None,
        actor_name=actor.name if actor else None,
        is_system=is_system,
        registry_item_id=registry_item_id,
        purchase_id=purchase_id,
        metadata_json=json.dumps(metadata, default=str, sort_keys=True) if metadata else None,
        created_at=utcnow(),
    )

    try:
        with db.session.begin_nested():
            db.session.add(activity)
            db.session.flush()
    except SQLAlchemyError:
        logger.exception(
            "Failed to record %s activity for registry %s; continuing without audit row",
            action,
            registry_id,
        )
        return None

    return activity


def list_activity(registry_id: int, *, action: str | None = None, limit: int = 100) -> list[RegistryActivity]:
    """Newest first."""
    query = db.session.query(RegistryActivity).filter_by(registry_id=registry_id)
    if action:
        query = query.filter_by(action=action)
    return (
        query.order_by(RegistryActivity.created_at.desc(), RegistryActivity.id.desc())
        .limit(limit)
        .all()
    )
