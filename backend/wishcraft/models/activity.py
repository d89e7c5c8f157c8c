from __future__ import annotations

import json

from sqlalchemy import event

from ..extensions import db
from wishcraft.time_utils import to_utc_z

ACTION_ITEM_ADDED = "item_added"
ACTION_ITEM_REMOVED = "item_removed"
ACTION_ITEM_PURCHASED = "item_purchased"
ACTION_PURCHASE_CANCELLED = "purchase_cancelled"
ACTION_GROUP_GIFT_CREATED = "group_gift_created"
ACTION_CONTRIBUTION_RECEIVED = "contribution_received"
ACTION_CONTRIBUTION_COMPLETED = "contribution_completed"
ACTION_CONTRIBUTION_FAILED = "contribution_failed"
ACTION_CONTRIBUTION_REFUNDED = "contribution_refunded"
ACTION_GROUP_GIFT_FUNDED = "group_gift_funded"
ACTION_GROUP_GIFT_UNFUNDED = "group_gift_unfunded"

VALID_ACTIONS = (
    ACTION_ITEM_ADDED,
    ACTION_ITEM_REMOVED,
    ACTION_ITEM_PURCHASED,
    ACTION_PURCHASE_CANCELLED,
    ACTION_GROUP_GIFT_CREATED,
    ACTION_CONTRIBUTION_RECEIVED,
    ACTION_CONTRIBUTION_COMPLETED,
    ACTION_CONTRIBUTION_FAILED,
    ACTION_CONTRIBUTION_REFUNDED,
    ACTION_GROUP_GIFT_FUNDED,
    ACTION_GROUP_GIFT_UNFUNDED,
)

ACTOR_CUSTOMER = "customer"
ACTOR_GUEST = "guest"
ACTOR_ORGANIZER = "organizer"
ACTOR_SYSTEM = "system"


class RegistryActivity(db.Model):
    """
    Append-only log of registry events.

    Read by the analytics/notification side; never updated or deleted
    except through registry cascade.
    """
    __tablename__ = "registry_activities"
    __table_args__ = (
        db.Index("ix_registry_activities_registry_action_created", "registry_id", "action", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    registry_id = db.Column(
        db.Integer,
        db.ForeignKey("registries.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    action = db.Column(db.String(64), nullable=False, index=True)
    description = db.Column(db.String(512), nullable=True)

    actor_type = db.Column(db.String(16), nullable=False, default=ACTOR_SYSTEM)
    actor_email = db.Column(db.String(255), nullable=True)
    actor_name = db.Column(db.String(255), nullable=True)
    is_system = db.Column(db.Boolean, nullable=False, default=False)

    # Loose pointers; not foreign keys so the log outlives soft-deleted rows
    registry_item_id = db.Column(db.Integer, nullable=True, index=True)
    purchase_id = db.Column(db.Integer, nullable=True, index=True)

    metadata_json = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    parent_registry = db.relationship("Registry", back_populates="activities")

    @property
    def metadata_dict(self) -> dict:
        if not self.metadata_json:
            return {}
        return json.loads(self.metadata_json)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "registry_id": self.registry_id,
            "action": self.action,
            "description": self.description,
            "actor_type": self.actor_type,
            "actor_email": self.actor_email,
            "actor_name": self.actor_name,
            "is_system": self.is_system,
            "registry_item_id": self.registry_item_id,
            "purchase_id": self.purchase_id,
            "metadata": self.metadata_dict,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(RegistryActivity, "before_update")
def _reject_activity_update(mapper, connection, target):
    raise ValueError("registry_activities rows are immutable")
