from __future__ import annotations

from ..extensions import db
from wishcraft.time_utils import to_utc_z

REGISTRY_STATUS_ACTIVE = "active"
REGISTRY_STATUS_ARCHIVED = "archived"

ITEM_STATUS_ACTIVE = "active"
ITEM_STATUS_INACTIVE = "inactive"


class Registry(db.Model):
    """
    A named collection of products a customer wishes to receive.

    Owns its items and activity log (cascade delete).
    """
    __tablename__ = "registries"
    __table_args__ = (
        db.Index("ix_registries_shop_status", "shop_domain", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_domain = db.Column(db.String(255), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    customer_email = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=REGISTRY_STATUS_ACTIVE)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())

    items = db.relationship(
        "RegistryItem",
        back_populates="parent_registry",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy=True,
    )
    activities = db.relationship(
        "RegistryActivity",
        back_populates="parent_registry",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_domain": self.shop_domain,
            "title": self.title,
            "customer_email": self.customer_email,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class RegistryItem(db.Model):
    """
    One product/variant entry within a registry, with a target quantity.

    quantity_purchased is only ever changed by atomic SQL increments
    (registry_service.increment_purchased / release_purchased).
    Over-purchase (quantity_purchased > quantity) is a legal state.

    Removal is a soft deactivation: purchases keep referencing the row.
    """
    __tablename__ = "registry_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_registry_items_quantity_positive"),
        db.CheckConstraint("quantity_purchased >= 0", name="ck_registry_items_purchased_non_negative"),
        db.Index("ix_registry_items_registry_status", "registry_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    registry_id = db.Column(
        db.Integer,
        db.ForeignKey("registries.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Shopify catalog references (strings: Shopify ids exceed 32 bits)
    product_id = db.Column(db.String(64), nullable=False)
    variant_id = db.Column(db.String(64), nullable=True)
    product_title = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=1)
    quantity_purchased = db.Column(db.Integer, nullable=False, default=0)

    unit_price_cents = db.Column(db.Integer, nullable=False)
    currency_code = db.Column(db.String(3), nullable=False, default="USD")

    status = db.Column(db.String(16), nullable=False, default=ITEM_STATUS_ACTIVE, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())

    parent_registry = db.relationship("Registry", back_populates="items")
    purchases = db.relationship(
        "Purchase",
        back_populates="registry_item",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy=True,
    )

    @property
    def is_active(self) -> bool:
        return self.status == ITEM_STATUS_ACTIVE

    @property
    def quantity_remaining(self) -> int:
        return max(self.quantity - self.quantity_purchased, 0)

    @property
    def is_over_purchased(self) -> bool:
        return self.quantity_purchased > self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "registry_id": self.registry_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "product_title": self.product_title,
            "quantity": self.quantity,
            "quantity_purchased": self.quantity_purchased,
            "quantity_remaining": self.quantity_remaining,
            "is_over_purchased": self.is_over_purchased,
            "unit_price_cents": self.unit_price_cents,
            "currency_code": self.currency_code,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
