from __future__ import annotations

from ..extensions import db
from wishcraft.time_utils import to_utc_z

PURCHASE_STATUS_CONFIRMED = "confirmed"
PURCHASE_STATUS_CANCELLED = "cancelled"

PURCHASE_PAYMENT_PENDING = "pending"
PURCHASE_PAYMENT_PAID = "paid"
PURCHASE_PAYMENT_REFUNDED = "refunded"

FULFILLMENT_UNFULFILLED = "unfulfilled"
FULFILLMENT_PARTIAL = "partial"
FULFILLMENT_FULFILLED = "fulfilled"
VALID_FULFILLMENT_STATUSES = (FULFILLMENT_UNFULFILLED, FULFILLMENT_PARTIAL, FULFILLMENT_FULFILLED)

PURCHASER_CUSTOMER = "customer"
PURCHASER_GUEST = "guest"

CONTRIBUTION_PENDING = "pending"
CONTRIBUTION_COMPLETED = "completed"
CONTRIBUTION_FAILED = "failed"
CONTRIBUTION_REFUNDED = "refunded"


class Purchase(db.Model):
    """
    A registry purchase reconciled from a Shopify order line item.

    WHY: (order_id, line_item_id) is the dedup key for webhook redelivery.
    The unique constraint is the concurrency gate, not an optimisation:
    the ledger treats a violation as "already processed".

    Two shapes share this table:
    - line purchases: one per Shopify line item (order_id/line_item_id set)
    - aggregating group-gift purchases: is_group_gift=True, no order; the
      target amount is total_amount_cents and contributions hang off it.
      Line purchases that fund a group gift point at it via group_gift_id.
    """
    __tablename__ = "registry_purchases"
    __table_args__ = (
        db.UniqueConstraint("order_id", "line_item_id", name="uq_registry_purchases_order_line"),
        db.Index("ix_registry_purchases_item_created", "registry_item_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    registry_item_id = db.Column(
        db.Integer,
        db.ForeignKey("registry_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Shopify references (NULL for aggregating group-gift purchases)
    order_id = db.Column(db.String(64), nullable=True, index=True)
    line_item_id = db.Column(db.String(64), nullable=True)
    order_name = db.Column(db.String(64), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_amount_cents = db.Column(db.Integer, nullable=False)
    currency_code = db.Column(db.String(3), nullable=False, default="USD")

    purchaser_type = db.Column(db.String(16), nullable=False, default=PURCHASER_GUEST)
    purchaser_name = db.Column(db.String(255), nullable=True)
    purchaser_email = db.Column(db.String(255), nullable=True)

    is_gift = db.Column(db.Boolean, nullable=False, default=True)
    gift_message = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=PURCHASE_STATUS_CONFIRMED, index=True)
    payment_status = db.Column(db.String(16), nullable=False, default=PURCHASE_PAYMENT_PENDING, index=True)
    fulfillment_status = db.Column(db.String(16), nullable=False, default=FULFILLMENT_UNFULFILLED, index=True)

    is_group_gift = db.Column(db.Boolean, nullable=False, default=False)
    group_gift_id = db.Column(
        db.Integer,
        db.ForeignKey("registry_purchases.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    # Aggregating purchases only: set while the completed total covers the target
    funded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    ordered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())

    registry_item = db.relationship("RegistryItem", back_populates="purchases")
    group_gift = db.relationship("Purchase", remote_side="Purchase.id", foreign_keys=[group_gift_id])
    contributions = db.relationship(
        "GroupGiftContribution",
        back_populates="purchase",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy=True,
    )

    @property
    def is_aggregating_group_gift(self) -> bool:
        return self.is_group_gift and self.order_id is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "registry_item_id": self.registry_item_id,
            "order_id": self.order_id,
            "line_item_id": self.line_item_id,
            "order_name": self.order_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_amount_cents": self.total_amount_cents,
            "currency_code": self.currency_code,
            "purchaser_type": self.purchaser_type,
            "purchaser_name": self.purchaser_name,
            "purchaser_email": self.purchaser_email,
            "is_gift": self.is_gift,
            "gift_message": self.gift_message,
            "status": self.status,
            "payment_status": self.payment_status,
            "fulfillment_status": self.fulfillment_status,
            "is_group_gift": self.is_group_gift,
            "group_gift_id": self.group_gift_id,
            "funded_at": to_utc_z(self.funded_at),
            "ordered_at": to_utc_z(self.ordered_at),
            "created_at": to_utc_z(self.created_at),
        }


class GroupGiftContribution(db.Model):
    """
    Partial monetary contribution toward an aggregating group-gift purchase.

    LIFECYCLE (payment_status):
    - pending -> completed | failed   (payment collaborator callback)
    - completed -> refunded           (reversal; the row is kept for audit)

    Only completed contributions count toward the completion state, which is
    always derived from these rows and never stored.
    """
    __tablename__ = "group_gift_contributions"
    __table_args__ = (
        db.UniqueConstraint("order_id", "line_item_id", name="uq_group_gift_contributions_order_line"),
        db.Index("ix_group_gift_contributions_purchase_status", "purchase_id", "payment_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(
        db.Integer,
        db.ForeignKey("registry_purchases.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    contributor_email = db.Column(db.String(255), nullable=True)
    contributor_name = db.Column(db.String(255), nullable=True)
    contributor_message = db.Column(db.Text, nullable=True)
    is_anonymous = db.Column(db.Boolean, nullable=False, default=False)
    show_amount = db.Column(db.Boolean, nullable=False, default=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    currency_code = db.Column(db.String(3), nullable=False, default="USD")
    payment_status = db.Column(db.String(16), nullable=False, default=CONTRIBUTION_PENDING, index=True)

    # Set when the contribution arrived as a Shopify order line
    order_id = db.Column(db.String(64), nullable=True, index=True)
    line_item_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    purchase = db.relationship("Purchase", back_populates="contributions")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        """Owner view: everything, including anonymous contributor identity."""
        return {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "contributor_email": self.contributor_email,
            "contributor_name": self.contributor_name,
            "contributor_message": self.contributor_message,
            "is_anonymous": self.is_anonymous,
            "show_amount": self.show_amount,
            "amount_cents": self.amount_cents,
            "currency_code": self.currency_code,
            "payment_status": self.payment_status,
            "order_id": self.order_id,
            "line_item_id": self.line_item_id,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }

    def to_public_dict(self) -> dict:
        """View for other contributors and guests."""
        return {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "contributor_name": "Anonymous" if self.is_anonymous else self.contributor_name,
            "contributor_message": self.contributor_message,
            "is_anonymous": self.is_anonymous,
            "amount_cents": self.amount_cents if self.show_amount else None,
            "currency_code": self.currency_code,
            "payment_status": self.payment_status,
            "created_at": to_utc_z(self.created_at),
        }
