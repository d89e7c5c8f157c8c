"""Backfill registry_item_id on legacy registry_purchases rows

Older databases recorded purchases against registry_id only. This moves
them onto the canonical registry_item_id foreign key and drops the legacy
column. Each legacy row is pointed at the earliest item of its registry;
rows whose registry has no items cannot be attributed and are removed.

No-op on databases created from w001.

Revision ID: w002_backfill_purchase_fk
Revises: w001_initial_registry
Create Date: 2026-03-09
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "w002_backfill_purchase_fk"
down_revision = "w001_initial_registry"
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table("registry_purchases"):
        return

    columns = {col["name"] for col in inspector.get_columns("registry_purchases")}
    if "registry_id" not in columns:
        return

    if "registry_item_id" not in columns:
        with op.batch_alter_table("registry_purchases", schema=None) as batch_op:
            batch_op.add_column(sa.Column("registry_item_id", sa.Integer(), nullable=True))

    bind.execute(sa.text(
        """
        UPDATE registry_purchases
        SET registry_item_id = (
            SELECT MIN(ri.id) FROM registry_items ri
            WHERE ri.registry_id = registry_purchases.registry_id
        )
        WHERE registry_item_id IS NULL
        """
    ))

    orphaned = bind.execute(sa.text(
        "SELECT COUNT(*) FROM registry_purchases WHERE registry_item_id IS NULL"
    )).scalar()
    if orphaned:
        print(f"w002: removing {orphaned} legacy purchases with no registry item to attach to")
        bind.execute(sa.text("DELETE FROM registry_purchases WHERE registry_item_id IS NULL"))

    inspector = sa.inspect(bind)
    indexes = {ix["name"] for ix in inspector.get_indexes("registry_purchases")}
    legacy_fks = [
        fk["name"]
        for fk in inspector.get_foreign_keys("registry_purchases")
        if fk.get("constrained_columns") == ["registry_id"] and fk.get("name")
    ]

    with op.batch_alter_table("registry_purchases", schema=None) as batch_op:
        for fk_name in legacy_fks:
            batch_op.drop_constraint(fk_name, type_="foreignkey")
        for ix_name in ("ix_registry_purchases_registry_id", "ix_registry_purchases_registry_status"):
            if ix_name in indexes:
                batch_op.drop_index(ix_name)
        batch_op.drop_column("registry_id")
        batch_op.alter_column("registry_item_id", existing_type=sa.Integer(), nullable=False)
        batch_op.create_foreign_key(
            "fk_registry_purchases_registry_item_id",
            "registry_items",
            ["registry_item_id"],
            ["id"],
            ondelete="CASCADE",
        )
        if "ix_registry_purchases_registry_item_id" not in indexes:
            batch_op.create_index("ix_registry_purchases_registry_item_id", ["registry_item_id"], unique=False)


def downgrade():
    # One-way data repair: the legacy column is not restored.
    pass
