"""Initial registry reconciliation schema

Creates registries, registry_items, registry_purchases,
group_gift_contributions and registry_activities.

Revision ID: w001_initial_registry
Revises:
Create Date: 2026-03-02
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'w001_initial_registry'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('registries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_domain', sa.String(length=255), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('registries', schema=None) as batch_op:
        batch_op.create_index('ix_registries_shop_domain', ['shop_domain'], unique=False)
        batch_op.create_index('ix_registries_shop_status', ['shop_domain', 'status'], unique=False)

    op.create_table('registry_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('registry_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=False),
        sa.Column('variant_id', sa.String(length=64), nullable=True),
        sa.Column('product_title', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('quantity_purchased', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('currency_code', sa.String(length=3), nullable=False, server_default='USD'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('quantity >= 1', name='ck_registry_items_quantity_positive'),
        sa.CheckConstraint('quantity_purchased >= 0', name='ck_registry_items_purchased_non_negative'),
        sa.ForeignKeyConstraint(['registry_id'], ['registries.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('registry_items', schema=None) as batch_op:
        batch_op.create_index('ix_registry_items_registry_id', ['registry_id'], unique=False)
        batch_op.create_index('ix_registry_items_status', ['status'], unique=False)
        batch_op.create_index('ix_registry_items_registry_status', ['registry_id', 'status'], unique=False)

    op.create_table('registry_purchases',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('registry_item_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.String(length=64), nullable=True),
        sa.Column('line_item_id', sa.String(length=64), nullable=True),
        sa.Column('order_name', sa.String(length=64), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False),
        sa.Column('currency_code', sa.String(length=3), nullable=False, server_default='USD'),
        sa.Column('purchaser_type', sa.String(length=16), nullable=False, server_default='guest'),
        sa.Column('purchaser_name', sa.String(length=255), nullable=True),
        sa.Column('purchaser_email', sa.String(length=255), nullable=True),
        sa.Column('is_gift', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('gift_message', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='confirmed'),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('fulfillment_status', sa.String(length=16), nullable=False, server_default='unfulfilled'),
        sa.Column('is_group_gift', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('group_gift_id', sa.Integer(), nullable=True),
        sa.Column('funded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ordered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['registry_item_id'], ['registry_items.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['group_gift_id'], ['registry_purchases.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'line_item_id', name='uq_registry_purchases_order_line'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('registry_purchases', schema=None) as batch_op:
        batch_op.create_index('ix_registry_purchases_registry_item_id', ['registry_item_id'], unique=False)
        batch_op.create_index('ix_registry_purchases_order_id', ['order_id'], unique=False)
        batch_op.create_index('ix_registry_purchases_status', ['status'], unique=False)
        batch_op.create_index('ix_registry_purchases_payment_status', ['payment_status'], unique=False)
        batch_op.create_index('ix_registry_purchases_fulfillment_status', ['fulfillment_status'], unique=False)
        batch_op.create_index('ix_registry_purchases_group_gift_id', ['group_gift_id'], unique=False)
        batch_op.create_index('ix_registry_purchases_item_created', ['registry_item_id', 'created_at'], unique=False)

    op.create_table('group_gift_contributions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('purchase_id', sa.Integer(), nullable=False),
        sa.Column('contributor_email', sa.String(length=255), nullable=True),
        sa.Column('contributor_name', sa.String(length=255), nullable=True),
        sa.Column('contributor_message', sa.Text(), nullable=True),
        sa.Column('is_anonymous', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('show_amount', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('currency_code', sa.String(length=3), nullable=False, server_default='USD'),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('order_id', sa.String(length=64), nullable=True),
        sa.Column('line_item_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['purchase_id'], ['registry_purchases.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'line_item_id', name='uq_group_gift_contributions_order_line'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('group_gift_contributions', schema=None) as batch_op:
        batch_op.create_index('ix_group_gift_contributions_purchase_id', ['purchase_id'], unique=False)
        batch_op.create_index('ix_group_gift_contributions_payment_status', ['payment_status'], unique=False)
        batch_op.create_index('ix_group_gift_contributions_order_id', ['order_id'], unique=False)
        batch_op.create_index('ix_group_gift_contributions_purchase_status', ['purchase_id', 'payment_status'], unique=False)

    op.create_table('registry_activities',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('registry_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('description', sa.String(length=512), nullable=True),
        sa.Column('actor_type', sa.String(length=16), nullable=False, server_default='system'),
        sa.Column('actor_email', sa.String(length=255), nullable=True),
        sa.Column('actor_name', sa.String(length=255), nullable=True),
        sa.Column('is_system', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('registry_item_id', sa.Integer(), nullable=True),
        sa.Column('purchase_id', sa.Integer(), nullable=True),
        sa.Column('metadata_json', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['registry_id'], ['registries.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('registry_activities', schema=None) as batch_op:
        batch_op.create_index('ix_registry_activities_registry_id', ['registry_id'], unique=False)
        batch_op.create_index('ix_registry_activities_action', ['action'], unique=False)
        batch_op.create_index('ix_registry_activities_registry_item_id', ['registry_item_id'], unique=False)
        batch_op.create_index('ix_registry_activities_purchase_id', ['purchase_id'], unique=False)
        batch_op.create_index('ix_registry_activities_created_at', ['created_at'], unique=False)
        batch_op.create_index(
            'ix_registry_activities_registry_action_created',
            ['registry_id', 'action', 'created_at'],
            unique=False,
        )


def downgrade():
    op.drop_table('registry_activities')
    op.drop_table('group_gift_contributions')
    op.drop_table('registry_purchases')
    op.drop_table('registry_items')
    op.drop_table('registries')
