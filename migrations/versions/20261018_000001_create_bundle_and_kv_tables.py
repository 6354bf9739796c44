"""Create bundles, bundle_items and kv_entries tables.

Revision ID: 20261018_000001
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_000001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table("bundles"):
        op.create_table(
            "bundles",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("title", sa.Text(), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("price", sa.Numeric(10, 2), nullable=False),
            sa.Column("original_price", sa.Numeric(12, 2), nullable=False),
            sa.Column("discount_percent", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("markup_percent", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("stock_limit", sa.Integer(), nullable=True),
            sa.Column("tags", sa.JSON(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
            sa.CheckConstraint(
                "discount_percent >= 0 AND markup_percent >= 0",
                name="ck_bundles_percent_non_negative",
            ),
            sa.CheckConstraint(
                "discount_percent = 0 OR markup_percent = 0",
                name="ck_bundles_discount_xor_markup",
            ),
            sa.CheckConstraint(
                "stock_limit IS NULL OR stock_limit >= 0",
                name="ck_bundles_stock_limit",
            ),
        )
        op.create_index("ix_bundles_created_at", "bundles", ["created_at"])

    if not inspector.has_table("bundle_items"):
        op.create_table(
            "bundle_items",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column(
                "bundle_id",
                sa.String(),
                sa.ForeignKey("bundles.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("product_id", sa.String(), nullable=False),
            sa.Column("variant_id", sa.String(), nullable=True),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("unit_price", sa.Numeric(10, 2), nullable=False),
            sa.CheckConstraint("quantity >= 1", name="ck_bundle_items_quantity"),
        )
        op.create_index("ix_bundle_items_bundle", "bundle_items", ["bundle_id"])

    if not inspector.has_table("kv_entries"):
        op.create_table(
            "kv_entries",
            sa.Column("key", sa.String(), primary_key=True),
            sa.Column("payload", sa.Text(), nullable=False),
            sa.Column("expires_at", sa.DateTime(), nullable=True),
            *_timestamps(),
        )
        op.create_index("ix_kv_entries_expires_at", "kv_entries", ["expires_at"])


def downgrade() -> None:
    op.drop_table("kv_entries")
    op.drop_table("bundle_items")
    op.drop_table("bundles")
