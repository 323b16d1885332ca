"""Create orders, order_items and audit_entries tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create orders, order_items and audit_entries tables."""
    op.create_table(
        "orders",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(100), nullable=False, index=True),
        sa.Column("status", sa.String(20), nullable=False, default="pending", index=True),
        sa.Column(
            "payment_status",
            sa.String(20),
            nullable=False,
            default="pending",
            index=True,
        ),
        sa.Column("payment_reference", sa.String(100), nullable=True, index=True),
        # Totals
        sa.Column("total", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        # Current refund attempt
        sa.Column("refund_id", sa.String(100), nullable=True, unique=True),
        sa.Column("refund_amount", sa.Integer, nullable=True),
        sa.Column("refund_reason", sa.Text, nullable=True),
        sa.Column("refund_status", sa.String(20), nullable=True, index=True),
        sa.Column("refund_attempt", sa.Integer, nullable=True),
        sa.Column("refund_idempotency_key", sa.String(100), nullable=True),
        sa.Column("refund_dispatch_error", sa.Text, nullable=True),
        sa.Column("refund_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refund_resolved_at", sa.DateTime(timezone=True), nullable=True),
        # Optimistic concurrency
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        # Timestamps
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            index=True,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("total >= 0", name="ck_orders_total_non_negative"),
        sa.CheckConstraint(
            "refund_amount IS NULL OR (refund_amount > 0 AND refund_amount <= total)",
            name="ck_orders_refund_within_total",
        ),
    )

    op.create_table(
        "order_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "order_id",
            sa.String(36),
            sa.ForeignKey("orders.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("position", sa.Integer, nullable=False),
        sa.Column("product_id", sa.String(100), nullable=False),
        sa.Column("product_name", sa.String(500), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("unit_price", sa.Integer, nullable=False),
        sa.Column("line_total", sa.Integer, nullable=False),
    )

    # Append-only; seq gives newest-first ordering
    op.create_table(
        "audit_entries",
        sa.Column("seq", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("id", sa.String(36), nullable=False, unique=True),
        sa.Column("actor_id", sa.String(100), nullable=False, index=True),
        sa.Column("action", sa.String(50), nullable=False, index=True),
        sa.Column("resource_type", sa.String(50), nullable=False),
        sa.Column("resource_id", sa.String(100), nullable=False, index=True),
        sa.Column("before", postgresql.JSONB, nullable=True),
        sa.Column("after", postgresql.JSONB, nullable=True),
        sa.Column("resource_version", sa.Integer, nullable=True),
        sa.Column(
            "request_metadata",
            postgresql.JSONB,
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )


def downgrade() -> None:
    """Drop audit_entries, order_items and orders tables."""
    op.drop_table("audit_entries")
    op.drop_table("order_items")
    op.drop_table("orders")
