"""SQLAlchemy models for database tables.

Provides ORM models for orders, order items and the audit ledger.
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from orderdesk.infrastructure.database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JsonColumn = JSON().with_variant(JSONB(), "postgresql")


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on round trip
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Order Models
# ============================================================================


class OrderModel(Base):
    """Order model for database persistence.

    Holds fulfillment and payment state, the current refund attempt and the
    optimistic concurrency ``version`` used by compare-and-set updates.
    """

    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String(100), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending", index=True)
    payment_status = Column(String(20), nullable=False, default="pending", index=True)
    payment_reference = Column(String(100), nullable=True, index=True)

    # Totals
    total = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)

    # Current refund attempt
    refund_id = Column(String(100), nullable=True, unique=True)
    refund_amount = Column(Integer, nullable=True)
    refund_reason = Column(Text, nullable=True)
    refund_status = Column(String(20), nullable=True, index=True)
    refund_attempt = Column(Integer, nullable=True)
    refund_idempotency_key = Column(String(100), nullable=True)
    refund_dispatch_error = Column(Text, nullable=True)
    refund_requested_at = Column(DateTime(timezone=True), nullable=True)
    refund_resolved_at = Column(DateTime(timezone=True), nullable=True)

    # Concurrency
    version = Column(Integer, nullable=False, default=1)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    # Relationships
    items = relationship(
        "OrderItemModel",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItemModel.position",
    )


class OrderItemModel(Base):
    """Order line item. Written once with the order and never updated."""

    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = Column(Integer, nullable=False)
    product_id = Column(String(100), nullable=False)
    product_name = Column(String(500), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Integer, nullable=False)
    line_total = Column(Integer, nullable=False)

    # Relationships
    order = relationship("OrderModel", back_populates="items")


# ============================================================================
# Audit Models
# ============================================================================


class AuditEntryModel(Base):
    """Append-only audit ledger row.

    ``seq`` gives a total insertion order, used for newest-first listing.
    Rows are never updated or deleted.
    """

    __tablename__ = "audit_entries"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), nullable=False, unique=True)
    actor_id = Column(String(100), nullable=False, index=True)
    action = Column(String(50), nullable=False, index=True)
    resource_type = Column(String(50), nullable=False)
    resource_id = Column(String(100), nullable=False, index=True)
    before = Column(JsonColumn, nullable=True)
    after = Column(JsonColumn, nullable=True)
    resource_version = Column(Integer, nullable=True)
    request_metadata = Column(JsonColumn, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
