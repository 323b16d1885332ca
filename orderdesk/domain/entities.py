"""Domain entities.

Orders are held as immutable snapshots. Every accepted mutation produces
a new snapshot with ``version`` incremented by exactly one; the store
persists it with a compare-and-set on the previous version.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from orderdesk.domain.base import Entity
from orderdesk.domain.exceptions import InvalidAmount, InvalidState, InvalidTransition
from orderdesk.domain.state_machines import (
    UNCAPTURED_PAYMENT_STATES,
    OrderStatus,
    PaymentStatus,
    RefundStatus,
    StateTransition,
    TransitionSource,
    validate_order_transition,
    validate_payment_transition,
    validate_refund_transition,
)
from orderdesk.domain.value_objects import normalize_currency


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# ============================================================================
# Order Items
# ============================================================================


@dataclass(frozen=True)
class OrderItem:
    """A line item in an order.

    Line items are immutable once the order is placed.

    Attributes:
        product_id: Product identifier.
        product_name: Product name at time of order.
        quantity: Ordered quantity.
        unit_price: Price per unit in minor units.
        line_total: unit_price * quantity, in minor units.
    """

    product_id: str
    product_name: str
    quantity: int
    unit_price: int
    line_total: int | None = None

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError(f"Quantity must be positive, got {self.quantity}")
        if self.unit_price < 0:
            raise ValueError(f"Unit price cannot be negative, got {self.unit_price}")
        expected = self.unit_price * self.quantity
        if self.line_total is None:
            object.__setattr__(self, "line_total", expected)
        elif self.line_total != expected:
            raise ValueError(
                f"Line total {self.line_total} for {self.product_id} does not equal "
                f"{self.unit_price} x {self.quantity}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "line_total": self.line_total,
        }


# ============================================================================
# Refund Sub-record
# ============================================================================


@dataclass(frozen=True)
class Refund:
    """The order's current refund attempt.

    Attributes:
        amount: Refund amount in the order's currency, minor units.
        reason: Free-text reason supplied by the requester.
        status: Refund lifecycle state.
        attempt: 1-based attempt number for this order.
        idempotency_key: Key sent with the gateway refund call.
        refund_id: Gateway-issued id, empty until the gateway acknowledges.
        requested_at: When the attempt was reserved.
        resolved_at: When the gateway reported a terminal outcome.
        dispatch_error: Why dispatch failed, when it never reached the gateway.
    """

    amount: int
    reason: str
    attempt: int
    idempotency_key: str
    status: RefundStatus = RefundStatus.PENDING
    refund_id: str | None = None
    requested_at: datetime = field(default_factory=utcnow)
    resolved_at: datetime | None = None
    dispatch_error: str | None = None

    @property
    def acknowledged(self) -> bool:
        """Whether the gateway has issued an id for this attempt."""
        return self.refund_id is not None

    def with_refund_id(self, refund_id: str) -> "Refund":
        return replace(self, refund_id=refund_id)

    def resolve(self, outcome: RefundStatus, at: datetime | None = None) -> "Refund":
        return replace(self, status=outcome, resolved_at=at or utcnow())

    def dispatch_failed(self, reason: str, at: datetime | None = None) -> "Refund":
        return replace(
            self,
            status=RefundStatus.FAILED,
            resolved_at=at or utcnow(),
            dispatch_error=reason,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "refund_id": self.refund_id,
            "amount": self.amount,
            "reason": self.reason,
            "refund_status": self.status.value,
            "attempt": self.attempt,
            "idempotency_key": self.idempotency_key,
            "requested_at": _iso(self.requested_at),
            "resolved_at": _iso(self.resolved_at),
            "dispatch_error": self.dispatch_error,
        }


# ============================================================================
# Transition Request
# ============================================================================


@dataclass(frozen=True)
class OrderTransition:
    """A requested change to an order.

    Fields left as ``None`` are unchanged.

    Attributes:
        action: Audit action name (e.g. 'order.transition').
        source: Who drives the change.
        status: Target fulfillment status.
        payment_status: Target payment status.
        payment_reference: Gateway payment id to record.
        refund: Replacement refund sub-record.
        metadata: Extra context copied into the audit entry.
    """

    action: str
    source: TransitionSource
    status: OrderStatus | None = None
    payment_status: PaymentStatus | None = None
    payment_reference: str | None = None
    refund: Refund | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


# ============================================================================
# Order Aggregate
# ============================================================================


@dataclass(frozen=True)
class Order(Entity[str]):
    """Order snapshot.

    Attributes:
        id: Opaque order identifier.
        user_id: Owning user reference.
        currency: ISO-4217 currency fixed at creation.
        items: Ordered line items.
        total: Sum of line totals, minor units.
        status: Fulfillment status.
        payment_status: Payment status.
        payment_reference: Gateway payment id, set at most once.
        refund: Current refund attempt, if any.
        version: Optimistic concurrency version.
        created_at: Creation timestamp.
        updated_at: Timestamp of last accepted mutation.
    """

    user_id: str
    currency: str
    items: tuple[OrderItem, ...]
    total: int
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_reference: str | None = None
    refund: Refund | None = None
    version: int = 1
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        object.__setattr__(self, "currency", normalize_currency(self.currency))
        object.__setattr__(self, "items", tuple(self.items))
        if not self.items:
            raise ValueError("Order must have at least one line item")
        line_sum = sum(item.line_total for item in self.items)
        if self.total != line_sum:
            raise ValueError(f"Order total {self.total} does not equal sum of line totals {line_sum}")
        if self.version < 1:
            raise ValueError("Order version starts at 1")

    @classmethod
    def create(
        cls,
        user_id: str,
        currency: str,
        items: list[OrderItem],
        order_id: str | None = None,
    ) -> "Order":
        """Create a new pending order.

        Args:
            user_id: Owning user reference.
            currency: ISO-4217 code for every amount on the order.
            items: Finalized line items.
            order_id: Optional pre-generated id.

        Returns:
            New Order with ``status=pending`` and ``payment_status=pending``.
        """
        now = utcnow()
        return cls(
            id=order_id or str(uuid4()),
            user_id=user_id,
            currency=currency,
            items=tuple(items),
            total=sum(item.line_total for item in items),
            created_at=now,
            updated_at=now,
        )

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def has_active_refund(self) -> bool:
        """Whether a refund attempt that is not failed exists."""
        return self.refund is not None and self.refund.status.blocks_new_refund()

    def state_snapshot(self) -> dict[str, Any]:
        """Mutable state recorded in audit before/after snapshots."""
        return {
            "status": self.status.value,
            "payment_status": self.payment_status.value,
            "payment_reference": self.payment_reference,
            "refund": self.refund.to_dict() if self.refund else None,
            "version": self.version,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "currency": self.currency,
            "items": [item.to_dict() for item in self.items],
            "total": self.total,
            "status": self.status.value,
            "payment_status": self.payment_status.value,
            "payment_reference": self.payment_reference,
            "refund": self.refund.to_dict() if self.refund else None,
            "version": self.version,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    # -------------------------------------------------------------------------
    # State Transitions
    # -------------------------------------------------------------------------

    def apply_transition(
        self, transition: OrderTransition, at: datetime | None = None
    ) -> tuple["Order", list[StateTransition[Any]]]:
        """Validate a transition and build the next snapshot.

        Args:
            transition: Requested change.
            at: Timestamp for ``updated_at``.

        Returns:
            Tuple of (next snapshot with version + 1, list of field changes).

        Raises:
            InvalidTransition: If any requested change is not allowed.
            InvalidAmount: If a refund amount exceeds the order total.
        """
        changes: list[StateTransition[Any]] = []
        updates: dict[str, Any] = {}

        payment_target = self.payment_status
        if transition.payment_status is not None and transition.payment_status != self.payment_status:
            validate_payment_transition(
                self.id, self.payment_status, transition.payment_status, transition.source
            )
            payment_target = transition.payment_status
            updates["payment_status"] = payment_target
            changes.append(StateTransition("payment_status", self.payment_status, payment_target))

        if transition.status is not None and transition.status != self.status:
            validate_order_transition(self.id, self.status, transition.status, transition.source)
            if transition.status == OrderStatus.CANCELLED and payment_target not in UNCAPTURED_PAYMENT_STATES:
                raise InvalidTransition(
                    order_id=self.id,
                    field_name="status",
                    current_state=self.status.value,
                    target_state=transition.status.value,
                    allowed_transitions=[s.value for s in self.status.allowed_transitions(transition.source)],
                    reason="a captured payment must be refunded, not cancelled",
                )
            if transition.status == OrderStatus.REFUNDED and payment_target != PaymentStatus.REFUNDED:
                raise InvalidTransition(
                    order_id=self.id,
                    field_name="status",
                    current_state=self.status.value,
                    target_state=transition.status.value,
                    reason="refunded status requires refunded payment status",
                )
            updates["status"] = transition.status
            changes.append(StateTransition("status", self.status, transition.status))

        if transition.payment_reference is not None and transition.payment_reference != self.payment_reference:
            if self.payment_reference is not None:
                raise InvalidTransition(
                    order_id=self.id,
                    field_name="payment_reference",
                    current_state=self.payment_reference,
                    target_state=transition.payment_reference,
                    reason="payment reference is set once and never replaced",
                )
            updates["payment_reference"] = transition.payment_reference

        if transition.refund is not None and transition.refund != self.refund:
            updates["refund"] = self._validated_refund(transition.refund, changes)

        if not updates:
            raise InvalidTransition(
                order_id=self.id,
                field_name="order",
                current_state=self.status.value,
                target_state=transition.status.value if transition.status else None,
                reason="transition changes nothing",
            )

        next_order = replace(
            self,
            **updates,
            version=self.version + 1,
            updated_at=at or utcnow(),
        )
        return next_order, changes

    def _validated_refund(
        self, refund: Refund, changes: list[StateTransition[Any]]
    ) -> Refund:
        if refund.amount <= 0 or refund.amount > self.total:
            raise InvalidAmount(
                self.id,
                refund.amount,
                self.currency,
                f"refund must be between 1 and the order total {self.total}",
            )
        current = self.refund
        if current is not None and current.attempt == refund.attempt:
            if current.status != refund.status:
                validate_refund_transition(self.id, current.status, refund.status)
                changes.append(StateTransition("refund_status", current.status, refund.status))
            if current.refund_id is not None and refund.refund_id != current.refund_id:
                raise InvalidTransition(
                    order_id=self.id,
                    field_name="refund_id",
                    current_state=current.refund_id,
                    target_state=refund.refund_id,
                    reason="gateway refund id is set once",
                )
            return refund

        if current is not None and current.status.blocks_new_refund():
            raise InvalidState(
                self.id,
                "an outstanding refund exists",
                refund_status=current.status.value,
                refund_id=current.refund_id,
            )
        if refund.status != RefundStatus.PENDING:
            raise InvalidTransition(
                order_id=self.id,
                field_name="refund_status",
                current_state=None,
                target_state=refund.status.value,
                reason="a new refund attempt starts as pending",
            )
        return refund


# ============================================================================
# Audit Entry
# ============================================================================


@dataclass(frozen=True)
class AuditEntry:
    """Immutable record of one state-changing action.

    Attributes:
        actor_id: Who performed the action.
        action: Action name (e.g. 'order.transition', 'refund.requested').
        resource_type: Type of the mutated resource.
        resource_id: Id of the mutated resource.
        before: Snapshot of the mutable state prior to the action.
        after: Snapshot of the mutable state after the action.
        resource_version: Version written by the action, for correlation.
        request_metadata: Client address, user agent and request id, when known.
        id: Entry identifier.
        created_at: When the entry was created.
    """

    actor_id: str
    action: str
    resource_type: str
    resource_id: str
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    resource_version: int | None = None
    request_metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "actor_id": self.actor_id,
            "action": self.action,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "before": self.before,
            "after": self.after,
            "resource_version": self.resource_version,
            "request_metadata": self.request_metadata,
            "created_at": _iso(self.created_at),
        }
