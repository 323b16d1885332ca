"""State machines for orders.

Deterministic state machines that define valid transitions for an
order's fulfillment status, its payment status and its refund sub-record.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from orderdesk.domain.exceptions import InvalidTransition

# Type variable for state machine states
S = TypeVar("S", bound=Enum)


class TransitionSource(str, Enum):
    """Who is driving a transition.

    The refunded states are only reachable when the refund coordinator
    drives the change.
    """

    ADMIN = "admin"
    GATEWAY = "gateway"
    REFUND = "refund"


# ============================================================================
# Order (fulfillment) State Machine
# ============================================================================


class OrderStatus(str, Enum):
    """Order fulfillment states.

    State diagram:
        PENDING ──────────────► CANCELLED
          │                        ▲
          │ process                │
          ▼                        │
        PROCESSING ────────────────┘
          │
          │ ship
          ▼
        SHIPPED
          │
          │ deliver
          ▼
        DELIVERED

        any state except REFUNDED ──(refund path only)──► REFUNDED
    """

    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    def can_transition_to(
        self,
        target: "OrderStatus",
        source: TransitionSource = TransitionSource.ADMIN,
    ) -> bool:
        """Check if transition to target state is valid.

        Args:
            target: Target state to transition to.
            source: Who is driving the transition.

        Returns:
            True if transition is valid.
        """
        if target == OrderStatus.REFUNDED:
            return source == TransitionSource.REFUND and self != OrderStatus.REFUNDED
        return target in _ORDER_TRANSITIONS.get(self, set())

    def allowed_transitions(
        self,
        source: TransitionSource = TransitionSource.ADMIN,
    ) -> list["OrderStatus"]:
        """Get list of valid target states, in declaration order.

        Returns:
            List of states that can be transitioned to.
        """
        return [s for s in OrderStatus if self.can_transition_to(s, source)]

    def is_terminal(self) -> bool:
        """Check if this is a terminal state.

        Terminal states accept nothing except the refund path.
        """
        return len(_ORDER_TRANSITIONS.get(self, set())) == 0

    def is_cancellable(self) -> bool:
        """Check if order can be cancelled.

        Returns:
            True if order can be cancelled.
        """
        return OrderStatus.CANCELLED in _ORDER_TRANSITIONS.get(self, set())


# Order state transitions (refund path handled in can_transition_to)
_ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),  # Terminal state
    OrderStatus.CANCELLED: set(),  # Terminal state
    OrderStatus.REFUNDED: set(),  # Terminal state
}


# ============================================================================
# Payment State Machine
# ============================================================================


class PaymentStatus(str, Enum):
    """Payment states as seen by the store.

    State diagram:
        PENDING ──────► PAID ──────► REFUNDED
          │               │
          └──► FAILED ◄───┘
    """

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"

    def can_transition_to(
        self,
        target: "PaymentStatus",
        source: TransitionSource = TransitionSource.GATEWAY,
    ) -> bool:
        """Check if transition to target state is valid.

        Args:
            target: Target state to transition to.
            source: Who is driving the transition.

        Returns:
            True if transition is valid.
        """
        if target == PaymentStatus.REFUNDED and source != TransitionSource.REFUND:
            return False
        return target in _PAYMENT_TRANSITIONS.get(self, set())

    def allowed_transitions(
        self,
        source: TransitionSource = TransitionSource.GATEWAY,
    ) -> list["PaymentStatus"]:
        """Get list of valid target states.

        Returns:
            List of states that can be transitioned to.
        """
        return [s for s in PaymentStatus if self.can_transition_to(s, source)]


# Payment state transitions
_PAYMENT_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.PENDING: {PaymentStatus.PAID, PaymentStatus.FAILED},
    PaymentStatus.PAID: {PaymentStatus.REFUNDED, PaymentStatus.FAILED},
    PaymentStatus.FAILED: set(),  # Terminal state
    PaymentStatus.REFUNDED: set(),  # Terminal state
}

# Payment states in which the order may still be cancelled (nothing captured).
UNCAPTURED_PAYMENT_STATES = frozenset({PaymentStatus.PENDING, PaymentStatus.FAILED})


# ============================================================================
# Refund State Machine
# ============================================================================


class RefundStatus(str, Enum):
    """Refund attempt states.

    State diagram:
        PENDING ──────► PROCESSED
          │
          └───────────► FAILED
    """

    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"

    def can_transition_to(self, target: "RefundStatus") -> bool:
        return target in _REFUND_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["RefundStatus"]:
        return [s for s in RefundStatus if self.can_transition_to(s)]

    def is_terminal(self) -> bool:
        return self != RefundStatus.PENDING

    def blocks_new_refund(self) -> bool:
        """A refund that is not failed occupies the order's single refund slot."""
        return self != RefundStatus.FAILED


_REFUND_TRANSITIONS: dict[RefundStatus, set[RefundStatus]] = {
    RefundStatus.PENDING: {RefundStatus.PROCESSED, RefundStatus.FAILED},
    RefundStatus.PROCESSED: set(),  # Terminal state
    RefundStatus.FAILED: set(),  # Terminal state
}


# ============================================================================
# State Transition Result
# ============================================================================


@dataclass(frozen=True)
class StateTransition(Generic[S]):
    """A single field change applied to an order.

    Attributes:
        field: Name of the order field that changed.
        from_state: Previous state.
        to_state: New state.
    """

    field: str
    from_state: S
    to_state: S

    def to_dict(self) -> dict[str, str]:
        return {
            "field": self.field,
            "from": self.from_state.value,
            "to": self.to_state.value,
        }


# ============================================================================
# State Machine Helpers
# ============================================================================


def validate_order_transition(
    order_id: str,
    current_status: OrderStatus,
    target_status: OrderStatus,
    source: TransitionSource,
) -> None:
    """Validate and raise if order status transition is invalid.

    Args:
        order_id: Order identifier for error message.
        current_status: Current order status.
        target_status: Target order status.
        source: Who is driving the transition.

    Raises:
        InvalidTransition: If transition is not valid.
    """
    if not current_status.can_transition_to(target_status, source):
        reason = None
        if target_status == OrderStatus.REFUNDED and source != TransitionSource.REFUND:
            reason = "refunded is only reachable through the refund coordinator"
        raise InvalidTransition(
            order_id=order_id,
            field_name="status",
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current_status.allowed_transitions(source)],
            reason=reason,
        )


def validate_payment_transition(
    order_id: str,
    current_status: PaymentStatus,
    target_status: PaymentStatus,
    source: TransitionSource,
) -> None:
    """Validate and raise if payment status transition is invalid.

    Raises:
        InvalidTransition: If transition is not valid.
    """
    if not current_status.can_transition_to(target_status, source):
        raise InvalidTransition(
            order_id=order_id,
            field_name="payment_status",
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current_status.allowed_transitions(source)],
        )


def validate_refund_transition(
    order_id: str,
    current_status: RefundStatus,
    target_status: RefundStatus,
) -> None:
    """Validate and raise if refund status transition is invalid.

    Raises:
        InvalidTransition: If transition is not valid.
    """
    if not current_status.can_transition_to(target_status):
        raise InvalidTransition(
            order_id=order_id,
            field_name="refund_status",
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current_status.allowed_transitions()],
        )
