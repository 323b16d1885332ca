"""Domain layer - Entities, value objects, state machines and errors.

This module exports the core building blocks of the reconciliation engine:

- **Entities**: Immutable order snapshots, refund sub-records, audit entries
- **Events**: Normalised payment gateway notifications
- **Value Objects**: Money (integer minor units + explicit currency), Actor
- **State Machines**: OrderStatus, PaymentStatus, RefundStatus
- **Exceptions**: Domain errors grouped by category

Example usage:
    from orderdesk.domain import Order, OrderItem, OrderStatus

    order = Order.create(
        user_id="user-1",
        currency="INR",
        items=[OrderItem(product_id="p-1", product_name="Kurta", quantity=2, unit_price=25000)],
    )
    order.status  # OrderStatus.PENDING
"""

from orderdesk.domain.base import Entity, ValueObject
from orderdesk.domain.entities import (
    AuditEntry,
    Order,
    OrderItem,
    OrderTransition,
    Refund,
)
from orderdesk.domain.events import GatewayEvent, GatewayEventType
from orderdesk.domain.exceptions import (
    AuditWriteFailed,
    DomainError,
    ErrorCategory,
    EventInProgress,
    InvalidAmount,
    InvalidState,
    InvalidTransition,
    NotAuthorized,
    ReconciliationConflict,
    ReconciliationUnresolved,
    RefundDispatchFailed,
    UnknownOrder,
    UnknownRefund,
    VersionConflict,
)
from orderdesk.domain.state_machines import (
    OrderStatus,
    PaymentStatus,
    RefundStatus,
    StateTransition,
    TransitionSource,
)
from orderdesk.domain.value_objects import Actor, Money

__all__ = [
    # Base
    "Entity",
    "ValueObject",
    # Entities
    "AuditEntry",
    "Order",
    "OrderItem",
    "OrderTransition",
    "Refund",
    # Events
    "GatewayEvent",
    "GatewayEventType",
    # Value objects
    "Actor",
    "Money",
    # State machines
    "OrderStatus",
    "PaymentStatus",
    "RefundStatus",
    "StateTransition",
    "TransitionSource",
    # Exceptions
    "AuditWriteFailed",
    "DomainError",
    "ErrorCategory",
    "EventInProgress",
    "InvalidAmount",
    "InvalidState",
    "InvalidTransition",
    "NotAuthorized",
    "ReconciliationConflict",
    "ReconciliationUnresolved",
    "RefundDispatchFailed",
    "UnknownOrder",
    "UnknownRefund",
    "VersionConflict",
]
