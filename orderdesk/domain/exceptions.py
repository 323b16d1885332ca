"""Domain exceptions.

All errors raised by the reconciliation engine. Each error carries a
machine-readable ``error_code`` and a ``category`` so the admin console can
tell a rejected edit apart from a concurrent change, an unreachable payment
provider, or a completed mutation whose audit record could not be written.
"""

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Broad classes of failure surfaced to callers."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    AUTHORIZATION = "authorization"
    CONFLICT = "conflict"
    UPSTREAM = "upstream"
    INTEGRITY = "integrity"


class DomainError(Exception):
    """Base class for all domain exceptions.

    All domain errors should inherit from this class to allow
    catching domain-specific errors at the application layer.
    """

    error_code: str = "DOMAIN_ERROR"
    category: ErrorCategory = ErrorCategory.VALIDATION

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize domain error.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ============================================================================
# Validation Errors
# ============================================================================


class InvalidTransition(DomainError):
    """Raised when a requested state change is not reachable from the current state."""

    error_code = "INVALID_TRANSITION"

    def __init__(
        self,
        order_id: str,
        field_name: str,
        current_state: str | None,
        target_state: str | None,
        allowed_transitions: list[str] | None = None,
        reason: str | None = None,
    ) -> None:
        """Initialize invalid transition error.

        Args:
            order_id: ID of the order.
            field_name: Field being transitioned (status, payment_status, ...).
            current_state: Current value of the field.
            target_state: Requested value.
            allowed_transitions: Values reachable from the current state.
            reason: Extra explanation when the table alone does not apply.
        """
        allowed = allowed_transitions or []
        message = (
            f"Cannot transition Order({order_id}) {field_name} "
            f"from '{current_state}' to '{target_state}'. "
            f"Allowed transitions: {allowed}"
        )
        if reason:
            message = f"{message} ({reason})"
        super().__init__(
            message,
            details={
                "order_id": order_id,
                "field": field_name,
                "current_state": current_state,
                "target_state": target_state,
                "allowed_transitions": allowed,
                "reason": reason,
            },
        )


class InvalidAmount(DomainError):
    """Raised when a monetary amount is not acceptable for the order."""

    error_code = "INVALID_AMOUNT"

    def __init__(
        self,
        order_id: str,
        amount: int,
        currency: str | None,
        reason: str,
    ) -> None:
        shown = f"{amount} {currency}" if currency else str(amount)
        super().__init__(
            f"Invalid amount {shown} for order {order_id}: {reason}",
            details={
                "order_id": order_id,
                "amount": amount,
                "currency": currency,
                "reason": reason,
            },
        )


class InvalidState(DomainError):
    """Raised when an operation's preconditions on the order do not hold."""

    error_code = "INVALID_STATE"

    def __init__(self, order_id: str, reason: str, **context: Any) -> None:
        super().__init__(
            f"Order {order_id} is not in a valid state: {reason}",
            details={"order_id": order_id, "reason": reason, **context},
        )


# ============================================================================
# Lookup / Authorization Errors
# ============================================================================


class UnknownOrder(DomainError):
    """Raised when no order matches the given id or correlation id."""

    error_code = "ORDER_NOT_FOUND"
    category = ErrorCategory.NOT_FOUND

    def __init__(self, order_id: str) -> None:
        super().__init__(
            f"Order not found: {order_id}",
            details={"order_id": order_id},
        )


class UnknownRefund(DomainError):
    """Raised when no order holds the given gateway refund id."""

    error_code = "REFUND_NOT_FOUND"
    category = ErrorCategory.NOT_FOUND

    def __init__(self, refund_id: str) -> None:
        super().__init__(
            f"Refund not found: {refund_id}",
            details={"refund_id": refund_id},
        )


class NotAuthorized(DomainError):
    """Raised when the acting identity may not perform a mutation."""

    error_code = "FORBIDDEN"
    category = ErrorCategory.AUTHORIZATION

    def __init__(self, actor_id: str | None, action: str) -> None:
        super().__init__(
            f"Actor '{actor_id}' is not allowed to perform '{action}'",
            details={"actor_id": actor_id, "action": action},
        )


# ============================================================================
# Conflict Errors
# ============================================================================


class VersionConflict(DomainError):
    """Raised when the stored version no longer matches the caller's expectation."""

    error_code = "VERSION_CONFLICT"
    category = ErrorCategory.CONFLICT

    def __init__(
        self,
        order_id: str,
        expected_version: int,
        actual_version: int | None = None,
    ) -> None:
        super().__init__(
            f"Order {order_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})",
            details={
                "order_id": order_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )


class ReconciliationConflict(DomainError):
    """Raised when a gateway outcome still conflicts after one re-read and retry."""

    error_code = "RECONCILIATION_CONFLICT"
    category = ErrorCategory.CONFLICT

    def __init__(self, order_id: str, event_id: str, reason: str) -> None:
        super().__init__(
            f"Gateway event {event_id} could not be applied to order {order_id}: {reason}",
            details={"order_id": order_id, "event_id": event_id, "reason": reason},
        )


class EventInProgress(DomainError):
    """Raised when a gateway event is redelivered while an earlier delivery is still running.

    The earlier delivery may still fail, so the sender must try again later
    rather than treat the redelivery as acknowledged.
    """

    error_code = "EVENT_IN_PROGRESS"
    category = ErrorCategory.CONFLICT

    def __init__(self, event_id: str) -> None:
        super().__init__(
            f"Gateway event {event_id} is still being processed; retry later",
            details={"event_id": event_id, "retryable": True},
        )


# ============================================================================
# Upstream Errors
# ============================================================================


class RefundDispatchFailed(DomainError):
    """Raised when the gateway refund call could not be completed for this attempt.

    ``audit_write_failed`` is set when the attempt was marked failed but the
    audit entry for that write could not be stored.
    """

    error_code = "REFUND_DISPATCH_FAILED"
    category = ErrorCategory.UPSTREAM

    def __init__(
        self,
        order_id: str,
        attempts: int,
        reason: str,
        audit_write_failed: bool = False,
    ) -> None:
        super().__init__(
            f"Refund for order {order_id} could not be dispatched after "
            f"{attempts} attempt(s): {reason}",
            details={
                "order_id": order_id,
                "attempts": attempts,
                "reason": reason,
                "audit_write_failed": audit_write_failed,
            },
        )


class ReconciliationUnresolved(DomainError):
    """Raised when the gateway could not be reached to verify a payment."""

    error_code = "RECONCILIATION_UNRESOLVED"
    category = ErrorCategory.UPSTREAM

    def __init__(self, order_id: str, payment_reference: str, attempts: int, reason: str) -> None:
        super().__init__(
            f"Payment {payment_reference} for order {order_id} is unresolved after "
            f"{attempts} attempt(s): {reason}",
            details={
                "order_id": order_id,
                "payment_reference": payment_reference,
                "attempts": attempts,
                "reason": reason,
            },
        )


# ============================================================================
# Integrity Errors
# ============================================================================


class AuditWriteFailed(DomainError):
    """Raised when a mutation committed but its audit entry could not be written.

    The state change cannot be rolled back safely, so the committed order is
    carried on the error for the caller to report.
    """

    error_code = "AUDIT_WRITE_FAILED"
    category = ErrorCategory.INTEGRITY

    def __init__(
        self,
        order_id: str,
        version: int,
        action: str,
        reason: str,
        order: Any = None,
    ) -> None:
        super().__init__(
            f"Order {order_id} was updated to version {version} by '{action}' "
            f"but the audit entry could not be written: {reason}",
            details={
                "order_id": order_id,
                "version": version,
                "action": action,
                "reason": reason,
                "completed": True,
            },
        )
        self.order = order


# ============================================================================
# Money Errors
# ============================================================================


class MoneyError(DomainError):
    """Base class for money-related errors."""

    error_code = "INVALID_MONEY"


class CurrencyMismatchError(MoneyError):
    """Raised when attempting to combine money with different currencies."""

    def __init__(self, currency1: str, currency2: str) -> None:
        """Initialize currency mismatch error.

        Args:
            currency1: First currency code.
            currency2: Second currency code.
        """
        super().__init__(
            f"Cannot combine money with different currencies: {currency1} and {currency2}",
            details={"currency1": currency1, "currency2": currency2},
        )


class NegativeMoneyError(MoneyError):
    """Raised when attempting to create money with negative amount."""

    def __init__(self, amount: int) -> None:
        """Initialize negative money error.

        Args:
            amount: The negative amount in minor units.
        """
        super().__init__(
            f"Money amount cannot be negative: {amount}",
            details={"amount": amount},
        )


class UnsupportedCurrencyError(MoneyError):
    """Raised for currency codes that are not ISO-4217 alphabetic codes."""

    def __init__(self, currency: str) -> None:
        super().__init__(
            f"Unsupported currency code: {currency!r}",
            details={"currency": currency},
        )
