"""Payment reconciliation service.

Translates gateway payment outcomes into order transitions exactly once
per payment, whether the outcome arrives by webhook (``reconcile``) or by
polling the gateway (``verify``).
"""

from dataclasses import dataclass
from uuid import uuid4

import structlog

from orderdesk.application.order_state_machine import OrderStateMachine
from orderdesk.application.retry import RetryPolicy
from orderdesk.domain.entities import Order, OrderTransition
from orderdesk.domain.events import GatewayEvent, GatewayEventType
from orderdesk.domain.exceptions import (
    InvalidAmount,
    InvalidState,
    ReconciliationConflict,
    ReconciliationUnresolved,
    UnknownOrder,
    VersionConflict,
)
from orderdesk.domain.state_machines import PaymentStatus, TransitionSource
from orderdesk.domain.value_objects import Actor
from orderdesk.infrastructure.order_store import OrderStore
from orderdesk.infrastructure.payment_gateway import (
    GatewayError,
    PaymentGateway,
    PaymentOutcome,
    get_payment_gateway,
)

logger = structlog.get_logger()

# Payment statuses that already account for each reported outcome
_REFLECTS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PAID: frozenset({PaymentStatus.PAID, PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.FAILED}),
}


@dataclass
class ReconcileResult:
    """Outcome of a reconciliation.

    Attributes:
        order: Order after reconciliation.
        outcome: Payment outcome reported by the gateway.
        applied: False when nothing changed (redelivery or still pending).
    """

    order: Order
    outcome: PaymentStatus
    applied: bool


class PaymentReconciler:
    """Reconciles gateway payment outcomes with stored orders."""

    def __init__(
        self,
        state_machine: OrderStateMachine | None = None,
        gateway: PaymentGateway | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.state_machine = state_machine or OrderStateMachine()
        self.gateway = gateway or get_payment_gateway()
        self.retry_policy = retry_policy or RetryPolicy.from_settings()

    @property
    def store(self) -> OrderStore:
        return self.state_machine.store

    async def reconcile(self, event: GatewayEvent, actor: Actor | None = None) -> ReconcileResult:
        """Apply a payment event to its order.

        Args:
            event: Payment captured or failed notification.
            actor: Identity recorded in the audit entry; the gateway by default.

        Returns:
            ReconcileResult with ``applied=False`` for redeliveries.

        Raises:
            UnknownOrder: If the correlation id matches no order.
            InvalidAmount: If the event amount or currency disagrees with the order.
            InvalidTransition: If the outcome is not reachable from the current state.
            ReconciliationConflict: If a concurrent write raced both attempts.
            AuditWriteFailed: If the write committed but its audit entry did not.
        """
        outcome = event.payment_outcome
        actor = actor or Actor.system("gateway")

        retried = False
        while True:
            try:
                order = await self.store.get(event.order_id)
            except UnknownOrder:
                logger.warning(
                    "Gateway event for unknown order",
                    event_id=event.event_id,
                    order_id=event.order_id,
                    payment_id=event.payment_id,
                )
                raise

            if self._already_reflected(order, event, outcome):
                logger.info(
                    "Duplicate payment outcome ignored",
                    event_id=event.event_id,
                    order_id=order.id,
                    payment_status=order.payment_status.value,
                    version=order.version,
                )
                return ReconcileResult(order=order, outcome=outcome, applied=False)

            if outcome == PaymentStatus.PAID:
                self._check_amount(order, event)

            transition = OrderTransition(
                action="payment.reconciled",
                source=TransitionSource.GATEWAY,
                payment_status=outcome,
                payment_reference=event.payment_id,
                metadata={"event_id": event.event_id, "event_type": event.event_type.value},
            )
            try:
                updated = await self.state_machine.apply(order.id, order.version, transition, actor)
            except VersionConflict as e:
                if retried:
                    logger.error(
                        "Payment reconciliation conflicted twice",
                        event_id=event.event_id,
                        order_id=order.id,
                    )
                    raise ReconciliationConflict(
                        order.id, event.event_id, "order changed concurrently on retry"
                    ) from e
                logger.info(
                    "Payment reconciliation raced a concurrent write, retrying",
                    event_id=event.event_id,
                    order_id=order.id,
                    expected_version=order.version,
                )
                retried = True
                continue
            return ReconcileResult(order=updated, outcome=outcome, applied=True)

    async def verify(
        self,
        order_id: str,
        payment_reference: str,
        actor: Actor | None = None,
    ) -> ReconcileResult:
        """Poll the gateway for a payment and reconcile the answer.

        Args:
            order_id: Order identifier.
            payment_reference: Gateway payment id to check.
            actor: Identity recorded in the audit entry.

        Returns:
            ReconcileResult; a payment still pending at the gateway is
            returned unchanged with ``outcome=pending``.

        Raises:
            UnknownOrder: If the order does not exist.
            InvalidState: If the order is linked to a different payment.
            ReconciliationUnresolved: If the gateway could not answer.
        """
        order = await self.store.get(order_id)
        if order.payment_reference is not None and order.payment_reference != payment_reference:
            raise InvalidState(
                order_id,
                "order is linked to a different payment",
                payment_reference=order.payment_reference,
            )

        try:
            verification = await self.retry_policy.call(
                "verify_payment",
                lambda: self.gateway.verify_payment(payment_reference),
            )
        except GatewayError as e:
            attempts = self.retry_policy.max_attempts if e.transient else 1
            logger.error(
                "Payment verification unresolved",
                order_id=order_id,
                payment_reference=payment_reference,
                attempts=attempts,
                error=e.message,
            )
            raise ReconciliationUnresolved(order_id, payment_reference, attempts, e.message) from e

        if verification.outcome == PaymentOutcome.PENDING:
            logger.info(
                "Payment still pending at gateway",
                order_id=order_id,
                payment_reference=payment_reference,
            )
            return ReconcileResult(order=order, outcome=PaymentStatus.PENDING, applied=False)

        event_type = (
            GatewayEventType.PAYMENT_CAPTURED
            if verification.outcome == PaymentOutcome.PAID
            else GatewayEventType.PAYMENT_FAILED
        )
        event = GatewayEvent(
            event_id=f"poll_{uuid4().hex}",
            event_type=event_type,
            order_id=order_id,
            payment_id=payment_reference,
            amount=verification.amount,
        )
        return await self.reconcile(event, actor=actor)

    @staticmethod
    def _already_reflected(order: Order, event: GatewayEvent, outcome: PaymentStatus) -> bool:
        return (
            order.payment_reference == event.payment_id
            and order.payment_status in _REFLECTS[outcome]
        )

    @staticmethod
    def _check_amount(order: Order, event: GatewayEvent) -> None:
        if event.amount is None:
            return
        if event.amount.currency != order.currency:
            raise InvalidAmount(
                order.id,
                event.amount.amount,
                event.amount.currency,
                f"gateway currency does not match order currency {order.currency}",
            )
        if event.amount.amount != order.total:
            raise InvalidAmount(
                order.id,
                event.amount.amount,
                event.amount.currency,
                f"gateway amount does not match order total {order.total}",
            )
