"""Refund coordination service.

Issues refunds against captured payments and applies their eventual
outcome. The flow per attempt:

1. Reserve the order's single refund slot with a compare-and-set write of a
   ``pending`` refund sub-record (attempt number + idempotency key).
2. Call the gateway outside any lock, retrying transient errors with
   bounded exponential backoff.
3. Record the gateway refund id, or mark the attempt ``failed``.

The gateway later reports ``processed`` or ``failed`` through
``resolve_refund``. An attempt the gateway never acknowledged hands its
idempotency key to the next attempt, so a dispatch that timed out but
succeeded upstream cannot be repeated as a second refund.
"""

from collections.abc import Callable
from dataclasses import dataclass
from uuid import uuid4

import structlog

from orderdesk.application.order_state_machine import OrderStateMachine
from orderdesk.application.retry import RetryPolicy
from orderdesk.domain.entities import Order, OrderTransition, Refund
from orderdesk.domain.exceptions import (
    AuditWriteFailed,
    InvalidAmount,
    InvalidState,
    ReconciliationConflict,
    RefundDispatchFailed,
    UnknownOrder,
    UnknownRefund,
    VersionConflict,
)
from orderdesk.domain.state_machines import (
    OrderStatus,
    PaymentStatus,
    RefundStatus,
    TransitionSource,
)
from orderdesk.domain.value_objects import Actor, Money, normalize_currency
from orderdesk.infrastructure.order_store import OrderStore
from orderdesk.infrastructure.payment_gateway import (
    GatewayError,
    PaymentGateway,
    get_payment_gateway,
)

logger = structlog.get_logger()


@dataclass
class RefundResolution:
    """Outcome of applying a gateway refund notification."""

    order: Order
    outcome: RefundStatus
    applied: bool


class RefundCoordinator:
    """Initiates refunds and applies their outcomes."""

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

    # -------------------------------------------------------------------------
    # Initiation
    # -------------------------------------------------------------------------

    async def initiate_refund(
        self,
        order_id: str,
        amount: int,
        reason: str,
        actor: Actor,
        currency: str | None = None,
    ) -> Order:
        """Refund part or all of a paid order.

        Args:
            order_id: Order identifier.
            amount: Refund amount in the order's minor units.
            reason: Why the refund is issued.
            actor: Who requested the refund.
            currency: Optional currency; must equal the order currency.

        Returns:
            The order with a ``pending`` refund carrying the gateway refund id.

        Raises:
            UnknownOrder: If the order does not exist.
            InvalidState: If the payment is not captured or a refund is outstanding.
            InvalidAmount: If the amount or currency is not acceptable.
            VersionConflict: If the order changed while reserving the refund.
            RefundDispatchFailed: If the gateway call failed; the attempt is marked failed.
            AuditWriteFailed: If a write committed but its audit entry did not.
        """
        order = await self.store.get(order_id)
        self._check_refundable(order, amount, currency)

        refund = self._next_attempt(order, amount, reason)
        audit_failure: AuditWriteFailed | None = None
        try:
            reserved = await self.state_machine.apply(
                order.id,
                order.version,
                OrderTransition(
                    action="refund.requested",
                    source=TransitionSource.REFUND,
                    refund=refund,
                    metadata={"attempt": refund.attempt},
                ),
                actor,
            )
        except AuditWriteFailed as e:
            # The slot is reserved; dispatch anyway and report the audit gap at the end
            audit_failure = e
            reserved = e.order

        logger.info(
            "Refund reserved",
            order_id=order.id,
            attempt=refund.attempt,
            amount=amount,
            currency=order.currency,
            version=reserved.version,
        )

        try:
            refund_id = await self.retry_policy.call(
                "create_refund",
                lambda: self.gateway.create_refund(
                    reserved.payment_reference,
                    Money(amount=amount, currency=reserved.currency),
                    reason,
                    refund.idempotency_key,
                ),
            )
        except GatewayError as e:
            attempts = self.retry_policy.max_attempts if e.transient else 1
            logger.error(
                "Refund dispatch failed",
                order_id=order.id,
                attempt=refund.attempt,
                attempts=attempts,
                transient=e.transient,
                error=e.message,
            )
            audit_gap = await self._mark_dispatch_failed(order.id, refund, e.message, actor)
            raise RefundDispatchFailed(
                order.id, attempts, e.message, audit_write_failed=audit_gap
            ) from e
        except BaseException as e:
            # Anything else, cancellation included, must not leave the slot pending
            logger.error(
                "Refund dispatch interrupted",
                order_id=order.id,
                attempt=refund.attempt,
                error_type=type(e).__name__,
                error=str(e),
            )
            try:
                await self._mark_dispatch_failed(
                    order.id, refund, f"dispatch interrupted: {type(e).__name__}", actor
                )
            except Exception:
                logger.exception(
                    "Could not close interrupted refund attempt",
                    order_id=order.id,
                    attempt=refund.attempt,
                )
            raise

        try:
            updated = await self._update_refund(
                order.id,
                refund.attempt,
                lambda current: current.with_refund_id(refund_id),
                action="refund.dispatched",
                actor=actor,
                correlation_id=refund.idempotency_key,
            )
        except AuditWriteFailed as e:
            audit_failure = audit_failure or e
            updated = e.order

        if audit_failure is not None:
            raise AuditWriteFailed(
                updated.id,
                updated.version,
                audit_failure.details["action"],
                audit_failure.details["reason"],
                order=updated,
            ) from audit_failure
        return updated

    def _check_refundable(self, order: Order, amount: int, currency: str | None) -> None:
        if order.payment_status != PaymentStatus.PAID or order.payment_reference is None:
            raise InvalidState(
                order.id,
                "only a captured payment can be refunded",
                payment_status=order.payment_status.value,
            )
        if order.has_active_refund:
            raise InvalidState(
                order.id,
                "an outstanding refund exists",
                refund_status=order.refund.status.value,
                refund_id=order.refund.refund_id,
            )
        if currency is not None and normalize_currency(currency) != order.currency:
            raise InvalidAmount(
                order.id,
                amount,
                currency,
                f"refund currency must be the order currency {order.currency}",
            )
        if amount <= 0 or amount > order.total:
            raise InvalidAmount(
                order.id,
                amount,
                order.currency,
                f"refund must be between 1 and the order total {order.total}",
            )

    @staticmethod
    def _next_attempt(order: Order, amount: int, reason: str) -> Refund:
        previous = order.refund
        if previous is None:
            return Refund(amount=amount, reason=reason, attempt=1, idempotency_key=f"rfnd_{uuid4().hex}")
        # Never acknowledged: the gateway may still hold a refund under the old key
        key = previous.idempotency_key if not previous.acknowledged else f"rfnd_{uuid4().hex}"
        return Refund(amount=amount, reason=reason, attempt=previous.attempt + 1, idempotency_key=key)

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    async def resolve_refund(
        self,
        refund_id: str,
        outcome: RefundStatus,
        actor: Actor | None = None,
        order_id: str | None = None,
    ) -> RefundResolution:
        """Apply the gateway's final outcome for a refund.

        The outcome can arrive before the dispatching request has stored the
        gateway refund id. When ``order_id`` is given and that order's attempt
        is still pending without an id, the outcome applies to that attempt
        and records the id along with it.

        Args:
            refund_id: Gateway refund id.
            outcome: ``processed`` or ``failed``.
            actor: Identity recorded in the audit entry; the gateway by default.
            order_id: Order named by the gateway event, if any.

        Returns:
            RefundResolution with ``applied=False`` for redeliveries.

        Raises:
            UnknownRefund: If no order holds this refund id.
            InvalidState: If the refund already resolved to a different outcome.
            ReconciliationConflict: If a concurrent write raced both attempts.
            AuditWriteFailed: If the write committed but its audit entry did not.
        """
        if outcome not in (RefundStatus.PROCESSED, RefundStatus.FAILED):
            raise ValueError(f"Refund outcome must be processed or failed, got {outcome.value}")
        actor = actor or Actor.system("gateway")

        retried = False
        while True:
            order = await self._find_refund_holder(refund_id, order_id)
            if order is None:
                logger.warning("Gateway outcome for unknown refund", refund_id=refund_id, order_id=order_id)
                raise UnknownRefund(refund_id)

            refund = order.refund
            if refund.refund_id is None:
                refund = refund.with_refund_id(refund_id)
            if refund.status == outcome:
                logger.info(
                    "Duplicate refund outcome ignored",
                    order_id=order.id,
                    refund_id=refund_id,
                    refund_status=refund.status.value,
                )
                return RefundResolution(order=order, outcome=outcome, applied=False)
            if refund.status.is_terminal():
                raise InvalidState(
                    order.id,
                    f"refund already resolved as {refund.status.value}",
                    refund_id=refund_id,
                    requested_outcome=outcome.value,
                )

            if outcome == RefundStatus.PROCESSED:
                transition = OrderTransition(
                    action="refund.resolved",
                    source=TransitionSource.REFUND,
                    status=OrderStatus.REFUNDED,
                    payment_status=PaymentStatus.REFUNDED,
                    refund=refund.resolve(RefundStatus.PROCESSED),
                    metadata={"refund_id": refund_id},
                )
            else:
                transition = OrderTransition(
                    action="refund.resolved",
                    source=TransitionSource.REFUND,
                    refund=refund.resolve(RefundStatus.FAILED),
                    metadata={"refund_id": refund_id},
                )

            try:
                updated = await self.state_machine.apply(order.id, order.version, transition, actor)
            except VersionConflict as e:
                if retried:
                    raise ReconciliationConflict(
                        order.id, refund_id, "order changed concurrently on retry"
                    ) from e
                logger.info(
                    "Refund resolution raced a concurrent write, retrying",
                    order_id=order.id,
                    refund_id=refund_id,
                )
                retried = True
                continue

            logger.info(
                "Refund resolved",
                order_id=order.id,
                refund_id=refund_id,
                outcome=outcome.value,
                version=updated.version,
            )
            return RefundResolution(order=updated, outcome=outcome, applied=True)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _find_refund_holder(self, refund_id: str, order_id: str | None) -> Order | None:
        order = await self.store.get_by_refund_id(refund_id)
        if order is not None and order.refund is not None and order.refund.refund_id == refund_id:
            return order
        if order_id is None:
            return None

        try:
            order = await self.store.get(order_id)
        except UnknownOrder:
            return None
        refund = order.refund
        if refund is None or refund.status != RefundStatus.PENDING or refund.acknowledged:
            return None
        logger.info(
            "Refund outcome matched to unacknowledged attempt",
            order_id=order.id,
            refund_id=refund_id,
            attempt=refund.attempt,
        )
        return order

    async def _mark_dispatch_failed(
        self,
        order_id: str,
        refund: Refund,
        reason: str,
        actor: Actor,
    ) -> bool:
        """Close the attempt as ``failed`` so a fresh request can retry it.

        The idempotency key stays on the record for the next attempt to reuse.
        Returns ``True`` when the write committed without its audit entry.
        """
        try:
            await self._update_refund(
                order_id,
                refund.attempt,
                lambda current: current.dispatch_failed(reason),
                action="refund.dispatch_failed",
                actor=actor,
                correlation_id=refund.idempotency_key,
            )
        except AuditWriteFailed as e:
            logger.error(
                "Refund attempt marked failed without an audit entry",
                order_id=order_id,
                attempt=refund.attempt,
                error=e.message,
            )
            return True
        return False

    async def _update_refund(
        self,
        order_id: str,
        attempt: int,
        change: Callable[[Refund], Refund],
        action: str,
        actor: Actor,
        correlation_id: str,
    ) -> Order:
        """Rewrite the current attempt's refund record, re-reading once on conflict."""
        retried = False
        while True:
            order = await self.store.get(order_id)
            if order.refund is None or order.refund.attempt != attempt:
                raise InvalidState(
                    order_id,
                    "refund attempt was replaced while dispatching",
                    attempt=attempt,
                )
            changed = change(order.refund)
            if changed == order.refund:
                # A gateway outcome already recorded this
                logger.info(
                    "Refund bookkeeping already applied",
                    order_id=order_id,
                    attempt=attempt,
                    action=action,
                )
                return order
            transition = OrderTransition(
                action=action,
                source=TransitionSource.REFUND,
                refund=changed,
                metadata={"attempt": attempt},
            )
            try:
                return await self.state_machine.apply(order_id, order.version, transition, actor)
            except VersionConflict as e:
                if retried:
                    logger.error(
                        "Refund bookkeeping conflicted twice",
                        order_id=order_id,
                        attempt=attempt,
                        action=action,
                    )
                    raise ReconciliationConflict(
                        order_id, correlation_id, "order changed concurrently on retry"
                    ) from e
                retried = True
