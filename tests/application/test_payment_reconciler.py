"""Tests for the payment reconciler."""

import pytest

from orderdesk.application.payment_reconciler import PaymentReconciler
from orderdesk.domain import (
    GatewayEvent,
    GatewayEventType,
    InvalidAmount,
    InvalidState,
    InvalidTransition,
    OrderStatus,
    OrderTransition,
    PaymentStatus,
    ReconciliationConflict,
    ReconciliationUnresolved,
    TransitionSource,
    UnknownOrder,
    VersionConflict,
)
from orderdesk.domain.value_objects import Money
from orderdesk.infrastructure.audit_store import AuditFilter
from orderdesk.infrastructure.payment_gateway import (
    GatewayRejected,
    GatewayUnavailable,
    PaymentOutcome,
    PaymentVerification,
)


class TestReconcile:
    @pytest.mark.asyncio
    async def test_captured_marks_paid(self, reconciler, order_store, audit_store, make_order, captured):
        order = await order_store.create(make_order())

        result = await reconciler.reconcile(captured(order))

        assert result.applied
        assert result.order.payment_status == PaymentStatus.PAID
        assert result.order.payment_reference == "pay_1"
        assert result.order.status == OrderStatus.PENDING
        assert result.order.version == 2

        entries = await audit_store.list(AuditFilter(resource_id=order.id))
        assert len(entries) == 1
        assert entries[0].action == "payment.reconciled"
        assert entries[0].actor_id == "system:gateway"
        assert entries[0].after["metadata"]["event_id"] == "evt_1"

    @pytest.mark.asyncio
    async def test_redelivery_is_noop(self, reconciler, order_store, audit_store, make_order, captured):
        """The same outcome applied twice changes the order once."""
        order = await order_store.create(make_order())
        await reconciler.reconcile(captured(order, event_id="evt_1"))

        again = await reconciler.reconcile(captured(order, event_id="evt_2"))

        assert not again.applied
        assert again.order.version == 2
        assert len(await audit_store.list()) == 1

    @pytest.mark.asyncio
    async def test_failed_payment(self, reconciler, order_store, make_order):
        order = await order_store.create(make_order())
        event = GatewayEvent(
            event_id="evt_f",
            event_type=GatewayEventType.PAYMENT_FAILED,
            order_id=order.id,
            payment_id="pay_1",
        )

        result = await reconciler.reconcile(event)

        assert result.outcome == PaymentStatus.FAILED
        assert result.order.payment_status == PaymentStatus.FAILED

    @pytest.mark.asyncio
    async def test_amount_mismatch_rejected(self, reconciler, order_store, make_order, captured):
        order = await order_store.create(make_order())

        with pytest.raises(InvalidAmount):
            await reconciler.reconcile(captured(order, amount=Money(49999, "INR")))

        assert (await order_store.get(order.id)).version == 1

    @pytest.mark.asyncio
    async def test_currency_mismatch_rejected(self, reconciler, order_store, make_order, captured):
        """50000 INR is never read as USD or the other way round."""
        order = await order_store.create(make_order())

        with pytest.raises(InvalidAmount):
            await reconciler.reconcile(captured(order, amount=Money(50000, "USD")))

    @pytest.mark.asyncio
    async def test_unknown_order(self, reconciler, make_order, captured):
        with pytest.raises(UnknownOrder):
            await reconciler.reconcile(captured(make_order()))

    @pytest.mark.asyncio
    async def test_failure_after_capture_is_allowed(self, reconciler, order_store, make_order, captured):
        order = await order_store.create(make_order())
        await reconciler.reconcile(captured(order))
        failed = GatewayEvent(
            event_id="evt_2",
            event_type=GatewayEventType.PAYMENT_FAILED,
            order_id=order.id,
            payment_id="pay_1",
        )

        result = await reconciler.reconcile(failed)

        assert result.order.payment_status == PaymentStatus.FAILED

    @pytest.mark.asyncio
    async def test_different_payment_reference_rejected(self, reconciler, order_store, make_order, captured):
        order = await order_store.create(make_order())
        await reconciler.reconcile(captured(order, payment_id="pay_1"))

        with pytest.raises(InvalidTransition):
            await reconciler.reconcile(
                GatewayEvent(
                    event_id="evt_3",
                    event_type=GatewayEventType.PAYMENT_FAILED,
                    order_id=order.id,
                    payment_id="pay_2",
                )
            )


class RacingStateMachine:
    """Wraps a state machine so that the first ``races`` applies lose to an admin write."""

    def __init__(self, inner, races: int, admin) -> None:
        self.inner = inner
        self.store = inner.store
        self.races = races
        self.admin = admin

    async def apply(self, order_id, expected_version, transition, actor):
        if self.races > 0:
            self.races -= 1
            current = await self.store.get(order_id)
            target = (
                OrderStatus.PROCESSING
                if current.status == OrderStatus.PENDING
                else OrderStatus.SHIPPED
            )
            await self.inner.apply(
                order_id,
                current.version,
                OrderTransition(
                    action="order.transition",
                    source=TransitionSource.ADMIN,
                    status=target,
                ),
                self.admin,
            )
        return await self.inner.apply(order_id, expected_version, transition, actor)


class TestConflictRetry:
    @pytest.mark.asyncio
    async def test_conflict_retried_once(
        self, state_machine, fake_gateway, retry_policy, order_store, make_order, captured, admin
    ):
        racing = RacingStateMachine(state_machine, races=1, admin=admin)
        reconciler = PaymentReconciler(
            state_machine=racing, gateway=fake_gateway, retry_policy=retry_policy
        )
        order = await order_store.create(make_order())

        result = await reconciler.reconcile(captured(order))

        assert result.applied
        assert result.order.status == OrderStatus.PROCESSING
        assert result.order.payment_status == PaymentStatus.PAID
        assert result.order.version == 3

    @pytest.mark.asyncio
    async def test_second_conflict_raises(
        self, state_machine, fake_gateway, retry_policy, order_store, make_order, captured, admin
    ):
        racing = RacingStateMachine(state_machine, races=2, admin=admin)
        reconciler = PaymentReconciler(
            state_machine=racing, gateway=fake_gateway, retry_policy=retry_policy
        )
        order = await order_store.create(make_order())

        with pytest.raises(ReconciliationConflict) as exc_info:
            await reconciler.reconcile(captured(order))

        assert isinstance(exc_info.value.__cause__, VersionConflict)
        assert (await order_store.get(order.id)).payment_status == PaymentStatus.PENDING


class TestVerify:
    @pytest.mark.asyncio
    async def test_poll_applies_captured_payment(self, reconciler, order_store, fake_gateway, make_order, admin):
        order = await order_store.create(make_order())
        fake_gateway.verifications["pay_9"] = PaymentVerification(
            reference="pay_9", outcome=PaymentOutcome.PAID, amount=Money(50000, "INR")
        )

        result = await reconciler.verify(order.id, "pay_9", actor=admin)

        assert result.applied
        assert result.order.payment_status == PaymentStatus.PAID
        assert result.order.payment_reference == "pay_9"

    @pytest.mark.asyncio
    async def test_pending_payment_left_alone(self, reconciler, order_store, make_order, admin):
        order = await order_store.create(make_order())

        result = await reconciler.verify(order.id, "pay_9", actor=admin)

        assert not result.applied
        assert result.outcome == PaymentStatus.PENDING
        assert result.order.version == 1

    @pytest.mark.asyncio
    async def test_transient_errors_retried(self, reconciler, order_store, fake_gateway, make_order, admin):
        order = await order_store.create(make_order())
        fake_gateway.verify_errors = [
            GatewayUnavailable("verify_payment", "Timed out"),
            GatewayUnavailable("verify_payment", "Timed out"),
        ]
        fake_gateway.verifications["pay_9"] = PaymentVerification(
            reference="pay_9", outcome=PaymentOutcome.PAID
        )

        result = await reconciler.verify(order.id, "pay_9", actor=admin)

        assert result.applied
        assert len(fake_gateway.verify_calls) == 3

    @pytest.mark.asyncio
    async def test_unreachable_gateway_is_unresolved(self, reconciler, order_store, fake_gateway, make_order, admin):
        order = await order_store.create(make_order())
        fake_gateway.verify_errors = [
            GatewayUnavailable("verify_payment", "Timed out") for _ in range(3)
        ]

        with pytest.raises(ReconciliationUnresolved) as exc_info:
            await reconciler.verify(order.id, "pay_9", actor=admin)

        assert exc_info.value.details["attempts"] == 3
        assert (await order_store.get(order.id)).version == 1

    @pytest.mark.asyncio
    async def test_rejection_not_retried(self, reconciler, order_store, fake_gateway, make_order, admin):
        order = await order_store.create(make_order())
        fake_gateway.verify_errors = [GatewayRejected("verify_payment", "Not found", 404)]

        with pytest.raises(ReconciliationUnresolved) as exc_info:
            await reconciler.verify(order.id, "pay_9", actor=admin)

        assert exc_info.value.details["attempts"] == 1
        assert len(fake_gateway.verify_calls) == 1

    @pytest.mark.asyncio
    async def test_other_payment_reference_rejected(self, reconciler, paid_order, admin):
        order = await paid_order()

        with pytest.raises(InvalidState):
            await reconciler.verify(order.id, "pay_other", actor=admin)
