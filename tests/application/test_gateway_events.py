"""Tests for gateway event processing."""

import asyncio

import pytest

from orderdesk.application.gateway_events import EventStatus, GatewayEventService
from orderdesk.domain import (
    EventInProgress,
    GatewayEvent,
    GatewayEventType,
    OrderStatus,
    PaymentStatus,
    ReconciliationConflict,
    UnknownOrder,
)


@pytest.fixture
def service(reconciler, coordinator) -> GatewayEventService:
    return GatewayEventService(reconciler=reconciler, refunds=coordinator)


class TestProcessEvent:
    @pytest.mark.asyncio
    async def test_payment_event_processed(self, service, order_store, make_order, captured):
        order = await order_store.create(make_order())

        result = await service.process_event(captured(order), correlation_id="req-1")

        assert result.status == EventStatus.PROCESSED
        assert result.applied
        assert result.order.payment_status == PaymentStatus.PAID

        record = await service.event_log.get("evt_1")
        assert record["status"] == "processed"
        assert record["deliveries"] == 1
        assert record["correlation_id"] == "req-1"
        assert record["processed_at"] is not None

    @pytest.mark.asyncio
    async def test_redelivery_is_duplicate(self, service, order_store, audit_store, make_order, captured):
        order = await order_store.create(make_order())
        await service.process_event(captured(order))

        result = await service.process_event(captured(order))

        assert result.duplicate
        assert not result.applied
        assert (await order_store.get(order.id)).version == 2
        assert len(await audit_store.list()) == 1
        assert (await service.event_log.get("evt_1"))["deliveries"] == 2

    @pytest.mark.asyncio
    async def test_failed_event_reprocessed_on_redelivery(self, service, order_store, make_order, captured):
        order = make_order(order_id="ord-late")
        event = captured(order)

        with pytest.raises(UnknownOrder):
            await service.process_event(event)
        record = await service.event_log.get(event.event_id)
        assert record["status"] == "failed"
        assert record["error_code"] == "ORDER_NOT_FOUND"

        await order_store.create(order)
        result = await service.process_event(event)

        assert result.status == EventStatus.PROCESSED
        assert (await service.event_log.get(event.event_id))["deliveries"] == 2

    @pytest.mark.asyncio
    async def test_refund_event_routed_to_coordinator(self, service, coordinator, paid_order, admin):
        order = await paid_order()
        pending = await coordinator.initiate_refund(order.id, 50000, "damaged", admin)

        result = await service.process_event(
            GatewayEvent(
                event_id="evt_rf",
                event_type=GatewayEventType.REFUND_PROCESSED,
                order_id=order.id,
                payment_id="pay_1",
                refund_id=pending.refund.refund_id,
            )
        )

        assert result.applied
        assert result.order.status == OrderStatus.REFUNDED

    @pytest.mark.asyncio
    async def test_unknown_event_lookup(self, service):
        assert await service.event_log.get("evt_missing") is None


class BlockingReconciler:
    """Holds ``reconcile`` open until released, then fails like a lost race."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def reconcile(self, event):
        self.started.set()
        await self.release.wait()
        raise ReconciliationConflict(event.order_id, event.event_id, "order changed concurrently on retry")


class TestConcurrentDelivery:
    @pytest.mark.asyncio
    async def test_redelivery_while_in_progress_is_refused(
        self, reconciler, coordinator, order_store, make_order, captured
    ):
        blocking = BlockingReconciler()
        service = GatewayEventService(reconciler=blocking, refunds=coordinator)
        order = await order_store.create(make_order())
        event = captured(order, event_id="evt_9")

        first = asyncio.create_task(service.process_event(event))
        await blocking.started.wait()

        with pytest.raises(EventInProgress) as exc_info:
            await service.process_event(event)
        assert exc_info.value.category.value == "conflict"

        blocking.release.set()
        with pytest.raises(ReconciliationConflict):
            await first
        record = await service.event_log.get("evt_9")
        assert record["status"] == "failed"
        assert record["deliveries"] == 2

        # The gateway keeps redelivering and the next attempt is applied
        service.reconciler = reconciler
        result = await service.process_event(event)

        assert result.status == EventStatus.PROCESSED
        assert result.order.payment_status == PaymentStatus.PAID

    @pytest.mark.asyncio
    async def test_cancelled_delivery_is_not_left_processing(
        self, reconciler, coordinator, order_store, make_order, captured
    ):
        blocking = BlockingReconciler()
        service = GatewayEventService(reconciler=blocking, refunds=coordinator)
        order = await order_store.create(make_order())
        event = captured(order)

        task = asyncio.create_task(service.process_event(event))
        await blocking.started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        record = await service.event_log.get(event.event_id)
        assert record["status"] == "failed"
        assert record["error_code"] == "CancelledError"

        service.reconciler = reconciler
        result = await service.process_event(event)
        assert result.status == EventStatus.PROCESSED


class TestRefundOutcomeBeforeDispatchRecorded:
    @pytest.mark.asyncio
    async def test_refund_event_falls_back_to_order(
        self, service, coordinator, paid_order, fake_gateway, admin, monkeypatch
    ):
        order = await paid_order()
        create_refund = fake_gateway.create_refund
        results = []

        async def create_and_notify(reference, amount, reason, idempotency_key):
            refund_id = await create_refund(reference, amount, reason, idempotency_key)
            results.append(
                await service.process_event(
                    GatewayEvent(
                        event_id="evt_rf_early",
                        event_type=GatewayEventType.REFUND_PROCESSED,
                        order_id=order.id,
                        payment_id="pay_1",
                        refund_id=refund_id,
                    )
                )
            )
            return refund_id

        monkeypatch.setattr(fake_gateway, "create_refund", create_and_notify)

        updated = await coordinator.initiate_refund(order.id, 50000, "damaged", admin)

        assert results[0].status == EventStatus.PROCESSED
        assert results[0].applied
        assert updated.status == OrderStatus.REFUNDED
        assert updated.refund.refund_id == "rfnd_gw_1"
