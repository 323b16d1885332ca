"""Gateway event processing service.

Handles incoming payment gateway notifications with:
- Event deduplication by event_id
- Routing to the payment reconciler or the refund coordinator
- An event log for operator lookup

A delivery that fails is recorded as failed and the error propagates, so
the gateway sees a non-2xx response and redelivers. Only events that were
processed count as duplicates; a redelivery that arrives while an earlier
delivery is still running is refused with a retryable error.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog

from orderdesk.application.order_state_machine import OrderStateMachine
from orderdesk.application.payment_reconciler import PaymentReconciler
from orderdesk.application.refund_coordinator import RefundCoordinator
from orderdesk.domain.entities import Order
from orderdesk.domain.events import GatewayEvent
from orderdesk.domain.exceptions import EventInProgress

logger = structlog.get_logger()


class EventStatus(str, Enum):
    """Status of a gateway event in the event log."""

    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"
    DUPLICATE = "duplicate"


@dataclass
class GatewayEventResult:
    """Result of gateway event processing.

    Attributes:
        event_id: The event ID.
        status: Final event status.
        message: Status message.
        order: Order after processing, when one was touched.
        applied: Whether the event changed the order.
    """

    event_id: str
    status: EventStatus
    message: str
    order: Order | None = None
    applied: bool = False

    @property
    def duplicate(self) -> bool:
        return self.status == EventStatus.DUPLICATE


class InMemoryEventLog:
    """In-memory log of gateway deliveries.

    ``claim`` checks and marks an event atomically so that two concurrent
    deliveries of the same event are not both processed.
    """

    def __init__(self) -> None:
        self._events: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def claim(
        self,
        event: GatewayEvent,
        correlation_id: str | None = None,
    ) -> EventStatus | None:
        """Mark an event as processing.

        Returns:
            None when this delivery now owns the event, otherwise the status
            that kept it from being claimed (``processing`` or ``processed``).
        """
        async with self._lock:
            existing = self._events.get(event.event_id)
            if existing and existing["status"] != EventStatus.FAILED.value:
                existing["deliveries"] += 1
                return EventStatus(existing["status"])

            now = datetime.now(timezone.utc)
            self._events[event.event_id] = {
                **event.to_dict(),
                "payload_hash": event.compute_payload_hash(),
                "status": EventStatus.PROCESSING.value,
                "received_at": existing["received_at"] if existing else now,
                "processed_at": None,
                "deliveries": (existing["deliveries"] + 1) if existing else 1,
                "error_code": None,
                "error_message": None,
                "correlation_id": correlation_id,
            }
            return None

    async def get(self, event_id: str) -> dict[str, Any] | None:
        record = self._events.get(event_id)
        return dict(record) if record else None

    async def update_status(
        self,
        event_id: str,
        status: EventStatus,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> None:
        """Update event status.

        Args:
            event_id: Event identifier.
            status: New status.
            error_code: Machine-readable error code if failed.
            error_message: Error message if failed.
        """
        record = self._events.get(event_id)
        if record is None:
            return
        record["status"] = status.value
        if status == EventStatus.PROCESSED:
            record["processed_at"] = datetime.now(timezone.utc)
        record["error_code"] = error_code
        record["error_message"] = error_message


class GatewayEventService:
    """Service for processing gateway notifications."""

    def __init__(
        self,
        reconciler: PaymentReconciler | None = None,
        refunds: RefundCoordinator | None = None,
        event_log: InMemoryEventLog | None = None,
    ) -> None:
        """Initialize service.

        Args:
            reconciler: Applies payment outcomes.
            refunds: Applies refund outcomes.
            event_log: Event log for deduplication.
        """
        if reconciler is None or refunds is None:
            state_machine = OrderStateMachine()
            reconciler = reconciler or PaymentReconciler(state_machine=state_machine)
            refunds = refunds or RefundCoordinator(state_machine=state_machine)
        self.reconciler = reconciler
        self.refunds = refunds
        self.event_log = event_log or InMemoryEventLog()

    async def process_event(
        self,
        event: GatewayEvent,
        correlation_id: str | None = None,
    ) -> GatewayEventResult:
        """Process a gateway event.

        Args:
            event: The normalised gateway event.
            correlation_id: Request correlation ID.

        Returns:
            Processing result; ``duplicate`` for redeliveries of a processed event.

        Raises:
            EventInProgress: If an earlier delivery of the event is still
                running. The sender should redeliver later.
            DomainError: If the event could not be applied. The event is
                recorded as failed and will be reprocessed on redelivery.
        """
        logger.info(
            "Processing gateway event",
            event_id=event.event_id,
            event_type=event.event_type.value,
            order_id=event.order_id,
            correlation_id=correlation_id,
        )

        blocked_by = await self.event_log.claim(event, correlation_id=correlation_id)
        if blocked_by == EventStatus.PROCESSING:
            logger.info("Gateway event redelivered while in progress", event_id=event.event_id)
            raise EventInProgress(event.event_id)
        if blocked_by is not None:
            logger.info("Duplicate gateway event ignored", event_id=event.event_id)
            return GatewayEventResult(
                event_id=event.event_id,
                status=EventStatus.DUPLICATE,
                message="Event already processed",
            )

        try:
            if event.event_type.is_payment:
                result = await self.reconciler.reconcile(event)
                order, applied = result.order, result.applied
            else:
                if not event.refund_id:
                    raise ValueError(f"{event.event_type.value} event carries no refund_id")
                resolution = await self.refunds.resolve_refund(
                    event.refund_id, event.refund_outcome, order_id=event.order_id
                )
                order, applied = resolution.order, resolution.applied
        except BaseException as e:
            # Cancellation included: the event must never stay in processing
            logger.error(
                "Failed to process gateway event",
                event_id=event.event_id,
                event_type=event.event_type.value,
                error_type=type(e).__name__,
                error=str(e),
            )
            await self.event_log.update_status(
                event.event_id,
                EventStatus.FAILED,
                error_code=getattr(e, "error_code", type(e).__name__),
                error_message=str(e),
            )
            raise

        await self.event_log.update_status(event.event_id, EventStatus.PROCESSED)
        logger.info(
            "Gateway event processed",
            event_id=event.event_id,
            order_id=order.id,
            applied=applied,
            version=order.version,
        )
        return GatewayEventResult(
            event_id=event.event_id,
            status=EventStatus.PROCESSED,
            message="Event applied" if applied else "Order already reflects this event",
            order=order,
            applied=applied,
        )


# Global service instance
_gateway_event_service: GatewayEventService | None = None


def get_gateway_event_service() -> GatewayEventService:
    """Get or create the gateway event service instance.

    Returns:
        GatewayEventService instance.
    """
    global _gateway_event_service
    if _gateway_event_service is None:
        _gateway_event_service = GatewayEventService()
    return _gateway_event_service


def reset_gateway_event_service() -> None:
    """Reset gateway event service (for testing)."""
    global _gateway_event_service
    _gateway_event_service = None
