"""Gateway events.

Normalised notifications from the payment gateway. The gateway delivers
at least once, so the same ``event_id`` may arrive any number of times.
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from orderdesk.domain.state_machines import PaymentStatus, RefundStatus
from orderdesk.domain.value_objects import Money


class GatewayEventType(str, Enum):
    """Types of gateway notifications we act on."""

    PAYMENT_CAPTURED = "payment.captured"
    PAYMENT_FAILED = "payment.failed"
    REFUND_PROCESSED = "refund.processed"
    REFUND_FAILED = "refund.failed"

    @property
    def is_payment(self) -> bool:
        return self in (GatewayEventType.PAYMENT_CAPTURED, GatewayEventType.PAYMENT_FAILED)

    @property
    def is_refund(self) -> bool:
        return self in (GatewayEventType.REFUND_PROCESSED, GatewayEventType.REFUND_FAILED)


_PAYMENT_OUTCOMES = {
    GatewayEventType.PAYMENT_CAPTURED: PaymentStatus.PAID,
    GatewayEventType.PAYMENT_FAILED: PaymentStatus.FAILED,
}

_REFUND_OUTCOMES = {
    GatewayEventType.REFUND_PROCESSED: RefundStatus.PROCESSED,
    GatewayEventType.REFUND_FAILED: RefundStatus.FAILED,
}


@dataclass(frozen=True)
class GatewayEvent:
    """A gateway notification about a payment or a refund.

    Attributes:
        event_id: Gateway event identifier, unique per notification.
        event_type: What happened.
        order_id: Correlation id of the store order.
        payment_id: Gateway payment id.
        refund_id: Gateway refund id, for refund events.
        amount: Amount reported by the gateway, if any.
        occurred_at: When the gateway says the event happened.
    """

    event_id: str
    event_type: GatewayEventType
    order_id: str
    payment_id: str
    refund_id: str | None = None
    amount: Money | None = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def payment_outcome(self) -> PaymentStatus:
        """Payment status this event reports.

        Raises:
            ValueError: For refund events.
        """
        try:
            return _PAYMENT_OUTCOMES[self.event_type]
        except KeyError:
            raise ValueError(f"{self.event_type.value} is not a payment event") from None

    @property
    def refund_outcome(self) -> RefundStatus:
        """Refund status this event reports.

        Raises:
            ValueError: For payment events.
        """
        try:
            return _REFUND_OUTCOMES[self.event_type]
        except KeyError:
            raise ValueError(f"{self.event_type.value} is not a refund event") from None

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "order_id": self.order_id,
            "payment_id": self.payment_id,
            "refund_id": self.refund_id,
            "amount": self.amount.amount if self.amount else None,
            "currency": self.amount.currency if self.amount else None,
            "occurred_at": self.occurred_at.isoformat(),
        }

    def compute_payload_hash(self) -> str:
        """SHA-256 of the normalised payload, stored with the event log entry."""
        payload = json.dumps(self.to_dict(), sort_keys=True)
        return hashlib.sha256(payload.encode()).hexdigest()
