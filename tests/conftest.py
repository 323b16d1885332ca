"""Shared fixtures.

Every test starts with empty in-memory stores, a fake payment gateway and
no backoff delay between gateway retries.
"""

import pytest

from orderdesk.application.gateway_events import reset_gateway_event_service
from orderdesk.domain.entities import Order, OrderItem
from orderdesk.domain.value_objects import ADMIN_ROLE, Actor, Money
from orderdesk.infrastructure.audit_store import reset_audit_store
from orderdesk.infrastructure.config import settings
from orderdesk.infrastructure.order_store import reset_order_store
from orderdesk.infrastructure.payment_gateway import (
    GatewayUnavailable,
    PaymentGateway,
    PaymentOutcome,
    PaymentVerification,
    set_payment_gateway,
)


class FakeGateway(PaymentGateway):
    """Scriptable payment gateway.

    ``refund_errors`` and ``verify_errors`` are raised in order before any
    call succeeds.
    """

    def __init__(self) -> None:
        self.refund_calls: list[dict] = []
        self.refund_errors: list[Exception] = []
        self.verify_calls: list[str] = []
        self.verify_errors: list[Exception] = []
        self.verifications: dict[str, PaymentVerification] = {}
        self.payments: dict[str, Money] = {}
        self._refunds_by_key: dict[str, str] = {}

    async def create_payment(self, amount: Money, order_id: str) -> str:
        reference = f"pay_{order_id}"
        self.payments[reference] = amount
        return reference

    async def verify_payment(self, reference: str) -> PaymentVerification:
        self.verify_calls.append(reference)
        if self.verify_errors:
            raise self.verify_errors.pop(0)
        return self.verifications.get(
            reference, PaymentVerification(reference=reference, outcome=PaymentOutcome.PENDING)
        )

    async def create_refund(
        self,
        reference: str,
        amount: Money,
        reason: str,
        idempotency_key: str,
    ) -> str:
        self.refund_calls.append(
            {
                "reference": reference,
                "amount": amount,
                "reason": reason,
                "idempotency_key": idempotency_key,
            }
        )
        if self.refund_errors:
            raise self.refund_errors.pop(0)
        # Same key, same refund
        if idempotency_key not in self._refunds_by_key:
            self._refunds_by_key[idempotency_key] = f"rfnd_gw_{len(self._refunds_by_key) + 1}"
        return self._refunds_by_key[idempotency_key]

    def fail_refunds(self, count: int) -> None:
        self.refund_errors.extend(
            GatewayUnavailable("create_refund", "Timed out") for _ in range(count)
        )


@pytest.fixture(autouse=True)
def fake_gateway(monkeypatch):
    """Fresh stores and a fake gateway for every test."""
    monkeypatch.setattr(settings, "gateway_backoff_base_seconds", 0.0)
    reset_order_store()
    reset_audit_store()
    reset_gateway_event_service()
    gateway = FakeGateway()
    set_payment_gateway(gateway)
    yield gateway
    set_payment_gateway(None)
    reset_gateway_event_service()


@pytest.fixture
def admin() -> Actor:
    return Actor(
        actor_id="admin-1",
        roles=frozenset({ADMIN_ROLE}),
        ip_address="10.0.0.7",
        user_agent="pytest",
        request_id="req-1",
    )


@pytest.fixture
def staff() -> Actor:
    """Authenticated user without the admin role."""
    return Actor(actor_id="staff-1", roles=frozenset({"support"}))


def build_order(total_units: int = 50000, currency: str = "INR", order_id: str | None = None) -> Order:
    return Order.create(
        user_id="user-1",
        currency=currency,
        items=[
            OrderItem(
                product_id="prod-1",
                product_name="Handloom saree",
                quantity=1,
                unit_price=total_units,
            )
        ],
        order_id=order_id,
    )


@pytest.fixture
def make_order():
    """Factory for a pending order (default: 50000 INR)."""
    return build_order
