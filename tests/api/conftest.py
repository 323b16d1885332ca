"""Shared fixtures for API tests."""

import json

import pytest
from fastapi.testclient import TestClient

from orderdesk.application.payment_reconciler import PaymentReconciler
from orderdesk.domain import GatewayEvent, GatewayEventType
from orderdesk.domain.value_objects import Money
from orderdesk.infrastructure.config import settings
from orderdesk.infrastructure.order_store import get_order_store
from orderdesk.infrastructure.payment_gateway import WebhookSignatureVerifier
from orderdesk.main import app


@pytest.fixture
def client() -> TestClient:
    """Create test client without authentication."""
    return TestClient(app)


@pytest.fixture
def auth_client() -> TestClient:
    """Create test client with valid API key authentication."""
    return TestClient(
        app,
        headers={"Authorization": f"Bearer {settings.orderdesk_api_key}"},
    )


@pytest.fixture
def admin_headers() -> dict[str, str]:
    """Identity headers forwarded by the auth proxy for an admin."""
    return {"X-Actor-Id": "admin-1", "X-Actor-Roles": "admin"}


@pytest.fixture
def staff_headers() -> dict[str, str]:
    return {"X-Actor-Id": "staff-1", "X-Actor-Roles": "support"}


@pytest.fixture
def pending_order(make_order):
    """Store a pending order (default: 50000 INR)."""

    async def _pending_order(**kwargs):
        return await get_order_store().create(make_order(**kwargs))

    return _pending_order


@pytest.fixture
def paid_order(pending_order):
    """Store an order whose payment pay_1 was captured (version 2)."""

    async def _paid_order(**kwargs):
        order = await pending_order(**kwargs)
        result = await PaymentReconciler().reconcile(
            GatewayEvent(
                event_id=f"evt_seed_{order.id}",
                event_type=GatewayEventType.PAYMENT_CAPTURED,
                order_id=order.id,
                payment_id="pay_1",
                amount=Money(order.total, order.currency),
            )
        )
        return result.order

    return _paid_order


@pytest.fixture
def gateway_event():
    """Factory for a gateway webhook payload."""

    def _gateway_event(
        event_id: str,
        event_type: str,
        order_id: str,
        payment_id: str = "pay_1",
        refund_id: str | None = None,
        amount: int | None = 50000,
        currency: str | None = "INR",
    ) -> dict:
        return {
            "event_id": event_id,
            "event_type": event_type,
            "occurred_at": "2026-10-19T10:00:00+00:00",
            "data": {
                "order_id": order_id,
                "payment_id": payment_id,
                "refund_id": refund_id,
                "amount": amount,
                "currency": currency,
            },
        }

    return _gateway_event


@pytest.fixture
def signed():
    """Serialize a webhook payload and sign it with the configured secret."""

    def _signed(payload: dict) -> tuple[bytes, dict[str, str]]:
        body = json.dumps(payload).encode()
        headers = {
            "X-Gateway-Signature": WebhookSignatureVerifier().sign(body),
            "Content-Type": "application/json",
        }
        return body, headers

    return _signed
