"""Shared fixtures for E2E tests.

Orders are seeded into the in-memory store; everything after that goes
through HTTP, including gateway callbacks signed with the webhook secret.
"""

import json
from typing import Any

import pytest
from fastapi.testclient import TestClient

from orderdesk.infrastructure.config import settings
from orderdesk.infrastructure.payment_gateway import WebhookSignatureVerifier
from orderdesk.main import app


# ============================================================================
# Client Fixtures
# ============================================================================


@pytest.fixture
def gateway_client() -> TestClient:
    """Client the payment gateway uses for callbacks (no API key)."""
    return TestClient(app)


@pytest.fixture
def console_client() -> TestClient:
    """Admin console client: API key plus the proxied admin identity."""
    return TestClient(
        app,
        headers={
            "Authorization": f"Bearer {settings.orderdesk_api_key}",
            "X-Actor-Id": "admin-7",
            "X-Actor-Roles": "admin,support",
            "X-Request-ID": "e2e-test-request",
        },
    )


# ============================================================================
# Gateway Callbacks
# ============================================================================


@pytest.fixture
def send_gateway_event(gateway_client):
    """Sign and deliver a gateway notification; returns the response."""
    verifier = WebhookSignatureVerifier()

    def _send(event_id: str, event_type: str, data: dict[str, Any]):
        body = json.dumps(
            {
                "event_id": event_id,
                "event_type": event_type,
                "occurred_at": "2026-10-19T10:00:00+00:00",
                "data": data,
            }
        ).encode()
        return gateway_client.post(
            "/webhooks/gateway",
            content=body,
            headers={
                "X-Gateway-Signature": verifier.sign(body),
                "Content-Type": "application/json",
            },
        )

    return _send
