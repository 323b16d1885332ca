"""Fixtures for application service tests."""

import pytest

from orderdesk.application.audit_ledger import AuditLedger
from orderdesk.application.order_state_machine import OrderStateMachine
from orderdesk.application.payment_reconciler import PaymentReconciler
from orderdesk.application.refund_coordinator import RefundCoordinator
from orderdesk.application.retry import RetryPolicy
from orderdesk.domain import GatewayEvent, GatewayEventType
from orderdesk.domain.value_objects import Money
from orderdesk.infrastructure.audit_store import InMemoryAuditStore
from orderdesk.infrastructure.order_store import InMemoryOrderStore


async def _no_sleep(delay: float) -> None:
    return None


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, jitter_factor=0.0, sleep=_no_sleep)


@pytest.fixture
def order_store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def audit_store() -> InMemoryAuditStore:
    return InMemoryAuditStore()


@pytest.fixture
def state_machine(order_store, audit_store) -> OrderStateMachine:
    return OrderStateMachine(store=order_store, ledger=AuditLedger(audit_store))


@pytest.fixture
def reconciler(state_machine, fake_gateway, retry_policy) -> PaymentReconciler:
    return PaymentReconciler(
        state_machine=state_machine, gateway=fake_gateway, retry_policy=retry_policy
    )


@pytest.fixture
def coordinator(state_machine, fake_gateway, retry_policy) -> RefundCoordinator:
    return RefundCoordinator(
        state_machine=state_machine, gateway=fake_gateway, retry_policy=retry_policy
    )


@pytest.fixture
def captured():
    """Factory for a payment.captured event matching an order."""

    def _captured(order, event_id="evt_1", payment_id="pay_1", amount=None):
        return GatewayEvent(
            event_id=event_id,
            event_type=GatewayEventType.PAYMENT_CAPTURED,
            order_id=order.id,
            payment_id=payment_id,
            amount=amount or Money(order.total, order.currency),
        )

    return _captured


@pytest.fixture
def paid_order(order_store, reconciler, make_order, captured):
    """Create an order and capture its payment (version 2)."""

    async def _paid_order(**kwargs):
        order = await order_store.create(make_order(**kwargs))
        result = await reconciler.reconcile(captured(order))
        return result.order

    return _paid_order
