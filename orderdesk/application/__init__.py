"""Application layer module.

Contains application services (use cases) that orchestrate
domain logic and infrastructure.
"""

from orderdesk.application.admin_gateway import AdminGateway, get_admin_gateway
from orderdesk.application.audit_ledger import AuditLedger
from orderdesk.application.gateway_events import (
    GatewayEventService,
    get_gateway_event_service,
)
from orderdesk.application.order_state_machine import OrderStateMachine
from orderdesk.application.payment_reconciler import PaymentReconciler
from orderdesk.application.refund_coordinator import RefundCoordinator
from orderdesk.application.retry import RetryPolicy

__all__ = [
    "AdminGateway",
    "get_admin_gateway",
    "AuditLedger",
    "GatewayEventService",
    "get_gateway_event_service",
    "OrderStateMachine",
    "PaymentReconciler",
    "RefundCoordinator",
    "RetryPolicy",
]
