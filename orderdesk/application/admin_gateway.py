"""Admin action gateway.

Single entry point for the administrative console. Reads pass straight
through to the stores; every mutation requires an actor holding the admin
role and is delegated to the state machine, the payment reconciler or the
refund coordinator, which write the audit entry under that actor.
"""

import structlog

from orderdesk.application.audit_ledger import AuditLedger
from orderdesk.application.order_state_machine import OrderStateMachine
from orderdesk.application.payment_reconciler import PaymentReconciler, ReconcileResult
from orderdesk.application.refund_coordinator import RefundCoordinator
from orderdesk.domain.entities import AuditEntry, Order, OrderTransition
from orderdesk.domain.exceptions import NotAuthorized
from orderdesk.domain.state_machines import OrderStatus, TransitionSource
from orderdesk.domain.value_objects import Actor
from orderdesk.infrastructure.audit_store import AuditFilter
from orderdesk.infrastructure.order_store import OrderFilter

logger = structlog.get_logger()


class AdminGateway:
    """Administrative operations on orders."""

    def __init__(
        self,
        state_machine: OrderStateMachine | None = None,
        reconciler: PaymentReconciler | None = None,
        refunds: RefundCoordinator | None = None,
        ledger: AuditLedger | None = None,
    ) -> None:
        self.state_machine = state_machine or OrderStateMachine()
        self.reconciler = reconciler or PaymentReconciler(state_machine=self.state_machine)
        self.refunds = refunds or RefundCoordinator(state_machine=self.state_machine)
        self.ledger = ledger or self.state_machine.ledger

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def list_orders(self, order_filter: OrderFilter | None = None) -> tuple[list[Order], int]:
        return await self.state_machine.store.list(order_filter)

    async def get_order(self, order_id: str) -> Order:
        return await self.state_machine.store.get(order_id)

    async def list_audit_entries(self, audit_filter: AuditFilter | None = None) -> list[AuditEntry]:
        return await self.ledger.list(audit_filter)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def transition_order(
        self,
        order_id: str,
        expected_version: int,
        target_status: OrderStatus,
        actor: Actor,
    ) -> Order:
        """Move an order to a new fulfillment status.

        Raises:
            NotAuthorized: If the actor is not an admin.
            UnknownOrder, VersionConflict, InvalidTransition, AuditWriteFailed:
                From the state machine; conflicts are not retried here.
        """
        self._require_admin(actor, "order.transition")
        return await self.state_machine.apply(
            order_id,
            expected_version,
            OrderTransition(
                action="order.transition",
                source=TransitionSource.ADMIN,
                status=target_status,
            ),
            actor,
        )

    async def initiate_refund(
        self,
        order_id: str,
        amount: int,
        reason: str,
        actor: Actor,
        currency: str | None = None,
    ) -> Order:
        self._require_admin(actor, "refund.requested")
        return await self.refunds.initiate_refund(
            order_id, amount, reason, actor, currency=currency
        )

    async def verify_payment(
        self,
        order_id: str,
        payment_reference: str,
        actor: Actor,
    ) -> ReconcileResult:
        self._require_admin(actor, "payment.verify")
        return await self.reconciler.verify(order_id, payment_reference, actor=actor)

    @staticmethod
    def _require_admin(actor: Actor | None, action: str) -> None:
        if actor is None or not actor.is_admin:
            logger.warning(
                "Admin action denied",
                actor_id=actor.actor_id if actor else None,
                action=action,
            )
            raise NotAuthorized(actor.actor_id if actor else None, action)


def get_admin_gateway() -> AdminGateway:
    """Get admin gateway instance.

    Returns:
        AdminGateway wired to the current stores and payment gateway.
    """
    return AdminGateway()
