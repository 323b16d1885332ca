"""Order state machine service.

The only write path for orders. Validates a requested transition against
the transition tables, persists it with compare-and-set and pairs every
accepted write with an audit entry before returning.
"""

import structlog

from orderdesk.application.audit_ledger import AuditLedger
from orderdesk.domain.entities import Order, OrderTransition
from orderdesk.domain.exceptions import VersionConflict
from orderdesk.domain.value_objects import Actor
from orderdesk.infrastructure.order_store import OrderStore, get_order_store

logger = structlog.get_logger()


class OrderStateMachine:
    """Applies transitions to stored orders."""

    def __init__(
        self,
        store: OrderStore | None = None,
        ledger: AuditLedger | None = None,
    ) -> None:
        """Initialize service.

        Args:
            store: Order store.
            ledger: Audit ledger.
        """
        self.store = store or get_order_store()
        self.ledger = ledger or AuditLedger()

    async def apply(
        self,
        order_id: str,
        expected_version: int,
        transition: OrderTransition,
        actor: Actor,
    ) -> Order:
        """Apply a transition at the version the caller read.

        Args:
            order_id: Order identifier.
            expected_version: Version the caller based the change on.
            transition: Requested change.
            actor: Who is performing the change.

        Returns:
            The updated order, with version incremented by one.

        Raises:
            UnknownOrder: If the order does not exist.
            VersionConflict: If the stored version differs from expected_version.
            InvalidTransition: If the change is not allowed from the current state.
            InvalidAmount: If a refund amount is out of range.
            AuditWriteFailed: If the write committed but its audit entry did not.
        """
        current = await self.store.get(order_id)
        if current.version != expected_version:
            logger.info(
                "Stale order version",
                order_id=order_id,
                expected_version=expected_version,
                actual_version=current.version,
                action=transition.action,
            )
            raise VersionConflict(order_id, expected_version, current.version)

        updated, changes = current.apply_transition(transition)
        await self.store.compare_and_set(updated, expected_version)

        logger.info(
            "Order transition applied",
            order_id=order_id,
            action=transition.action,
            source=transition.source.value,
            changes=[c.to_dict() for c in changes],
            version=updated.version,
            actor_id=actor.actor_id,
        )

        await self.ledger.record(
            action=transition.action,
            actor=actor,
            before=current,
            after=updated,
            metadata=transition.metadata or None,
        )
        return updated
