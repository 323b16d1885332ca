"""Audit ledger service.

Append-only record of every state-changing action. A failed append is
reported as ``AuditWriteFailed`` and never hidden, because the mutation it
describes has already been committed.
"""

from typing import Any

import structlog

from orderdesk.domain.entities import AuditEntry, Order
from orderdesk.domain.exceptions import AuditWriteFailed
from orderdesk.domain.value_objects import Actor
from orderdesk.infrastructure.audit_store import AuditFilter, AuditStore, get_audit_store

logger = structlog.get_logger()


class AuditLedger:
    """Writes and lists audit entries."""

    def __init__(self, store: AuditStore | None = None) -> None:
        self.store = store or get_audit_store()

    async def record(
        self,
        action: str,
        actor: Actor,
        before: Order,
        after: Order,
        metadata: dict[str, Any] | None = None,
    ) -> AuditEntry:
        """Append the audit entry for an order mutation that already committed.

        Args:
            action: Action name (e.g. 'order.transition').
            actor: Who performed the action.
            before: Snapshot read before the write.
            after: Snapshot that was written.
            metadata: Extra context stored with the after snapshot.

        Returns:
            The stored entry.

        Raises:
            AuditWriteFailed: If the store could not append the entry. The
                error carries ``after`` so callers can still report it.
        """
        after_state = after.state_snapshot()
        if metadata:
            after_state["metadata"] = metadata
        entry = AuditEntry(
            actor_id=actor.actor_id,
            action=action,
            resource_type="order",
            resource_id=after.id,
            before=before.state_snapshot(),
            after=after_state,
            resource_version=after.version,
            request_metadata={k: v for k, v in actor.request_metadata().items() if v is not None},
        )
        try:
            return await self.store.append(entry)
        except Exception as e:
            logger.error(
                "Audit write failed after committed mutation",
                order_id=after.id,
                version=after.version,
                action=action,
                actor_id=actor.actor_id,
                error=str(e),
            )
            raise AuditWriteFailed(after.id, after.version, action, str(e), order=after) from e

    async def list(self, audit_filter: AuditFilter | None = None) -> list[AuditEntry]:
        """Entries newest first."""
        return await self.store.list(audit_filter)
