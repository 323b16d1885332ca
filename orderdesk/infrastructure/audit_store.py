"""Audit entry persistence.

Append-only: entries are added and listed, never updated or deleted.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orderdesk.domain.entities import AuditEntry
from orderdesk.infrastructure.models import AuditEntryModel, as_utc


@dataclass(frozen=True)
class AuditFilter:
    """Filter for audit listings. Results are always newest first."""

    resource_type: str | None = None
    resource_id: str | None = None
    actor_id: str | None = None
    action: str | None = None
    limit: int = 50

    def matches(self, entry: AuditEntry) -> bool:
        return (
            (self.resource_type is None or entry.resource_type == self.resource_type)
            and (self.resource_id is None or entry.resource_id == self.resource_id)
            and (self.actor_id is None or entry.actor_id == self.actor_id)
            and (self.action is None or entry.action == self.action)
        )


class AuditStore(ABC):
    """Persistence interface for audit entries."""

    @abstractmethod
    async def append(self, entry: AuditEntry) -> AuditEntry:
        """Append one entry."""

    @abstractmethod
    async def list(self, audit_filter: AuditFilter | None = None) -> list[AuditEntry]:
        """List entries newest first."""


class InMemoryAuditStore(AuditStore):
    """In-memory audit store for local runs and tests."""

    def __init__(self) -> None:
        self._entries: list[AuditEntry] = []

    async def append(self, entry: AuditEntry) -> AuditEntry:
        self._entries.append(entry)
        return entry

    async def list(self, audit_filter: AuditFilter | None = None) -> list[AuditEntry]:
        audit_filter = audit_filter or AuditFilter()
        matched = [e for e in reversed(self._entries) if audit_filter.matches(e)]
        return matched[: audit_filter.limit]


class SqlAlchemyAuditStore(AuditStore):
    """Audit store backed by the ``audit_entries`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append(self, entry: AuditEntry) -> AuditEntry:
        async with self._session_factory() as session:
            session.add(
                AuditEntryModel(
                    id=entry.id,
                    actor_id=entry.actor_id,
                    action=entry.action,
                    resource_type=entry.resource_type,
                    resource_id=entry.resource_id,
                    before=entry.before,
                    after=entry.after,
                    resource_version=entry.resource_version,
                    request_metadata=entry.request_metadata,
                    created_at=entry.created_at,
                )
            )
            await session.commit()
        return entry

    async def list(self, audit_filter: AuditFilter | None = None) -> list[AuditEntry]:
        audit_filter = audit_filter or AuditFilter()
        query = select(AuditEntryModel)
        if audit_filter.resource_type is not None:
            query = query.where(AuditEntryModel.resource_type == audit_filter.resource_type)
        if audit_filter.resource_id is not None:
            query = query.where(AuditEntryModel.resource_id == audit_filter.resource_id)
        if audit_filter.actor_id is not None:
            query = query.where(AuditEntryModel.actor_id == audit_filter.actor_id)
        if audit_filter.action is not None:
            query = query.where(AuditEntryModel.action == audit_filter.action)
        query = query.order_by(AuditEntryModel.seq.desc()).limit(audit_filter.limit)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return [
                AuditEntry(
                    id=row.id,
                    actor_id=row.actor_id,
                    action=row.action,
                    resource_type=row.resource_type,
                    resource_id=row.resource_id,
                    before=row.before,
                    after=row.after,
                    resource_version=row.resource_version,
                    request_metadata=row.request_metadata or {},
                    created_at=as_utc(row.created_at),
                )
                for row in result.scalars().all()
            ]


# ============================================================================
# Store Factory
# ============================================================================

_audit_store: AuditStore | None = None


def get_audit_store() -> AuditStore:
    """Get the audit store singleton."""
    global _audit_store
    if _audit_store is None:
        from orderdesk.infrastructure.config import settings

        if settings.use_database:
            from orderdesk.infrastructure.database import get_session_factory

            _audit_store = SqlAlchemyAuditStore(get_session_factory())
        else:
            _audit_store = InMemoryAuditStore()
    return _audit_store


def set_audit_store(store: AuditStore) -> None:
    """Install a specific store (tests)."""
    global _audit_store
    _audit_store = store


def reset_audit_store() -> None:
    """Reset audit store (for testing)."""
    global _audit_store
    _audit_store = InMemoryAuditStore()
