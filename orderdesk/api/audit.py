"""Audit ledger API endpoints.

Read-only access to the audit trail of order changes:
- GET /audit-entries - list entries, newest first
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from orderdesk.api.schemas import AuditEntriesListResponse, AuditEntrySchema, ErrorResponse
from orderdesk.application.admin_gateway import AdminGateway, get_admin_gateway
from orderdesk.domain.entities import AuditEntry
from orderdesk.infrastructure.audit_store import AuditFilter

router = APIRouter(prefix="/audit-entries", tags=["Audit"])


def get_service() -> AdminGateway:
    """Get admin gateway."""
    return get_admin_gateway()


def entry_to_schema(entry: AuditEntry) -> AuditEntrySchema:
    return AuditEntrySchema(
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


@router.get(
    "",
    response_model=AuditEntriesListResponse,
    responses={401: {"model": ErrorResponse}},
    summary="List audit entries",
    description="List audit entries newest first, optionally filtered by resource, actor or action.",
)
async def list_audit_entries(
    service: Annotated[AdminGateway, Depends(get_service)],
    resource_type: str | None = Query(default=None, description="Filter by resource type"),
    resource_id: str | None = Query(default=None, description="Filter by resource id"),
    actor_id: str | None = Query(default=None, description="Filter by actor"),
    action: str | None = Query(default=None, description="Filter by action name"),
    limit: int = Query(default=50, ge=1, le=500, description="Maximum entries to return"),
) -> AuditEntriesListResponse:
    entries = await service.list_audit_entries(
        AuditFilter(
            resource_type=resource_type,
            resource_id=resource_id,
            actor_id=actor_id,
            action=action,
            limit=limit,
        )
    )
    return AuditEntriesListResponse(
        items=[entry_to_schema(entry) for entry in entries],
        count=len(entries),
    )
