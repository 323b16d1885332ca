"""Liveness and readiness probes."""

from fastapi import APIRouter
from pydantic import BaseModel

from orderdesk.infrastructure.audit_store import AuditFilter, get_audit_store
from orderdesk.infrastructure.config import settings
from orderdesk.infrastructure.order_store import OrderFilter, get_order_store

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: str
    service: str
    version: str


class ReadinessResponse(BaseModel):
    """Readiness response: which backend the stores run on."""

    status: str
    storage: str


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    return HealthResponse(status="healthy", service="orderdesk-api", version=settings.api_version)


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check() -> ReadinessResponse:
    """Report ready once both stores answer a minimal query.

    A store that cannot be reached raises, which surfaces as a 500 and keeps
    the instance out of rotation.
    """
    await get_order_store().list(OrderFilter(page_size=1))
    await get_audit_store().list(AuditFilter(limit=1))
    return ReadinessResponse(
        status="ready",
        storage="database" if settings.use_database else "memory",
    )
