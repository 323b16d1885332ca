"""Webhook receiver endpoints.

Provides:
- POST /webhooks/gateway - receive payment gateway notifications
- GET /webhooks/events/{event_id} - look up a received event
- HMAC signature verification over the raw body
- Deduplication by event_id
"""

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import ValidationError

from orderdesk.api.schemas import ErrorResponse, GatewayWebhookPayload, GatewayWebhookResponse
from orderdesk.application.gateway_events import GatewayEventService, get_gateway_event_service
from orderdesk.domain.events import GatewayEvent, GatewayEventType
from orderdesk.domain.value_objects import Money
from orderdesk.infrastructure.payment_gateway import WebhookSignatureVerifier

logger = structlog.get_logger()

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


# ============================================================================
# Dependencies
# ============================================================================


def get_service() -> GatewayEventService:
    """Get gateway event service."""
    return get_gateway_event_service()


def get_verifier() -> WebhookSignatureVerifier:
    """Get webhook signature verifier."""
    return WebhookSignatureVerifier()


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "/gateway",
    response_model=GatewayWebhookResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Receive gateway webhook",
    description=(
        "Receive a payment or refund notification from the payment gateway. "
        "The body must be signed with HMAC-SHA256 in the X-Gateway-Signature header."
    ),
)
async def receive_gateway_webhook(
    request: Request,
    service: Annotated[GatewayEventService, Depends(get_service)],
    verifier: Annotated[WebhookSignatureVerifier, Depends(get_verifier)],
    x_gateway_signature: Annotated[str | None, Header()] = None,
) -> GatewayWebhookResponse:
    """Receive and process a gateway notification.

    The signature is checked against the raw body before the payload is
    parsed. Events are deduplicated by event_id; a redelivery of an event
    that was already applied returns success with status="duplicate", while
    one that arrives before the first delivery has finished gets a 409 so
    the gateway keeps redelivering. If processing fails the error is
    returned so the gateway redelivers.

    Raises:
        HTTPException: If the signature or payload is invalid.
    """
    correlation_id = getattr(request.state, "request_id", None)
    body = await request.body()

    if not verifier.verify(body, x_gateway_signature):
        logger.warning("Webhook signature verification failed", correlation_id=correlation_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error_code": "INVALID_SIGNATURE",
                "message": "Webhook signature verification failed",
            },
        )

    try:
        payload = GatewayWebhookPayload.model_validate_json(body)
    except ValidationError as e:
        logger.warning("Invalid webhook payload", errors=e.error_count())
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error_code": "INVALID_PAYLOAD",
                "message": "Webhook payload failed validation",
                "details": [
                    {"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()
                ],
            },
        ) from e

    logger.info(
        "Received gateway webhook",
        event_id=payload.event_id,
        event_type=payload.event_type,
        order_id=payload.data.order_id,
        correlation_id=correlation_id,
    )

    try:
        event_type = GatewayEventType(payload.event_type)
    except ValueError:
        # Accept unknown event types so the gateway stops redelivering them
        logger.warning(
            "Unknown gateway event type",
            event_type=payload.event_type,
            event_id=payload.event_id,
        )
        return GatewayWebhookResponse(
            success=True,
            event_id=payload.event_id,
            status="ignored",
            message=f"Unknown event type: {payload.event_type}",
        )

    amount = None
    if payload.data.amount is not None and payload.data.currency is not None:
        amount = Money(payload.data.amount, payload.data.currency)

    event = GatewayEvent(
        event_id=payload.event_id,
        event_type=event_type,
        order_id=payload.data.order_id,
        payment_id=payload.data.payment_id,
        refund_id=payload.data.refund_id,
        amount=amount,
        occurred_at=payload.occurred_at,
    )

    result = await service.process_event(event, correlation_id=correlation_id)

    return GatewayWebhookResponse(
        success=True,
        event_id=result.event_id,
        status=result.status.value,
        message=result.message,
        order_id=result.order.id if result.order else None,
        version=result.order.version if result.order else None,
    )


@router.get(
    "/events/{event_id}",
    response_model=dict,
    responses={
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    summary="Get event status",
    description="Get the processing record of a previously received gateway event.",
)
async def get_event_status(
    event_id: str,
    service: Annotated[GatewayEventService, Depends(get_service)],
) -> dict[str, Any]:
    event_data = await service.event_log.get(event_id)

    if event_data is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error_code": "EVENT_NOT_FOUND",
                "message": f"Event not found: {event_id}",
            },
        )

    return event_data
