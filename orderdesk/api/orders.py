"""Order API endpoints for the admin console.

Provides endpoints for order review and administrative actions:
- GET /orders - list orders (paginated, filterable)
- GET /orders/{id} - order details
- POST /orders/{id}/transition - move an order to a new status
- POST /orders/{id}/refunds - refund a paid order
- POST /orders/{id}/verify-payment - poll the gateway for a payment
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status

from orderdesk.api.schemas import (
    ErrorResponse,
    OrderItemSchema,
    OrderResponse,
    OrdersListResponse,
    OrderStatusEnum,
    OrderSummarySchema,
    OrderTransitionRequest,
    PaymentStatusEnum,
    PriceSchema,
    RefundCreateRequest,
    RefundSchema,
    RefundStatusEnum,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from orderdesk.application.admin_gateway import AdminGateway, get_admin_gateway
from orderdesk.domain.entities import Order
from orderdesk.domain.state_machines import OrderStatus, PaymentStatus, RefundStatus
from orderdesk.domain.value_objects import Actor
from orderdesk.infrastructure.order_store import OrderFilter

router = APIRouter(prefix="/orders", tags=["Orders"])

MUTATION_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


# ============================================================================
# Dependencies
# ============================================================================


def get_service() -> AdminGateway:
    """Get admin gateway."""
    return get_admin_gateway()


def get_actor(
    request: Request,
    x_actor_id: Annotated[str | None, Header()] = None,
    x_actor_roles: Annotated[str | None, Header()] = None,
) -> Actor:
    """Resolve the acting identity for this request.

    The upstream auth proxy forwards the authenticated user in
    ``X-Actor-Id`` and a comma-separated role list in ``X-Actor-Roles``.

    Raises:
        HTTPException: If no actor identity was supplied.
    """
    if not x_actor_id or not x_actor_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error_code": "MISSING_ACTOR",
                "message": "X-Actor-Id header is required for this action",
            },
        )
    roles = frozenset(r.strip() for r in (x_actor_roles or "").split(",") if r.strip())
    return Actor(
        actor_id=x_actor_id.strip(),
        roles=roles,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
        request_id=getattr(request.state, "request_id", None),
    )


# ============================================================================
# Converters
# ============================================================================


def order_to_response(order: Order) -> OrderResponse:
    """Convert Order to OrderResponse."""
    refund = None
    if order.refund:
        refund = RefundSchema(
            refund_id=order.refund.refund_id,
            amount=PriceSchema(amount=order.refund.amount, currency=order.currency),
            reason=order.refund.reason,
            refund_status=RefundStatusEnum(order.refund.status.value),
            attempt=order.refund.attempt,
            requested_at=order.refund.requested_at,
            resolved_at=order.refund.resolved_at,
            dispatch_error=order.refund.dispatch_error,
        )

    return OrderResponse(
        id=order.id,
        user_id=order.user_id,
        status=OrderStatusEnum(order.status.value),
        payment_status=PaymentStatusEnum(order.payment_status.value),
        payment_reference=order.payment_reference,
        items=[
            OrderItemSchema(
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price=PriceSchema(amount=item.unit_price, currency=order.currency),
                line_total=PriceSchema(amount=item.line_total, currency=order.currency),
            )
            for item in order.items
        ],
        total=PriceSchema(amount=order.total, currency=order.currency),
        refund=refund,
        version=order.version,
        created_at=order.created_at,
        updated_at=order.updated_at,
    )


def order_to_summary(order: Order) -> OrderSummarySchema:
    """Convert Order to OrderSummarySchema."""
    return OrderSummarySchema(
        id=order.id,
        user_id=order.user_id,
        status=OrderStatusEnum(order.status.value),
        payment_status=PaymentStatusEnum(order.payment_status.value),
        refund_status=RefundStatusEnum(order.refund.status.value) if order.refund else None,
        total=PriceSchema(amount=order.total, currency=order.currency),
        item_count=order.item_count,
        version=order.version,
        created_at=order.created_at,
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.get(
    "",
    response_model=OrdersListResponse,
    responses={401: {"model": ErrorResponse}},
    summary="List orders",
    description="Get a paginated list of orders, newest first, with optional filtering.",
)
async def list_orders(
    service: Annotated[AdminGateway, Depends(get_service)],
    page: int = Query(default=1, ge=1, description="Page number"),
    page_size: int = Query(default=20, ge=1, le=100, description="Items per page"),
    status: OrderStatusEnum | None = Query(default=None, description="Filter by status"),
    payment_status: PaymentStatusEnum | None = Query(
        default=None, description="Filter by payment status"
    ),
    refund_status: RefundStatusEnum | None = Query(
        default=None, description="Filter by refund status"
    ),
    user_id: str | None = Query(default=None, description="Filter by owning user"),
    has_refund: bool | None = Query(default=None, description="Only orders with/without a refund"),
) -> OrdersListResponse:
    order_filter = OrderFilter(
        status=OrderStatus(status.value) if status else None,
        payment_status=PaymentStatus(payment_status.value) if payment_status else None,
        refund_status=RefundStatus(refund_status.value) if refund_status else None,
        user_id=user_id,
        has_refund=has_refund,
        page=page,
        page_size=page_size,
    )
    orders, total = await service.list_orders(order_filter)

    return OrdersListResponse(
        items=[order_to_summary(order) for order in orders],
        total=total,
        page=page,
        page_size=page_size,
        has_more=(page * page_size) < total,
    )


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    responses={
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    summary="Get order details",
    description="Get an order including its items, payment and refund state and version.",
)
async def get_order(
    order_id: str,
    service: Annotated[AdminGateway, Depends(get_service)],
) -> OrderResponse:
    order = await service.get_order(order_id)
    return order_to_response(order)


@router.post(
    "/{order_id}/transition",
    response_model=OrderResponse,
    responses=MUTATION_RESPONSES,
    summary="Transition order",
    description=(
        "Move an order to a new fulfillment status. The request carries the version "
        "the change is based on; a stale version is rejected with 409."
    ),
)
async def transition_order(
    order_id: str,
    request: OrderTransitionRequest,
    service: Annotated[AdminGateway, Depends(get_service)],
    actor: Annotated[Actor, Depends(get_actor)],
) -> OrderResponse:
    """Transition an order.

    Args:
        order_id: Order identifier.
        request: Expected version and target status.
        service: Admin gateway.
        actor: Acting admin.

    Returns:
        Updated order.
    """
    order = await service.transition_order(
        order_id=order_id,
        expected_version=request.expected_version,
        target_status=OrderStatus(request.target_status.value),
        actor=actor,
    )
    return order_to_response(order)


@router.post(
    "/{order_id}/refunds",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    responses={**MUTATION_RESPONSES, 502: {"model": ErrorResponse}},
    summary="Refund order",
    description=(
        "Refund part or all of a paid order. The refund is dispatched to the gateway "
        "immediately and settles later; the order carries it as pending until then."
    ),
)
async def create_refund(
    order_id: str,
    request: RefundCreateRequest,
    service: Annotated[AdminGateway, Depends(get_service)],
    actor: Annotated[Actor, Depends(get_actor)],
) -> OrderResponse:
    order = await service.initiate_refund(
        order_id=order_id,
        amount=request.amount,
        reason=request.reason,
        actor=actor,
        currency=request.currency,
    )
    return order_to_response(order)


@router.post(
    "/{order_id}/verify-payment",
    response_model=VerifyPaymentResponse,
    responses={**MUTATION_RESPONSES, 503: {"model": ErrorResponse}},
    summary="Verify payment",
    description="Ask the gateway for the state of a payment and reconcile the order with it.",
)
async def verify_payment(
    order_id: str,
    request: VerifyPaymentRequest,
    service: Annotated[AdminGateway, Depends(get_service)],
    actor: Annotated[Actor, Depends(get_actor)],
) -> VerifyPaymentResponse:
    result = await service.verify_payment(order_id, request.payment_reference, actor)
    return VerifyPaymentResponse(
        outcome=PaymentStatusEnum(result.outcome.value),
        applied=result.applied,
        order=order_to_response(result.order),
    )
