"""Pydantic schemas for API request/response models.

These schemas define the public API contract for the admin console and the
payment gateway callbacks.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

# ============================================================================
# Common Schemas
# ============================================================================


class PriceSchema(BaseModel):
    """Price representation in minor units."""

    amount: int = Field(..., description="Amount in the currency's minor unit (e.g. paise)")
    currency: str = Field(..., min_length=3, max_length=3, description="ISO-4217 currency code")


class ErrorResponse(BaseModel):
    """Standard error response."""

    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    category: str | None = Field(
        default=None,
        description="validation, not_found, authorization, conflict, upstream or integrity",
    )
    details: dict[str, Any] | list[Any] = Field(
        default_factory=dict, description="Additional error context"
    )
    request_id: str | None = Field(default=None, description="Request ID for correlation")


class PaginatedResponse(BaseModel):
    """Base paginated response."""

    total: int = Field(..., description="Total number of items")
    page: int = Field(..., description="Current page number")
    page_size: int = Field(..., description="Items per page")
    has_more: bool = Field(..., description="Whether there are more pages")


# ============================================================================
# Order Schemas
# ============================================================================


class OrderStatusEnum(str, Enum):
    """Order fulfillment status values."""

    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatusEnum(str, Enum):
    """Payment status values."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class RefundStatusEnum(str, Enum):
    """Refund status values."""

    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class OrderItemSchema(BaseModel):
    """Line item in an order."""

    product_id: str = Field(..., description="Product identifier")
    product_name: str = Field(..., description="Product name at time of order")
    quantity: int = Field(..., description="Quantity ordered")
    unit_price: PriceSchema = Field(..., description="Price per unit")
    line_total: PriceSchema = Field(..., description="Total for this line")


class RefundSchema(BaseModel):
    """Current refund attempt on an order."""

    refund_id: str | None = Field(default=None, description="Gateway refund id, once acknowledged")
    amount: PriceSchema = Field(..., description="Refund amount")
    reason: str = Field(..., description="Refund reason")
    refund_status: RefundStatusEnum = Field(..., description="Refund status")
    attempt: int = Field(..., description="1-based attempt number")
    requested_at: datetime = Field(..., description="When the refund was requested")
    resolved_at: datetime | None = Field(default=None, description="When the gateway settled it")
    dispatch_error: str | None = Field(
        default=None, description="Why the gateway call failed, if it did"
    )


class OrderResponse(BaseModel):
    """Full order details."""

    id: str = Field(..., description="Order identifier")
    user_id: str = Field(..., description="Owning user")
    status: OrderStatusEnum = Field(..., description="Fulfillment status")
    payment_status: PaymentStatusEnum = Field(..., description="Payment status")
    payment_reference: str | None = Field(default=None, description="Gateway payment id")
    items: list[OrderItemSchema] = Field(..., description="Line items")
    total: PriceSchema = Field(..., description="Order total")
    refund: RefundSchema | None = Field(default=None, description="Current refund attempt")
    version: int = Field(..., description="Version to send back with the next change")
    created_at: datetime = Field(..., description="When the order was created")
    updated_at: datetime = Field(..., description="When the order last changed")


class OrderSummarySchema(BaseModel):
    """Order summary for list views."""

    id: str = Field(..., description="Order identifier")
    user_id: str = Field(..., description="Owning user")
    status: OrderStatusEnum = Field(..., description="Fulfillment status")
    payment_status: PaymentStatusEnum = Field(..., description="Payment status")
    refund_status: RefundStatusEnum | None = Field(default=None, description="Refund status")
    total: PriceSchema = Field(..., description="Order total")
    item_count: int = Field(..., description="Number of units")
    version: int = Field(..., description="Current version")
    created_at: datetime = Field(..., description="When the order was created")


class OrdersListResponse(PaginatedResponse):
    """Paginated list of orders."""

    items: list[OrderSummarySchema] = Field(..., description="List of orders")


class OrderTransitionRequest(BaseModel):
    """Request to move an order to a new status."""

    expected_version: int = Field(..., ge=1, description="Version the change is based on")
    target_status: OrderStatusEnum = Field(..., description="Target fulfillment status")


class RefundCreateRequest(BaseModel):
    """Request to refund an order."""

    amount: int = Field(..., description="Refund amount in the order's minor units")
    currency: str | None = Field(
        default=None,
        min_length=3,
        max_length=3,
        description="Optional currency; must equal the order currency",
    )
    reason: str = Field(..., min_length=1, max_length=500, description="Reason for the refund")


class VerifyPaymentRequest(BaseModel):
    """Request to poll the gateway for a payment."""

    payment_reference: str = Field(..., min_length=1, description="Gateway payment id")


class VerifyPaymentResponse(BaseModel):
    """Result of polling the gateway for a payment."""

    outcome: PaymentStatusEnum = Field(..., description="Outcome reported by the gateway")
    applied: bool = Field(..., description="Whether the order changed")
    order: OrderResponse = Field(..., description="Order after reconciliation")


# ============================================================================
# Audit Schemas
# ============================================================================


class AuditEntrySchema(BaseModel):
    """Audit ledger entry."""

    id: str = Field(..., description="Entry identifier")
    actor_id: str = Field(..., description="Who performed the action")
    action: str = Field(..., description="Action name")
    resource_type: str = Field(..., description="Type of the changed resource")
    resource_id: str = Field(..., description="Id of the changed resource")
    before: dict[str, Any] | None = Field(default=None, description="State before the action")
    after: dict[str, Any] | None = Field(default=None, description="State after the action")
    resource_version: int | None = Field(default=None, description="Version written")
    request_metadata: dict[str, Any] = Field(
        default_factory=dict, description="Client address, user agent and request id"
    )
    created_at: datetime = Field(..., description="When the entry was written")


class AuditEntriesListResponse(BaseModel):
    """Audit entries, newest first."""

    items: list[AuditEntrySchema] = Field(..., description="Audit entries")
    count: int = Field(..., description="Number of entries returned")


# ============================================================================
# Gateway Webhook Schemas
# ============================================================================


class GatewayEventData(BaseModel):
    """Payment or refund details carried by a gateway notification."""

    order_id: str = Field(..., description="Store order id (correlation id)")
    payment_id: str = Field(..., description="Gateway payment id")
    refund_id: str | None = Field(default=None, description="Gateway refund id")
    amount: int | None = Field(default=None, ge=0, description="Amount in minor units")
    currency: str | None = Field(default=None, min_length=3, max_length=3, description="Currency")


class GatewayWebhookPayload(BaseModel):
    """Incoming gateway notification."""

    event_id: str = Field(..., min_length=1, description="Unique event identifier")
    event_type: str = Field(..., description="Event type (e.g., payment.captured)")
    occurred_at: datetime = Field(..., description="Event timestamp")
    data: GatewayEventData = Field(..., description="Event details")

    @model_validator(mode="after")
    def _refund_events_carry_refund_id(self) -> "GatewayWebhookPayload":
        if self.event_type.startswith("refund.") and not self.data.refund_id:
            raise ValueError("refund events must carry data.refund_id")
        if (self.data.amount is None) != (self.data.currency is None):
            raise ValueError("amount and currency must be sent together")
        return self


class GatewayWebhookResponse(BaseModel):
    """Response to a gateway notification."""

    success: bool = Field(..., description="Whether the event was accepted")
    event_id: str = Field(..., description="Event ID")
    status: str = Field(..., description="Event status (processed, duplicate, ignored)")
    message: str = Field(..., description="Status message")
    order_id: str | None = Field(default=None, description="Order touched by the event")
    version: int | None = Field(default=None, description="Order version after the event")
