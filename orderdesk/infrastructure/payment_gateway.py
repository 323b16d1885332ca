"""Payment gateway adapter.

Wraps the external payment provider behind a narrow interface:
create a payment, verify a payment, create a refund. All amounts cross
this boundary as ``Money`` (integer minor units with an explicit currency);
a response in a currency other than the one requested is rejected rather
than converted.
"""

import hashlib
import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
import structlog

from orderdesk.domain.value_objects import Money, normalize_currency
from orderdesk.infrastructure.config import settings

logger = structlog.get_logger()


# ============================================================================
# Errors
# ============================================================================


class GatewayError(Exception):
    """Error from a payment gateway call."""

    transient: bool = False

    def __init__(self, operation: str, message: str, status_code: int | None = None) -> None:
        self.operation = operation
        self.message = message
        self.status_code = status_code
        super().__init__(f"[{operation}] {message}")


class GatewayUnavailable(GatewayError):
    """Timeout, connection failure, 5xx or 429. Safe to retry idempotently."""

    transient = True


class GatewayRejected(GatewayError):
    """The gateway refused the request. Retrying will not help."""


# ============================================================================
# Results
# ============================================================================


class PaymentOutcome(str, Enum):
    """Payment state as reported by the gateway."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


# Gateway payment states mapped to outcomes
_PAYMENT_STATES: dict[str, PaymentOutcome] = {
    "created": PaymentOutcome.PENDING,
    "authorized": PaymentOutcome.PENDING,
    "captured": PaymentOutcome.PAID,
    "refunded": PaymentOutcome.PAID,
    "failed": PaymentOutcome.FAILED,
}


def _require_id(operation: str, data: dict[str, Any]) -> str:
    """The ``id`` of a gateway object, which every successful reply carries."""
    value = data.get("id")
    if not isinstance(value, str) or not value:
        raise GatewayRejected(operation, f"Gateway response has no id: {data!r}"[:300])
    return value


@dataclass(frozen=True)
class PaymentVerification:
    """Result of verifying a payment with the gateway."""

    reference: str
    outcome: PaymentOutcome
    amount: Money | None = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "PaymentVerification":
        """Create from API response data."""
        state = str(data.get("status", "")).lower()
        outcome = _PAYMENT_STATES.get(state)
        if outcome is None:
            raise GatewayRejected("verify_payment", f"Unknown payment status: {state!r}")
        amount = None
        if data.get("amount") is not None and data.get("currency"):
            try:
                amount = Money(amount=int(data["amount"]), currency=data["currency"])
            except (TypeError, ValueError) as e:
                raise GatewayRejected("verify_payment", f"Unreadable payment amount: {e}") from e
        return cls(reference=_require_id("verify_payment", data), outcome=outcome, amount=amount)


# ============================================================================
# Gateway Interface
# ============================================================================


class PaymentGateway(ABC):
    """Narrow interface over the payment provider."""

    @abstractmethod
    async def create_payment(self, amount: Money, order_id: str) -> str:
        """Create a payment for an order and return its reference."""

    @abstractmethod
    async def verify_payment(self, reference: str) -> PaymentVerification:
        """Ask the gateway for the current state of a payment."""

    @abstractmethod
    async def create_refund(
        self,
        reference: str,
        amount: Money,
        reason: str,
        idempotency_key: str,
    ) -> str:
        """Refund a captured payment and return the gateway refund id.

        The same ``idempotency_key`` must never produce two refunds.
        """

    async def close(self) -> None:
        """Release network resources."""


def _check_currency(operation: str, requested: Money, data: dict[str, Any]) -> None:
    returned = data.get("currency")
    if returned is None:
        return
    if normalize_currency(returned) != requested.currency:
        raise GatewayRejected(
            operation,
            f"Gateway answered in {returned}, requested {requested.currency}",
        )


class HttpPaymentGateway(PaymentGateway):
    """HTTP client for the payment provider's REST API.

    Authenticates with the key id and secret as basic auth. Every call is
    bounded by ``timeout``; timeouts, connection errors, 5xx and 429 surface
    as ``GatewayUnavailable``, any other non-2xx as ``GatewayRejected``.
    """

    def __init__(
        self,
        base_url: str | None = None,
        key_id: str | None = None,
        key_secret: str | None = None,
        timeout: float | None = None,
        request_id: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize gateway client.

        Args:
            base_url: Gateway API root.
            key_id: API key id.
            key_secret: API key secret.
            timeout: Request timeout in seconds.
            request_id: Optional request ID for correlation.
            transport: Optional httpx transport (tests use ``httpx.MockTransport``).
        """
        self.base_url = base_url or settings.gateway_base_url
        self.key_id = key_id or settings.gateway_key_id
        self.key_secret = key_secret or settings.gateway_key_secret
        self.timeout = timeout or settings.gateway_timeout_seconds
        self.request_id = request_id
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {}
            if self.request_id:
                headers["X-Request-ID"] = self.request_id
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=headers,
                auth=httpx.BasicAuth(self.key_id, self.key_secret),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        operation: str,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        try:
            client = await self._get_client()
            response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("Gateway request timed out", operation=operation, url=url)
            raise GatewayUnavailable(operation, f"Timed out: {e}") from e
        except httpx.RequestError as e:
            logger.error("Gateway request failed", operation=operation, url=url, error=str(e))
            raise GatewayUnavailable(operation, f"Request failed: {e}") from e

        if response.status_code >= 500 or response.status_code == 429:
            raise GatewayUnavailable(
                operation,
                f"Gateway unavailable: {response.text}",
                response.status_code,
            )
        if response.status_code >= 400:
            raise GatewayRejected(
                operation,
                f"Gateway rejected request: {response.text}",
                response.status_code,
            )
        try:
            data = response.json()
        except ValueError as e:
            logger.error(
                "Gateway returned an unreadable body",
                operation=operation,
                url=url,
                status_code=response.status_code,
            )
            raise GatewayRejected(
                operation,
                f"Malformed gateway response: {response.text[:200]}",
                response.status_code,
            ) from e
        if not isinstance(data, dict):
            raise GatewayRejected(
                operation,
                f"Malformed gateway response: expected an object, got {type(data).__name__}",
                response.status_code,
            )
        return data

    async def create_payment(self, amount: Money, order_id: str) -> str:
        """Create a gateway order for the amount.

        Args:
            amount: Amount to collect.
            order_id: Store order id, sent as the receipt for correlation.

        Returns:
            Gateway payment reference.

        Raises:
            GatewayError: On API error.
        """
        data = await self._request(
            "create_payment",
            "POST",
            "/orders",
            json={
                "amount": amount.amount,
                "currency": amount.currency,
                "receipt": order_id,
                "notes": {"order_id": order_id},
            },
        )
        _check_currency("create_payment", amount, data)
        reference = _require_id("create_payment", data)
        logger.info("Gateway payment created", order_id=order_id, reference=reference)
        return reference

    async def verify_payment(self, reference: str) -> PaymentVerification:
        data = await self._request("verify_payment", "GET", f"/payments/{reference}")
        return PaymentVerification.from_api_response(data)

    async def create_refund(
        self,
        reference: str,
        amount: Money,
        reason: str,
        idempotency_key: str,
    ) -> str:
        """Refund part or all of a captured payment.

        Args:
            reference: Gateway payment id.
            amount: Amount to refund.
            reason: Reason recorded with the refund.
            idempotency_key: Key the gateway uses to deduplicate retries.

        Returns:
            Gateway refund id.

        Raises:
            GatewayError: On API error.
        """
        data = await self._request(
            "create_refund",
            "POST",
            f"/payments/{reference}/refund",
            json={
                "amount": amount.amount,
                "currency": amount.currency,
                "notes": {"reason": reason},
                "receipt": idempotency_key,
            },
            headers={"Idempotency-Key": idempotency_key},
        )
        _check_currency("create_refund", amount, data)
        refund_id = _require_id("create_refund", data)
        logger.info(
            "Gateway refund created",
            reference=reference,
            refund_id=refund_id,
            amount=amount.amount,
            currency=amount.currency,
        )
        return refund_id


# ============================================================================
# Webhook Signatures
# ============================================================================


class WebhookSignatureVerifier:
    """Verifies HMAC signatures on gateway webhook payloads.

    Uses HMAC-SHA256 over the raw request body.
    """

    def __init__(self, secret: str | None = None) -> None:
        """Initialize verifier.

        Args:
            secret: HMAC secret for signature verification.
        """
        self.secret = secret or settings.gateway_webhook_secret

    def sign(self, payload: bytes) -> str:
        """Signature header value for a payload (format: sha256=<hex>)."""
        digest = hmac.new(self.secret.encode(), payload, hashlib.sha256).hexdigest()
        return f"sha256={digest}"

    def verify(self, payload: bytes, signature: str | None) -> bool:
        """Verify the HMAC signature of a webhook payload.

        Args:
            payload: Raw request body.
            signature: Signature header value (format: sha256=<hex>).

        Returns:
            True if signature is valid.
        """
        if not signature:
            logger.warning("Missing webhook signature")
            return False

        # Parse signature format: sha256=<hex_digest>
        parts = signature.split("=", 1)
        if len(parts) != 2 or parts[0] != "sha256":
            logger.warning(
                "Invalid signature format",
                signature_prefix=signature[:20],
            )
            return False

        # Constant-time comparison
        if not hmac.compare_digest(self.sign(payload), signature):
            logger.warning("Webhook signature mismatch")
            return False

        return True


# ============================================================================
# Gateway Factory
# ============================================================================

_payment_gateway: PaymentGateway | None = None


def get_payment_gateway() -> PaymentGateway:
    """Get the payment gateway singleton."""
    global _payment_gateway
    if _payment_gateway is None:
        _payment_gateway = HttpPaymentGateway()
    return _payment_gateway


def set_payment_gateway(gateway: PaymentGateway | None) -> None:
    """Install a specific gateway (tests use a fake)."""
    global _payment_gateway
    _payment_gateway = gateway
