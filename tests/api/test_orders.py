"""Tests for Order API endpoints."""

import pytest

from orderdesk.domain.value_objects import Money
from orderdesk.infrastructure.payment_gateway import (
    GatewayUnavailable,
    PaymentOutcome,
    PaymentVerification,
)


class TestListOrders:
    """Tests for GET /orders endpoint."""

    def test_list_orders_empty(self, auth_client):
        response = auth_client.get("/orders")
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 0
        assert data["items"] == []
        assert data["page"] == 1
        assert data["has_more"] is False

    @pytest.mark.asyncio
    async def test_list_orders_with_data(self, auth_client, pending_order):
        order = await pending_order()

        response = auth_client.get("/orders")
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        item = data["items"][0]
        assert item["id"] == order.id
        assert item["status"] == "pending"
        assert item["payment_status"] == "pending"
        assert item["refund_status"] is None
        assert item["total"] == {"amount": 50000, "currency": "INR"}
        assert item["version"] == 1

    @pytest.mark.asyncio
    async def test_list_orders_pagination(self, auth_client, pending_order):
        for _ in range(5):
            await pending_order()

        response = auth_client.get("/orders?page=1&page_size=2")
        data = response.json()
        assert data["total"] == 5
        assert len(data["items"]) == 2
        assert data["has_more"] is True

        response = auth_client.get("/orders?page=3&page_size=2")
        data = response.json()
        assert len(data["items"]) == 1
        assert data["has_more"] is False

    @pytest.mark.asyncio
    async def test_list_orders_filter_by_payment_status(self, auth_client, pending_order, paid_order):
        await pending_order()
        paid = await paid_order()

        response = auth_client.get("/orders?payment_status=paid")
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["id"] == paid.id

        response = auth_client.get("/orders?payment_status=pending")
        assert response.json()["total"] == 1

    def test_list_orders_invalid_status_filter(self, auth_client):
        response = auth_client.get("/orders?status=teleported")
        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR"


class TestGetOrder:
    """Tests for GET /orders/{id} endpoint."""

    @pytest.mark.asyncio
    async def test_get_order_success(self, auth_client, paid_order):
        order = await paid_order()

        response = auth_client.get(f"/orders/{order.id}")
        assert response.status_code == 200
        data = response.json()
        assert data["id"] == order.id
        assert data["payment_status"] == "paid"
        assert data["payment_reference"] == "pay_1"
        assert data["version"] == 2
        assert data["items"][0]["product_name"] == "Handloom saree"
        assert data["items"][0]["line_total"] == {"amount": 50000, "currency": "INR"}
        assert data["refund"] is None

    def test_get_order_not_found(self, auth_client):
        response = auth_client.get("/orders/ord_missing")
        assert response.status_code == 404
        data = response.json()
        assert data["error_code"] == "ORDER_NOT_FOUND"
        assert data["category"] == "not_found"


class TestTransitionOrder:
    """Tests for POST /orders/{id}/transition endpoint."""

    @pytest.mark.asyncio
    async def test_transition_success(self, auth_client, paid_order, admin_headers):
        order = await paid_order()

        response = auth_client.post(
            f"/orders/{order.id}/transition",
            json={"expected_version": 2, "target_status": "processing"},
            headers=admin_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "processing"
        assert data["version"] == 3

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(self, auth_client, paid_order, admin_headers):
        order = await paid_order()

        response = auth_client.post(
            f"/orders/{order.id}/transition",
            json={"expected_version": 1, "target_status": "processing"},
            headers=admin_headers,
        )
        assert response.status_code == 409
        data = response.json()
        assert data["error_code"] == "VERSION_CONFLICT"
        assert data["category"] == "conflict"

    @pytest.mark.asyncio
    async def test_invalid_transition(self, auth_client, pending_order, admin_headers):
        order = await pending_order()

        response = auth_client.post(
            f"/orders/{order.id}/transition",
            json={"expected_version": 1, "target_status": "delivered"},
            headers=admin_headers,
        )
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_TRANSITION"

    @pytest.mark.asyncio
    async def test_paid_order_cannot_be_cancelled(self, auth_client, paid_order, admin_headers):
        order = await paid_order()

        response = auth_client.post(
            f"/orders/{order.id}/transition",
            json={"expected_version": 2, "target_status": "cancelled"},
            headers=admin_headers,
        )
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_TRANSITION"

    @pytest.mark.asyncio
    async def test_refunded_status_not_reachable_by_admin(self, auth_client, paid_order, admin_headers):
        order = await paid_order()

        response = auth_client.post(
            f"/orders/{order.id}/transition",
            json={"expected_version": 2, "target_status": "refunded"},
            headers=admin_headers,
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_non_admin_forbidden(self, auth_client, pending_order, staff_headers):
        order = await pending_order()

        response = auth_client.post(
            f"/orders/{order.id}/transition",
            json={"expected_version": 1, "target_status": "processing"},
            headers=staff_headers,
        )
        assert response.status_code == 403
        assert response.json()["error_code"] == "FORBIDDEN"

        response = auth_client.get(f"/orders/{order.id}")
        assert response.json()["version"] == 1

    @pytest.mark.asyncio
    async def test_missing_actor(self, auth_client, pending_order):
        order = await pending_order()

        response = auth_client.post(
            f"/orders/{order.id}/transition",
            json={"expected_version": 1, "target_status": "processing"},
        )
        assert response.status_code == 401
        assert response.json()["error_code"] == "MISSING_ACTOR"

    def test_unknown_order(self, auth_client, admin_headers):
        response = auth_client.post(
            "/orders/ord_missing/transition",
            json={"expected_version": 1, "target_status": "processing"},
            headers=admin_headers,
        )
        assert response.status_code == 404

    def test_version_must_be_positive(self, auth_client, admin_headers):
        response = auth_client.post(
            "/orders/ord_any/transition",
            json={"expected_version": 0, "target_status": "processing"},
            headers=admin_headers,
        )
        assert response.status_code == 422


class TestCreateRefund:
    """Tests for POST /orders/{id}/refunds endpoint."""

    @pytest.mark.asyncio
    async def test_refund_created(self, auth_client, paid_order, admin_headers, fake_gateway):
        order = await paid_order()

        response = auth_client.post(
            f"/orders/{order.id}/refunds",
            json={"amount": 50000, "reason": "damaged in transit"},
            headers=admin_headers,
        )
        assert response.status_code == 201
        data = response.json()
        assert data["refund"]["refund_status"] == "pending"
        assert data["refund"]["refund_id"] == "rfnd_gw_1"
        assert data["refund"]["amount"] == {"amount": 50000, "currency": "INR"}
        assert data["refund"]["attempt"] == 1
        assert data["payment_status"] == "paid"
        assert data["version"] == 4

        call = fake_gateway.refund_calls[0]
        assert call["reference"] == "pay_1"
        assert call["amount"] == Money(50000, "INR")

    @pytest.mark.asyncio
    async def test_refund_over_total_rejected(self, auth_client, paid_order, admin_headers, fake_gateway):
        order = await paid_order()

        response = auth_client.post(
            f"/orders/{order.id}/refunds",
            json={"amount": 50001, "reason": "damaged"},
            headers=admin_headers,
        )
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_AMOUNT"
        assert fake_gateway.refund_calls == []

    @pytest.mark.asyncio
    async def test_refund_other_currency_rejected(self, auth_client, paid_order, admin_headers):
        order = await paid_order()

        response = auth_client.post(
            f"/orders/{order.id}/refunds",
            json={"amount": 500, "currency": "USD", "reason": "damaged"},
            headers=admin_headers,
        )
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_AMOUNT"

    @pytest.mark.asyncio
    async def test_unpaid_order_not_refundable(self, auth_client, pending_order, admin_headers):
        order = await pending_order()

        response = auth_client.post(
            f"/orders/{order.id}/refunds",
            json={"amount": 100, "reason": "damaged"},
            headers=admin_headers,
        )
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_STATE"

    @pytest.mark.asyncio
    async def test_gateway_down_returns_bad_gateway(
        self, auth_client, paid_order, admin_headers, fake_gateway
    ):
        order = await paid_order()
        fake_gateway.fail_refunds(3)

        response = auth_client.post(
            f"/orders/{order.id}/refunds",
            json={"amount": 50000, "reason": "damaged"},
            headers=admin_headers,
        )
        assert response.status_code == 502
        assert response.json()["error_code"] == "REFUND_DISPATCH_FAILED"

        stored = auth_client.get(f"/orders/{order.id}").json()
        assert stored["refund"]["refund_status"] == "failed"
        assert stored["refund"]["dispatch_error"]

    @pytest.mark.asyncio
    async def test_non_admin_forbidden(self, auth_client, paid_order, staff_headers, fake_gateway):
        order = await paid_order()

        response = auth_client.post(
            f"/orders/{order.id}/refunds",
            json={"amount": 50000, "reason": "damaged"},
            headers=staff_headers,
        )
        assert response.status_code == 403
        assert fake_gateway.refund_calls == []


class TestVerifyPayment:
    """Tests for POST /orders/{id}/verify-payment endpoint."""

    @pytest.mark.asyncio
    async def test_captured_payment_applied(self, auth_client, pending_order, admin_headers, fake_gateway):
        order = await pending_order()
        fake_gateway.verifications["pay_9"] = PaymentVerification(
            reference="pay_9",
            outcome=PaymentOutcome.PAID,
            amount=Money(50000, "INR"),
        )

        response = auth_client.post(
            f"/orders/{order.id}/verify-payment",
            json={"payment_reference": "pay_9"},
            headers=admin_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["outcome"] == "paid"
        assert data["applied"] is True
        assert data["order"]["payment_status"] == "paid"
        assert data["order"]["payment_reference"] == "pay_9"

    @pytest.mark.asyncio
    async def test_pending_payment_leaves_order(self, auth_client, pending_order, admin_headers):
        order = await pending_order()

        response = auth_client.post(
            f"/orders/{order.id}/verify-payment",
            json={"payment_reference": "pay_9"},
            headers=admin_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["outcome"] == "pending"
        assert data["applied"] is False
        assert data["order"]["version"] == 1

    @pytest.mark.asyncio
    async def test_unreachable_gateway(self, auth_client, pending_order, admin_headers, fake_gateway):
        order = await pending_order()
        fake_gateway.verify_errors.extend(
            GatewayUnavailable("verify_payment", "Timed out") for _ in range(3)
        )

        response = auth_client.post(
            f"/orders/{order.id}/verify-payment",
            json={"payment_reference": "pay_9"},
            headers=admin_headers,
        )
        assert response.status_code == 503
        assert response.json()["error_code"] == "RECONCILIATION_UNRESOLVED"
