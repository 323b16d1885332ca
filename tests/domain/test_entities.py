"""Tests for domain entities."""

import pytest

from orderdesk.domain import (
    InvalidAmount,
    InvalidState,
    InvalidTransition,
    Order,
    OrderItem,
    OrderStatus,
    OrderTransition,
    PaymentStatus,
    Refund,
    RefundStatus,
    TransitionSource,
)


def paid(order: Order) -> Order:
    updated, _ = order.apply_transition(
        OrderTransition(
            action="payment.reconciled",
            source=TransitionSource.GATEWAY,
            payment_status=PaymentStatus.PAID,
            payment_reference="pay_1",
        )
    )
    return updated


def refund_attempt(attempt: int = 1, amount: int = 50000) -> Refund:
    return Refund(amount=amount, reason="damaged", attempt=attempt, idempotency_key=f"key-{attempt}")


class TestOrderItem:
    def test_line_total_computed(self) -> None:
        item = OrderItem(product_id="p", product_name="Mug", quantity=3, unit_price=250)
        assert item.line_total == 750

    def test_inconsistent_line_total_rejected(self) -> None:
        with pytest.raises(ValueError):
            OrderItem(product_id="p", product_name="Mug", quantity=3, unit_price=250, line_total=700)

    def test_zero_quantity_rejected(self) -> None:
        with pytest.raises(ValueError):
            OrderItem(product_id="p", product_name="Mug", quantity=0, unit_price=250)


class TestOrderCreate:
    def test_create_sets_initial_state(self, make_order) -> None:
        order = make_order()
        assert order.status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.PENDING
        assert order.version == 1
        assert order.total == 50000
        assert order.currency == "INR"
        assert order.refund is None

    def test_total_must_match_items(self) -> None:
        item = OrderItem(product_id="p", product_name="Mug", quantity=1, unit_price=100)
        with pytest.raises(ValueError):
            Order(id="o-1", user_id="u", currency="USD", items=(item,), total=999)

    def test_requires_items(self) -> None:
        with pytest.raises(ValueError):
            Order.create(user_id="u", currency="USD", items=[])


class TestApplyTransition:
    def test_admin_transition_increments_version(self, make_order) -> None:
        order = make_order()
        updated, changes = order.apply_transition(
            OrderTransition(
                action="order.transition",
                source=TransitionSource.ADMIN,
                status=OrderStatus.PROCESSING,
            )
        )
        assert updated.status == OrderStatus.PROCESSING
        assert updated.version == 2
        assert [c.to_dict() for c in changes] == [
            {"field": "status", "from": "pending", "to": "processing"}
        ]
        # Snapshots are immutable
        assert order.status == OrderStatus.PENDING

    def test_payment_leaves_status_unchanged(self, make_order) -> None:
        updated = paid(make_order())
        assert updated.payment_status == PaymentStatus.PAID
        assert updated.payment_reference == "pay_1"
        assert updated.status == OrderStatus.PENDING
        assert updated.version == 2

    def test_noop_transition_rejected(self, make_order) -> None:
        order = make_order()
        with pytest.raises(InvalidTransition):
            order.apply_transition(
                OrderTransition(
                    action="order.transition",
                    source=TransitionSource.ADMIN,
                    status=OrderStatus.PENDING,
                )
            )

    def test_cannot_cancel_captured_payment(self, make_order) -> None:
        order = paid(make_order())
        with pytest.raises(InvalidTransition) as exc_info:
            order.apply_transition(
                OrderTransition(
                    action="order.transition",
                    source=TransitionSource.ADMIN,
                    status=OrderStatus.CANCELLED,
                )
            )
        assert "refunded, not cancelled" in exc_info.value.details["reason"]

    def test_payment_reference_set_once(self, make_order) -> None:
        order = paid(make_order())
        with pytest.raises(InvalidTransition):
            order.apply_transition(
                OrderTransition(
                    action="payment.reconciled",
                    source=TransitionSource.GATEWAY,
                    payment_status=PaymentStatus.FAILED,
                    payment_reference="pay_other",
                )
            )

    def test_refund_amount_bounded_by_total(self, make_order) -> None:
        order = paid(make_order())
        with pytest.raises(InvalidAmount):
            order.apply_transition(
                OrderTransition(
                    action="refund.requested",
                    source=TransitionSource.REFUND,
                    refund=refund_attempt(amount=50001),
                )
            )

    def test_refund_slot_blocks_second_attempt(self, make_order) -> None:
        order = paid(make_order())
        reserved, _ = order.apply_transition(
            OrderTransition(
                action="refund.requested",
                source=TransitionSource.REFUND,
                refund=refund_attempt(1),
            )
        )
        assert reserved.has_active_refund
        with pytest.raises(InvalidState):
            reserved.apply_transition(
                OrderTransition(
                    action="refund.requested",
                    source=TransitionSource.REFUND,
                    refund=refund_attempt(2),
                )
            )

    def test_failed_refund_allows_new_attempt(self, make_order) -> None:
        order = paid(make_order())
        reserved, _ = order.apply_transition(
            OrderTransition(
                action="refund.requested",
                source=TransitionSource.REFUND,
                refund=refund_attempt(1),
            )
        )
        failed, _ = reserved.apply_transition(
            OrderTransition(
                action="refund.resolved",
                source=TransitionSource.REFUND,
                refund=reserved.refund.resolve(RefundStatus.FAILED),
            )
        )
        assert not failed.has_active_refund
        retried, _ = failed.apply_transition(
            OrderTransition(
                action="refund.requested",
                source=TransitionSource.REFUND,
                refund=refund_attempt(2),
            )
        )
        assert retried.refund.attempt == 2
        assert retried.version == 4

    def test_refunded_requires_refunded_payment(self, make_order) -> None:
        order = paid(make_order())
        with pytest.raises(InvalidTransition):
            order.apply_transition(
                OrderTransition(
                    action="refund.resolved",
                    source=TransitionSource.REFUND,
                    status=OrderStatus.REFUNDED,
                )
            )

    def test_state_snapshot(self, make_order) -> None:
        snapshot = paid(make_order()).state_snapshot()
        assert snapshot == {
            "status": "pending",
            "payment_status": "paid",
            "payment_reference": "pay_1",
            "refund": None,
            "version": 2,
        }


class TestRefund:
    def test_acknowledged_once_id_set(self) -> None:
        refund = refund_attempt()
        assert not refund.acknowledged
        assert refund.with_refund_id("rf_1").acknowledged

    def test_dispatch_failed_marks_failed(self) -> None:
        failed = refund_attempt().dispatch_failed("timeout")
        assert failed.status == RefundStatus.FAILED
        assert failed.dispatch_error == "timeout"
        assert failed.resolved_at is not None
