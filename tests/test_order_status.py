"""
Order state mapping and forward-only progression tests.
"""
import pytest

from storefront.models.order import OrderStatus
from storefront.services.order_status import (
    TERMINAL_ORDER_STATUSES,
    apply_order_state,
    can_advance,
    map_order_state,
)
from storefront.services.payment_status import APPLIED, NO_OP, REJECTED

from tests.factories import make_order


class TestMapOrderState:
    @pytest.mark.parametrize("raw,expected", [
        ("DRAFT", OrderStatus.PENDING),
        ("OPEN", OrderStatus.PROCESSING),
        ("COMPLETED", OrderStatus.COMPLETED),
        ("CANCELED", OrderStatus.CANCELLED),
        (" canceled ", OrderStatus.CANCELLED),
    ])
    def test_known_states(self, raw, expected):
        assert map_order_state(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "PROPOSED", 3])
    def test_unknown_states_map_to_none(self, raw):
        assert map_order_state(raw) is None


class TestCanAdvance:
    def test_forward_moves_allowed(self):
        assert can_advance(OrderStatus.PENDING, OrderStatus.PROCESSING)
        assert can_advance(OrderStatus.READY, OrderStatus.COMPLETED)

    def test_backward_moves_blocked(self):
        assert not can_advance(OrderStatus.READY, OrderStatus.PROCESSING)
        assert not can_advance(OrderStatus.PROCESSING, OrderStatus.PENDING)

    def test_cancel_from_any_open_state(self):
        for status in (OrderStatus.PENDING, OrderStatus.PROCESSING, OrderStatus.READY):
            assert can_advance(status, OrderStatus.CANCELLED)

    def test_terminal_states_never_change(self):
        for current in TERMINAL_ORDER_STATUSES:
            for target in OrderStatus:
                assert not can_advance(current, target)


class TestApplyOrderState:
    def test_applied_sets_status(self):
        order = make_order(status="PROCESSING", payment_status="PAID")
        assert apply_order_state(order, OrderStatus.COMPLETED) == APPLIED
        assert order.status == "COMPLETED"
        assert order.payment_status == "PAID"

    def test_cancel_after_payment_marks_refunded(self):
        order = make_order(status="READY", payment_status="PAID")
        assert apply_order_state(order, OrderStatus.CANCELLED) == APPLIED
        assert order.payment_status == "REFUNDED"

    def test_same_status_is_no_op(self):
        order = make_order(status="PROCESSING")
        assert apply_order_state(order, OrderStatus.PROCESSING) == NO_OP

    def test_missing_target_is_no_op(self):
        order = make_order()
        assert apply_order_state(order, None) == NO_OP
        assert order.status == "PENDING"

    def test_rejected_leaves_order_untouched(self):
        order = make_order(status="COMPLETED", payment_status="PAID")
        assert apply_order_state(order, OrderStatus.CANCELLED) == REJECTED
        assert order.status == "COMPLETED"
        assert order.payment_status == "PAID"
