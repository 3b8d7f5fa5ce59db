import pytest

from foodnow.core.exceptions import InvalidTransition
from foodnow.models import ActorRole, OrderStatus
from foodnow.services.orders import allowed_transitions, is_terminal, validate_transition
from foodnow.services.orders.state_machine import TERMINAL_STATUSES, TRANSITIONS


@pytest.mark.parametrize("current, target, actor", [
    ("pending", "confirmed", "restaurant"),
    ("pending", "cancelled", "restaurant"),
    ("pending", "cancelled", "customer"),
    ("confirmed", "preparing", "restaurant"),
    ("confirmed", "cancelled", "customer"),
    ("preparing", "ready", "restaurant"),
    ("ready", "picked_up", "rider"),
    ("ready", "picked_up", "dispatch"),
    ("picked_up", "delivered", "rider"),
])
def test_legal_transitions(current, target, actor):
    validate_transition(current, target, actor)


def test_wrong_actor_is_rejected_with_allowed_list():
    with pytest.raises(InvalidTransition) as exc_info:
        validate_transition(OrderStatus.PENDING, OrderStatus.CONFIRMED, ActorRole.CUSTOMER)

    err = exc_info.value
    assert err.current == "pending"
    assert err.attempted == "confirmed"
    assert err.actor == "customer"
    assert err.allowed == ["cancelled"]


def test_skipping_a_step_is_rejected():
    with pytest.raises(InvalidTransition):
        validate_transition("pending", "ready", "restaurant")


def test_customer_cannot_cancel_once_preparing():
    with pytest.raises(InvalidTransition):
        validate_transition("preparing", "cancelled", "customer")


@pytest.mark.parametrize("terminal", ["delivered", "cancelled"])
def test_terminal_statuses_never_change(terminal):
    assert is_terminal(terminal)
    for actor in ActorRole:
        assert allowed_transitions(terminal, actor) == []
        with pytest.raises(InvalidTransition) as exc_info:
            validate_transition(terminal, "pending", actor)
        assert "can no longer change" in exc_info.value.message


def test_unknown_target_status():
    with pytest.raises(InvalidTransition) as exc_info:
        validate_transition("pending", "teleported", "restaurant")
    assert exc_info.value.attempted == "teleported"


def test_table_covers_every_status():
    assert set(TRANSITIONS) == set(OrderStatus)
    assert TERMINAL_STATUSES == {OrderStatus.DELIVERED, OrderStatus.CANCELLED}


def test_allowed_transitions_for_restaurant_on_pending():
    assert set(allowed_transitions("pending", "restaurant")) == {
        OrderStatus.CONFIRMED,
        OrderStatus.CANCELLED,
    }
