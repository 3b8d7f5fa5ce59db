"""
Order Status State Machine

The single source of truth for which status changes are legal and who may
make them. Every mutation path (HTTP routes, the auto-accept countdown,
background tasks) validates through ``validate_transition`` before writing.

    pending ──> confirmed ──> preparing ──> ready ──> picked_up ──> delivered
       │            │
       └────────────┴──> cancelled

    customer          pending|confirmed -> cancelled
    restaurant        pending -> confirmed -> preparing -> ready,
                      pending|confirmed -> cancelled
    rider, dispatch   ready -> picked_up -> delivered
"""

from typing import Union

from foodnow.core.exceptions import InvalidTransition
from foodnow.models import ActorRole, OrderStatus


TRANSITIONS: dict[OrderStatus, dict[OrderStatus, frozenset[ActorRole]]] = {
    OrderStatus.PENDING: {
        OrderStatus.CONFIRMED: frozenset({ActorRole.RESTAURANT}),
        OrderStatus.CANCELLED: frozenset({ActorRole.CUSTOMER, ActorRole.RESTAURANT}),
    },
    OrderStatus.CONFIRMED: {
        OrderStatus.PREPARING: frozenset({ActorRole.RESTAURANT}),
        OrderStatus.CANCELLED: frozenset({ActorRole.CUSTOMER, ActorRole.RESTAURANT}),
    },
    OrderStatus.PREPARING: {
        OrderStatus.READY: frozenset({ActorRole.RESTAURANT}),
    },
    OrderStatus.READY: {
        OrderStatus.PICKED_UP: frozenset({ActorRole.RIDER, ActorRole.DISPATCH}),
    },
    OrderStatus.PICKED_UP: {
        OrderStatus.DELIVERED: frozenset({ActorRole.RIDER, ActorRole.DISPATCH}),
    },
    OrderStatus.DELIVERED: {},
    OrderStatus.CANCELLED: {},
}

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

# Timestamp column stamped when an order enters each status
STATUS_TIMESTAMPS = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.PREPARING: "started_preparing_at",
    OrderStatus.READY: "ready_at",
    OrderStatus.PICKED_UP: "picked_up_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


def is_terminal(status: Union[OrderStatus, str]) -> bool:
    return OrderStatus(status) in TERMINAL_STATUSES


def allowed_transitions(
    current: Union[OrderStatus, str],
    actor: Union[ActorRole, str],
) -> list[OrderStatus]:
    """Statuses ``actor`` may move an order to from ``current``."""
    current = OrderStatus(current)
    actor = ActorRole(actor)
    return [
        target
        for target, actors in TRANSITIONS[current].items()
        if actor in actors
    ]


def validate_transition(
    current: Union[OrderStatus, str],
    target: Union[OrderStatus, str],
    actor: Union[ActorRole, str],
) -> None:
    """
    Check a status change against the lifecycle.

    Raises:
        InvalidTransition: The change is not allowed for this actor. The
            error carries the current and attempted status, the actor and
            the statuses the actor could move to instead.
    """
    current = OrderStatus(current)
    actor = ActorRole(actor)
    allowed = allowed_transitions(current, actor)

    try:
        target = OrderStatus(target)
    except ValueError:
        raise InvalidTransition(
            current=current.value,
            attempted=str(target),
            actor=actor.value,
            allowed=[status.value for status in allowed],
            message=f"Unknown order status: {target}",
        ) from None

    if target in allowed:
        return

    if current in TERMINAL_STATUSES:
        message = f"Order is already {current.value} and can no longer change"
    elif target in TRANSITIONS[current]:
        message = f"A {actor.value} cannot move an order from {current.value} to {target.value}"
    else:
        message = f"Cannot change order status from {current.value} to {target.value}"

    raise InvalidTransition(
        current=current.value,
        attempted=target.value,
        actor=actor.value,
        allowed=[status.value for status in allowed],
        message=message,
    )
