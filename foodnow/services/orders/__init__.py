"""
Order lifecycle: state machine, order service, auto-accept countdown and the
optimistic console view.
"""

from foodnow.services.orders.countdown import (
    AutoAcceptCountdown,
    CountdownState,
    OrderQueueSession,
    TransitionResult,
)
from foodnow.services.orders.optimistic import OptimisticOrderView, PendingUpdate, UpdateState
from foodnow.services.orders.service import OrderService, generate_order_number
from foodnow.services.orders.state_machine import (
    TRANSITIONS,
    allowed_transitions,
    is_terminal,
    validate_transition,
)

__all__ = [
    "OrderService",
    "generate_order_number",
    "AutoAcceptCountdown",
    "CountdownState",
    "OrderQueueSession",
    "TransitionResult",
    "OptimisticOrderView",
    "PendingUpdate",
    "UpdateState",
    "TRANSITIONS",
    "allowed_transitions",
    "is_terminal",
    "validate_transition",
]
