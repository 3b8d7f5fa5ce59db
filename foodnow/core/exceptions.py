"""
Domain Errors

Every error raised by the order, reward and rating services derives from
FoodNowError. Each carries a machine-readable code and the HTTP status the
API layer answers with, so routes never have to map exceptions by hand.
"""

from typing import Any, Optional, Sequence


class FoodNowError(Exception):
    """Base class for all domain errors."""

    code = "error"
    http_status = 500

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {"code": self.code, "message": self.message, **self.context}


class InvalidTransition(FoodNowError):
    """A status change that the lifecycle does not permit for this actor."""

    code = "invalid_transition"
    http_status = 400

    def __init__(
        self,
        current: str,
        attempted: str,
        actor: str,
        allowed: Sequence[str],
        message: Optional[str] = None,
    ):
        super().__init__(
            message or f"Cannot change status from {current} to {attempted} as {actor}",
            current=current,
            attempted=attempted,
            actor=actor,
            allowed=list(allowed),
        )
        self.current = current
        self.attempted = attempted
        self.actor = actor
        self.allowed = list(allowed)


class NotFoundError(FoodNowError):
    code = "not_found"
    http_status = 404


class ConflictError(FoodNowError):
    """A conditional write lost against a concurrent update."""

    code = "conflict"
    http_status = 409


class NetworkError(FoodNowError):
    """Transient connectivity failure talking to the persistence provider."""

    code = "network_error"
    http_status = 503


class InsufficientBalance(FoodNowError):
    code = "insufficient_balance"
    http_status = 400

    def __init__(self, requested: int, available: int):
        super().__init__(
            f"Cannot redeem {requested} points, only {available} available",
            requested=requested,
            available=available,
        )
        self.requested = requested
        self.available = available


class NoQualifyingTier(FoodNowError):
    code = "no_qualifying_tier"
    http_status = 400


class RatingNotAllowed(FoodNowError):
    """The customer may not rate this order (yet)."""

    code = "rating_not_allowed"
    http_status = 403


class DuplicateRating(FoodNowError):
    code = "duplicate_rating"
    http_status = 409


class ValidationFailed(FoodNowError):
    code = "validation_failed"
    http_status = 422
