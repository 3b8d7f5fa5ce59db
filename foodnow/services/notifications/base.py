"""
Notification Service Abstract Base Class

Defines interface for sending SMS and Email notifications to customers about
their orders. Supports both Mock (development) and Real (production)
implementations.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping, Optional


@dataclass
class NotificationResult:
    """Result from sending a notification."""
    success: bool
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    provider: str = "unknown"


STATUS_MESSAGES = {
    "pending": "Your order {number} has been placed and is waiting for the restaurant.",
    "confirmed": "Your order {number} has been confirmed by the restaurant.",
    "preparing": "The restaurant is preparing your order {number}.",
    "ready": "Your order {number} is ready and waiting for a rider.",
    "picked_up": "Your order {number} has been picked up and is on its way.",
    "delivered": "Your order {number} has been delivered. Enjoy your meal!",
    "cancelled": "Your order {number} was cancelled: {reason}",
}


def status_message(order: Mapping[str, Any]) -> str:
    """Customer-facing text for the order's current status."""
    template = STATUS_MESSAGES.get(order["status"], "Your order {number} is now {status}.")
    return template.format(
        number=order.get("order_number", order["id"]),
        status=order["status"],
        reason=order.get("cancellation_reason") or "restaurant unavailable",
    )


def rating_reminder_message(order: Mapping[str, Any]) -> str:
    return (
        f"How was order {order.get('order_number', order['id'])}? "
        f"Rate your restaurant and rider on FoodNow and earn bonus points."
    )


class BaseNotificationService(ABC):
    """Abstract base class for notification services."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def send_sms(
        self,
        to_phone: str,
        message: str,
    ) -> NotificationResult:
        """Send an SMS message."""
        pass

    @abstractmethod
    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        """Send an email."""
        pass

    @abstractmethod
    async def send_order_status_update(self, order: Mapping[str, Any]) -> NotificationResult:
        """Tell the customer their order moved to a new status."""
        pass

    @abstractmethod
    async def send_rating_reminder(self, order: Mapping[str, Any]) -> NotificationResult:
        """Invite the customer to rate a delivered order."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check service connectivity."""
        pass
