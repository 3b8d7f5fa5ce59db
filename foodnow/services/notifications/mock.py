"""
Mock Notification Service

Simulates SMS and Email sending for development and tests.
No actual messages are sent - just logged and kept in ``sent`` for inspection.
"""

import asyncio
import random
import uuid
import logging
from typing import Any, Mapping, Optional

from foodnow.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
    rating_reminder_message,
    status_message,
)

logger = logging.getLogger(__name__)


class MockNotificationService(BaseNotificationService):
    """
    Mock notification service for development.

    Args:
        failure_rate: Probability of a simulated delivery failure
        latency: (min, max) seconds of simulated network latency
    """

    def __init__(self, failure_rate: float = 0.05, latency: tuple[float, float] = (0.1, 0.3)):
        self.failure_rate = failure_rate
        self.latency = latency
        self.sent: list[dict] = []
        logger.info(f"MockNotificationService initialized (failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        return "mock"

    async def _simulate_latency(self) -> None:
        """Simulate network latency."""
        low, high = self.latency
        if high > 0:
            await asyncio.sleep(random.uniform(low, high))

    def _should_fail(self) -> bool:
        return random.random() < self.failure_rate

    async def send_sms(
        self,
        to_phone: str,
        message: str,
    ) -> NotificationResult:
        """Simulate sending SMS."""
        await self._simulate_latency()

        if self._should_fail():
            logger.warning(f"Mock SMS failed (simulated) to {to_phone}")
            return NotificationResult(
                success=False,
                error_message="Simulated SMS failure",
                provider="mock"
            )

        message_id = f"sms_mock_{uuid.uuid4().hex[:12]}"
        self.sent.append({"channel": "sms", "to": to_phone, "body": message, "id": message_id})
        logger.info(f"Mock SMS sent to {to_phone}: {message[:50]}... (ID: {message_id})")

        return NotificationResult(
            success=True,
            message_id=message_id,
            provider="mock"
        )

    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        """Simulate sending email."""
        await self._simulate_latency()

        if self._should_fail():
            logger.warning(f"Mock email failed (simulated) to {to_email}")
            return NotificationResult(
                success=False,
                error_message="Simulated email failure",
                provider="mock"
            )

        message_id = f"email_mock_{uuid.uuid4().hex[:12]}"
        self.sent.append({"channel": "email", "to": to_email, "subject": subject, "id": message_id})
        logger.info(f"Mock email sent to {to_email}: {subject} (ID: {message_id})")

        return NotificationResult(
            success=True,
            message_id=message_id,
            provider="mock"
        )

    async def _send_to_customer(
        self,
        order: Mapping[str, Any],
        subject: str,
        message: str,
    ) -> NotificationResult:
        phone = order.get("contact_phone")
        email = order.get("contact_email")

        if not phone and not email:
            logger.info(f"Mock notification skipped for order {order['id']}: no contact details")
            return NotificationResult(success=False, error_message="No contact details", provider="mock")

        sms_result = await self.send_sms(phone, message) if phone else None
        email_result = None
        if email:
            email_result = await self.send_email(
                to_email=email,
                subject=subject,
                body_html=f"<p>{message}</p>",
                body_text=message,
            )

        return NotificationResult(
            success=bool((sms_result and sms_result.success) or (email_result and email_result.success)),
            message_id=(sms_result or email_result).message_id,
            provider="mock"
        )

    async def send_order_status_update(self, order: Mapping[str, Any]) -> NotificationResult:
        number = order.get("order_number", order["id"])
        return await self._send_to_customer(
            order,
            subject=f"Order {number}: {order['status'].replace('_', ' ')}",
            message=status_message(order),
        )

    async def send_rating_reminder(self, order: Mapping[str, Any]) -> NotificationResult:
        number = order.get("order_number", order["id"])
        return await self._send_to_customer(
            order,
            subject=f"Rate your order {number}",
            message=rating_reminder_message(order),
        )

    async def health_check(self) -> bool:
        """Mock always returns healthy."""
        return True
