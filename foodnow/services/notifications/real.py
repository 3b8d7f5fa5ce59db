"""
Real Notification Service

Production implementation using:
- Twilio for SMS
- SendGrid for Email
"""

import logging
from typing import Any, Mapping, Optional

from python_http_client.exceptions import HTTPError
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail
from twilio.rest import Client as TwilioClient
from twilio.base.exceptions import TwilioException

from foodnow.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
    rating_reminder_message,
    status_message,
)
from foodnow.core.config import get_settings

logger = logging.getLogger(__name__)


EMAIL_TEMPLATE = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <h1 style="color: #ff6b00;">{heading}</h1>
    <div style="background: #f8f9fa; padding: 15px; border-radius: 8px; margin: 20px 0;">
        <p>{message}</p>
        <p>Order total: <strong>&#8358;{total:,.2f}</strong></p>
    </div>
    <p>Thank you for ordering with FoodNow!</p>
</div>
"""


class RealNotificationService(BaseNotificationService):
    """Production notification service using Twilio and SendGrid."""

    def __init__(self):
        settings = get_settings()

        # Initialize Twilio
        if settings.twilio_account_sid and settings.twilio_auth_token:
            self.twilio_client = TwilioClient(
                settings.twilio_account_sid,
                settings.twilio_auth_token
            )
            self.twilio_account_sid = settings.twilio_account_sid
            self.twilio_from_number = settings.twilio_phone_number
        else:
            self.twilio_client = None
            logger.warning("Twilio credentials not configured")

        # Initialize SendGrid
        if settings.sendgrid_api_key:
            self.sendgrid_client = SendGridAPIClient(settings.sendgrid_api_key)
            self.sendgrid_from_email = settings.sendgrid_from_email
        else:
            self.sendgrid_client = None
            logger.warning("SendGrid credentials not configured")

        logger.info("RealNotificationService initialized")

    @property
    def provider_name(self) -> str:
        return "real"

    async def send_sms(
        self,
        to_phone: str,
        message: str,
    ) -> NotificationResult:
        """Send SMS via Twilio."""
        if not self.twilio_client:
            return NotificationResult(
                success=False,
                error_message="Twilio not configured",
                provider="twilio"
            )

        try:
            result = self.twilio_client.messages.create(
                body=message,
                from_=self.twilio_from_number,
                to=to_phone
            )

            logger.info(f"SMS sent to {to_phone}: {result.sid}")

            return NotificationResult(
                success=True,
                message_id=result.sid,
                provider="twilio"
            )

        except TwilioException as e:
            logger.error(f"Twilio error: {e}")
            return NotificationResult(
                success=False,
                error_message=str(e),
                provider="twilio"
            )

    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        """Send email via SendGrid."""
        if not self.sendgrid_client:
            return NotificationResult(
                success=False,
                error_message="SendGrid not configured",
                provider="sendgrid"
            )

        try:
            message = Mail(
                from_email=self.sendgrid_from_email,
                to_emails=to_email,
                subject=subject,
                html_content=body_html,
                plain_text_content=body_text
            )

            response = self.sendgrid_client.send(message)

            logger.info(f"Email sent to {to_email}: {response.status_code}")

            return NotificationResult(
                success=response.status_code in [200, 201, 202],
                message_id=response.headers.get('X-Message-Id'),
                provider="sendgrid"
            )

        except HTTPError as e:
            logger.error(f"SendGrid error: {e}")
            return NotificationResult(
                success=False,
                error_message=str(e),
                provider="sendgrid"
            )

    async def _send_to_customer(
        self,
        order: Mapping[str, Any],
        subject: str,
        heading: str,
        message: str,
    ) -> NotificationResult:
        phone = order.get("contact_phone")
        email = order.get("contact_email")

        if not phone and not email:
            logger.warning(f"No contact details on order {order['id']}, notification not sent")
            return NotificationResult(success=False, error_message="No contact details", provider="real")

        sms_result = await self.send_sms(phone, message) if phone else None

        email_result = None
        if email:
            email_result = await self.send_email(
                to_email=email,
                subject=subject,
                body_html=EMAIL_TEMPLATE.format(
                    heading=heading,
                    message=message,
                    total=order.get("total") or 0.0,
                ),
                body_text=message
            )

        return NotificationResult(
            success=bool((sms_result and sms_result.success) or (email_result and email_result.success)),
            message_id=(sms_result or email_result).message_id,
            provider="real"
        )

    async def send_order_status_update(self, order: Mapping[str, Any]) -> NotificationResult:
        """Send the status change via SMS and email."""
        number = order.get("order_number", order["id"])
        status = order["status"].replace("_", " ")
        return await self._send_to_customer(
            order,
            subject=f"FoodNow order {number}: {status}",
            heading=f"Order {status.title()}",
            message=status_message(order),
        )

    async def send_rating_reminder(self, order: Mapping[str, Any]) -> NotificationResult:
        number = order.get("order_number", order["id"])
        return await self._send_to_customer(
            order,
            subject=f"Rate your FoodNow order {number}",
            heading="How was your meal?",
            message=rating_reminder_message(order),
        )

    async def health_check(self) -> bool:
        """Check the Twilio account is reachable."""
        if not self.twilio_client:
            return self.sendgrid_client is not None
        try:
            self.twilio_client.api.accounts(self.twilio_account_sid).fetch()
            return True
        except TwilioException as e:
            logger.error(f"Notification health check failed: {e}")
            return False
