"""One-time passcode delivery via email (Resend) and SMS (Twilio).

Both providers are plain HTTP POSTs over httpx. Senders report delivery as a
bool and never raise: a failed send must not invalidate an issued code.
"""

import logging
from abc import ABC, abstractmethod

import httpx

from mediscan.core.config import settings
from mediscan.core.contacts import ContactChannel, mask_contact

logger = logging.getLogger(__name__)

_RESEND_API_URL = "https://api.resend.com/emails"
_TWILIO_API_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"
_HTTP_TIMEOUT = 10.0

_SUBJECTS = {
    "registration": "MediScan OTP Verification",
    "login": "MediScan Login OTP Verification",
    "password_reset": "MediScan Password Reset Code",
}

_HEADINGS = {
    "registration": "OTP Verification",
    "login": "Login OTP Verification",
    "password_reset": "Password Reset Code",
}


class NotificationSender(ABC):
    """Delivers a one-time code to a contact address."""

    @abstractmethod
    async def send_code(
        self,
        *,
        contact: str,
        channel: ContactChannel,
        code: str,
        purpose: str,
        ttl_minutes: int,
    ) -> bool:
        """Send the code. Returns True only when the provider accepted it."""


def _email_html(code: str, purpose: str, ttl_minutes: int) -> str:
    heading = _HEADINGS.get(purpose, _HEADINGS["registration"])
    return f"""
      <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
        <h1 style="color: #3B82F6; text-align: center;">MediScan</h1>
        <div style="background-color: #f8fafc; border-radius: 12px; padding: 30px; text-align: center;">
          <h2 style="color: #1e293b;">{heading}</h2>
          <p style="color: #64748b;">Your verification code is:</p>
          <div style="font-size: 32px; font-weight: bold; letter-spacing: 4px;">{code}</div>
          <p style="color: #64748b; font-size: 14px;">
            This code will expire in {ttl_minutes} minutes. Please do not share it with anyone.
          </p>
        </div>
        <p style="text-align: center; color: #64748b; font-size: 12px;">
          If you didn't request this code, please ignore this email.
        </p>
      </div>
    """


class ResendEmailSender(NotificationSender):
    """Email delivery through the Resend HTTP API."""

    async def send_code(
        self,
        *,
        contact: str,
        channel: ContactChannel,  # noqa: ARG002
        code: str,
        purpose: str,
        ttl_minutes: int,
    ) -> bool:
        api_key = settings.resend_api_key.get_secret_value()
        if not api_key:
            logger.warning(
                "Resend API key missing, skipping email to %s", mask_contact(contact)
            )
            return False

        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    _RESEND_API_URL,
                    headers={"Authorization": f"Bearer {api_key}"},
                    json={
                        "from": settings.email_from,
                        "to": [contact],
                        "subject": _SUBJECTS.get(purpose, _SUBJECTS["registration"]),
                        "html": _email_html(code, purpose, ttl_minutes),
                        "text": (
                            f"Your MediScan code is {code}. "
                            f"It expires in {ttl_minutes} minutes."
                        ),
                    },
                    timeout=_HTTP_TIMEOUT,
                )
                resp.raise_for_status()
        except Exception:
            logger.warning(
                "Failed to send OTP email to %s", mask_contact(contact), exc_info=True
            )
            return False
        return True


class TwilioSmsSender(NotificationSender):
    """SMS delivery through the Twilio Messages REST API."""

    async def send_code(
        self,
        *,
        contact: str,
        channel: ContactChannel,  # noqa: ARG002
        code: str,
        purpose: str,  # noqa: ARG002
        ttl_minutes: int,
    ) -> bool:
        if not settings.twilio_enabled:
            logger.warning(
                "Twilio not configured, skipping SMS to %s", mask_contact(contact)
            )
            return False

        try:
            async with httpx.AsyncClient(
                auth=(
                    settings.twilio_account_sid,
                    settings.twilio_auth_token.get_secret_value(),
                ),
            ) as client:
                resp = await client.post(
                    _TWILIO_API_URL.format(sid=settings.twilio_account_sid),
                    data={
                        "To": contact,
                        "From": settings.twilio_from_number,
                        "Body": (
                            f"Your MediScan code is {code}. "
                            f"It expires in {ttl_minutes} minutes."
                        ),
                    },
                    timeout=_HTTP_TIMEOUT,
                )
                resp.raise_for_status()
        except Exception:
            logger.warning(
                "Failed to send OTP SMS to %s", mask_contact(contact), exc_info=True
            )
            return False
        return True


class ChannelNotificationSender(NotificationSender):
    """Routes each code to the email or SMS sender by channel."""

    def __init__(
        self,
        email: NotificationSender | None = None,
        sms: NotificationSender | None = None,
    ) -> None:
        self._email = email or ResendEmailSender()
        self._sms = sms or TwilioSmsSender()

    async def send_code(
        self,
        *,
        contact: str,
        channel: ContactChannel,
        code: str,
        purpose: str,
        ttl_minutes: int,
    ) -> bool:
        sender = self._email if channel == "email" else self._sms
        return await sender.send_code(
            contact=contact,
            channel=channel,
            code=code,
            purpose=purpose,
            ttl_minutes=ttl_minutes,
        )


_sender: NotificationSender | None = None


def get_notification_sender() -> NotificationSender:
    """Get or create the notification sender singleton."""
    global _sender
    if _sender is None:
        _sender = ChannelNotificationSender()
    return _sender


def reset_notification_sender() -> None:
    """Reset the sender singleton (for testing)."""
    global _sender
    _sender = None
