"""Email delivery for sign-in links.

Simple HTTP POST to Resend. Given a recipient, subject, and HTML body, the
sender either delivers or raises; a failed send is never reported as
success because the user would wait for a link that never arrives.
"""

import logging
from abc import ABC, abstractmethod

import httpx

from passwordless.core.config import settings
from passwordless.core.errors import EmailDeliveryError

logger = logging.getLogger(__name__)

_RESEND_API_URL = "https://api.resend.com/emails"
_RESEND_TIMEOUT = 10.0


class EmailSender(ABC):
    """Delivery collaborator for outbound email."""

    @abstractmethod
    async def send(self, recipient: str, subject: str, html_body: str) -> None:
        """Deliver one HTML email.

        Args:
            recipient: Destination address.
            subject: Subject line.
            html_body: HTML content.

        Raises:
            EmailDeliveryError: If the transport did not accept the message.
        """
        ...


class ResendEmailSender(EmailSender):
    """Send email through the Resend HTTP API.

    Args:
        api_key: Resend API key.
        sender: "Display Name <address>" string for the From header.
        client: Optional shared httpx client (tests pass a mock transport).
    """

    def __init__(
        self,
        *,
        api_key: str,
        sender: str,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._sender = sender
        self._client = client

    async def _post(self, client: httpx.AsyncClient, body: dict) -> httpx.Response:
        response = await client.post(
            _RESEND_API_URL,
            headers={"Authorization": f"Bearer {self._api_key}"},
            json=body,
            timeout=_RESEND_TIMEOUT,
        )
        response.raise_for_status()
        return response

    async def send(self, recipient: str, subject: str, html_body: str) -> None:
        """Deliver one HTML email via Resend.

        Raises:
            EmailDeliveryError: On network failure or non-2xx response.
        """
        body = {
            "from": self._sender,
            "to": recipient,
            "subject": subject,
            "html": html_body,
        }
        logger.info("Sending email to %s with subject: %s", recipient, subject)
        try:
            if self._client is not None:
                response = await self._post(self._client, body)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._post(client, body)
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Email provider rejected message to %s. Status: %s",
                recipient,
                exc.response.status_code,
                exc_info=True,
            )
            raise EmailDeliveryError() from exc
        except httpx.HTTPError as exc:
            logger.error("Failed to send email to %s", recipient, exc_info=True)
            raise EmailDeliveryError() from exc

        message_id = response.json().get("id") if response.content else None
        logger.info("Email sent to %s. Message ID: %s", recipient, message_id)


class ConsoleEmailSender(EmailSender):
    """Log emails instead of sending them (local development only)."""

    async def send(self, recipient: str, subject: str, html_body: str) -> None:
        logger.warning(
            "Email transport not configured; logging message to %s "
            "(Subject: %s)\n%s",
            recipient,
            subject,
            html_body,
        )


# Singleton instance for the application
_email_sender: EmailSender | None = None


def get_email_sender() -> EmailSender:
    """Get or create the email sender singleton.

    Uses Resend when RESEND_API_KEY is set, otherwise the console sender.
    Production settings refuse to start without an API key.

    Returns:
        EmailSender instance.
    """
    global _email_sender
    if _email_sender is None:
        api_key = settings.resend_api_key.get_secret_value()
        if api_key:
            _email_sender = ResendEmailSender(
                api_key=api_key,
                sender=f"{settings.email_from_name} <{settings.email_from}>",
            )
        else:
            _email_sender = ConsoleEmailSender()
    return _email_sender


def reset_email_sender() -> None:
    """Reset the email sender singleton (for testing)."""
    global _email_sender
    _email_sender = None
