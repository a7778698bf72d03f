"""
SMTP email channel.
Plain-text body plus a minimal HTML alternative; confirmation prompts carry
confirm/reject magic links.
"""

import asyncio
import html
import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

from comm_service.channels.base import ConfirmationActions, DeliveryResult, NotificationChannel
from comm_service.schemas.common import Recipient

logger = logging.getLogger(__name__)


def text_to_html(text: str) -> str:
    return "<br>".join(html.escape(line) for line in text.split("\n"))


def render_html(subject: str, text: str, actions: Optional[ConfirmationActions]) -> str:
    parts = [
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">",
        f"<title>{html.escape(subject)}</title></head><body>",
        f"<div>{text_to_html(text)}</div>",
    ]
    if actions is not None and actions.confirm_url:
        parts.append(
            f"<p><a href=\"{html.escape(actions.confirm_url)}\">✓ Confirm</a>"
            f" &nbsp; <a href=\"{html.escape(actions.reject_url or '')}\">✗ Reject</a></p>"
            "<p>If you didn't request this, please ignore this email.</p>"
        )
    parts.append("</body></html>")
    return "".join(parts)


class EmailChannel(NotificationChannel):
    name = "email"

    def __init__(
        self,
        host: str,
        port: int,
        user: Optional[str],
        password: Optional[str],
        from_address: str,
        timeout: float = 5.0,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_address = from_address
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.user and self.password)

    def recipient_for(self, to: Recipient) -> Optional[str]:
        return to.email

    def _build(
        self, recipient: str, subject: str, text: str, actions: Optional[ConfirmationActions]
    ) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.from_address
        msg["To"] = recipient
        msg["Subject"] = subject
        body = text
        if actions is not None and actions.confirm_url:
            body = f"{text}\n\nConfirm: {actions.confirm_url}\nReject: {actions.reject_url}"
        msg.set_content(body)
        msg.add_alternative(render_html(subject, text, actions), subtype="html")
        return msg

    def _send_sync(self, msg: EmailMessage) -> None:
        if self.port == 465:
            with smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout) as smtp:
                smtp.login(self.user, self.password)
                smtp.send_message(msg)
        else:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                smtp.starttls()
                smtp.login(self.user, self.password)
                smtp.send_message(msg)

    async def deliver(
        self,
        recipient: str,
        text: str,
        *,
        subject: Optional[str] = None,
        actions: Optional[ConfirmationActions] = None,
    ) -> DeliveryResult:
        if not self.configured:
            return self._failure(recipient, "Email service not configured")

        msg = self._build(recipient, subject or "Notification", text, actions)
        try:
            await asyncio.to_thread(self._send_sync, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {recipient}: {e}")
            return self._failure(recipient, str(e))

        logger.info(f"Email sent to {recipient}: {msg['Subject']}")
        return self._success(recipient)
