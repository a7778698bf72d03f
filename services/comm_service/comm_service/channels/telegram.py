"""
Telegram Bot API channel.
Sends plain messages and confirmation prompts with inline Yes/No buttons.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from comm_service.channels.base import ConfirmationActions, DeliveryResult, NotificationChannel
from comm_service.schemas.common import Recipient

logger = logging.getLogger(__name__)


def confirmation_keyboard(reference_id: str) -> Dict[str, Any]:
    """Inline keyboard whose callback data feeds the confirmation webhook."""
    return {
        "inline_keyboard": [
            [
                {"text": "✅ Yes", "callback_data": f"confirm:{reference_id}"},
                {"text": "❌ No", "callback_data": f"reject:{reference_id}"},
            ]
        ]
    }


class TelegramChannel(NotificationChannel):
    name = "telegram"

    def __init__(
        self,
        bot_token: Optional[str],
        api_base: str = "https://api.telegram.org",
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.bot_token = bot_token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._client = client

    def recipient_for(self, to: Recipient) -> Optional[str]:
        return str(to.telegram_chat_id) if to.telegram_chat_id is not None else None

    async def _call(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.api_base}/bot{self.bot_token}/{method}"
        if self._client is not None:
            response = await self._client.post(url, json=payload, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=payload)
        body = response.json()
        if response.status_code >= 400 or not body.get("ok", False):
            raise httpx.HTTPStatusError(
                f"Telegram {method} failed: {body.get('description', response.status_code)}",
                request=response.request,
                response=response,
            )
        return body

    async def deliver(
        self,
        recipient: str,
        text: str,
        *,
        subject: Optional[str] = None,
        actions: Optional[ConfirmationActions] = None,
    ) -> DeliveryResult:
        if not self.bot_token:
            return self._failure(recipient, "Telegram bot not configured")

        payload: Dict[str, Any] = {
            "chat_id": int(recipient),
            "text": f"{subject}\n\n{text}" if subject else text,
        }
        if actions is not None:
            payload["reply_markup"] = confirmation_keyboard(actions.reference_id)

        try:
            await self._call("sendMessage", payload)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to send Telegram message to {recipient}: {e}")
            return self._failure(recipient, str(e))

        logger.info(f"Telegram message sent to {recipient}")
        return self._success(recipient)

    async def answer_callback(self, callback_query_id: str, text: str) -> None:
        """Acknowledge a button press so the client stops its spinner."""
        if not self.bot_token:
            return
        try:
            await self._call(
                "answerCallbackQuery",
                {"callback_query_id": callback_query_id, "text": text},
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Failed to answer callback {callback_query_id}: {e}")
