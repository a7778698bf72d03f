"""
Telegram webhook: turns inline-button presses into confirmation decisions.
"""

import logging
import secrets
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, status

from comm_service.api.deps import get_container
from comm_service.channels.telegram import TelegramChannel
from comm_service.constants import STATUS_REJECTED
from comm_service.core.exceptions import CommServiceError
from comm_service.schemas.common import Channel
from comm_service.services.confirmation import ACTION_CONFIRM
from comm_service.services.container import ServiceContainer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/telegram", tags=["telegram"])


def _check_secret(expected: Optional[str], received: Optional[str]) -> None:
    if not expected:
        return
    if not received or not secrets.compare_digest(expected.encode(), received.encode()):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Invalid webhook secret"
        )


@router.post("/webhook")
async def telegram_webhook(
    update: Dict[str, Any] = Body(...),
    secret_token: Optional[str] = Header(None, alias="X-Telegram-Bot-Api-Secret-Token"),
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    """
    Handle a Telegram update.

    Only ``callback_query`` updates pressed by a configured admin, or inside a
    configured admin chat such as a group, are acted on; everything else is
    acknowledged and ignored so Telegram stops redelivering.
    """
    _check_secret(container.settings.telegram_webhook_secret, secret_token)

    callback = update.get("callback_query")
    if not callback:
        return {"ok": True}

    adapter = container.channels.get(Channel.TELEGRAM)
    user_id = (callback.get("from") or {}).get("id")
    chat_id = ((callback.get("message") or {}).get("chat") or {}).get("id")

    async def answer(text: str) -> None:
        if isinstance(adapter, TelegramChannel):
            await adapter.answer_callback(str(callback.get("id")), text)

    admins = container.operators.telegram_chat_ids
    if user_id not in admins and chat_id not in admins:
        logger.warning(
            f"Ignoring confirmation callback from non-admin user {user_id} in chat {chat_id}"
        )
        await answer("❌ Unauthorized")
        return {"ok": True}

    parsed = container.confirmation.parse_callback(str(callback.get("data") or ""))
    if parsed is None:
        await answer("Unknown action")
        return {"ok": True}

    action, dispatch_id = parsed
    try:
        outcome = await container.confirmation.decide(dispatch_id, action == ACTION_CONFIRM)
    except CommServiceError as e:
        logger.info(f"Callback {action} for {dispatch_id} refused: {e.detail}")
        await answer(str(e.detail))
        return {"ok": True, "error": e.error_type}

    await answer("✅ Confirmed" if outcome != STATUS_REJECTED else "❌ Rejected")
    return {"ok": True, "dispatch_id": dispatch_id, "status": outcome}
