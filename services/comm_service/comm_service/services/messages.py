"""
Message sending: channel selection, template rendering and delivery with
fallback across channels.
"""

import logging
from typing import Any, Dict, List

from comm_service.channels.base import DeliveryResult
from comm_service.constants import (
    KIND_MESSAGE,
    STATUS_PENDING_CONFIRMATION,
    STATUS_PROCESSING,
    STATUS_QUEUED,
    STATUS_SENT,
)
from comm_service.core.exceptions import PayloadValidationError
from comm_service.core.metrics import DELIVERY_ATTEMPT_TOTAL, DISPATCH_ACCEPTED_TOTAL
from comm_service.models import AuditEntry, MessageUnit
from comm_service.schemas.common import Channel
from comm_service.schemas.messages import MessageAccepted, MessageSendRequest
from comm_service.services.confirmation import ConfirmationStateMachine
from comm_service.services.dispatcher import DispatchEngine

logger = logging.getLogger(__name__)


def render(data: Dict[str, Any]) -> str:
    """Build message text from ``title``/``body``/``message`` and ``{{key}}`` placeholders."""
    text = str(data.get("body") or data.get("message") or "")
    if data.get("title"):
        text = f"**{data['title']}**\n\n{text}"
    for key, value in data.items():
        text = text.replace(f"{{{{{key}}}}}", str(value))
    return text


def subject_for(unit: MessageSendRequest) -> str:
    return str(unit.data.get("subject") or unit.template_key)


def delivery_chain(primary: Channel, fallback: List[Channel]) -> List[Channel]:
    """Primary channel first, then each fallback once, in order."""
    chain = [primary]
    for channel in fallback:
        if channel not in chain:
            chain.append(channel)
    return chain


class MessageService:
    """Delivers templated messages to recipients."""

    def __init__(self, engine: DispatchEngine, confirmation: ConfirmationStateMachine):
        self.engine = engine
        self.confirmation = confirmation
        confirmation.register(KIND_MESSAGE, self.enqueue)

    @staticmethod
    def select_channel(request: MessageSendRequest) -> Channel:
        """
        Resolve ``auto`` to a concrete channel.

        Raises:
            PayloadValidationError: ``auto`` with neither a chat id nor an email
        """
        if request.channel != Channel.AUTO:
            return request.channel
        if request.to.telegram_chat_id is not None:
            return Channel.TELEGRAM
        if request.to.email:
            return Channel.EMAIL
        raise PayloadValidationError(
            "Channel 'auto' requires to.telegram_chat_id or to.email"
        )

    async def send(self, request: MessageSendRequest) -> MessageAccepted:
        channel = self.select_channel(request)
        requested_by = request.audit.requested_by if request.audit else None
        if request.require_confirmation:
            self.confirmation.ensure_reachable(channel, requested_by)

        unit = MessageUnit(
            id=self.engine.new_id(KIND_MESSAGE),
            channel_selected=channel,
            **request.model_dump(),
        )
        await self.engine.persist_unit(unit)
        await self.engine.append_audit(
            AuditEntry(
                id=unit.id,
                kind=KIND_MESSAGE,
                target=channel.value,
                action=unit.template_key,
                requested_by=unit.requested_by or "system",
                trace_id=unit.trace_id,
            )
        )

        if unit.require_confirmation:
            await self.confirmation.request(
                unit,
                self.format_confirmation(unit),
                channel,
                requested_by=unit.requested_by,
                subject="Message Confirmation Required",
                channel=channel.value,
            )
            status = STATUS_PENDING_CONFIRMATION
        else:
            await self.enqueue(unit)
            status = STATUS_QUEUED

        DISPATCH_ACCEPTED_TOTAL.labels(kind=KIND_MESSAGE, status=status).inc()
        logger.info(f"Message {unit.id} accepted via {channel.value}: {status}")
        return MessageAccepted(message_id=unit.id, status=status, channel_selected=channel)

    @staticmethod
    def format_confirmation(unit: MessageUnit) -> str:
        to = unit.to.email or unit.to.telegram_chat_id or "-"
        return (
            "📨 Message Confirmation Required\n\n"
            f"Channel: {unit.channel_selected.value}\n"
            f"To: {to}\n"
            f"Template: {unit.template_key}\n\n"
            f"{render(unit.data)}\n\n"
            f"Message ID: {unit.id}"
        )

    async def enqueue(self, unit: MessageUnit) -> None:
        await self.engine.push_queue(KIND_MESSAGE, unit.channel_selected.value, unit.id)
        await self.engine.set_status(
            KIND_MESSAGE, unit.id, STATUS_QUEUED, channel=unit.channel_selected.value
        )

        async def sink(error: BaseException) -> None:
            await self.engine.fail(KIND_MESSAGE, unit.id, f"Unexpected error: {error}")

        self.engine.tasks.submit(
            lambda: self.execute(unit), name=f"message:{unit.id}", on_error=sink
        )

    async def execute(self, unit: MessageUnit) -> None:
        """Deliver on the selected channel, then on each fallback until one succeeds."""
        primary = unit.channel_selected
        await self.engine.set_status(
            KIND_MESSAGE, unit.id, STATUS_PROCESSING, channel=primary.value
        )
        text = render(unit.data)
        subject = subject_for(unit)

        errors: List[str] = []
        for channel in delivery_chain(primary, unit.fallback):
            result = await self._attempt(unit, channel, text, subject)
            if result.success:
                await self.engine.store_result(
                    KIND_MESSAGE,
                    unit.id,
                    {"channel": channel.value, "recipient": result.recipient},
                )
                await self.engine.set_status(
                    KIND_MESSAGE, unit.id, STATUS_SENT, channel=channel.value
                )
                if errors:
                    await self.engine.clear_error(KIND_MESSAGE, unit.id)
                if channel != primary:
                    logger.info(f"Message {unit.id} delivered via fallback {channel.value}")
                return

            errors.append(f"{channel.value}: {result.error}")
            logger.warning(f"Message {unit.id} failed on {channel.value}: {result.error}")
            await self.engine.annotate(KIND_MESSAGE, unit.id, error=errors[-1])

        await self.engine.fail(KIND_MESSAGE, unit.id, "; ".join(errors), channel=primary.value)

    async def _attempt(
        self, unit: MessageUnit, channel: Channel, text: str, subject: str
    ) -> DeliveryResult:
        adapter = self.engine.channels.get(channel)
        recipient = adapter.recipient_for(unit.to) if adapter is not None else None
        if recipient is None:
            DELIVERY_ATTEMPT_TOTAL.labels(channel=channel.value, result="failure").inc()
            return DeliveryResult(False, channel.value, "", f"No {channel.value} recipient")
        return await self.engine.deliver(channel, recipient, text, subject=subject)
