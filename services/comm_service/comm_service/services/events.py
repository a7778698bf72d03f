"""
Ingestion of progress events reported by downstream services.
"""

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from comm_service.constants import KIND_COMMAND, event_key, service_metrics_key
from comm_service.core.exceptions import DispatchNotFoundError
from comm_service.core.metrics import EVENT_RECEIVED_TOTAL, NOTIFICATION_FAILED_TOTAL
from comm_service.models import CommandUnit
from comm_service.schemas.common import Channel
from comm_service.schemas.events import EventIn, EventStatus
from comm_service.services.commands import CommandService
from comm_service.services.dispatcher import DispatchEngine

logger = logging.getLogger(__name__)

EVENT_TTL = 86400
SERVICE_METRICS_TTL = 7 * 86400

STATUS_EMOJI = {
    EventStatus.PENDING: "🕐",
    EventStatus.PROCESSING: "⏳",
    EventStatus.COMPLETED: "✅",
    EventStatus.FAILED: "❌",
}


def format_update(event: EventIn, unit: Optional[CommandUnit]) -> str:
    lines = [
        f"{STATUS_EMOJI[event.status]} Command Update",
        "",
        f"Command ID: {event.command_id}",
        f"Service: {event.service}",
    ]
    if unit is not None:
        lines.append(f"Action: {unit.action}")
    lines.append(f"Status: {event.status.value}")
    if event.output:
        lines.append(f"Output:\n{json.dumps(event.output, indent=2, default=str)}")
    if event.error:
        lines.append(f"Error: {event.error}")
    if event.metrics and event.metrics.latency_ms is not None:
        lines.append(f"Latency: {event.metrics.latency_ms}ms")
    return "\n".join(lines)


class EventService:
    """Applies reported command progress to the dispatch status record."""

    def __init__(self, engine: DispatchEngine, commands: CommandService):
        self.engine = engine
        self.commands = commands

    async def handle(self, event: EventIn) -> Dict[str, Any]:
        """
        Record an event and update the command it refers to.

        Raises:
            DispatchNotFoundError: Neither the unit nor its status record exists
        """
        unit = await self.engine.load_unit(KIND_COMMAND, event.command_id)
        current = await self.engine.get_status(KIND_COMMAND, event.command_id)
        if unit is None and current is None:
            raise DispatchNotFoundError(event.command_id)

        store = self.engine.store
        payload = event.model_dump_json()
        await store.set(event_key(event.command_id, int(time.time() * 1000)), payload, EVENT_TTL)
        await store.lpush(f"events:{event.service}", payload)

        await self.engine.set_status(
            KIND_COMMAND,
            event.command_id,
            event.status.value,
            service=event.service,
            output=event.output,
            error=event.error,
        )

        if event.status == EventStatus.COMPLETED:
            await self.engine.store_result(KIND_COMMAND, event.command_id, event.output or {})
            await self.engine.clear_error(KIND_COMMAND, event.command_id)
        elif event.status == EventStatus.FAILED:
            error = event.error or "Command failed"
            await self.engine.store_error(KIND_COMMAND, event.command_id, error)
            if unit is not None:
                await self.commands.schedule_retry(unit, error)

        await self._notify(event, unit)
        await self._record_metrics(event)
        EVENT_RECEIVED_TOTAL.labels(service=event.service, status=event.status.value).inc()
        logger.info(f"Event for {event.command_id} from {event.service}: {event.status.value}")

        return {"received": True, "command_id": event.command_id, "status": event.status.value}

    async def _notify(self, event: EventIn, unit: Optional[CommandUnit]) -> None:
        channel = self.commands.prompt_channel(unit) if unit is not None else Channel.TELEGRAM
        requested_by = unit.requested_by if unit is not None else None
        try:
            results = await self.engine.notify_operators(
                channel,
                format_update(event, unit),
                requested_by=requested_by,
                subject=f"Command {event.status.value}: {event.command_id}",
            )
        except Exception as e:
            logger.error(f"Failed to notify about {event.command_id}: {e}")
            NOTIFICATION_FAILED_TOTAL.labels(channel=channel.value).inc()
            return

        for result in results:
            if not result.success:
                logger.warning(
                    f"Update for {event.command_id} not delivered to {result.recipient}: {result.error}"
                )
                NOTIFICATION_FAILED_TOTAL.labels(channel=result.channel).inc()

    async def _record_metrics(self, event: EventIn) -> None:
        day = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        store = self.engine.store
        if event.metrics and event.metrics.latency_ms is not None:
            latency_key = service_metrics_key(event.service, day, "latency")
            await store.lpush(latency_key, str(event.metrics.latency_ms))
            await store.expire(latency_key, SERVICE_METRICS_TTL)
        await store.incr_with_ttl(
            service_metrics_key(event.service, day, f"status:{event.status.value}"),
            SERVICE_METRICS_TTL,
        )
