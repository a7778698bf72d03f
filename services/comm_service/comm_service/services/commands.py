"""
Command dispatch: intake, confirmation gating, outbound execution and the
single fixed-delay retry.
"""

import json
import logging
import time
from typing import Any, Optional

import httpx

from comm_service.constants import (
    CONFIRM_SCOPE,
    KIND_COMMAND,
    RETRY_QUEUE_KEY,
    SERVICE_NAME,
    STATUS_COMPLETED,
    STATUS_PENDING_CONFIRMATION,
    STATUS_PROCESSING,
    STATUS_QUEUED,
    retries_key,
)
from comm_service.core.exceptions import ConfigurationError, DeliveryError
from comm_service.core.metrics import (
    COMMAND_EXECUTION_SECONDS,
    DISPATCH_ACCEPTED_TOTAL,
    RETRY_SCHEDULED_TOTAL,
)
from comm_service.core.tracing import get_tracer, inject_headers
from comm_service.models import AuditEntry, CommandUnit, now_iso
from comm_service.schemas.commands import CommandAccepted, CommandDispatchRequest
from comm_service.schemas.common import Channel
from comm_service.services.confirmation import ConfirmationStateMachine
from comm_service.services.dispatcher import DispatchEngine

logger = logging.getLogger(__name__)


def format_confirmation(unit: CommandUnit) -> str:
    args = json.dumps(unit.args, indent=2, default=str)
    return (
        "🔐 Command Confirmation Required\n\n"
        f"Service: {unit.service}\n"
        f"Action: {unit.action}\n"
        f"Args:\n{args}\n\n"
        f"Requested by: {unit.requested_by or 'system'}\n"
        f"Command ID: {unit.id}"
    )


class CommandService:
    """Dispatches commands to downstream services."""

    def __init__(
        self,
        engine: DispatchEngine,
        confirmation: ConfirmationStateMachine,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.engine = engine
        self.confirmation = confirmation
        self._client = http_client
        confirmation.register(KIND_COMMAND, self.enqueue)

    @staticmethod
    def prompt_channel(command: CommandDispatchRequest) -> Channel:
        """Channel for the confirmation prompt and status notifications."""
        if command.channel is None or command.channel == Channel.AUTO:
            return Channel.TELEGRAM
        return command.channel

    async def dispatch(self, request: CommandDispatchRequest) -> CommandAccepted:
        """
        Accept a command, gating it behind confirmation when requested.

        Args:
            request: Validated dispatch request

        Returns:
            CommandAccepted: The new id and ``pending_confirmation`` or ``queued``

        Raises:
            PayloadValidationError: Confirmation requested but no operator is reachable
        """
        channel = self.prompt_channel(request)
        requested_by = request.audit.requested_by if request.audit else None
        if request.require_confirmation:
            self.confirmation.ensure_reachable(channel, requested_by)

        unit = CommandUnit(id=self.engine.new_id(KIND_COMMAND), **request.model_dump())
        await self.engine.persist_unit(unit)
        await self.engine.append_audit(
            AuditEntry(
                id=unit.id,
                kind=KIND_COMMAND,
                target=unit.service,
                action=unit.action,
                requested_by=unit.requested_by or "system",
                trace_id=unit.trace_id,
                args=unit.args,
            )
        )

        if unit.require_confirmation:
            await self.confirmation.request(
                unit,
                format_confirmation(unit),
                channel,
                requested_by=unit.requested_by,
                subject="Command Confirmation Required",
                service=unit.service,
            )
            status = STATUS_PENDING_CONFIRMATION
        else:
            await self.enqueue(unit)
            status = STATUS_QUEUED

        DISPATCH_ACCEPTED_TOTAL.labels(kind=KIND_COMMAND, status=status).inc()
        logger.info(f"Command {unit.id} accepted for {unit.service}/{unit.action}: {status}")
        return CommandAccepted(command_id=unit.id, status=status)

    async def enqueue(self, unit: CommandUnit) -> None:
        """Mark ``unit`` queued and hand it to the background runner."""
        await self.engine.push_queue(KIND_COMMAND, unit.service, unit.id)
        await self.engine.set_status(KIND_COMMAND, unit.id, STATUS_QUEUED, service=unit.service)
        self.engine.tasks.submit(
            lambda: self.execute(unit),
            name=f"command:{unit.id}",
            on_error=self._error_sink(unit.id),
        )

    def _error_sink(self, command_id: str):
        async def sink(error: BaseException) -> None:
            await self.engine.fail(KIND_COMMAND, command_id, f"Unexpected error: {error}")

        return sink

    async def execute(self, unit: CommandUnit) -> None:
        """Run the outbound call and record the outcome in the status hash."""
        await self.engine.set_status(
            KIND_COMMAND, unit.id, STATUS_PROCESSING, service=unit.service
        )
        try:
            output = await self._run(unit)
        except ConfigurationError as e:
            logger.error(f"Command {unit.id} cannot run: {e}")
            await self.engine.fail(KIND_COMMAND, unit.id, str(e), service=unit.service)
            return
        except DeliveryError as e:
            logger.error(f"Command {unit.id} failed: {e}")
            await self.engine.fail(KIND_COMMAND, unit.id, str(e), service=unit.service)
            await self.schedule_retry(unit, str(e))
            return

        await self.engine.store_result(KIND_COMMAND, unit.id, output)
        await self.engine.set_status(
            KIND_COMMAND, unit.id, STATUS_COMPLETED, service=unit.service, output=output
        )
        await self.engine.clear_error(KIND_COMMAND, unit.id)
        logger.info(f"Command {unit.id} completed on {unit.service}")

    async def _run(self, unit: CommandUnit) -> Any:
        base_url = self.engine.settings.get_service_url(unit.service)
        if not base_url:
            raise ConfigurationError(f"No URL configured for service {unit.service}")

        url = f"{base_url.rstrip('/')}/v1/commands/{unit.action}"
        token = self.engine.tokens.issue(SERVICE_NAME, [CONFIRM_SCOPE])
        timeout = self.engine.settings.webhook_timeout

        tracer = get_tracer()
        with tracer.start_as_current_span("command.execute") as span:
            span.set_attribute("command.id", unit.id)
            span.set_attribute("command.service", unit.service)
            span.set_attribute("command.action", unit.action)
            headers = inject_headers(
                {
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                    "X-Command-Id": unit.id,
                    "X-Trace-Id": unit.trace_id,
                }
            )

            start = time.perf_counter()
            try:
                if self._client is not None:
                    response = await self._client.post(
                        url, json=unit.args, headers=headers, timeout=timeout
                    )
                else:
                    async with httpx.AsyncClient(timeout=timeout) as client:
                        response = await client.post(url, json=unit.args, headers=headers)
                response.raise_for_status()
            except httpx.HTTPError as e:
                span.set_attribute("error", True)
                raise DeliveryError(f"{unit.service} rejected {unit.action}: {e}") from e
            finally:
                COMMAND_EXECUTION_SECONDS.observe(time.perf_counter() - start)

        try:
            return response.json()
        except ValueError:
            return response.text

    async def schedule_retry(self, unit: CommandUnit, reason: str) -> bool:
        """
        Schedule the single fixed-delay retry for a failed command.

        Only commands with a non-empty fallback list are retried, and only once:
        the retry counter is incremented atomically and just the caller that
        takes it to 1 schedules anything.
        """
        if not unit.fallback:
            return False

        settings = self.engine.settings
        count = await self.engine.store.incr_with_ttl(
            retries_key(unit.id), settings.dispatch_result_ttl
        )
        if count != 1:
            logger.info(f"Command {unit.id} already retried; not retrying again")
            return False

        await self.engine.annotate(KIND_COMMAND, unit.id, retry_count="1")
        await self.engine.store.lpush(
            RETRY_QUEUE_KEY,
            json.dumps(
                {
                    "command_id": unit.id,
                    "service": unit.service,
                    "reason": reason,
                    "retry_at": now_iso(),
                }
            ),
        )
        self.engine.tasks.submit(
            lambda: self.retry(unit.id),
            name=f"command-retry:{unit.id}",
            delay=settings.retry_delay_seconds,
            on_error=self._error_sink(unit.id),
        )
        RETRY_SCHEDULED_TOTAL.labels(kind=KIND_COMMAND).inc()
        logger.info(
            f"Retry for command {unit.id} scheduled in {settings.retry_delay_seconds}s"
        )
        return True

    async def retry(self, command_id: str) -> None:
        unit = await self.engine.load_unit(KIND_COMMAND, command_id)
        if unit is None:
            await self.engine.fail(KIND_COMMAND, command_id, "Command expired before retry")
            return
        await self.execute(unit)
