"""
Shared dispatch engine plumbing.

Persists dispatch units and their status side-records, appends audit entries,
pushes informational queue entries and performs single channel deliveries.
The command and message services build their intake/execution flows on top
of this class; the confirmation state machine uses it to drive transitions.
"""

import json
import logging
import uuid
from typing import Any, Dict, List, Optional, Union

from comm_service.channels.base import ConfirmationActions, DeliveryResult
from comm_service.channels.registry import ChannelRegistry, OperatorDirectory
from comm_service.constants import (
    ID_PREFIXES,
    KIND_COMMAND,
    STATUS_FAILED,
    TERMINAL_STATUSES,
    audit_key,
    error_key,
    queue_key,
    result_key,
    status_key,
    unit_key,
)
from comm_service.core.config import Settings
from comm_service.core.metrics import DELIVERY_ATTEMPT_TOTAL, DISPATCH_TERMINAL_TOTAL
from comm_service.core.security import TokenIssuer
from comm_service.core.store import KeyValueStore
from comm_service.models import AuditEntry, CommandUnit, DispatchStatus, MessageUnit, now_iso
from comm_service.schemas.common import Channel
from comm_service.services.tasks import TaskRunner

logger = logging.getLogger(__name__)

DispatchUnit = Union[CommandUnit, MessageUnit]


class DispatchEngine:
    """Store-backed persistence and delivery primitives for dispatch units."""

    def __init__(
        self,
        store: KeyValueStore,
        channels: ChannelRegistry,
        operators: OperatorDirectory,
        tokens: TokenIssuer,
        tasks: TaskRunner,
        settings: Settings,
    ):
        self.store = store
        self.channels = channels
        self.operators = operators
        self.tokens = tokens
        self.tasks = tasks
        self.settings = settings

    # ------------------------------------------------------------------
    # Units
    # ------------------------------------------------------------------

    @staticmethod
    def new_id(kind: str) -> str:
        return f"{ID_PREFIXES[kind]}{uuid.uuid4()}"

    def unit_ttl(self, unit: DispatchUnit) -> int:
        if unit.routing and unit.routing.ttl_seconds:
            return unit.routing.ttl_seconds
        return self.settings.dispatch_default_ttl

    async def persist_unit(self, unit: DispatchUnit) -> None:
        await self.store.set(
            unit_key(unit.kind, unit.id), unit.model_dump_json(), self.unit_ttl(unit)
        )

    async def load_unit(self, kind: str, dispatch_id: str) -> Optional[DispatchUnit]:
        """Return the persisted unit, or None once its TTL has elapsed."""
        raw = await self.store.get(unit_key(kind, dispatch_id))
        if raw is None:
            return None
        model = CommandUnit if kind == KIND_COMMAND else MessageUnit
        return model.model_validate_json(raw)

    async def append_audit(self, entry: AuditEntry) -> None:
        """Best-effort audit append; failures are logged and never block intake."""
        try:
            await self.store.lpush(audit_key(entry.kind), entry.model_dump_json())
            logger.info(
                f"Audit logged for {entry.kind} {entry.id}",
                extra={"audit": entry.model_dump()},
            )
        except Exception as e:
            logger.warning(f"Failed to append audit entry for {entry.id}: {e}")

    async def push_queue(self, kind: str, target: str, dispatch_id: str) -> None:
        # Informational only: execution is triggered inline, nothing consumes these lists
        await self.store.lpush(
            queue_key(kind, target),
            json.dumps({f"{kind}_id": dispatch_id, "created_at": now_iso()}),
        )

    # ------------------------------------------------------------------
    # Status side-records
    # ------------------------------------------------------------------

    async def set_status(self, kind: str, dispatch_id: str, status: str, **fields: Any) -> None:
        """Last-writer-wins status update."""
        mapping: Dict[str, str] = {"status": status, "updated_at": now_iso()}
        for name, value in fields.items():
            if value is None:
                continue
            mapping[name] = value if isinstance(value, str) else json.dumps(value, default=str)
        await self.store.hset(
            status_key(kind, dispatch_id), mapping, self.settings.dispatch_result_ttl
        )
        if status in TERMINAL_STATUSES:
            DISPATCH_TERMINAL_TOTAL.labels(kind=kind, status=status).inc()

    async def annotate(self, kind: str, dispatch_id: str, **fields: str) -> None:
        """Write extra status fields without touching ``status``."""
        await self.store.hset(
            status_key(kind, dispatch_id), fields, self.settings.dispatch_result_ttl
        )

    async def transition(
        self, kind: str, dispatch_id: str, expected: List[str], status: str
    ) -> bool:
        """Compare-and-swap the status; False when it no longer holds an expected value."""
        changed = await self.store.compare_and_set_field(
            status_key(kind, dispatch_id),
            "status",
            expected,
            status,
            extra={"updated_at": now_iso()},
            ttl=self.settings.dispatch_result_ttl,
        )
        if changed and status in TERMINAL_STATUSES:
            DISPATCH_TERMINAL_TOTAL.labels(kind=kind, status=status).inc()
        return changed

    async def get_status(self, kind: str, dispatch_id: str) -> Optional[DispatchStatus]:
        data = await self.store.hgetall(status_key(kind, dispatch_id))
        if not data:
            return None
        return DispatchStatus.model_validate(data)

    async def store_result(self, kind: str, dispatch_id: str, result: Any) -> None:
        await self.store.set(
            result_key(kind, dispatch_id),
            json.dumps(result, default=str),
            self.settings.dispatch_result_ttl,
        )

    async def store_error(self, kind: str, dispatch_id: str, error: str) -> None:
        await self.store.set(
            error_key(kind, dispatch_id), error, self.settings.dispatch_result_ttl
        )

    async def clear_error(self, kind: str, dispatch_id: str) -> None:
        """Drop the error left by an earlier failed attempt."""
        await self.store.hdel(status_key(kind, dispatch_id), "error")
        await self.store.delete(error_key(kind, dispatch_id))

    async def fail(self, kind: str, dispatch_id: str, error: str, **fields: Any) -> None:
        """Record a terminal failure in the status sink."""
        await self.set_status(kind, dispatch_id, STATUS_FAILED, error=error, **fields)
        await self.store_error(kind, dispatch_id, error)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def deliver(
        self,
        channel: Channel,
        recipient: str,
        text: str,
        *,
        subject: Optional[str] = None,
        actions: Optional[ConfirmationActions] = None,
    ) -> DeliveryResult:
        adapter = self.channels.get(channel)
        if adapter is None:
            result = DeliveryResult(False, Channel(channel).value, recipient, "Unsupported channel")
        else:
            result = await adapter.deliver(recipient, text, subject=subject, actions=actions)
        DELIVERY_ATTEMPT_TOTAL.labels(
            channel=result.channel, result="success" if result.success else "failure"
        ).inc()
        return result

    async def notify_operators(
        self,
        channel: Channel,
        text: str,
        *,
        requested_by: Optional[str] = None,
        subject: Optional[str] = None,
        actions: Optional[ConfirmationActions] = None,
    ) -> List[DeliveryResult]:
        """Send ``text`` to every operator recipient on ``channel``."""
        results = []
        for recipient in self.operators.recipients(channel, requested_by):
            results.append(
                await self.deliver(channel, recipient, text, subject=subject, actions=actions)
            )
        return results
