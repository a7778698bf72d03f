"""
Confirmation state machine shared by commands and messages.

    pending_confirmation --confirm--> queued --> processing --> completed|sent|failed
    pending_confirmation --reject---> rejected

The claim out of ``pending_confirmation`` is a compare-and-swap on the status
hash, so exactly one decision wins no matter how many triggers (API call,
magic link, Telegram button) race for it.
"""

import logging
from typing import Awaitable, Callable, Dict, Optional, Tuple
from urllib.parse import urlencode

from comm_service.channels.base import ConfirmationActions
from comm_service.constants import (
    MAGIC_LINK_PURPOSE_DISPATCH,
    STATUS_PENDING_CONFIRMATION,
    STATUS_QUEUED,
    STATUS_REJECTED,
    kind_from_id,
)
from comm_service.core.exceptions import (
    ConflictError,
    DispatchNotFoundError,
    InvalidTokenError,
    PayloadValidationError,
)
from comm_service.schemas.common import Channel
from comm_service.services.dispatcher import DispatchEngine, DispatchUnit

logger = logging.getLogger(__name__)

ACTION_CONFIRM = "confirm"
ACTION_REJECT = "reject"

Executor = Callable[[DispatchUnit], Awaitable[None]]


class ConfirmationStateMachine:
    """Sends confirmation prompts and applies confirm/reject decisions."""

    def __init__(self, engine: DispatchEngine):
        self.engine = engine
        self._executors: Dict[str, Executor] = {}

    def register(self, kind: str, executor: Executor) -> None:
        """Register the callable that schedules execution of a confirmed ``kind`` unit."""
        self._executors[kind] = executor

    def ensure_reachable(self, channel: Channel, requested_by: Optional[str] = None) -> None:
        """Refuse a gated dispatch up front when nobody could receive its prompt."""
        if not self.engine.operators.recipients(channel, requested_by):
            raise PayloadValidationError(
                f"No operator recipients configured for {Channel(channel).value} confirmation"
            )

    def confirmation_links(self, unit: DispatchUnit) -> ConfirmationActions:
        """Signed confirm/reject links for ``unit``, valid for the unit's lifetime."""
        base = f"{self.engine.settings.base_url.rstrip('/')}/api/v1/{unit.kind}s/confirm"
        ttl = self.engine.unit_ttl(unit)
        links = {}
        for action in (ACTION_CONFIRM, ACTION_REJECT):
            token = self.engine.tokens.issue_magic_link(
                {
                    "purpose": MAGIC_LINK_PURPOSE_DISPATCH,
                    "dispatch_id": unit.id,
                    "kind": unit.kind,
                    "action": action,
                },
                ttl,
            )
            links[action] = f"{base}?{urlencode({'token': token, 'action': action})}"
        return ConfirmationActions(
            reference_id=unit.id,
            confirm_url=links[ACTION_CONFIRM],
            reject_url=links[ACTION_REJECT],
        )

    async def request(
        self,
        unit: DispatchUnit,
        text: str,
        via: Channel,
        *,
        requested_by: Optional[str] = None,
        subject: Optional[str] = None,
        **fields: str,
    ) -> None:
        """Enter ``pending_confirmation`` and prompt the operators on ``via``."""
        await self.engine.set_status(unit.kind, unit.id, STATUS_PENDING_CONFIRMATION, **fields)

        results = await self.engine.notify_operators(
            via,
            text,
            requested_by=requested_by,
            subject=subject,
            actions=self.confirmation_links(unit),
        )
        failures = [r for r in results if not r.success]
        if failures:
            error = "; ".join(f"{r.channel}:{r.recipient}: {r.error}" for r in failures)
            logger.warning(f"Confirmation prompt for {unit.id} not fully delivered: {error}")
            await self.engine.annotate(unit.kind, unit.id, error=error)
        if len(failures) == len(results):
            logger.error(f"No operator received the confirmation prompt for {unit.id}")

    async def decide(self, dispatch_id: str, confirmed: bool) -> str:
        """
        Apply a decision to a pending unit.

        Returns:
            str: The new status (``queued`` or ``rejected``)

        Raises:
            DispatchNotFoundError: Unknown id or the unit's TTL elapsed
            ConflictError: The unit was already decided
        """
        kind = kind_from_id(dispatch_id)
        if kind is None:
            raise DispatchNotFoundError(dispatch_id)

        unit = await self.engine.load_unit(kind, dispatch_id)
        if unit is None:
            raise DispatchNotFoundError(dispatch_id)

        target = STATUS_QUEUED if confirmed else STATUS_REJECTED
        claimed = await self.engine.transition(
            kind, dispatch_id, [STATUS_PENDING_CONFIRMATION], target
        )
        if not claimed:
            raise ConflictError(f"{kind.capitalize()} {dispatch_id} is not awaiting confirmation")

        logger.info(f"{kind.capitalize()} {dispatch_id} {target} by operator decision")
        if confirmed:
            executor = self._executors.get(kind)
            if executor is None:
                raise RuntimeError(f"No executor registered for {kind}")
            await executor(unit)
        return target

    async def decide_from_link(
        self, token: str, action: Optional[str] = None, kind: Optional[str] = None
    ) -> str:
        """Apply the decision carried by a signed magic link."""
        claims = self.engine.tokens.verify_magic_link(token)
        if not claims or claims.get("purpose") != MAGIC_LINK_PURPOSE_DISPATCH:
            raise InvalidTokenError("Invalid or expired confirmation link")
        if action is not None and action != claims.get("action"):
            raise InvalidTokenError("Confirmation link does not match the requested action")
        if kind is not None and kind != claims.get("kind"):
            raise InvalidTokenError("Confirmation link belongs to a different dispatch kind")
        if claims.get("action") not in (ACTION_CONFIRM, ACTION_REJECT):
            raise InvalidTokenError("Confirmation link carries no action")

        return await self.decide(claims["dispatch_id"], claims["action"] == ACTION_CONFIRM)

    @staticmethod
    def parse_callback(data: str) -> Optional[Tuple[str, str]]:
        """Split Telegram callback data ``confirm:{id}`` / ``reject:{id}``."""
        action, sep, dispatch_id = data.partition(":")
        if not sep or action not in (ACTION_CONFIRM, ACTION_REJECT) or not dispatch_id:
            return None
        return action, dispatch_id
