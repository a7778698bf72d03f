"""Pydantic record models for the state kept in the shared store.

These models validate the shapes written under ``command:{id}``,
``message:{id}``, ``verification:{id}`` and the audit lists, and make call
sites more explicit than passing generic dicts around.
"""

from __future__ import annotations

import datetime as _dt
import uuid
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from comm_service.constants import KIND_COMMAND, KIND_MESSAGE
from comm_service.schemas.commands import CommandDispatchRequest
from comm_service.schemas.common import AuditInfo, Channel
from comm_service.schemas.messages import MessageSendRequest
from comm_service.schemas.verification import VerificationStartRequest


def now_iso() -> str:
    return _dt.datetime.now(_dt.timezone.utc).replace(microsecond=0).isoformat()


def _with_trace(audit: Optional[AuditInfo]) -> AuditInfo:
    """Audit info carrying a trace id, minting one when the caller sent none."""
    audit = audit or AuditInfo()
    if not audit.trace_id:
        audit = audit.model_copy(update={"trace_id": str(uuid.uuid4())})
    return audit


class CommandUnit(CommandDispatchRequest):
    """Persisted command dispatch unit."""

    id: str
    kind: str = KIND_COMMAND
    created_at: str = Field(default_factory=now_iso)

    @model_validator(mode="after")
    def _assign_trace(self):
        self.audit = _with_trace(self.audit)
        return self

    @property
    def fallback(self) -> List[Channel]:
        return list(self.routing.fallback) if self.routing else []

    @property
    def trace_id(self) -> str:
        return self.audit.trace_id

    @property
    def requested_by(self) -> Optional[str]:
        return self.audit.requested_by if self.audit else None


class MessageUnit(MessageSendRequest):
    """Persisted message dispatch unit, with the channel chosen at intake."""

    id: str
    kind: str = KIND_MESSAGE
    channel_selected: Channel
    created_at: str = Field(default_factory=now_iso)

    @model_validator(mode="after")
    def _assign_trace(self):
        self.audit = _with_trace(self.audit)
        return self

    @property
    def fallback(self) -> List[Channel]:
        return list(self.routing.fallback) if self.routing else []

    @property
    def requested_by(self) -> Optional[str]:
        return self.audit.requested_by if self.audit else None

    @property
    def trace_id(self) -> str:
        return self.audit.trace_id


class DispatchStatus(BaseModel):
    """Parsed view of a ``{kind}:{id}:status`` hash."""

    model_config = ConfigDict(extra="allow")

    status: str
    service: Optional[str] = None
    channel: Optional[str] = None
    updated_at: Optional[str] = None
    output: Optional[str] = None
    error: Optional[str] = None
    retry_count: int = 0


class AuditEntry(BaseModel):
    """Write-once audit line appended per dispatch."""

    id: str
    kind: str
    target: str
    action: str
    requested_by: str = "system"
    trace_id: str
    args: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=now_iso)


class VerificationRecord(VerificationStartRequest):
    """Working record for an in-progress verification."""

    id: str
    token: str
    created_at: str = Field(default_factory=now_iso)
