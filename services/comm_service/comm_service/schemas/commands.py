"""
Pydantic schemas for the command dispatch API.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from comm_service.schemas.common import AuditInfo, Channel, Routing


class CommandDispatchRequest(BaseModel):
    """Request to run ``action`` on ``service``, optionally behind a confirmation gate."""

    service: str = Field(..., min_length=1, examples=["trading-service"])
    action: str = Field(..., min_length=1, examples=["strategy.pause"])
    args: Dict[str, Any] = Field(default_factory=dict)
    require_confirmation: bool = False
    channel: Optional[Channel] = Field(
        None, description="Channel used for the confirmation prompt and notifications"
    )
    routing: Optional[Routing] = None
    audit: Optional[AuditInfo] = None


class CommandAccepted(BaseModel):
    """Synchronous acknowledgement of a dispatched command."""

    command_id: str = Field(..., examples=["cmd_9x"])
    status: str = Field(..., examples=["pending_confirmation", "queued"])
