"""
Pydantic schemas for the message sending API.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from comm_service.schemas.common import AuditInfo, Channel, Recipient, Routing


class MessageSendRequest(BaseModel):
    """Request to deliver a templated message to a recipient."""

    channel: Channel
    template_key: str = Field(..., min_length=1, examples=["alerts.generic"])
    locale: Optional[str] = Field(None, examples=["es-AR"])
    data: Dict[str, Any] = Field(..., description="Template variables")
    to: Recipient
    require_confirmation: bool = False
    routing: Optional[Routing] = None
    audit: Optional[AuditInfo] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class MessageAccepted(BaseModel):
    """Synchronous acknowledgement of an accepted message."""

    message_id: str = Field(..., examples=["msg_abc"])
    status: str = Field(..., examples=["queued", "pending_confirmation"])
    channel_selected: Channel
