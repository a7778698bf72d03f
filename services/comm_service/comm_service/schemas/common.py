"""
Pydantic schemas shared by the command, message and verification APIs.
"""

import json
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class Channel(str, Enum):
    """Delivery channels; ``auto`` is resolved at intake."""

    TELEGRAM = "telegram"
    EMAIL = "email"
    AUTO = "auto"


class Routing(BaseModel):
    """Fallback order and lifetime of a dispatch unit."""

    fallback: List[Channel] = Field(
        default_factory=list, description="Channels tried in order if the primary fails"
    )
    ttl_seconds: Optional[int] = Field(
        None, ge=30, le=86400, description="Dispatch unit lifetime in seconds"
    )

    @field_validator("fallback")
    @classmethod
    def fallback_must_be_concrete(cls, value: List[Channel]) -> List[Channel]:
        if Channel.AUTO in value:
            raise ValueError("fallback channels must be concrete (telegram or email)")
        return value


class Recipient(BaseModel):
    """Where to deliver: a Telegram chat and/or an email address."""

    telegram_chat_id: Optional[int] = Field(None, description="Telegram chat ID")
    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN, description="Email address")


class AuditInfo(BaseModel):
    """Who asked for a dispatch and under which trace."""

    requested_by: Optional[str] = None
    trace_id: Optional[str] = None


class ConfirmationDecision(BaseModel):
    """Direct confirm/reject call for a pending dispatch."""

    confirmed: bool = Field(..., description="True to execute, False to reject")


class DispatchStatusResponse(BaseModel):
    """Last known state of a dispatch unit."""

    id: str
    status: str
    service: Optional[str] = None
    channel: Optional[str] = None
    updated_at: Optional[str] = None
    output: Optional[Any] = None
    error: Optional[str] = None
    retry_count: int = 0

    @classmethod
    def from_record(cls, dispatch_id: str, record: Any) -> "DispatchStatusResponse":
        """Build the response from a stored status hash, decoding JSON output."""
        output = record.output
        if output is not None:
            try:
                output = json.loads(output)
            except ValueError:
                pass
        return cls(
            id=dispatch_id,
            status=record.status,
            service=record.service,
            channel=record.channel,
            updated_at=record.updated_at,
            output=output,
            error=record.error,
            retry_count=record.retry_count,
        )


class ErrorResponse(BaseModel):
    """Standard error response format."""

    success: bool = False
    message: str = Field(..., description="Human-readable error message")
    error_type: str = Field(..., description="Error type identifier")
    detail: Optional[Any] = None


class ActionResponse(BaseModel):
    """Generic acknowledgement for callbacks."""

    success: bool = True
    message: str
    data: Optional[Dict[str, Any]] = None
