"""
Pydantic schemas for events reported by downstream services.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class EventStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class EventMetrics(BaseModel):
    # Services may attach arbitrary extra metrics
    model_config = ConfigDict(extra="allow")

    latency_ms: Optional[int] = Field(None, ge=0)


class EventIn(BaseModel):
    """Progress report on a previously dispatched command."""

    command_id: str = Field(..., min_length=1)
    service: str = Field(..., min_length=1)
    status: EventStatus
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    metrics: Optional[EventMetrics] = None
