"""
Event ingestion endpoint for downstream services.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, status

from comm_service.api.deps import get_container, require_service_token
from comm_service.schemas.events import EventIn
from comm_service.services.container import ServiceContainer

router = APIRouter(prefix="/events", tags=["events"])


@router.post("", status_code=status.HTTP_202_ACCEPTED)
async def report_event(
    event: EventIn,
    container: ServiceContainer = Depends(get_container),
    _: Dict[str, Any] = Depends(require_service_token),
) -> Dict[str, Any]:
    """Record progress of a dispatched command and notify its requester."""
    return await container.events.handle(event)
