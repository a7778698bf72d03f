"""
Message API endpoints: send, confirmation and status lookup.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Query, status

from comm_service.api.deps import get_container, require_service_token
from comm_service.constants import KIND_MESSAGE
from comm_service.core.exceptions import DispatchNotFoundError
from comm_service.schemas.common import ActionResponse, ConfirmationDecision, DispatchStatusResponse
from comm_service.schemas.messages import MessageAccepted, MessageSendRequest
from comm_service.services.container import ServiceContainer

router = APIRouter(prefix="/messages", tags=["messages"])


@router.post("/send", response_model=MessageAccepted, status_code=status.HTTP_202_ACCEPTED)
async def send_message(
    request: MessageSendRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    container: ServiceContainer = Depends(get_container),
    _: Dict[str, Any] = Depends(require_service_token),
):
    """Queue a message for delivery, with fallback channels if routing lists any."""

    async def operation() -> Dict[str, Any]:
        accepted = await container.messages.send(request)
        return accepted.model_dump(mode="json")

    return await container.idempotency.execute(idempotency_key, operation)


@router.get("/confirm", response_model=ActionResponse)
async def confirm_message_link(
    token: str = Query(..., min_length=1),
    action: Optional[str] = Query(None, pattern="^(confirm|reject)$"),
    container: ServiceContainer = Depends(get_container),
):
    outcome = await container.confirmation.decide_from_link(token, action, kind=KIND_MESSAGE)
    return ActionResponse(message=f"Message {outcome}", data={"status": outcome})


@router.post("/{message_id}/confirm", response_model=ActionResponse)
async def confirm_message(
    message_id: str,
    decision: ConfirmationDecision,
    container: ServiceContainer = Depends(get_container),
    _: Dict[str, Any] = Depends(require_service_token),
):
    outcome = await container.confirmation.decide(message_id, decision.confirmed)
    return ActionResponse(
        message=f"Message {outcome}", data={"message_id": message_id, "status": outcome}
    )


@router.get("/{message_id}/status", response_model=DispatchStatusResponse)
async def get_message_status(
    message_id: str,
    container: ServiceContainer = Depends(get_container),
    _: Dict[str, Any] = Depends(require_service_token),
):
    record = await container.engine.get_status(KIND_MESSAGE, message_id)
    if record is None:
        raise DispatchNotFoundError(message_id)
    return DispatchStatusResponse.from_record(message_id, record)
