"""
Command API endpoints: dispatch, confirmation and status lookup.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Query, status

from comm_service.api.deps import get_container, require_service_token
from comm_service.constants import KIND_COMMAND
from comm_service.core.exceptions import DispatchNotFoundError
from comm_service.schemas.commands import CommandAccepted, CommandDispatchRequest
from comm_service.schemas.common import ActionResponse, ConfirmationDecision, DispatchStatusResponse
from comm_service.services.container import ServiceContainer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/commands", tags=["commands"])


@router.post(
    "/dispatch", response_model=CommandAccepted, status_code=status.HTTP_202_ACCEPTED
)
async def dispatch_command(
    request: CommandDispatchRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    container: ServiceContainer = Depends(get_container),
    claims: Dict[str, Any] = Depends(require_service_token),
):
    """
    Dispatch a command to a downstream service.

    Repeating the call with the same ``Idempotency-Key`` replays the first
    response instead of dispatching again.
    """
    logger.info(f"Command dispatch from {claims.get('sub')}: {request.service}/{request.action}")

    async def operation() -> Dict[str, Any]:
        accepted = await container.commands.dispatch(request)
        return accepted.model_dump(mode="json")

    return await container.idempotency.execute(idempotency_key, operation)


@router.get("/confirm", response_model=ActionResponse)
async def confirm_command_link(
    token: str = Query(..., min_length=1),
    action: Optional[str] = Query(None, pattern="^(confirm|reject)$"),
    container: ServiceContainer = Depends(get_container),
):
    """Magic-link confirmation; the signed token authenticates the click."""
    outcome = await container.confirmation.decide_from_link(token, action, kind=KIND_COMMAND)
    return ActionResponse(message=f"Command {outcome}", data={"status": outcome})


@router.post("/{command_id}/confirm", response_model=ActionResponse)
async def confirm_command(
    command_id: str,
    decision: ConfirmationDecision,
    container: ServiceContainer = Depends(get_container),
    _: Dict[str, Any] = Depends(require_service_token),
):
    outcome = await container.confirmation.decide(command_id, decision.confirmed)
    return ActionResponse(
        message=f"Command {outcome}", data={"command_id": command_id, "status": outcome}
    )


@router.get("/{command_id}/status", response_model=DispatchStatusResponse)
async def get_command_status(
    command_id: str,
    container: ServiceContainer = Depends(get_container),
    _: Dict[str, Any] = Depends(require_service_token),
):
    record = await container.engine.get_status(KIND_COMMAND, command_id)
    if record is None:
        raise DispatchNotFoundError(command_id)
    return DispatchStatusResponse.from_record(command_id, record)
