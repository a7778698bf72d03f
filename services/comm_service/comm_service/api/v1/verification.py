"""
Verification API endpoints: OTP / magic-link issuance and redemption.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Query, status

from comm_service.api.deps import get_container, require_service_token
from comm_service.schemas.verification import (
    VerificationConfirmRequest,
    VerificationResult,
    VerificationStartRequest,
    VerificationStarted,
    VerificationStatus,
)
from comm_service.services.container import ServiceContainer

router = APIRouter(prefix="/verification", tags=["verification"])


@router.post(
    "/start", response_model=VerificationStarted, status_code=status.HTTP_202_ACCEPTED
)
async def start_verification(
    request: VerificationStartRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    container: ServiceContainer = Depends(get_container),
    _: Dict[str, Any] = Depends(require_service_token),
):
    """
    Issue a one-time code or magic link and deliver it to the recipient.

    Returns 502 when the channel could not deliver; no record is left behind.
    """

    async def operation() -> Dict[str, Any]:
        started = await container.verification.start(request)
        return started.model_dump(mode="json")

    return await container.idempotency.execute(idempotency_key, operation)


@router.post("/confirm", response_model=VerificationResult)
async def confirm_verification(
    request: VerificationConfirmRequest,
    container: ServiceContainer = Depends(get_container),
    _: Dict[str, Any] = Depends(require_service_token),
):
    """Redeem a code or link token: 200, or 400 / 410 / 429."""
    return await container.verification.confirm(request.verification_id, request.token)


@router.get("/magic-link", response_model=VerificationResult)
async def redeem_magic_link(
    token: str = Query(..., min_length=1),
    container: ServiceContainer = Depends(get_container),
):
    return await container.verification.confirm_magic_link(token)


@router.get("/{verification_id}", response_model=VerificationStatus)
async def get_verification_status(
    verification_id: str,
    container: ServiceContainer = Depends(get_container),
    _: Dict[str, Any] = Depends(require_service_token),
):
    return await container.verification.status(verification_id)
