"""
Pydantic schemas for OTP / magic-link verification.
"""

from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field

from comm_service.schemas.common import Recipient


class VerificationMethod(str, Enum):
    EMAIL = "email"
    TELEGRAM = "telegram"


class VerificationMode(str, Enum):
    OTP = "otp"
    MAGIC_LINK = "magic_link"


class VerificationStartRequest(BaseModel):
    """Issue a one-time secret bound to a purpose and recipient."""

    method: VerificationMethod
    purpose: str = Field(..., min_length=1, examples=["login"])
    to: Recipient
    mode: VerificationMode
    ttl_seconds: int = Field(600, ge=60, le=3600)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class VerificationStarted(BaseModel):
    verification_id: str = Field(..., examples=["ver_abc"])
    method: VerificationMethod
    mode: VerificationMode
    expires_at: str


class VerificationConfirmRequest(BaseModel):
    verification_id: str = Field(..., min_length=1)
    token: str = Field(..., min_length=1)


class VerificationResult(BaseModel):
    verified: bool
    verification_id: str
    purpose: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class VerificationStatus(BaseModel):
    verification_id: str
    verified: bool
    pending: bool
