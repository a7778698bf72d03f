"""
OTP and magic-link verification.

A verification record lives under ``verification:{id}`` for its TTL. Wrong
tokens increment ``verification:{id}:attempts``; the third wrong token burns
the record. A correct token claims the record by deleting it, so a secret can
be redeemed exactly once even under concurrent confirms.
"""

import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Tuple
from urllib.parse import urlencode

from comm_service.channels.base import NotificationChannel
from comm_service.channels.registry import ChannelRegistry
from comm_service.constants import (
    VERIFICATION_ID_PREFIX,
    attempts_key,
    verification_key,
    verified_key,
)
from comm_service.core.config import Settings
from comm_service.core.exceptions import (
    AttemptsExceededError,
    InvalidTokenError,
    PayloadValidationError,
    VerificationDeliveryError,
    VerificationGoneError,
)
from comm_service.core.metrics import DELIVERY_ATTEMPT_TOTAL, VERIFICATION_TOTAL
from comm_service.core.security import TokenIssuer
from comm_service.core.store import KeyValueStore
from comm_service.models import VerificationRecord
from comm_service.schemas.common import Channel
from comm_service.schemas.verification import (
    VerificationMode,
    VerificationResult,
    VerificationStartRequest,
    VerificationStarted,
    VerificationStatus,
)

logger = logging.getLogger(__name__)


def generate_otp() -> str:
    """Six-digit numeric code from the OS CSPRNG."""
    return str(secrets.randbelow(900000) + 100000)


def _same(a: str, b: str) -> bool:
    return secrets.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


class VerificationEngine:
    """Issues, delivers and redeems one-time verification secrets."""

    def __init__(
        self,
        store: KeyValueStore,
        channels: ChannelRegistry,
        tokens: TokenIssuer,
        settings: Settings,
    ):
        self.store = store
        self.channels = channels
        self.tokens = tokens
        self.settings = settings

    def _resolve(
        self, request: VerificationStartRequest
    ) -> Tuple[NotificationChannel, str]:
        channel = Channel(request.method.value)
        adapter = self.channels.get(channel)
        recipient = adapter.recipient_for(request.to) if adapter is not None else None
        if not recipient:
            raise PayloadValidationError(
                f"Recipient for {channel.value} verification is required"
            )
        return adapter, recipient

    def magic_link_url(self, token: str) -> str:
        base = self.settings.base_url.rstrip("/")
        return f"{base}/api/v1/verification/magic-link?{urlencode({'token': token})}"

    async def start(self, request: VerificationStartRequest) -> VerificationStarted:
        """
        Issue and deliver a verification secret.

        The recipient is checked before anything is written; a failed delivery
        removes the record again so no unusable secret lingers.

        Raises:
            PayloadValidationError: No recipient for the requested method
            VerificationDeliveryError: The channel could not deliver the secret
        """
        adapter, recipient = self._resolve(request)

        verification_id = f"{VERIFICATION_ID_PREFIX}{uuid.uuid4()}"
        minutes = max(1, request.ttl_seconds // 60)
        if request.mode == VerificationMode.OTP:
            token = generate_otp()
            subject = "Your verification code"
            text = (
                f"Your verification code is: {token}\n\n"
                f"This code expires in {minutes} minutes."
            )
        else:
            token = self.tokens.issue_magic_link(
                {"verification_id": verification_id, "purpose": request.purpose},
                request.ttl_seconds,
            )
            subject = "Your sign-in link"
            text = (
                f"Click the link below to verify:\n{self.magic_link_url(token)}\n\n"
                f"This link expires in {minutes} minutes."
            )

        record = VerificationRecord(id=verification_id, token=token, **request.model_dump())
        key = verification_key(verification_id)
        await self.store.set(key, record.model_dump_json(), request.ttl_seconds)

        result = await adapter.deliver(recipient, text, subject=subject)
        DELIVERY_ATTEMPT_TOTAL.labels(
            channel=result.channel, result="success" if result.success else "failure"
        ).inc()
        if not result.success:
            await self.store.delete(key)
            VERIFICATION_TOTAL.labels(mode=request.mode.value, result="undelivered").inc()
            raise VerificationDeliveryError(
                f"Could not deliver verification via {result.channel}: {result.error}"
            )

        expires_at = datetime.now(timezone.utc) + timedelta(seconds=request.ttl_seconds)
        VERIFICATION_TOTAL.labels(mode=request.mode.value, result="started").inc()
        logger.info(f"Verification {verification_id} started for {request.purpose}")
        return VerificationStarted(
            verification_id=verification_id,
            method=request.method,
            mode=request.mode,
            expires_at=expires_at.replace(microsecond=0).isoformat(),
        )

    def _matches(self, record: VerificationRecord, token: str) -> bool:
        if record.mode == VerificationMode.OTP:
            return _same(record.token, token)
        claims = self.tokens.verify_magic_link(token)
        if not claims or claims.get("verification_id") != record.id:
            return False
        return _same(record.token, token)

    async def _reject(self, record: VerificationRecord) -> None:
        count = await self.store.incr_with_ttl(
            attempts_key(record.id), self.settings.verification_attempts_ttl
        )
        if count >= self.settings.verification_max_attempts:
            await self.store.delete(verification_key(record.id), attempts_key(record.id))
            VERIFICATION_TOTAL.labels(mode=record.mode.value, result="exhausted").inc()
            logger.warning(f"Verification {record.id} burned after {count} wrong attempts")
            raise AttemptsExceededError(record.id)
        VERIFICATION_TOTAL.labels(mode=record.mode.value, result="mismatch").inc()
        raise InvalidTokenError()

    async def confirm(self, verification_id: str, token: str) -> VerificationResult:
        """
        Redeem ``token`` for ``verification_id``.

        Raises:
            VerificationGoneError: Record missing, expired or already redeemed
            InvalidTokenError: Wrong token, attempts remain
            AttemptsExceededError: Wrong token and the attempt budget is spent
        """
        key = verification_key(verification_id)
        raw = await self.store.get(key)
        if raw is None:
            raise VerificationGoneError(verification_id)
        record = VerificationRecord.model_validate_json(raw)

        if not self._matches(record, token):
            await self._reject(record)

        # Only the caller whose DEL removed the record may report success
        if await self.store.delete(key) != 1:
            raise VerificationGoneError(verification_id)

        await self.store.set(
            verified_key(verification_id), "true", self.settings.verification_marker_ttl
        )
        await self.store.delete(attempts_key(verification_id))
        VERIFICATION_TOTAL.labels(mode=record.mode.value, result="verified").inc()
        logger.info(f"Verification {verification_id} confirmed for {record.purpose}")
        return VerificationResult(
            verified=True,
            verification_id=verification_id,
            purpose=record.purpose,
            metadata=record.metadata,
        )

    async def confirm_magic_link(self, token: str) -> VerificationResult:
        claims = self.tokens.verify_magic_link(token)
        if not claims or not claims.get("verification_id"):
            raise InvalidTokenError("Invalid or expired magic link")
        return await self.confirm(claims["verification_id"], token)

    async def status(self, verification_id: str) -> VerificationStatus:
        return VerificationStatus(
            verification_id=verification_id,
            verified=await self.store.exists(verified_key(verification_id)),
            pending=await self.store.exists(verification_key(verification_id)),
        )
