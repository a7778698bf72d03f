"""
Security utilities for service-to-service authentication and magic links.
Handles JWT issuance and validation for scoped service tokens and for
short-lived confirmation/verification links.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from jose import JWTError, jwt

from comm_service.core.config import Settings

logger = logging.getLogger(__name__)

MAGIC_LINK_TOKEN_TYPE = "magic_link"
SERVICE_TOKEN_TYPE = "service"


class TokenIssuer:
    """Issues and verifies the JWTs used by the service."""

    def __init__(self, settings: Settings):
        self.secret_key = settings.jwt_secret_key
        self.algorithm = settings.jwt_algorithm
        self.issuer = settings.jwt_issuer
        self.audience = list(settings.jwt_audience)
        self.service_token_ttl = timedelta(minutes=settings.service_token_expire_minutes)
        self.magic_link_ttl = settings.magic_link_ttl

    def _encode(self, claims: Dict[str, Any], expires_delta: timedelta) -> str:
        now = datetime.now(timezone.utc)
        to_encode = dict(claims)
        to_encode.update(
            {
                "exp": now + expires_delta,
                "iat": now,
                "nbf": now,
                "jti": secrets.token_urlsafe(16),
                "iss": self.issuer,
            }
        )
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def _decode(self, token: str, audience: str) -> Optional[Dict[str, Any]]:
        try:
            return jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=audience,
                issuer=self.issuer,
                options={
                    "verify_signature": True,
                    "verify_exp": True,
                    "verify_nbf": True,
                    "verify_iat": True,
                    "verify_aud": True,
                    "verify_iss": True,
                    "require_exp": True,
                },
            )
        except JWTError as e:
            logger.warning(f"JWT verification failed: {str(e)}")
            return None

    def issue(self, subject: str, scopes: List[str]) -> str:
        """
        Create a service token for ``subject`` carrying ``scopes``.

        Args:
            subject: Calling service name (e.g. "comm-service")
            scopes: Permissions granted to the bearer

        Returns:
            str: The encoded JWT
        """
        claims = {
            "sub": subject,
            "service": subject,
            "scopes": list(scopes),
            "typ": SERVICE_TOKEN_TYPE,
            "aud": self.audience,
        }
        return self._encode(claims, self.service_token_ttl)

    def verify(self, token: str, audience: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Verify a service token addressed to ``audience`` (default: this service).

        Returns:
            Optional[dict]: Claims if valid, None otherwise
        """
        claims = self._decode(token, audience or self.issuer)
        if claims is None or claims.get("typ") != SERVICE_TOKEN_TYPE:
            return None
        return claims

    def issue_magic_link(self, data: Dict[str, Any], ttl_seconds: Optional[int] = None) -> str:
        """Create a signed, time-bound token embedding ``data``."""
        claims = dict(data)
        claims.update({"typ": MAGIC_LINK_TOKEN_TYPE, "aud": self.issuer})
        return self._encode(claims, timedelta(seconds=ttl_seconds or self.magic_link_ttl))

    def verify_magic_link(self, token: str) -> Optional[Dict[str, Any]]:
        """Return the embedded claims if the token is well formed, ours and unexpired."""
        claims = self._decode(token, self.issuer)
        if claims is None or claims.get("typ") != MAGIC_LINK_TOKEN_TYPE:
            return None
        return claims
