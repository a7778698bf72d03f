"""
Shared dependencies for API endpoints.
Provides the service container and bearer-token authentication.
"""

from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from comm_service.services.container import ServiceContainer

# HTTP Bearer token scheme
security = HTTPBearer(auto_error=False)


def get_container(request: Request) -> ServiceContainer:
    """Return the container built by the application lifespan."""
    return request.app.state.container


def require_service_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    """
    Authenticate a calling service.

    Args:
        credentials: HTTP Bearer credentials from request
        container: Service container holding the token issuer

    Returns:
        dict: Verified token claims

    Raises:
        HTTPException: If the token is missing, invalid or expired
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    claims = container.tokens.verify(credentials.credentials)
    if claims is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return claims
