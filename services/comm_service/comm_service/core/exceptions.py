"""
Custom exception classes for the application.
HTTP-facing errors subclass HTTPException; delivery and configuration errors
stay plain exceptions because they are captured into the dispatch status record.
"""

from fastapi import HTTPException, status


class CommServiceError(HTTPException):
    """Base exception for errors surfaced to API callers."""

    error_type = "comm_service_error"

    def __init__(
        self, detail: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    ):
        super().__init__(status_code=status_code, detail=detail)


class ConflictError(CommServiceError):
    """Raised when a request with the same key or claim is already in flight."""

    error_type = "conflict"

    def __init__(self, detail: str = "Request is already being processed"):
        super().__init__(detail=detail, status_code=status.HTTP_409_CONFLICT)


class DispatchNotFoundError(CommServiceError):
    """Raised when a command or message id is unknown or has expired."""

    error_type = "not_found"

    def __init__(self, dispatch_id: str):
        super().__init__(
            detail=f"Dispatch '{dispatch_id}' not found or expired",
            status_code=status.HTTP_404_NOT_FOUND,
        )


class VerificationGoneError(CommServiceError):
    """Raised when a verification record is missing, expired or already used."""

    error_type = "gone"

    def __init__(self, verification_id: str):
        super().__init__(
            detail=f"Verification '{verification_id}' not found or expired",
            status_code=status.HTTP_410_GONE,
        )


class InvalidTokenError(CommServiceError):
    """Raised when a submitted verification token does not match."""

    error_type = "invalid_token"

    def __init__(self, detail: str = "Invalid verification token"):
        super().__init__(detail=detail, status_code=status.HTTP_400_BAD_REQUEST)


class AttemptsExceededError(CommServiceError):
    """Raised when a verification exhausts its attempt budget."""

    error_type = "attempts_exceeded"

    def __init__(self, verification_id: str):
        super().__init__(
            detail=f"Max verification attempts exceeded for '{verification_id}'",
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        )


class VerificationDeliveryError(CommServiceError):
    """Raised when the verification secret could not be delivered."""

    error_type = "delivery_failure"

    def __init__(self, detail: str):
        super().__init__(detail=detail, status_code=status.HTTP_502_BAD_GATEWAY)


class PayloadValidationError(CommServiceError):
    """Raised for payloads that pass schema validation but cannot be routed."""

    error_type = "validation_error"

    def __init__(self, detail: str):
        super().__init__(detail=detail, status_code=status.HTTP_400_BAD_REQUEST)


class DeliveryError(Exception):
    """A channel adapter or outbound call failed."""

    pass


class ConfigurationError(Exception):
    """A target service URL or channel credential is missing."""

    pass
