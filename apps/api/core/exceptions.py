"""
Custom exception classes and error handling.

Two families live here:
- APIException and subclasses: HTTP-facing errors with a consistent response body.
- IngestionError and subclasses: domain errors raised by the ingestion services.
  Routers and queue handlers translate these (see `http_error_for`).
"""
from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class NotFoundError(APIException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found: {identifier}",
            error_code="NOT_FOUND"
        )


class BadRequestError(APIException):
    """Malformed or rejected request."""

    def __init__(self, detail: str, error_code: str = "BAD_REQUEST"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code=error_code
        )


class UnauthorizedError(APIException):
    """Authentication required."""

    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="UNAUTHORIZED",
        )


class UpstreamError(APIException):
    """Provider or credential failure surfaced to an HTTP caller."""

    def __init__(self, detail: str, status_code: int = status.HTTP_502_BAD_GATEWAY):
        super().__init__(
            status_code=status_code,
            detail=detail,
            error_code="UPSTREAM_ERROR"
        )


# ---------------------------------------------------------------------------
# Ingestion domain errors
# ---------------------------------------------------------------------------


class IngestionError(Exception):
    """Base class for ingestion failures."""


class TransientIngestionError(IngestionError):
    """Retryable: abort the current loop and rely on redelivery."""


class ProviderRateLimited(TransientIngestionError):
    def __init__(self, message: str, *, retry_after_s: int = 900):
        super().__init__(message)
        self.retry_after_s = int(retry_after_s)


class ProviderRequestFailed(TransientIngestionError):
    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StorageError(TransientIngestionError):
    """Object storage read/write failed."""


class PermanentRecordError(IngestionError):
    """One record cannot be processed; skip it and continue."""


class NotQualifyingActivity(PermanentRecordError):
    """The activity's sport is not an endurance sport."""


class UnsupportedProvider(PermanentRecordError):
    pass


class MalformedPayload(PermanentRecordError):
    pass


class CredentialError(IngestionError):
    """Fatal to the enclosing task."""


class CredentialNotFound(CredentialError):
    def __init__(self, provider_id: int, user_id: Any):
        super().__init__(f"no credentials for provider={provider_id} user={user_id}")
        self.provider_id = provider_id
        self.user_id = user_id


class RefreshFailed(CredentialError):
    pass


class WebhookSecurityError(IngestionError):
    """Rejected callback; no state is mutated."""


class InvalidHandshake(WebhookSecurityError):
    pass


class UnknownSubscription(WebhookSecurityError):
    def __init__(self, subscription_id: Any):
        super().__init__(f"subscription {subscription_id} is not registered")
        self.subscription_id = subscription_id


class UserNotFound(IngestionError):
    def __init__(self, provider: str, external_id: Any):
        super().__init__(f"user not found: provider={provider} external_id={external_id}")
        self.provider = provider
        self.external_id = external_id


def http_error_for(exc: IngestionError) -> APIException:
    """Map a domain error to the HTTP error a webhook/callback caller sees."""
    if isinstance(exc, UserNotFound):
        return NotFoundError("User", str(exc.external_id))
    if isinstance(exc, UnsupportedProvider):
        return NotFoundError("Provider", str(exc))
    if isinstance(exc, (WebhookSecurityError, MalformedPayload)):
        return BadRequestError(str(exc), error_code="INVALID_EVENT")
    if isinstance(exc, ProviderRateLimited):
        return UpstreamError(str(exc), status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    if isinstance(exc, (CredentialError, ProviderRequestFailed)):
        return UpstreamError(str(exc))
    return APIException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal server error",
        error_code="INTERNAL_ERROR",
    )
