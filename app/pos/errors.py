"""Error taxonomy for the POS integration.

Every error carries the HTTP status it maps to and a client-safe detail.
Provider response bodies are kept on ``ExternalApiError`` for diagnosis
but never copied into ``detail``.
"""
from typing import Optional


class PosIntegrationError(Exception):
    status_code = 500
    default_detail = "POS integration error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class UnauthorizedError(PosIntegrationError):
    status_code = 401
    default_detail = "Unauthorized"


class ForbiddenError(PosIntegrationError):
    status_code = 403
    default_detail = "Forbidden"


class NotFoundError(PosIntegrationError):
    status_code = 404
    default_detail = "Not found"


class ConflictError(PosIntegrationError):
    status_code = 409
    default_detail = "Conflict"


class BadRequestError(PosIntegrationError):
    status_code = 400
    default_detail = "Bad request"


class ServiceUnavailableError(PosIntegrationError):
    status_code = 503
    default_detail = "Service unavailable"


class CipherConfigurationError(ServiceUnavailableError):
    default_detail = "Credential encryption is not configured"


class DecryptionError(PosIntegrationError):
    status_code = 500
    default_detail = "Stored POS credential could not be decrypted"


class ExternalApiError(PosIntegrationError):
    """Non-2xx response (or transport failure) from the POS provider."""

    status_code = 502
    default_detail = "POS provider request failed"

    def __init__(self, upstream_status: Optional[int], body: str = ""):
        self.upstream_status = upstream_status
        self.body = body
        super().__init__()

    @property
    def is_transient(self) -> bool:
        """Network failures and 5xx may succeed on retry; 4xx will not."""
        return self.upstream_status is None or self.upstream_status >= 500

    def __str__(self) -> str:
        return f"POS API error {self.upstream_status}: {self.body[:200]}"
