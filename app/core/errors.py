"""
Error Taxonomy
Exceptions raised by the sync, token and analysis layers

HTTP MAPPING (see app/middleware/error_handler.py):
- AuthError             -> 401
- ProviderApiError      -> 400
- InvalidModelResponse  -> 500
- QuotaExceeded         -> never surfaced, orchestrators report partial progress
- MappingError          -> never surfaced, collected per batch
- RecordNotFound        -> 400
"""
from typing import Any, Optional


class SyncError(Exception):
    """Base class for every domain error. `status_code` is the HTTP status it maps to."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthError(SyncError):
    """Expired or invalid credentials. The user has to re-consent."""

    status_code = 401

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider} authentication failed: {message}")
        self.provider = provider


class ProviderApiError(SyncError):
    """Non-2xx response from Gmail or TeamLeader."""

    status_code = 400

    def __init__(self, provider: str, status: int, body: str):
        super().__init__(f"{provider} API error {status}: {body[:500]}")
        self.provider = provider
        self.provider_status = status
        self.body = body


class MappingError(SyncError):
    """A single remote record did not match the expected shape."""

    status_code = 400

    def __init__(self, record_id: Optional[Any], message: str):
        super().__init__(message)
        self.record_id = record_id


class InvalidModelResponse(SyncError):
    """LLM output was not a parseable JSON object."""

    status_code = 500

    def __init__(self, kind: str, raw: Optional[str]):
        super().__init__(f"Invalid response from model for {kind} analysis")
        self.kind = kind
        self.raw = raw


class QuotaExceeded(SyncError):
    """Soft stop: the per-connection quota estimate crossed its ceiling."""

    status_code = 429

    def __init__(self, used: int, limit: int):
        super().__init__(f"Quota ceiling reached ({used:,} of {limit:,} units)")
        self.used = used
        self.limit = limit


class RecordNotFound(LookupError):
    """A referenced row (connection, email, customer) does not exist. HTTP 400."""
