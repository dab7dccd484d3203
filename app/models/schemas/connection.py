"""
Connection Schemas
Stored OAuth credential set for one (user, provider) pair
"""
from datetime import datetime, timedelta, timezone
from typing import Optional
from pydantic import BaseModel, field_validator

GMAIL = "gmail"
TEAMLEADER = "teamleader"
PROVIDERS = (GMAIL, TEAMLEADER)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps from the database as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Connection(BaseModel):
    """One row of the `connections` table."""

    id: Optional[str] = None
    user_id: str
    provider: str
    account_email: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    is_active: bool = True
    sync_status: str = "idle"
    sync_error_count: int = 0
    last_sync_error: Optional[str] = None
    last_sync_timestamp: Optional[datetime] = None
    quota_usage: int = 0
    last_quota_reset: Optional[datetime] = None

    @field_validator("expires_at", "last_sync_timestamp", "last_quota_reset")
    @classmethod
    def _normalize_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @field_validator("sync_error_count", "quota_usage", mode="before")
    @classmethod
    def _null_counter(cls, value):
        return value or 0

    def needs_refresh(self, buffer: timedelta, now: Optional[datetime] = None) -> bool:
        """True when the access token is missing or expires within `buffer`."""
        now = now or datetime.now(timezone.utc)
        if not self.access_token or self.expires_at is None:
            return True
        return self.expires_at <= now + buffer


class OAuthAuthorizeRequest(BaseModel):
    """Request body for building a consent URL."""
    state: Optional[str] = None


class OAuthCallbackRequest(BaseModel):
    """Authorization code returned by the provider after consent."""
    code: str
