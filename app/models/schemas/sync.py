"""
Sync Schemas
Request bodies for sync endpoints and the progress checkpoint model
"""
from datetime import date
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, model_validator


class SyncProgress(BaseModel):
    """One row of `sync_progress`."""
    id: Optional[str] = None
    user_id: str
    import_type: str
    range_key: str = "all"
    range_start: Optional[str] = None
    range_end: Optional[str] = None
    status: str = "in_progress"
    cursor: Optional[str] = None
    records_processed: int = 0
    quota_used: int = 0
    error_details: Optional[str] = None


class TeamLeaderSyncRequest(BaseModel):
    """Incremental TeamLeader sync for the calling user."""
    entity_types: Optional[List[str]] = None
    max_batches: Optional[int] = Field(default=None, ge=1, le=100)


class TeamLeaderImportRequest(BaseModel):
    """Resumable import of one entity type; batch_size may change between calls."""
    import_type: str
    batch_size: int = Field(default=100, ge=1, le=100)
    max_batches: Optional[int] = Field(default=None, ge=1, le=100)


class GmailSyncRequest(BaseModel):
    max_batches: Optional[int] = Field(default=None, ge=1, le=100)


class GmailBackfillRequest(BaseModel):
    """
    action=start runs (or resumes) the backfill; action=status only reports
    the progress rows.
    """
    action: Literal["start", "status"] = "start"
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    max_batches: Optional[int] = Field(default=None, ge=1, le=100)

    @model_validator(mode="after")
    def check_range(self):
        if self.action == "start":
            if not self.start_date or not self.end_date:
                raise ValueError("start_date and end_date are required to start a backfill")
            if self.start_date > self.end_date:
                raise ValueError("start_date must not be after end_date")
        return self


class ScheduledSyncRequest(BaseModel):
    """Cron trigger for all connections of one provider."""
    provider: Literal["gmail", "teamleader"]
