"""
Pydantic Schemas
All request/response models for API endpoints
"""

# Connection schemas (Token Store rows, OAuth)
from .connection import Connection, OAuthAuthorizeRequest, OAuthCallbackRequest

# Sync schemas
from .sync import (
    SyncProgress,
    TeamLeaderSyncRequest,
    TeamLeaderImportRequest,
    GmailSyncRequest,
    GmailBackfillRequest,
    ScheduledSyncRequest,
)

# Analysis schemas
from .analysis import AnalysisRequest, BatchAnalysisRequest

# Email schemas
from .email import SendEmailRequest

__all__ = [
    # Connection
    "Connection",
    "OAuthAuthorizeRequest",
    "OAuthCallbackRequest",
    # Sync
    "SyncProgress",
    "TeamLeaderSyncRequest",
    "TeamLeaderImportRequest",
    "GmailSyncRequest",
    "GmailBackfillRequest",
    "ScheduledSyncRequest",
    # Analysis
    "AnalysisRequest",
    "BatchAnalysisRequest",
    # Email
    "SendEmailRequest",
]
