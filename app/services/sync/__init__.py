"""
Data Sync System
Token store, token refresh, paginated fetch and progress tracking for
Gmail and TeamLeader
"""
from app.services.sync.connections import get_connection, require_connection, save_connection
from app.services.sync.tokens import ensure_fresh, refresh, refresh_expiring_connections

__all__ = [
    "get_connection",
    "require_connection",
    "save_connection",
    "ensure_fresh",
    "refresh",
    "refresh_expiring_connections",
]
