"""
Data Source Providers
Wire calls and record mapping for the external APIs (Gmail, TeamLeader)
"""
from app.services.sync.providers.gmail import normalize_gmail_message
from app.services.sync.providers.teamleader import ENTITIES, get_entity

__all__ = [
    "normalize_gmail_message",
    "ENTITIES",
    "get_entity",
]
