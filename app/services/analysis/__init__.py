"""
Analysis System
LLM-backed classification and customer analytics
"""
from app.services.analysis.dispatcher import KINDS, analyze_pending_emails, dispatch

__all__ = ["KINDS", "analyze_pending_emails", "dispatch"]
