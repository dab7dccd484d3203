"""
Background Job Queue
Dramatiq-based async task processing
"""
from app.services.jobs.broker import broker
from app.services.jobs.tasks import scheduled_sync_task

__all__ = ["broker", "scheduled_sync_task"]
