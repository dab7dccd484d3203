"""
Email Schemas
"""
from typing import Optional
from pydantic import BaseModel, Field


class SendEmailRequest(BaseModel):
    """Plain-text reply or new message from the connected Gmail account."""
    to: str = Field(..., min_length=3)
    subject: str
    body: str
    thread_id: Optional[str] = None
