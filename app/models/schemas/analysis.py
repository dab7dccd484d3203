"""
Analysis Schemas
Request bodies for the analysis endpoints
"""
from typing import Any, Dict
from pydantic import BaseModel, Field


class AnalysisRequest(BaseModel):
    """
    One analysis run.

    record_id is an email_history id for email_classification,
    lead_analysis and auto_response, and a customers id for the rest.
    """
    record_id: str = Field(..., min_length=1)
    params: Dict[str, Any] = Field(default_factory=dict)


class BatchAnalysisRequest(BaseModel):
    limit: int = Field(default=5, ge=1, le=50)
