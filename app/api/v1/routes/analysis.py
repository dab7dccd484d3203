"""
Analysis Routes
On-demand LLM analyses and the pending-email batch
"""
import logging
from fastapi import APIRouter, Depends, Request
from supabase import Client

from app.core.dependencies import get_llm_client, get_supabase
from app.core.security import get_current_user_context, verify_api_key
from app.middleware.rate_limit import ANALYSIS_LIMIT, limiter
from app.models.schemas import AnalysisRequest, BatchAnalysisRequest
from app.services.analysis.dispatcher import analyze_pending_emails, dispatch

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analysis", tags=["analysis"])


# Declared before /{kind} so "batch" is not taken as a kind
@router.post("/batch")
async def analyze_batch(
    request: Request,
    body: BatchAnalysisRequest,
    _: bool = Depends(verify_api_key),
    supabase: Client = Depends(get_supabase),
    llm=Depends(get_llm_client)
):
    """Classify the oldest pending emails."""
    result = await analyze_pending_emails(supabase, llm, limit=body.limit)
    return {"success": True, **result}


@router.post("/{kind}")
@limiter.limit(ANALYSIS_LIMIT)
async def analyze(
    kind: str,
    request: Request,
    body: AnalysisRequest,
    user_context: dict = Depends(get_current_user_context),
    supabase: Client = Depends(get_supabase),
    llm=Depends(get_llm_client)
):
    """
    Run one analysis and store the result.

    kind: email_classification, customer_intelligence, pricing, sales_prediction,
    lead_analysis or auto_response
    """
    result = await dispatch(supabase, llm, kind, body.record_id, body.params)
    return {"success": True, "kind": kind, "record_id": body.record_id, "analysis": result["analysis"]}
