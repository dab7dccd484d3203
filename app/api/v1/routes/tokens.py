"""
Token Routes
Scheduler-triggered sweep that refreshes tokens before they expire
"""
import logging
import httpx
from fastapi import APIRouter, Depends, Request
from supabase import Client

from app.core.dependencies import get_http_client, get_supabase
from app.core.security import verify_api_key
from app.services.sync.tokens import refresh_expiring_connections

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tokens", tags=["tokens"])


@router.post("/refresh")
async def refresh_tokens(
    request: Request,
    _: bool = Depends(verify_api_key),
    supabase: Client = Depends(get_supabase),
    http_client: httpx.AsyncClient = Depends(get_http_client)
):
    """Refresh every active connection that expires within the sweep window."""
    result = await refresh_expiring_connections(http_client, supabase)
    return {"success": True, **result}
