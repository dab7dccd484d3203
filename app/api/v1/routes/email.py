"""
Email Routes
Outgoing mail through the caller's Gmail connection
"""
import logging
import httpx
from fastapi import APIRouter, Depends, Request
from supabase import Client

from app.core.dependencies import get_http_client, get_supabase
from app.core.security import get_current_user_context
from app.middleware.rate_limit import SYNC_LIMIT, limiter
from app.models.schemas import SendEmailRequest
from app.models.schemas.connection import GMAIL
from app.services.sync.connections import require_connection
from app.services.sync.orchestration.email_sync import send_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/email", tags=["email"])


@router.post("/send")
@limiter.limit(SYNC_LIMIT)
async def send(
    request: Request,
    body: SendEmailRequest,
    user_context: dict = Depends(get_current_user_context),
    supabase: Client = Depends(get_supabase),
    http_client: httpx.AsyncClient = Depends(get_http_client)
):
    connection = require_connection(supabase, user_context["user_id"], GMAIL)

    result = await send_email(
        http_client, supabase, connection,
        to=body.to,
        subject=body.subject,
        body=body.body,
        thread_id=body.thread_id,
    )
    return {"success": True, **result}
