"""
Analysis Dispatcher
Gather rows -> build prompt -> one LLM call -> parse JSON -> upsert

Kinds:
- email_classification  (email_history id)  -> email_analytics, email_labels
- customer_intelligence (customers id)      -> customer_intelligence
- pricing               (customers id)      -> pricing_analyses
- sales_prediction      (customers id)      -> sales_predictions
- lead_analysis         (email_history id)  -> lead_analyses
- auto_response         (email_history id)  -> ai_responses (draft, never sent)

Every invocation calls the model again; results are caches of a
non-deterministic call. A reply that is not a JSON object raises
InvalidModelResponse and nothing is written to the analytics table.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from openai import OpenAIError
from supabase import Client

from app.core.errors import InvalidModelResponse, RecordNotFound
from app.services.analysis import prompts
from app.services.analysis.llm import LLMClient, parse_json_object
from app.services.sync.brands import extract_address

logger = logging.getLogger(__name__)

EMAIL_HISTORY_LIMIT = 50
QUOTE_HISTORY_LIMIT = 30
INVOICE_HISTORY_LIMIT = 50
DEAL_HISTORY_LIMIT = 20
PREDICTION_EMAIL_LIMIT = 100

BASE_REPLY_CONFIDENCE = 0.7


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ============================================================================
# GATHERING
# ============================================================================

def _get_one(supabase: Client, table: str, record_id: str) -> Dict[str, Any]:
    result = supabase.table(table).select("*").eq("id", record_id).limit(1).execute()
    if not result.data:
        raise RecordNotFound(f"{table} record {record_id} not found")
    return result.data[0]


def _customer_emails(supabase: Client, customer: Dict[str, Any], limit: int) -> List[Dict[str, Any]]:
    """
    Emails sent from or to the customer, newest first.

    One ilike query per address column: the address is passed as a filter
    value, never spliced into an `or=(...)` expression.
    """
    email = customer.get("email")
    if not email:
        return []

    by_id: Dict[str, Dict[str, Any]] = {}
    for column in ("from_address", "to_address"):
        result = supabase.table("email_history")\
            .select("*")\
            .ilike(column, f"%{email}%")\
            .order("received_at", desc=True)\
            .limit(limit)\
            .execute()
        for row in result.data or []:
            by_id.setdefault(row["id"], row)

    emails = sorted(by_id.values(), key=lambda row: row.get("received_at") or "", reverse=True)
    return emails[:limit]


def _customer_by_address(supabase: Client, address: Optional[str]) -> Optional[Dict[str, Any]]:
    if not address:
        return None
    result = supabase.table("customers").select("*").eq("email", address).limit(1).execute()
    return result.data[0] if result.data else None


def _intelligence_for(supabase: Client, customer: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not customer:
        return None
    result = supabase.table("customer_intelligence")\
        .select("*")\
        .eq("customer_id", customer["id"])\
        .limit(1)\
        .execute()
    return result.data[0] if result.data else None


def _customer_records(supabase: Client, table: str, customer: Dict[str, Any], order_by: str, limit: int) -> List[Dict[str, Any]]:
    teamleader_id = customer.get("teamleader_id")
    if not teamleader_id:
        return []
    result = supabase.table(table)\
        .select("*")\
        .eq("contact_id", teamleader_id)\
        .order(order_by, desc=True)\
        .limit(limit)\
        .execute()
    return result.data or []


def gather_email(supabase: Client, record_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
    email = _get_one(supabase, "email_history", record_id)
    sender = extract_address(email.get("from_address"))

    known = supabase.table("customers").select("id").eq("email", sender).limit(1).execute()
    known_customer = bool(sender and known.data)

    return {"email": email, "known_customer": known_customer}


def gather_customer(supabase: Client, record_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
    customer = _get_one(supabase, "customers", record_id)
    return {
        "customer": customer,
        "emails": _customer_emails(supabase, customer, EMAIL_HISTORY_LIMIT),
        "quotes": _customer_records(supabase, "teamleader_quotes", customer, "quote_date", QUOTE_HISTORY_LIMIT),
    }


def gather_pricing(supabase: Client, record_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
    customer = _get_one(supabase, "customers", record_id)
    intelligence = supabase.table("customer_intelligence")\
        .select("*")\
        .eq("customer_id", record_id)\
        .limit(1)\
        .execute()
    return {
        "customer": customer,
        "intelligence": intelligence.data[0] if intelligence.data else None,
        "quotes": _customer_records(supabase, "teamleader_quotes", customer, "quote_date", QUOTE_HISTORY_LIMIT),
    }


def gather_sales(supabase: Client, record_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
    customer = _get_one(supabase, "customers", record_id)
    return {
        "customer": customer,
        "invoices": _customer_records(supabase, "teamleader_invoices", customer, "invoice_date", INVOICE_HISTORY_LIMIT),
        "quotes": _customer_records(supabase, "teamleader_quotes", customer, "quote_date", QUOTE_HISTORY_LIMIT),
        "deals": _customer_records(supabase, "teamleader_deals", customer, "expected_closing_date", DEAL_HISTORY_LIMIT),
        "emails": _customer_emails(supabase, customer, PREDICTION_EMAIL_LIMIT),
    }


def gather_lead(supabase: Client, record_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
    email = _get_one(supabase, "email_history", record_id)
    customer = _customer_by_address(supabase, extract_address(email.get("from_address")))
    quotes = _customer_records(supabase, "teamleader_quotes", customer, "quote_date", QUOTE_HISTORY_LIMIT) if customer else []

    return {
        "email": email,
        "customer": customer,
        "intelligence": _intelligence_for(supabase, customer),
        "quote_count": len(quotes),
    }


def gather_reply(supabase: Client, record_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
    email = _get_one(supabase, "email_history", record_id)
    analytics = supabase.table("email_analytics")\
        .select("*")\
        .eq("email_id", record_id)\
        .limit(1)\
        .execute()
    customer = _customer_by_address(supabase, extract_address(email.get("from_address")))

    return {
        "email": email,
        "analytics": analytics.data[0] if analytics.data else None,
        "customer": customer,
        "intelligence": _intelligence_for(supabase, customer),
        "tone": params.get("tone"),
    }


# ============================================================================
# ROW BUILDERS (parsed reply -> analytics row)
# ============================================================================

def email_analytics_row(record_id: str, analysis: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "email_id": record_id,
        "language": analysis.get("language") or "en",
        "sentiment": analysis.get("sentiment") or "neutral",
        "sentiment_score": analysis.get("sentiment_score", 0.5),
        "intent": analysis.get("intent") or "unknown",
        "intent_confidence": analysis.get("intent_confidence", 0.0),
        "urgency": analysis.get("urgency") or "low",
        "entities": analysis.get("entities") or [],
        "key_phrases": analysis.get("key_phrases") or [],
        "raw_analysis": analysis,
        "analyzed_at": _now(),
    }


def customer_intelligence_row(record_id: str, analysis: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "customer_id": record_id,
        "ai_summary": analysis.get("ai_summary"),
        "communication_style": analysis.get("communication_style") or {},
        "business_patterns": analysis.get("business_patterns") or {},
        "price_sensitivity": analysis.get("price_sensitivity"),
        "decision_factors": analysis.get("decision_factors") or [],
        "lifetime_value": analysis.get("lifetime_value", 0),
        "risk_score": analysis.get("risk_score", 0.0),
        "opportunity_score": analysis.get("opportunity_score", 0.0),
        "next_best_action": analysis.get("next_best_action"),
        "last_analysis": _now(),
    }


def pricing_row(record_id: str, analysis: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "customer_id": record_id,
        "recommended_price": analysis.get("recommended_price"),
        "price_range": analysis.get("price_range") or {},
        "win_probability": analysis.get("win_probability"),
        "raw_analysis": analysis,
        "analyzed_at": _now(),
    }


def sales_prediction_row(record_id: str, analysis: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "customer_id": record_id,
        "next_order_prediction": analysis.get("next_order_prediction") or {},
        "opportunity_score": analysis.get("opportunity_score", 0.0),
        "risk_score": analysis.get("risk_score", 0.0),
        "next_best_action": analysis.get("next_best_action"),
        "raw_analysis": analysis,
        "analyzed_at": _now(),
    }


def lead_analysis_row(record_id: str, analysis: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
    lead = analysis.get("lead_analysis") or {}
    actions = analysis.get("next_actions") or {}
    return {
        "email_id": record_id,
        "customer_id": (context.get("customer") or {}).get("id"),
        "lead_quality": lead.get("lead_quality") or "cold",
        "lead_score": lead.get("lead_score", 0),
        "buying_intent": lead.get("buying_intent"),
        "container_requirements": analysis.get("container_requirements") or {},
        "quote_recommendations": analysis.get("quote_recommendations") or {},
        "priority": actions.get("priority") or "low",
        "raw_analysis": analysis,
        "analyzed_at": _now(),
    }


def reply_confidence(context: Dict[str, Any]) -> float:
    """Heuristic confidence for a drafted reply, clamped to [0, 1]."""
    confidence = BASE_REPLY_CONFIDENCE
    analytics = context.get("analytics") or {}

    if (analytics.get("intent_confidence") or 0) > 0.8:
        confidence += 0.2
    if analytics.get("sentiment") == "negative":
        confidence -= 0.1
    if context.get("customer"):
        confidence += 0.1

    return round(max(0.0, min(1.0, confidence)), 2)


def auto_response_row(record_id: str, analysis: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
    response = analysis.get("response")
    if not isinstance(response, str) or not response.strip():
        logger.error("❌ auto_response: reply has no response text")
        raise InvalidModelResponse("auto_response", str(analysis))

    analytics = context.get("analytics") or {}
    return {
        "email_id": record_id,
        "response_content": response.strip(),
        "confidence_score": reply_confidence(context),
        "language": analysis.get("language") or analytics.get("language") or "en",
        "tone": context.get("tone") or "professional",
        "version": 1,
        "is_sent": False,
        "created_at": _now(),
    }


# ============================================================================
# REGISTRY
# ============================================================================

@dataclass(frozen=True)
class AnalysisKind:
    name: str
    gather: Callable[[Client, str, Dict[str, Any]], Dict[str, Any]]
    build_prompt: Callable[[Dict[str, Any], Dict[str, Any]], str]
    table: str
    on_conflict: str
    to_row: Callable[[str, Dict[str, Any], Dict[str, Any]], Dict[str, Any]]


KINDS: Dict[str, AnalysisKind] = {
    "email_classification": AnalysisKind(
        "email_classification", gather_email, prompts.email_classification_prompt,
        "email_analytics", "email_id", email_analytics_row,
    ),
    "customer_intelligence": AnalysisKind(
        "customer_intelligence", gather_customer, prompts.customer_intelligence_prompt,
        "customer_intelligence", "customer_id", customer_intelligence_row,
    ),
    "pricing": AnalysisKind(
        "pricing", gather_pricing, prompts.pricing_prompt,
        "pricing_analyses", "customer_id", pricing_row,
    ),
    "sales_prediction": AnalysisKind(
        "sales_prediction", gather_sales, prompts.sales_prediction_prompt,
        "sales_predictions", "customer_id", sales_prediction_row,
    ),
    "lead_analysis": AnalysisKind(
        "lead_analysis", gather_lead, prompts.lead_analysis_prompt,
        "lead_analyses", "email_id", lead_analysis_row,
    ),
    "auto_response": AnalysisKind(
        "auto_response", gather_reply, prompts.reply_draft_prompt,
        "ai_responses", "email_id", auto_response_row,
    ),
}


def get_kind(name: str) -> AnalysisKind:
    if name not in KINDS:
        raise ValueError(f"Unknown analysis kind '{name}'. Must be one of: {', '.join(KINDS)}")
    return KINDS[name]


# ============================================================================
# DISPATCH
# ============================================================================

def _set_email_status(supabase: Client, email_id: str, status: str):
    supabase.table("email_history").update({"analysis_status": status}).eq("id", email_id).execute()


async def dispatch(
    supabase: Client,
    llm: LLMClient,
    kind: str,
    record_id: str,
    params: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Run one analysis.

    Args:
        supabase: Supabase client
        llm: LLM client
        kind: One of KINDS
        record_id: Source record id (email_history.id or customers.id)
        params: Kind-specific inputs (pricing: quote_items, route, urgency,
            competitor_price, target_margin; auto_response: tone, instructions)

    Returns:
        {"kind", "record_id", "analysis"}

    Raises:
        ValueError: Unknown kind
        RecordNotFound: Source record not found
        InvalidModelResponse: Reply was not a JSON object
    """
    spec = get_kind(kind)
    params = params or {}

    context = spec.gather(supabase, record_id, params)
    prompt = spec.build_prompt(context, params)

    logger.info(f"🤖 {kind} analysis for {record_id} ({len(prompt)} chars)")

    try:
        raw = await llm.complete(prompt)
        analysis = parse_json_object(kind, raw)
    except InvalidModelResponse:
        if kind == "email_classification":
            _set_email_status(supabase, record_id, "failed")
        raise

    supabase.table(spec.table).upsert(spec.to_row(record_id, analysis, context), on_conflict=spec.on_conflict).execute()

    if kind == "email_classification":
        category = analysis.get("category") or {}
        if isinstance(category, dict) and category.get("label"):
            supabase.table("email_labels").upsert({
                "email_id": record_id,
                "label_type": category["label"],
                "confidence_score": category.get("confidence", 0.5),
                "assigned_by": "ai",
            }, on_conflict="email_id,label_type").execute()
        _set_email_status(supabase, record_id, "completed")

    logger.info(f"✅ {kind} analysis stored in {spec.table}")
    return {"kind": kind, "record_id": record_id, "analysis": analysis}


async def analyze_pending_emails(supabase: Client, llm: LLMClient, limit: int = 5) -> Dict[str, Any]:
    """
    Classify up to `limit` pending emails, oldest first.

    A failure on one email marks it failed and the batch continues.

    Returns:
        {"processed": int, "failed": int, "results": [...]}
    """
    result = supabase.table("email_history")\
        .select("id")\
        .eq("analysis_status", "pending")\
        .order("received_at", desc=False)\
        .limit(limit)\
        .execute()

    emails = result.data or []
    summary = {"processed": 0, "failed": 0, "results": []}

    logger.info(f"📬 Batch analysis: {len(emails)} pending emails")

    for email in emails:
        try:
            await dispatch(supabase, llm, "email_classification", email["id"])
            summary["processed"] += 1
            summary["results"].append({"email_id": email["id"], "status": "completed"})
        except (InvalidModelResponse, OpenAIError) as e:
            logger.error(f"❌ Analysis failed for email {email['id']}: {e}")
            _set_email_status(supabase, email["id"], "failed")
            summary["failed"] += 1
            summary["results"].append({"email_id": email["id"], "status": "failed", "error": str(e)})

    logger.info(f"✅ Batch analysis complete: {summary['processed']} processed, {summary['failed']} failed")
    return summary
