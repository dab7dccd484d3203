"""
Analysis prompts
Each builder embeds the gathered rows and a strict JSON output shape
"""
import json
from typing import Any, Dict, List

EMAIL_CATEGORIES = {
    "NEUKUNDE": "First-time sender, new customer inquiry",
    "BESTANDSKUNDE": "Email from an existing customer",
    "AUFTRAGSBEZOGEN": "References existing orders, quotes or specific projects",
    "PREISANFRAGE": "Price inquiry, quote request, cost estimation",
    "LIEFERANTEN-INFO": "From suppliers about inventory, shipping, product updates",
    "NEWSLETTER": "Marketing emails, newsletters, promotional content",
    "URGENT": "High priority email requiring immediate attention",
}

MAX_BODY_CHARS = 4000


def _dump(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


def _slim_emails(emails: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "subject": email.get("subject"),
            "from": email.get("from_address"),
            "direction": email.get("direction"),
            "received_at": email.get("received_at"),
            "body": (email.get("body") or "")[:500],
        }
        for email in emails
    ]


def email_classification_prompt(context: Dict[str, Any], params: Dict[str, Any]) -> str:
    email = context["email"]
    categories = "\n".join(f"- {label}: {description}" for label, description in EMAIL_CATEGORIES.items())
    known_sender = "yes" if context.get("known_customer") else "no"

    return f"""
Analyze this email and extract the following information:

1. Language (de, en, fr, nl, or other)
2. Sentiment (positive, neutral, negative) with score 0-1
3. Intent (price_inquiry, order, complaint, follow_up, general_inquiry, spam) with confidence 0-1
4. Urgency level (low, medium, high, critical)
5. Key entities (container types, routes, quantities, dates, companies, people)
6. Key phrases
7. Email category with confidence score

Categories:
{categories}

Sender is a known customer: {known_sender}
Brand: {email.get("brand") or "General"}

From: {email.get("from_address")}
To: {email.get("to_address")}
Subject: {email.get("subject")}
Body:
{(email.get("body") or "")[:MAX_BODY_CHARS]}

Respond only with valid JSON in this exact format:
{{
  "language": "en",
  "sentiment": "neutral",
  "sentiment_score": 0.5,
  "intent": "price_inquiry",
  "intent_confidence": 0.8,
  "urgency": "medium",
  "entities": [{{"type": "container", "value": "20ft", "confidence": 0.9}}],
  "key_phrases": ["best price"],
  "category": {{"label": "PREISANFRAGE", "confidence": 0.85}}
}}
""".strip()


def customer_intelligence_prompt(context: Dict[str, Any], params: Dict[str, Any]) -> str:
    customer = context["customer"]

    return f"""
Analyze this customer's data and generate business intelligence.

Customer:
Name: {customer.get("name")}
Company: {customer.get("company") or "Individual"}
Email: {customer.get("email")}
Phone: {customer.get("phone") or "Not provided"}

Email history ({len(context["emails"])} emails):
{_dump(_slim_emails(context["emails"]))}

Quote history ({len(context["quotes"])} quotes):
{_dump(context["quotes"])}

Respond only with valid JSON in this exact format:
{{
  "ai_summary": "2-3 sentence customer summary",
  "communication_style": {{
    "preferred_language": "en/de/fr/nl",
    "formality_level": "formal/casual",
    "response_speed_expectation": "immediate/fast/normal/patient"
  }},
  "business_patterns": {{
    "typical_order_value": 0,
    "seasonal_patterns": [],
    "preferred_routes": [],
    "container_preferences": [],
    "payment_behavior": "excellent/good/average/concerning"
  }},
  "price_sensitivity": "low/medium/high",
  "decision_factors": ["price", "speed", "reliability"],
  "lifetime_value": 0,
  "risk_score": 0.0,
  "opportunity_score": 0.0,
  "next_best_action": "Specific recommendation"
}}

Base the analysis on the data. If there is too little data, say so in ai_summary.
""".strip()


def pricing_prompt(context: Dict[str, Any], params: Dict[str, Any]) -> str:
    customer = context["customer"]
    intelligence = context.get("intelligence") or {}
    profile = {
        "name": customer.get("name"),
        "company": customer.get("company"),
        "price_sensitivity": intelligence.get("price_sensitivity"),
        "lifetime_value": intelligence.get("lifetime_value"),
    }

    return f"""
Generate a pricing recommendation for a container quote.

Customer:
{_dump(profile)}

Quote requirements:
Items: {_dump(params.get("quote_items") or [])}
Route: {params.get("route") or "Not specified"}
Urgency: {params.get("urgency") or "normal"}
Target margin: {params.get("target_margin", 15)}%
Competitor price: {params.get("competitor_price") or "Not provided"}

Historical quotes for this customer:
{_dump(context["quotes"])}

Respond only with valid JSON in this exact format:
{{
  "recommended_price": 0,
  "price_range": {{"minimum": 0, "maximum": 0, "optimal": 0}},
  "win_probability": 0.0,
  "margin_analysis": {{"target_margin": 0, "actual_margin": 0}},
  "pricing_factors": [{{"factor": "Customer loyalty", "impact": "positive", "weight": 0.0}}],
  "reasoning": "Short explanation"
}}
""".strip()


def sales_prediction_prompt(context: Dict[str, Any], params: Dict[str, Any]) -> str:
    customer = context["customer"]
    profile = {"name": customer.get("name"), "company": customer.get("company"), "email": customer.get("email")}

    return f"""
Predict this customer's next sales activity from their CRM history.

Customer:
{_dump(profile)}

Invoices ({len(context["invoices"])}):
{_dump(context["invoices"])}

Quotes ({len(context["quotes"])}):
{_dump(context["quotes"])}

Deals ({len(context["deals"])}):
{_dump(context["deals"])}

Recent emails ({len(context["emails"])}):
{_dump(_slim_emails(context["emails"]))}

Respond only with valid JSON in this exact format:
{{
  "next_order_prediction": {{
    "probability": 0.0,
    "predicted_date": "YYYY-MM-DD",
    "predicted_value": 0,
    "reasoning": "Explanation from historical patterns"
  }},
  "buying_patterns": {{
    "average_order_value": 0,
    "order_frequency": "monthly/quarterly/yearly/irregular",
    "growth_trend": "increasing/stable/decreasing"
  }},
  "risk_assessment": {{"churn_risk": 0.0, "payment_risk": 0.0, "risk_factors": []}},
  "opportunities": {{"upsell_potential": 0.0, "recommended_actions": []}},
  "opportunity_score": 0.0,
  "risk_score": 0.0,
  "next_best_action": "Most valuable next step"
}}
""".strip()


def lead_analysis_prompt(context: Dict[str, Any], params: Dict[str, Any]) -> str:
    email = context["email"]
    customer = context.get("customer")
    status = "Existing" if customer else "New"

    return f"""
Analyze this container trading email for lead identification and quote preparation.

Subject: {email.get("subject")}
From: {email.get("from_address")}
Brand: {email.get("brand") or "General"}
Customer status: {status}
Previous quotes: {context.get("quote_count", 0)}
Body:
{(email.get("body") or "")[:MAX_BODY_CHARS]}

Respond only with valid JSON in this exact format:
{{
  "language": "en",
  "sentiment": "neutral",
  "lead_analysis": {{
    "lead_quality": "hot/warm/cold/spam",
    "lead_score": 0,
    "buying_intent": "immediate/planning/researching/price_shopping",
    "decision_timeline": "urgent/this_week/this_month/next_quarter",
    "budget_indicators": "high/medium/low/unknown"
  }},
  "container_requirements": {{
    "container_types": ["20ft"],
    "quantities": [1],
    "condition": "new/used/any",
    "pickup_location": "",
    "delivery_location": "",
    "timeline": "",
    "special_requirements": []
  }},
  "quote_recommendations": {{
    "should_generate_quote": false,
    "pricing_strategy": "competitive/premium/budget",
    "upsell_opportunities": []
  }},
  "next_actions": {{
    "priority": "high/medium/low",
    "recommended_response_time": "1_hour/same_day/next_day",
    "follow_up_strategy": "phone_call/email/meeting"
  }}
}}
""".strip()


def reply_draft_prompt(context: Dict[str, Any], params: Dict[str, Any]) -> str:
    email = context["email"]
    customer = context.get("customer")
    intelligence = context.get("intelligence") or {}
    analytics = context.get("analytics") or {}

    customer_lines = ""
    if customer:
        customer_lines = f"Customer: {customer.get('name')} ({customer.get('company') or 'Individual'})"
        if intelligence:
            customer_lines += (
                f"\nCustomer profile: {intelligence.get('ai_summary') or 'No profile available'}"
                f"\nCommunication style: {_dump(intelligence.get('communication_style'))}"
                f"\nPrice sensitivity: {intelligence.get('price_sensitivity')}"
            )

    analysis_lines = ""
    if analytics:
        analysis_lines = (
            f"Language: {analytics.get('language')}\n"
            f"Sentiment: {analytics.get('sentiment')}\n"
            f"Intent: {analytics.get('intent')}\n"
            f"Urgency: {analytics.get('urgency')}"
        )

    instructions = params.get("instructions")
    extra = f"Additional instructions: {instructions}" if instructions else ""

    return f"""
You answer customer email for a container trading company. Draft a reply to this email.

Guidelines:
- Match the language of the original email
- Use a {params.get("tone") or "professional"} tone
- For a price inquiry, say a detailed quote will follow
- For a complaint, acknowledge the concern and offer a solution
- Body only: no subject line, no signature

{customer_lines}
{analysis_lines}

Original email:
Subject: {email.get("subject")}
From: {email.get("from_address")}
Body:
{(email.get("body") or "")[:MAX_BODY_CHARS]}
{extra}

Respond only with valid JSON in this exact format:
{{
  "language": "en",
  "response": "The reply body"
}}
""".strip()
