"""
LLM client
Single-shot JSON completions through the OpenAI chat completions API
"""
import json
import logging
from typing import Any, Dict, Optional

from openai import AsyncOpenAI

from app.core.errors import InvalidModelResponse

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an analyst for a container trading company (sale and rental of "
    "shipping and storage containers). Always answer with one valid JSON object "
    "and nothing else."
)


class LLMClient:
    """
    Thin wrapper around AsyncOpenAI.

    complete() returns the text of the first choice; callers parse it.
    """

    def __init__(self, client: AsyncOpenAI, model: str, max_tokens: int = 2000):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, config) -> "LLMClient":
        return cls(
            AsyncOpenAI(api_key=config.openai_api_key),
            model=config.llm_model,
            max_tokens=config.llm_max_tokens,
        )

    async def complete(self, prompt: str) -> Optional[str]:
        response = await self.client.chat.completions.create(
            model=self.model,
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        )

        if not response.choices:
            return None
        return response.choices[0].message.content


def parse_json_object(kind: str, raw: Optional[str]) -> Dict[str, Any]:
    """
    Parse a model reply as a JSON object. No repair is attempted.

    Raises:
        InvalidModelResponse: Empty reply, invalid JSON, or not an object
    """
    if not raw:
        raise InvalidModelResponse(kind, raw)

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.error(f"❌ {kind}: model reply is not valid JSON: {raw[:200]}")
        raise InvalidModelResponse(kind, raw)

    if not isinstance(parsed, dict):
        logger.error(f"❌ {kind}: model reply is JSON but not an object")
        raise InvalidModelResponse(kind, raw)

    return parsed
