import logging
from typing import Any, Optional

import httpx

from signalrelay.core.config import settings
from signalrelay.core.errors import DependencyError
from signalrelay.services.insights.base import InsightProvider, InsightRequest

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a data-driven trading analyst. Provide specific insights based on the "
    "performance data provided. Always reference actual numbers when available. "
    "Keep responses under 15 words. Never be generic. No emojis."
)


def build_prompt(request: InsightRequest) -> str:
    performance = (
        request.performance.describe()
        if request.performance
        else "No historical data available for this strategy yet."
    )
    return (
        "Generate a specific, data-driven insight (max 15 words) for this trading signal.\n\n"
        f"Action: {request.direction} {request.symbol}\n"
        f"Price: {request.price}\n"
        f"Strategy: {request.strategy_name}\n"
        f"Performance: {performance}\n\n"
        "Reference the performance data when present. If there is none, give brief "
        "technical context based on the strategy name. Avoid words like 'consider' or 'potential'."
    )


def truncate_words(text: str, max_words: int) -> str:
    words = text.split()
    if len(words) <= max_words:
        return " ".join(words)
    return " ".join(words[:max_words]).rstrip(",;:") + "..."


class OpenAIInsightProvider(InsightProvider):
    """Insight provider backed by an OpenAI-compatible chat completions endpoint."""

    def __init__(
        self,
        api_key: str | None = None,
        api_url: str | None = None,
        model: str | None = None,
        timeout_sec: float | None = None,
        max_words: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = settings.OPENAI_API_KEY if api_key is None else api_key
        self.api_url = api_url or settings.OPENAI_API_URL
        self.model = model or settings.OPENAI_MODEL
        self.timeout_sec = settings.INSIGHT_TIMEOUT_SEC if timeout_sec is None else timeout_sec
        self.max_words = settings.INSIGHT_MAX_WORDS if max_words is None else max_words
        self.transport = transport

    async def generate(self, request: InsightRequest) -> Optional[str]:
        if not self.api_key:
            logger.debug("OpenAI API key not configured, skipping insight")
            return None

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(request)},
            ],
            "max_tokens": 60,
            "temperature": 0.5,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout_sec, transport=self.transport) as client:
                resp = await client.post(self.api_url, json=payload, headers=headers)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise DependencyError(f"Insight request for {request.symbol} failed: {exc}") from exc

        content = _first_choice(data)
        if not content:
            logger.warning(f"Insight response for {request.symbol} had no content")
            return None
        return truncate_words(content.strip().strip('"'), self.max_words)


def _first_choice(data: Any) -> Optional[str]:
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return None
    return content if isinstance(content, str) else None
