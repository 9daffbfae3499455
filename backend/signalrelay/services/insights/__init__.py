from typing import Dict, Type

from signalrelay.core.config import settings
from signalrelay.services.insights.base import InsightProvider, InsightRequest, PerformanceSnapshot
from signalrelay.services.insights.openai_provider import OpenAIInsightProvider

PROVIDERS: Dict[str, Type[InsightProvider]] = {
    "openai": OpenAIInsightProvider,
}


def get_insight_provider(name: str | None = None) -> InsightProvider:
    name = name or settings.INSIGHT_PROVIDER
    provider_class = PROVIDERS.get(name)
    if not provider_class:
        raise ValueError(f"Unknown insight provider: {name}")
    return provider_class()


__all__ = [
    "PROVIDERS",
    "InsightProvider",
    "InsightRequest",
    "PerformanceSnapshot",
    "get_insight_provider",
]
