"""
Provider adapters: the closed set of backend variants.

New backends are added by subclassing ProviderAdapter and registering the
variant in PROVIDER_KINDS; nothing is discovered at runtime.
"""
from typing import Dict, List, Type

from procheff.core.config import OrchestratorSettings
from procheff.core.logging import get_logger
from procheff.services.orchestrator.providers.base import ProviderAdapter, ProviderOutput
from procheff.services.orchestrator.providers.http import (
    AnthropicMessagesProvider,
    GeminiProvider,
    HTTPProvider,
    OpenAIChatProvider,
)
from procheff.services.orchestrator.providers.static import StaticProvider

logger = get_logger(__name__)

PROVIDER_KINDS: Dict[str, Type[HTTPProvider]] = {
    "anthropic": AnthropicMessagesProvider,
    "openai": OpenAIChatProvider,
    "gemini": GeminiProvider,
}


def _demo_providers(start_priority: int) -> List[ProviderAdapter]:
    """Offline stand-ins mirroring the production catalogue."""
    return [
        StaticProvider(
            name="demo-claude",
            payload={
                "nutritionalAnalysis": "Balanced protein and fibre per portion",
                "costOptimization": ["Buy red lentils in 25 kg sacks"],
                "overallRating": 8,
            },
            confidence=0.9,
            capabilities=("recipe-analysis", "cost-calculation", "complex-analysis"),
            priority=start_priority,
            delay_seconds=0.05,
            tokens_used=750,
            cost_per_1k_tokens=0.25,
        ),
        StaticProvider(
            name="demo-gpt",
            payload={"suggestion": "Serve with lemon wedges and toasted bread", "creativity": "high"},
            confidence=0.88,
            capabilities=("creative-suggestions", "recipe-generation", "recipe-analysis"),
            priority=start_priority + 1,
            delay_seconds=0.08,
            tokens_used=820,
            cost_per_1k_tokens=10.0,
        ),
        StaticProvider(
            name="demo-gemini",
            payload={"marketData": "Lentil prices stable this week", "trend": "rising"},
            confidence=0.92,
            capabilities=("market-analysis", "price-prediction", "trend-analysis"),
            priority=start_priority + 2,
            delay_seconds=0.06,
            tokens_used=640,
            cost_per_1k_tokens=0.5,
        ),
    ]


def build_providers(settings: OrchestratorSettings) -> List[ProviderAdapter]:
    """
    Build the provider list from settings, in declared priority order.

    HTTP providers are registered only when their API key is configured.
    """
    providers: List[ProviderAdapter] = []
    for provider_settings in settings.providers:
        if not provider_settings.enabled:
            logger.info("provider_skipped_no_api_key", provider=provider_settings.name)
            continue
        adapter_cls = PROVIDER_KINDS.get(provider_settings.kind)
        if adapter_cls is None:
            raise ValueError(f"Unknown provider kind: {provider_settings.kind}")
        providers.append(
            adapter_cls(
                name=provider_settings.name,
                api_key=provider_settings.api_key,
                model=provider_settings.model,
                api_base=provider_settings.api_base,
                capabilities=provider_settings.capabilities,
                priority=len(providers),
                cost_per_1k_tokens=provider_settings.cost_per_1k_tokens,
            )
        )

    if settings.demo_providers:
        providers.extend(_demo_providers(start_priority=len(providers)))

    logger.info(
        "providers_registered",
        providers=[p.name for p in providers],
    )
    return providers


__all__ = [
    "PROVIDER_KINDS",
    "ProviderAdapter",
    "ProviderOutput",
    "HTTPProvider",
    "OpenAIChatProvider",
    "AnthropicMessagesProvider",
    "GeminiProvider",
    "StaticProvider",
    "build_providers",
]
