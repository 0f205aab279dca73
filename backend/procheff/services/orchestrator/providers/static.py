"""
In-process provider with a fixed answer.

Used for local demos (ORCHESTRATOR_DEMO_PROVIDERS=true) and in tests to
model fast, slow, and failing backends deterministically.
"""
import asyncio
from typing import Any, Iterable, Optional, Sequence

from procheff.services.orchestrator.errors import ProviderError
from procheff.services.orchestrator.providers.base import ProviderAdapter, ProviderOutput


class StaticProvider(ProviderAdapter):
    """
    Provider returning `payload` after `delay_seconds`.

    Args:
        payload: Result data returned on success
        confidence: Self-reported confidence (None = not reported)
        delay_seconds: Simulated latency
        error: When set, the call fails with this message after the delay
        tokens_used: Reported token usage (priced with cost_per_1k_tokens)
    """

    kind = "static"

    def __init__(
        self,
        name: str,
        payload: Any = None,
        confidence: Optional[float] = None,
        capabilities: Iterable[str] = (),
        priority: int = 0,
        delay_seconds: float = 0.0,
        error: Optional[str] = None,
        tokens_used: int = 0,
        cost_per_1k_tokens: float = 0.0,
    ):
        super().__init__(
            name=name,
            capabilities=capabilities,
            priority=priority,
            cost_per_1k_tokens=cost_per_1k_tokens,
        )
        self.payload = payload
        self.confidence = confidence
        self.delay_seconds = delay_seconds
        self.error = error
        self.tokens_used = tokens_used
        self.calls = 0

    async def _invoke(
        self,
        task: str,
        context: Any,
        capability_tags: Optional[Sequence[str]],
    ) -> ProviderOutput:
        self.calls += 1
        if self.delay_seconds > 0:
            await asyncio.sleep(self.delay_seconds)
        if self.error:
            raise ProviderError(self.error)
        return ProviderOutput(
            data=self.payload,
            confidence=self.confidence,
            tokens_used=self.tokens_used,
        )
