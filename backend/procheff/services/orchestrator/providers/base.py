"""
Provider adapter contract.

Every backend is wrapped by a subclass of ProviderAdapter. Subclasses only
implement `_invoke`; the public `invoke` enforces the timeout, converts
every fault into a failed ProviderResponse, and records metrics, logs and
a tracing span. A failing backend therefore degrades the result instead of
aborting the dispatch.
"""
import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, FrozenSet, Iterable, Optional, Sequence

import httpx
from pydantic import BaseModel, Field

from procheff.core.circuit_breaker import CircuitBreakerOpenError
from procheff.core.logging import get_logger
from procheff.core.metrics import record_provider_call
from procheff.core.tracing import start_span
from procheff.services.orchestrator.errors import ProviderError
from procheff.services.orchestrator.schema import FailureKind, ProviderResponse

logger = get_logger(__name__)


class ProviderOutput(BaseModel):
    """What a concrete adapter hands back to ProviderAdapter.invoke."""

    data: Any = None
    confidence: Optional[float] = None
    tokens_used: int = Field(0, ge=0)
    cost: Optional[float] = Field(None, ge=0.0, description="Overrides the token-based estimate")


class ProviderAdapter(ABC):
    """
    Uniform, capability-tagged interface around one AI backend.

    Args:
        name: Unique provider identity used in responses and episodes
        capabilities: Capability tags the provider is good for
        priority: Declared order; lower values win selection ties
        cost_per_1k_tokens: Price used to estimate response cost (USD)
    """

    kind = "base"

    def __init__(
        self,
        name: str,
        capabilities: Iterable[str] = (),
        priority: int = 0,
        cost_per_1k_tokens: float = 0.0,
    ):
        self.name = name
        self.capabilities: FrozenSet[str] = frozenset(c.strip().lower() for c in capabilities)
        self.priority = priority
        self.cost_per_1k_tokens = cost_per_1k_tokens

    def supports(self, required: Optional[Sequence[str]]) -> bool:
        """True if the provider declares every required tag."""
        return not required or set(required) <= self.capabilities

    def missing_capabilities(self, required: Optional[Sequence[str]]) -> int:
        return len(set(required or ()) - self.capabilities)

    def estimate_cost(self, tokens: int = 1000) -> float:
        return self.cost_per_1k_tokens * tokens / 1000.0

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "capabilities": sorted(self.capabilities),
            "priority": self.priority,
            "cost_per_1k_tokens": self.cost_per_1k_tokens,
        }

    async def invoke(
        self,
        task: str,
        context: Any,
        capability_tags: Optional[Sequence[str]],
        timeout: float,
    ) -> ProviderResponse:
        """
        Run the task against the backend, never blocking past `timeout`.

        Returns a ProviderResponse in every case except cancellation, which
        propagates so the dispatcher can cancel stragglers.
        """
        start = time.perf_counter()
        with start_span(
            "provider.invoke",
            {"provider.name": self.name, "provider.kind": self.kind, "task": task},
        ) as span:
            try:
                output = await asyncio.wait_for(
                    self._invoke(task, context, capability_tags),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                # The deadline cancelled the call before the backend answered
                self._on_timeout()
                response = self._failure(
                    FailureKind.TIMEOUT, f"timed out after {timeout:.2f}s", start
                )
            except httpx.TimeoutException:
                response = self._failure(
                    FailureKind.TIMEOUT, f"timed out after {timeout:.2f}s", start
                )
            except CircuitBreakerOpenError as exc:
                response = self._failure(FailureKind.CIRCUIT_OPEN, str(exc), start)
            except (ProviderError, httpx.HTTPError) as exc:
                response = self._failure(FailureKind.ERROR, str(exc) or type(exc).__name__, start)
            except Exception as exc:
                logger.error(
                    "provider_unexpected_error",
                    provider=self.name,
                    error=str(exc),
                    error_type=type(exc).__name__,
                    exc_info=True,
                )
                response = self._failure(
                    FailureKind.ERROR, f"{type(exc).__name__}: {exc}", start
                )
            else:
                latency_ms = (time.perf_counter() - start) * 1000.0
                cost = output.cost if output.cost is not None else self.estimate_cost(output.tokens_used)
                response = ProviderResponse(
                    provider=self.name,
                    data=output.data,
                    confidence=output.confidence,
                    latency_ms=latency_ms,
                    cost=cost,
                    tokens_used=output.tokens_used,
                    success=True,
                )

            span.set_attribute("provider.success", response.success)
            if response.failure_kind is not None:
                span.set_attribute("provider.failure_kind", response.failure_kind.value)

        outcome = "success" if response.success else response.failure_kind.value
        record_provider_call(
            provider=self.name,
            outcome=outcome,
            latency_seconds=response.latency_ms / 1000.0,
            cost_usd=response.cost,
            tokens=response.tokens_used,
        )
        if response.success:
            logger.info(
                "provider_invoke_succeeded",
                provider=self.name,
                task=task,
                latency_ms=round(response.latency_ms, 2),
                confidence=response.confidence,
                tokens_used=response.tokens_used,
            )
        else:
            logger.warning(
                "provider_invoke_failed",
                provider=self.name,
                task=task,
                failure_kind=outcome,
                failure_reason=response.failure_reason,
                latency_ms=round(response.latency_ms, 2),
            )
        return response

    def _failure(self, kind: FailureKind, reason: str, start: float) -> ProviderResponse:
        return ProviderResponse.failed(
            provider=self.name,
            kind=kind,
            reason=reason,
            latency_ms=(time.perf_counter() - start) * 1000.0,
        )

    def _on_timeout(self) -> None:
        """Hook for a call cut off by the invoke deadline."""

    @abstractmethod
    async def _invoke(
        self,
        task: str,
        context: Any,
        capability_tags: Optional[Sequence[str]],
    ) -> ProviderOutput:
        """Call the backend. May raise; `invoke` absorbs everything but cancellation."""
