"""
Dispatch coordinator: fan one task out to every eligible provider.

Structured concurrency:
- one asyncio task per eligible provider, each bounded by the per-provider timeout
- one bounded wait governed by the request-level timeout
- stragglers are cancelled, not awaited, and reported as cancelled failures

Cancellation only touches the tasks spawned by this dispatch, so concurrent
orchestration calls are unaffected.
"""
import asyncio
from typing import Callable, Dict, List, Optional, Sequence

from procheff.core.logging import get_logger
from procheff.core.metrics import record_provider_call
from procheff.services.orchestrator.errors import (
    AllProvidersFailedError,
    NoEligibleProvidersError,
)
from procheff.services.orchestrator.providers.base import ProviderAdapter
from procheff.services.orchestrator.schema import FailureKind, ProviderResponse, TaskRequest

logger = get_logger(__name__)


class DispatchCoordinator:
    """
    Owns the registered providers and runs concurrent dispatches over them.

    Args:
        providers: Registered adapters; names must be unique
        provider_timeout: Individual timeout of each provider call (seconds)
        request_timeout: Bound on the whole dispatch (seconds)
    """

    def __init__(
        self,
        providers: Sequence[ProviderAdapter],
        provider_timeout: float = 10.0,
        request_timeout: float = 20.0,
    ):
        names = [p.name for p in providers]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate provider names: {duplicates}")
        if provider_timeout <= 0 or request_timeout <= 0:
            raise ValueError("timeouts must be positive")

        # Stable sort keeps registration order among equal priorities.
        self._providers: List[ProviderAdapter] = sorted(providers, key=lambda p: p.priority)
        self.provider_timeout = provider_timeout
        self.request_timeout = request_timeout

    @property
    def providers(self) -> List[ProviderAdapter]:
        return list(self._providers)

    def priority_of(self, name: str) -> int:
        """Position of a provider in declared order (unknown names sort last)."""
        for index, provider in enumerate(self._providers):
            if provider.name == name:
                return index
        return len(self._providers)

    def eligible(self, request: TaskRequest) -> List[ProviderAdapter]:
        """
        Candidate providers for a request, in declared order.

        A provider is eligible when it declares a superset of the required
        capabilities and, if max_cost is set, its ~1000-token cost estimate
        does not exceed it.
        """
        candidates = [p for p in self._providers if p.supports(request.required_capabilities)]
        if request.max_cost is not None:
            candidates = [p for p in candidates if p.estimate_cost() <= request.max_cost]
        return candidates

    async def dispatch(
        self,
        request: TaskRequest,
        providers: Optional[Sequence[ProviderAdapter]] = None,
        on_dispatched: Optional[Callable[[], None]] = None,
    ) -> List[ProviderResponse]:
        """
        Invoke every eligible provider concurrently.

        Args:
            request: The task to run
            providers: Pre-computed eligible set (defaults to self.eligible(request))
            on_dispatched: Called once every provider task has been spawned

        Returns:
            One response per eligible provider, in declared order; at least
            one of them is successful.

        Raises:
            NoEligibleProvidersError: nothing to dispatch to (no invocation happens)
            AllProvidersFailedError: no provider succeeded before the request timeout
        """
        eligible = list(providers) if providers is not None else self.eligible(request)
        if not eligible:
            raise NoEligibleProvidersError(request.task, request.required_capabilities)

        logger.info(
            "dispatch_started",
            task=request.task,
            providers=[p.name for p in eligible],
            provider_timeout=self.provider_timeout,
            request_timeout=self.request_timeout,
        )

        tasks: Dict[asyncio.Task, ProviderAdapter] = {
            asyncio.create_task(
                provider.invoke(
                    request.task,
                    request.context,
                    request.required_capabilities,
                    self.provider_timeout,
                ),
                name=f"provider:{provider.name}",
            ): provider
            for provider in eligible
        }
        try:
            if on_dispatched is not None:
                on_dispatched()
            done, pending = await asyncio.wait(tasks, timeout=self.request_timeout)
        finally:
            # Also runs when this dispatch itself is cancelled.
            for task in tasks:
                if not task.done():
                    task.cancel()

        responses: List[ProviderResponse] = []
        for task, provider in tasks.items():
            if task in done:
                responses.append(self._collect(task, provider))
            else:
                responses.append(self._straggler(provider))

        succeeded = [r.provider for r in responses if r.success]
        logger.info(
            "dispatch_completed",
            task=request.task,
            succeeded=succeeded,
            failed=[r.provider for r in responses if not r.success],
            cancelled=len(pending),
        )

        if not succeeded:
            raise AllProvidersFailedError(request.task, responses)
        return responses

    def _collect(self, task: asyncio.Task, provider: ProviderAdapter) -> ProviderResponse:
        if task.cancelled():
            return self._straggler(provider)
        exc = task.exception()
        if exc is not None:
            # invoke() converts faults itself; this only guards adapter bugs.
            logger.error(
                "dispatch_provider_raised",
                provider=provider.name,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return ProviderResponse.failed(
                provider=provider.name,
                kind=FailureKind.ERROR,
                reason=f"{type(exc).__name__}: {exc}",
            )
        return task.result()

    def _straggler(self, provider: ProviderAdapter) -> ProviderResponse:
        latency_ms = self.request_timeout * 1000.0
        record_provider_call(
            provider=provider.name,
            outcome=FailureKind.CANCELLED.value,
            latency_seconds=self.request_timeout,
        )
        return ProviderResponse.failed(
            provider=provider.name,
            kind=FailureKind.CANCELLED,
            reason=f"cancelled: request timeout of {self.request_timeout:.2f}s exceeded",
            latency_ms=latency_ms,
        )
