"""
Orchestrator: dispatch, score, select, record.

One call to run_parallel_comparison walks a call-scoped lifecycle:

    RECEIVED -> DISPATCHING -> COLLECTING -> SCORING -> SELECTED -> RECORDED -> COMPLETED
                     |              |
                     +--> FAILED <--+

The orchestrator is an explicit object (built once by the application
lifespan); the context store is its only shared mutable state.
"""
import asyncio
import time
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from procheff.core.config import OrchestratorSettings, load_settings
from procheff.core.logging import get_logger, orchestration_scope
from procheff.core.metrics import record_orchestration, record_selection
from procheff.core.tracing import StatusCode, start_span
from procheff.services.orchestrator.analysis import analyze_reflexively, build_performance_report
from procheff.services.orchestrator.context_store import ContextStore
from procheff.services.orchestrator.dispatch import DispatchCoordinator
from procheff.services.orchestrator.errors import (
    AllProvidersFailedError,
    InvalidTransitionError,
    NoEligibleProvidersError,
)
from procheff.services.orchestrator.providers import ProviderAdapter, build_providers
from procheff.services.orchestrator.schema import (
    CandidateOutcome,
    Episode,
    EpisodeQuery,
    PerformanceReport,
    ProviderResponse,
    ReflexiveAssessment,
    ScoredResponse,
    SelectionResult,
    TaskRequest,
)
from procheff.services.orchestrator.scoring import ConfidenceScorer, Selector

logger = get_logger(__name__)


class OrchestrationState(str, Enum):
    RECEIVED = "received"
    DISPATCHING = "dispatching"
    COLLECTING = "collecting"
    SCORING = "scoring"
    SELECTED = "selected"
    RECORDED = "recorded"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS = {
    OrchestrationState.RECEIVED: {OrchestrationState.DISPATCHING},
    OrchestrationState.DISPATCHING: {OrchestrationState.COLLECTING, OrchestrationState.FAILED},
    OrchestrationState.COLLECTING: {OrchestrationState.SCORING, OrchestrationState.FAILED},
    OrchestrationState.SCORING: {OrchestrationState.SELECTED},
    OrchestrationState.SELECTED: {OrchestrationState.RECORDED},
    OrchestrationState.RECORDED: {OrchestrationState.COMPLETED},
    OrchestrationState.COMPLETED: set(),
    OrchestrationState.FAILED: set(),
}


class OrchestrationLifecycle:
    """State of one orchestration call; rejects illegal transitions."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        self.state = OrchestrationState.RECEIVED
        self.history: List[OrchestrationState] = [self.state]

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self.state]

    def transition(self, target: OrchestrationState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Illegal orchestration transition {self.state.value} -> {target.value} "
                f"(request {self.request_id})"
            )
        self.state = target
        self.history.append(target)


def _candidates(scored: Sequence[ScoredResponse]) -> tuple:
    return tuple(
        CandidateOutcome(
            provider=s.provider,
            success=s.success,
            score=s.score,
            latency_ms=s.latency_ms,
            cost=s.response.cost,
            tokens_used=s.response.tokens_used,
            failure_reason=s.failure_reason,
        )
        for s in scored
    )


class AIOrchestrator:
    """
    Multi-provider orchestration engine.

    Args:
        providers: Registered provider adapters
        store: Episode store (a new one sized from settings when omitted)
        settings: Timeouts, weights and analysis parameters
    """

    def __init__(
        self,
        providers: Sequence[ProviderAdapter],
        store: Optional[ContextStore] = None,
        settings: Optional[OrchestratorSettings] = None,
    ):
        self.settings = settings or OrchestratorSettings()
        self.store = store if store is not None else ContextStore(self.settings.store_capacity)
        self.dispatcher = DispatchCoordinator(
            providers,
            provider_timeout=self.settings.provider_timeout_seconds,
            request_timeout=self.settings.request_timeout_seconds,
        )
        self.scorer = ConfidenceScorer(
            weights=self.settings.weights,
            reliability_window=self.settings.reliability_window,
        )
        self.selector = Selector(weights=self.settings.weights)

    async def run_parallel_comparison(self, request: TaskRequest) -> SelectionResult:
        """
        Run `request` against every eligible provider and pick the best response.

        Raises:
            NoEligibleProvidersError: no provider matches (nothing is invoked)
            AllProvidersFailedError: every provider failed (a failure episode is recorded)
        """
        request_id = uuid.uuid4().hex
        lifecycle = OrchestrationLifecycle(request_id)
        start = time.perf_counter()

        with orchestration_scope(request_id):
            with start_span(
                "orchestrator.run_parallel_comparison",
                {"orchestration.id": request_id, "task": request.task},
            ) as span:
                logger.info(
                    "orchestration_started",
                    task=request.task,
                    priority=request.priority,
                    required_capabilities=list(request.required_capabilities or ()),
                )
                lifecycle.transition(OrchestrationState.DISPATCHING)
                try:
                    eligible = self.dispatcher.eligible(request)
                    responses = await self.dispatcher.dispatch(
                        request,
                        eligible,
                        on_dispatched=lambda: lifecycle.transition(OrchestrationState.COLLECTING),
                    )
                except NoEligibleProvidersError:
                    lifecycle.transition(OrchestrationState.FAILED)
                    span.set_status(StatusCode.ERROR, "no eligible providers")
                    record_orchestration(request.task, "no_eligible", time.perf_counter() - start)
                    logger.warning(
                        "orchestration_no_eligible_providers",
                        task=request.task,
                        required_capabilities=list(request.required_capabilities or ()),
                    )
                    raise
                except AllProvidersFailedError as exc:
                    lifecycle.transition(OrchestrationState.FAILED)
                    span.set_status(StatusCode.ERROR, "all providers failed")
                    self._record_failure(request, exc.responses, start)
                    raise
                except asyncio.CancelledError:
                    lifecycle.transition(OrchestrationState.FAILED)
                    record_orchestration(request.task, "cancelled", time.perf_counter() - start)
                    logger.warning("orchestration_cancelled", task=request.task)
                    raise

                result = self._select_and_record(request, request_id, eligible, responses, lifecycle, start)
                span.set_attribute("orchestration.selected_provider", result.selected_provider)
                span.set_attribute("orchestration.confidence", result.confidence)
                return result

    def _select_and_record(
        self,
        request: TaskRequest,
        request_id: str,
        eligible: Sequence[ProviderAdapter],
        responses: Sequence[ProviderResponse],
        lifecycle: OrchestrationLifecycle,
        start: float,
    ) -> SelectionResult:
        lifecycle.transition(OrchestrationState.SCORING)
        scored = self.scorer.score(
            responses,
            {p.name: p for p in eligible},
            request.required_capabilities,
            self.store.snapshot(),
            {p.name: self.dispatcher.priority_of(p.name) for p in eligible},
        )
        winner, alternatives, rationale = self.selector.select(scored)
        lifecycle.transition(OrchestrationState.SELECTED)

        elapsed = time.perf_counter() - start
        total_cost = sum(r.cost for r in responses)
        episode = Episode(
            task_type=request.task,
            input=request.context,
            output=winner.response.data,
            selected_provider=winner.provider,
            confidence=winner.score,
            tags=request.tags + (request.required_capabilities or ()),
            execution_time_ms=elapsed * 1000.0,
            cost=total_cost,
            tokens_used=sum(r.tokens_used for r in responses),
            success=True,
            candidates=_candidates(scored),
        )
        self.store.append(episode)
        lifecycle.transition(OrchestrationState.RECORDED)

        result = SelectionResult(
            request_id=request_id,
            task=request.task,
            selected=winner,
            alternatives=alternatives,
            rationale=rationale,
            total_latency_ms=elapsed * 1000.0,
            total_cost=total_cost,
            episode_id=episode.id,
        )
        lifecycle.transition(OrchestrationState.COMPLETED)

        record_orchestration(request.task, "completed", elapsed)
        record_selection(winner.provider, winner.score)
        logger.info(
            "orchestration_completed",
            task=request.task,
            selected_provider=winner.provider,
            confidence=winner.score,
            alternatives=[a.provider for a in alternatives],
            total_latency_ms=round(result.total_latency_ms, 2),
            total_cost=round(total_cost, 6),
            episode_id=episode.id,
        )
        return result

    def _record_failure(
        self,
        request: TaskRequest,
        responses: Sequence[ProviderResponse],
        start: float,
    ) -> None:
        elapsed = time.perf_counter() - start
        scored = [ScoredResponse(response=r, score=0.0) for r in responses]
        episode = Episode(
            task_type=request.task,
            input=request.context,
            output=None,
            selected_provider=None,
            confidence=0.0,
            tags=request.tags + (request.required_capabilities or ()),
            execution_time_ms=elapsed * 1000.0,
            cost=sum(r.cost for r in responses),
            tokens_used=sum(r.tokens_used for r in responses),
            success=False,
            candidates=_candidates(scored),
        )
        self.store.append(episode)
        record_orchestration(request.task, "all_failed", elapsed)
        logger.warning(
            "orchestration_all_providers_failed",
            task=request.task,
            failures={r.provider: r.failure_reason for r in responses},
            episode_id=episode.id,
        )

    def add_episode(self, episode: Episode) -> Episode:
        """Record an episode built outside run_parallel_comparison."""
        self.store.append(episode)
        logger.info(
            "episode_added",
            episode_id=episode.id,
            task_type=episode.task_type,
            selected_provider=episode.selected_provider,
        )
        return episode

    def performance_report(self) -> PerformanceReport:
        return build_performance_report(self.store.snapshot(), self.store.capacity)

    def reflexive_analysis(self) -> ReflexiveAssessment:
        return analyze_reflexively(
            self.store.snapshot(),
            window=self.settings.reflexive_window,
            drop_threshold=self.settings.drop_threshold,
            trend_tolerance=self.settings.trend_tolerance,
            min_samples=self.settings.min_samples,
        )

    def recent_assessments(self, limit: int = 10) -> List[Episode]:
        return self.store.recent_assessments(limit)

    def retrieve(self, query: str, limit: int = 10) -> List[Episode]:
        return self.store.retrieve(query, limit)

    def query(self, criteria: EpisodeQuery) -> List[Episode]:
        return self.store.query(criteria)

    def find_similar(self, episode_id: str, limit: int = 5) -> List[Episode]:
        return self.store.find_similar(episode_id, limit)

    def describe_providers(self) -> List[Dict[str, Any]]:
        return [p.describe() for p in self.dispatcher.providers]


def build_orchestrator(settings: Optional[OrchestratorSettings] = None) -> AIOrchestrator:
    """Wire providers, store and orchestrator from settings (environment by default)."""
    settings = settings or load_settings()
    orchestrator = AIOrchestrator(
        providers=build_providers(settings),
        store=ContextStore(settings.store_capacity),
        settings=settings,
    )
    logger.info(
        "orchestrator_built",
        providers=[p["name"] for p in orchestrator.describe_providers()],
        store_capacity=settings.store_capacity,
    )
    return orchestrator
