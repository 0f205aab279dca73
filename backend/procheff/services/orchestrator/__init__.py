"""
Multi-provider AI orchestration engine.

Dispatches one task to several AI backends concurrently, scores and selects
among their responses, records the outcome in a bounded context store and
evaluates its own selection quality over time.

Providers answer; the engine decides. Nothing in this package talks to a
provider except through ProviderAdapter.invoke.
"""
from .context_store import ContextStore
from .errors import (
    AllProvidersFailedError,
    EpisodeNotFoundError,
    InvalidTransitionError,
    NoEligibleProvidersError,
    OrchestrationError,
)
from .orchestrator import (
    AIOrchestrator,
    OrchestrationLifecycle,
    OrchestrationState,
    build_orchestrator,
)
from .schema import Episode, EpisodeQuery, SelectionResult, TaskRequest

__all__ = [
    "AIOrchestrator",
    "AllProvidersFailedError",
    "ContextStore",
    "Episode",
    "EpisodeNotFoundError",
    "EpisodeQuery",
    "InvalidTransitionError",
    "NoEligibleProvidersError",
    "OrchestrationError",
    "OrchestrationLifecycle",
    "OrchestrationState",
    "SelectionResult",
    "TaskRequest",
    "build_orchestrator",
]
