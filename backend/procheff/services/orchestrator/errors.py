"""
Error taxonomy of the orchestration engine.

Provider-level faults (timeouts, transport errors, open circuits) never
leave the adapter: they become failed ProviderResponse records, see
FailureKind in schema.py. Only the conditions below reach the caller.
"""
from typing import List, Optional, Sequence

from procheff.services.orchestrator.schema import ProviderResponse


class OrchestrationError(Exception):
    """Base class for errors surfaced by the orchestrator."""

    error_type = "orchestration_error"


class NoEligibleProvidersError(OrchestrationError):
    """The capability / cost filter left no provider to dispatch to."""

    error_type = "no_eligible_providers"

    def __init__(self, task: str, required_capabilities: Optional[Sequence[str]] = None):
        self.task = task
        self.required_capabilities = tuple(required_capabilities or ())
        if self.required_capabilities:
            message = (
                f"No registered provider declares capabilities "
                f"{list(self.required_capabilities)} for task '{task}'"
            )
        else:
            message = f"No eligible provider for task '{task}'"
        super().__init__(message)


class AllProvidersFailedError(OrchestrationError):
    """Every eligible provider failed or timed out within the request timeout."""

    error_type = "all_providers_failed"

    def __init__(self, task: str, responses: Sequence[ProviderResponse]):
        self.task = task
        self.responses: List[ProviderResponse] = list(responses)
        reasons = ", ".join(
            f"{r.provider}: {r.failure_reason or 'unknown failure'}" for r in self.responses
        )
        super().__init__(f"All providers failed for task '{task}' ({reasons})")


class ProviderError(Exception):
    """
    Raised inside a provider adapter (bad status, malformed payload).

    ProviderAdapter.invoke converts it into a failed response; it is never
    propagated to the dispatcher.
    """


class InvalidTransitionError(OrchestrationError):
    """An orchestration call attempted a state transition the lifecycle forbids."""

    error_type = "invalid_transition"


class EpisodeNotFoundError(OrchestrationError):
    """No episode with the given id is held by the context store."""

    error_type = "episode_not_found"

    def __init__(self, episode_id: str):
        self.episode_id = episode_id
        super().__init__(f"Episode '{episode_id}' not found (evicted or never recorded)")
