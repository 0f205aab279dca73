"""
Shared fixtures for orchestration tests.

Everything runs in-process: providers are StaticProvider stubs or HTTP
adapters over httpx.MockTransport. No real network calls are made.
"""
from typing import Optional, Sequence

import pytest

from procheff.core.config import OrchestratorSettings
from procheff.services.orchestrator import AIOrchestrator, ContextStore
from procheff.services.orchestrator.providers import StaticProvider
from procheff.services.orchestrator.schema import CandidateOutcome, Episode


def make_settings(**overrides) -> OrchestratorSettings:
    values = {
        "store_capacity": 100,
        "provider_timeout_seconds": 0.2,
        "request_timeout_seconds": 0.5,
    }
    values.update(overrides)
    return OrchestratorSettings(**values)


def make_orchestrator(
    providers: Sequence[StaticProvider],
    store: Optional[ContextStore] = None,
    **settings_overrides,
) -> AIOrchestrator:
    settings = make_settings(**settings_overrides)
    return AIOrchestrator(providers, store=store or ContextStore(settings.store_capacity), settings=settings)


def make_episode(
    task_type: str = "recipe-analysis",
    selected_provider: Optional[str] = "p1",
    confidence: float = 0.8,
    tags: Sequence[str] = (),
    input=None,
    candidates: Sequence[CandidateOutcome] = (),
    success: bool = True,
) -> Episode:
    return Episode(
        task_type=task_type,
        input=input,
        selected_provider=selected_provider if success else None,
        confidence=confidence,
        tags=tuple(tags),
        candidates=tuple(candidates),
        success=success,
    )


@pytest.fixture
def p1_p2_p3():
    """P1 confident, P2 unsure, P3 too slow for the provider timeout."""
    return [
        StaticProvider("p1", payload={"answer": "p1"}, confidence=0.9, priority=0),
        StaticProvider("p2", payload={"answer": "p2"}, confidence=0.4, priority=1),
        StaticProvider("p3", payload={"answer": "p3"}, confidence=0.99, priority=2, delay_seconds=2.0),
    ]
