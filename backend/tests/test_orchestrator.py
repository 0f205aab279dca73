"""
Unit tests for AIOrchestrator.run_parallel_comparison and the call lifecycle.

Providers are in-process StaticProvider stubs; no HTTP calls are made.
"""
import asyncio

import pytest

from procheff.services.orchestrator import (
    AllProvidersFailedError,
    InvalidTransitionError,
    NoEligibleProvidersError,
    OrchestrationLifecycle,
    OrchestrationState,
    TaskRequest,
)
from procheff.services.orchestrator.providers import StaticProvider
from procheff.services.orchestrator.schema import FailureKind

from conftest import make_orchestrator


@pytest.mark.asyncio
async def test_selects_most_confident_provider(p1_p2_p3):
    """P1 wins, P2 then the timed-out P3 follow, and one episode is recorded."""
    orchestrator = make_orchestrator(p1_p2_p3)

    result = await orchestrator.run_parallel_comparison(
        TaskRequest(task="recipe-analysis", context={"name": "Mercimek çorbası"})
    )

    assert result.selected_provider == "p1"
    assert result.selected.response.data == {"answer": "p1"}
    assert [a.provider for a in result.alternatives] == ["p2", "p3"]

    p2, p3 = result.alternatives
    assert p2.success
    assert p2.response.confidence == pytest.approx(0.4)
    assert p2.score < result.confidence
    assert not p3.success
    assert p3.score == 0.0
    assert p3.response.failure_kind == FailureKind.TIMEOUT
    assert "timed out" in p3.failure_reason

    episodes = orchestrator.recent_assessments(10)
    assert len(episodes) == 1
    assert episodes[0].selected_provider == "p1"
    assert episodes[0].id == result.episode_id
    assert episodes[0].task_type == "recipe-analysis"
    assert {c.provider for c in episodes[0].candidates} == {"p1", "p2", "p3"}
    assert "p1" in result.rationale


@pytest.mark.asyncio
async def test_unknown_capability_fails_without_invoking_providers(p1_p2_p3):
    orchestrator = make_orchestrator(p1_p2_p3)

    with pytest.raises(NoEligibleProvidersError) as exc_info:
        await orchestrator.run_parallel_comparison(
            TaskRequest(task="kik-analysis", required_capabilities=["kik-analysis"])
        )

    assert exc_info.value.required_capabilities == ("kik-analysis",)
    assert all(p.calls == 0 for p in p1_p2_p3)
    assert len(orchestrator.store) == 0


@pytest.mark.asyncio
async def test_required_capabilities_restrict_dispatch():
    analyst = StaticProvider("analyst", payload={}, confidence=0.5, capabilities=["recipe-analysis"])
    poet = StaticProvider("poet", payload={}, confidence=0.9, capabilities=["creative-suggestions"])
    orchestrator = make_orchestrator([analyst, poet])

    result = await orchestrator.run_parallel_comparison(
        TaskRequest(task="recipe-analysis", required_capabilities=["Recipe-Analysis"])
    )

    assert result.selected_provider == "analyst"
    assert result.alternatives == []
    assert poet.calls == 0


@pytest.mark.asyncio
async def test_all_providers_failed_records_failure_episode():
    providers = [
        StaticProvider("a", error="upstream 500", priority=0),
        StaticProvider("b", error="malformed response", priority=1),
    ]
    orchestrator = make_orchestrator(providers)

    with pytest.raises(AllProvidersFailedError) as exc_info:
        await orchestrator.run_parallel_comparison(TaskRequest(task="menu-optimization"))

    assert [r.provider for r in exc_info.value.responses] == ["a", "b"]
    assert all(r.failure_kind == FailureKind.ERROR for r in exc_info.value.responses)

    (episode,) = orchestrator.recent_assessments(5)
    assert episode.success is False
    assert episode.selected_provider is None
    assert episode.confidence == 0.0
    assert [c.failure_reason for c in episode.candidates] == ["upstream 500", "malformed response"]


@pytest.mark.asyncio
async def test_failed_response_kept_in_alternatives():
    providers = [
        StaticProvider("broken", error="connection reset", priority=0),
        StaticProvider("ok", payload={"ok": True}, confidence=0.6, priority=1),
    ]
    orchestrator = make_orchestrator(providers)

    result = await orchestrator.run_parallel_comparison(TaskRequest(task="recipe-analysis"))

    assert result.selected_provider == "ok"
    (failed,) = result.alternatives
    assert failed.provider == "broken"
    assert failed.score == 0.0
    assert failed.failure_reason == "connection reset"


@pytest.mark.asyncio
async def test_request_timeout_cancels_stragglers():
    fast = StaticProvider("fast", payload={}, confidence=0.7)
    slow = StaticProvider("slow", payload={}, confidence=0.9, delay_seconds=5.0)
    orchestrator = make_orchestrator(
        [fast, slow],
        provider_timeout_seconds=10.0,
        request_timeout_seconds=0.2,
    )

    result = await orchestrator.run_parallel_comparison(TaskRequest(task="recipe-analysis"))

    assert result.selected_provider == "fast"
    (cancelled,) = result.alternatives
    assert cancelled.provider == "slow"
    assert cancelled.response.failure_kind == FailureKind.CANCELLED
    assert result.total_latency_ms < 5000


@pytest.mark.asyncio
async def test_max_cost_filters_expensive_providers():
    cheap = StaticProvider("cheap", payload={}, confidence=0.5, cost_per_1k_tokens=0.25)
    pricey = StaticProvider("pricey", payload={}, confidence=0.95, cost_per_1k_tokens=10.0)
    orchestrator = make_orchestrator([cheap, pricey])

    result = await orchestrator.run_parallel_comparison(
        TaskRequest(task="cost-calculation", max_cost=1.0)
    )

    assert result.selected_provider == "cheap"
    assert pricey.calls == 0


@pytest.mark.asyncio
async def test_totals_and_episode_tags():
    providers = [
        StaticProvider("a", payload={}, confidence=0.8, tokens_used=1000, cost_per_1k_tokens=0.5),
        StaticProvider("b", payload={}, confidence=0.6, tokens_used=2000, cost_per_1k_tokens=0.25),
    ]
    orchestrator = make_orchestrator(providers)

    result = await orchestrator.run_parallel_comparison(
        TaskRequest(
            task="recipe-analysis",
            tags=["Soup", "winter"],
            required_capabilities=None,
        )
    )

    assert result.total_cost == pytest.approx(1.0)
    (episode,) = orchestrator.recent_assessments(1)
    assert episode.tags == ("soup", "winter")
    assert episode.tokens_used == 3000
    assert episode.cost == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_history_lowers_score_of_unreliable_provider():
    flaky = StaticProvider("flaky", payload={}, confidence=0.8, priority=0)
    steady = StaticProvider("steady", payload={}, confidence=0.8, priority=1)
    orchestrator = make_orchestrator([flaky, steady])

    flaky.error = "boom"
    for _ in range(3):
        await orchestrator.run_parallel_comparison(TaskRequest(task="recipe-analysis"))

    flaky.error = None
    result = await orchestrator.run_parallel_comparison(TaskRequest(task="recipe-analysis"))

    assert result.selected_provider == "steady"
    assert result.selected.factors.reliability == pytest.approx(1.0)
    (flaky_scored,) = result.alternatives
    assert flaky_scored.factors.reliability == pytest.approx(0.0)


@pytest.mark.asyncio
async def test_equal_priorities_tie_break_by_declared_order():
    orchestrator = make_orchestrator([
        StaticProvider("winner", payload={}, confidence=0.9),
        StaticProvider("zeta", payload={}, confidence=0.5, delay_seconds=0.02),
        StaticProvider("alpha", payload={}, confidence=0.5),
    ])

    result = await orchestrator.run_parallel_comparison(TaskRequest(task="recipe-analysis"))

    assert result.selected_provider == "winner"
    assert result.selected.priority == 0
    assert [a.provider for a in result.alternatives] == ["zeta", "alpha"]
    assert [a.priority for a in result.alternatives] == [1, 2]


@pytest.mark.asyncio
async def test_concurrent_calls_each_record_one_episode():
    providers = [
        StaticProvider("a", payload={}, confidence=0.7, delay_seconds=0.01),
        StaticProvider("b", payload={}, confidence=0.6, delay_seconds=0.02),
    ]
    orchestrator = make_orchestrator(providers)

    results = await asyncio.gather(
        *(orchestrator.run_parallel_comparison(TaskRequest(task=f"task-{i}")) for i in range(10))
    )

    assert len(orchestrator.store) == 10
    assert len({r.episode_id for r in results}) == 10
    assert len({r.request_id for r in results}) == 10


@pytest.mark.asyncio
async def test_cancelling_one_call_leaves_others_running():
    providers = [
        StaticProvider("a", payload={}, confidence=0.8, delay_seconds=0.05),
        StaticProvider("b", payload={}, confidence=0.6, delay_seconds=0.05, priority=1),
    ]
    orchestrator = make_orchestrator(providers)

    first = asyncio.create_task(orchestrator.run_parallel_comparison(TaskRequest(task="first")))
    second = asyncio.create_task(orchestrator.run_parallel_comparison(TaskRequest(task="second")))
    await asyncio.sleep(0.01)
    first.cancel()

    result = await second
    with pytest.raises(asyncio.CancelledError):
        await first

    assert first.cancelled()
    assert result.selected_provider == "a"
    assert [a.provider for a in result.alternatives] == ["b"]
    assert all(a.success for a in result.alternatives)
    assert len(orchestrator.store) == 1
    assert orchestrator.store.snapshot()[0].task_type == "second"


def test_lifecycle_happy_path():
    lifecycle = OrchestrationLifecycle("req-1")
    for state in (
        OrchestrationState.DISPATCHING,
        OrchestrationState.COLLECTING,
        OrchestrationState.SCORING,
        OrchestrationState.SELECTED,
        OrchestrationState.RECORDED,
        OrchestrationState.COMPLETED,
    ):
        lifecycle.transition(state)

    assert lifecycle.is_terminal
    assert lifecycle.history[0] == OrchestrationState.RECEIVED
    assert lifecycle.history[-1] == OrchestrationState.COMPLETED


def test_lifecycle_failed_only_from_dispatching_or_collecting():
    lifecycle = OrchestrationLifecycle("req-2")
    lifecycle.transition(OrchestrationState.DISPATCHING)
    lifecycle.transition(OrchestrationState.FAILED)
    assert lifecycle.is_terminal

    scoring = OrchestrationLifecycle("req-3")
    scoring.transition(OrchestrationState.DISPATCHING)
    scoring.transition(OrchestrationState.COLLECTING)
    scoring.transition(OrchestrationState.SCORING)
    with pytest.raises(InvalidTransitionError):
        scoring.transition(OrchestrationState.FAILED)


def test_lifecycle_rejects_skipping_states():
    lifecycle = OrchestrationLifecycle("req-4")
    with pytest.raises(InvalidTransitionError):
        lifecycle.transition(OrchestrationState.SCORING)
    assert lifecycle.state == OrchestrationState.RECEIVED


def test_terminal_state_rejects_further_transitions():
    lifecycle = OrchestrationLifecycle("req-5")
    lifecycle.transition(OrchestrationState.DISPATCHING)
    lifecycle.transition(OrchestrationState.FAILED)
    with pytest.raises(InvalidTransitionError):
        lifecycle.transition(OrchestrationState.DISPATCHING)
