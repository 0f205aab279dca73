"""
Unit tests for the performance report and reflexive analysis.
"""
import pytest

from procheff.services.orchestrator.analysis import analyze_reflexively, build_performance_report
from procheff.services.orchestrator.schema import CandidateOutcome

from conftest import make_episode


def _candidate(provider, success=True, score=0.5, latency_ms=100.0, cost=0.0, reason=None):
    return CandidateOutcome(
        provider=provider,
        success=success,
        score=score if success else 0.0,
        latency_ms=latency_ms,
        cost=cost,
        failure_reason=reason,
    )


def test_performance_success_rate_is_selected_over_candidacies():
    episodes = [
        make_episode(selected_provider="a", candidates=[_candidate("a", score=0.9), _candidate("b", score=0.6)]),
        make_episode(selected_provider="b", candidates=[_candidate("a", success=False, reason="timeout"), _candidate("b", score=0.7)]),
        make_episode(selected_provider="a", candidates=[_candidate("a", score=0.8)]),
    ]

    report = build_performance_report(episodes, store_capacity=100)

    a, b = report.providers["a"], report.providers["b"]
    assert a.candidate_count == 3
    assert a.selected_count == 2
    assert a.success_rate == pytest.approx(2 / 3)
    assert a.availability == pytest.approx(2 / 3)
    assert b.candidate_count == 2
    assert b.success_rate == pytest.approx(0.5)
    assert b.availability == pytest.approx(1.0)
    assert b.mean_confidence == pytest.approx(0.65)

    assert report.total_episodes == 3
    assert report.store_capacity == 100
    assert report.selection_distribution == {"a": 2, "b": 1}
    assert report.task_distribution == {"recipe-analysis": 3}


def test_performance_report_counts_failure_episodes():
    episodes = [
        make_episode(success=False, confidence=0.0, candidates=[_candidate("a", success=False, reason="boom")]),
        make_episode(selected_provider="a", confidence=0.8, candidates=[_candidate("a", score=0.8)]),
    ]
    report = build_performance_report(episodes)

    assert report.failed_episodes == 1
    assert report.providers["a"].success_rate == pytest.approx(0.5)
    assert report.mean_confidence == pytest.approx(0.4)
    assert report.selection_distribution == {"a": 1}


def test_performance_report_caller_episode_without_candidates():
    report = build_performance_report([make_episode(selected_provider="claude", confidence=0.7)])
    claude = report.providers["claude"]
    assert claude.candidate_count == 1
    assert claude.success_rate == 1.0
    assert claude.mean_confidence == pytest.approx(0.7)


def test_empty_performance_report():
    report = build_performance_report([])
    assert report.total_episodes == 0
    assert report.providers == {}
    assert report.mean_confidence == 0.0


def test_reflexive_degrading_trend():
    episodes = [make_episode(confidence=0.9) for _ in range(5)] + [make_episode(confidence=0.5) for _ in range(5)]
    assessment = analyze_reflexively(episodes, window=10)

    assert assessment.trend == "degrading"
    assert assessment.earlier_mean_confidence == pytest.approx(0.9)
    assert assessment.recent_mean_confidence == pytest.approx(0.5)
    assert any("trending down" in r for r in assessment.recommendations)


def test_reflexive_improving_and_stable_trends():
    improving = [make_episode(confidence=0.5) for _ in range(4)] + [make_episode(confidence=0.8) for _ in range(4)]
    assert analyze_reflexively(improving, window=8).trend == "improving"

    stable = [make_episode(confidence=0.8) for _ in range(4)] + [make_episode(confidence=0.83) for _ in range(4)]
    assert analyze_reflexively(stable, window=8).trend == "stable"


def test_reflexive_window_limits_episodes():
    episodes = [make_episode(confidence=0.1) for _ in range(20)] + [make_episode(confidence=0.9) for _ in range(6)]
    assessment = analyze_reflexively(episodes, window=6)
    assert assessment.window_size == 6
    assert assessment.trend == "stable"
    assert assessment.mean_confidence == pytest.approx(0.9)


def test_reflexive_flags_provider_with_success_drop():
    healthy = [
        make_episode(selected_provider="x", candidates=[_candidate("x"), _candidate("y")])
        for _ in range(10)
    ]
    broken = [
        make_episode(
            selected_provider="y",
            candidates=[_candidate("x", success=False, reason="timed out after 10.00s"), _candidate("y")],
        )
        for _ in range(10)
    ]

    assessment = analyze_reflexively(healthy + broken, window=10, drop_threshold=0.2, min_samples=3)

    (alert,) = assessment.flagged_providers
    assert alert.provider == "x"
    assert alert.baseline_success_rate == pytest.approx(0.5)
    assert alert.recent_success_rate == pytest.approx(0.0)
    assert alert.drop == pytest.approx(0.5)
    assert alert.recent_samples == 10
    assert any("'x'" in r for r in assessment.recommendations)
    assert any("timed out" in r for r in assessment.recommendations)


def test_reflexive_requires_min_samples_before_flagging():
    history = [make_episode(selected_provider="x", candidates=[_candidate("x")]) for _ in range(10)]
    history += [make_episode(selected_provider="y", candidates=[_candidate("y")]) for _ in range(8)]
    history += [
        make_episode(selected_provider="y", candidates=[_candidate("x", success=False), _candidate("y")])
        for _ in range(2)
    ]

    assessment = analyze_reflexively(history, window=10, min_samples=3)
    assert assessment.flagged_providers == []


def test_reflexive_not_enough_data():
    assessment = analyze_reflexively([make_episode()], window=10)
    assert assessment.trend == "stable"
    assert assessment.window_size == 1
    assert assessment.recommendations == ["Not enough episodes for a reliable assessment"]


def test_reflexive_low_confidence_recommendation_and_failure_rate():
    episodes = [make_episode(confidence=0.4) for _ in range(3)] + [make_episode(success=False, confidence=0.0)]
    assessment = analyze_reflexively(episodes, window=10)
    assert assessment.failure_rate == pytest.approx(0.25)
    assert any("low" in r for r in assessment.recommendations)


def test_reflexive_window_must_hold_two_episodes():
    with pytest.raises(ValueError):
        analyze_reflexively([], window=1)
