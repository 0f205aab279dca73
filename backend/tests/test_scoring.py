"""
Unit tests for ConfidenceScorer and Selector.
"""
import pytest

from procheff.core.config import ScoreWeights
from procheff.services.orchestrator.providers import StaticProvider
from procheff.services.orchestrator.schema import (
    CandidateOutcome,
    FailureKind,
    ProviderResponse,
    ScoredResponse,
    ScoreFactors,
)
from procheff.services.orchestrator.scoring import ConfidenceScorer, Selector

from conftest import make_episode


def _ok(provider, confidence=None, latency_ms=10.0):
    return ProviderResponse(provider=provider, data={}, confidence=confidence, latency_ms=latency_ms)


def _scored(provider, score, latency_ms=10.0, priority=0, success=True):
    if success:
        response = _ok(provider, latency_ms=latency_ms)
    else:
        response = ProviderResponse.failed(provider, FailureKind.ERROR, "boom", latency_ms)
    return ScoredResponse(
        response=response,
        score=score,
        factors=ScoreFactors(intrinsic=score, reliability=0.5, capability_fit=1.0),
        priority=priority,
    )


def test_cold_start_uses_neutral_signals():
    scorer = ConfidenceScorer()
    adapter = StaticProvider("a")

    scored = scorer.score_one(_ok("a"), adapter, None, history=[])

    assert scored.factors.intrinsic == pytest.approx(0.5)
    assert scored.factors.reliability == pytest.approx(0.5)
    assert scored.factors.capability_fit == pytest.approx(1.0)
    assert scored.score == pytest.approx(2.0 / 3.0, abs=1e-6)


def test_confidence_is_clamped():
    scorer = ConfidenceScorer()
    scored = scorer.score_one(_ok("a", confidence=1.7), StaticProvider("a"), None, history=[])
    assert scored.factors.intrinsic == 1.0
    assert 0.0 <= scored.score <= 1.0


@pytest.mark.parametrize("confidence", [float("nan"), float("inf"), float("-inf")])
def test_non_finite_confidence_counts_as_unreported(confidence):
    scorer = ConfidenceScorer()
    scored = scorer.score_one(_ok("a", confidence=confidence), StaticProvider("a"), None, history=[])

    assert scored.factors.intrinsic == pytest.approx(0.5)
    assert scored.score == pytest.approx(2.0 / 3.0, abs=1e-6)


def test_nan_confidence_does_not_win_selection():
    scorer = ConfidenceScorer()
    providers = {"nanp": StaticProvider("nanp"), "good": StaticProvider("good", priority=1)}
    scored = scorer.score(
        [_ok("nanp", confidence=float("nan")), _ok("good", confidence=0.95)],
        providers,
        None,
        history=[],
    )

    winner, _, _ = Selector().select(scored)

    assert winner.provider == "good"


def test_failed_response_scores_zero():
    scorer = ConfidenceScorer()
    failed = ProviderResponse.failed("a", FailureKind.TIMEOUT, "timed out")
    assert scorer.score_one(failed, StaticProvider("a"), None, history=[]).score == 0.0


def test_reliability_uses_most_recent_window():
    scorer = ConfidenceScorer(reliability_window=2)
    history = [
        make_episode(selected_provider="b", candidates=[CandidateOutcome(provider="a", success=False)]),
        make_episode(selected_provider="a", candidates=[CandidateOutcome(provider="a", success=True)]),
        make_episode(selected_provider="a", candidates=[CandidateOutcome(provider="a", success=True)]),
    ]
    assert scorer.reliability("a", history) == pytest.approx(1.0)
    assert ConfidenceScorer(reliability_window=20).reliability("a", history) == pytest.approx(2 / 3)
    assert scorer.reliability("never-seen", history) == pytest.approx(0.5)


def test_capability_fit_reduced_per_missing_tag():
    adapter = StaticProvider("a", capabilities=["recipe-analysis"])
    fit = ConfidenceScorer.capability_fit(adapter, ("recipe-analysis", "cost-calculation"))
    assert fit == pytest.approx(0.5)
    assert ConfidenceScorer.capability_fit(adapter, None) == 1.0


def test_weights_change_the_score():
    intrinsic_only = ConfidenceScorer(ScoreWeights(intrinsic=1, reliability=0, capability_fit=0))
    scored = intrinsic_only.score_one(_ok("a", confidence=0.9), StaticProvider("a"), None, history=[])
    assert scored.score == pytest.approx(0.9)


def test_selector_highest_score_wins():
    winner, alternatives, rationale = Selector().select([
        _scored("a", 0.4, priority=0),
        _scored("b", 0.8, priority=1),
        _scored("c", 0.0, priority=2, success=False),
    ])
    assert winner.provider == "b"
    assert [a.provider for a in alternatives] == ["a", "c"]
    assert "'b'" in rationale
    assert "1 provider(s) failed" in rationale


def test_selector_tie_broken_by_latency_then_priority():
    winner, _, rationale = Selector().select([
        _scored("slow", 0.7, latency_ms=300.0, priority=0),
        _scored("fast", 0.7, latency_ms=100.0, priority=1),
    ])
    assert winner.provider == "fast"
    assert "lower latency" in rationale

    winner, _, rationale = Selector().select([
        _scored("second", 0.7, latency_ms=100.0, priority=1),
        _scored("first", 0.7, latency_ms=100.0, priority=0),
    ])
    assert winner.provider == "first"
    assert "provider priority" in rationale


def test_alternatives_ties_ordered_by_priority():
    _, alternatives, _ = Selector().select([
        _scored("winner", 0.9),
        _scored("b", 0.5, latency_ms=10.0, priority=2),
        _scored("a", 0.5, latency_ms=500.0, priority=1),
        _scored("z-failed", 0.0, priority=0, success=False),
    ])
    assert [a.provider for a in alternatives] == ["a", "b", "z-failed"]


def test_selector_rejects_all_failed():
    with pytest.raises(ValueError):
        Selector().select([_scored("a", 0.0, success=False)])


def test_rationale_names_dominant_signal():
    selector = Selector(ScoreWeights(intrinsic=1, reliability=1, capability_fit=1))
    winner = ScoredResponse(
        response=_ok("a"),
        score=0.6,
        factors=ScoreFactors(intrinsic=0.2, reliability=0.6, capability_fit=1.0),
    )
    name, contribution = selector.dominant_signal(winner)
    assert name == "capability_fit"
    assert contribution == pytest.approx(1 / 3)
    assert "capability fit" in selector.rationale(winner, None, 0)
