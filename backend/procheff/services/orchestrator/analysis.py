"""
Performance and reflexive analysis.

Both are pure functions over an episode snapshot (oldest first). They hold
no state of their own and never touch the store.
"""
from collections import Counter, defaultdict
from statistics import fmean
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from procheff.services.orchestrator.schema import (
    Episode,
    PerformanceReport,
    ProviderAlert,
    ProviderPerformance,
    ReflexiveAssessment,
)

LOW_CONFIDENCE_THRESHOLD = 0.7


def _mean(values: Iterable[float]) -> float:
    values = list(values)
    return fmean(values) if values else 0.0


def build_performance_report(
    episodes: Sequence[Episode],
    store_capacity: Optional[int] = None,
) -> PerformanceReport:
    """
    Per-provider performance over every episode given.

    success_rate = episodes where the provider was selected and the episode
    succeeded, over episodes where it was a candidate. availability = share
    of candidacies where the provider's own response succeeded.
    """
    candidacies: Dict[str, list] = defaultdict(list)
    selected: Counter = Counter()

    for episode in episodes:
        for candidate in episode.candidate_outcomes():
            candidacies[candidate.provider].append(candidate)
            if episode.success and episode.selected_provider == candidate.provider:
                selected[candidate.provider] += 1

    providers = {}
    for name in sorted(candidacies):
        outcomes = candidacies[name]
        count = len(outcomes)
        providers[name] = ProviderPerformance(
            provider=name,
            candidate_count=count,
            selected_count=selected[name],
            success_rate=selected[name] / count,
            availability=sum(1 for o in outcomes if o.success) / count,
            mean_confidence=_mean(o.score for o in outcomes),
            mean_latency_ms=_mean(o.latency_ms for o in outcomes),
            mean_cost=_mean(o.cost for o in outcomes),
            total_tokens=sum(o.tokens_used for o in outcomes),
        )

    return PerformanceReport(
        total_episodes=len(episodes),
        failed_episodes=sum(1 for e in episodes if not e.success),
        store_capacity=store_capacity,
        mean_confidence=_mean(e.confidence for e in episodes),
        mean_execution_time_ms=_mean(e.execution_time_ms for e in episodes),
        total_cost=sum(e.cost for e in episodes),
        task_distribution=dict(Counter(e.task_type for e in episodes)),
        selection_distribution=dict(
            Counter(e.selected_provider for e in episodes if e.selected_provider)
        ),
        providers=providers,
    )


def _response_success_rates(episodes: Sequence[Episode]) -> Dict[str, Tuple[int, int]]:
    """provider -> (successful responses, candidacies)"""
    rates: Dict[str, List[int]] = defaultdict(lambda: [0, 0])
    for episode in episodes:
        for candidate in episode.candidate_outcomes():
            rates[candidate.provider][0] += int(candidate.success)
            rates[candidate.provider][1] += 1
    return {name: (ok, total) for name, (ok, total) in rates.items()}


def _flag_providers(
    history: Sequence[Episode],
    window: Sequence[Episode],
    drop_threshold: float,
    min_samples: int,
) -> List[ProviderAlert]:
    baseline = _response_success_rates(history)
    recent = _response_success_rates(window)

    alerts = []
    for name in sorted(recent):
        ok, total = recent[name]
        if total < min_samples:
            continue
        base_ok, base_total = baseline[name]
        baseline_rate = base_ok / base_total
        recent_rate = ok / total
        drop = baseline_rate - recent_rate
        if drop >= drop_threshold:
            alerts.append(
                ProviderAlert(
                    provider=name,
                    baseline_success_rate=round(baseline_rate, 4),
                    recent_success_rate=round(recent_rate, 4),
                    drop=round(drop, 4),
                    recent_samples=total,
                )
            )
    return alerts


def _most_common_failure(window: Sequence[Episode]) -> Optional[str]:
    reasons = Counter(
        candidate.failure_reason
        for episode in window
        for candidate in episode.candidate_outcomes()
        if not candidate.success and candidate.failure_reason
    )
    if not reasons:
        return None
    reason, _ = reasons.most_common(1)[0]
    return reason


def analyze_reflexively(
    episodes: Sequence[Episode],
    window: int = 50,
    drop_threshold: float = 0.2,
    trend_tolerance: float = 0.05,
    min_samples: int = 3,
) -> ReflexiveAssessment:
    """
    Assess recent selection quality.

    The last `window` episodes are split in an older and a newer half; the
    trend is "improving"/"degrading" when the newer half's mean confidence
    moves by more than `trend_tolerance`. Providers whose response success
    rate in the window sits at least `drop_threshold` below their
    whole-history rate (with at least `min_samples` candidacies in the
    window) are flagged.
    """
    if window < 2:
        raise ValueError("window must be >= 2")

    recent = list(episodes[-window:])
    if len(recent) < 2:
        return ReflexiveAssessment(
            window_size=len(recent),
            mean_confidence=_mean(e.confidence for e in recent),
            recent_mean_confidence=_mean(e.confidence for e in recent),
            failure_rate=_mean(0.0 if e.success else 1.0 for e in recent),
            recommendations=["Not enough episodes for a reliable assessment"],
        )

    half = len(recent) // 2
    earlier_mean = _mean(e.confidence for e in recent[:half])
    later_mean = _mean(e.confidence for e in recent[half:])
    if later_mean > earlier_mean + trend_tolerance:
        trend = "improving"
    elif later_mean < earlier_mean - trend_tolerance:
        trend = "degrading"
    else:
        trend = "stable"

    mean_confidence = _mean(e.confidence for e in recent)
    flagged = _flag_providers(episodes, recent, drop_threshold, min_samples)

    recommendations = []
    if mean_confidence < LOW_CONFIDENCE_THRESHOLD:
        recommendations.append(
            f"Mean selection confidence is low ({mean_confidence:.2f}); "
            "review provider prompts or score weights"
        )
    if trend == "degrading":
        recommendations.append("Selection confidence is trending down; review recent provider changes")
    for alert in flagged:
        recommendations.append(
            f"Provider '{alert.provider}' success rate fell from "
            f"{alert.baseline_success_rate:.0%} to {alert.recent_success_rate:.0%}"
        )
    common_failure = _most_common_failure(recent)
    if common_failure:
        recommendations.append(f"Most frequent provider failure: {common_failure}")

    return ReflexiveAssessment(
        trend=trend,
        window_size=len(recent),
        mean_confidence=mean_confidence,
        earlier_mean_confidence=earlier_mean,
        recent_mean_confidence=later_mean,
        failure_rate=_mean(0.0 if e.success else 1.0 for e in recent),
        flagged_providers=flagged,
        recommendations=recommendations,
    )
