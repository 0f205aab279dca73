"""
Confidence scoring and winner selection.

Score of a successful response = weighted average of three signals in [0, 1]:
- intrinsic: the provider's self-reported confidence (0.5 when absent or not finite)
- reliability: the provider's response success rate over its most recent
  candidacies in the context store (0.5 on cold start)
- capability_fit: share of the required capability tags the provider declares

Failed responses score 0 and never win.
"""
import math
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from procheff.core.config import ScoreWeights
from procheff.services.orchestrator.providers.base import ProviderAdapter
from procheff.services.orchestrator.schema import (
    Episode,
    ProviderResponse,
    ScoredResponse,
    ScoreFactors,
)

NEUTRAL_SIGNAL = 0.5

_SIGNAL_LABELS = {
    "intrinsic": "self-reported confidence",
    "reliability": "historical reliability",
    "capability_fit": "capability fit",
}


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class ConfidenceScorer:
    """
    Rates provider responses.

    Args:
        weights: Relative weights of the three signals (normalized here)
        reliability_window: Most recent candidacies per provider used for reliability
    """

    def __init__(self, weights: Optional[ScoreWeights] = None, reliability_window: int = 20):
        if reliability_window < 1:
            raise ValueError("reliability_window must be >= 1")
        self.weights = weights or ScoreWeights()
        self.reliability_window = reliability_window

    def normalized_weights(self) -> Dict[str, float]:
        total = self.weights.intrinsic + self.weights.reliability + self.weights.capability_fit
        return {
            "intrinsic": self.weights.intrinsic / total,
            "reliability": self.weights.reliability / total,
            "capability_fit": self.weights.capability_fit / total,
        }

    def reliability(self, provider: str, history: Sequence[Episode]) -> float:
        """Response success rate over the provider's last `reliability_window` candidacies."""
        outcomes: List[bool] = []
        for episode in reversed(history):
            for candidate in episode.candidate_outcomes():
                if candidate.provider == provider:
                    outcomes.append(candidate.success)
                    break
            if len(outcomes) >= self.reliability_window:
                break
        if not outcomes:
            return NEUTRAL_SIGNAL
        return sum(outcomes) / len(outcomes)

    @staticmethod
    def capability_fit(adapter: Optional[ProviderAdapter], required: Optional[Sequence[str]]) -> float:
        if not required:
            return 1.0
        if adapter is None:
            return 0.0
        return _clamp(1.0 - adapter.missing_capabilities(required) / len(required))

    def score_one(
        self,
        response: ProviderResponse,
        adapter: Optional[ProviderAdapter],
        required: Optional[Sequence[str]],
        history: Sequence[Episode],
        priority: int = 0,
    ) -> ScoredResponse:
        if not response.success:
            return ScoredResponse(response=response, score=0.0, priority=priority)

        confidence = response.confidence
        # NaN and infinities count as not reported
        if confidence is None or not math.isfinite(confidence):
            intrinsic = NEUTRAL_SIGNAL
        else:
            intrinsic = _clamp(confidence)
        factors = ScoreFactors(
            intrinsic=intrinsic,
            reliability=self.reliability(response.provider, history),
            capability_fit=self.capability_fit(adapter, required),
        )
        weights = self.normalized_weights()
        score = sum(weights[name] * getattr(factors, name) for name in weights)
        # Rounded so equal inputs tie exactly.
        return ScoredResponse(
            response=response,
            score=round(_clamp(score), 6),
            factors=factors,
            priority=priority,
        )

    def score(
        self,
        responses: Sequence[ProviderResponse],
        providers: Mapping[str, ProviderAdapter],
        required: Optional[Sequence[str]],
        history: Sequence[Episode],
        priorities: Optional[Mapping[str, int]] = None,
    ) -> List[ScoredResponse]:
        """
        Score every response, successful or not.

        Args:
            responses: Dispatcher output
            providers: Adapters by name, for capability fit and priority
            required: Required capability tags of the request
            history: Context store snapshot, oldest first
            priorities: Tie-break position by name; defaults to adapter.priority
        """
        scored = []
        for response in responses:
            adapter = providers.get(response.provider)
            if priorities is not None:
                priority = priorities.get(response.provider, len(providers))
            else:
                priority = adapter.priority if adapter is not None else len(providers)
            scored.append(self.score_one(response, adapter, required, history, priority))
        return scored


class Selector:
    """Picks the winner among scored responses and explains the choice."""

    def __init__(self, weights: Optional[ScoreWeights] = None):
        self._scorer_weights = ConfidenceScorer(weights).normalized_weights()

    @staticmethod
    def _winner_key(item: ScoredResponse) -> Tuple[float, float, int]:
        return (-item.score, item.latency_ms, item.priority)

    @staticmethod
    def _alternative_key(item: ScoredResponse) -> Tuple[float, int, float]:
        return (-item.score, item.priority, item.latency_ms)

    def select(
        self, scored: Sequence[ScoredResponse]
    ) -> Tuple[ScoredResponse, List[ScoredResponse], str]:
        """
        Returns:
            (winner, ordered alternatives, rationale)

        Raises:
            ValueError: if no scored response is successful
        """
        successful = [s for s in scored if s.success]
        if not successful:
            raise ValueError("cannot select among failed responses only")

        ranked = sorted(successful, key=self._winner_key)
        winner = ranked[0]

        remaining = sorted(
            (s for s in successful if s is not winner), key=self._alternative_key
        )
        failed = sorted((s for s in scored if not s.success), key=lambda s: s.priority)
        alternatives = remaining + failed

        runner_up = ranked[1] if len(ranked) > 1 else None
        return winner, alternatives, self.rationale(winner, runner_up, len(failed))

    def dominant_signal(self, winner: ScoredResponse) -> Tuple[str, float]:
        contributions = {
            name: weight * getattr(winner.factors, name)
            for name, weight in self._scorer_weights.items()
        }
        # Ties resolve in declaration order: intrinsic, reliability, capability_fit.
        name = max(contributions, key=lambda k: contributions[k])
        return name, contributions[name]

    def rationale(
        self,
        winner: ScoredResponse,
        runner_up: Optional[ScoredResponse],
        failed_count: int,
    ) -> str:
        signal, contribution = self.dominant_signal(winner)
        parts = [
            f"Selected '{winner.provider}' with confidence {winner.score:.2f}; "
            f"dominant signal: {_SIGNAL_LABELS[signal]} (weighted {contribution:.2f})"
        ]
        if runner_up is not None:
            if runner_up.score == winner.score:
                if runner_up.latency_ms != winner.latency_ms:
                    parts.append(f"tied with '{runner_up.provider}', won on lower latency")
                else:
                    parts.append(f"tied with '{runner_up.provider}', won on provider priority")
            else:
                parts.append(
                    f"ahead of '{runner_up.provider}' by {winner.score - runner_up.score:.2f}"
                )
        if failed_count:
            parts.append(f"{failed_count} provider(s) failed")
        return "; ".join(parts)
