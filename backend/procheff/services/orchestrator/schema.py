"""
Pydantic models for the multi-provider orchestration engine.

Lifecycle of the records:
- TaskRequest: submitted by the caller, frozen
- ProviderResponse: produced by a provider adapter, owned by the dispatcher
- ScoredResponse: produced by the scorer, consumed by the selector
- SelectionResult: returned to the caller
- Episode: distilled from a call and appended to the context store, frozen

PerformanceReport and ReflexiveAssessment are derived views, recomputed
from a context store snapshot on every request.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Priority = Literal["low", "medium", "high"]
Trend = Literal["stable", "improving", "degrading"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clean_tags(value: Optional[Tuple[str, ...]]) -> Optional[Tuple[str, ...]]:
    if value is None:
        return None
    seen: Dict[str, None] = {}
    for tag in value:
        tag = tag.strip().lower()
        if tag:
            seen.setdefault(tag, None)
    return tuple(seen)


class TaskRequest(BaseModel):
    """
    One logical task to run against every eligible provider.

    Example:
    {
      "task": "recipe-analysis",
      "context": {"name": "Mercimek çorbası", "portions": 120},
      "priority": "medium",
      "required_capabilities": ["recipe-analysis"]
    }
    """

    model_config = ConfigDict(frozen=True)

    task: str = Field(..., min_length=1, description="Task type, e.g. recipe-analysis")
    context: Any = Field(None, description="Opaque payload forwarded to providers")
    priority: Priority = "medium"
    required_capabilities: Optional[Tuple[str, ...]] = Field(
        None,
        description="Only providers declaring all of these tags are eligible",
    )
    tags: Tuple[str, ...] = Field(
        default_factory=tuple,
        description="Extra free-text tags recorded on the episode",
    )
    max_cost: Optional[float] = Field(
        None,
        ge=0.0,
        description="Upper bound on a provider's estimated cost for ~1000 tokens",
    )

    @field_validator("required_capabilities", "tags")
    @classmethod
    def normalize_tags(cls, value):
        return _clean_tags(value)


class FailureKind(str, Enum):
    """Why a provider response carries success=False."""

    TIMEOUT = "timeout"
    ERROR = "error"
    CIRCUIT_OPEN = "circuit_open"
    CANCELLED = "cancelled"


class ProviderResponse(BaseModel):
    """Uniform result of one provider invocation, successful or not."""

    provider: str
    data: Any = None
    confidence: Optional[float] = Field(
        None,
        description="Self-reported quality signal; clamped by the scorer",
    )
    latency_ms: float = Field(0.0, ge=0.0)
    cost: float = Field(0.0, ge=0.0)
    tokens_used: int = Field(0, ge=0)
    success: bool = True
    failure_reason: Optional[str] = None
    failure_kind: Optional[FailureKind] = None

    @classmethod
    def failed(
        cls,
        provider: str,
        kind: FailureKind,
        reason: str,
        latency_ms: float = 0.0,
    ) -> "ProviderResponse":
        return cls(
            provider=provider,
            success=False,
            failure_kind=kind,
            failure_reason=reason,
            latency_ms=max(0.0, latency_ms),
        )


class ScoreFactors(BaseModel):
    """The three normalized signals behind a confidence score."""

    intrinsic: float = Field(0.0, ge=0.0, le=1.0)
    reliability: float = Field(0.0, ge=0.0, le=1.0)
    capability_fit: float = Field(0.0, ge=0.0, le=1.0)


class ScoredResponse(BaseModel):
    """A provider response with its combined confidence score."""

    response: ProviderResponse
    score: float = Field(..., ge=0.0, le=1.0)
    factors: ScoreFactors = Field(default_factory=ScoreFactors)
    priority: int = Field(0, description="Declared provider order; lower wins ties")

    @property
    def provider(self) -> str:
        return self.response.provider

    @property
    def success(self) -> bool:
        return self.response.success

    @property
    def latency_ms(self) -> float:
        return self.response.latency_ms

    @property
    def failure_reason(self) -> Optional[str]:
        return self.response.failure_reason


class SelectionResult(BaseModel):
    """What the caller receives from run_parallel_comparison."""

    request_id: str
    task: str
    selected: ScoredResponse
    alternatives: List[ScoredResponse] = Field(default_factory=list)
    rationale: str
    total_latency_ms: float = Field(0.0, ge=0.0)
    total_cost: float = Field(0.0, ge=0.0)
    episode_id: Optional[str] = None

    @property
    def selected_provider(self) -> str:
        return self.selected.provider

    @property
    def confidence(self) -> float:
        return self.selected.score


class CandidateOutcome(BaseModel):
    """How one dispatched provider fared within an episode."""

    model_config = ConfigDict(frozen=True)

    provider: str
    success: bool
    score: float = Field(0.0, ge=0.0, le=1.0)
    latency_ms: float = Field(0.0, ge=0.0)
    cost: float = Field(0.0, ge=0.0)
    tokens_used: int = Field(0, ge=0)
    failure_reason: Optional[str] = None


class Episode(BaseModel):
    """
    One recorded orchestration outcome.

    Never mutated after creation. Failure episodes (every provider failed)
    have success=False and no selected provider.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = Field(default_factory=_utcnow)
    task_type: str = Field(..., min_length=1)
    input: Any = None
    output: Any = None
    selected_provider: Optional[str] = None
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    tags: Tuple[str, ...] = Field(default_factory=tuple)
    execution_time_ms: float = Field(0.0, ge=0.0)
    cost: float = Field(0.0, ge=0.0)
    tokens_used: int = Field(0, ge=0)
    success: bool = True
    candidates: Tuple[CandidateOutcome, ...] = Field(default_factory=tuple)

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, value):
        return _clean_tags(value)

    @model_validator(mode="after")
    def check_selection(self) -> "Episode":
        if self.success and not self.selected_provider:
            raise ValueError("a successful episode needs a selected_provider")
        if not self.success and self.selected_provider:
            raise ValueError("a failure episode cannot have a selected_provider")
        return self

    def candidate_outcomes(self) -> Tuple[CandidateOutcome, ...]:
        """
        Candidates of this episode.

        Caller-built episodes may carry no candidate list; the selected
        provider then stands in as the only candidate.
        """
        if self.candidates:
            return self.candidates
        if self.selected_provider:
            return (
                CandidateOutcome(
                    provider=self.selected_provider,
                    success=self.success,
                    score=self.confidence,
                    latency_ms=self.execution_time_ms,
                    cost=self.cost,
                    tokens_used=self.tokens_used,
                ),
            )
        return ()


class EpisodeQuery(BaseModel):
    """Structured filter over the context store; results are newest first."""

    task_type: Optional[str] = None
    tags: Optional[Tuple[str, ...]] = None
    providers: Optional[Tuple[str, ...]] = None
    min_confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    success: Optional[bool] = None
    limit: Optional[int] = Field(None, ge=1)

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, value):
        return _clean_tags(value)


class ProviderPerformance(BaseModel):
    """Per-provider aggregate derived from episodes."""

    provider: str
    candidate_count: int = 0
    selected_count: int = 0
    success_rate: float = Field(0.0, ge=0.0, le=1.0)
    availability: float = Field(0.0, ge=0.0, le=1.0)
    mean_confidence: float = Field(0.0, ge=0.0, le=1.0)
    mean_latency_ms: float = 0.0
    mean_cost: float = 0.0
    total_tokens: int = 0


class PerformanceReport(BaseModel):
    """Read-side aggregation over every episode currently in the store."""

    generated_at: datetime = Field(default_factory=_utcnow)
    total_episodes: int = 0
    failed_episodes: int = 0
    store_capacity: Optional[int] = None
    mean_confidence: float = 0.0
    mean_execution_time_ms: float = 0.0
    total_cost: float = 0.0
    task_distribution: Dict[str, int] = Field(default_factory=dict)
    selection_distribution: Dict[str, int] = Field(default_factory=dict)
    providers: Dict[str, ProviderPerformance] = Field(default_factory=dict)


class ProviderAlert(BaseModel):
    """A provider whose recent success rate fell below its historical baseline."""

    provider: str
    baseline_success_rate: float
    recent_success_rate: float
    drop: float
    recent_samples: int


class ReflexiveAssessment(BaseModel):
    """Self-assessment of recent selection quality."""

    generated_at: datetime = Field(default_factory=_utcnow)
    trend: Trend = "stable"
    window_size: int = 0
    mean_confidence: float = 0.0
    earlier_mean_confidence: float = 0.0
    recent_mean_confidence: float = 0.0
    failure_rate: float = 0.0
    flagged_providers: List[ProviderAlert] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
