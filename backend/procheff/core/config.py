"""
Configuration for the orchestration service.

Values come from environment variables, optionally loaded from a `.env`
file at the repository root. Invalid values fail fast at startup with a
ValueError (pydantic validation).

Orchestrator:
- ORCHESTRATOR_STORE_CAPACITY: Context store ring-buffer size (default: 1000)
- ORCHESTRATOR_PROVIDER_TIMEOUT_SECONDS: Per-provider timeout (default: 10)
- ORCHESTRATOR_REQUEST_TIMEOUT_SECONDS: Whole-dispatch timeout (default: 20)
- ORCHESTRATOR_SCORE_WEIGHTS: "intrinsic,reliability,capability_fit" (default: 1,1,1)
- ORCHESTRATOR_RELIABILITY_WINDOW: Episodes used for historical reliability (default: 20)
- ORCHESTRATOR_REFLEXIVE_WINDOW: Episodes examined by reflexive analysis (default: 50)
- ORCHESTRATOR_DROP_THRESHOLD: Success-rate drop that flags a provider (default: 0.2)
- ORCHESTRATOR_TREND_TOLERANCE: Confidence delta counted as a trend (default: 0.05)
- ORCHESTRATOR_MIN_SAMPLES: Candidacies needed before flagging (default: 3)
- ORCHESTRATOR_DEMO_PROVIDERS: Register in-process demo providers (default: false)

Providers (registered only when the API key is set):
- OPENAI_API_KEY, OPENAI_API_BASE, OPENAI_MODEL, OPENAI_COST_PER_1K_TOKENS
- ANTHROPIC_API_KEY, ANTHROPIC_API_BASE, ANTHROPIC_MODEL, ANTHROPIC_COST_PER_1K_TOKENS
- GOOGLE_GEMINI_API_KEY, GEMINI_API_BASE, GEMINI_MODEL, GEMINI_COST_PER_1K_TOKENS
"""
import os
from pathlib import Path
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, model_validator

from procheff.core.logging import get_logger

logger = get_logger(__name__)

ENV_PATH = Path(__file__).parent.parent.parent.parent / ".env"


class ScoreWeights(BaseModel):
    """Weights of the three confidence signals; normalized when scoring."""

    intrinsic: float = Field(1.0, ge=0.0)
    reliability: float = Field(1.0, ge=0.0)
    capability_fit: float = Field(1.0, ge=0.0)

    @model_validator(mode="after")
    def check_not_all_zero(self) -> "ScoreWeights":
        if self.intrinsic + self.reliability + self.capability_fit <= 0:
            raise ValueError("at least one score weight must be positive")
        return self

    @classmethod
    def parse(cls, raw: str) -> "ScoreWeights":
        parts = [p.strip() for p in raw.split(",") if p.strip()]
        if len(parts) != 3:
            raise ValueError(
                "ORCHESTRATOR_SCORE_WEIGHTS must be 'intrinsic,reliability,capability_fit'"
            )
        return cls(
            intrinsic=float(parts[0]),
            reliability=float(parts[1]),
            capability_fit=float(parts[2]),
        )


class ProviderSettings(BaseModel):
    """Connection settings for one HTTP provider backend."""

    name: str
    kind: str  # "openai" | "anthropic" | "gemini"
    api_key: Optional[str] = None
    api_base: str
    model: str
    capabilities: Tuple[str, ...] = ()
    cost_per_1k_tokens: float = Field(0.0, ge=0.0)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)


class OrchestratorSettings(BaseModel):
    """All orchestration settings, validated."""

    store_capacity: int = Field(1000, ge=1)
    provider_timeout_seconds: float = Field(10.0, gt=0)
    request_timeout_seconds: float = Field(20.0, gt=0)
    weights: ScoreWeights = Field(default_factory=ScoreWeights)
    reliability_window: int = Field(20, ge=1)
    reflexive_window: int = Field(50, ge=2)
    drop_threshold: float = Field(0.2, gt=0.0, le=1.0)
    trend_tolerance: float = Field(0.05, ge=0.0, le=1.0)
    min_samples: int = Field(3, ge=1)
    demo_providers: bool = False
    providers: Tuple[ProviderSettings, ...] = ()


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


def _provider_settings(env: Mapping[str, str]) -> Tuple[ProviderSettings, ...]:
    return (
        ProviderSettings(
            name="claude",
            kind="anthropic",
            api_key=env.get("ANTHROPIC_API_KEY") or None,
            api_base=env.get("ANTHROPIC_API_BASE", "https://api.anthropic.com/v1"),
            model=env.get("ANTHROPIC_MODEL", "claude-3-haiku-20240307"),
            capabilities=(
                "recipe-analysis",
                "cost-calculation",
                "complex-analysis",
                "menu-optimization",
            ),
            cost_per_1k_tokens=float(env.get("ANTHROPIC_COST_PER_1K_TOKENS", "0.25") or "0"),
        ),
        ProviderSettings(
            name="gpt",
            kind="openai",
            api_key=env.get("OPENAI_API_KEY") or None,
            api_base=env.get("OPENAI_API_BASE", "https://api.openai.com/v1"),
            model=env.get("OPENAI_MODEL", "gpt-4-turbo-preview"),
            capabilities=("creative-suggestions", "recipe-generation", "cost-analysis"),
            cost_per_1k_tokens=float(env.get("OPENAI_COST_PER_1K_TOKENS", "10.0") or "0"),
        ),
        ProviderSettings(
            name="gemini",
            kind="gemini",
            api_key=env.get("GOOGLE_GEMINI_API_KEY") or None,
            api_base=env.get("GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta"),
            model=env.get("GEMINI_MODEL", "gemini-pro"),
            capabilities=("market-analysis", "price-prediction", "trend-analysis"),
            cost_per_1k_tokens=float(env.get("GEMINI_COST_PER_1K_TOKENS", "0.5") or "0"),
        ),
    )


def load_settings(env: Optional[Mapping[str, str]] = None) -> OrchestratorSettings:
    """
    Build OrchestratorSettings from the environment.

    Args:
        env: Mapping to read from; defaults to os.environ after loading `.env`

    Raises:
        ValueError: if a value is malformed or out of range
    """
    if env is None:
        if ENV_PATH.exists():
            load_dotenv(ENV_PATH)
            logger.info("env_loaded", env_path=str(ENV_PATH))
        env = os.environ

    try:
        settings = OrchestratorSettings(
            store_capacity=int(env.get("ORCHESTRATOR_STORE_CAPACITY", "1000")),
            provider_timeout_seconds=float(env.get("ORCHESTRATOR_PROVIDER_TIMEOUT_SECONDS", "10")),
            request_timeout_seconds=float(env.get("ORCHESTRATOR_REQUEST_TIMEOUT_SECONDS", "20")),
            weights=ScoreWeights.parse(env.get("ORCHESTRATOR_SCORE_WEIGHTS", "1,1,1")),
            reliability_window=int(env.get("ORCHESTRATOR_RELIABILITY_WINDOW", "20")),
            reflexive_window=int(env.get("ORCHESTRATOR_REFLEXIVE_WINDOW", "50")),
            drop_threshold=float(env.get("ORCHESTRATOR_DROP_THRESHOLD", "0.2")),
            trend_tolerance=float(env.get("ORCHESTRATOR_TREND_TOLERANCE", "0.05")),
            min_samples=int(env.get("ORCHESTRATOR_MIN_SAMPLES", "3")),
            demo_providers=_flag(env.get("ORCHESTRATOR_DEMO_PROVIDERS")),
            providers=_provider_settings(env),
        )
    except ValidationError as exc:
        raise ValueError(f"Invalid orchestrator configuration: {exc}") from exc

    logger.info(
        "settings_loaded",
        store_capacity=settings.store_capacity,
        provider_timeout_seconds=settings.provider_timeout_seconds,
        request_timeout_seconds=settings.request_timeout_seconds,
        enabled_providers=[p.name for p in settings.providers if p.enabled],
        demo_providers=settings.demo_providers,
    )
    return settings
