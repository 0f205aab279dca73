"""
Prometheus metrics collection module.

Metrics Categories:
- RED Metrics: HTTP rate, errors, duration
- Orchestration Metrics: calls, outcomes, per-provider latency/cost/tokens,
  selection confidence
- Context Store Metrics: size, evictions
- Resilience Metrics: circuit breaker state
- Resource Metrics: CPU, memory

All metrics follow Prometheus naming conventions:
- Counters: _total suffix
- Histograms: _seconds suffix for duration
- Gauges: No special suffix
"""
from typing import Optional

import psutil
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from procheff.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# RED METRICS - Rate, Errors, Duration
# ============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status"],
    registry=registry,
)

http_errors_total = Counter(
    "http_errors_total",
    "Total number of HTTP errors",
    ["method", "endpoint", "status_code"],
    registry=registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=registry,
)

# ============================================================================
# ORCHESTRATION METRICS
# ============================================================================

orchestrator_requests_total = Counter(
    "orchestrator_requests_total",
    "Total number of orchestration calls",
    ["task", "outcome"],  # outcome: completed | all_failed | no_eligible | cancelled
    registry=registry,
)

orchestrator_request_duration_seconds = Histogram(
    "orchestrator_request_duration_seconds",
    "End-to-end orchestration call latency in seconds",
    ["task"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0],
    registry=registry,
)

orchestrator_provider_calls_total = Counter(
    "orchestrator_provider_calls_total",
    "Total number of provider invocations",
    ["provider", "outcome"],  # outcome: success | timeout | error | circuit_open | cancelled
    registry=registry,
)

orchestrator_provider_latency_seconds = Histogram(
    "orchestrator_provider_latency_seconds",
    "Provider invocation latency in seconds",
    ["provider"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0],
    registry=registry,
)

orchestrator_provider_cost_usd_total = Counter(
    "orchestrator_provider_cost_usd_total",
    "Estimated provider cost in USD",
    ["provider"],
    registry=registry,
)

orchestrator_provider_tokens_total = Counter(
    "orchestrator_provider_tokens_total",
    "Tokens consumed per provider",
    ["provider"],
    registry=registry,
)

orchestrator_selected_total = Counter(
    "orchestrator_selected_total",
    "Number of times each provider won selection",
    ["provider"],
    registry=registry,
)

orchestrator_selection_confidence = Histogram(
    "orchestrator_selection_confidence",
    "Distribution of winning confidence scores",
    buckets=[0.0, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0],
    registry=registry,
)

# ============================================================================
# CONTEXT STORE METRICS
# ============================================================================

context_store_size = Gauge(
    "context_store_size",
    "Number of episodes currently held by the context store",
    registry=registry,
)

context_store_evictions_total = Counter(
    "context_store_evictions_total",
    "Episodes evicted by capacity-based rotation",
    registry=registry,
)

# ============================================================================
# RESILIENCE / RESOURCE METRICS
# ============================================================================

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0 = closed, 1 = half_open, 2 = open)",
    ["name"],
    registry=registry,
)

system_cpu_usage_percent = Gauge(
    "system_cpu_usage_percent",
    "System CPU usage percentage",
    registry=registry,
)

system_memory_usage_bytes = Gauge(
    "system_memory_usage_bytes",
    "System memory usage in bytes",
    registry=registry,
)

_CIRCUIT_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def normalize_endpoint(path: str) -> str:
    """
    Normalize endpoint path for metrics.

    Replaces episode IDs with a placeholder to avoid high cardinality.

    Examples:
        /orchestrator/episodes/3f2a.../similar -> /orchestrator/episodes/{episode_id}/similar
        /orchestrator/context?q=soup -> /orchestrator/context
    """
    if "?" in path:
        path = path.split("?")[0]

    if path.startswith("/orchestrator/episodes/"):
        parts = path.split("/")
        if len(parts) >= 4 and parts[3]:
            parts[3] = "{episode_id}"
            return "/".join(parts)

    return path


def record_http_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """Record HTTP request metrics (RED metrics)."""
    normalized_endpoint = normalize_endpoint(endpoint)

    http_requests_total.labels(
        method=method,
        endpoint=normalized_endpoint,
        status=str(status_code),
    ).inc()

    if status_code >= 400:
        http_errors_total.labels(
            method=method,
            endpoint=normalized_endpoint,
            status_code=str(status_code),
        ).inc()

    http_request_duration_seconds.labels(
        method=method,
        endpoint=normalized_endpoint,
    ).observe(duration_seconds)


def record_orchestration(task: str, outcome: str, duration_seconds: float) -> None:
    """
    Record one orchestration call.

    Args:
        task: Task type ("recipe-analysis", ...)
        outcome: "completed", "all_failed", "no_eligible" or "cancelled"
        duration_seconds: Wall time of the call
    """
    orchestrator_requests_total.labels(task=task, outcome=outcome).inc()
    orchestrator_request_duration_seconds.labels(task=task).observe(duration_seconds)


def record_provider_call(
    provider: str,
    outcome: str,
    latency_seconds: float,
    cost_usd: float = 0.0,
    tokens: int = 0,
) -> None:
    """Record a single provider invocation with its latency, cost and token usage."""
    orchestrator_provider_calls_total.labels(provider=provider, outcome=outcome).inc()
    orchestrator_provider_latency_seconds.labels(provider=provider).observe(latency_seconds)
    if cost_usd > 0:
        orchestrator_provider_cost_usd_total.labels(provider=provider).inc(cost_usd)
    if tokens > 0:
        orchestrator_provider_tokens_total.labels(provider=provider).inc(tokens)


def record_selection(provider: str, confidence: float) -> None:
    """Record the winning provider and its confidence score."""
    orchestrator_selected_total.labels(provider=provider).inc()
    orchestrator_selection_confidence.observe(confidence)


def update_context_store_size(size: int) -> None:
    context_store_size.set(size)


def record_context_store_eviction() -> None:
    context_store_evictions_total.inc()


def update_circuit_breaker_state(name: str, state: str) -> None:
    """Publish a circuit breaker state ("closed", "half_open", "open")."""
    circuit_breaker_state.labels(name=name).set(_CIRCUIT_STATE_VALUES.get(state, 0))


def update_resource_metrics() -> None:
    """
    Update system resource metrics (CPU, memory).

    Called on-demand when metrics are scraped.
    """
    try:
        system_cpu_usage_percent.set(psutil.cpu_percent(interval=None))
        system_memory_usage_bytes.set(psutil.virtual_memory().used)
    except Exception as e:
        logger.warning(
            "metrics_resource_update_failed",
            error=str(e),
            error_type=type(e).__name__,
        )


def get_metrics() -> bytes:
    """Get Prometheus metrics in text format."""
    update_resource_metrics()
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST


def get_counter_value(counter: Counter, **labels: str) -> Optional[float]:
    """Read the current value of a (labelled) counter; handy for health views and tests."""
    target = counter.labels(**labels) if labels else counter
    return target._value.get()
