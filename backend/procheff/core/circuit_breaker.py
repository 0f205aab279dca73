"""
Circuit breaker for provider backends.

Each HTTP provider adapter owns one breaker. Parallel dispatch means many
calls to the same backend can be in flight at once, so recovery is probed
with a bounded number of concurrent calls rather than by sampling:

- CLOSED: calls go through; outcomes land in a sliding time window.
  Once the window holds `min_calls` outcomes and the error rate reaches
  `failure_threshold`, the circuit opens.
- OPEN: calls fail fast with CircuitBreakerOpenError for
  `open_duration_seconds`.
- HALF_OPEN: at most `half_open_max_probes` calls run at a time.
  `half_open_required_successes` successful probes close the circuit;
  a single failed probe opens it again.
"""
import time
from collections import deque
from enum import Enum
from threading import Lock
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Tuple

from procheff.core.logging import get_logger
from procheff.core.metrics import update_circuit_breaker_state

logger = get_logger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenError(Exception):
    """Raised when a call is rejected without reaching the backend."""

    def __init__(self, name: str, state: CircuitState, retry_in: Optional[float] = None):
        self.name = name
        self.state = state
        self.retry_in = retry_in
        if state is CircuitState.OPEN and retry_in is not None:
            message = f"circuit {name} is open, retry in {retry_in:.1f}s"
        else:
            message = f"circuit {name} is {state.value}, no probe slot available"
        super().__init__(message)


class CircuitBreaker:
    """
    Error-rate circuit breaker around an async backend call.

    Args:
        name: Label used in logs and the circuit_breaker_state gauge
        failure_threshold: Error rate over the window that opens the circuit
        window_seconds: Age of the oldest outcome kept in the window
        open_duration_seconds: Time spent OPEN before probing
        min_calls: No decision is taken on fewer outcomes than this
        half_open_max_probes: Concurrent probe calls allowed while HALF_OPEN
        half_open_required_successes: Successful probes needed to close
        clock: Monotonic time source (seconds)
    """

    def __init__(
        self,
        name: str,
        failure_threshold: float = 0.5,
        window_seconds: float = 60.0,
        open_duration_seconds: float = 30.0,
        min_calls: int = 10,
        half_open_max_probes: int = 1,
        half_open_required_successes: int = 2,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not 0.0 < failure_threshold <= 1.0:
            raise ValueError("failure_threshold must be in (0, 1]")
        if min_calls < 1 or half_open_max_probes < 1 or half_open_required_successes < 1:
            raise ValueError("min_calls and half-open limits must be positive")

        self.name = name
        self.failure_threshold = failure_threshold
        self.window_seconds = window_seconds
        self.open_duration_seconds = open_duration_seconds
        self.min_calls = min_calls
        self.half_open_max_probes = half_open_max_probes
        self.half_open_required_successes = half_open_required_successes
        self._clock = clock

        self._lock = Lock()
        self._state = CircuitState.CLOSED
        self._outcomes: Deque[Tuple[float, bool]] = deque()
        self._opened_at: Optional[float] = None
        self._probes_in_flight = 0
        self._probe_successes = 0
        update_circuit_breaker_state(self.name, self._state.value)

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh(self._clock())
            return self._state

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Await `func(*args, **kwargs)` under breaker protection.

        Any exception raised by `func` counts as a failure and propagates.
        A cancelled call releases its probe slot without counting either way.

        Raises:
            CircuitBreakerOpenError: the call was rejected
        """
        probe = self._admit()
        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._record(False, probe)
            raise
        except BaseException:
            if probe:
                self._release_probe()
            raise
        self._record(True, probe)
        return result

    def record_failure(self) -> None:
        """
        Count a failure observed outside `call`.

        Used when a caller-side deadline cancels the call, which `call`
        itself cannot tell apart from an ordinary cancellation.
        """
        with self._lock:
            now = self._clock()
            self._refresh(now)
            if self._state is CircuitState.CLOSED:
                self._outcomes.append((now, False))
                self._refresh(now)
            elif self._state is CircuitState.HALF_OPEN:
                self._open(now, reason="probe_timed_out")

    def snapshot(self) -> Dict[str, Any]:
        """Breaker state for health endpoints."""
        with self._lock:
            now = self._clock()
            self._refresh(now)
            total = len(self._outcomes)
            failures = sum(1 for _, ok in self._outcomes if not ok)
            retry_in = None
            if self._state is CircuitState.OPEN and self._opened_at is not None:
                retry_in = max(0.0, self._opened_at + self.open_duration_seconds - now)
            return {
                "name": self.name,
                "state": self._state.value,
                "recent_calls": total,
                "recent_failures": failures,
                "error_rate": failures / total if total else 0.0,
                "retry_in_seconds": retry_in,
                "probes_in_flight": self._probes_in_flight,
                "probe_successes": self._probe_successes,
            }

    def _admit(self) -> bool:
        """Reserve a slot for one call; True when the call is a probe."""
        with self._lock:
            now = self._clock()
            self._refresh(now)
            if self._state is CircuitState.CLOSED:
                return False
            if self._state is CircuitState.OPEN:
                retry_in = max(0.0, self._opened_at + self.open_duration_seconds - now)
                raise CircuitBreakerOpenError(self.name, self._state, retry_in)
            if self._probes_in_flight >= self.half_open_max_probes:
                raise CircuitBreakerOpenError(self.name, self._state)
            self._probes_in_flight += 1
            return True

    def _release_probe(self) -> None:
        with self._lock:
            self._probes_in_flight = max(0, self._probes_in_flight - 1)

    def _record(self, success: bool, probe: bool) -> None:
        with self._lock:
            now = self._clock()
            if not probe:
                # Results landing after the circuit opened are dropped
                if self._state is CircuitState.CLOSED:
                    self._outcomes.append((now, success))
                    self._refresh(now)
                return

            self._probes_in_flight = max(0, self._probes_in_flight - 1)
            if self._state is not CircuitState.HALF_OPEN:
                return
            if not success:
                self._open(now, reason="probe_failed")
                return
            self._probe_successes += 1
            if self._probe_successes >= self.half_open_required_successes:
                self._transition(CircuitState.CLOSED)
                self._opened_at = None
                self._outcomes.clear()
                logger.info(
                    "circuit_breaker_closed",
                    circuit_breaker=self.name,
                    probe_successes=self._probe_successes,
                )

    def _refresh(self, now: float) -> None:
        # _refresh, _open and _transition run under self._lock
        cutoff = now - self.window_seconds
        while self._outcomes and self._outcomes[0][0] < cutoff:
            self._outcomes.popleft()

        if self._state is CircuitState.OPEN:
            if now - self._opened_at >= self.open_duration_seconds:
                self._transition(CircuitState.HALF_OPEN)
                self._probes_in_flight = 0
                self._probe_successes = 0
                logger.info("circuit_breaker_half_open", circuit_breaker=self.name)
        elif self._state is CircuitState.CLOSED and len(self._outcomes) >= self.min_calls:
            failures = sum(1 for _, ok in self._outcomes if not ok)
            error_rate = failures / len(self._outcomes)
            if error_rate >= self.failure_threshold:
                self._open(now, reason="error_rate", error_rate=error_rate, failures=failures)

    def _open(self, now: float, reason: str, **fields: Any) -> None:
        self._transition(CircuitState.OPEN)
        self._opened_at = now
        logger.warning(
            "circuit_breaker_opened",
            circuit_breaker=self.name,
            reason=reason,
            open_duration_seconds=self.open_duration_seconds,
            **fields,
        )

    def _transition(self, state: CircuitState) -> None:
        self._state = state
        update_circuit_breaker_state(self.name, state.value)
