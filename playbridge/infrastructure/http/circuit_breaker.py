"""Per-provider circuit breaker.

State machine:
- CLOSED: calls pass through; consecutive failures open the circuit
- OPEN: calls are rejected without being attempted until the cooldown elapses
- HALF_OPEN: a single trial call decides between CLOSED and OPEN
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, TypeVar

from playbridge.domain.errors import CircuitBreakerError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_COOLDOWN_MS = 30_000

StateChangeCallback = Callable[["CircuitState", "CircuitState", str], None]


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True)
class BreakerMetrics:
    state: CircuitState
    failure_count: int
    success_count: int
    rejected_count: int
    last_failure_time: Optional[float]
    last_state_change: float

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "rejected_count": self.rejected_count,
            "last_failure_time": self.last_failure_time,
            "last_state_change": self.last_state_change,
        }


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class CircuitBreaker:
    """Guards calls to one provider.

    Counters are protected by a lock that is never held while the wrapped
    coroutine runs, so one instance can be shared by concurrent jobs.
    """

    def __init__(self, provider: str,
                 failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
                 cooldown_ms: int = DEFAULT_COOLDOWN_MS,
                 on_state_change: Optional[StateChangeCallback] = None,
                 clock: Callable[[], float] = _monotonic_ms):
        """Initialize circuit breaker.

        Args:
            provider: Provider identity the breaker guards
            failure_threshold: Consecutive failures that open the circuit
            cooldown_ms: Time after the last failure before a trial is allowed
            on_state_change: Optional callback invoked with (from, to, reason)
            clock: Millisecond clock, injectable for tests
        """
        self.provider = provider
        self.failure_threshold = max(1, int(failure_threshold))
        self.cooldown_ms = max(0, int(cooldown_ms))
        self.on_state_change = on_state_change
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._rejected_count = 0
        self._last_failure_time: Optional[float] = None
        self._last_state_change = clock()
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    async def call(self, fn: Callable[[], Awaitable[T]],
                   is_failure: Optional[Callable[[BaseException], bool]] = None) -> T:
        """Run ``fn`` under breaker protection.

        Args:
            fn: Zero-argument coroutine factory performing the guarded call
            is_failure: Decides whether an exception counts against the breaker;
                exceptions it rejects propagate without touching the counters

        Returns:
            Whatever ``fn`` returns

        Raises:
            CircuitBreakerError: If the call is rejected without being attempted
        """
        is_trial = self._acquire()
        try:
            result = await fn()
        except Exception as exc:
            if is_failure is None or is_failure(exc):
                self.record_failure(is_trial)
            else:
                self._release_trial(is_trial)
            raise
        except BaseException:
            self._release_trial(is_trial)
            raise
        self.record_success(is_trial)
        return result

    def _acquire(self) -> bool:
        """Admit or reject one call; returns True when the call is the half-open trial."""
        transitions = []
        try:
            with self._lock:
                if self._state is CircuitState.OPEN:
                    elapsed = self._clock() - (self._last_failure_time or self._last_state_change)
                    if elapsed >= self.cooldown_ms:
                        transitions.append(self._transition(CircuitState.HALF_OPEN, "cooldown period elapsed"))
                    else:
                        self._rejected_count += 1
                        remaining = int(self.cooldown_ms - elapsed)
                        raise CircuitBreakerError(
                            f"Circuit breaker for {self.provider} is OPEN, retry after {remaining}ms",
                            state=CircuitState.OPEN.value,
                            cooldown_remaining_ms=remaining,
                            provider=self.provider,
                        )
                if self._state is CircuitState.HALF_OPEN:
                    if self._trial_in_flight:
                        self._rejected_count += 1
                        raise CircuitBreakerError(
                            f"Circuit breaker for {self.provider} is HALF_OPEN with a trial in flight",
                            state=CircuitState.HALF_OPEN.value,
                            cooldown_remaining_ms=0,
                            provider=self.provider,
                        )
                    self._trial_in_flight = True
                    return True
                return False
        finally:
            self._notify(transitions)

    def _release_trial(self, is_trial: bool) -> None:
        if is_trial:
            with self._lock:
                self._trial_in_flight = False

    def record_success(self, is_trial: bool = False) -> None:
        """Record a successful call.

        Only the half-open trial may close the circuit; a success from a call
        admitted before the circuit opened leaves OPEN and HALF_OPEN untouched.
        """
        transitions = []
        with self._lock:
            self._success_count += 1
            if is_trial and self._state is CircuitState.HALF_OPEN:
                self._trial_in_flight = False
                self._failure_count = 0
                self._last_failure_time = None
                transitions.append(self._transition(CircuitState.CLOSED, "trial request succeeded"))
            elif self._state is CircuitState.CLOSED:
                self._failure_count = 0
        self._notify(transitions)

    def record_failure(self, is_trial: bool = False) -> None:
        """Record a failed call; only the half-open trial may reopen the circuit."""
        transitions = []
        with self._lock:
            self._failure_count += 1
            if not is_trial and self._state is not CircuitState.CLOSED:
                # Stale outcome of a call admitted while the circuit was closed
                return
            self._last_failure_time = self._clock()
            if self._state is CircuitState.HALF_OPEN:
                self._trial_in_flight = False
                transitions.append(self._transition(CircuitState.OPEN, "trial request failed"))
            elif self._state is CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
                transitions.append(self._transition(
                    CircuitState.OPEN,
                    f"failure threshold reached ({self._failure_count}/{self.failure_threshold})",
                ))
        self._notify(transitions)

    def get_metrics(self) -> BreakerMetrics:
        with self._lock:
            return BreakerMetrics(
                state=self._state,
                failure_count=self._failure_count,
                success_count=self._success_count,
                rejected_count=self._rejected_count,
                last_failure_time=self._last_failure_time,
                last_state_change=self._last_state_change,
            )

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._success_count = 0
            self._rejected_count = 0
            self._last_failure_time = None
            self._last_state_change = self._clock()
            self._trial_in_flight = False

    def _transition(self, new_state: CircuitState, reason: str):
        # Caller holds the lock
        old_state = self._state
        if old_state is new_state:
            return None
        self._state = new_state
        self._last_state_change = self._clock()
        return old_state, new_state, reason

    def _notify(self, transitions) -> None:
        for transition in transitions:
            if transition is None:
                continue
            old_state, new_state, reason = transition
            logger.warning(
                f"Circuit breaker {self.provider}: {old_state.value} -> {new_state.value}: {reason}",
                extra={"provider": self.provider, "breaker_state": new_state.value},
            )
            if self.on_state_change:
                try:
                    self.on_state_change(old_state, new_state, reason)
                except Exception as e:
                    logger.error(f"Circuit breaker state callback failed for {self.provider}: {e}")


class CircuitBreakerRegistry:
    """Provider id -> breaker map shared by every job in the process."""

    def __init__(self, failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
                 cooldown_ms: int = DEFAULT_COOLDOWN_MS,
                 on_state_change: Optional[StateChangeCallback] = None,
                 clock: Callable[[], float] = _monotonic_ms):
        self.failure_threshold = failure_threshold
        self.cooldown_ms = cooldown_ms
        self.on_state_change = on_state_change
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get_or_create(self, provider: str, failure_threshold: Optional[int] = None,
                      cooldown_ms: Optional[int] = None) -> CircuitBreaker:
        """Return the provider's breaker, creating it on first access.

        Overrides apply only when the breaker is created.
        """
        with self._lock:
            breaker = self._breakers.get(provider)
            if breaker is None:
                breaker = CircuitBreaker(
                    provider,
                    failure_threshold=self.failure_threshold if failure_threshold is None else failure_threshold,
                    cooldown_ms=self.cooldown_ms if cooldown_ms is None else cooldown_ms,
                    on_state_change=self.on_state_change,
                    clock=self._clock,
                )
                self._breakers[provider] = breaker
            return breaker

    def get(self, provider: str) -> Optional[CircuitBreaker]:
        with self._lock:
            return self._breakers.get(provider)

    def get_all_metrics(self) -> Dict[str, BreakerMetrics]:
        with self._lock:
            breakers = dict(self._breakers)
        return {provider: breaker.get_metrics() for provider, breaker in breakers.items()}

    def reset_all(self) -> None:
        with self._lock:
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.reset()

    def reset(self, provider: str) -> None:
        breaker = self.get(provider)
        if breaker is not None:
            breaker.reset()
