"""
Circuit breaker for Discord API calls.

States:
- CLOSED: normal operation, calls pass through
- OPEN: too many failures, calls are rejected without being attempted
- HALF_OPEN: timeout elapsed, one trial call at a time is let through
"""

import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger("raidbot.circuit_breaker")


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitOpenError(RuntimeError):
    """Raised instead of calling through an open circuit."""

    def __init__(self, name: str, retry_in: float):
        self.name = name
        self.retry_in = retry_in
        super().__init__(f"Circuit breaker {name} is OPEN (retry in {retry_in:.1f}s)")


class CircuitBreaker:
    """Failure-isolation wrapper around one class of external calls."""

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = 5,
        success_threshold: int = 2,
        timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.timeout = timeout
        self._clock = clock

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.next_attempt = 0.0
        self._trial_in_flight = False
        self.stats = {
            "requests": 0,
            "successes": 0,
            "failures": 0,
            "rejections": 0,
        }

    def _admit(self) -> None:
        """Decide whether a call may proceed; raise if it may not."""
        if self.state == CircuitState.OPEN:
            now = self._clock()
            if now < self.next_attempt:
                self.stats["rejections"] += 1
                raise CircuitOpenError(self.name, self.next_attempt - now)
            self.state = CircuitState.HALF_OPEN
            self.success_count = 0
            logger.info("Circuit breaker %s entering HALF_OPEN state", self.name)

        if self.state == CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                self.stats["rejections"] += 1
                raise CircuitOpenError(self.name, 0.0)
            self._trial_in_flight = True

    async def call(
        self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any
    ) -> Any:
        """Run ``func`` under breaker protection."""
        self.stats["requests"] += 1
        self._admit()

        trial = self.state == CircuitState.HALF_OPEN
        try:
            result = await func(*args, **kwargs)
        except Exception as error:
            self._on_failure(error)
            raise
        else:
            self._on_success()
            return result
        finally:
            if trial:
                self._trial_in_flight = False

    def _on_success(self) -> None:
        self.stats["successes"] += 1
        self.failure_count = 0

        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self.close()

    def _on_failure(self, error: Exception) -> None:
        self.stats["failures"] += 1
        self.failure_count += 1
        self.success_count = 0

        logger.warning(
            "Circuit breaker %s recorded failure (%s, count=%d, state=%s)",
            self.name,
            error,
            self.failure_count,
            self.state.value,
        )

        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            self.open()

    def open(self) -> None:
        self.state = CircuitState.OPEN
        self.next_attempt = self._clock() + self.timeout
        logger.error(
            "Circuit breaker %s opened after %d failures (retry in %.0fs)",
            self.name,
            self.failure_count,
            self.timeout,
        )

    def close(self) -> None:
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        logger.info("Circuit breaker %s closed", self.name)

    def reset(self) -> None:
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.next_attempt = 0.0
        self._trial_in_flight = False

    def get_state(self) -> Dict[str, Any]:
        retry_in: Optional[float] = None
        if self.state == CircuitState.OPEN:
            retry_in = max(0.0, self.next_attempt - self._clock())
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "retry_in": retry_in,
            "stats": dict(self.stats),
        }
