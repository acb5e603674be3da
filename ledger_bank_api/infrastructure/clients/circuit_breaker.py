"""
Circuit breakers for outbound bank API calls.

A breaker opens after ``failure_threshold`` consecutive failed calls and
rejects further calls until ``reset_timeout`` seconds have passed. The next
call is then a trial (half-open): success closes the breaker, failure opens it
again. There is one breaker per bank endpoint.
"""

import logging
import threading
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from ledger_bank_api.config import settings
from ledger_bank_api.domain.exceptions import DomainException

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """Fail fast while a dependency keeps failing"""

    def __init__(self, name: str, failure_threshold: Optional[int] = None, reset_timeout: Optional[float] = None):
        self.name = name
        self.failure_threshold = failure_threshold or settings.bank_circuit_failure_threshold
        self.reset_timeout = settings.bank_circuit_reset_timeout if reset_timeout is None else reset_timeout
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at = 0.0
        self._lock = threading.Lock()

    def allow(self) -> bool:
        with self._lock:
            if self.state == CircuitState.OPEN and time.monotonic() - self.opened_at >= self.reset_timeout:
                self.state = CircuitState.HALF_OPEN
                logger.info(f"Circuit breaker {self.name} entering half-open state")
            return self.state != CircuitState.OPEN

    def record_success(self) -> None:
        with self._lock:
            if self.state == CircuitState.HALF_OPEN:
                logger.info(f"Circuit breaker {self.name} closed after successful trial")
            self.state = CircuitState.CLOSED
            self.failure_count = 0

    def record_failure(self) -> None:
        with self._lock:
            self.failure_count += 1
            if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
                if self.state != CircuitState.OPEN:
                    logger.warning(
                        f"Circuit breaker {self.name} opened",
                        extra={"circuit": self.name, "failures": self.failure_count},
                    )
                self.state = CircuitState.OPEN
                self.opened_at = time.monotonic()

    async def call(
        self,
        func: Callable[[], Awaitable[Any]],
        is_failure: Optional[Callable[[Exception], bool]] = None,
    ) -> Any:
        """
        Run ``func`` unless the breaker is open.

        ``is_failure`` decides which exceptions count against the breaker;
        by default all of them do.
        """
        if not self.allow():
            raise DomainException(
                "service_unavailable",
                f"Circuit breaker {self.name} is open",
                {"circuit": self.name},
            )
        try:
            result = await func()
        except Exception as e:
            if is_failure is None or is_failure(e):
                self.record_failure()
            else:
                self.record_success()
            raise
        self.record_success()
        return result

    def get_state(self) -> Dict[str, Any]:
        return {"state": self.state.value, "failure_count": self.failure_count}


_breakers: Dict[str, CircuitBreaker] = {}
_registry_lock = threading.Lock()


def breaker_for(name: str) -> CircuitBreaker:
    """Shared breaker for ``name``, created on first use"""
    with _registry_lock:
        if name not in _breakers:
            _breakers[name] = CircuitBreaker(name)
        return _breakers[name]


def circuit_states() -> Dict[str, Dict[str, Any]]:
    with _registry_lock:
        return {name: breaker.get_state() for name, breaker in _breakers.items()}


def reset_circuit_breakers() -> None:
    with _registry_lock:
        _breakers.clear()
