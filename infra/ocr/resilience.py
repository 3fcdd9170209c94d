"""
Retry and circuit-breaker wrapper for recognition backends.

    backend = ResilientBackend(TesseractBackend(config), ResilienceConfig())
    text = backend.recognize("page_0001.png")

Retry: up to max_retries retries after the first attempt, waiting
base_delay * 2**n before retry n. Fatal errors are never retried.

Circuit breaker: failure_threshold consecutive failures open the circuit.
While open, calls fail fast with CircuitOpenError and the backend is not
touched. After reset_timeout one probe call is let through (HALF_OPEN);
its outcome closes or re-opens the circuit.

THREAD SAFETY:
  One lock per wrapper guards the breaker and the stats. The backend call
  itself runs outside the lock, so one wrapper can be shared by a pool of
  batch workers.
"""

import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from infra.config.schemas import ResilienceConfig

from .backend import RecognitionBackend
from .errors import CircuitOpenError, InvalidInput, RecognitionError, RecognitionFailed, classify_error
from .schemas import GeometryResult

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        lock: Optional[threading.Lock] = None,
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._lock = lock or threading.Lock()

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.next_attempt_time: Optional[float] = None
        self._probe_in_flight = False

    def allow_request(self) -> bool:
        with self._lock:
            if self.state == CircuitState.CLOSED:
                return True

            if self.state == CircuitState.OPEN:
                if self._clock() < self.next_attempt_time:
                    return False
                self.state = CircuitState.HALF_OPEN
                self._probe_in_flight = True
                logger.info("Circuit half-open, admitting one probe")
                return True

            # HALF_OPEN: exactly one probe at a time
            if self._probe_in_flight:
                return False
            self._probe_in_flight = True
            return True

    def record_success(self) -> None:
        with self._lock:
            self.failure_count = 0
            if self.state == CircuitState.HALF_OPEN:
                logger.info("Probe succeeded, circuit closed")
                self.state = CircuitState.CLOSED
                self.next_attempt_time = None
                self._probe_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = self._clock()

            if self.state == CircuitState.HALF_OPEN:
                logger.warning("Probe failed, circuit re-opened")
                self._open()
            elif self.state == CircuitState.CLOSED and self.failure_count >= self.failure_threshold:
                logger.warning(f"{self.failure_count} consecutive failures, circuit opened for {self.reset_timeout:.0f}s")
                self._open()

    def release_probe(self) -> None:
        """Give back a probe slot whose call said nothing about backend health."""
        with self._lock:
            self._probe_in_flight = False

    def _open(self) -> None:
        self.state = CircuitState.OPEN
        self.next_attempt_time = self._clock() + self.reset_timeout
        self._probe_in_flight = False

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def retry_in(self) -> float:
        with self._lock:
            if self.state != CircuitState.OPEN or self.next_attempt_time is None:
                return 0.0
            return max(0.0, self.next_attempt_time - self._clock())

    def status(self) -> Dict[str, Any]:
        retry_in = self.retry_in()
        with self._lock:
            return {
                "state": self.state.value,
                "failure_count": self.failure_count,
                "failure_threshold": self.failure_threshold,
                "last_failure_time": self.last_failure_time,
                "next_attempt_time": self.next_attempt_time,
                "retry_in": retry_in,
            }


@dataclass
class BackendStats:
    """
    Cumulative counters for one wrapper.

    retried_requests goes up once per call that needed any retry.
    total_retries counts every retry, so a call retried three times adds one
    to retried_requests and three to total_retries.
    """
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    retried_requests: int = 0
    total_retries: int = 0
    total_duration: float = 0.0
    errors_by_category: Dict[str, int] = field(default_factory=dict)

    @property
    def average_duration(self) -> float:
        finished = self.successful_requests + self.failed_requests
        return self.total_duration / finished if finished else 0.0

    def snapshot(self) -> Dict[str, Any]:
        data = asdict(self)
        data["average_duration"] = self.average_duration
        return data


class ResilientBackend:
    """Wraps one RecognitionBackend with retry, backoff and a circuit breaker."""

    def __init__(
        self,
        backend: RecognitionBackend,
        config: Optional[ResilienceConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.backend = backend
        self.config = config or ResilienceConfig()
        self._clock = clock
        self._sleep = sleep

        self._lock = threading.Lock()
        self._stats = BackendStats()
        self.breaker = CircuitBreaker(
            failure_threshold=self.config.failure_threshold,
            reset_timeout=self.config.reset_timeout,
            clock=clock,
            lock=self._lock,
        )

    # Capability passthroughs

    @property
    def engine(self) -> str:
        return self.backend.engine

    @property
    def display_name(self) -> str:
        return self.backend.display_name

    @property
    def lang(self) -> str:
        return self.backend.lang

    @property
    def supports_geometry(self) -> bool:
        return self.backend.supports_geometry

    @property
    def is_free(self) -> bool:
        return self.backend.is_free

    def is_available(self) -> bool:
        return self.backend.is_available()

    def estimate_cost(self, page_count: int) -> float:
        return self.backend.estimate_cost(page_count)

    def initialize(self) -> None:
        self.backend.initialize()

    def cleanup(self) -> None:
        self.backend.cleanup()

    # Recognition

    def recognize(self, image_path, max_retries: Optional[int] = None) -> str:
        return self._call(self.backend.recognize, image_path, max_retries)

    def recognize_with_geometry(self, image_path, max_retries: Optional[int] = None) -> GeometryResult:
        if not self.backend.supports_geometry:
            raise NotImplementedError(f"{self.engine} does not produce word geometry")
        return self._call(self.backend.recognize_with_geometry, image_path, max_retries)

    @property
    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return self._stats.snapshot()

    def circuit_status(self) -> Dict[str, Any]:
        return self.breaker.status()

    def _call(self, func, image_path, max_retries: Optional[int]):
        max_retries = self.config.max_retries if max_retries is None else max_retries
        start = self._clock()

        with self._lock:
            self._stats.total_requests += 1

        attempt = 0
        while True:
            if not self.breaker.allow_request():
                error = CircuitOpenError(self.engine, self.breaker.retry_in(), image_path=image_path)
                self._finish(start, error.category)
                raise error

            try:
                result = func(image_path)
            except InvalidInput as e:
                # Bad input says nothing about the backend's health
                self.breaker.release_probe()
                self._finish(start, e.category)
                raise
            except Exception as e:
                category, fatal = classify_error(e)
                self.breaker.record_failure()

                if fatal or attempt >= max_retries or self.breaker.is_open:
                    self._finish(start, category)
                    if isinstance(e, RecognitionError):
                        raise
                    raise RecognitionFailed(
                        f"{self.engine} failed: {e}",
                        engine=self.engine,
                        image_path=image_path,
                        category=category,
                        fatal=fatal,
                    ) from e

                delay = self.config.base_delay * (2 ** attempt)
                with self._lock:
                    if attempt == 0:
                        self._stats.retried_requests += 1
                    self._stats.total_retries += 1

                logger.warning(
                    f"{self.engine} attempt {attempt + 1}/{max_retries + 1} failed ({category}): {e}; "
                    f"retrying in {delay:.1f}s"
                )
                self._sleep(delay)
                attempt += 1
                continue

            self.breaker.record_success()
            self._finish(start, None)
            return result

    def _finish(self, start: float, error_category: Optional[str]) -> None:
        duration = self._clock() - start
        with self._lock:
            self._stats.total_duration += duration
            if error_category is None:
                self._stats.successful_requests += 1
            else:
                self._stats.failed_requests += 1
                counts = self._stats.errors_by_category
                counts[error_category] = counts.get(error_category, 0) + 1
