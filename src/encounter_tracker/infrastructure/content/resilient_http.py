import logging
import os
import time
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime
from typing import Any, Callable

import httpx


logger = logging.getLogger(__name__)

# Open5e answers 429 when throttling and 5xx while redeploying; anything else is final.
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
MAX_RETRY_AFTER_SECONDS = 30.0


class CircuitOpenError(RuntimeError):
    def __init__(self, name: str, retry_in_seconds: float) -> None:
        super().__init__(f"{name} is unavailable for another {retry_in_seconds:.0f}s")
        self.name = name
        self.retry_in_seconds = retry_in_seconds


def _env_flag(name: str, default: str) -> bool:
    return str(os.getenv(name, default)).strip().lower() in {"1", "true", "yes"}


@dataclass
class CircuitBreaker:
    """Stops calling a content source after repeated transient failures.

    After ``failure_threshold`` consecutive failures the breaker opens for
    ``reset_seconds``; the next call after that is a trial (half open).
    """

    name: str
    failure_threshold: int = 3
    reset_seconds: float = 120.0
    enabled: bool = True
    clock: Callable[[], float] = time.monotonic
    failures: int = field(default=0, init=False)
    opened_at: float | None = field(default=None, init=False)

    @classmethod
    def from_env(cls, name: str) -> "CircuitBreaker":
        return cls(
            name=name,
            failure_threshold=max(1, int(os.getenv("TRACKER_HTTP_CIRCUIT_FAILURE_THRESHOLD", "3"))),
            reset_seconds=max(0.0, float(os.getenv("TRACKER_HTTP_CIRCUIT_RESET_SECONDS", "120"))),
            enabled=_env_flag("TRACKER_HTTP_CIRCUIT_BREAKER_ENABLED", "1"),
        )

    def _retry_in(self) -> float:
        if self.opened_at is None:
            return 0.0
        return max(0.0, self.opened_at + self.reset_seconds - self.clock())

    @property
    def state(self) -> str:
        if self.opened_at is None:
            return "closed"
        return "open" if self._retry_in() > 0 else "half_open"

    def before_call(self) -> None:
        if self.enabled and self.state == "open":
            raise CircuitOpenError(self.name, self._retry_in())

    def record_success(self) -> None:
        if self.opened_at is not None:
            logger.info("Content source recovered", extra={"source": self.name})
        self.failures = 0
        self.opened_at = None

    def record_failure(self) -> None:
        if not self.enabled:
            return
        self.failures += 1
        if self.state == "half_open" or self.failures >= self.failure_threshold:
            self.opened_at = self.clock()
            logger.warning(
                "Content source circuit opened",
                extra={"source": self.name, "failures": self.failures, "reset_seconds": self.reset_seconds},
            )

    def snapshot(self) -> dict[str, Any]:
        return {
            "source": self.name,
            "circuit": self.state if self.enabled else "disabled",
            "consecutive_failures": self.failures,
            "retry_in_seconds": round(self._retry_in(), 1),
        }


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        try:
            seconds = parsedate_to_datetime(value).timestamp() - time.time()
        except (TypeError, ValueError):
            return None
    return min(MAX_RETRY_AFTER_SECONDS, max(0.0, seconds))


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return True
    return isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code in RETRYABLE_STATUS_CODES


def fetch_json(
    client: httpx.Client,
    path: str,
    *,
    breaker: CircuitBreaker,
    params: dict[str, Any] | None = None,
    retries: int = 0,
    backoff_seconds: float = 0.2,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, Any]:
    """GET ``path`` as JSON, retrying throttling and outages.

    A ``Retry-After`` header on a retryable response replaces the
    exponential backoff for that attempt.
    """
    attempts = max(0, int(retries)) + 1
    for attempt in range(attempts):
        breaker.before_call()
        delay = max(0.0, backoff_seconds) * (2 ** attempt)
        try:
            response = client.get(path, params=params)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            if not _is_transient(exc):
                raise
            breaker.record_failure()
            if attempt == attempts - 1:
                raise
            if isinstance(exc, httpx.HTTPStatusError):
                hinted = _retry_after(exc.response)
                delay = delay if hinted is None else hinted
            logger.info(
                "Retrying content request",
                extra={"source": breaker.name, "path": path, "attempt": attempt + 1, "delay": delay},
            )
            if delay > 0:
                sleep(delay)
            continue
        breaker.record_success()
        return payload if isinstance(payload, dict) else {"results": payload}
    return {}
