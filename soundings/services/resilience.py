"""
Upstream call policy.

External collaborators (tide tables, station directories) are called through
`call_upstream`, which applies a hard timeout per attempt and retries on the
policy's backoff schedule through tenacity. Any failure, expected or not,
ends as an `UpstreamResult`; nothing is raised. Callers decide how to degrade.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, Sequence, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
)

from soundings.config import RetryConfig
from soundings.errors import UpstreamUnavailable

log = logging.getLogger("soundings.resilience")

T = TypeVar("T")


class UpstreamTimeout(UpstreamUnavailable):
    """The upstream did not answer within the hard timeout."""


@dataclass(frozen=True)
class RetryPolicy:
    timeout_seconds: float = 10.0
    max_attempts: int = 2
    backoff_seconds: Sequence[float] = (0.5, 1.0)
    retry_on_timeout: bool = False

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            timeout_seconds=config.timeout_seconds,
            max_attempts=config.max_attempts,
            backoff_seconds=tuple(config.backoff_seconds),
            retry_on_timeout=config.retry_on_timeout,
        )

    def delay_before(self, attempt: int) -> float:
        """Delay before the given (1-based) retry attempt."""
        if not self.backoff_seconds:
            return 0.0
        idx = min(attempt - 1, len(self.backoff_seconds) - 1)
        return float(self.backoff_seconds[idx])

    def wait(self, retry_state: RetryCallState) -> float:
        return self.delay_before(retry_state.attempt_number)

    def should_retry(self, exc: BaseException) -> bool:
        if isinstance(exc, UpstreamTimeout):
            return self.retry_on_timeout
        return isinstance(exc, UpstreamUnavailable)


@dataclass(frozen=True)
class UpstreamResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[UpstreamUnavailable] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "UpstreamResult[T]":
        return cls(value=value)

    @classmethod
    def unavailable(cls, source: str, reason: str) -> "UpstreamResult[T]":
        return cls(error=UpstreamUnavailable(source, reason))


async def call_upstream(
    source: str,
    factory: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
) -> UpstreamResult[T]:
    async def attempt() -> T:
        try:
            return await asyncio.wait_for(factory(), timeout=policy.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise UpstreamTimeout(source, f"timed out after {policy.timeout_seconds:.1f}s") from exc
        except UpstreamUnavailable:
            raise
        except Exception as exc:
            log.warning("[%s] unexpected upstream failure: %r", source, exc)
            raise UpstreamUnavailable(source, f"{exc.__class__.__name__}: {exc}") from exc

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, policy.max_attempts)),
        wait=policy.wait,
        retry=retry_if_exception(policy.should_retry),
        before_sleep=before_sleep_log(log, logging.WARNING),
        reraise=True,
    )
    try:
        value = await retrying(attempt)
    except UpstreamUnavailable as exc:
        log.warning("[%s] unavailable: %s", source, exc.reason)
        return UpstreamResult.unavailable(source, exc.reason)
    return UpstreamResult.success(value)
