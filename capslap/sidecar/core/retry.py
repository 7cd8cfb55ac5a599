"""Caller-level retry for sidecar calls. The bridge itself never retries."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from loguru import logger

from capslap.sidecar.core.types import SidecarError, SidecarTerminatedError, SidecarTimeoutError

T = TypeVar("T")

BeforeRetry = Callable[[BaseException], Awaitable[None]]


@dataclass(slots=True)
class RetryPolicy:
    """How often, and after which failures, a sidecar call is repeated.

    By default only a dead worker or a local timeout is worth another try;
    an application error is the worker's final answer unless listed in
    retry_on.
    """

    max_attempts: int = 3
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 5.0
    retry_on: tuple[type[BaseException], ...] = (SidecarTerminatedError, SidecarTimeoutError)

    def delay_for(self, failures: int) -> float:
        """Backoff before the attempt that follows the given number of failures."""
        return min(self.max_delay_seconds, self.base_delay_seconds * (2 ** (failures - 1)))


def _describe(exc: BaseException) -> str:
    if isinstance(exc, SidecarError):
        return exc.code
    return type(exc).__name__


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    before_retry: BeforeRetry | None = None,
) -> T:
    """Await fn until it succeeds or the policy gives up, then re-raise.

    before_retry runs after the backoff and before the next attempt, e.g. to
    start the worker again after it died.
    """
    failures = 0
    while True:
        try:
            return await fn()
        except policy.retry_on as exc:
            failures += 1
            if failures >= policy.max_attempts:
                raise
            delay = policy.delay_for(failures)
            logger.warning(
                "Sidecar call failed ({}), attempt {}/{}; retrying in {:.1f}s",
                _describe(exc),
                failures,
                policy.max_attempts,
                delay,
            )
            await asyncio.sleep(delay)
            if before_retry is not None:
                await before_retry(exc)
