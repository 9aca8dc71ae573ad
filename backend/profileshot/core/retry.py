"""Bounded retry and polling helpers.

Two shapes share one ``RetryPolicy``:

- ``retry_async`` re-runs an operation that signals failure by raising
  (login attempts, profile content detection).
- ``poll_until`` re-runs a probe that reports progress as a ``PollStep``
  (waiting for an operator to clear a challenge).

Both pause between attempts through an injectable ``sleep`` so callers and
tests can drive time deterministically.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


def _always(exc: BaseException) -> bool:
    return True


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    delay: float = 0.0  # seconds between attempts
    retry_on: Callable[[BaseException], bool] = field(default=_always)
    label: str = "operation"


@dataclass(frozen=True)
class PollStep:
    """Outcome of one probe. ``delay`` overrides the policy pause when set."""

    done: bool
    delay: Optional[float] = None


class RetryExhaustedError(Exception):
    def __init__(self, label: str, attempts: int):
        self.label = label
        self.attempts = attempts
        super().__init__(f"{label} did not succeed after {attempts} attempts")


async def retry_async(
    func: Callable[[int], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep: Optional[Sleep] = None,
) -> T:
    """Call ``func(attempt)`` until it returns, up to ``policy.max_attempts``.

    The last exception is re-raised unchanged once attempts run out, and
    immediately if ``policy.retry_on`` rejects it.
    """
    sleep = sleep or asyncio.sleep
    attempts = max(1, policy.max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await func(attempt)
        except Exception as exc:
            if attempt >= attempts or not policy.retry_on(exc):
                raise
            logger.warning(
                "%s attempt %d/%d failed: %s",
                policy.label,
                attempt,
                attempts,
                exc,
            )
            await sleep(policy.delay)
    raise RetryExhaustedError(policy.label, attempts)  # pragma: no cover


async def poll_until(
    probe: Callable[[int], Awaitable[PollStep]],
    policy: RetryPolicy,
    *,
    error_pause: float = 1.0,
    sleep: Optional[Sleep] = None,
) -> int:
    """Run ``probe(attempt)`` until it reports ``done``.

    Returns the attempt number that finished. A probe that raises an error
    accepted by ``policy.retry_on`` costs one attempt and a short
    ``error_pause``. Raises ``RetryExhaustedError`` after exactly
    ``policy.max_attempts`` probes.
    """
    sleep = sleep or asyncio.sleep
    for attempt in range(1, policy.max_attempts + 1):
        last = attempt == policy.max_attempts
        try:
            step = await probe(attempt)
        except Exception as exc:
            if not policy.retry_on(exc):
                raise
            logger.warning("%s probe %d failed: %s", policy.label, attempt, exc)
            if not last:
                await sleep(error_pause)
            continue

        if step.done:
            return attempt
        if not last:
            await sleep(policy.delay if step.delay is None else step.delay)

    raise RetryExhaustedError(policy.label, policy.max_attempts)
