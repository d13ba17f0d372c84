"""
Bounded retry with a per-attempt time limit.

``first_of`` races an awaitable against a timer and reports which one won.
``RetryEnvelope`` repeats an operation until it produces something other
than the fallback, or the attempt budget runs out.

Cancellation is best-effort only: an attempt that loses the race is
abandoned, not cancelled. It keeps running in the background (so any side
effect it was about to perform may still land) and its result is discarded
once it finishes. Wrapped operations must therefore tolerate being
abandoned-but-completed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, Set, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")
F = TypeVar("F")


class Sentinel:
    """Distinguished fallback value that can never be a business result."""

    __slots__ = ("name",)

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"<{self.name}>"


@dataclass(frozen=True)
class Completed(Generic[T]):
    value: T


@dataclass(frozen=True)
class TimedOut:
    after_seconds: float


Outcome = Union[Completed[T], TimedOut]

# Abandoned attempts are kept here until they finish so they are not
# garbage-collected mid-flight.
_abandoned: Set[asyncio.Future] = set()


def _discard_abandoned(task: asyncio.Future) -> None:
    _abandoned.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Abandoned attempt finished with error: %s", exc)


async def first_of(awaitable: Awaitable[T], timeout: float) -> Outcome:
    """
    Race ``awaitable`` against a ``timeout`` second timer.

    Returns ``Completed(value)`` when the operation finishes first. Exceptions
    raised by the operation propagate. Returns ``TimedOut`` when the timer
    fires first; the operation is left running and its outcome is dropped.
    """
    task = asyncio.ensure_future(awaitable)
    done, _ = await asyncio.wait({task}, timeout=timeout)
    if task in done:
        return Completed(task.result())

    _abandoned.add(task)
    task.add_done_callback(_discard_abandoned)
    return TimedOut(after_seconds=timeout)


class RetryEnvelope:
    """
    Executes an async operation with a time limit per attempt and a fixed
    attempt budget.

    An attempt fails when it times out, raises, or returns a value equal to
    ``fallback``. Because of the last rule the fallback must come from a
    domain disjoint from valid results (see ``Sentinel``).

    Usage:
        envelope = RetryEnvelope()
        result = await envelope.run(
            lambda: ledger.send_raw_transaction(raw),
            max_attempts=2,
            per_attempt_timeout=5.0,
            fallback=EXHAUSTED,
        )
        if result is EXHAUSTED:
            ...
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(__name__)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: int,
        per_attempt_timeout: float,
        fallback: F,
        interval: float = 0.0,
    ) -> Union[T, F]:
        """
        Run ``operation`` until it succeeds or ``max_attempts`` is spent.

        Args:
            operation: Zero-argument callable producing a fresh awaitable per attempt
            max_attempts: Total attempts, including the first
            per_attempt_timeout: Seconds each attempt may take
            fallback: Value returned once every attempt has failed
            interval: Constant delay between attempts

        Returns:
            The first successful result, or ``fallback``
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if per_attempt_timeout <= 0:
            raise ValueError("per_attempt_timeout must be positive")

        for attempt in range(1, max_attempts + 1):
            try:
                outcome = await first_of(operation(), per_attempt_timeout)
            except Exception as exc:  # noqa: BLE001
                self.logger.warning(
                    "Attempt %d/%d failed: %s", attempt, max_attempts, exc
                )
            else:
                if isinstance(outcome, TimedOut):
                    self.logger.warning(
                        "Attempt %d/%d timed out after %.2fs",
                        attempt,
                        max_attempts,
                        outcome.after_seconds,
                    )
                elif _is_fallback(outcome.value, fallback):
                    self.logger.info(
                        "Attempt %d/%d returned the fallback value", attempt, max_attempts
                    )
                else:
                    return outcome.value

            if attempt < max_attempts and interval > 0:
                await asyncio.sleep(interval)

        return fallback


def _is_fallback(value: Any, fallback: Any) -> bool:
    if value is fallback:
        return True
    try:
        return bool(value == fallback)
    except Exception:  # noqa: BLE001
        return False


__all__ = [
    "Completed",
    "Outcome",
    "RetryEnvelope",
    "Sentinel",
    "TimedOut",
    "first_of",
]
