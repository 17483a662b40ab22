"""Bounded polling shared by every wait on an eventually-consistent resource."""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from static_edge.utils.errors import TransientProviderError
from static_edge.utils.logging import get_logger

logger = get_logger(__name__)


class PollStatus(Enum):
    """Outcome of a bounded wait."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class PollResult:
    """Result returned by every bounded-wait operation."""

    status: PollStatus
    value: Any = None
    reason: Optional[str] = None
    attempts: int = 0

    @classmethod
    def succeeded(cls, value: Any = None) -> "PollResult":
        return cls(status=PollStatus.SUCCEEDED, value=value)

    @classmethod
    def failed(cls, reason: str) -> "PollResult":
        return cls(status=PollStatus.FAILED, reason=reason)

    @classmethod
    def timed_out(cls, attempts: int) -> "PollResult":
        return cls(
            status=PollStatus.TIMED_OUT,
            reason=f"no terminal state after {attempts} attempts",
            attempts=attempts,
        )

    def is_success(self) -> bool:
        return self.status == PollStatus.SUCCEEDED

    def is_failed(self) -> bool:
        return self.status == PollStatus.FAILED

    def is_timed_out(self) -> bool:
        return self.status == PollStatus.TIMED_OUT


# A check returns a terminal PollResult, or None to keep waiting
PollCheck = Callable[[], Optional[PollResult]]


def poll_until(
    check: PollCheck,
    interval: float,
    max_attempts: int,
    description: str = "resource",
) -> PollResult:
    """Call ``check`` until it reports a terminal state or attempts run out.

    At most ``max_attempts`` checks are made with ``interval`` seconds between
    them. Checks read the provider once without call-site retries, so the
    total wait is ``max_attempts * interval`` plus the latency of those reads.
    A ``TransientProviderError`` raised by the check uses up one attempt and
    polling continues; any other exception propagates.

    Args:
        check: Callable returning a terminal PollResult or None
        interval: Seconds to sleep between checks
        max_attempts: Upper bound on the number of checks
        description: What is being waited on, for log messages

    Returns:
        The terminal PollResult from ``check``, or a TIMED_OUT result
    """
    for attempt in range(1, max_attempts + 1):
        try:
            result = check()
        except TransientProviderError as e:
            logger.warning(f"Waiting for {description}: attempt {attempt}/{max_attempts} failed: {e.message}")
            result = None

        if result is not None:
            result.attempts = attempt
            if result.is_success():
                logger.debug(f"{description} ready after {attempt} attempt(s)")
            else:
                logger.warning(f"{description} failed: {result.reason}")
            return result

        if attempt < max_attempts:
            logger.info(f"Waiting for {description} ({attempt}/{max_attempts}), next check in {interval:g}s")
            time.sleep(interval)

    logger.warning(f"Timed out waiting for {description} after {max_attempts} attempts")
    return PollResult.timed_out(max_attempts)
