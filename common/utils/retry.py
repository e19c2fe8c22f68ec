"""Bounded retries with exponential backoff for async calls."""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from common.logger import setup_logger

logger = setup_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try and how long to wait in between.

    The delay before attempt n+1 is ``base_delay * factor ** (n - 1)``,
    capped at ``max_delay``.
    """

    attempts: int = 3
    base_delay: float = 0.5
    factor: float = 2.0
    max_delay: float = 30.0

    def __post_init__(self):
        if self.attempts < 1:
            raise ValueError(f"attempts must be >= 1, got {self.attempts}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay must be >= 0, got {self.base_delay}")

    def delay(self, attempt: int) -> float:
        """Seconds to sleep after the given (1-based) failed attempt."""
        return min(self.base_delay * (self.factor ** (attempt - 1)), self.max_delay)


async def retry_async(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    operation: str = "operation",
) -> T:
    """
    Call func until it succeeds or the policy's attempts are exhausted.

    Args:
        func: Zero-argument coroutine factory, called once per attempt
        policy: Retry policy
        retry_on: Exception types that trigger another attempt
        operation: Name used in log messages

    Returns:
        The first successful result

    Raises:
        The exception of the last attempt
    """
    for attempt in range(1, policy.attempts + 1):
        try:
            return await func()
        except retry_on as e:
            if attempt == policy.attempts:
                logger.error(
                    f"{operation} failed after {policy.attempts} attempt(s): {str(e)}"
                )
                raise
            delay = policy.delay(attempt)
            logger.warning(
                f"{operation} failed (attempt {attempt}/{policy.attempts}): {str(e)}; "
                f"retrying in {delay:.2f}s"
            )
            await asyncio.sleep(delay)

    # Unreachable: the loop either returns or raises
    raise RuntimeError(f"{operation}: retry loop exited without result")
