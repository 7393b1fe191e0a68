"""
Bounded Retry with Exponential Backoff

Every task store and message channel call goes through `retry_async` with the
same `RetryPolicy`: a fixed attempt count, an initial delay and a backoff
multiplier (delay, delay*backoff, delay*backoff^2, ...). Exhaustion always
surfaces as the caller's typed error.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from src.core.config import settings
from src.core.exceptions import ImageryBaseException
from src.core.logging import get_logger
from src.core.metrics import record_retry

logger = get_logger(__name__)

T = TypeVar("T")

# Bad input fails the same way on every attempt
NON_TRANSIENT_ERRORS = (ValueError, TypeError)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration shared by every store/channel call site."""
    attempts: int = 5
    delay: float = 0.05
    backoff: float = 2.0

    def __post_init__(self):
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.delay < 0 or self.backoff < 1:
            raise ValueError("delay must be >= 0 and backoff >= 1")

    def delay_for(self, attempt: int) -> float:
        """Sleep before retry number `attempt` (1-based)."""
        return self.delay * (self.backoff ** (attempt - 1))

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            attempts=settings.RETRY_ATTEMPTS,
            delay=settings.RETRY_DELAY_SECONDS,
            backoff=settings.RETRY_BACKOFF,
        )


async def retry_async(
    policy: RetryPolicy,
    func: Callable[..., Awaitable[T]],
    *args: Any,
    action: str,
    error_cls: Type[ImageryBaseException],
    give_up_on: Tuple[Type[BaseException], ...] = (),
    is_permanent: Optional[Callable[[Exception], bool]] = None,
    **kwargs: Any
) -> T:
    """
    Await `func(*args, **kwargs)` up to `policy.attempts` times.

    Args:
        policy: Attempt count and backoff schedule
        func: Coroutine function to call
        action: Name used in logs and metrics (e.g. "task_store.create")
        error_cls: Typed error raised once attempts are exhausted
        give_up_on: Exceptions that are re-raised immediately without retry
        is_permanent: Predicate for errors that fail fast as error_cls;
            ValueError and TypeError always do

    Raises:
        error_cls: After the last failed attempt, chained to the last error
    """
    last_error: Exception = None

    for attempt in range(1, policy.attempts + 1):
        try:
            return await func(*args, **kwargs)
        except ImageryBaseException:
            raise
        except Exception as e:
            if give_up_on and isinstance(e, give_up_on):
                raise
            if isinstance(e, NON_TRANSIENT_ERRORS) or (is_permanent and is_permanent(e)):
                logger.error(
                    "permanent_failure",
                    action=action,
                    attempt=attempt,
                    error=str(e),
                    error_type=type(e).__name__
                )
                raise error_cls(
                    f"{action} failed: {e}",
                    details={"action": action, "attempts": attempt}
                ) from e
            last_error = e

            if attempt == policy.attempts:
                break

            delay = policy.delay_for(attempt)
            record_retry(action)
            logger.warning(
                "retrying_call",
                action=action,
                attempt=attempt,
                max_attempts=policy.attempts,
                delay_seconds=delay,
                error=str(e),
                error_type=type(e).__name__
            )
            await asyncio.sleep(delay)

    logger.error(
        "retries_exhausted",
        action=action,
        attempts=policy.attempts,
        error=str(last_error),
        error_type=type(last_error).__name__
    )
    raise error_cls(
        f"{action} failed after {policy.attempts} attempts: {last_error}",
        details={"action": action, "attempts": policy.attempts}
    ) from last_error
