"""
Retry helpers for calls to the workflow service.

Backoff strategies:
- exponential: base_delay * exponential_base ** (attempt - 1)
- linear: base_delay * attempt
- fixed: base_delay
"""

import asyncio
import functools
import random
from dataclasses import dataclass
from typing import Any, List, Optional, Callable, Awaitable

from shared.logging import get_logger


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True
    backoff_strategy: str = "exponential"

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        if self.backoff_strategy == "exponential":
            delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        elif self.backoff_strategy == "linear":
            delay = self.base_delay * attempt
        else:
            delay = self.base_delay

        delay = min(delay, self.max_delay)
        if self.jitter:
            spread = delay * 0.1
            delay += random.uniform(-spread, spread)

        return max(0.0, delay)


class RetryError(Exception):
    """Raised when every attempt failed; carries the last error and the delays waited."""

    def __init__(self, message: str, last_exception: Exception, attempts: int,
                 delays: Optional[List[float]] = None):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts
        self.delays = delays or []


def retry_on_exception(exceptions: tuple = (Exception,),
                      config: Optional[RetryConfig] = None) -> Callable:
    """Decorator for retrying async functions on exceptions.

    Only exceptions listed in ``exceptions`` are retried; anything else
    propagates on the first attempt.
    """
    config = config or RetryConfig()

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        name = func.__name__

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            logger = get_logger(f"retry.{name}")
            delays: List[float] = []
            last_error: Optional[Exception] = None

            for attempt in range(1, config.max_attempts + 1):
                if delays:
                    await asyncio.sleep(delays[-1])

                try:
                    result = await func(*args, **kwargs)
                except exceptions as e:
                    last_error = e
                    if attempt < config.max_attempts:
                        delays.append(config.delay_for(attempt))
                        logger.warning(
                            "Attempt failed, retrying",
                            attempt=attempt,
                            delay=delays[-1],
                            function=name,
                            error=str(e)
                        )
                    continue

                if attempt > 1:
                    logger.info("Retry succeeded", attempt=attempt, function=name)
                return result

            logger.error(
                "Retries exhausted",
                attempts=config.max_attempts,
                function=name,
                error=str(last_error)
            )
            raise RetryError(
                f"{name} failed after {config.max_attempts} attempts",
                last_exception=last_error or Exception("max_attempts < 1"),
                attempts=config.max_attempts,
                delays=delays
            ) from last_error

        return wrapper

    return decorator
