"""
Retry Policy

Bounded retry applied the same way to every unit of work, either by calling
RetryPolicy.run() or by decorating a coroutine function with @retrying(policy).
"""

import asyncio
import functools
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Tuple, Type

from loguru import logger

from .exceptions import NetworkError, RetryExhaustedError, SubmissionError

Backoff = Callable[[int], float]


def constant_backoff(delay: float) -> Backoff:
    """Same delay before every retry"""
    return lambda attempt: delay


def exponential_backoff(base: float = 1.0, factor: float = 2.0, maximum: Optional[float] = None) -> Backoff:
    """base, base*factor, base*factor^2, ... (1s, 2s, 4s by default)"""
    def backoff(attempt: int) -> float:
        delay = base * (factor ** (attempt - 1))
        return min(delay, maximum) if maximum is not None else delay
    return backoff


@dataclass
class RetryPolicy:
    """
    Fixed number of attempts with a delay between them

    Only exceptions listed in retry_on are retried; anything else propagates
    on the first occurrence. Exhausting the attempts raises RetryExhaustedError.
    """
    max_attempts: int = 3
    backoff: Backoff = field(default_factory=lambda: constant_backoff(5.0))
    retry_on: Tuple[Type[BaseException], ...] = (NetworkError, SubmissionError)
    sleep: Callable[[float], Awaitable] = asyncio.sleep

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    async def run(self, operation: Callable[..., Awaitable], *args, description: str = 'operation', **kwargs):
        """
        Run operation(*args, **kwargs) under this policy

        Args:
            operation: Coroutine function
            description: Label used in log lines and the final error

        Returns:
            Whatever operation returns

        Raises:
            RetryExhaustedError: Every attempt failed with a retryable error
        """
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation(*args, **kwargs)
            except self.retry_on as e:
                last_error = e
                logger.warning(
                    f"Retryable error in {description} (attempt {attempt}/{self.max_attempts}): {str(e)[:200]}"
                )

            if attempt < self.max_attempts:
                wait_time = self.backoff(attempt)
                logger.debug(f"Waiting {wait_time}s before retry...")
                await self.sleep(wait_time)

        raise RetryExhaustedError(description, self.max_attempts, last_error)


def retrying(policy: RetryPolicy, description: Optional[str] = None):
    """Decorator form of RetryPolicy.run"""
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            return await policy.run(func, *args, description=description or func.__name__, **kwargs)
        return wrapper
    return decorator
