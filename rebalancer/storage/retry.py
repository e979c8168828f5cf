"""
Retry policy for storage I/O.

Retries belong at the storage boundary, never inside the pure rebalance
computation. Used around opening database connections.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar
import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-delay retry with optional multiplicative backoff."""
    max_attempts: int = 5
    delay_seconds: float = 1.5
    backoff: float = 1.0
    retry_on: tuple[type[BaseException], ...] = (Exception,)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "RetryPolicy":
        data = data or {}
        return cls(
            max_attempts=int(data.get("max_attempts", cls.max_attempts)),
            delay_seconds=float(data.get("delay_seconds", cls.delay_seconds)),
            backoff=float(data.get("backoff", cls.backoff)),
        )

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        return self.delay_seconds * (self.backoff ** (attempt - 1))

    def call(
        self,
        func: Callable[..., T],
        *args: Any,
        operation: str = "storage_call",
        sleep: Callable[[float], None] = time.sleep,
        **kwargs: Any,
    ) -> T:
        """
        Call func, retrying on retry_on exceptions.

        The last exception is re-raised once attempts are exhausted.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return func(*args, **kwargs)
            except self.retry_on as e:
                if attempt >= self.max_attempts:
                    logger.error(
                        "retry_attempts_exhausted",
                        operation=operation,
                        attempts=attempt,
                        error=str(e),
                    )
                    raise

                delay = self.delay_for(attempt)
                logger.warning(
                    "retrying_after_failure",
                    operation=operation,
                    attempt=attempt,
                    delay_seconds=delay,
                    error=str(e),
                )
                sleep(delay)
