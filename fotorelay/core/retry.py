"""
Retry policy with exponential backoff shared by every network call.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Tuple, Type

from fotorelay.exceptions import TransientNetworkError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry with geometric backoff.

    ``max_attempts`` counts the first try, so the default of 3 means one call
    plus two retries, sleeping ``base_delay`` and then
    ``base_delay * multiplier`` in between.
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0

    @classmethod
    def from_config(cls, config: dict) -> "RetryPolicy":
        return cls(
            max_attempts=config["max_attempts"],
            base_delay=config["base_delay"],
            multiplier=config["multiplier"]
        )

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the zero-based ``attempt`` failed."""
        return self.base_delay * (self.multiplier ** attempt)

    async def run(
        self,
        fn: Callable[[], Awaitable[Any]],
        retry_on: Tuple[Type[BaseException], ...] = (TransientNetworkError,),
        operation: str = "operation",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ) -> Any:
        """
        Await ``fn()`` until it succeeds or attempts run out.

        Only exceptions in ``retry_on`` are retried; anything else propagates
        immediately. After the last attempt the final error is re-raised.
        """
        for attempt in range(self.max_attempts):
            try:
                return await fn()
            except retry_on as e:
                if attempt + 1 >= self.max_attempts:
                    logger.error(
                        f"{operation} failed after {self.max_attempts} attempts: {e}",
                        extra={'operation': operation, 'attempts': self.max_attempts}
                    )
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    f"{operation} attempt {attempt + 1}/{self.max_attempts} failed, "
                    f"retrying in {delay:.2f}s: {e}",
                    extra={'operation': operation, 'attempt': attempt + 1, 'delay': delay}
                )
                await sleep(delay)
