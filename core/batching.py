import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Sequence, TypeVar
from core.entities import RetryPolicy
from util.errors import RateLimitedError

logger = logging.getLogger(__name__)

T = TypeVar("T")
TaskFactory = Callable[[], Awaitable[T]]
Sleep = Callable[[float], Awaitable[Any]]


class BatchExecutor:
    """
    Runs independent upstream calls in fixed-size groups.

    - At most `batch_size` tasks from this executor are in flight at once: a
      group is started together and fully awaited before the next one starts.
    - `delay_seconds` is slept between groups (never after the last one).
    - A task raising RateLimitedError is retried on its own with a growing
      backoff; its siblings keep running. After `retry.max_attempts` throttled
      attempts the error propagates.
    - Results come back in input order.

    Tasks are passed as zero-arg factories so a retry can build a fresh call.
    """

    def __init__(
        self,
        batch_size: int,
        delay_seconds: float = 0.0,
        retry: Optional[RetryPolicy] = None,
        sleep: Optional[Sleep] = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._batch_size = batch_size
        self._delay = max(0.0, delay_seconds)
        self._retry = retry or RetryPolicy()
        self._sleep: Sleep = sleep or asyncio.sleep

    async def call_with_backoff(self, factory: TaskFactory[T], label: str = "task") -> T:
        attempt = 1
        while True:
            try:
                return await factory()
            except RateLimitedError as e:
                if attempt >= self._retry.max_attempts:
                    logger.error(
                        "batch.ratelimit.exhausted task=%s attempts=%d", label, attempt
                    )
                    raise
                wait = self._retry.delay_for(attempt, e.retry_after)
                logger.warning(
                    "batch.ratelimit.retry task=%s attempt=%d wait=%.1fs",
                    label,
                    attempt,
                    wait,
                )
                await self._sleep(wait)
                attempt += 1

    async def run(
        self, factories: Sequence[TaskFactory[T]], return_exceptions: bool = False
    ) -> List[Any]:
        """
        Execute all factories batch by batch.

        With return_exceptions=False the first failure (by input position) is
        raised once its whole batch has settled; later batches do not start.
        With return_exceptions=True failures are returned in their slots.
        """
        results: List[Any] = []
        total = len(factories)
        for start in range(0, total, self._batch_size):
            batch = factories[start : start + self._batch_size]
            outcomes = await asyncio.gather(
                *(
                    self.call_with_backoff(f, label=str(start + i))
                    for i, f in enumerate(batch)
                ),
                return_exceptions=True,
            )
            if not return_exceptions:
                for outcome in outcomes:
                    if isinstance(outcome, BaseException):
                        raise outcome
            results.extend(outcomes)

            if start + self._batch_size < total and self._delay > 0:
                logger.info(
                    "batch.pause done=%d total=%d wait=%.1fs",
                    start + len(batch),
                    total,
                    self._delay,
                )
                await self._sleep(self._delay)
        return results
