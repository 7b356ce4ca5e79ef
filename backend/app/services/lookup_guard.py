"""
Guarded Reference Lookups.

Wraps every reference store query with a per-lookup timeout, bounded
retries on errors and metrics. A failed or timed-out lookup is reported
as a LookupResult with ``ok=False`` and a reason instead of raising, so
one bad lookup only degrades the ladder rung that issued it.
"""

import concurrent.futures
import logging
import time
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from app.core.metrics import track_lookup
from app.core.sentry import add_breadcrumb

logger = logging.getLogger(__name__)

T = TypeVar("T")

TIMEOUT_REASON = "lookup timed out"


@dataclass(frozen=True)
class LookupResult(Generic[T]):
    """Outcome of one guarded lookup."""
    value: Optional[T] = None
    ok: bool = True
    reason: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.ok and bool(self.value)


class LookupGuard:
    """
    Run store lookups with timeout, retry and metrics.

    Args:
        executor: Pool the lookups run on. Without one, lookups run inline
            and the timeout cannot be enforced.
        timeout: Seconds allowed per attempt.
        retries: Extra attempts after an error. Timeouts are not retried.
        deadline: ``time.monotonic()`` value after which no lookup starts
            and running lookups are abandoned.
    """

    def __init__(
        self,
        executor: Optional[Executor] = None,
        timeout: float = 2.0,
        retries: int = 1,
        deadline: Optional[float] = None,
    ):
        self.executor = executor
        self.timeout = timeout
        self.retries = max(0, retries)
        self.deadline = deadline

    def _remaining(self) -> Optional[float]:
        if self.deadline is None:
            return self.timeout
        return min(self.timeout, self.deadline - time.monotonic())

    def call(self, table: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> LookupResult[T]:
        """
        Run ``fn(*args, **kwargs)`` against ``table``.

        Returns:
            LookupResult with the value on success, or ok=False and a
            reason after a timeout or once retries are exhausted.
        """
        attempts = self.retries + 1
        last_error = None

        for attempt in range(1, attempts + 1):
            timeout = self._remaining()
            if timeout is not None and timeout <= 0:
                track_lookup(table, "timeout", 0.0)
                return LookupResult(ok=False, reason=TIMEOUT_REASON)

            start = time.perf_counter()
            try:
                if self.executor is None:
                    value = fn(*args, **kwargs)
                else:
                    future = self.executor.submit(fn, *args, **kwargs)
                    try:
                        value = future.result(timeout=timeout)
                    except concurrent.futures.TimeoutError:
                        future.cancel()
                        track_lookup(table, "timeout", time.perf_counter() - start)
                        logger.warning(f"{table} lookup timed out after {timeout:.2f}s")
                        return LookupResult(ok=False, reason=TIMEOUT_REASON)
            except Exception as e:
                last_error = e
                track_lookup(table, "error", time.perf_counter() - start)
                logger.warning(f"{table} lookup failed (attempt {attempt}/{attempts}): {e}")
                continue

            track_lookup(table, "hit" if value else "miss", time.perf_counter() - start)
            return LookupResult(value=value)

        add_breadcrumb(
            message=f"{table} lookup gave up after {attempts} attempts",
            category="reference_lookup",
            level="warning",
            data={"table": table, "error": str(last_error)},
        )
        return LookupResult(ok=False, reason=f"lookup failed: {last_error}")
