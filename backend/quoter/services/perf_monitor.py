"""Performance monitoring for quotation recomputes."""
import time
import logging
import threading
import functools
from typing import Any, Callable, Dict

logger = logging.getLogger("quoter.perf")


def timed(func: Callable) -> Callable:
    """
    Decorator that measures and logs execution time for synchronous functions.

    Usage::

        @timed
        def recompute(...):
            ...
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            logger.debug(
                "function timed",
                extra={
                    "timed_function": func.__qualname__,
                    "duration_ms": duration_ms,
                },
            )
    return wrapper


class PerformanceTracker:
    """
    Thread-safe in-memory tracker for recompute metrics.

    Tracks:
    - Recomputes completed and items materialized
    - Cumulative, average and slowest recompute duration
    - Error count broken down by error class
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._recomputes: int = 0
        self._items_materialized: int = 0
        self._total_duration_ms: float = 0.0
        self._slowest_ms: float = 0.0
        self._error_counts: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Public write API
    # ------------------------------------------------------------------

    def record_recompute(self, duration_ms: float, item_count: int) -> None:
        """Call once per successful quotation recompute."""
        with self._lock:
            self._recomputes += 1
            self._items_materialized += item_count
            self._total_duration_ms += duration_ms
            if duration_ms > self._slowest_ms:
                self._slowest_ms = duration_ms

    def record_error(self, error_name: str) -> None:
        with self._lock:
            self._error_counts[error_name] = self._error_counts.get(error_name, 0) + 1

    # ------------------------------------------------------------------
    # Public read API
    # ------------------------------------------------------------------

    def get_metrics(self) -> Dict[str, Any]:
        """
        Snapshot of all collected metrics.

        Returns
        -------
        dict with keys:
            recomputes               : int
            items_materialized       : int
            avg_recompute_ms         : float  (0 if none recorded)
            slowest_recompute_ms     : float
            error_count              : int
            error_count_by_type      : dict  {error class: count}
        """
        with self._lock:
            avg = round(self._total_duration_ms / self._recomputes, 2) if self._recomputes > 0 else 0.0
            return {
                "recomputes": self._recomputes,
                "items_materialized": self._items_materialized,
                "avg_recompute_ms": avg,
                "slowest_recompute_ms": round(self._slowest_ms, 2),
                "error_count": sum(self._error_counts.values()),
                "error_count_by_type": dict(self._error_counts),
            }

    def reset(self) -> None:
        """Reset all counters (useful in tests)."""
        with self._lock:
            self._recomputes = 0
            self._items_materialized = 0
            self._total_duration_ms = 0.0
            self._slowest_ms = 0.0
            self._error_counts.clear()


# Module-level singleton; import this instance everywhere else.
tracker = PerformanceTracker()
