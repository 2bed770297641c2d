"""Performance monitoring utilities for the material extraction pipeline."""
import time
import logging
import threading
import functools
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("sanitary-pipeline.perf")


def timed(stage: Optional[str] = None) -> Callable:
    """
    Decorator that measures a synchronous pipeline stage, logs it and feeds
    the duration into the module tracker.

    Usage::

        @timed("classify")
        def classify(...):
            ...
    """
    def decorator(func: Callable) -> Callable:
        name = stage or func.__qualname__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                return func(*args, **kwargs)
            except Exception:
                tracker.record_stage_error(name)
                raise
            finally:
                duration_ms = round((time.perf_counter() - start) * 1000, 2)
                tracker.record_stage_duration(name, duration_ms)
                logger.debug(
                    f"stage {name} took {duration_ms} ms",
                    extra={"stage": name, "duration_ms": duration_ms},
                )
        return wrapper
    return decorator


class PipelineTracker:
    """
    Thread-safe in-memory tracker for pipeline-level metrics.

    Tracks:
    - Runs completed and failed
    - Cumulative and average run duration
    - Per-stage average durations and error counts
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._runs_processed: int = 0
        self._runs_failed: int = 0
        self._total_run_duration_ms: float = 0.0
        self._stage_durations: Dict[str, list] = {}   # stage -> [duration_ms, ...]
        self._error_counts: Dict[str, int] = {}        # stage -> count
        self._slowest_stage: Optional[str] = None
        self._slowest_stage_ms: float = 0.0

    # ------------------------------------------------------------------
    # Public write API
    # ------------------------------------------------------------------

    def record_run_complete(self, duration_ms: float) -> None:
        """Call once when a full pipeline run finishes successfully."""
        with self._lock:
            self._runs_processed += 1
            self._total_run_duration_ms += duration_ms

    def record_run_failed(self) -> None:
        with self._lock:
            self._runs_failed += 1

    def record_stage_duration(self, stage: str, duration_ms: float) -> None:
        with self._lock:
            self._stage_durations.setdefault(stage, []).append(duration_ms)
            if duration_ms > self._slowest_stage_ms:
                self._slowest_stage_ms = duration_ms
                self._slowest_stage = stage

    def record_stage_error(self, stage: str) -> None:
        with self._lock:
            self._error_counts[stage] = self._error_counts.get(stage, 0) + 1

    # ------------------------------------------------------------------
    # Public read API
    # ------------------------------------------------------------------

    def get_metrics(self) -> Dict[str, Any]:
        """
        Return a snapshot of all collected metrics.

        Returns
        -------
        dict with keys:
            runs_processed        : int
            runs_failed           : int
            avg_run_duration_ms   : float  (0 if none processed)
            slowest_stage         : str | None
            slowest_stage_ms      : float
            error_count_by_stage  : dict  {stage: count}
            stage_avg_durations_ms: dict  {stage: avg_ms}
        """
        with self._lock:
            avg = (
                round(self._total_run_duration_ms / self._runs_processed, 2)
                if self._runs_processed > 0
                else 0.0
            )
            stage_avgs = {
                stage: round(sum(durations) / len(durations), 2)
                for stage, durations in self._stage_durations.items()
                if durations
            }
            return {
                "runs_processed": self._runs_processed,
                "runs_failed": self._runs_failed,
                "avg_run_duration_ms": avg,
                "slowest_stage": self._slowest_stage,
                "slowest_stage_ms": round(self._slowest_stage_ms, 2),
                "error_count_by_stage": dict(self._error_counts),
                "stage_avg_durations_ms": stage_avgs,
            }

    def reset(self) -> None:
        """Reset all counters (useful in tests)."""
        with self._lock:
            self._runs_processed = 0
            self._runs_failed = 0
            self._total_run_duration_ms = 0.0
            self._stage_durations.clear()
            self._error_counts.clear()
            self._slowest_stage = None
            self._slowest_stage_ms = 0.0


# Module-level singleton; import this instance everywhere else.
tracker = PipelineTracker()
