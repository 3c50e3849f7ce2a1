"""In-memory metrics for scheduled request executions and passes."""

from __future__ import annotations

import statistics
from collections import Counter, deque

from src.ports.dispatch import PassSummary
from src.ports.metrics import DispatchAttemptDto, MetricsPort

__all__ = ["Metrics", "status_class"]

# Reported when no response arrived
EXECUTOR_ERROR = "err"
STATUS_CLASSES = ("2xx", "3xx", "4xx", "5xx", EXECUTOR_ERROR)


def status_class(status_code: int | None) -> str:
    """Bucket a status code as "2xx".."5xx", or "err" without a response."""
    if status_code is None:
        return EXECUTOR_ERROR
    return f"{status_code // 100}xx"


class Metrics(MetricsPort):
    """Execution and pass metrics for one dispatcher process.

    Tracks:
    - Scheduling lag (fire time minus effective_after) over the last
      window_size executions: average, p95 and worst.
    - Status classes of the same window, executor errors as "err".
    - Outcome totals of every pass since start.

    Not thread-safe; create one instance per event loop. In polling mode
    the instance outlives passes, so the window spans several of them.
    """

    def __init__(self, *, window_size: int = 100) -> None:
        """Initialize metrics collector.

        Args:
            window_size: Number of recent executions kept for lag and status.
        """
        self._lags: deque[float] = deque(maxlen=window_size)
        self._classes: deque[str] = deque(maxlen=window_size)
        self._outcomes: Counter[str] = Counter()
        self._passes: int = 0

    def update(self, attempt: DispatchAttemptDto) -> None:
        """Record a finished execution."""
        self._lags.append(attempt.fired_at_sec - attempt.effective_after_sec)
        self._classes.append(status_class(attempt.status_code))

    def record_pass(self, summary: PassSummary) -> None:
        """Add the counters of a finished pass to the totals."""
        self._passes += 1
        self._outcomes.update(
            {k: v for k, v in summary.as_dict().items() if k != "due" and v}
        )

    @property
    def outcomes(self) -> dict[str, int]:
        """Outcome totals since start (persisted, removed, skipped, failed)."""
        return {k: self._outcomes[k] for k in ("persisted", "removed", "skipped", "failed")}

    def lag_p95(self) -> float:
        if len(self._lags) < 2:
            return max(self._lags, default=0.0)
        return statistics.quantiles(self._lags, n=20, method="inclusive")[-1]

    def __str__(self) -> str:
        """Return human-readable one-line summary for logging."""
        if not self._lags and not self._passes:
            return "Metrics: waiting for data …"

        outcomes = " ".join(f"{k}={v}" for k, v in self.outcomes.items())
        if not self._lags:
            return f"passes={self._passes} | {outcomes}"

        classes = Counter(self._classes)
        codes = " ".join(f"{c}={classes[c]}" for c in STATUS_CLASSES if classes[c])
        return (
            f"passes={self._passes} | {outcomes} | "
            f"lag avg={statistics.fmean(self._lags):.1f}s "
            f"p95={self.lag_p95():.1f}s max={max(self._lags):.1f}s | "
            f"codes {codes} | "
            f"win={len(self._lags)}/{self._lags.maxlen}"
        )
