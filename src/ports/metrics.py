"""Metrics port definition (interface and DTO)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from src.ports.dispatch import PassSummary

__all__ = ["DispatchAttemptDto", "MetricsPort"]


@dataclass(slots=True, frozen=True)
class DispatchAttemptDto:
    """Immutable snapshot of one scheduled request execution.

    Attributes:
        effective_after_sec: Epoch seconds the request became due.
        fired_at_sec: Epoch seconds the request was sent.
        is_failed: True on executor error or status >= 400.
        status_code: HTTP status code when a response arrived; None otherwise.
    """

    effective_after_sec: float
    fired_at_sec: float
    is_failed: bool = False
    status_code: int | None = None


class MetricsPort(Protocol):
    """Interface for recording execution metrics.

    The dispatch engine calls update() after each execution, then
    record_pass() and str() once per pass.
    """

    def update(self, attempt: DispatchAttemptDto, /) -> None:
        """Record a finished execution."""
        ...

    def record_pass(self, summary: PassSummary, /) -> None:
        """Record the outcome counters of a finished pass."""
        ...

    def __str__(self) -> str:
        """Return concise textual summary for humans."""
        ...
