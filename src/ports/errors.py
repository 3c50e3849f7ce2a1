"""Error taxonomy shared by the core and its adapters."""

from __future__ import annotations

from collections.abc import Sequence

from src.ports.dispatch import PassSummary

__all__ = [
    "SchedulerError",
    "StoreError",
    "NotFoundError",
    "ExecutorError",
    "InvalidRequestError",
    "TransportError",
    "ReadError",
    "RecordDispatchError",
    "AggregateDispatchError",
    "describe",
]


def describe(exc: BaseException) -> str:
    """Return a non-empty message for an exception.

    Falls back to the exception type name when str(exc) is empty
    (e.g. a bare asyncio.TimeoutError).
    """
    return str(exc) or type(exc).__name__


class SchedulerError(Exception):
    """Base class for every error raised by this service."""


class StoreError(SchedulerError):
    """Record Store backend failure.

    Attributes:
        operation: Store operation that failed (e.g. "claim", "query_due").
        record_id: Id of the record involved, None for table-wide operations.
    """

    def __init__(self, operation: str, record_id: str | None = None, message: str = "") -> None:
        self.operation = operation
        self.record_id = record_id
        target = f" id={record_id}" if record_id is not None else ""
        detail = f": {message}" if message else ""
        super().__init__(f"store.{operation}{target}{detail}")


class NotFoundError(StoreError):
    """Point lookup or update targeted a record that does not exist."""

    def __init__(self, operation: str, record_id: str) -> None:
        super().__init__(operation, record_id, "record not found")


class ExecutorError(SchedulerError):
    """Base class for Request Executor failures."""


class InvalidRequestError(ExecutorError):
    """Method or URL could not be turned into a request (no I/O happened)."""


class TransportError(ExecutorError):
    """Network-level failure while sending the request."""


class ReadError(ExecutorError):
    """Failure while reading the response body."""


class RecordDispatchError(SchedulerError):
    """Failure of one record within a pass.

    Attributes:
        record_id: Record that failed.
        stage: Where the record failed ("claim", "execute", "finalize"
            or "unexpected").
        cause: Primary error.
        secondary: Error raised while persisting the failure reason, if any.
    """

    def __init__(
        self,
        record_id: str,
        stage: str,
        cause: BaseException,
        secondary: BaseException | None = None,
    ) -> None:
        self.record_id = record_id
        self.stage = stage
        self.cause = cause
        self.secondary = secondary
        message = f"{stage} id={record_id}: {describe(cause)}"
        if secondary is not None:
            message += f" (recording failure also failed: {describe(secondary)})"
        super().__init__(message)


class AggregateDispatchError(SchedulerError):
    """Every per-record failure of one pass.

    Attributes:
        errors: Individual record failures, in due-query order.
        summary: Counters of the pass that produced them.
    """

    def __init__(self, errors: Sequence[RecordDispatchError], summary: PassSummary) -> None:
        self.errors = list(errors)
        self.summary = summary
        super().__init__(
            f"{len(self.errors)} of {summary.due} scheduled requests failed: "
            + "; ".join(self.messages)
        )

    @property
    def messages(self) -> list[str]:
        """Individual failure messages."""
        return [str(e) for e in self.errors]
