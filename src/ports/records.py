"""Record Store port definition (interface and DTOs)."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

__all__ = [
    "TIMESTAMP_FORMAT",
    "Response",
    "ScheduledRequest",
    "RecordStorePort",
    "utc_now",
    "format_timestamp",
    "parse_timestamp",
]

# Lexicographically sortable, whole-second UTC.
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_now() -> datetime:
    """Current UTC time truncated to whole seconds."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def format_timestamp(value: datetime) -> str:
    """Encode a datetime as stored text.

    Naive datetimes are taken as UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """Decode stored timestamp text into an aware UTC datetime."""
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


@dataclass(slots=True, frozen=True)
class Response:
    """Normalized outcome of one HTTP call.

    Attributes:
        code: Upstream status code, as received.
        body: Raw response body as text.
    """

    code: int
    body: str

    def to_json(self) -> str:
        """Serialize as stored in ExecutionResult."""
        return json.dumps({"code": self.code, "body": self.body}, separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str) -> Response:
        data = json.loads(raw)
        return cls(code=int(data["code"]), body=str(data["body"]))


@dataclass
class ScheduledRequest:
    """HTTP call scheduled for execution once effective_after has passed.

    Attributes:
        id: Globally unique, immutable id.
        created_at: Creation time.
        effective_after: Earliest time the request may run.
        method: HTTP method name.
        url: Absolute URL, or relative to the configured base URL.
        payload: Request body, empty for none.
        headers: Extra request headers.
        locking: True while claimed, and permanently after a failed execution.
        persistent_store: Keep the record (with its result) after success.
        failure_reason: Last execution error.
        execution_result: Serialized Response of the last success.
        executed_at: Time of the last success.
    """

    id: str
    created_at: datetime
    effective_after: datetime
    method: str
    url: str
    payload: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    locking: bool = False
    persistent_store: bool = False
    failure_reason: str | None = None
    execution_result: str | None = None
    executed_at: datetime | None = None

    def is_due(self, now: datetime) -> bool:
        """Return True if the record should be picked up by a pass at `now`."""
        return not self.locking and format_timestamp(self.effective_after) <= format_timestamp(now)

    def __str__(self) -> str:
        return (
            f"id={self.id} effective_after={format_timestamp(self.effective_after)} "
            f"locking={self.locking}"
        )


class RecordStorePort(Protocol):
    """Interface for scheduled request persistence.

    Implementations must be safe for concurrent use by many tasks.
    Every mutation is a partial update that leaves unrelated fields alone.
    Backend failures are raised as StoreError.
    """

    async def query_due(self, now: datetime) -> list[ScheduledRequest]:
        """Return every record with effective_after <= now and locking == False."""
        ...

    async def get(self, record_id: str) -> ScheduledRequest:
        """Return one record; NotFoundError if absent."""
        ...

    async def create(self, record: ScheduledRequest) -> None:
        """Insert a new record; StoreError on duplicate id."""
        ...

    async def set_locking(self, record_id: str, value: bool) -> None:
        """Unconditionally overwrite the locking flag (last writer wins)."""
        ...

    async def claim(self, record_id: str) -> bool:
        """Set locking only if it is currently False.

        Returns:
            True if this caller claimed the record, False if it was
            already locked by someone else.
        """
        ...

    async def record_result(self, record_id: str, response: Response, now: datetime) -> None:
        """Store the serialized response and the execution time."""
        ...

    async def record_failure(self, record_id: str, error: BaseException) -> None:
        """Store the error message as the failure reason."""
        ...

    async def remove(self, record_id: str) -> None:
        """Delete the record."""
        ...

    async def ping(self) -> None:
        """Check the backend is reachable."""
        ...
