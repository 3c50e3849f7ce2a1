"""In-memory Record Store for local runs and tests."""

import logging
from dataclasses import replace
from datetime import datetime

from src.ports.errors import NotFoundError, StoreError, describe
from src.ports.records import RecordStorePort, Response, ScheduledRequest

__all__ = ["InMemoryRecordStore"]

logger = logging.getLogger(__name__)


class InMemoryRecordStore(RecordStorePort):
    """Dict-backed store with the same semantics as the DynamoDB adapter.

    Methods never await between reading and writing a record, so every
    operation is atomic with respect to other tasks on the same event loop.
    Records are copied in and out; callers never share state with the store.
    """

    def __init__(self, records: list[ScheduledRequest] | None = None) -> None:
        self._records: dict[str, ScheduledRequest] = {}
        for record in records or []:
            self._records[record.id] = self._copy(record)

    @staticmethod
    def _copy(record: ScheduledRequest) -> ScheduledRequest:
        return replace(record, headers=dict(record.headers))

    def _existing(self, operation: str, record_id: str) -> ScheduledRequest:
        try:
            return self._records[record_id]
        except KeyError:
            raise NotFoundError(operation, record_id) from None

    def __len__(self) -> int:
        return len(self._records)

    async def query_due(self, now: datetime) -> list[ScheduledRequest]:
        return [self._copy(r) for r in self._records.values() if r.is_due(now)]

    async def get(self, record_id: str) -> ScheduledRequest:
        return self._copy(self._existing("get", record_id))

    async def create(self, record: ScheduledRequest) -> None:
        if record.id in self._records:
            raise StoreError("create", record.id, "duplicate id")
        self._records[record.id] = self._copy(record)

    async def set_locking(self, record_id: str, value: bool) -> None:
        self._existing("set_locking", record_id).locking = value

    async def claim(self, record_id: str) -> bool:
        record = self._records.get(record_id)
        if record is None or record.locking:
            return False
        record.locking = True
        return True

    async def record_result(self, record_id: str, response: Response, now: datetime) -> None:
        record = self._existing("record_result", record_id)
        record.execution_result = response.to_json()
        record.executed_at = now

    async def record_failure(self, record_id: str, error: BaseException) -> None:
        self._existing("record_failure", record_id).failure_reason = describe(error)

    async def remove(self, record_id: str) -> None:
        self._records.pop(record_id, None)

    async def ping(self) -> None:
        logger.debug(f"In-memory store holds {len(self._records)} records")
