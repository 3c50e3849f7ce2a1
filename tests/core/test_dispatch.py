"""Tests for the scheduling pass."""

import asyncio
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from src.adapters.driven.store.memory import InMemoryRecordStore
from src.core.dispatch import Dispatcher
from src.ports.dispatch import Outcome, PassSummary
from src.ports.errors import (
    AggregateDispatchError,
    ExecutorError,
    NotFoundError,
    RecordDispatchError,
    StoreError,
    TransportError,
)
from src.ports.metrics import DispatchAttemptDto, MetricsPort
from src.ports.records import Response, ScheduledRequest

__all__ = []

NOW = datetime(2018, 9, 5, 12, 0, 0, tzinfo=timezone.utc)
PAST = NOW - timedelta(hours=1)
FUTURE = NOW + timedelta(hours=1)


def make_record(record_id: str, **overrides: object) -> ScheduledRequest:
    """Build a due, unlocked record."""
    fields: dict[str, object] = {
        "id": record_id,
        "created_at": PAST - timedelta(hours=1),
        "effective_after": PAST,
        "method": "POST",
        "url": f"/hooks/{record_id}",
        "payload": '{"k": 1}',
        "headers": {"X-Id": record_id},
    }
    fields.update(overrides)
    return ScheduledRequest(**fields)  # type: ignore[arg-type]


class FakeExecutor:
    """Request Executor recording every call."""

    def __init__(
        self,
        response: Response | None = None,
        errors: Mapping[str, ExecutorError] | None = None,
    ) -> None:
        self.response = response or Response(code=200, body="")
        self.errors = dict(errors or {})
        self.calls: list[tuple[str, str, dict[str, str], str]] = []

    async def execute(self, method: str, url: str, headers: Mapping[str, str], body: str) -> Response:
        self.calls.append((method, url, dict(headers), body))
        await asyncio.sleep(0)
        if url in self.errors:
            raise self.errors[url]
        return self.response

    @property
    def urls(self) -> list[str]:
        return sorted(call[1] for call in self.calls)


class DummyMetrics(MetricsPort):
    """Metrics implementation for testing."""

    def __init__(self) -> None:
        self.attempts: list[DispatchAttemptDto] = []
        self.passes: list[PassSummary] = []

    def update(self, attempt: DispatchAttemptDto) -> None:
        self.attempts.append(attempt)

    def record_pass(self, summary: PassSummary) -> None:
        self.passes.append(summary)

    def __str__(self) -> str:
        return f"Recorded {len(self.attempts)} attempts"


def fail_claim_for(store: InMemoryRecordStore, failing_id: str) -> None:
    """Make store.claim raise for one record id."""
    original = store.claim

    async def claim(record_id: str) -> bool:
        if record_id == failing_id:
            raise StoreError("claim", record_id, "Internal error")
        return await original(record_id)

    store.claim = claim  # type: ignore[method-assign]


@pytest.mark.asyncio
async def test_empty_due_set_is_success() -> None:
    """A pass with nothing due should succeed without executing anything."""
    executor = FakeExecutor()
    dispatcher = Dispatcher(InMemoryRecordStore(), executor)

    summary = await dispatcher.run(NOW)

    assert summary.due == 0
    assert summary.failed == 0
    assert executor.calls == []


@pytest.mark.asyncio
async def test_only_due_record_is_executed() -> None:
    """Only the record whose effective_after has passed should run."""
    store = InMemoryRecordStore(
        [make_record("A"), make_record("B", effective_after=FUTURE)]
    )
    executor = FakeExecutor()

    summary = await Dispatcher(store, executor).run(NOW)

    assert executor.urls == ["/hooks/A"]
    assert summary.due == 1
    assert summary.removed == 1
    assert len(store) == 1
    assert (await store.get("B")).locking is False


@pytest.mark.asyncio
async def test_locked_record_is_never_executed() -> None:
    """Locked records should be left alone even when due."""
    store = InMemoryRecordStore([make_record("A", locking=True, failure_reason="boom")])
    executor = FakeExecutor()

    summary = await Dispatcher(store, executor).run(NOW)

    assert summary.due == 0
    assert executor.calls == []


@pytest.mark.asyncio
async def test_executes_every_due_record_once() -> None:
    """Three claimable, executable records should give three calls."""
    store = InMemoryRecordStore([make_record(i) for i in ("X", "Y", "Z")])
    executor = FakeExecutor()

    summary = await Dispatcher(store, executor).run(NOW)

    assert executor.urls == ["/hooks/X", "/hooks/Y", "/hooks/Z"]
    assert summary.removed == 3
    assert len(store) == 0


@pytest.mark.asyncio
async def test_executor_receives_record_call_description() -> None:
    """Method, url, headers and payload should be passed through unchanged."""
    store = InMemoryRecordStore([make_record("A")])
    executor = FakeExecutor()

    await Dispatcher(store, executor).run(NOW)

    assert executor.calls == [("POST", "/hooks/A", {"X-Id": "A"}, '{"k": 1}')]


@pytest.mark.asyncio
async def test_claim_failure_skips_execution_and_is_reported() -> None:
    """A failed claim should stop that record only and surface in the aggregate."""
    store = InMemoryRecordStore([make_record(i) for i in ("X", "Y", "Z")])
    fail_claim_for(store, "X")
    executor = FakeExecutor()

    with pytest.raises(AggregateDispatchError) as exc_info:
        await Dispatcher(store, executor).run(NOW)

    assert executor.urls == ["/hooks/Y", "/hooks/Z"]
    err = exc_info.value
    assert len(err.errors) == 1
    assert err.errors[0].record_id == "X"
    assert err.errors[0].stage == "claim"
    assert any("Internal error" in m and "id=X" in m for m in err.messages)
    assert err.summary.removed == 2
    assert err.summary.failed == 1


@pytest.mark.asyncio
async def test_execution_failure_records_reason_and_keeps_lock() -> None:
    """A transport error should be persisted as failure reason, record stays locked."""
    store = InMemoryRecordStore([make_record("A", persistent_store=True)])
    executor = FakeExecutor(errors={"/hooks/A": TransportError("connection reset")})

    with pytest.raises(AggregateDispatchError) as exc_info:
        await Dispatcher(store, executor).run(NOW)

    record = await store.get("A")
    assert record.locking is True
    assert record.failure_reason == "connection reset"
    assert record.execution_result is None
    assert record.executed_at is None
    assert exc_info.value.errors[0].stage == "execute"
    assert isinstance(exc_info.value.errors[0].cause, TransportError)


@pytest.mark.asyncio
async def test_execution_failure_calls_only_record_failure() -> None:
    """On execution failure neither record_result nor remove should be called."""
    store = AsyncMock()
    store.query_due.return_value = [make_record("A")]
    store.claim.return_value = True
    executor = FakeExecutor(errors={"/hooks/A": TransportError("timeout")})

    with pytest.raises(AggregateDispatchError):
        await Dispatcher(store, executor).run(NOW)

    store.record_failure.assert_awaited_once()
    record_id, error = store.record_failure.await_args.args
    assert record_id == "A"
    assert str(error) == "timeout"
    store.record_result.assert_not_awaited()
    store.remove.assert_not_awaited()


@pytest.mark.asyncio
async def test_secondary_failure_is_combined_with_execution_error() -> None:
    """A failing failure-reason write should be reported with the original error."""
    store = AsyncMock()
    store.query_due.return_value = [make_record("A")]
    store.claim.return_value = True
    store.record_failure.side_effect = StoreError("record_failure", "A", "throttled")
    executor = FakeExecutor(errors={"/hooks/A": TransportError("refused")})

    with pytest.raises(AggregateDispatchError) as exc_info:
        await Dispatcher(store, executor).run(NOW)

    error = exc_info.value.errors[0]
    assert isinstance(error.cause, TransportError)
    assert isinstance(error.secondary, StoreError)
    assert "refused" in str(error)
    assert "throttled" in str(error)


@pytest.mark.asyncio
async def test_non_store_secondary_failure_keeps_execution_error() -> None:
    """Any error from the failure-reason write must not replace the execution error."""
    store = AsyncMock()
    store.query_due.return_value = [make_record("A")]
    store.claim.return_value = True
    store.record_failure.side_effect = RuntimeError("client blew up")
    executor = FakeExecutor(errors={"/hooks/A": TransportError("connection refused upstream")})

    with pytest.raises(AggregateDispatchError) as exc_info:
        await Dispatcher(store, executor).run(NOW)

    error = exc_info.value.errors[0]
    assert error.stage == "execute"
    assert isinstance(error.cause, TransportError)
    assert isinstance(error.secondary, RuntimeError)
    assert exc_info.value.messages == [
        "execute id=A: connection refused upstream "
        "(recording failure also failed: client blew up)"
    ]


@pytest.mark.asyncio
async def test_persistent_record_keeps_result() -> None:
    """Persistent records should stay, locked, with their result attached."""
    store = InMemoryRecordStore([make_record("A", persistent_store=True)])
    executor = FakeExecutor(response=Response(code=201, body='{"ok":true}'))
    finished_at = NOW + timedelta(seconds=3)
    dispatcher = Dispatcher(store, executor, clock=lambda: finished_at)

    summary = await dispatcher.run(NOW)

    record = await store.get("A")
    assert summary.persisted == 1
    assert record.locking is True
    assert record.execution_result == '{"code":201,"body":"{\\"ok\\":true}"}'
    assert record.executed_at == finished_at
    assert Response.from_json(record.execution_result) == Response(201, '{"ok":true}')


@pytest.mark.asyncio
async def test_persistent_record_is_not_removed() -> None:
    """record_result, not remove, should finalize persistent records."""
    store = AsyncMock()
    store.query_due.return_value = [make_record("A", persistent_store=True)]
    store.claim.return_value = True

    await Dispatcher(store, FakeExecutor()).run(NOW)

    store.record_result.assert_awaited_once()
    store.remove.assert_not_awaited()


@pytest.mark.asyncio
async def test_transient_record_is_removed() -> None:
    """A non-persistent record answered with 200 and empty body should be deleted."""
    store = InMemoryRecordStore([make_record("A")])
    executor = FakeExecutor(response=Response(code=200, body=""))

    summary = await Dispatcher(store, executor).run(NOW)

    assert summary.removed == 1
    with pytest.raises(NotFoundError):
        await store.get("A")


@pytest.mark.asyncio
async def test_error_status_is_a_successful_execution() -> None:
    """Upstream 5xx answers should be finalized, not treated as failures."""
    store = InMemoryRecordStore([make_record("A", persistent_store=True)])
    executor = FakeExecutor(response=Response(code=503, body="unavailable"))

    summary = await Dispatcher(store, executor).run(NOW)

    assert summary.persisted == 1
    assert (await store.get("A")).execution_result == '{"code":503,"body":"unavailable"}'


@pytest.mark.asyncio
async def test_remove_failure_is_reported() -> None:
    """A failing remove should fail the pass for that record."""
    store = AsyncMock()
    store.query_due.return_value = [make_record("A")]
    store.claim.return_value = True
    store.remove.side_effect = StoreError("remove", "A", "Internal error")
    executor = FakeExecutor()

    with pytest.raises(AggregateDispatchError) as exc_info:
        await Dispatcher(store, executor).run(NOW)

    assert len(executor.calls) == 1
    assert exc_info.value.errors[0].stage == "finalize"


@pytest.mark.asyncio
async def test_query_failure_aborts_pass() -> None:
    """A failing due query should propagate before any record is touched."""
    store = AsyncMock()
    store.query_due.side_effect = StoreError("query_due", None, "unavailable")
    executor = FakeExecutor()

    with pytest.raises(StoreError):
        await Dispatcher(store, executor).run(NOW)

    store.claim.assert_not_awaited()
    assert executor.calls == []


@pytest.mark.asyncio
async def test_lost_claim_race_is_skipped() -> None:
    """A record claimed elsewhere first should be skipped without error."""
    store = AsyncMock()
    store.query_due.return_value = [make_record("A"), make_record("B")]
    store.claim.side_effect = lambda record_id: record_id == "B"
    executor = FakeExecutor()

    summary = await Dispatcher(store, executor).run(NOW)

    assert executor.urls == ["/hooks/B"]
    assert summary.skipped == 1
    assert summary.removed == 1


@pytest.mark.asyncio
async def test_overlapping_passes_execute_once() -> None:
    """Two concurrent passes over the same store should execute each record once."""
    store = InMemoryRecordStore([make_record(i) for i in ("X", "Y", "Z")])
    executor = FakeExecutor()
    dispatcher = Dispatcher(store, executor)

    first, second = await asyncio.gather(dispatcher.run(NOW), dispatcher.run(NOW))

    assert executor.urls == ["/hooks/X", "/hooks/Y", "/hooks/Z"]
    assert first.removed + second.removed == 3
    assert first.skipped + second.skipped == 3


@pytest.mark.asyncio
async def test_concurrency_is_bounded() -> None:
    """No more than max_concurrency records should execute at once."""
    store = InMemoryRecordStore([make_record(str(i)) for i in range(10)])
    in_flight = 0
    peak = 0

    class SlowExecutor(FakeExecutor):
        async def execute(self, method: str, url: str, headers: Mapping[str, str], body: str) -> Response:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return await super().execute(method, url, headers, body)

    executor = SlowExecutor()
    summary = await Dispatcher(store, executor, max_concurrency=3).run(NOW)

    assert summary.removed == 10
    assert len(executor.calls) == 10
    assert peak == 3


@pytest.mark.asyncio
async def test_every_failure_is_collected() -> None:
    """All failing records should appear in the aggregate, none dropped."""
    ids = [f"r{i}" for i in range(6)]
    store = InMemoryRecordStore([make_record(i) for i in ids])
    errors = {f"/hooks/{i}": TransportError(f"down {i}") for i in ids[:4]}
    executor = FakeExecutor(errors=errors)

    with pytest.raises(AggregateDispatchError) as exc_info:
        await Dispatcher(store, executor, max_concurrency=2).run(NOW)

    assert sorted(e.record_id for e in exc_info.value.errors) == ids[:4]
    assert exc_info.value.summary.removed == 2
    assert "4 of 6" in str(exc_info.value)


@pytest.mark.asyncio
async def test_failures_follow_due_query_order() -> None:
    """The aggregate lists failures in query order, not in completion order."""
    store = AsyncMock()
    store.query_due.return_value = [make_record("slow"), make_record("fast")]
    store.claim.return_value = True

    class StaggeredExecutor(FakeExecutor):
        async def execute(self, method: str, url: str, headers: Mapping[str, str], body: str) -> Response:
            if url == "/hooks/slow":
                await asyncio.sleep(0.05)
            raise TransportError(f"down {url}")

    with pytest.raises(AggregateDispatchError) as exc_info:
        await Dispatcher(store, StaggeredExecutor()).run(NOW)

    assert [e.record_id for e in exc_info.value.errors] == ["slow", "fast"]


@pytest.mark.asyncio
async def test_unexpected_error_is_wrapped_per_record() -> None:
    """Errors outside the store contract should still be isolated per record."""
    store = AsyncMock()
    store.query_due.return_value = [make_record("A"), make_record("B")]

    def claim(record_id: str) -> bool:
        if record_id == "A":
            raise KeyError("bug")
        return True

    store.claim.side_effect = claim
    executor = FakeExecutor()

    with pytest.raises(AggregateDispatchError) as exc_info:
        await Dispatcher(store, executor).run(NOW)

    assert executor.urls == ["/hooks/B"]
    error = exc_info.value.errors[0]
    assert isinstance(error, RecordDispatchError)
    assert error.record_id == "A"
    assert error.stage == "unexpected"


@pytest.mark.asyncio
async def test_metrics_are_fed_per_execution() -> None:
    """Each execution should be reported with its lag and outcome."""
    store = InMemoryRecordStore(
        [make_record("A"), make_record("B", persistent_store=True)]
    )
    metrics = DummyMetrics()
    executor = FakeExecutor(errors={"/hooks/B": TransportError("refused")})
    dispatcher = Dispatcher(store, executor, metrics=metrics, clock=lambda: NOW)

    with pytest.raises(AggregateDispatchError):
        await dispatcher.run(NOW)

    assert len(metrics.attempts) == 2
    by_status = {a.status_code: a for a in metrics.attempts}
    assert by_status[200].is_failed is False
    assert by_status[None].is_failed is True
    assert all(a.fired_at_sec - a.effective_after_sec == 3600 for a in metrics.attempts)
    assert len(metrics.passes) == 1
    assert metrics.passes[0].failed == 1
    assert metrics.passes[0].removed == 1


@pytest.mark.asyncio
async def test_outcome_of_process_one() -> None:
    """process_one should report the terminal state of the record."""
    store = InMemoryRecordStore([make_record("A", persistent_store=True)])
    dispatcher = Dispatcher(store, FakeExecutor())

    record = make_record("A", persistent_store=True)

    assert await dispatcher.process_one(record) == Outcome.PERSISTED
    assert await dispatcher.process_one(record) == Outcome.SKIPPED


def test_rejects_non_positive_concurrency() -> None:
    """max_concurrency must be at least one."""
    with pytest.raises(ValueError):
        Dispatcher(InMemoryRecordStore(), FakeExecutor(), max_concurrency=0)
