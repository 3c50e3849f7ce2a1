"""Scheduling pass: query due records, claim, execute and finalize each one."""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from src.ports.dispatch import Outcome, PassSummary
from src.ports.errors import (
    AggregateDispatchError,
    RecordDispatchError,
    SchedulerError,
)
from src.ports.http import RequestExecutorPort
from src.ports.metrics import DispatchAttemptDto, MetricsPort
from src.ports.records import RecordStorePort, Response, ScheduledRequest, utc_now

__all__ = ["Dispatcher", "DEFAULT_MAX_CONCURRENCY"]

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 16
FIRST_FAILING_HTTP_CODE = 400


class Dispatcher:
    """Runs scheduling passes over a Record Store.

    One pass fans out one task per due record, at most max_concurrency
    of them at a time, and waits for all of them. A record failure never
    stops its siblings; failures are only reported once the whole pass
    has finished.
    """

    def __init__(
        self,
        store: RecordStorePort,
        executor: RequestExecutorPort,
        *,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        metrics: MetricsPort | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            store: Record Store holding the scheduled requests.
            executor: Client performing the HTTP calls.
            max_concurrency: Upper bound of records processed at once.
            metrics: Optional collector fed after every execution.
            clock: Source of the current UTC time.
        """
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be positive (got: {max_concurrency})")
        self.store = store
        self.executor = executor
        self.max_concurrency = max_concurrency
        self.metrics = metrics
        self._clock = clock

    async def run(self, now: datetime | None = None) -> PassSummary:
        """Run one scheduling pass.

        Args:
            now: Reference time for the due query; defaults to the clock.

        Returns:
            Counters of the pass. An empty due set is a success.

        Raises:
            StoreError: The due query failed; no record was touched.
            AggregateDispatchError: At least one record failed. Raised only
                after every record of the pass has been handled.
        """
        now = now or self._clock()
        records = await self.store.query_due(now)
        summary = PassSummary(due=len(records))
        logger.info(f"Pass started: {len(records)} due scheduled requests")

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(record: ScheduledRequest) -> Outcome:
            async with semaphore:
                return await self.process_one(record)

        results = await asyncio.gather(
            *(_bounded(record) for record in records),
            return_exceptions=True,
        )

        errors: list[RecordDispatchError] = []
        for record, result in zip(records, results):
            if isinstance(result, Outcome):
                summary.count(result)
                continue
            if not isinstance(result, Exception):
                raise result
            if not isinstance(result, RecordDispatchError):
                logger.error(f"Unexpected error processing {record}: {result}", exc_info=result)
                result = RecordDispatchError(record.id, "unexpected", result)
            errors.append(result)

        summary.failed = len(errors)
        if self.metrics is not None:
            self.metrics.record_pass(summary)
            if summary.due:
                logger.info(f"Dispatch metrics: {self.metrics}")

        if errors:
            logger.error(f"Pass finished with failures: {summary}")
            raise AggregateDispatchError(errors, summary)

        logger.info(f"Pass finished: {summary}")
        return summary

    async def process_one(self, record: ScheduledRequest) -> Outcome:
        """Claim, execute and finalize one record.

        Args:
            record: Due record returned by the query.

        Returns:
            What happened to the record.

        Raises:
            RecordDispatchError: The claim, the execution or the finalize
                step failed. A record failing past its claim stays locked.
        """
        try:
            claimed = await self.store.claim(record.id)
        except SchedulerError as e:
            logger.error(f"Claim failed for {record}: {e}")
            raise RecordDispatchError(record.id, "claim", e) from e

        if not claimed:
            logger.info(f"Skipping {record}: claimed by a concurrent pass")
            return Outcome.SKIPPED

        fired_at = self._clock()
        logger.debug(f"Executing {record} method={record.method} url={record.url}")
        try:
            response = await self.executor.execute(
                record.method, record.url, record.headers, record.payload
            )
        except Exception as e:  # noqa: BLE001
            self._observe(record, fired_at, None)
            logger.warning(f"Execution failed for {record}: {e}")
            try:
                await self.store.record_failure(record.id, e)
            except Exception as secondary:  # noqa: BLE001
                logger.error(f"Could not record failure reason for {record}: {secondary}")
                raise RecordDispatchError(record.id, "execute", e, secondary=secondary) from e
            raise RecordDispatchError(record.id, "execute", e) from e

        self._observe(record, fired_at, response)
        try:
            if record.persistent_store:
                await self.store.record_result(record.id, response, self._clock())
                return Outcome.PERSISTED
            await self.store.remove(record.id)
            return Outcome.REMOVED
        except SchedulerError as e:
            logger.error(f"Finalize failed for {record}: {e}")
            raise RecordDispatchError(record.id, "finalize", e) from e

    def _observe(self, record: ScheduledRequest, fired_at: datetime, response: Response | None) -> None:
        if self.metrics is None:
            return
        self.metrics.update(
            DispatchAttemptDto(
                effective_after_sec=record.effective_after.timestamp(),
                fired_at_sec=fired_at.timestamp(),
                is_failed=response is None or response.code >= FIRST_FAILING_HTTP_CODE,
                status_code=None if response is None else response.code,
            )
        )
