"""Polling loop that runs one scheduling pass per period."""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from src.ports.dispatch import PassSummary
from src.ports.errors import AggregateDispatchError, StoreError
from src.ports.settings import SettingsPort

__all__ = ["start_main_loop", "get_now_time"]

logger = logging.getLogger(__name__)


def get_now_time() -> float:
    """Get current monotonic time in seconds.

    Uses event loop's monotonic clock for accurate scheduling
    without wall-clock drift.

    Returns:
        Current time in seconds (monotonic).
    """
    return asyncio.get_running_loop().time()


async def start_main_loop(
    settings: SettingsPort,
    stop: asyncio.Event,
    pass_fn: Callable[[], Awaitable[PassSummary]],
) -> None:
    """Run the main polling loop.

    Periodically:
    1. Run one scheduling pass and wait for it to finish.
    2. Log its summary or its failures.
    3. Sleep until the next period starts (based on monotonic time),
       waking early if stop is set.
    4. Repeat until stop is set.

    Args:
        settings: Runtime configuration (poll period).
        stop: Event that ends the loop once set.
        pass_fn: Async function running one pass.

    Notes:
        - Passes never overlap within one process: overlapping passes would
          race on the same due records.
        - A failed pass is logged and the loop carries on; failed records
          stay locked until unlocked by an operator.
    """
    next_tick: float = get_now_time()

    while not stop.is_set():
        try:
            summary = await pass_fn()
            logger.debug(f"Pass summary: {summary}")
        except AggregateDispatchError as e:
            for message in e.messages:
                logger.error(f"Scheduled request failed: {message}")
        except StoreError as e:
            logger.error(f"Pass aborted, due query failed: {e}")
        except Exception as e:  # noqa: BLE001
            logger.error(f"Unexpected error in scheduling pass: {e}", exc_info=True)

        next_tick += settings.poll_period_in_sec
        sleep_duration = max(0, next_tick - get_now_time())
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(stop.wait(), timeout=sleep_duration)
