"""AWS Lambda entrypoint: one scheduling pass per scheduled invocation."""

import asyncio
import logging
from typing import Any

from src.adapters.driven.config.settings import load_settings
from src.adapters.driven.logging.logging_config import configure_logs
from src.main import run_once
from src.ports.errors import SchedulerError

__all__ = ["handler"]

logger = logging.getLogger(__name__)


def handler(event: dict[str, Any] | None = None, context: Any = None) -> dict[str, int]:
    """Run one pass for a scheduled (EventBridge) invocation.

    Scheduled events are invoked asynchronously, so a raised error makes the
    platform retry the whole pass. Records that failed are locked and will not
    be picked up again by the retry; only records the failed pass never
    reached are.

    Args:
        event: Scheduler event (unused).
        context: Lambda context (unused).

    Returns:
        Pass summary counters.

    Raises:
        RuntimeError/ValueError: Invalid configuration.
        StoreError: The due query failed.
        AggregateDispatchError: At least one record failed.
    """
    configure_logs()
    settings = load_settings().to_port()
    try:
        summary = asyncio.run(run_once(settings))
    except SchedulerError as e:
        logger.error(f"Pass failed, the invocation will be retried: {e}")
        raise
    return summary.as_dict()
