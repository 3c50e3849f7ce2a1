"""Healthcheck validator for container orchestration."""

import asyncio
import logging

from src.adapters.driven.config.settings import load_settings
from src.adapters.driven.logging.logging_config import configure_logs
from src.adapters.driven.store.dynamodb import DynamoRecordStore

__all__ = ["main"]

logger = logging.getLogger(__name__)


def main() -> int:
    """Run health check for container orchestration.

    Validates:
    - Required environment variables are set and valid.
    - The scheduled requests table is reachable.

    Returns:
        0 if healthy, 1 if unhealthy.
    """
    configure_logs()

    try:
        settings = load_settings()
        store = DynamoRecordStore(settings.table_name, region=settings.aws_region)
        asyncio.run(store.ping())
    except Exception as exc:
        logger.error(f"Dispatcher healthcheck FAILED: {exc}")
        return 1

    logger.info("Dispatcher healthcheck OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
