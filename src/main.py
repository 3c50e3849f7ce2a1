"""Application entrypoint (polling mode) and shared composition."""

import asyncio
import logging

from src.adapters.driven.config.settings import load_settings
from src.adapters.driven.http.client import HttpClient
from src.adapters.driven.logging.logging_config import configure_logs
from src.adapters.driven.metrics.dispatch_metrics import Metrics
from src.adapters.driven.store.dynamodb import DynamoRecordStore
from src.adapters.driving.signals import make_stop_on_sigterm
from src.core.dispatch import Dispatcher
from src.core.event_loop import start_main_loop
from src.ports.dispatch import PassSummary
from src.ports.metrics import MetricsPort
from src.ports.records import RecordStorePort
from src.ports.settings import SettingsPort

__all__ = ["main", "run_once", "make_http_client", "make_store"]

logger = logging.getLogger(__name__)


def make_store(settings: SettingsPort) -> DynamoRecordStore:
    """Build the Record Store described by the settings."""
    return DynamoRecordStore(settings.table_name, region=settings.aws_region)


def make_http_client(settings: SettingsPort) -> HttpClient:
    """Build the Request Executor described by the settings."""
    return HttpClient(
        settings.base_url,
        api_token=settings.api_token,
        user_agent=settings.user_agent,
        timeout=settings.http_timeout_in_sec,
        connect_attempts=settings.http_connect_attempts,
    )


async def run_once(
    settings: SettingsPort,
    store: RecordStorePort | None = None,
    metrics: MetricsPort | None = None,
) -> PassSummary:
    """Run exactly one scheduling pass.

    Args:
        settings: Runtime settings.
        store: Record Store; the DynamoDB table from settings when omitted.
        metrics: Optional execution metrics collector.

    Returns:
        Summary of the pass.

    Raises:
        StoreError: The due query failed.
        AggregateDispatchError: At least one record failed.
    """
    store = store if store is not None else make_store(settings)
    async with make_http_client(settings) as http:
        dispatcher = Dispatcher(
            store,
            http,
            max_concurrency=settings.max_concurrency,
            metrics=metrics,
        )
        return await dispatcher.run()


async def main() -> None:
    """Start the dispatcher in polling mode.

    Startup sequence:
    1. Configure logging.
    2. Load and validate configuration.
    3. Run one pass per poll period.
    4. Gracefully shutdown on SIGTERM.
    """
    configure_logs()
    logger.info("Starting scheduled request dispatcher...")

    try:
        config = load_settings()
    except (RuntimeError, ValueError) as exc:
        logger.error(
            "Configuration error: %s\n"
            "Hint: check TABLE_NAME, BASE_URL and the numeric settings "
            "(MAX_CONCURRENCY, POLL_PERIOD_IN_SECONDS, HTTP_TIMEOUT_IN_SECONDS).",
            exc,
        )
        return

    settings_port = config.to_port()
    store = make_store(settings_port)
    metrics = Metrics()

    async with make_http_client(settings_port) as http:
        dispatcher = Dispatcher(
            store,
            http,
            max_concurrency=settings_port.max_concurrency,
            metrics=metrics,
        )
        try:
            await start_main_loop(
                settings=settings_port,
                stop=make_stop_on_sigterm(),
                pass_fn=dispatcher.run,
            )
        except Exception as e:
            logger.error(f"Unhandled exception in main loop: {e}", exc_info=True)

    logger.info("Scheduled request dispatcher stopped.")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user (Ctrl+C).")
