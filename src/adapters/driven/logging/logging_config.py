"""Console logging setup for the dispatcher."""

import logging
import os

__all__ = ["configure_logs"]

_HANDLER_NAME = "scheduled-requests-console"


def configure_logs() -> None:
    """Configure console logging.

    Sets up:
    - Root logger at INFO level.
    - Framework loggers (aiohttp, asyncio, boto) at WARNING level.
    - Application loggers (src) at LOG_LEVEL, DEBUG by default.
    - Structured format with timestamp, level, module, and line number.

    Safe to call on every Lambda invocation: the handler is only added once.
    """
    root = logging.getLogger()
    root.setLevel(logging.INFO)

    if not any(h.get_name() == _HANDLER_NAME for h in root.handlers):
        log_format = "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s"
        date_format = "%d/%m/%y %H:%M:%S"

        handler = logging.StreamHandler()
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter(log_format, date_format))
        root.addHandler(handler)

    # Suppress verbose framework loggers
    for name in ("aiohttp", "asyncio", "botocore", "boto3", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)

    # Application loggers
    logging.getLogger("src").setLevel(os.getenv("LOG_LEVEL", "DEBUG").upper())
