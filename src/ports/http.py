"""Request Executor port definition (interface)."""

from collections.abc import Mapping
from typing import Protocol

from src.ports.records import Response

__all__ = ["RequestExecutorPort"]


class RequestExecutorPort(Protocol):
    """Performs the HTTP call described by a scheduled request.

    Decouples the dispatch engine from the HTTP implementation.
    Implementations must be safe for concurrent use.
    """

    async def execute(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: str,
    ) -> Response:
        """Send one request and return its normalized outcome.

        Args:
            method: HTTP method name.
            url: Absolute URL or URL relative to the configured base URL.
            headers: Caller headers.
            body: Request body, empty for none.

        Returns:
            Upstream status code and raw body text.

        Raises:
            InvalidRequestError: Method or URL cannot be built.
            TransportError: Network-level failure.
            ReadError: Body could not be read.
        """
        ...
