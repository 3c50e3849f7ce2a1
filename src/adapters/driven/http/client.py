"""HTTP client adapter executing scheduled requests."""

import asyncio
import logging
import re
from collections.abc import Mapping
from types import TracebackType

import aiohttp
from aiohttp import ClientTimeout, hdrs
from multidict import CIMultiDict
from yarl import URL

from src.adapters.driven.http.retry import retry
from src.ports.errors import (
    ExecutorError,
    InvalidRequestError,
    ReadError,
    TransportError,
    describe,
)
from src.ports.http import RequestExecutorPort
from src.ports.records import Response

__all__ = ["HttpClient"]

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30
CONNECT_ATTEMPTS = 3

# RFC 9110 token
_METHOD_RE = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")


class HttpClient(RequestExecutorPort):
    """HTTP client executing the calls described by scheduled requests.

    Features:
    - Relative URLs resolved against a configured base URL.
    - Configured User-Agent and bearer token added to every request.
    - Retry with backoff when the connection cannot be established.
    - Context manager for proper resource cleanup.
    """

    def __init__(
        self,
        base_url: str = "",
        *,
        api_token: str = "",
        user_agent: str = "",
        timeout: float = REQUEST_TIMEOUT,
        connect_attempts: int = CONNECT_ATTEMPTS,
    ) -> None:
        """Initialize HTTP client.

        Args:
            base_url: Base for relative URLs; empty leaves URLs untouched.
            api_token: Bearer token; empty sends no Authorization header.
            user_agent: User-Agent header; empty keeps the aiohttp default.
            timeout: Total timeout in seconds for one call.
            connect_attempts: Attempts when the connection fails.

        Raises:
            ValueError: base_url is not an absolute http(s) URL.
        """
        self.base_url: URL | None = None
        if base_url:
            parsed = URL(base_url)
            if not parsed.is_absolute() or parsed.scheme not in ("http", "https"):
                raise ValueError(f"Invalid base URL: {base_url}")
            self.base_url = parsed
        self.api_token = api_token
        self.user_agent = user_agent
        self.timeout = ClientTimeout(total=timeout)
        self.session: aiohttp.ClientSession | None = None
        self._send = retry(times=connect_attempts)(self._send_once)

    async def __aenter__(self) -> "HttpClient":
        """Enter async context manager (start session).

        Returns:
            Self for use in async with statement.
        """
        self.session = aiohttp.ClientSession(timeout=self.timeout)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Exit async context manager (close session)."""
        if self.session:
            await self.session.close()
            self.session = None

    def resolve(self, url: str) -> URL:
        """Build the absolute target URL of a request.

        Raises:
            InvalidRequestError: URL cannot be parsed or is not absolute
                after resolution.
        """
        try:
            target = URL(url)
            if self.base_url is not None:
                target = self.base_url.join(target)
        except (TypeError, ValueError) as e:
            raise InvalidRequestError(f"invalid url={url!r}: {describe(e)}") from e

        if not target.is_absolute() or target.scheme not in ("http", "https"):
            raise InvalidRequestError(f"invalid url={url!r}: not an absolute http(s) URL")
        return target

    def outbound_headers(self, headers: Mapping[str, str]) -> CIMultiDict[str]:
        """Caller headers plus the configured ones, configured values winning."""
        outbound: CIMultiDict[str] = CIMultiDict(headers)
        if self.user_agent:
            outbound[hdrs.USER_AGENT] = self.user_agent
        if self.api_token:
            outbound[hdrs.AUTHORIZATION] = f"Bearer {self.api_token}"
        return outbound

    async def _send_once(self, method: str, url: URL, headers: CIMultiDict[str], body: str) -> Response:
        """Single HTTP request (connection failures retried via decorator).

        Raises:
            RuntimeError: If session not initialized.
            ReadError: Response body could not be read.
            aiohttp exceptions: Network/timeout errors.
        """
        if self.session is None:
            raise RuntimeError("Session not initialized; use 'async with' context manager")

        # A str body would otherwise be sent as text/plain
        skip = () if hdrs.CONTENT_TYPE in headers else (hdrs.CONTENT_TYPE,)
        async with self.session.request(
            method, url, headers=headers, data=body or None, skip_auto_headers=skip
        ) as resp:
            try:
                text = await resp.text(errors="replace")
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise ReadError(f"read body method={method} url={url}: {describe(e)}") from e
            return Response(code=resp.status, body=text)

    async def execute(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: str,
    ) -> Response:
        """Send one scheduled request.

        Args:
            method: HTTP method name.
            url: Absolute URL, or relative to base_url.
            headers: Caller headers.
            body: Request body, empty for none.

        Returns:
            Status code and raw body text, whatever the status.

        Raises:
            InvalidRequestError: Method or URL cannot be built.
            TransportError: Network-level failure.
            ReadError: Body could not be read.
        """
        if not _METHOD_RE.fullmatch(method or ""):
            raise InvalidRequestError(f"invalid method={method!r}")
        target = self.resolve(url)
        outbound = self.outbound_headers(headers)

        logger.info(f"Sending method={method} url={target}")
        try:
            resp = await self._send(method, target, outbound, body)
        except ExecutorError:
            raise
        except aiohttp.InvalidURL as e:
            raise InvalidRequestError(f"invalid url={target}: {describe(e)}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"method={method} url={target}: {describe(e)}") from e
        except ValueError as e:
            raise InvalidRequestError(f"method={method} url={target}: {describe(e)}") from e

        logger.info(f"Received status={resp.code} method={method} url={target}")
        return resp
