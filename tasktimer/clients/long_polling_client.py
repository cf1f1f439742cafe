"""HTTP long-polling message client built on :mod:`httpx`."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import timedelta
from typing import Awaitable, Callable, Dict, List, Optional

import httpx

from tasktimer.config import LongPollingConfig
from tasktimer.timing.timer import sleep

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str], None]
ErrorHandler = Callable[[Exception], None]
Sleep = Callable[[float], Awaitable[None]]

_MILLISECOND = timedelta(milliseconds=1)


class PollingError(RuntimeError):
    """Raised for protocol level long-polling failures."""


class LongPollingClient:
    """Poll a URL that holds each request open until new data is available.

    Every request asks the server to wait with ``Prefer: wait=<seconds>`` and
    sends the last seen ``ETag`` as ``If-None-Match``.  ``304 Not Modified``
    starts the next poll immediately.  Failures are reported to ``on_error``
    and retried after ``retry_millis`` using a plain delay.
    """

    @classmethod
    def create(
        cls,
        config: LongPollingConfig,
        on_message: Optional[MessageHandler] = None,
        on_error: Optional[ErrorHandler] = None,
    ) -> "LongPollingClient":
        http_client = httpx.AsyncClient(
            timeout=config.wait.total_seconds() + config.request_timeout,
            follow_redirects=True,
        )
        return cls(
            http_client,
            wait_millis=config.wait / _MILLISECOND,
            retry_millis=config.retry / _MILLISECOND,
            on_message=on_message,
            on_error=on_error,
            owns_client=True,
        )

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        wait_millis: float = 90_000,
        retry_millis: float = 1_000,
        on_message: Optional[MessageHandler] = None,
        on_error: Optional[ErrorHandler] = None,
        sleep_func: Sleep = sleep,
        owns_client: bool = False,
    ) -> None:
        self._http = http_client
        self._wait = wait_millis
        self._retry = retry_millis
        self._on_message = on_message
        self._on_error = on_error
        self._sleep = sleep_func
        self._owns_client = owns_client
        self._url: Optional[str] = None
        self._tag: Optional[str] = None
        self._connected = False
        self._task: Optional[asyncio.Task[None]] = None
        self.requests_sent: List[Dict[str, str]] = []

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def url(self) -> Optional[str]:
        return self._url

    # ------------------------------------------------------------------
    # Public API
    async def connect(self, url: str) -> None:
        """Start polling ``url`` in a background task."""

        if self._connected:
            raise PollingError("already connected")
        self._url = url
        self._connected = True
        self._task = asyncio.create_task(self._poll(url))

    async def close(self) -> None:
        """Stop polling; closes the HTTP client only if :meth:`create` built it.

        An exception that ended the polling loop, such as one raised by a
        handler, is re-raised here after the HTTP client is closed.
        """

        self._connected = False
        task, self._task = self._task, None
        try:
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        finally:
            if self._owns_client:
                await self._http.aclose()

    async def __aenter__(self) -> "LongPollingClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        await self.close()

    # ------------------------------------------------------------------
    # Internal helpers
    async def _poll(self, url: str) -> None:
        try:
            while self._connected:
                try:
                    response = await self._request(url)
                    self._handle_response(response)
                except (httpx.HTTPError, PollingError) as exc:
                    self._handle_error(exc)
                    await self._sleep(self._retry)
        finally:
            self._connected = False

    async def _request(self, url: str) -> httpx.Response:
        headers = {"Prefer": f"wait={_format_seconds(self._wait)}"}
        if self._tag:
            headers["If-None-Match"] = self._tag
        self.requests_sent.append(dict(headers))
        return await self._http.get(url, headers=headers)

    def _handle_response(self, response: httpx.Response) -> None:
        if response.status_code == httpx.codes.NOT_MODIFIED:
            return
        if not response.is_success:
            raise PollingError(f"HTTP error: {response.status_code} {response.reason_phrase}")
        self._tag = response.headers.get("ETag")
        if self._on_message is not None:
            self._on_message(response.text)

    def _handle_error(self, exc: Exception) -> None:
        logger.warning(
            "long polling %s failed: %s", self._url, exc, extra={"url": self._url, "event": "poll_failed"}
        )
        if self._on_error is not None:
            self._on_error(exc)


def _format_seconds(millis: float) -> str:
    seconds = millis / 1000
    if float(seconds).is_integer():
        return str(int(seconds))
    return str(seconds)


__all__ = ["LongPollingClient", "PollingError"]
