"""
Persistent-stream transport writing newline-framed JSON to a TCP collector.

The collector reads one snapshot per line, so every message is the compact
JSON body followed by exactly one `\\n`. Nothing is buffered: a send while
the connection is not ready makes one bounded connection attempt and writes
anyway, reporting the outcome without retrying. A broken connection stays
failed until the session is restarted.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from ...core.snapshot import Snapshot
from .base import (
    ConnectionPhase,
    ConnectionUnavailable,
    EncodingFailure,
    SendResult,
    encode_snapshot,
)

logger = logging.getLogger(__name__)

Opener = Callable[[str, int], Awaitable[tuple[asyncio.StreamReader, asyncio.StreamWriter]]]

FRAME_DELIMITER = b"\n"


def frame_message(body: str) -> bytes:
    """Encode a JSON body as one line for the line-oriented reader."""
    return body.encode("utf-8") + FRAME_DELIMITER


class StreamTransport:
    """Direct TCP client with a background connect loop and no send buffering."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        retry_interval: float = 2.0,
        connect_timeout: float = 5.0,
        opener: Opener | None = None,
    ) -> None:
        self._host = host
        self._port = port
        self._retry_interval = retry_interval
        self._connect_timeout = connect_timeout
        self._opener: Opener = opener or asyncio.open_connection
        self._phase = ConnectionPhase.DISCONNECTED
        self._writer: asyncio.StreamWriter | None = None
        self._connect_task: asyncio.Task[None] | None = None
        self._attempt: asyncio.Task[asyncio.StreamWriter] | None = None
        self._ready = asyncio.Event()
        self._closed = False

    @property
    def phase(self) -> ConnectionPhase:
        return self._phase

    @property
    def endpoint(self) -> str:
        return f"{self._host}:{self._port}"

    async def connect(self) -> None:
        if self._closed:
            logger.warning(
                "TCP transport for %s already disconnected; not reconnecting.", self.endpoint
            )
            return
        if self._connect_task is not None:
            return
        self._phase = ConnectionPhase.CONNECTING
        self._connect_task = asyncio.create_task(
            self._connect_loop(), name=f"tcp-connect-{self.endpoint}"
        )

    async def wait_ready(self, timeout: float) -> bool:
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._ready.wait(), timeout=timeout)
        return self._phase is ConnectionPhase.CONNECTED

    async def _open(self) -> asyncio.StreamWriter:
        _reader, writer = await asyncio.wait_for(
            self._opener(self._host, self._port), timeout=self._connect_timeout
        )
        return writer

    def _current_attempt(self) -> asyncio.Task[asyncio.StreamWriter]:
        # The connect loop and a send that finds no connection share one attempt.
        if self._attempt is None or self._attempt.done():
            self._attempt = asyncio.create_task(self._open(), name=f"tcp-open-{self.endpoint}")
        return self._attempt

    def _adopt(self, writer: asyncio.StreamWriter) -> None:
        if self._writer is writer:
            return
        self._writer = writer
        self._phase = ConnectionPhase.CONNECTED
        self._ready.set()
        logger.info("TCP connection ready: %s", self.endpoint)

    async def _connect_loop(self) -> None:
        while not self._closed and self._writer is None:
            try:
                writer = await asyncio.shield(self._current_attempt())
            except (OSError, TimeoutError) as exc:
                if self._phase is not ConnectionPhase.WAITING:
                    logger.warning(
                        "TCP endpoint %s unreachable (%s); waiting for it to come up.",
                        self.endpoint,
                        str(exc) or type(exc).__name__,
                    )
                self._phase = ConnectionPhase.WAITING
                await asyncio.sleep(self._retry_interval)
                continue
            self._adopt(writer)

    async def _connect_now(self) -> asyncio.StreamWriter:
        """Join or start one bounded connection attempt for an unready send."""
        try:
            writer = await asyncio.shield(self._current_attempt())
        except (OSError, TimeoutError) as exc:
            if self._phase is not ConnectionPhase.CONNECTED:
                self._phase = ConnectionPhase.WAITING
            raise ConnectionUnavailable(
                f"TCP endpoint {self.endpoint} unreachable ({str(exc) or type(exc).__name__})"
            ) from exc
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if self._closed and not (task is not None and task.cancelling()):
                raise ConnectionUnavailable("not connected") from None
            raise
        if self._closed:
            writer.close()
            raise ConnectionUnavailable("not connected")
        self._adopt(writer)
        return writer

    async def send(self, snapshot: Snapshot) -> SendResult:
        if self._closed:
            return SendResult.failed(ConnectionUnavailable("not connected"))
        try:
            message = frame_message(encode_snapshot(snapshot))
        except EncodingFailure as exc:
            logger.error("TCP send aborted: %s", exc)
            return SendResult.failed(exc)

        if self._phase is ConnectionPhase.FAILED:
            error = ConnectionUnavailable(f"TCP connection to {self.endpoint} failed earlier")
            logger.error("TCP send dropped: %s", error)
            return SendResult.failed(error)
        try:
            writer = self._writer or await self._connect_now()
        except ConnectionUnavailable as exc:
            logger.error("TCP send dropped: %s", exc)
            return SendResult.failed(exc)

        try:
            writer.write(message)
            await writer.drain()
        except OSError as exc:
            self._phase = ConnectionPhase.FAILED
            logger.error("TCP send to %s failed: %s", self.endpoint, exc)
            return SendResult.failed(ConnectionUnavailable(str(exc)))
        logger.info("Sent %d bytes to %s", len(message), self.endpoint)
        return SendResult.sent()

    async def drain(self, timeout: float) -> bool:
        return True

    async def disconnect(self) -> None:
        if self._closed:
            return
        self._closed = True
        task, self._connect_task = self._connect_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        attempt, self._attempt = self._attempt, None
        if attempt is not None:
            attempt.cancel()
            with contextlib.suppress(asyncio.CancelledError, OSError, TimeoutError):
                stray = await attempt
                if stray is not self._writer:
                    stray.close()
        writer, self._writer = self._writer, None
        if writer is not None:
            writer.close()
            with contextlib.suppress(OSError):
                await writer.wait_closed()
        self._phase = ConnectionPhase.CANCELLED
        logger.info("TCP connection to %s cancelled", self.endpoint)


__all__ = ["FRAME_DELIMITER", "StreamTransport", "frame_message"]
