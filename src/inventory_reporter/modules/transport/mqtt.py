"""
Queued-publish transport backed by an MQTT broker.

A background task keeps one broker session alive and reconnects after every
loss. Snapshots sent while the session is down are parked as a single pending
payload: a newer snapshot replaces an older one, and whatever is pending goes
out as soon as the broker acknowledges the next connection.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

import aiomqtt

from ...core.snapshot import Snapshot
from .base import (
    ConnectionPhase,
    ConnectionUnavailable,
    EncodingFailure,
    SendResult,
    encode_snapshot,
)

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], AbstractAsyncContextManager[Any]]


class QueuedPublishTransport:
    """MQTT publisher with auto-reconnect and latest-wins buffering."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        topic: str,
        qos: int = 1,
        keepalive: int = 60,
        client_id_prefix: str = "inventory-reporter",
        reconnect_interval: float = 5.0,
        username: str | None = None,
        password: str | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._host = host
        self._port = port
        self._topic = topic
        self._qos = qos
        self._keepalive = keepalive
        self._reconnect_interval = reconnect_interval
        self._username = username
        self._password = password
        self.client_id = f"{client_id_prefix}-{uuid.uuid4().hex[:8]}"
        self._client_factory = client_factory or self._default_client_factory
        self._phase = ConnectionPhase.DISCONNECTED
        self._client: Any | None = None
        self._pending_payload: str | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._session_task: asyncio.Task[None] | None = None
        self._closed = False
        self._published_total = 0

    @property
    def phase(self) -> ConnectionPhase:
        return self._phase

    @property
    def pending_payload(self) -> str | None:
        return self._pending_payload

    @property
    def published_total(self) -> int:
        return self._published_total

    @property
    def endpoint(self) -> str:
        return f"{self._host}:{self._port}"

    def _default_client_factory(self) -> AbstractAsyncContextManager[Any]:
        return aiomqtt.Client(
            self._host,
            self._port,
            identifier=self.client_id,
            keepalive=self._keepalive,
            username=self._username,
            password=self._password,
        )

    async def connect(self) -> None:
        if self._closed:
            logger.warning(
                "MQTT transport for %s already disconnected; not reconnecting.", self.endpoint
            )
            return
        if self._session_task is not None:
            return
        self._phase = ConnectionPhase.CONNECTING
        self._session_task = asyncio.create_task(
            self._session_loop(), name=f"mqtt-session-{self.client_id}"
        )

    async def _session_loop(self) -> None:
        while not self._closed:
            self._phase = ConnectionPhase.CONNECTING
            try:
                async with self._client_factory() as client:
                    self._client = client
                    self._phase = ConnectionPhase.CONNECTED
                    logger.info("MQTT connected to %s as %s", self.endpoint, self.client_id)
                    await self._flush_pending(client)
                    # Nothing is subscribed; iteration only ends when the session drops.
                    async for _message in client.messages:
                        pass
            except (aiomqtt.MqttError, OSError) as exc:
                logger.warning(
                    "MQTT session with %s unavailable (%s); retrying in %.1fs",
                    self.endpoint,
                    exc,
                    self._reconnect_interval,
                )
            finally:
                self._client = None
            if self._closed:
                break
            self._phase = ConnectionPhase.CONNECTING
            await asyncio.sleep(self._reconnect_interval)

    async def _flush_pending(self, client: Any) -> None:
        payload = self._pending_payload
        if payload is None:
            return
        await client.publish(self._topic, payload=payload, qos=self._qos)
        self._published_total += 1
        if self._pending_payload is payload:
            self._pending_payload = None
            self._idle.set()
        logger.info("Flushed pending snapshot to %s on connect", self._topic)

    def _park(self, payload: str) -> None:
        if self._pending_payload is not None:
            logger.info("Replacing pending snapshot with a newer one")
        self._pending_payload = payload
        self._idle.clear()

    async def send(self, snapshot: Snapshot) -> SendResult:
        if self._closed:
            return SendResult.failed(ConnectionUnavailable("not connected"))
        try:
            payload = encode_snapshot(snapshot)
        except EncodingFailure as exc:
            logger.error("MQTT publish aborted: %s", exc)
            return SendResult.failed(exc)

        client = self._client
        if client is None or self._phase is not ConnectionPhase.CONNECTED:
            self._park(payload)
            logger.info("MQTT %s; snapshot queued until connected", self._phase.value)
            return SendResult.queued()

        try:
            await client.publish(self._topic, payload=payload, qos=self._qos)
        except aiomqtt.MqttError as exc:
            logger.warning("MQTT publish failed (%s); snapshot queued for reconnect", exc)
            self._park(payload)
            return SendResult.queued()
        self._published_total += 1
        logger.info("Published snapshot to %s (qos=%d)", self._topic, self._qos)
        return SendResult.sent()

    async def drain(self, timeout: float) -> bool:
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        return self._pending_payload is None

    async def disconnect(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._session_task is not None:
            self._session_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._session_task
            self._session_task = None
        self._client = None
        if self._pending_payload is not None:
            logger.warning("MQTT transport disconnected with an undelivered snapshot pending")
        self._phase = ConnectionPhase.DISCONNECTED
        logger.info("MQTT transport for %s disconnected", self.endpoint)


__all__ = ["QueuedPublishTransport"]
