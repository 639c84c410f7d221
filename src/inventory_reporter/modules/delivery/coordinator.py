"""
Session coordinator that sends exactly one inventory snapshot.

The coordinator caches the latest reading from every signal topic and fires
once per session: on the first location fix, or when the location timeout
elapses, whichever comes first. Handlers check and set `has_fired` without
awaiting in between, so concurrent triggers on the event loop cannot both
pass the guard.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Literal

from ...core.bus import Subscription
from ...core.contracts import (
    BATTERY_TOPIC,
    DELIVERY_TOPIC,
    LOCATION_TOPIC,
    NETWORK_TOPIC,
    ORIENTATION_TOPIC,
    THERMAL_TOPIC,
    BaseModule,
    BasePayload,
    BatteryStatus,
    DeliveryReport,
    GeoFix,
    HealthStatus,
    ModuleConfig,
    NetworkPathStatus,
    OrientationStatus,
    ThermalStatus,
)
from ...core.snapshot import HostFacts, SessionState, assemble_snapshot
from ..transport.base import SendOutcome, SendResult, Transport

logger = logging.getLogger(__name__)

Trigger = Literal["location", "timeout"]


class DeliveryCoordinator(BaseModule):
    """Owns the transport and decides when the single snapshot goes out."""

    name = "modules.delivery.coordinator"

    def __init__(self, *, transport: Transport, facts: HostFacts) -> None:
        super().__init__()
        self._transport = transport
        self._facts = facts
        self._timeout_seconds = 10.0
        self._delivery_topic = DELIVERY_TOPIC
        self._subscriptions: list[Subscription] = []
        self._state: SessionState | None = None
        self._timer: asyncio.Task[None] | None = None
        self._delivery: asyncio.Task[None] | None = None
        self._trigger: Trigger | None = None
        self._last_report: DeliveryReport | None = None
        self.delivered = asyncio.Event()

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def state(self) -> SessionState | None:
        return self._state

    @property
    def last_report(self) -> DeliveryReport | None:
        return self._last_report

    async def configure(self, config: ModuleConfig) -> None:
        await super().configure(config)
        options = config.options
        self._timeout_seconds = float(
            options.get("location_timeout_seconds", self._timeout_seconds)
        )
        self._delivery_topic = options.get("delivery_topic", self._delivery_topic)

    async def start(self, timeout: float | None = None) -> None:
        if self._state is not None:
            logger.debug("DeliveryCoordinator already started; ignoring start().")
            return
        if timeout is not None:
            self._timeout_seconds = float(timeout)
        self._state = SessionState()
        self._trigger = None
        self._last_report = None
        self.delivered.clear()
        handlers = {
            BATTERY_TOPIC: self._handle_battery,
            THERMAL_TOPIC: self._handle_thermal,
            NETWORK_TOPIC: self._handle_network,
            ORIENTATION_TOPIC: self._handle_orientation,
            LOCATION_TOPIC: self._handle_location,
        }
        for topic, handler in handlers.items():
            self._subscriptions.append(self.bus.subscribe(topic, handler))
        await self._transport.connect()
        if self._state is None or self._state.has_fired:
            return
        self._timer = asyncio.create_task(
            self._expire(self._timeout_seconds), name="location-timeout"
        )
        logger.info(
            "DeliveryCoordinator armed; sending on first location fix or after %.1fs",
            self._timeout_seconds,
        )

    async def stop(self) -> None:
        for subscription in self._subscriptions:
            self.bus.unsubscribe(subscription)
        self._subscriptions.clear()
        if self._timer:
            self._timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._timer
            self._timer = None
        if self._delivery:
            await self._delivery
            self._delivery = None
        if self._state is not None and not self._state.has_fired:
            logger.info("Session stopped before any trigger; nothing was sent.")
        self._state = None
        await self._transport.disconnect()

    async def _handle_battery(self, topic: str, payload: BasePayload) -> None:
        if self._state is not None and isinstance(payload, BatteryStatus):
            self._state.battery = payload

    async def _handle_thermal(self, topic: str, payload: BasePayload) -> None:
        if self._state is not None and isinstance(payload, ThermalStatus):
            if payload.state.is_warning and payload.state != self._state.thermal.state:
                logger.warning("Device thermal state is %s", payload.state.value)
            self._state.thermal = payload

    async def _handle_network(self, topic: str, payload: BasePayload) -> None:
        if self._state is not None and isinstance(payload, NetworkPathStatus):
            self._state.network = payload

    async def _handle_orientation(self, topic: str, payload: BasePayload) -> None:
        if self._state is not None and isinstance(payload, OrientationStatus):
            self._state.orientation = payload

    async def _handle_location(self, topic: str, payload: BasePayload) -> None:
        if self._state is None or not isinstance(payload, GeoFix):
            logger.debug("Ignoring payload on %s", topic)
            return
        self._state.latest_location = payload
        self._fire("location")

    async def _expire(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._fire("timeout"):
            logger.info("No location fix within %.1fs; sending without location.", delay)

    def _fire(self, trigger: Trigger) -> bool:
        state = self._state
        if state is None or state.has_fired:
            return False
        state.has_fired = True
        self._trigger = trigger
        if trigger == "location" and self._timer and not self._timer.done():
            self._timer.cancel()
        self._delivery = asyncio.create_task(
            self._deliver(state, trigger), name="snapshot-delivery"
        )
        return True

    async def _deliver(self, state: SessionState, trigger: Trigger) -> None:
        snapshot = assemble_snapshot(state, self._facts)
        result: SendResult = await self._transport.send(snapshot)
        error = str(result.error) if result.error else None
        if result.outcome is SendOutcome.SENT:
            logger.info("Snapshot sent (trigger=%s)", trigger)
        elif result.outcome is SendOutcome.QUEUED:
            logger.info("Snapshot queued until the broker connects (trigger=%s)", trigger)
        else:
            logger.error("Snapshot delivery failed (trigger=%s): %s", trigger, error)
        report = DeliveryReport(
            trigger=trigger,
            outcome=result.outcome.value,
            has_location=snapshot.location is not None,
            error=error,
        )
        self._last_report = report
        self.delivered.set()
        await self.bus.publish(self._delivery_topic, report)

    async def health(self) -> HealthStatus:
        report = self._last_report
        if report is not None and report.outcome == SendOutcome.FAILED.value:
            status = "error"
        elif self._state is None and report is None:
            status = "degraded"
        else:
            status = "healthy"
        return HealthStatus(
            status=status,
            details={
                "armed": self._timer is not None and not self._timer.done(),
                "fired": self._trigger is not None,
                "trigger": self._trigger,
                "outcome": report.outcome if report else None,
                "transport_phase": self._transport.phase.value,
            },
        )


__all__ = ["DeliveryCoordinator"]
