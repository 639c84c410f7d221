"""
Location source.

Fixes come from a pluggable `GeoProvider`: a static, configured position for
fixed installations or an HTTP IP-geolocation lookup. New fixes are published
only after the device has moved at least `distance_filter_m` metres. Denied
access stops polling for the rest of the session; the delivery coordinator
then reports without a location once its timeout elapses.
"""

from __future__ import annotations

import datetime as dt
import logging
import math
from typing import Any, Protocol, runtime_checkable

import httpx

from ...core.contracts import LOCATION_TOPIC, BasePayload, GeoFix, ModuleConfig
from .base import PollingSignalSource

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6_371_000.0


class LocationUnavailable(RuntimeError):
    """Raised when a provider cannot produce a fix right now."""


@runtime_checkable
class GeoProvider(Protocol):
    async def locate(self) -> GeoFix | None: ...


class StaticGeoProvider:
    """Reports a configured position, stamped with the current time."""

    def __init__(
        self, latitude: float | None, longitude: float | None, altitude: float | None = None
    ) -> None:
        self._latitude = latitude
        self._longitude = longitude
        self._altitude = altitude

    async def locate(self) -> GeoFix | None:
        if self._latitude is None or self._longitude is None:
            return None
        return GeoFix(
            latitude=self._latitude,
            longitude=self._longitude,
            altitude=self._altitude,
            timestamp=dt.datetime.now(tz=dt.UTC),
        )


class HttpGeoProvider:
    """Looks up an approximate position from an IP geolocation endpoint."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._transport = transport

    async def locate(self) -> GeoFix | None:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.get(self._url)
        except httpx.HTTPError as exc:
            raise LocationUnavailable(f"geolocation request failed: {exc}") from exc
        if response.status_code in (401, 403):
            raise PermissionError(f"geolocation refused with HTTP {response.status_code}")
        if response.is_error:
            raise LocationUnavailable(f"geolocation returned HTTP {response.status_code}")
        try:
            data: dict[str, Any] = response.json()
        except ValueError as exc:
            raise LocationUnavailable("geolocation response is not JSON") from exc
        latitude = data.get("latitude", data.get("lat"))
        longitude = data.get("longitude", data.get("lon"))
        if latitude is None or longitude is None:
            return None
        altitude = data.get("altitude")
        return GeoFix(
            latitude=float(latitude),
            longitude=float(longitude),
            altitude=float(altitude) if altitude is not None else None,
            timestamp=dt.datetime.now(tz=dt.UTC),
        )


def distance_m(a: GeoFix, b: GeoFix) -> float:
    """Great-circle distance between two fixes (haversine)."""
    lat1, lat2 = math.radians(a.latitude), math.radians(b.latitude)
    dlat = lat2 - lat1
    dlon = math.radians(b.longitude - a.longitude)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))


class LocationSource(PollingSignalSource):
    name = "modules.signals.location"
    topic = LOCATION_TOPIC

    def __init__(
        self,
        *,
        provider: GeoProvider | None = None,
        poll_interval_seconds: float = 30.0,
    ) -> None:
        super().__init__(poll_interval_seconds=poll_interval_seconds)
        self._provider = provider
        self._distance_filter_m = 10.0
        self._denied = False

    @property
    def denied(self) -> bool:
        return self._denied

    async def configure(self, config: ModuleConfig) -> None:
        await super().configure(config)
        options = config.options
        self._distance_filter_m = float(options.get("distance_filter_m", self._distance_filter_m))
        if self._provider is None:
            self._provider = self._build_provider(options)

    @staticmethod
    def _build_provider(options: dict[str, Any]) -> GeoProvider:
        if options.get("provider", "static") == "http":
            return HttpGeoProvider(
                options.get("url", "https://ipapi.co/json/"),
                timeout=float(options.get("request_timeout", 5.0)),
            )
        return StaticGeoProvider(
            options.get("latitude"), options.get("longitude"), options.get("altitude")
        )

    async def start(self) -> None:
        if not self._config.enabled:
            self._denied = True
            logger.warning("Location access disabled; snapshots will be sent without location.")
            return
        self._denied = False
        await super().start()

    async def read(self) -> BasePayload | None:
        if self._provider is None:
            return None
        try:
            return await self._provider.locate()
        except PermissionError as exc:
            self._denied = True
            self._active = False
            logger.warning("Location access denied (%s); no further fixes this session.", exc)
        except LocationUnavailable as exc:
            logger.warning("No location fix available: %s", exc)
        return None

    def has_changed(self, previous: BasePayload | None, current: BasePayload) -> bool:
        if not isinstance(previous, GeoFix) or not isinstance(current, GeoFix):
            return True
        return distance_m(previous, current) >= self._distance_filter_m


__all__ = [
    "GeoProvider",
    "HttpGeoProvider",
    "LocationSource",
    "LocationUnavailable",
    "StaticGeoProvider",
    "distance_m",
]
