import asyncio
import socket
import threading
from types import SimpleNamespace

import httpx
import psutil
import pytest

from inventory_reporter.core.bus import EventBus
from inventory_reporter.core.contracts import (
    BATTERY_TOPIC,
    LOCATION_TOPIC,
    ORIENTATION_TOPIC,
    BatteryState,
    BatteryStatus,
    ConnectionType,
    DeviceOrientation,
    GeoFix,
    ModuleConfig,
    ThermalState,
)
from inventory_reporter.core.orchestrator import Orchestrator
from inventory_reporter.modules.signals import (
    BatterySource,
    HttpGeoProvider,
    LocationSource,
    LocationUnavailable,
    OrientationSource,
    StaticGeoProvider,
)
from inventory_reporter.modules.signals.battery import battery_status_from, read_battery
from inventory_reporter.modules.signals.location import distance_m
from inventory_reporter.modules.signals.network_path import classify_interfaces
from inventory_reporter.modules.signals.thermal import classify_temperatures


def _battery(percent: float | None, plugged: bool | None) -> SimpleNamespace:
    return SimpleNamespace(percent=percent, secsleft=0, power_plugged=plugged)


def test_battery_status_mapping() -> None:
    assert battery_status_from(None) == BatteryStatus(level=-1.0, state=BatteryState.UNKNOWN)
    assert battery_status_from(_battery(100, True)).state is BatteryState.FULL
    charging = battery_status_from(_battery(55, True))
    assert charging.state is BatteryState.CHARGING
    assert charging.level == pytest.approx(0.55)
    assert battery_status_from(_battery(40, False)).state is BatteryState.UNPLUGGED
    assert battery_status_from(_battery(40, None)).state is BatteryState.UNKNOWN


def test_read_battery_without_sensor(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(psutil, "sensors_battery", lambda: None)
    assert read_battery().level == -1.0


def _temp(current: float | None, high: float | None = None, critical: float | None = None):
    return SimpleNamespace(label="", current=current, high=high, critical=critical)


def test_thermal_classification_picks_worst_sensor() -> None:
    assert classify_temperatures({}) is ThermalState.UNKNOWN
    assert classify_temperatures(None) is ThermalState.UNKNOWN
    assert classify_temperatures({"acpi": [_temp(None)]}) is ThermalState.UNKNOWN
    assert classify_temperatures({"cpu": [_temp(40.0)]}) is ThermalState.NOMINAL
    assert classify_temperatures({"cpu": [_temp(78.0)]}) is ThermalState.FAIR
    assert (
        classify_temperatures({"cpu": [_temp(40.0)], "gpu": [_temp(91.0, high=90.0)]})
        is ThermalState.SERIOUS
    )
    assert classify_temperatures({"cpu": [_temp(96.0, 80.0, 95.0)]}) is ThermalState.CRITICAL


def _stats(**interfaces: bool) -> dict[str, SimpleNamespace]:
    return {name: SimpleNamespace(isup=isup) for name, isup in interfaces.items()}


def _addr(address: str, family: int = socket.AF_INET) -> SimpleNamespace:
    return SimpleNamespace(family=family, address=address, netmask=None, broadcast=None)


def test_network_path_prefers_wifi_then_cellular_then_ethernet() -> None:
    addresses = {
        "lo": [_addr("127.0.0.1")],
        "eth0": [_addr("192.168.1.10")],
        "wlan0": [_addr("192.168.1.11")],
        "rmnet_data0": [_addr("10.64.0.2")],
    }
    stats = _stats(lo=True, eth0=True, wlan0=True, rmnet_data0=True)
    status = classify_interfaces(stats, addresses)
    assert status.connection_type is ConnectionType.WIFI
    assert status.interface == "wlan0"

    stats = _stats(lo=True, eth0=True, wlan0=False, rmnet_data0=True)
    status = classify_interfaces(stats, addresses)
    assert status.connection_type is ConnectionType.CELLULAR

    status = classify_interfaces(_stats(lo=True, eth0=True), addresses)
    assert status.connection_type is ConnectionType.ETHERNET


def test_network_path_without_usable_interface() -> None:
    addresses = {
        "lo": [_addr("127.0.0.1")],
        "eth0": [_addr("fe80::1", socket.AF_INET6)],
    }
    status = classify_interfaces(_stats(lo=True, eth0=True), addresses)
    assert status.connection_type is ConnectionType.NONE
    assert classify_interfaces({}, {}).connection_type is ConnectionType.NONE


def test_network_path_unrecognised_interface_is_other() -> None:
    status = classify_interfaces(_stats(tun0=True), {"tun0": [_addr("10.8.0.2")]})
    assert status.connection_type is ConnectionType.OTHER
    assert status.interface == "tun0"


def _collect(bus: EventBus, topic: str) -> list:
    received: list = []

    async def handler(_topic: str, payload) -> None:
        received.append(payload)

    bus.subscribe(topic, handler)
    return received


@pytest.mark.asyncio
async def test_polling_source_publishes_initial_reading_and_changes_only() -> None:
    readings = iter(
        [
            BatteryStatus(level=0.5, state=BatteryState.UNPLUGGED),
            BatteryStatus(level=0.5, state=BatteryState.UNPLUGGED),
            BatteryStatus(level=0.6, state=BatteryState.CHARGING),
        ]
    )
    last = BatteryStatus(level=0.6, state=BatteryState.CHARGING)
    source = BatterySource(reader=lambda: next(readings, last), poll_interval_seconds=0.01)
    orchestrator = Orchestrator()
    received = _collect(orchestrator.bus, BATTERY_TOPIC)
    await orchestrator.add_module(source, ModuleConfig(options={"poll_interval_seconds": 0.01}))
    await orchestrator.start()
    await asyncio.sleep(0.1)
    health = await source.health()
    await orchestrator.stop()

    assert [payload.level for payload in received] == [0.5, 0.6]
    assert health.details["published_total"] == 2
    assert source.last_reading is None


@pytest.mark.asyncio
async def test_blocking_reader_runs_off_the_event_loop() -> None:
    loop_thread = threading.get_ident()
    reader_threads: list[int] = []

    def reader() -> BatteryStatus:
        reader_threads.append(threading.get_ident())
        return BatteryStatus(level=0.3, state=BatteryState.UNPLUGGED)

    source = BatterySource(reader=reader)
    orchestrator = Orchestrator()
    await orchestrator.add_module(source, ModuleConfig())
    await orchestrator.start()
    await orchestrator.stop()

    assert reader_threads
    assert loop_thread not in reader_threads


@pytest.mark.asyncio
async def test_coroutine_reader_is_awaited_on_the_loop() -> None:
    loop_thread = threading.get_ident()
    reader_threads: list[int] = []

    async def reader() -> BatteryStatus:
        reader_threads.append(threading.get_ident())
        return BatteryStatus(level=0.8, state=BatteryState.CHARGING)

    source = BatterySource(reader=reader)

    assert await source.read() == BatteryStatus(level=0.8, state=BatteryState.CHARGING)
    assert reader_threads == [loop_thread]


@pytest.mark.asyncio
async def test_disabled_source_publishes_nothing() -> None:
    calls = 0

    def reader() -> BatteryStatus:
        nonlocal calls
        calls += 1
        return BatteryStatus()

    source = BatterySource(reader=reader)
    orchestrator = Orchestrator()
    await orchestrator.add_module(source, ModuleConfig(enabled=False))
    await orchestrator.start()
    await asyncio.sleep(0.02)
    await orchestrator.stop()

    assert calls == 0


@pytest.mark.asyncio
async def test_orientation_source_reports_configured_value() -> None:
    source = OrientationSource()
    orchestrator = Orchestrator()
    received = _collect(orchestrator.bus, ORIENTATION_TOPIC)
    await orchestrator.add_module(source, ModuleConfig(options={"fixed": "face-up"}))
    await orchestrator.start()
    await asyncio.sleep(0.02)
    await orchestrator.stop()

    assert [payload.orientation for payload in received] == [DeviceOrientation.FACE_UP]


class ScriptedProvider:
    def __init__(self, *results) -> None:
        self._results = list(results)
        self.calls = 0

    async def locate(self):
        self.calls += 1
        result = self._results[min(self.calls, len(self._results)) - 1]
        if isinstance(result, Exception):
            raise result
        return result


@pytest.mark.asyncio
async def test_location_distance_filter_suppresses_small_moves() -> None:
    origin = GeoFix(latitude=45.0, longitude=9.0)
    nearby = GeoFix(latitude=45.00001, longitude=9.0)
    far = GeoFix(latitude=45.001, longitude=9.0)
    assert distance_m(origin, nearby) < 10.0
    assert distance_m(origin, far) > 100.0

    provider = ScriptedProvider(origin, nearby, far)
    source = LocationSource(provider=provider)
    orchestrator = Orchestrator()
    received = _collect(orchestrator.bus, LOCATION_TOPIC)
    await orchestrator.add_module(
        source, ModuleConfig(options={"poll_interval_seconds": 0.01, "distance_filter_m": 10})
    )
    await orchestrator.start()
    await asyncio.sleep(0.1)
    await orchestrator.stop()

    assert [fix.latitude for fix in received] == [45.0, 45.001]


@pytest.mark.asyncio
async def test_location_permission_denied_stops_polling() -> None:
    provider = ScriptedProvider(PermissionError("user declined"))
    source = LocationSource(provider=provider)
    orchestrator = Orchestrator()
    received = _collect(orchestrator.bus, LOCATION_TOPIC)
    await orchestrator.add_module(source, ModuleConfig(options={"poll_interval_seconds": 0.01}))
    await orchestrator.start()
    await asyncio.sleep(0.1)
    await orchestrator.stop()

    assert source.denied is True
    assert provider.calls == 1
    assert received == []


@pytest.mark.asyncio
async def test_location_disabled_behaves_like_denied() -> None:
    provider = ScriptedProvider(GeoFix(latitude=1.0, longitude=1.0))
    source = LocationSource(provider=provider)
    orchestrator = Orchestrator()
    await orchestrator.add_module(source, ModuleConfig(enabled=False))
    await orchestrator.start()
    await asyncio.sleep(0.02)
    await orchestrator.stop()

    assert source.denied is True
    assert provider.calls == 0


@pytest.mark.asyncio
async def test_location_unavailable_keeps_polling() -> None:
    fix = GeoFix(latitude=3.0, longitude=4.0)
    provider = ScriptedProvider(LocationUnavailable("timeout"), fix)
    source = LocationSource(provider=provider)
    orchestrator = Orchestrator()
    received = _collect(orchestrator.bus, LOCATION_TOPIC)
    await orchestrator.add_module(source, ModuleConfig(options={"poll_interval_seconds": 0.01}))
    await orchestrator.start()
    await asyncio.sleep(0.1)
    await orchestrator.stop()

    assert received == [fix]
    assert source.denied is False


@pytest.mark.asyncio
async def test_static_provider_requires_coordinates() -> None:
    assert await StaticGeoProvider(None, None).locate() is None
    fix = await StaticGeoProvider(10.0, 20.0, 5.0).locate()
    assert fix is not None
    assert (fix.latitude, fix.longitude, fix.altitude) == (10.0, 20.0, 5.0)


@pytest.mark.asyncio
async def test_http_provider_parses_ip_geolocation() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.host == "geo.test"
        return httpx.Response(200, json={"latitude": 41.9, "longitude": 12.5, "city": "Rome"})

    provider = HttpGeoProvider("https://geo.test/json/", transport=httpx.MockTransport(handler))
    fix = await provider.locate()

    assert fix is not None
    assert (fix.latitude, fix.longitude, fix.altitude) == (41.9, 12.5, None)


@pytest.mark.asyncio
async def test_http_provider_error_mapping() -> None:
    responses = iter(
        [
            httpx.Response(403),
            httpx.Response(503),
            httpx.Response(200, json={"error": True, "reason": "RateLimited"}),
        ]
    )

    def handler(request: httpx.Request) -> httpx.Response:
        return next(responses)

    provider = HttpGeoProvider("https://geo.test/json/", transport=httpx.MockTransport(handler))

    with pytest.raises(PermissionError):
        await provider.locate()
    with pytest.raises(LocationUnavailable):
        await provider.locate()
    assert await provider.locate() is None


@pytest.mark.asyncio
async def test_http_provider_network_failure_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("name resolution failed", request=request)

    provider = HttpGeoProvider("https://geo.test/json/", transport=httpx.MockTransport(handler))

    with pytest.raises(LocationUnavailable):
        await provider.locate()
