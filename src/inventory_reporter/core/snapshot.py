"""
Snapshot wire model and the assembler that produces it.

The downstream collector parses a fixed JSON layout with camelCase keys and
pre-rendered display strings (battery percentage, GB figures, uptime), so the
formatting helpers here are part of the wire contract rather than cosmetics.
"""

from __future__ import annotations

import datetime as dt
import json
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .contracts import (
    BatteryStatus,
    GeoFix,
    NetworkPathStatus,
    OrientationStatus,
    ThermalStatus,
)

BYTES_PER_GB = 1_000_000_000
BYTES_PER_MB = 1_000_000
UNAVAILABLE = "—"


def format_bytes(count: int | float) -> str:
    """Render a byte count in decimal GB, falling back to MB below one gigabyte."""
    if count >= BYTES_PER_GB:
        return f"{count / BYTES_PER_GB:.2f} GB"
    return f"{count / BYTES_PER_MB:.2f} MB"


def format_uptime(seconds: float) -> str:
    total = int(seconds)
    hours = total // 3600
    minutes = (total % 3600) // 60
    return f"{hours} h {minutes} min"


def format_battery_level(level: float) -> str:
    if level < 0:
        return "Unknown"
    return f"{level * 100:.0f}%"


def format_timestamp(value: dt.datetime) -> str:
    """ISO-8601 in UTC with a `Z` suffix and whole seconds."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.UTC)
    return value.astimezone(dt.UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class Identity(_WireModel):
    device_name: str
    system_name: str
    system_version: str
    model: str
    localized_model: str
    user_interface_idiom: str
    identifier_for_vendor: str
    machine_identifier: str
    is_multi_tasking_supported: bool


class Resources(_WireModel):
    physical_memory_gb: str = Field(alias="physicalMemoryGB")
    processor_count_active: int
    processor_count_total: int
    system_uptime: str
    total_disk_space_gb: str = Field(alias="totalDiskSpaceGB")
    free_disk_space_gb: str = Field(alias="freeDiskSpaceGB")


class Power(_WireModel):
    battery_level: str
    battery_state: str
    thermal_state: str
    orientation: str


class Network(_WireModel):
    connection_type: str


class Location(_WireModel):
    latitude: float
    longitude: float
    altitude: float | None = None
    timestamp: str


class Snapshot(_WireModel):
    """One immutable device telemetry record, the unit of delivery."""

    identity: Identity
    resources: Resources
    power: Power
    network: Network
    location: Location | None = None

    def to_wire(self) -> str:
        """
        Serialize to the compact JSON string sent over the wire.

        `location` is omitted entirely when no fix was available, while a
        missing altitude inside a present location is written as null.
        Raises ValueError for values JSON cannot represent (NaN, infinity).
        """
        data = self.model_dump(mode="json", by_alias=True)
        if data.get("location") is None:
            data.pop("location", None)
        return json.dumps(data, ensure_ascii=False, separators=(",", ":"), allow_nan=False)

    @classmethod
    def from_wire(cls, raw: str | bytes) -> Snapshot:
        return cls.model_validate_json(raw)


@dataclass(frozen=True)
class HostFacts:
    """Static identity/resource facts gathered once per process."""

    identity: Identity
    resources: Resources


@dataclass
class SessionState:
    """Mutable per-session cache owned by the delivery coordinator."""

    has_fired: bool = False
    latest_location: GeoFix | None = None
    battery: BatteryStatus = field(default_factory=BatteryStatus)
    thermal: ThermalStatus = field(default_factory=ThermalStatus)
    network: NetworkPathStatus = field(default_factory=NetworkPathStatus)
    orientation: OrientationStatus = field(default_factory=OrientationStatus)


def _location_from_fix(fix: GeoFix | None) -> Location | None:
    if fix is None:
        return None
    return Location(
        latitude=fix.latitude,
        longitude=fix.longitude,
        altitude=fix.altitude,
        timestamp=format_timestamp(fix.timestamp),
    )


def assemble_snapshot(state: SessionState, facts: HostFacts) -> Snapshot:
    """Merge the latest cached signals with the static host facts."""
    return Snapshot(
        identity=facts.identity,
        resources=facts.resources,
        power=Power(
            battery_level=format_battery_level(state.battery.level),
            battery_state=state.battery.state.value,
            thermal_state=state.thermal.state.value,
            orientation=state.orientation.orientation.value,
        ),
        network=Network(connection_type=state.network.connection_type.value),
        location=_location_from_fix(state.latest_location),
    )


__all__ = [
    "HostFacts",
    "Identity",
    "Location",
    "Network",
    "Power",
    "Resources",
    "SessionState",
    "Snapshot",
    "UNAVAILABLE",
    "assemble_snapshot",
    "format_battery_level",
    "format_bytes",
    "format_timestamp",
    "format_uptime",
]
