"""
Contracts and payload schemas shared by signal sources, the delivery
coordinator and the transports.

Every enum carries an explicit fallback member (`UNKNOWN` / `NONE`) so an
unmapped reading always resolves to a printable label instead of vanishing
from the snapshot.
"""

from __future__ import annotations

import abc
import datetime as dt
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

BATTERY_TOPIC = "signal.battery"
THERMAL_TOPIC = "signal.thermal"
NETWORK_TOPIC = "signal.network"
ORIENTATION_TOPIC = "signal.orientation"
LOCATION_TOPIC = "signal.location"
DELIVERY_TOPIC = "status.delivery"


class BatteryState(str, Enum):
    UNKNOWN = "Unknown"
    UNPLUGGED = "Unplugged"
    CHARGING = "Charging"
    FULL = "Full"


class ThermalState(str, Enum):
    NOMINAL = "Nominal"
    FAIR = "Fair"
    SERIOUS = "Serious"
    CRITICAL = "Critical"
    UNKNOWN = "Unknown"

    @property
    def is_warning(self) -> bool:
        return self in (ThermalState.SERIOUS, ThermalState.CRITICAL)


class ConnectionType(str, Enum):
    NONE = "No Connection"
    WIFI = "WiFi"
    CELLULAR = "Cellular"
    ETHERNET = "Ethernet"
    OTHER = "Connected"


class DeviceOrientation(str, Enum):
    UNKNOWN = "Unknown"
    PORTRAIT = "Portrait"
    PORTRAIT_UPSIDE_DOWN = "Portrait Upside Down"
    LANDSCAPE_LEFT = "Landscape Left"
    LANDSCAPE_RIGHT = "Landscape Right"
    FACE_UP = "Face Up"
    FACE_DOWN = "Face Down"

    @classmethod
    def parse(cls, value: Any) -> DeviceOrientation:
        """Accept labels, member names or members; anything else maps to UNKNOWN."""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip()
        key = text.upper().replace(" ", "_").replace("-", "_")
        for member in cls:
            if text == member.value or key == member.name:
                return member
        return cls.UNKNOWN


class InterfaceIdiom(str, Enum):
    UNSPECIFIED = "Unspecified"
    PHONE = "Phone"
    PAD = "Pad"
    TV = "TV"
    CAR_PLAY = "CarPlay"
    MAC = "Mac"
    VISION = "Vision"
    UNKNOWN = "Unknown"


class BasePayload(BaseModel):
    """Base class for all bus payloads."""

    model_config = ConfigDict(extra="allow", frozen=True)

    schema_version: str = Field(
        default="1.0.0", description="Semantic version of the payload schema."
    )


class BatteryStatus(BasePayload):
    """Battery reading; a negative level means the platform could not report one."""

    level: float = Field(default=-1.0, le=1.0)
    state: BatteryState = Field(default=BatteryState.UNKNOWN)


class ThermalStatus(BasePayload):
    state: ThermalState = Field(default=ThermalState.UNKNOWN)


class NetworkPathStatus(BasePayload):
    connection_type: ConnectionType = Field(default=ConnectionType.NONE)
    interface: str | None = Field(default=None, description="Interface that won classification.")


class OrientationStatus(BasePayload):
    orientation: DeviceOrientation = Field(default=DeviceOrientation.UNKNOWN)


class GeoFix(BasePayload):
    """A single geolocation reading."""

    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    altitude: float | None = Field(default=None)
    timestamp: dt.datetime = Field(
        default_factory=lambda: dt.datetime.now(tz=dt.UTC),
        description="Fix timestamp in UTC.",
    )


class DeliveryReport(BasePayload):
    """Outcome of the single delivery attempt made by a monitoring session."""

    trigger: Literal["location", "timeout"]
    outcome: str = Field(description="Transport outcome such as sent/queued/failed.")
    has_location: bool = Field(default=False)
    error: str | None = Field(default=None)
    delivered_at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(tz=dt.UTC))


class HealthStatus(BaseModel):
    """Structured health report for modules."""

    model_config = ConfigDict(extra="allow", frozen=True)

    status: str = Field(description="Health classification such as healthy/degraded/error.")
    details: dict[str, Any] = Field(default_factory=dict)


class ModuleConfig(BaseModel):
    """Baseline configuration contract applied to all modules."""

    model_config = ConfigDict(extra="allow")

    enabled: bool = Field(default=True)
    options: dict[str, Any] = Field(
        default_factory=dict, description="Arbitrary module configuration."
    )


@runtime_checkable
class EventHandler(Protocol):
    """Callable type for bus subscribers."""

    def __call__(self, topic: str, payload: BasePayload) -> Any: ...


if TYPE_CHECKING:
    from .bus import EventBus


class BaseModule(abc.ABC):
    """
    Abstract base class for all modular components.

    Modules receive an event bus instance and are responsible for
    subscribing to topics during `start`.
    """

    name: str

    def __init__(self) -> None:
        self._configured = False
        self._config = ModuleConfig()
        self._bus: EventBus | None = None

    @property
    def bus(self) -> EventBus:
        if self._bus is None:
            raise RuntimeError(f"{self.__class__.__name__} has not been attached to an EventBus.")
        return self._bus

    def set_bus(self, bus: EventBus) -> None:
        """Attach the shared event bus instance to the module."""
        self._bus = bus

    async def configure(self, config: ModuleConfig) -> None:
        """Apply the provided configuration prior to module start."""
        self._config = config
        self._configured = True

    @abc.abstractmethod
    async def start(self) -> None:
        """Begin processing by registering bus subscriptions or scheduling tasks."""

    async def stop(self) -> None:
        """
        Optional hook to release resources.

        Base implementation is a no-op so subclasses can override only
        when needed without being forced to mark the method abstract.
        """
        return None

    async def health(self) -> HealthStatus:
        """Return a basic health status; modules can override for richer diagnostics."""
        status = "healthy" if self._configured else "degraded"
        return HealthStatus(status=status, details={"configured": self._configured})
