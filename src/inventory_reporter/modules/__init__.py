"""
Reporter modules grouped by responsibility: signal sources publish host
readings, the delivery coordinator turns them into one snapshot, and the
transports carry it off the device.
"""

from .delivery.coordinator import DeliveryCoordinator
from .signals.battery import BatterySource
from .signals.location import HttpGeoProvider, LocationSource, StaticGeoProvider
from .signals.network_path import NetworkPathSource
from .signals.orientation import OrientationSource
from .signals.thermal import ThermalSource
from .transport import (
    QueuedPublishTransport,
    SendResult,
    StreamTransport,
    Transport,
    build_transport,
)

__all__ = [
    "BatterySource",
    "DeliveryCoordinator",
    "HttpGeoProvider",
    "LocationSource",
    "NetworkPathSource",
    "OrientationSource",
    "QueuedPublishTransport",
    "SendResult",
    "StaticGeoProvider",
    "StreamTransport",
    "ThermalSource",
    "Transport",
    "build_transport",
]
