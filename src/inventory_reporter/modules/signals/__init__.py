"""Host signal sources publishing battery, thermal, network, orientation and location readings."""

from .base import PollingSignalSource
from .battery import BatterySource
from .location import (
    GeoProvider,
    HttpGeoProvider,
    LocationSource,
    LocationUnavailable,
    StaticGeoProvider,
)
from .network_path import NetworkPathSource
from .orientation import OrientationSource
from .thermal import ThermalSource

__all__ = [
    "BatterySource",
    "GeoProvider",
    "HttpGeoProvider",
    "LocationSource",
    "LocationUnavailable",
    "NetworkPathSource",
    "OrientationSource",
    "PollingSignalSource",
    "StaticGeoProvider",
    "ThermalSource",
]
