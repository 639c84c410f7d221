"""
Core infrastructure for the inventory reporter.

This package exposes the asynchronous event bus, payload contracts, the
snapshot wire model, configuration and the module orchestrator.
"""

from .bus import EventBus, Subscription
from .config import ConfigError, ConfigService, ConfigSnapshot
from .contracts import (
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
from .orchestrator import Orchestrator
from .snapshot import HostFacts, SessionState, Snapshot, assemble_snapshot

__all__ = [
    "BaseModule",
    "BasePayload",
    "BatteryStatus",
    "ConfigError",
    "ConfigService",
    "ConfigSnapshot",
    "DeliveryReport",
    "EventBus",
    "GeoFix",
    "HealthStatus",
    "HostFacts",
    "ModuleConfig",
    "NetworkPathStatus",
    "Orchestrator",
    "OrientationStatus",
    "SessionState",
    "Snapshot",
    "Subscription",
    "ThermalStatus",
    "assemble_snapshot",
]
