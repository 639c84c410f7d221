"""
Inventory Reporter - one-shot device inventory snapshots

Collects host identity, resources, power, network and location readings and
delivers a single JSON snapshot per session over MQTT or a raw TCP stream.
"""

__version__ = "0.1.0"

from inventory_reporter.core import ConfigService, EventBus, Orchestrator, Snapshot

__all__ = [
    "ConfigService",
    "EventBus",
    "Orchestrator",
    "Snapshot",
]
