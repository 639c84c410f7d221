"""Network path source classifying the active interface by name."""

from __future__ import annotations

import logging
import socket
from collections.abc import Iterable, Mapping
from typing import Any

import psutil

from ...core.contracts import NETWORK_TOPIC, ConnectionType, NetworkPathStatus
from .base import PollingSignalSource

logger = logging.getLogger(__name__)

# Checked in this order; the first family with an active interface wins.
INTERFACE_PREFIXES: list[tuple[ConnectionType, tuple[str, ...]]] = [
    (ConnectionType.WIFI, ("wl", "wifi", "wi-fi", "ath", "ra")),
    (ConnectionType.CELLULAR, ("wwan", "rmnet", "ccmni", "pdp_ip", "ppp", "cellular")),
    (ConnectionType.ETHERNET, ("eth", "en", "em", "ethernet")),
]


def _routable_address(addresses: Iterable[Any]) -> bool:
    for addr in addresses:
        if addr.family not in (socket.AF_INET, socket.AF_INET6):
            continue
        address = str(addr.address).lower()
        if address.startswith(("127.", "::1", "fe80")):
            continue
        return True
    return False


def classify_interfaces(
    stats: Mapping[str, Any], addresses: Mapping[str, Iterable[Any]]
) -> NetworkPathStatus:
    active = sorted(
        name
        for name, stat in stats.items()
        if stat.isup and not name.lower().startswith("lo")
        and _routable_address(addresses.get(name, ()))
    )
    if not active:
        return NetworkPathStatus(connection_type=ConnectionType.NONE)
    for connection_type, prefixes in INTERFACE_PREFIXES:
        for name in active:
            if name.lower().startswith(prefixes):
                return NetworkPathStatus(connection_type=connection_type, interface=name)
    return NetworkPathStatus(connection_type=ConnectionType.OTHER, interface=active[0])


def read_network_path() -> NetworkPathStatus:
    try:
        stats = psutil.net_if_stats()
        addresses = psutil.net_if_addrs()
    except OSError as exc:
        logger.warning("Network interfaces unavailable: %s", exc)
        return NetworkPathStatus(connection_type=ConnectionType.NONE)
    return classify_interfaces(stats, addresses)


class NetworkPathSource(PollingSignalSource):
    name = "modules.signals.network_path"
    topic = NETWORK_TOPIC

    def default_reader(self) -> NetworkPathStatus:
        return read_network_path()


__all__ = ["NetworkPathSource", "classify_interfaces", "read_network_path"]
