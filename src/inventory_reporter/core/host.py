"""Static identity and resource facts for the running host."""

from __future__ import annotations

import logging
import os
import platform
import time
import uuid
from pathlib import Path

import psutil

from .config import IdentitySettings
from .contracts import InterfaceIdiom
from .snapshot import UNAVAILABLE, HostFacts, Identity, Resources, format_bytes, format_uptime

logger = logging.getLogger(__name__)

_IDIOM_BY_SYSTEM = {
    "Darwin": InterfaceIdiom.MAC,
    "Linux": InterfaceIdiom.UNSPECIFIED,
    "Windows": InterfaceIdiom.UNSPECIFIED,
    "iOS": InterfaceIdiom.PHONE,
    "iPadOS": InterfaceIdiom.PAD,
    "Android": InterfaceIdiom.PHONE,
}


def machine_identifier() -> str:
    """Hardware identifier as reported by uname (e.g. "x86_64", "arm64")."""
    return platform.machine() or "Unknown"


def vendor_identifier(settings: IdentitySettings) -> str:
    """Configured vendor id, or a UUID stable for this host name and MAC address."""
    if settings.vendor_id:
        return settings.vendor_id
    seed = f"{platform.node()}-{uuid.getnode():012x}"
    return str(uuid.uuid5(uuid.NAMESPACE_DNS, seed)).upper()


def _active_processor_count(total: int) -> int:
    try:
        return len(psutil.Process().cpu_affinity())
    except (AttributeError, NotImplementedError, psutil.Error):
        return total


def _disk_space(path: Path) -> tuple[str, str]:
    try:
        usage = psutil.disk_usage(str(path))
    except OSError as exc:
        logger.warning("Disk usage unavailable for %s: %s", path, exc)
        return UNAVAILABLE, UNAVAILABLE
    return format_bytes(usage.total), format_bytes(usage.free)


def collect_identity(settings: IdentitySettings) -> Identity:
    system = platform.system() or "Unknown"
    idiom = _IDIOM_BY_SYSTEM.get(system, InterfaceIdiom.UNKNOWN)
    model = settings.model or system
    return Identity(
        device_name=settings.device_name or platform.node() or "Unknown",
        system_name=system,
        system_version=platform.release() or "Unknown",
        model=model,
        localized_model=settings.localized_model or model,
        user_interface_idiom=idiom.value,
        identifier_for_vendor=vendor_identifier(settings),
        machine_identifier=machine_identifier(),
        is_multi_tasking_supported=True,
    )


def collect_resources(disk_path: Path | None = None) -> Resources:
    total_cpus = psutil.cpu_count(logical=True) or os.cpu_count() or 1
    total_disk, free_disk = _disk_space(disk_path or Path.home())
    return Resources(
        physical_memory_gb=format_bytes(psutil.virtual_memory().total),
        processor_count_active=_active_processor_count(total_cpus),
        processor_count_total=total_cpus,
        system_uptime=format_uptime(max(time.time() - psutil.boot_time(), 0.0)),
        total_disk_space_gb=total_disk,
        free_disk_space_gb=free_disk,
    )


def collect_host_facts(settings: IdentitySettings | None = None) -> HostFacts:
    settings = settings or IdentitySettings()
    facts = HostFacts(identity=collect_identity(settings), resources=collect_resources())
    logger.info(
        "Collected host facts for %s (%s %s, %s)",
        facts.identity.device_name,
        facts.identity.system_name,
        facts.identity.system_version,
        facts.identity.machine_identifier,
    )
    return facts


__all__ = ["collect_host_facts", "collect_identity", "collect_resources", "vendor_identifier"]
