from __future__ import annotations

import asyncio
import textwrap
from pathlib import Path

import pytest

from inventory_reporter.core.config import ConfigService
from inventory_reporter.core.snapshot import HostFacts, Identity, Resources, Snapshot
from inventory_reporter.modules.transport import ConnectionPhase, SendResult


def _write_yaml(path: Path, content: str) -> None:
    path.write_text(textwrap.dedent(content).strip() + "\n", encoding="utf-8")


@pytest.fixture
def sample_config_dir(tmp_path: Path) -> Path:
    """
    Provide a temporary configuration directory for tests.
    """

    config_dir = tmp_path / "config"
    config_dir.mkdir()
    log_path = tmp_path / "logs" / "reporter.log"
    config_yaml = f"""
    transport:
      kind: "mqtt"
      profile: "development"
      tcp:
        endpoints:
          development:
            host: "127.0.0.1"
            port: 6060
          device:
            host: "tunnel.lab.test"
            port: 16060
        retry_interval: 0.5
      mqtt:
        endpoints:
          development:
            host: "127.0.0.1"
            port: 1884
          device:
            host: "broker.lab.test"
            port: 8883
        topic: "lab/inventory"
        keepalive: 30
        client_id_prefix: "lab-reporter"
        reconnect_interval: 0.5
        qos: 1

    session:
      location_timeout_seconds: 3
      drain_timeout_seconds: 0.5

    signals:
      battery:
        poll_interval_seconds: 1
      thermal:
        enabled: false
      network:
        poll_interval_seconds: 0.5
      orientation:
        fixed: "Face Up"
      location:
        enabled: true
        provider: "static"
        latitude: 45.4642
        longitude: 9.19
        altitude: 122.0
        distance_filter_m: 25

    identity:
      device_name: "lab-device"
      vendor_id: "00000000-0000-0000-0000-00000000ABCD"

    logging:
      path: "{log_path.as_posix()}"
      max_mb: 1
      backup_count: 1
    """
    secrets_yaml = """
    transport:
      mqtt:
        username: "lab-user"
        password: "lab-pass"
    """
    _write_yaml(config_dir / "config.yaml", config_yaml)
    _write_yaml(config_dir / "secrets.yaml", secrets_yaml)
    return config_dir


@pytest.fixture
def sample_config_service(sample_config_dir: Path) -> ConfigService:
    """Return a ConfigService wired to the temporary configuration."""

    return ConfigService(config_dir=sample_config_dir)


@pytest.fixture
def host_facts() -> HostFacts:
    return HostFacts(
        identity=Identity(
            device_name="lab-device",
            system_name="Linux",
            system_version="6.8.0",
            model="Linux",
            localized_model="Linux",
            user_interface_idiom="Unspecified",
            identifier_for_vendor="00000000-0000-0000-0000-00000000ABCD",
            machine_identifier="x86_64",
            is_multi_tasking_supported=True,
        ),
        resources=Resources(
            physical_memory_gb="16.00 GB",
            processor_count_active=8,
            processor_count_total=8,
            system_uptime="5 h 12 min",
            total_disk_space_gb="512.00 GB",
            free_disk_space_gb="128.50 GB",
        ),
    )


class StubTransport:
    """Records snapshots instead of sending them."""

    def __init__(self, result: SendResult | None = None) -> None:
        self.phase = ConnectionPhase.DISCONNECTED
        self.result = result or SendResult.sent()
        self.snapshots: list[Snapshot] = []
        self.sent = asyncio.Event()
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.drain_calls: list[float] = []
        self.drain_result = True

    async def connect(self) -> None:
        self.connect_calls += 1
        self.phase = ConnectionPhase.CONNECTED

    async def send(self, snapshot: Snapshot) -> SendResult:
        self.snapshots.append(snapshot)
        self.sent.set()
        return self.result

    async def drain(self, timeout: float) -> bool:
        self.drain_calls.append(timeout)
        return self.drain_result

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.phase = ConnectionPhase.DISCONNECTED


@pytest.fixture
def stub_transport() -> StubTransport:
    return StubTransport()
