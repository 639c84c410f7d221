"""
Dynaconf-powered configuration loader with Pydantic validation.

The configuration service loads the layered YAML files (plus
`INVENTORY_REPORTER_*` environment overrides), validates them and produces
module-friendly `ModuleConfig` instances so the session runner can wire the
coordinator and signal sources without hand-written dictionaries.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any, Literal

from dynaconf import Dynaconf
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .contracts import BaseModule, ModuleConfig


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    """Case-insensitive dictionary lookup helper."""
    value = raw.get(key) or raw.get(key.upper()) or raw.get(key.lower())
    if isinstance(value, dict):
        return value
    return {}


def _deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge dictionaries without mutating the originals."""
    result: dict[str, Any] = {**base}
    for key, value in updates.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


CONFIG_FILENAMES = ("config.yaml", "secrets.yaml")
_REPO_ROOT = Path(__file__).resolve().parents[3]
DEFAULT_CONFIG_DIR = _REPO_ROOT / "config"

Profile = Literal["development", "device"]


class ConfigError(RuntimeError):
    """Raised when configuration files are missing or invalid."""


def _positive(name: str, value: float) -> float:
    if value <= 0:
        raise ValueError(f"{name} must be positive")
    return value


class EndpointSettings(BaseModel):
    """Host/port pair of a remote collector."""

    model_config = ConfigDict(extra="ignore")

    host: str
    port: int = Field(gt=0, le=65535)


class TcpSettings(BaseModel):
    """Persistent-stream transport options."""

    model_config = ConfigDict(extra="ignore")

    endpoints: dict[str, EndpointSettings] = Field(
        default_factory=lambda: {
            "development": EndpointSettings(host="127.0.0.1", port=5050),
            "device": EndpointSettings(host="tunnel.example.net", port=15050),
        }
    )
    retry_interval: float = Field(default=2.0)
    connect_timeout: float = Field(default=5.0)

    @field_validator("retry_interval", "connect_timeout")
    @classmethod
    def _positive_interval(cls, value: float) -> float:
        return _positive("TCP intervals", value)


class MqttSettings(BaseModel):
    """Queued-publish transport options."""

    model_config = ConfigDict(extra="ignore")

    endpoints: dict[str, EndpointSettings] = Field(
        default_factory=lambda: {
            "development": EndpointSettings(host="127.0.0.1", port=1883),
            "device": EndpointSettings(host="broker.hivemq.com", port=1883),
        }
    )
    topic: str = Field(default="inventory/device/snapshot")
    keepalive: int = Field(default=60, gt=0)
    client_id_prefix: str = Field(default="inventory-reporter")
    reconnect_interval: float = Field(default=5.0)
    qos: int = Field(default=1, ge=0, le=2)
    username: str | None = Field(default=None)
    password: str | None = Field(default=None, repr=False)

    @field_validator("reconnect_interval")
    @classmethod
    def _positive_interval(cls, value: float) -> float:
        return _positive("reconnect_interval", value)


class TransportSettings(BaseModel):
    """Which transport a deployment uses and which endpoint profile it targets."""

    model_config = ConfigDict(extra="ignore")

    kind: Literal["tcp", "mqtt"] = Field(default="tcp")
    profile: Profile = Field(default="development")
    tcp: TcpSettings = Field(default_factory=TcpSettings)
    mqtt: MqttSettings = Field(default_factory=MqttSettings)

    @model_validator(mode="after")
    def _profile_has_endpoint(self) -> TransportSettings:
        endpoints = self.tcp.endpoints if self.kind == "tcp" else self.mqtt.endpoints
        if self.profile not in endpoints:
            raise ValueError(f"No {self.kind} endpoint configured for profile '{self.profile}'")
        return self

    @property
    def endpoint(self) -> EndpointSettings:
        endpoints = self.tcp.endpoints if self.kind == "tcp" else self.mqtt.endpoints
        return endpoints[self.profile]


class SessionSettings(BaseModel):
    """Delivery coordinator timing."""

    model_config = ConfigDict(extra="ignore")

    location_timeout_seconds: float = Field(default=10.0)
    drain_timeout_seconds: float = Field(default=5.0, ge=0.0)
    delivery_topic: str = Field(default="status.delivery")

    @field_validator("location_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        return _positive("location_timeout_seconds", value)


class PollingSourceSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    enabled: bool = Field(default=True)
    poll_interval_seconds: float = Field(default=5.0)

    @field_validator("poll_interval_seconds")
    @classmethod
    def _positive_interval(cls, value: float) -> float:
        return _positive("poll_interval_seconds", value)


class OrientationSourceSettings(PollingSourceSettings):
    fixed: str = Field(default="Unknown", description="Orientation reported by sensorless hosts.")


class LocationSourceSettings(PollingSourceSettings):
    """Geolocation provider selection; disabling it behaves like a denied permission."""

    poll_interval_seconds: float = Field(default=30.0)
    provider: Literal["static", "http"] = Field(default="static")
    url: str = Field(default="https://ipapi.co/json/")
    request_timeout: float = Field(default=5.0)
    latitude: float | None = Field(default=None, ge=-90.0, le=90.0)
    longitude: float | None = Field(default=None, ge=-180.0, le=180.0)
    altitude: float | None = Field(default=None)
    distance_filter_m: float = Field(default=10.0, ge=0.0)

    @model_validator(mode="after")
    def _coordinates_pair(self) -> LocationSourceSettings:
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be configured together")
        return self


class SignalSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    battery: PollingSourceSettings = Field(default_factory=PollingSourceSettings)
    thermal: PollingSourceSettings = Field(default_factory=PollingSourceSettings)
    network: PollingSourceSettings = Field(
        default_factory=lambda: PollingSourceSettings(poll_interval_seconds=2.0)
    )
    orientation: OrientationSourceSettings = Field(default_factory=OrientationSourceSettings)
    location: LocationSourceSettings = Field(default_factory=LocationSourceSettings)


class IdentitySettings(BaseModel):
    """Optional overrides for identity fields the host cannot report itself."""

    model_config = ConfigDict(extra="ignore")

    device_name: str | None = Field(default=None)
    vendor_id: str | None = Field(default=None)
    model: str | None = Field(default=None)
    localized_model: str | None = Field(default=None)


class LoggingSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    path: Path = Field(default_factory=lambda: _REPO_ROOT / "logs" / "inventory_reporter.log")
    max_mb: int = Field(default=10, gt=0)
    backup_count: int = Field(default=3, ge=0)

    @field_validator("path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value
        return Path(value)


class ConfigSnapshot(BaseModel):
    """
    Validated, strongly typed view of the merged configuration.

    Provides helpers to derive per-module configuration dictionaries.
    """

    model_config = ConfigDict(extra="ignore")

    transport: TransportSettings = Field(default_factory=TransportSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    signals: SignalSettings = Field(default_factory=SignalSettings)
    identity: IdentitySettings = Field(default_factory=IdentitySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def module_config(self, module_name: str) -> ModuleConfig:
        """Produce a ModuleConfig tailored for the requested module."""
        builders: dict[str, Callable[[], ModuleConfig]] = {
            "modules.delivery.coordinator": self._coordinator_config,
            "modules.signals.battery": lambda: self._polling_config(self.signals.battery),
            "modules.signals.thermal": lambda: self._polling_config(self.signals.thermal),
            "modules.signals.network_path": lambda: self._polling_config(self.signals.network),
            "modules.signals.orientation": self._orientation_config,
            "modules.signals.location": self._location_config,
        }
        try:
            builder = builders[module_name]
        except KeyError as exc:
            raise KeyError(f"No module configuration defined for {module_name}") from exc
        return builder()

    def _coordinator_config(self) -> ModuleConfig:
        return ModuleConfig(
            options={
                "location_timeout_seconds": self.session.location_timeout_seconds,
                "delivery_topic": self.session.delivery_topic,
            }
        )

    @staticmethod
    def _polling_config(settings: PollingSourceSettings) -> ModuleConfig:
        return ModuleConfig(
            enabled=settings.enabled,
            options={"poll_interval_seconds": settings.poll_interval_seconds},
        )

    def _orientation_config(self) -> ModuleConfig:
        config = self._polling_config(self.signals.orientation)
        config.options["fixed"] = self.signals.orientation.fixed
        return config

    def _location_config(self) -> ModuleConfig:
        location = self.signals.location
        return ModuleConfig(
            enabled=location.enabled,
            options={
                "enabled": location.enabled,
                "poll_interval_seconds": location.poll_interval_seconds,
                "provider": location.provider,
                "url": location.url,
                "request_timeout": location.request_timeout,
                "latitude": location.latitude,
                "longitude": location.longitude,
                "altitude": location.altitude,
                "distance_filter_m": location.distance_filter_m,
            },
        )


class ConfigService:
    """
    Runtime facade for loading, validating, and distributing configuration.
    """

    def __init__(
        self,
        *,
        config_dir: str | Path | None = None,
        settings: Dynaconf | None = None,
    ) -> None:
        self._config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        settings_files = [self._config_dir / name for name in CONFIG_FILENAMES]
        existing_files = [str(path) for path in settings_files if path.exists()]
        if settings is None and not existing_files:
            raise ConfigError(
                f"No configuration files found in {self._config_dir}. "
                "Expected at least config.yaml."
            )

        self._settings = settings or Dynaconf(
            envvar_prefix="INVENTORY_REPORTER",
            settings_files=existing_files,
            load_dotenv=True,
            environments=False,
            merge_enabled=True,
        )
        self._snapshot = self._build_snapshot()

    @property
    def snapshot(self) -> ConfigSnapshot:
        """Latest validated configuration snapshot."""
        return self._snapshot

    def refresh(self) -> ConfigSnapshot:
        """Reload configuration files and rebuild the snapshot."""
        self._settings.reload()
        self._snapshot = self._build_snapshot()
        return self._snapshot

    def apply_changes(self, changes: dict[str, Any]) -> ConfigSnapshot:
        """
        Merge the provided changes into the current configuration snapshot.

        Used by the CLI to layer command-line overrides on top of the files;
        nothing is persisted to disk.
        """
        raw = self._settings.as_dict()
        merged = _deep_merge(self._extract_snapshot_data(raw), changes)
        self._snapshot = self._build_snapshot(merged, extracted=True)
        return self._snapshot

    def module_config_for(self, module: str | type[BaseModule] | BaseModule) -> ModuleConfig:
        """
        Convenient wrapper around ConfigSnapshot.module_config that accepts
        module names, classes, or instances.
        """
        if isinstance(module, BaseModule):
            module_name = module.name
        elif isinstance(module, str):
            module_name = module
        else:
            module_name = getattr(module, "name", module.__name__)
        return self._snapshot.module_config(module_name)

    def _build_snapshot(
        self, raw: dict[str, Any] | None = None, *, extracted: bool = False
    ) -> ConfigSnapshot:
        source = raw if raw is not None else self._settings.as_dict()
        data = source if extracted else self._extract_snapshot_data(source)
        try:
            return ConfigSnapshot.model_validate(data)
        except ValidationError as exc:
            raise ConfigError(f"Configuration validation failed: {exc}") from exc

    def _extract_snapshot_data(self, raw: dict[str, Any]) -> dict[str, Any]:
        return {
            "transport": _section(raw, "transport"),
            "session": _section(raw, "session"),
            "signals": _section(raw, "signals"),
            "identity": _section(raw, "identity"),
            "logging": _section(raw, "logging"),
        }


__all__ = [
    "ConfigError",
    "ConfigService",
    "ConfigSnapshot",
    "EndpointSettings",
    "IdentitySettings",
    "LocationSourceSettings",
    "LoggingSettings",
    "MqttSettings",
    "OrientationSourceSettings",
    "PollingSourceSettings",
    "SessionSettings",
    "SignalSettings",
    "TcpSettings",
    "TransportSettings",
]
