"""
CLI entrypoint that runs one inventory reporting session.

The runner loads Dynaconf configuration, layers command-line overrides on top,
registers the delivery coordinator ahead of the signal sources and waits until
the single snapshot has been handed to the transport. Queued MQTT payloads get
a bounded drain window before shutdown; `--stay` keeps the session alive until
SIGINT/SIGTERM.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import logging.handlers
import signal
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from .core.config import ConfigError, ConfigService
from .core.contracts import BaseModule, DeliveryReport, ModuleConfig
from .core.host import collect_host_facts
from .core.orchestrator import Orchestrator
from .core.snapshot import HostFacts
from .modules import (
    BatterySource,
    DeliveryCoordinator,
    LocationSource,
    NetworkPathSource,
    OrientationSource,
    ThermalSource,
    Transport,
    build_transport,
)
from .modules.transport import SendOutcome

LOGGER = logging.getLogger(__name__)
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

SIGNAL_MODULES: dict[str, type[BaseModule]] = {
    "modules.signals.battery": BatterySource,
    "modules.signals.thermal": ThermalSource,
    "modules.signals.network_path": NetworkPathSource,
    "modules.signals.orientation": OrientationSource,
    "modules.signals.location": LocationSource,
}


def _ensure_rotating_file_handler(
    log_file: Path,
    *,
    max_mb: int = 10,
    backup_count: int = 3,
) -> None:
    """Attach a rotating file handler pointed at ``log_file`` if missing."""

    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning("Unable to create log directory %s: %s", log_file.parent, exc)
        return

    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        if isinstance(handler, logging.handlers.RotatingFileHandler):
            existing = getattr(handler, "baseFilename", None)
            if existing and Path(existing) == log_file.resolve():
                return

    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)


def _build_signal_sources(config_service: ConfigService) -> list[tuple[BaseModule, ModuleConfig]]:
    sources: list[tuple[BaseModule, ModuleConfig]] = []
    for name, module_cls in SIGNAL_MODULES.items():
        module_config = config_service.module_config_for(name)
        # The location source reports "denied" itself when disabled.
        if module_config.enabled is False and module_cls is not LocationSource:
            LOGGER.info("Config disabled for %s; skipping", name)
            continue
        sources.append((module_cls(), module_config))
    return sources


async def run_session(
    config_service: ConfigService,
    *,
    transport: Transport | None = None,
    facts: HostFacts | None = None,
    sources: Sequence[BaseModule] | None = None,
    stay: bool = False,
    stop_event: asyncio.Event | None = None,
) -> DeliveryReport | None:
    """
    Run a single reporting session and return the delivery report.

    Returns ``None`` when the session was stopped before either trigger fired.
    Collaborators may be injected; by default they are built from the
    configuration snapshot.
    """

    snapshot = config_service.snapshot
    transport = transport or build_transport(snapshot.transport)
    facts = facts or await asyncio.to_thread(collect_host_facts, snapshot.identity)
    if stop_event is None:
        stop_event = asyncio.Event()
        _install_signal_handlers(stop_event)

    orchestrator = Orchestrator()
    coordinator = DeliveryCoordinator(transport=transport, facts=facts)
    await orchestrator.add_module(coordinator, config_service.module_config_for(coordinator))
    if sources is None:
        registered = _build_signal_sources(config_service)
    else:
        registered = [(source, config_service.module_config_for(source)) for source in sources]
    for module, module_config in registered:
        await orchestrator.add_module(module, module_config)

    LOGGER.info(
        "Reporting via %s to %s:%s (%s profile)",
        snapshot.transport.kind,
        snapshot.transport.endpoint.host,
        snapshot.transport.endpoint.port,
        snapshot.transport.profile,
    )
    report: DeliveryReport | None = None
    await orchestrator.start()
    try:
        delivered = asyncio.create_task(coordinator.delivered.wait())
        stopped = asyncio.create_task(stop_event.wait())
        _, pending = await asyncio.wait({delivered, stopped}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        report = coordinator.last_report
        if report is not None and report.outcome == SendOutcome.QUEUED.value:
            drain_timeout = snapshot.session.drain_timeout_seconds
            if await transport.drain(drain_timeout):
                LOGGER.info("Queued snapshot published.")
            else:
                LOGGER.warning(
                    "Queued snapshot still pending after %.1fs; it will be dropped.", drain_timeout
                )
        if stay and not stop_event.is_set():
            LOGGER.info("Snapshot handled; monitoring until interrupted. Press Ctrl+C to stop.")
            await stop_event.wait()
    finally:
        reports = await orchestrator.health()
        LOGGER.info(
            "Session health at shutdown: %s (%s)",
            Orchestrator.determine_overall_status(reports),
            ", ".join(f"{name}={status.status}" for name, status in reports.items()),
        )
        await orchestrator.stop()
    return report


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    def _request_shutdown(sig_name: str) -> None:
        if not stop_event.is_set():
            LOGGER.info("Received %s; beginning graceful shutdown.", sig_name)
            stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_shutdown, sig.name)
        except NotImplementedError:  # Windows Proactor loop
            signal.signal(  # type: ignore[arg-type]
                sig,
                lambda signum, _frame, sig_name=sig.name: loop.call_soon_threadsafe(
                    _request_shutdown, sig_name or str(signum)
                ),
            )


def configure_logging(level: str) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format=LOG_FORMAT,
    )


def build_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Translate CLI flags into a nested configuration override mapping."""

    overrides: dict[str, Any] = {}
    transport: dict[str, Any] = {}
    if args.transport:
        transport["kind"] = args.transport
    if args.profile:
        transport["profile"] = args.profile
    if transport:
        overrides["transport"] = transport
    if args.timeout is not None:
        overrides["session"] = {"location_timeout_seconds": args.timeout}
    return overrides


def parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Send one device inventory snapshot to a collector."
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Directory that contains config.yaml/secrets.yaml (default: repo config/).",
    )
    parser.add_argument(
        "--transport",
        choices=["tcp", "mqtt"],
        default=None,
        help="Override transport.kind from the configuration.",
    )
    parser.add_argument(
        "--profile",
        choices=["development", "device"],
        default=None,
        help="Override transport.profile (loopback vs remote endpoint).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for a location fix before sending without one.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO).",
    )
    parser.add_argument(
        "--stay",
        action="store_true",
        help="Keep monitoring after the snapshot is sent until interrupted.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)
    try:
        config_service = ConfigService(config_dir=args.config_dir)
        overrides = build_overrides(args)
        if overrides:
            config_service.apply_changes(overrides)
        log_settings = config_service.snapshot.logging
        _ensure_rotating_file_handler(
            log_settings.path,
            max_mb=log_settings.max_mb,
            backup_count=log_settings.backup_count,
        )
        report = asyncio.run(run_session(config_service, stay=args.stay))
    except KeyboardInterrupt:
        LOGGER.info("Interrupted by user.")
        return 0
    except ConfigError as exc:
        LOGGER.error("Configuration failed: %s", exc)
        return 2
    except Exception:  # pragma: no cover - surfaced to operator
        LOGGER.exception("Inventory reporter crashed.")
        return 1
    if report is not None and report.outcome == SendOutcome.FAILED.value:
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())


__all__ = ["build_overrides", "main", "run_session"]
