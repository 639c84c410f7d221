"""
Transport contract shared by the queued-publish and persistent-stream clients.

Both strategies report their connection through the same `ConnectionPhase`
enum and never raise out of `send`; failures come back inside `SendResult`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable

from ...core.snapshot import Snapshot


class ConnectionPhase(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    WAITING = "waiting"
    CONNECTED = "connected"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SendOutcome(str, Enum):
    SENT = "sent"
    QUEUED = "queued"
    FAILED = "failed"


class TransportError(RuntimeError):
    """Base class for delivery failures."""


class ConnectionUnavailable(TransportError):
    """Raised (or reported) when the transport has no usable connection."""


class EncodingFailure(TransportError):
    """Raised (or reported) when a snapshot cannot be serialized for the wire."""


@dataclass(frozen=True, slots=True)
class SendResult:
    outcome: SendOutcome
    error: TransportError | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is not SendOutcome.FAILED

    @classmethod
    def sent(cls) -> SendResult:
        return cls(SendOutcome.SENT)

    @classmethod
    def queued(cls) -> SendResult:
        return cls(SendOutcome.QUEUED)

    @classmethod
    def failed(cls, error: TransportError) -> SendResult:
        return cls(SendOutcome.FAILED, error)


@runtime_checkable
class Transport(Protocol):
    """Outbound channel for assembled snapshots."""

    @property
    def phase(self) -> ConnectionPhase: ...

    async def connect(self) -> None:
        """Begin connecting in the background; must not wait for the remote end."""
        ...

    async def send(self, snapshot: Snapshot) -> SendResult: ...

    async def drain(self, timeout: float) -> bool:
        """Wait up to `timeout` seconds for buffered payloads to leave; True when none remain."""
        ...

    async def disconnect(self) -> None: ...


def encode_snapshot(snapshot: Snapshot) -> str:
    """Serialize a snapshot, translating serializer errors into EncodingFailure."""
    try:
        return snapshot.to_wire()
    except (TypeError, ValueError) as exc:
        raise EncodingFailure(f"Snapshot could not be encoded: {exc}") from exc


__all__ = [
    "ConnectionPhase",
    "ConnectionUnavailable",
    "EncodingFailure",
    "SendOutcome",
    "SendResult",
    "Transport",
    "TransportError",
    "encode_snapshot",
]
