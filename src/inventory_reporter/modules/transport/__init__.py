"""Outbound transports; one is chosen per deployment via `transport.kind`."""

from ...core.config import TransportSettings
from .base import (
    ConnectionPhase,
    ConnectionUnavailable,
    EncodingFailure,
    SendOutcome,
    SendResult,
    Transport,
    TransportError,
)
from .mqtt import QueuedPublishTransport
from .tcp import StreamTransport


def build_transport(settings: TransportSettings) -> Transport:
    """Instantiate the transport selected by the configuration."""
    endpoint = settings.endpoint
    if settings.kind == "mqtt":
        mqtt = settings.mqtt
        return QueuedPublishTransport(
            host=endpoint.host,
            port=endpoint.port,
            topic=mqtt.topic,
            qos=mqtt.qos,
            keepalive=mqtt.keepalive,
            client_id_prefix=mqtt.client_id_prefix,
            reconnect_interval=mqtt.reconnect_interval,
            username=mqtt.username,
            password=mqtt.password,
        )
    return StreamTransport(
        host=endpoint.host,
        port=endpoint.port,
        retry_interval=settings.tcp.retry_interval,
        connect_timeout=settings.tcp.connect_timeout,
    )


__all__ = [
    "ConnectionPhase",
    "ConnectionUnavailable",
    "EncodingFailure",
    "QueuedPublishTransport",
    "SendOutcome",
    "SendResult",
    "StreamTransport",
    "Transport",
    "TransportError",
    "build_transport",
]
