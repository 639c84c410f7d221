import asyncio

import pytest

from inventory_reporter.core.snapshot import HostFacts, SessionState, Snapshot, assemble_snapshot
from inventory_reporter.modules.transport import (
    ConnectionPhase,
    ConnectionUnavailable,
    EncodingFailure,
    SendOutcome,
    StreamTransport,
)
from inventory_reporter.modules.transport.tcp import frame_message


def test_frame_message_appends_single_newline() -> None:
    assert frame_message('{"a":1}') == b'{"a":1}\n'


@pytest.mark.asyncio
async def test_snapshot_is_written_as_one_newline_terminated_line(
    host_facts: HostFacts,
) -> None:
    lines: asyncio.Queue[bytes] = asyncio.Queue()

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        await lines.put(await reader.readline())
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    transport = StreamTransport(host="127.0.0.1", port=port, retry_interval=0.05)
    snapshot = assemble_snapshot(SessionState(), host_facts)

    await transport.connect()
    assert await transport.wait_ready(1.0) is True
    result = await transport.send(snapshot)
    line = await asyncio.wait_for(lines.get(), timeout=1.0)

    await transport.disconnect()
    server.close()
    await server.wait_closed()

    assert result.outcome is SendOutcome.SENT
    assert line == snapshot.to_wire().encode("utf-8") + b"\n"
    assert line.count(b"\n") == 1
    assert transport.phase is ConnectionPhase.CANCELLED


@pytest.mark.asyncio
async def test_send_while_still_connecting_writes_the_line(host_facts: HostFacts) -> None:
    lines: asyncio.Queue[bytes] = asyncio.Queue()

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        while line := await reader.readline():
            await lines.put(line)
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    transport = StreamTransport(host="127.0.0.1", port=port, retry_interval=0.05)
    snapshot = assemble_snapshot(SessionState(), host_facts)

    await transport.connect()
    assert transport.phase is ConnectionPhase.CONNECTING
    result = await transport.send(snapshot)
    line = await asyncio.wait_for(lines.get(), timeout=1.0)
    await transport.disconnect()
    server.close()
    await server.wait_closed()

    assert result.outcome is SendOutcome.SENT
    assert line == snapshot.to_wire().encode("utf-8") + b"\n"
    assert lines.empty()


@pytest.mark.asyncio
async def test_send_without_connect_loop_makes_one_attempt(host_facts: HostFacts) -> None:
    attempts = 0

    async def refuse(host: str, port: int):
        nonlocal attempts
        attempts += 1
        raise ConnectionRefusedError("connection refused")

    transport = StreamTransport(host="127.0.0.1", port=9, retry_interval=0.01, opener=refuse)
    result = await transport.send(assemble_snapshot(SessionState(), host_facts))
    await asyncio.sleep(0.05)

    assert result.outcome is SendOutcome.FAILED
    assert isinstance(result.error, ConnectionUnavailable)
    assert "connection refused" in str(result.error)
    assert attempts == 1
    assert transport.phase is ConnectionPhase.WAITING
    await transport.disconnect()


@pytest.mark.asyncio
async def test_unreachable_endpoint_waits_and_drops_sends(host_facts: HostFacts) -> None:
    attempts = 0

    async def refuse(host: str, port: int):
        nonlocal attempts
        attempts += 1
        raise ConnectionRefusedError("connection refused")

    transport = StreamTransport(host="127.0.0.1", port=9, retry_interval=0.01, opener=refuse)
    await transport.connect()
    assert await transport.wait_ready(0.1) is False

    result = await transport.send(assemble_snapshot(SessionState(), host_facts))
    await transport.disconnect()

    assert attempts >= 2
    assert result.outcome is SendOutcome.FAILED
    assert isinstance(result.error, ConnectionUnavailable)
    assert await transport.drain(0.1) is True


@pytest.mark.asyncio
async def test_send_after_disconnect_fails(host_facts: HostFacts) -> None:
    transport = StreamTransport(host="127.0.0.1", port=9)
    await transport.disconnect()

    result = await transport.send(assemble_snapshot(SessionState(), host_facts))

    assert result.outcome is SendOutcome.FAILED
    assert str(result.error) == "not connected"


@pytest.mark.asyncio
async def test_encoding_failure_is_reported(
    host_facts: HostFacts, monkeypatch: pytest.MonkeyPatch
) -> None:
    transport = StreamTransport(host="127.0.0.1", port=9)

    def _broken(self: Snapshot) -> str:
        raise TypeError("Object of type bytes is not JSON serializable")

    monkeypatch.setattr(Snapshot, "to_wire", _broken)
    result = await transport.send(assemble_snapshot(SessionState(), host_facts))

    assert result.outcome is SendOutcome.FAILED
    assert isinstance(result.error, EncodingFailure)
