"""Tests for wait_port_up().

Uses real localhost listeners and real `sleep` / `false` processes; no mocks.
"""

import asyncio
import time
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field

import pytest

from vmlink.exceptions import BootProcessExitedError, PermanentError
from vmlink.port_wait import probe_port, wait_port_up
from vmlink.ports import allocate_port

SYSTEM = "some-system"


@dataclass
class Listener:
    """Localhost TCP listener recording every accepted connection."""

    server: asyncio.Server
    accepted: int = 0
    connected: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def address(self) -> str:
        host, port = self.server.sockets[0].getsockname()[:2]
        return f"{host}:{port}"


async def _start_listener(port: int = 0) -> Listener:
    listener: Listener

    async def handle(_reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        listener.accepted += 1
        listener.connected.set()
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", port)
    listener = Listener(server)
    return listener


@pytest.fixture
async def listener() -> AsyncGenerator[Listener, None]:
    lst = await _start_listener()
    yield lst
    lst.server.close()
    await lst.server.wait_closed()


# ============================================================================
# No process handle
# ============================================================================


class TestWaitPortUpNoProcess:
    """Pure polling mode (remote or pre-existing systems)."""

    async def test_returns_when_listener_accepts(self, listener: Listener) -> None:
        await wait_port_up(SYSTEM, listener.address)

        # The waiter must really have connected to our listener
        await asyncio.wait_for(listener.connected.wait(), timeout=5)
        assert listener.accepted >= 1

    async def test_waits_for_late_listener(self) -> None:
        port = allocate_port()
        late: list[Listener] = []

        async def start_later() -> None:
            await asyncio.sleep(0.3)
            late.append(await _start_listener(port))

        starter = asyncio.create_task(start_later())
        try:
            start = time.monotonic()
            await wait_port_up(SYSTEM, f"127.0.0.1:{port}", poll_interval=0.02)
            assert time.monotonic() - start >= 0.25
            await starter
            await asyncio.wait_for(late[0].connected.wait(), timeout=5)
        finally:
            await starter
            for lst in late:
                lst.server.close()
                await lst.server.wait_closed()

    async def test_stops_polling_once_up(self, listener: Listener) -> None:
        """One-shot: no further probes after the port was seen up."""
        await wait_port_up(SYSTEM, listener.address, poll_interval=0.01)
        await asyncio.wait_for(listener.connected.wait(), timeout=5)
        await asyncio.sleep(0.2)
        assert listener.accepted == 1

    async def test_caller_timeout_cancels_wait(self) -> None:
        address = f"127.0.0.1:{allocate_port()}"
        start = time.monotonic()
        with pytest.raises(TimeoutError):
            async with asyncio.timeout(0.3):
                await wait_port_up(SYSTEM, address, dial_timeout=0.1, poll_interval=0.02)
        # Bounded by roughly one dial attempt after the deadline
        assert time.monotonic() - start < 1.0

    async def test_task_cancellation_propagates(self) -> None:
        task = asyncio.create_task(wait_port_up(SYSTEM, f"127.0.0.1:{allocate_port()}", poll_interval=0.02))
        await asyncio.sleep(0.1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    async def test_invalid_address(self) -> None:
        with pytest.raises(ValueError, match="missing port"):
            await wait_port_up(SYSTEM, "localhost")


# ============================================================================
# With a boot process
# ============================================================================


class TestWaitPortUpWithProcess:
    """Dial loop raced against boot process exit."""

    async def test_running_process_and_listener(self, listener: Listener, spawn) -> None:
        proc = await spawn("sleep", "9999")

        await wait_port_up(SYSTEM, listener.address, proc)

        await asyncio.wait_for(listener.connected.wait(), timeout=5)
        # The waiter only observes the process, never stops it
        assert proc.returncode is None
        assert await proc.is_running()

    async def test_failing_process(self, spawn) -> None:
        proc = await spawn("false", "hope")

        with pytest.raises(
            BootProcessExitedError,
            match=r"^process exited unexpectedly while waiting for address localhost:0 \(wstatus=256\)$",
        ) as exc_info:
            await wait_port_up(SYSTEM, "localhost:0", proc)

        assert exc_info.value.wstatus == 256
        assert exc_info.value.address == "localhost:0"
        assert exc_info.value.context["system"] == SYSTEM
        assert isinstance(exc_info.value, PermanentError)

    async def test_process_killed_by_signal(self, spawn) -> None:
        proc = await spawn("sleep", "9999")
        await proc.kill()
        address = f"127.0.0.1:{allocate_port()}"

        with pytest.raises(BootProcessExitedError, match=r"\(wstatus=9\)$"):
            await wait_port_up(SYSTEM, address, proc)

    async def test_process_death_beats_slow_listener(self, spawn) -> None:
        """Exit is reported even though a listener would have shown up later."""
        port = allocate_port()
        proc = await spawn("sh", "-c", "exit 3")
        late: list[Listener] = []

        async def start_later() -> None:
            await asyncio.sleep(2)
            late.append(await _start_listener(port))

        starter = asyncio.create_task(start_later())
        try:
            with pytest.raises(BootProcessExitedError, match=r"\(wstatus=768\)$"):
                await wait_port_up(SYSTEM, f"127.0.0.1:{port}", proc)
        finally:
            starter.cancel()
            with pytest.raises(asyncio.CancelledError):
                await starter
        assert late == []

    async def test_caller_timeout_with_live_process(self, spawn) -> None:
        proc = await spawn("sleep", "9999")

        with pytest.raises(TimeoutError):
            async with asyncio.timeout(0.3):
                await wait_port_up(SYSTEM, f"127.0.0.1:{allocate_port()}", proc, poll_interval=0.02)

        assert proc.returncode is None


# ============================================================================
# Single probe
# ============================================================================


class TestProbePort:
    async def test_probe_open_port(self, listener: Listener) -> None:
        host, port = listener.address.rsplit(":", 1)
        assert await probe_port(host, int(port), timeout=1) is True

    async def test_probe_closed_port(self) -> None:
        assert await probe_port("127.0.0.1", allocate_port(), timeout=1) is False
