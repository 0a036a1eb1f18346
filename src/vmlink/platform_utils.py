"""Process handle utilities.

Provides the BootProcess protocol observed by the port waiter, a PID-reuse
safe process wrapper, and conversion of asyncio return codes back to raw
POSIX wait statuses.
"""

import asyncio
import contextlib
from typing import Protocol, runtime_checkable

import psutil


@runtime_checkable
class BootProcess(Protocol):
    """Caller-owned handle to a process believed to be booting a system.

    Satisfied by both asyncio.subprocess.Process and ProcessWrapper.
    Only ever observed here, never started or stopped.
    """

    @property
    def returncode(self) -> int | None: ...

    async def wait(self) -> int: ...


def wait_status(returncode: int) -> int:
    """Convert an asyncio/subprocess return code to a raw POSIX wait status.

    asyncio reports ``-N`` for a child killed by signal N and the exit code
    otherwise; the raw status keeps the exit code in the high byte and the
    terminating signal in the low bits.

    >>> wait_status(1)
    256
    >>> wait_status(-9)
    9
    """
    if returncode < 0:
        return -returncode & 0x7F
    return (returncode & 0xFF) << 8


class ProcessWrapper:
    """PID-reuse safe process wrapper using psutil.

    Wraps asyncio.subprocess.Process with psutil.Process for safer PID monitoring.
    """

    def __init__(self, async_proc: asyncio.subprocess.Process) -> None:
        self.async_proc = async_proc
        self.psutil_proc: psutil.Process | None = None

        if async_proc.pid:
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                self.psutil_proc = psutil.Process(async_proc.pid)

    async def is_running(self) -> bool:
        """Check if process is still running (PID-reuse safe).

        The blocking psutil call runs in the default thread pool.
        """
        if self.async_proc.returncode is not None:
            return False
        if not self.psutil_proc:
            return True

        try:
            return await asyncio.to_thread(self.psutil_proc.is_running)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return False

    @property
    def pid(self) -> int | None:
        """Process ID."""
        return self.async_proc.pid

    @property
    def returncode(self) -> int | None:
        """Process return code (None if still running)."""
        return self.async_proc.returncode

    async def wait(self) -> int:
        """Wait for process to complete.

        Returns:
            Process exit code
        """
        return await self.async_proc.wait()

    async def terminate(self) -> None:
        """Terminate process (SIGTERM)."""
        if self.psutil_proc and await self.is_running():
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                await asyncio.to_thread(self.psutil_proc.terminate)
        elif self.async_proc.returncode is None:
            self.async_proc.terminate()

    async def kill(self) -> None:
        """Kill process (SIGKILL)."""
        if self.psutil_proc and await self.is_running():
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                await asyncio.to_thread(self.psutil_proc.kill)
        elif self.async_proc.returncode is None:
            self.async_proc.kill()

    async def wait_with_timeout(self, timeout: float) -> int:
        """Wait for process exit, raising TimeoutError after ``timeout`` seconds."""
        return await asyncio.wait_for(self.wait(), timeout=timeout)
