"""Port liveness detection for booting systems.

wait_port_up() blocks until a TCP endpoint accepts a connection. When the
caller also hands over the process that is booting the system, the dial
loop is raced against that process exiting: a misconfigured VM dies in
milliseconds, and without the race the caller would only notice once its
own boot deadline expired.

Cancellation is the caller's: wrap the call in ``asyncio.timeout()`` or
cancel the awaiting task. The waiter itself has no overall deadline.
"""

from __future__ import annotations

import asyncio
import contextlib
import time

from vmlink import constants
from vmlink._logging import get_logger
from vmlink.exceptions import BootProcessExitedError
from vmlink.platform_utils import BootProcess, wait_status
from vmlink.ports import split_address

logger = get_logger(__name__)


async def probe_port(host: str, port: int, timeout: float) -> bool:
    """Attempt a single TCP connection, closing it immediately on success.

    Returns:
        True if the endpoint accepted the connection, False otherwise
    """
    try:
        async with asyncio.timeout(timeout):
            _reader, writer = await asyncio.open_connection(host, port)
    except (OSError, TimeoutError):
        return False
    writer.close()
    with contextlib.suppress(OSError):
        await writer.wait_closed()
    return True


async def wait_port_up(
    system: object,
    address: str,
    process: BootProcess | None = None,
    *,
    dial_timeout: float = constants.PORT_DIAL_TIMEOUT_SECONDS,
    poll_interval: float = constants.PORT_POLL_INTERVAL_SECONDS,
) -> None:
    """Wait until ``address`` accepts TCP connections.

    Args:
        system: System (or plain label) being waited on, for diagnostics
        address: ``host:port`` to probe
        process: Optional boot process; its exit aborts the wait
        dial_timeout: Timeout of each individual connect attempt
        poll_interval: Pause between failed connect attempts

    Raises:
        BootProcessExitedError: process exited before the port came up
        asyncio.CancelledError / TimeoutError: caller cancelled the wait
    """
    host, port = split_address(address)
    start = time.monotonic()
    attempts = 0

    async def dial_until_up() -> None:
        nonlocal attempts
        while True:
            attempts += 1
            if await probe_port(host, port, dial_timeout):
                return
            await asyncio.sleep(poll_interval)

    async def monitor_process_death(proc: BootProcess) -> None:
        returncode = await proc.wait()
        raise BootProcessExitedError(address, wait_status(returncode), context={"system": str(system)})

    logger.debug("Waiting for address", extra={"system": str(system), "address": address})

    if process is None:
        await dial_until_up()
    else:
        dial_task = asyncio.create_task(dial_until_up())
        death_task = asyncio.create_task(monitor_process_death(process))
        try:
            done, _pending = await asyncio.wait({dial_task, death_task}, return_when=asyncio.FIRST_COMPLETED)
            if death_task in done:
                await death_task  # raises BootProcessExitedError
            await dial_task
        finally:
            for task in (dial_task, death_task):
                if not task.done():
                    task.cancel()
            for task in (dial_task, death_task):
                with contextlib.suppress(BaseException):
                    await task

    logger.info(
        "Address is up",
        extra={
            "system": str(system),
            "address": address,
            "attempts": attempts,
            "elapsed_ms": round((time.monotonic() - start) * 1000),
        },
    )
