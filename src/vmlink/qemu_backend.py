"""QEMU backend: boot a system and hand back a controllable session.

allocate() is the reference caller of the three core pieces:

    build_qemu_cmd()  ->  spawn  ->  wait_port_up(process)  ->  SessionClient

The whole bring-up is bounded by Settings.boot_timeout. On any failure the
spawned process is stopped before the error propagates.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from vmlink import constants
from vmlink._logging import get_logger
from vmlink.exceptions import ImageNotFoundError
from vmlink.models import SshConfig, System
from vmlink.platform_utils import ProcessWrapper
from vmlink.port_wait import wait_port_up
from vmlink.ports import allocate_port, join_address
from vmlink.qemu_cmd import build_qemu_cmd, qemu_image_path
from vmlink.settings import Settings
from vmlink.ssh_client import Dialer, SessionClient, dial_ssh

logger = get_logger(__name__)

Spawner = Callable[[list[str]], Awaitable[ProcessWrapper]]


async def spawn_process(cmd: list[str]) -> ProcessWrapper:
    """Default process-start primitive. Standard streams are inherited."""
    proc = await asyncio.create_subprocess_exec(*cmd, stdin=asyncio.subprocess.DEVNULL)
    return ProcessWrapper(proc)


@dataclass
class QemuInstance:
    """A booted system: its process and its control-channel session."""

    system: System
    address: str
    process: ProcessWrapper
    client: SessionClient


class QemuBackend:
    """Boots systems with QEMU and connects to them over SSH.

    Settings passed to the constructor are used as given. Without them the
    environment is read again for every allocate(), so VMLINK_* changes
    (the firmware override included) apply to the next boot.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        ssh_config: SshConfig | None = None,
        *,
        dialer: Dialer = dial_ssh,
        spawner: Spawner = spawn_process,
    ) -> None:
        self._settings = settings
        self.ssh_config = ssh_config or SshConfig()
        self._dialer = dialer
        self._spawner = spawner

    @property
    def settings(self) -> Settings:
        if self._settings is not None:
            return self._settings
        return Settings()

    def image_path(self, system: System, settings: Settings | None = None) -> str:
        """Resolved cached image for ``system``.

        Raises:
            ImageNotFoundError: image is not in the cache directory
        """
        path = qemu_image_path(system.image, settings or self.settings)
        if not Path(path).exists():
            raise ImageNotFoundError(
                f"cannot find qemu image for {system.name} at {path}",
                context={"system": system.name, "image": system.image},
            )
        return path

    async def allocate(self, system: System, *, memory_mb: int | None = None, job: str = "") -> QemuInstance:
        """Boot ``system`` and return it once SSH is reachable.

        Raises:
            SystemConfigError: invalid system configuration
            ImageNotFoundError: image missing from the cache
            BootProcessExitedError: QEMU exited during boot
            TimeoutError: system not reachable within boot_timeout
        """
        settings = self.settings
        path = self.image_path(system, settings)
        port = allocate_port(companions=(constants.SERIAL_PORT_OFFSET, constants.MONITOR_PORT_OFFSET))
        cmd = build_qemu_cmd(system, path, memory_mb or settings.default_memory_mb, port, settings=settings)
        address = join_address(constants.PORT_BIND_HOST, port)

        logger.info("Starting QEMU", extra={"system": system.name, "address": address})
        process = await self._spawner(cmd)
        client = SessionClient(
            None,
            address,
            self.ssh_config,
            job=job or system.name,
            dialer=self._dialer,
            warn_timeout=settings.warn_timeout,
            kill_timeout=settings.kill_timeout,
            retry_interval=settings.reboot_retry_interval,
        )
        try:
            async with asyncio.timeout(settings.boot_timeout):
                await wait_port_up(
                    system,
                    address,
                    process,
                    dial_timeout=settings.dial_timeout,
                    poll_interval=settings.port_poll_interval,
                )
                # QEMU's user-mode forward accepts TCP before the guest's sshd is up.
                await client.dial_on_reboot()
        except BaseException:
            await client.close()
            await self._stop(process, system)
            raise

        logger.info("System ready", extra={"system": system.name, "address": address, "pid": process.pid})
        return QemuInstance(system=system, address=address, process=process, client=client)

    async def discard(self, instance: QemuInstance) -> None:
        """Close the session and stop the QEMU process."""
        await instance.client.close()
        await self._stop(instance.process, instance.system)
        logger.info("Discarded system", extra={"system": instance.system.name, "address": instance.address})

    async def _stop(self, process: ProcessWrapper, system: System) -> None:
        """SIGTERM, then SIGKILL if QEMU is still there after the grace period."""
        if process.returncode is not None:
            return
        await process.terminate()
        try:
            await process.wait_with_timeout(constants.TERM_GRACE_SECONDS)
            return
        except TimeoutError:
            logger.warning("QEMU ignored SIGTERM, killing", extra={"system": system.name, "pid": process.pid})
        await process.kill()
        with contextlib.suppress(TimeoutError):
            await process.wait_with_timeout(constants.KILL_GRACE_SECONDS)
