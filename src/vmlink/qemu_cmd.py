"""QEMU command line builder for test systems.

Translates a System's declarative configuration into the argv that boots
it. Pure: no filesystem access, no process spawning. The environment is
only read through Settings, once per build.
"""

from vmlink import constants
from vmlink._logging import get_logger
from vmlink.exceptions import SystemConfigError
from vmlink.models import Bios, System
from vmlink.settings import Settings

logger = get_logger(__name__)

BACKEND_NAME = "qemu"


def qemu_image_path(image: str, settings: Settings | None = None) -> str:
    """Conventional location of the cached image for ``image``."""
    settings = settings or Settings()
    return str(settings.qemu_image_dir / f"{image}.img")


def _firmware_args(system: System, settings: Settings) -> list[str]:
    if system.bios == Bios.LEGACY.value:
        return []
    if system.bios == Bios.UEFI.value:
        return ["-bios", settings.bios_path]
    raise SystemConfigError(
        f'cannot set bios to "{system.bios}", only "uefi" or unset are supported',
        context={"system": system.name, "bios": system.bios},
    )


def _drive_arg(image_path: str, virtio: bool) -> str:
    drive = f"file={image_path},format=raw"
    if virtio:
        drive += ",if=virtio"
    return drive


def _net_args(port: int, virtio: bool) -> list[str]:
    driver = constants.VIRTIO_NET_DRIVER if virtio else constants.DEFAULT_NET_DRIVER
    return [
        "-netdev",
        f"user,id={constants.NETDEV_ID},hostfwd=tcp:{constants.PORT_BIND_HOST}:{port}-:{constants.GUEST_SSH_PORT}",
        "-device",
        f"netdev={constants.NETDEV_ID},driver={driver}",
    ]


def _telnet(port: int) -> str:
    return f"telnet:{constants.PORT_BIND_HOST}:{port},server,nowait"


def build_qemu_cmd(
    system: System,
    image_path: str,
    memory_mb: int,
    port: int,
    *,
    settings: Settings | None = None,
) -> list[str]:
    """Build the QEMU argv that boots ``system``.

    Args:
        system: System to boot
        image_path: Resolved local path of the raw disk image
        memory_mb: Guest memory in MB, passed through verbatim
        port: Host port forwarded to the guest's SSH port. The serial console
            and QEMU monitor listen on telnet at fixed offsets from it.
        settings: Configuration; read from the environment when omitted

    Returns:
        QEMU command as list of strings

    Raises:
        SystemConfigError: backend is not qemu or bios is not "" / "uefi"
    """
    if system.backend != BACKEND_NAME:
        raise SystemConfigError(
            f"cannot build {BACKEND_NAME} command for system {system.name} using backend {system.backend!r}",
            context={"system": system.name, "backend": system.backend},
        )

    settings = settings or Settings()
    firmware = _firmware_args(system, settings)

    cmd: list[str] = [settings.qemu_bin, "-enable-kvm", "-snapshot"]
    if not settings.qemu_gui:
        cmd.append("-nographic")
    cmd += ["-m", str(memory_mb)]
    cmd += _net_args(port, system.virtio_net)
    cmd += [
        "-serial",
        _telnet(port + constants.SERIAL_PORT_OFFSET),
        "-monitor",
        _telnet(port + constants.MONITOR_PORT_OFFSET),
    ]
    cmd += firmware
    cmd += ["-drive", _drive_arg(image_path, system.virtio_disk)]

    logger.debug("Built QEMU command", extra={"system": system.name, "cmd": cmd})
    return cmd
