"""vmlink: bring up and keep control of ephemeral test systems.

Connectivity layer of a distributed test runner:

- wait_port_up(): wait for a booting system's port, racing the boot process
- SessionClient: SSH session that survives test-triggered reboots
- build_qemu_cmd(): declarative System -> QEMU argv

Quick Start:
    ```python
    from vmlink import QemuBackend, System

    backend = QemuBackend()
    instance = await backend.allocate(System(name="ubuntu-22.04-64", image="ubuntu-22.04-64"))
    try:
        print(await instance.client.run("uname -a"))
        await instance.client.reboot()
    finally:
        await backend.discard(instance)
    ```
"""

from vmlink.exceptions import (
    BootProcessExitedError,
    CommandError,
    DialError,
    ImageNotFoundError,
    PermanentError,
    RebootTimeoutError,
    SessionClosedError,
    SystemConfigError,
    TransientError,
    VmlinkError,
)
from vmlink.models import Bios, SshConfig, System
from vmlink.port_wait import wait_port_up
from vmlink.qemu_backend import QemuBackend, QemuInstance
from vmlink.qemu_cmd import build_qemu_cmd, qemu_image_path
from vmlink.settings import Settings
from vmlink.ssh_client import SessionClient, dial_on_reboot, dial_ssh

__all__ = [
    "Bios",
    "BootProcessExitedError",
    "CommandError",
    "DialError",
    "ImageNotFoundError",
    "PermanentError",
    "QemuBackend",
    "QemuInstance",
    "RebootTimeoutError",
    "SessionClient",
    "SessionClosedError",
    "Settings",
    "SshConfig",
    "System",
    "SystemConfigError",
    "TransientError",
    "VmlinkError",
    "build_qemu_cmd",
    "dial_on_reboot",
    "dial_ssh",
    "qemu_image_path",
    "wait_port_up",
]

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("vmlink")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"
