"""Constants for vmlink configuration and limits."""

from typing import Final

# ============================================================================
# Port Liveness
# ============================================================================

PORT_DIAL_TIMEOUT_SECONDS: Final[float] = 0.5
"""Per-attempt TCP connect timeout while waiting for a port to come up."""

PORT_POLL_INTERVAL_SECONDS: Final[float] = 0.1
"""Pause between TCP connect attempts."""

PORT_BIND_HOST: Final[str] = "127.0.0.1"
"""Host the forwarded guest ports are bound to."""

# ============================================================================
# Reboot Recovery
# ============================================================================

REBOOT_RETRY_INTERVAL_SECONDS: Final[float] = 0.2
"""Pause between SSH re-dial attempts after a reboot request."""

DEFAULT_WARN_TIMEOUT_SECONDS: Final[float] = 5 * 60
"""Reboot recovery slower than this is reported as taking a while."""

DEFAULT_KILL_TIMEOUT_SECONDS: Final[float] = 15 * 60
"""Reboot recovery slower than this declares the system lost."""

SSH_DIAL_TIMEOUT_SECONDS: Final[float] = 5.0
"""TCP/banner/auth timeout of a single SSH dial."""

BOOT_ID_PATH: Final[str] = "/proc/sys/kernel/random/boot_id"
"""Linux file holding a random id regenerated on every boot."""

# ============================================================================
# QEMU
# ============================================================================

QEMU_BIN: Final[str] = "qemu-system-x86_64"

DEFAULT_OVMF_PATH: Final[str] = "/usr/share/OVMF/OVMF_CODE.fd"
"""Conventional UEFI firmware location (Debian/Ubuntu ovmf package)."""

DEFAULT_MEMORY_MB: Final[int] = 1500
"""Default guest memory in MB."""

SERIAL_PORT_OFFSET: Final[int] = 100
"""Telnet serial console listens on ssh port + this offset."""

MONITOR_PORT_OFFSET: Final[int] = 200
"""Telnet QEMU monitor listens on ssh port + this offset."""

GUEST_SSH_PORT: Final[int] = 22

NETDEV_ID: Final[str] = "user0"

VIRTIO_NET_DRIVER: Final[str] = "virtio-net-pci"

DEFAULT_NET_DRIVER: Final[str] = "e1000"

BOOT_TIMEOUT_SECONDS: Final[float] = 10 * 60
"""Upper bound for a freshly started VM to accept SSH connections."""

TERM_GRACE_SECONDS: Final[float] = 3.0
"""Time QEMU gets to exit after SIGTERM before it is killed."""

KILL_GRACE_SECONDS: Final[float] = 5.0
"""Time allowed for a killed boot process to be reaped."""
