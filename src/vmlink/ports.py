"""Host port helpers for forwarded guest ports."""

import contextlib
import socket

from vmlink import constants
from vmlink._logging import get_logger

logger = get_logger(__name__)

MAX_PORT = 65535


def _bind(host: str, port: int) -> socket.socket:
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        s.bind((host, port))
    except OSError:
        s.close()
        raise
    return s


def _hold_companions(stack: contextlib.ExitStack, host: str, port: int, offsets: tuple[int, ...]) -> bool:
    for offset in offsets:
        if port + offset > MAX_PORT:
            return False
        try:
            stack.enter_context(_bind(host, port + offset))
        except OSError:
            return False
    return True


def allocate_port(
    host: str = constants.PORT_BIND_HOST,
    *,
    companions: tuple[int, ...] = (),
    attempts: int = 10,
) -> int:
    """Allocate an ephemeral port by binding and releasing.

    ``companions`` are offsets of further ports the caller binds next to the
    returned one (QEMU's serial and monitor consoles). A candidate is only
    returned when those are in range and free as well.

    All ports are released before returning, so another process can still
    take one before QEMU binds it. QEMU then exits during boot and the
    caller sees BootProcessExitedError.

    Raises:
        OSError: no suitable port within ``attempts`` tries
    """
    for _ in range(attempts):
        with contextlib.ExitStack() as stack:
            port = stack.enter_context(_bind(host, 0)).getsockname()[1]
            if _hold_companions(stack, host, port, companions):
                logger.debug("Allocated ephemeral port", extra={"port": port, "host": host})
                return port
    raise OSError(f"no free port on {host} with companion ports at offsets {list(companions)}")


def split_address(address: str) -> tuple[str, int]:
    """Split ``host:port`` (or ``[v6]:port``) into its parts.

    Raises:
        ValueError: address has no port or the port is not numeric
    """
    host, sep, port = address.rpartition(":")
    if not sep or not host:
        raise ValueError(f"missing port in address {address!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host, int(port)


def join_address(host: str, port: int) -> str:
    """Inverse of split_address()."""
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"
