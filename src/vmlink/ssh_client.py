"""Reboot-tolerant SSH session client.

SessionClient owns one SSH connection to a test system. When a test step
reboots the system, dial_on_reboot() re-dials until the system answers
again, with two-tier patience:

    elapsed <= warn_timeout          retry quietly
    warn_timeout < elapsed <= kill   retry, report "taking a while"
    elapsed > kill_timeout           RebootTimeoutError (fatal)

Elapsed time is measured against the reboot request timestamp with
time.monotonic(), never with network timeouts. The dial primitive is a
constructor argument so tests and alternative transports can replace it.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol

import paramiko
from tenacity import AsyncRetrying, RetryCallState, RetryError, retry_if_exception_type, wait_fixed

from vmlink import constants
from vmlink._logging import get_logger
from vmlink.exceptions import CommandError, DialError, RebootTimeoutError, SessionClosedError, TransientError
from vmlink.models import SshConfig
from vmlink.ports import split_address

if TYPE_CHECKING:
    from types import TracebackType

logger = get_logger(__name__)


class Dialer(Protocol):
    """Dial primitive: (network, address, config) -> connected SSH client."""

    async def __call__(self, network: str, address: str, config: SshConfig) -> paramiko.SSHClient: ...


def _connect_blocking(address: str, config: SshConfig) -> paramiko.SSHClient:
    host, port = split_address(address)
    cli = paramiko.SSHClient()
    cli.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    try:
        cli.connect(
            host,
            port=port,
            username=config.username,
            password=config.password,
            key_filename=str(config.key_filename) if config.key_filename else None,
            timeout=config.timeout,
            banner_timeout=config.timeout,
            auth_timeout=config.timeout,
            look_for_keys=config.look_for_keys,
            allow_agent=False,
        )
    except (OSError, EOFError, paramiko.SSHException) as e:
        cli.close()
        raise DialError(f"cannot connect to {address}: {e}", context={"address": address}) from e
    return cli


async def dial_ssh(network: str, address: str, config: SshConfig) -> paramiko.SSHClient:
    """Default dial primitive: paramiko connect in a worker thread.

    Raises:
        DialError: connection or authentication failed
        ValueError: network is not "tcp"
    """
    if network != "tcp":
        raise ValueError(f"unsupported network {network!r}")
    # The worker thread cannot be interrupted; a client it connects after
    # the caller gave up is closed once the thread finishes.
    future = asyncio.ensure_future(asyncio.to_thread(_connect_blocking, address, config))
    try:
        return await asyncio.shield(future)
    except asyncio.CancelledError:
        future.add_done_callback(_close_abandoned)
        raise


def _close_abandoned(future: asyncio.Future[paramiko.SSHClient]) -> None:
    if future.cancelled() or future.exception() is not None:
        return
    logger.debug("Closing connection made by a cancelled dial")
    asyncio.get_running_loop().run_in_executor(None, future.result().close)


def _exec_blocking(conn: paramiko.SSHClient, command: str, timeout: float | None) -> tuple[int, str, str]:
    _stdin, stdout, stderr = conn.exec_command(command, timeout=timeout)
    out = stdout.read().decode(errors="replace")
    err = stderr.read().decode(errors="replace")
    return stdout.channel.recv_exit_status(), out, err


class _RebootPendingError(Exception):
    """Dial succeeded but the system has not gone down yet."""


# Anything else (a bug in the dialer, a bad address) propagates at once.
_RETRYABLE_ERRORS = (TransientError, OSError, EOFError, paramiko.SSHException, _RebootPendingError)


class SessionClient:
    """Control-channel session to one system.

    May be created without a connection; dial_on_reboot() then performs
    the first connection with the same patience rules.

    Attributes:
        address: ``host:port`` of the system's SSH endpoint
        job: Label used in diagnostics (job or system name)
    """

    def __init__(
        self,
        connection: paramiko.SSHClient | None,
        address: str,
        config: SshConfig,
        *,
        job: str = "",
        dialer: Dialer = dial_ssh,
        warn_timeout: float = constants.DEFAULT_WARN_TIMEOUT_SECONDS,
        kill_timeout: float = constants.DEFAULT_KILL_TIMEOUT_SECONDS,
        retry_interval: float = constants.REBOOT_RETRY_INTERVAL_SECONDS,
        on_slow_reboot: Callable[[float], None] | None = None,
    ) -> None:
        self._conn: paramiko.SSHClient | None = connection
        self._config = config
        self._dialer = dialer
        self._warn_timeout = warn_timeout
        self._kill_timeout = kill_timeout
        self._retry_interval = retry_interval
        self._on_slow_reboot = on_slow_reboot
        self._closed = False
        self.address = address
        self.job = job or address

    @classmethod
    async def dial(
        cls,
        address: str,
        config: SshConfig,
        *,
        dialer: Dialer = dial_ssh,
        **kwargs: Any,
    ) -> SessionClient:
        """Dial ``address`` once and wrap the connection."""
        conn = await dialer("tcp", address, config)
        return cls(conn, address, config, dialer=dialer, **kwargs)

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    @property
    def warn_timeout(self) -> float:
        return self._warn_timeout

    @property
    def kill_timeout(self) -> float:
        return self._kill_timeout

    def set_warn_timeout(self, timeout: float) -> None:
        self._warn_timeout = timeout

    def set_kill_timeout(self, timeout: float) -> None:
        self._kill_timeout = timeout

    def set_job(self, job: str) -> None:
        self.job = job

    @property
    def connection(self) -> paramiko.SSHClient:
        """The current connection.

        Raises:
            SessionClosedError: client was closed
        """
        if self._closed:
            raise SessionClosedError(f"session to {self.job} is closed", context={"address": self.address})
        if self._conn is None:
            raise SessionClosedError(f"session to {self.job} is not connected", context={"address": self.address})
        return self._conn

    @property
    def closed(self) -> bool:
        return self._closed

    # -------------------------------------------------------------------------
    # Remote commands
    # -------------------------------------------------------------------------

    async def run(self, command: str, *, timeout: float | None = None) -> str:
        """Run ``command`` on the system and return its stdout.

        Raises:
            CommandError: command exited non-zero
            SessionClosedError: client was closed
        """
        status, out, err = await asyncio.to_thread(_exec_blocking, self.connection, command, timeout)
        if status != 0:
            raise CommandError(
                f"command on {self.job} failed with exit status {status}: {err.strip() or out.strip()}",
                exit_status=status,
                output=out + err,
            )
        return out

    async def reboot_id(self) -> str:
        """Random id the kernel regenerates on every boot."""
        return (await self.run(f"cat {constants.BOOT_ID_PATH}")).strip()

    async def reboot(self, command: str = "reboot") -> None:
        """Ask the system to reboot and wait until the session is back.

        The current boot id is captured first so that a connection made
        before the system actually went down is not mistaken for recovery.
        """
        previous_boot_id = await self.reboot_id()
        requested_at = time.monotonic()
        logger.info("Rebooting system", extra={"job": self.job, "address": self.address})
        # The connection may drop before the command returns.
        with contextlib.suppress(OSError, EOFError, paramiko.SSHException):
            await asyncio.to_thread(self.connection.exec_command, command)
        await self.dial_on_reboot(requested_at, previous_boot_id=previous_boot_id)

    # -------------------------------------------------------------------------
    # Reboot recovery
    # -------------------------------------------------------------------------

    async def _dial_once(self, previous_boot_id: str | None) -> paramiko.SSHClient:
        conn = await self._dialer("tcp", self.address, self._config)
        if previous_boot_id is None:
            return conn
        try:
            _status, out, _err = await asyncio.to_thread(
                _exec_blocking, conn, f"cat {constants.BOOT_ID_PATH}", self._config.timeout
            )
            if out.strip() == previous_boot_id:
                raise _RebootPendingError(f"{self.job} has not rebooted yet")
        except BaseException:
            await asyncio.to_thread(conn.close)
            raise
        return conn

    async def _replace_connection(self, conn: paramiko.SSHClient) -> None:
        old, self._conn = self._conn, conn
        if old is not None and old is not conn:
            with contextlib.suppress(OSError, EOFError, paramiko.SSHException):
                await asyncio.to_thread(old.close)

    async def dial_on_reboot(
        self,
        requested_at: float | None = None,
        *,
        previous_boot_id: str | None = None,
    ) -> None:
        """Re-establish the session after a reboot request.

        Args:
            requested_at: time.monotonic() timestamp of the reboot request
                (default: now)
            previous_boot_id: Boot id before the reboot. When given, a
                connection to the same boot is dropped and dialing continues.

        Raises:
            RebootTimeoutError: kill_timeout elapsed without a new session
            SessionClosedError: client was closed
            asyncio.CancelledError: the awaiting task was cancelled

        Only connectivity errors are retried; any other exception raised by
        the dialer propagates unchanged on the first attempt.
        """
        if self._closed:
            raise SessionClosedError(f"session to {self.job} is closed", context={"address": self.address})
        if requested_at is None:
            requested_at = time.monotonic()

        next_warning = self._warn_timeout

        def elapsed() -> float:
            return time.monotonic() - requested_at

        def past_kill_timeout(_retry_state: RetryCallState) -> bool:
            return elapsed() > self._kill_timeout

        def report_progress(retry_state: RetryCallState) -> None:
            nonlocal next_warning
            spent = elapsed()
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            if spent <= next_warning:
                logger.debug(
                    "Reboot dial failed, retrying",
                    extra={"job": self.job, "address": self.address, "attempt": retry_state.attempt_number, "error": str(exc)},
                )
                return
            while next_warning < spent:
                next_warning += self._warn_timeout
            logger.warning(
                "Reboot of %s is taking a while...",
                self.job,
                extra={"job": self.job, "address": self.address, "elapsed": spent},
            )
            if self._on_slow_reboot is not None:
                self._on_slow_reboot(spent)

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(_RETRYABLE_ERRORS),
                stop=past_kill_timeout,
                wait=wait_fixed(self._retry_interval),
                before_sleep=report_progress,
            ):
                with attempt:
                    conn = await self._dial_once(previous_boot_id)
                    await self._replace_connection(conn)
        except RetryError as e:
            spent = elapsed()
            logger.error(
                "Kill-timeout reached after reboot request",
                extra={"job": self.job, "address": self.address, "elapsed": spent},
            )
            raise RebootTimeoutError(self.job, spent, context={"address": self.address}) from e.last_attempt.exception()

        logger.info(
            "Reconnected after reboot",
            extra={"job": self.job, "address": self.address, "elapsed_ms": round(elapsed() * 1000)},
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Close the connection. Idempotent."""
        if self._closed:
            return
        self._closed = True
        conn, self._conn = self._conn, None
        if conn is not None:
            with contextlib.suppress(OSError, EOFError, paramiko.SSHException):
                await asyncio.to_thread(conn.close)

    async def __aenter__(self) -> SessionClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()


async def dial_on_reboot(client: SessionClient, requested_at: float | None = None) -> None:
    """Recover ``client``'s session after a reboot request. See SessionClient.dial_on_reboot()."""
    await client.dial_on_reboot(requested_at)
