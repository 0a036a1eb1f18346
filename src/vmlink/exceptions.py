"""Exception hierarchy for vmlink.

All exceptions inherit from the VmlinkError base class.

Hierarchy:
    VmlinkError (base)
    ├── TransientError (retryable marker base)
    │   └── DialError               ← one control-channel dial failed
    └── PermanentError (non-retryable marker base)
        ├── BootProcessExitedError  ← boot process died before the port came up
        ├── RebootTimeoutError      ← kill-timeout reached after a reboot request
        ├── SystemConfigError       ← invalid system configuration (e.g. bios)
        ├── ImageNotFoundError      ← cached image missing
        ├── CommandError            ← remote command exited non-zero
        └── SessionClosedError      ← session already closed
"""

from __future__ import annotations

from typing import Any


class VmlinkError(Exception):
    """Base exception for all vmlink errors with structured context.

    Attributes:
        message: Human-readable error message
        context: Dictionary of structured error context for logging/debugging
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


# =============================================================================
# Transient vs Permanent Error Base Classes
# =============================================================================


class TransientError(VmlinkError):
    """Base for transient errors that may succeed on retry.

    Retry loops in this package swallow these; they are never surfaced
    individually to the scheduler.
    """


class PermanentError(VmlinkError):
    """Base for permanent errors that won't succeed on retry.

    The scheduler should mark the affected system's run as failed.
    """


# =============================================================================
# Transient Errors
# =============================================================================


class DialError(TransientError):
    """A single attempt to dial the control channel failed."""


# =============================================================================
# Permanent Errors
# =============================================================================


class BootProcessExitedError(PermanentError):
    """The boot process exited before the system became reachable.

    Attributes:
        address: Address that was being waited on
        wstatus: Raw POSIX wait status of the exited process
    """

    def __init__(self, address: str, wstatus: int, context: dict[str, Any] | None = None):
        ctx = context or {}
        ctx.update({"address": address, "wstatus": wstatus})
        super().__init__(
            f"process exited unexpectedly while waiting for address {address} (wstatus={wstatus})",
            ctx,
        )
        self.address = address
        self.wstatus = wstatus


class RebootTimeoutError(PermanentError):
    """No control-channel session could be re-established after a reboot.

    Attributes:
        job: Label of the job/system that requested the reboot
        elapsed: Seconds elapsed since the reboot request
    """

    def __init__(self, job: str, elapsed: float, context: dict[str, Any] | None = None):
        ctx = context or {}
        ctx.update({"job": job, "elapsed": elapsed})
        super().__init__(f"kill-timeout reached after {job} reboot request", ctx)
        self.job = job
        self.elapsed = elapsed


class SystemConfigError(PermanentError):
    """Invalid system configuration.

    Raised at command-build time, before any process is spawned.
    """


class ImageNotFoundError(PermanentError):
    """The locally cached image for a system does not exist."""


class CommandError(PermanentError):
    """A remote command exited with a non-zero status.

    Attributes:
        exit_status: Remote exit status
        output: Combined stdout/stderr of the command
    """

    def __init__(self, message: str, exit_status: int, output: str = ""):
        super().__init__(message, context={"exit_status": exit_status})
        self.exit_status = exit_status
        self.output = output


class SessionClosedError(PermanentError):
    """Raised when using a session client after it has been closed."""
