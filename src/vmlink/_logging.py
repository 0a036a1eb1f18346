"""Logging setup for vmlink.

The package logger only carries a NullHandler; where records go is the
application's decision. Scripts that want output call configure_logging(),
which prints one line per record on stderr followed by the diagnostic
fields the modules pass through ``extra``:

    WARNING 10:02:54 vmlink.ssh_client: Reboot of job-1 is taking a while... job=job-1 address=127.0.0.1:40022 elapsed=301.204

VMLINK_LOG_LEVEL (e.g. "DEBUG") sets the initial level of the package logger.
"""

import contextlib
import logging
import logging.handlers
import os
import queue

import click

LIBRARY_LOGGER_NAME: str = "vmlink"

CONTEXT_FIELDS: tuple[str, ...] = (
    "system",
    "job",
    "address",
    "host",
    "port",
    "pid",
    "attempt",
    "attempts",
    "elapsed",
    "elapsed_ms",
    "wstatus",
    "error",
    "cmd",
)
"""``extra`` keys rendered after the message, in this order."""

_FMT = "%(levelname)s %(asctime)s %(name)s: %(message)s"
_DATEFMT = "%H:%M:%S"

_QUEUE_CAPACITY = 4096

logging.getLogger(LIBRARY_LOGGER_NAME).addHandler(logging.NullHandler())

_env_level = logging.getLevelNamesMapping().get(os.environ.get("VMLINK_LOG_LEVEL", "").strip().upper())
if _env_level:
    logging.getLogger(LIBRARY_LOGGER_NAME).setLevel(_env_level)


def _render(value: object) -> str:
    if isinstance(value, float):
        return f"{value:.3f}"
    if isinstance(value, list | tuple):
        return " ".join(map(str, value))
    return str(value)


class ContextFormatter(logging.Formatter):
    """Formatter appending ``key=value`` for every CONTEXT_FIELDS attribute on the record."""

    def __init__(self, fmt: str = _FMT, datefmt: str = _DATEFMT) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)

    def formatMessage(self, record: logging.LogRecord) -> str:  # noqa: N802
        line = super().formatMessage(record)
        fields = [f"{key}={_render(getattr(record, key))}" for key in CONTEXT_FIELDS if hasattr(record, key)]
        if not fields:
            return line
        return " ".join([line, *fields])


class _StderrHandler(logging.Handler):
    """Runs on the listener thread and writes through click.echo."""

    def __init__(self) -> None:
        super().__init__()
        self.setFormatter(ContextFormatter())

    def emit(self, record: logging.LogRecord) -> None:
        try:
            click.echo(self.format(record), err=True)
        except BlockingIOError:
            pass  # stderr full, record dropped
        except Exception:  # noqa: BLE001
            self.handleError(record)


class QueuedStderrHandler(logging.handlers.QueueHandler):
    """Handler installed by configure_logging().

    Callers only enqueue; a bounded queue drops records instead of
    stalling an event loop that is racing many boots.
    """

    def __init__(self, capacity: int = _QUEUE_CAPACITY) -> None:
        super().__init__(queue.Queue(maxsize=capacity))
        self._listener = logging.handlers.QueueListener(self.queue, _StderrHandler())
        self._listener.start()

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # Formatting happens on the listener thread.
        return record

    def enqueue(self, record: logging.LogRecord) -> None:
        with contextlib.suppress(queue.Full):
            self.queue.put_nowait(record)

    def close(self) -> None:
        self._listener.stop()
        super().close()


def get_logger(name: str) -> logging.Logger:
    """Logger for a vmlink module (``__name__``)."""
    return logging.getLogger(name)


def configure_logging(*, level: int | str | None = None, quiet: bool = False) -> None:
    """Send vmlink records to stderr. Safe to call more than once.

    Args:
        level: Log level, overriding VMLINK_LOG_LEVEL.
        quiet: Only errors. Wins over ``level``.
    """
    lib_logger = logging.getLogger(LIBRARY_LOGGER_NAME)
    if not any(isinstance(h, QueuedStderrHandler) for h in lib_logger.handlers):
        lib_logger.addHandler(QueuedStderrHandler())

    if quiet:
        lib_logger.setLevel(logging.ERROR)
    elif level is not None:
        lib_logger.setLevel(level)
