"""Shared pytest fixtures for vmlink tests."""

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path

import pytest

from vmlink.platform_utils import ProcessWrapper

MOCK_IMAGE = "ubuntu-20.06-64"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """The firmware override and friends must not leak in from the host."""
    for name in (
        "VMLINK_QEMU_FALLBACK_BIOS_PATH",
        "VMLINK_QEMU_GUI",
        "VMLINK_QEMU_BIN",
        "VMLINK_QEMU_IMAGE_DIR",
        "VMLINK_WARN_TIMEOUT",
        "VMLINK_KILL_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def mock_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Fake HOME holding an empty cached image at ~/.vmlink/qemu/<image>.img."""
    image_dir = tmp_path / ".vmlink" / "qemu"
    image_dir.mkdir(parents=True)
    (image_dir / f"{MOCK_IMAGE}.img").write_bytes(b"")
    monkeypatch.setenv("HOME", str(tmp_path))
    return tmp_path


@pytest.fixture
async def spawn() -> AsyncGenerator[Callable[..., Awaitable[ProcessWrapper]], None]:
    """Start real local processes, killing whatever is left at teardown."""
    started: list[ProcessWrapper] = []

    async def _spawn(*cmd: str) -> ProcessWrapper:
        proc = ProcessWrapper(await asyncio.create_subprocess_exec(*cmd))
        started.append(proc)
        return proc

    yield _spawn

    for proc in started:
        if proc.returncode is None:
            await proc.kill()
            await proc.wait()
