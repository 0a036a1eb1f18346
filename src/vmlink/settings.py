"""Runtime configuration from environment variables."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from vmlink import constants


def default_image_dir() -> Path:
    """Per-user cache directory holding resolved QEMU images."""
    return Path.home() / ".vmlink" / "qemu"


class Settings(BaseSettings):
    """Runtime configuration from environment variables.

    All settings can be overridden via environment variables with VMLINK_ prefix.
    Example: VMLINK_QEMU_FALLBACK_BIOS_PATH=/opt/ovmf/OVMF_CODE.fd
    """

    model_config = SettingsConfigDict(
        env_prefix="VMLINK_",
        extra="ignore",
    )

    # QEMU
    qemu_bin: str = constants.QEMU_BIN
    qemu_fallback_bios_path: str | None = None
    """UEFI firmware image used when a system sets bios to "uefi"."""
    qemu_gui: bool = False
    qemu_image_dir: Path = Field(default_factory=default_image_dir)
    default_memory_mb: int = constants.DEFAULT_MEMORY_MB

    # Port liveness
    dial_timeout: float = Field(default=constants.PORT_DIAL_TIMEOUT_SECONDS, gt=0)
    port_poll_interval: float = Field(default=constants.PORT_POLL_INTERVAL_SECONDS, gt=0)
    boot_timeout: float = Field(default=constants.BOOT_TIMEOUT_SECONDS, gt=0)

    # Reboot recovery
    reboot_retry_interval: float = Field(default=constants.REBOOT_RETRY_INTERVAL_SECONDS, gt=0)
    warn_timeout: float = Field(default=constants.DEFAULT_WARN_TIMEOUT_SECONDS, gt=0)
    kill_timeout: float = Field(default=constants.DEFAULT_KILL_TIMEOUT_SECONDS, gt=0)

    @property
    def bios_path(self) -> str:
        """UEFI firmware path, honoring the environment override."""
        return self.qemu_fallback_bios_path or constants.DEFAULT_OVMF_PATH
