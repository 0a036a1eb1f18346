"""Data models for vmlink."""

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from vmlink import constants


class Bios(str, Enum):
    """Firmware modes accepted by the QEMU backend."""

    LEGACY = ""
    UEFI = "uefi"


class System(BaseModel):
    """Declarative description of one test target.

    Immutable once constructed. ``bios`` is deliberately a plain string:
    it is validated when a boot command is built, not here.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, description="Unique label, used in diagnostics")
    image: str = Field(description="Image path or logical image identifier")
    backend: str = Field(default="qemu", description="Selects the command builder")
    bios: str = Field(default="", description='"" for legacy boot, "uefi" for UEFI firmware')
    virtio_disk: bool = Field(default=False, description="Attach the disk over virtio")
    virtio_net: bool = Field(default=False, description="Use a virtio network device")

    def __str__(self) -> str:
        return self.name


class SshConfig(BaseModel):
    """Connection configuration handed to the dial primitive."""

    model_config = ConfigDict(frozen=True)

    username: str = "root"
    password: str | None = None
    key_filename: Path | None = None
    timeout: float = Field(default=constants.SSH_DIAL_TIMEOUT_SECONDS, gt=0)
    look_for_keys: bool = False
