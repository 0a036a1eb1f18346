"""Unit tests for Settings and the data models.

No mocks - uses real environment variables via monkeypatch.
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from vmlink import constants
from vmlink.models import Bios, SshConfig, System
from vmlink.settings import Settings

# ============================================================================
# Settings
# ============================================================================


class TestSettings:
    def test_defaults(self, mock_home: Path) -> None:
        settings = Settings()
        assert settings.qemu_bin == "qemu-system-x86_64"
        assert settings.qemu_fallback_bios_path is None
        assert settings.bios_path == constants.DEFAULT_OVMF_PATH
        assert settings.qemu_gui is False
        assert settings.qemu_image_dir == mock_home / ".vmlink" / "qemu"
        assert settings.warn_timeout == constants.DEFAULT_WARN_TIMEOUT_SECONDS
        assert settings.kill_timeout == constants.DEFAULT_KILL_TIMEOUT_SECONDS

    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("VMLINK_QEMU_FALLBACK_BIOS_PATH", "/opt/OVMF.fd")
        monkeypatch.setenv("VMLINK_QEMU_GUI", "true")
        monkeypatch.setenv("VMLINK_QEMU_IMAGE_DIR", str(tmp_path))
        monkeypatch.setenv("VMLINK_KILL_TIMEOUT", "30")

        settings = Settings()

        assert settings.bios_path == "/opt/OVMF.fd"
        assert settings.qemu_gui is True
        assert settings.qemu_image_dir == tmp_path
        assert settings.kill_timeout == 30

    def test_empty_firmware_override_falls_back(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("VMLINK_QEMU_FALLBACK_BIOS_PATH", "")
        assert Settings().bios_path == constants.DEFAULT_OVMF_PATH

    @pytest.mark.parametrize("field", ["dial_timeout", "port_poll_interval", "warn_timeout", "kill_timeout"])
    def test_timeouts_must_be_positive(self, field: str) -> None:
        with pytest.raises(ValidationError):
            Settings(**{field: 0})


# ============================================================================
# Models
# ============================================================================


class TestSystem:
    def test_defaults(self) -> None:
        system = System(name="ubuntu-22.04-64", image="ubuntu-22.04-64")
        assert system.backend == "qemu"
        assert system.bios == Bios.LEGACY.value
        assert system.virtio_disk is False
        assert system.virtio_net is False
        assert str(system) == "ubuntu-22.04-64"

    def test_frozen(self) -> None:
        system = System(name="a", image="b")
        with pytest.raises(ValidationError):
            system.bios = "uefi"  # type: ignore[misc]

    def test_bios_not_validated_at_construction(self) -> None:
        assert System(name="a", image="b", bios="whatever").bios == "whatever"

    def test_name_required(self) -> None:
        with pytest.raises(ValidationError):
            System(name="", image="b")


class TestSshConfig:
    def test_defaults(self) -> None:
        config = SshConfig()
        assert config.username == "root"
        assert config.password is None
        assert config.timeout == constants.SSH_DIAL_TIMEOUT_SECONDS
        assert config.look_for_keys is False

    def test_timeout_positive(self) -> None:
        with pytest.raises(ValidationError):
            SshConfig(timeout=0)
