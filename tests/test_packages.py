import pytest

from pdkforge.core import DryRunCommandRunner, UnsupportedPlatformError
from pdkforge.core.packages import (AptPackageManager, DnfPackageManager, HomebrewPackageManager,
                                    PacmanPackageManager, get_package_manager)
from pdkforge.core.platform import OSFamily
from pdkforge.logging.test import ForgeLoggingCaptureContext

from utils.installer import ARCH, FEDORA, MACOS, UBUNTU, UNKNOWN, RecordingInstaller, attach, fake_host

PACKAGES = {
    "debian": ["tcl-dev", "tk-dev"],
    "fedora": ["tcl-devel", "tk-devel"],
    "arch": ["tcl", "tk"],
    "macos": ["tcl-tk", "cairo"]
}


class TestPackageManagers:
    def test_get_package_manager(self) -> None:
        assert isinstance(get_package_manager(OSFamily.DEBIAN), AptPackageManager)
        assert isinstance(get_package_manager(OSFamily.FEDORA), DnfPackageManager)
        assert isinstance(get_package_manager(OSFamily.ARCH), PacmanPackageManager)
        assert isinstance(get_package_manager(OSFamily.MACOS), HomebrewPackageManager)
        assert get_package_manager(OSFamily.UNKNOWN) is None

    def test_commands(self) -> None:
        assert AptPackageManager().refresh_commands() == [["apt-get", "update", "-qq"]]
        assert AptPackageManager().install_command(["m4"]) == ["apt-get", "install", "-y", "m4"]
        assert DnfPackageManager().install_command(["m4"]) == ["dnf", "install", "-y", "m4"]
        assert PacmanPackageManager().install_command(["m4"]) == ["pacman", "-Sy", "--noconfirm", "m4"]
        assert HomebrewPackageManager().install_command(["cairo"]) == ["brew", "install", "cairo"]
        assert not HomebrewPackageManager.privileged


class TestInstallPackages:
    def test_debian(self, monkeypatch) -> None:
        fake_host(monkeypatch)
        runner = DryRunCommandRunner()
        installer = attach(RecordingInstaller(), runner, os_info=UBUNTU)
        assert installer.install_packages(PACKAGES)
        assert runner.command_lines == ["sudo apt-get update -qq", "sudo apt-get install -y tcl-dev tk-dev"]

    def test_debian_as_root(self, monkeypatch) -> None:
        fake_host(monkeypatch, root=True)
        runner = DryRunCommandRunner()
        installer = attach(RecordingInstaller(), runner, os_info=UBUNTU)
        assert installer.install_packages(PACKAGES)
        assert runner.command_lines == ["apt-get update -qq", "apt-get install -y tcl-dev tk-dev"]

    @pytest.mark.parametrize("os_info, expected", [
        (FEDORA, ["sudo dnf install -y tcl-devel tk-devel"]),
        (ARCH, ["sudo pacman -Sy --noconfirm tcl tk"]),
    ])
    def test_other_linux(self, monkeypatch, os_info, expected) -> None:
        fake_host(monkeypatch)
        runner = DryRunCommandRunner()
        installer = attach(RecordingInstaller(), runner, os_info=os_info)
        assert installer.install_packages(PACKAGES)
        assert runner.command_lines == expected

    def test_macos(self, monkeypatch) -> None:
        fake_host(monkeypatch, programs=["brew"])
        runner = DryRunCommandRunner()
        installer = attach(RecordingInstaller(), runner, os_info=MACOS)
        assert installer.install_packages(PACKAGES)
        assert runner.command_lines == ["brew install tcl-tk cairo"]

    def test_macos_without_homebrew(self, monkeypatch) -> None:
        fake_host(monkeypatch, programs=[])
        runner = DryRunCommandRunner()
        installer = attach(RecordingInstaller(), runner, os_info=MACOS)
        with pytest.raises(UnsupportedPlatformError, match="brew.sh"):
            installer.install_packages(PACKAGES)
        assert runner.commands == []

    def test_unknown_os(self, monkeypatch) -> None:
        fake_host(monkeypatch)
        runner = DryRunCommandRunner()
        installer = attach(RecordingInstaller(), runner, os_info=UNKNOWN)
        with ForgeLoggingCaptureContext() as c:
            assert not installer.install_packages(PACKAGES, ["git", "m4"])
        assert runner.commands == []
        assert c.log_contains("Unrecognised OS 'gentoo'. Skipping automatic dependency install.")
        assert c.log_contains("Please manually install: git, m4")
