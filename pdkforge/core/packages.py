#  packages.py
#  OS package managers.
#
#  See LICENSE for licence details.

import shutil
from abc import abstractmethod
from typing import Dict, List, Optional, Type

from .platform import OSFamily

__all__ = ['PackageManager', 'AptPackageManager', 'DnfPackageManager', 'PacmanPackageManager',
           'HomebrewPackageManager', 'get_package_manager']


class PackageManager:
    """Commands needed to install packages with one OS package manager."""

    # Executable of the package manager.
    name = ""  # type: str
    # Whether the commands need to run through sudo.
    privileged = True  # type: bool

    def available(self) -> bool:
        """True if the package manager is on PATH."""
        return shutil.which(self.name) is not None

    def refresh_commands(self) -> List[List[str]]:
        """Commands to run before installing (e.g. refreshing the package index)."""
        return []

    @abstractmethod
    def install_command(self, packages: List[str]) -> List[str]:
        """Command which installs the given packages non-interactively."""
        pass


class AptPackageManager(PackageManager):
    name = "apt-get"

    def refresh_commands(self) -> List[List[str]]:
        return [["apt-get", "update", "-qq"]]

    def install_command(self, packages: List[str]) -> List[str]:
        return ["apt-get", "install", "-y"] + packages


class DnfPackageManager(PackageManager):
    name = "dnf"

    def install_command(self, packages: List[str]) -> List[str]:
        return ["dnf", "install", "-y"] + packages


class PacmanPackageManager(PackageManager):
    name = "pacman"

    def install_command(self, packages: List[str]) -> List[str]:
        return ["pacman", "-Sy", "--noconfirm"] + packages


class HomebrewPackageManager(PackageManager):
    name = "brew"
    privileged = False

    # Where to get Homebrew when it is missing.
    install_hint = "https://brew.sh"

    def install_command(self, packages: List[str]) -> List[str]:
        return ["brew", "install"] + packages


_MANAGERS = {
    OSFamily.DEBIAN: AptPackageManager,
    OSFamily.FEDORA: DnfPackageManager,
    OSFamily.ARCH: PacmanPackageManager,
    OSFamily.MACOS: HomebrewPackageManager,
}  # type: Dict[OSFamily, Type[PackageManager]]


def get_package_manager(family: OSFamily) -> Optional[PackageManager]:
    """
    Get the package manager for the given OS family.

    :param family: OS family from classify_family().
    :return: Package manager, or None if the family is not supported.
    """
    manager = _MANAGERS.get(family)
    return None if manager is None else manager()
