#  platform.py
#  Host detection: OS family, CPU count, free disk space.
#
#  See LICENSE for licence details.

import os
import platform
import shlex
import shutil
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict

__all__ = ['OSFamily', 'OSInfo', 'parse_os_release', 'detect_os', 'classify_family',
           'cpu_count', 'free_disk_bytes', 'is_root']


class OSFamily(str, Enum):
    DEBIAN = "debian"
    FEDORA = "fedora"
    ARCH = "arch"
    MACOS = "macos"
    UNKNOWN = "unknown"


class OSInfo(BaseModel):
    """
    What we know about the host operating system.

    id: os-release ID (e.g. "ubuntu"), "macos" or "unknown".
    family: os-release ID_LIKE, falling back to the ID (e.g. "debian", "rhel fedora").
    version_id: os-release VERSION_ID, if any.
    pretty_name: os-release PRETTY_NAME, if any.
    system: platform.system() of the host (e.g. "Linux", "Darwin").
    """
    model_config = ConfigDict(frozen=True)

    id: str
    family: str
    version_id: Optional[str] = None
    pretty_name: Optional[str] = None
    system: str = ""

    @property
    def os_family(self) -> OSFamily:
        return classify_family(self)


def parse_os_release(text: str) -> Dict[str, str]:
    """
    Parse the KEY=value lines of an os-release file.
    >>> parse_os_release('ID=ubuntu\\nID_LIKE="debian"\\n# comment\\n') == {"ID": "ubuntu", "ID_LIKE": "debian"}
    True
    """
    fields = {}  # type: Dict[str, str]
    for line in text.splitlines():
        line = line.strip()
        if line == "" or line.startswith("#") or "=" not in line:
            continue
        key, raw = line.split("=", 1)
        try:
            tokens = shlex.split(raw)
        except ValueError:
            # Unbalanced quotes; keep the raw text.
            tokens = [raw.strip("\"'")]
        fields[key.strip()] = " ".join(tokens)
    return fields


def detect_os(os_release_path: str = "/etc/os-release", system: Optional[str] = None) -> OSInfo:
    """
    Detect the host OS.

    :param os_release_path: os-release file to read.
    :param system: Kernel name (defaults to platform.system()).
    :return: Detected OS information.
    """
    if system is None:
        system = platform.system()
    if os.path.isfile(os_release_path):
        with open(os_release_path, "r", encoding="utf-8") as f:
            fields = parse_os_release(f.read())
        os_id = fields.get("ID", "") or "unknown"
        return OSInfo(id=os_id,
                      family=fields.get("ID_LIKE", "") or os_id,
                      version_id=fields.get("VERSION_ID"),
                      pretty_name=fields.get("PRETTY_NAME"),
                      system=system)
    if system == "Darwin":
        return OSInfo(id="macos", family="macos", version_id=platform.mac_ver()[0] or None, system=system)
    return OSInfo(id="unknown", family="unknown", system=system)


def classify_family(os_info: OSInfo) -> OSFamily:
    """Map the family string onto the package manager family that serves it."""
    family = os_info.family
    if "debian" in family or "ubuntu" in family:
        return OSFamily.DEBIAN
    if "fedora" in family or "rhel" in family or "centos" in family:
        return OSFamily.FEDORA
    if family == "arch":
        return OSFamily.ARCH
    if family == "macos":
        return OSFamily.MACOS
    return OSFamily.UNKNOWN


def cpu_count() -> int:
    """Number of CPUs to hand to make -j, 4 if it cannot be determined."""
    count = os.cpu_count()
    return count if count else 4


def free_disk_bytes(path: str) -> int:
    """
    Free space on the filesystem holding path. Paths that do not exist yet
    are measured at their closest existing parent.
    """
    path = os.path.abspath(path)
    while not os.path.exists(path):
        parent = os.path.dirname(path)
        if parent == path:
            break
        path = parent
    return shutil.disk_usage(path).free


def is_root() -> bool:
    return hasattr(os, "geteuid") and os.geteuid() == 0
