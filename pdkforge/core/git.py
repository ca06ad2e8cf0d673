#  git.py
#  Git checkouts of upstream sources.
#
#  See LICENSE for licence details.

import os
from typing import List, Optional, TYPE_CHECKING

__all__ = ['GitCheckout', 'configure_large_transfers', 'LARGE_TRANSFER_SETTINGS']

if TYPE_CHECKING:
    from .provisioner import Provisioner  # pylint: disable=unused-import

# Global git settings that keep multi-GB clones from failing on slow connections.
LARGE_TRANSFER_SETTINGS = [
    ("http.postBuffer", "2147483648"),
    ("http.maxRequestBuffer", "2147483648"),
    ("http.version", "HTTP/1.1"),
]


class GitCheckout:
    """A git working tree at a fixed path, cloned from url."""

    def __init__(self, path: str, url: str, provisioner: "Provisioner") -> None:
        self.path = path
        self.url = url
        self.provisioner = provisioner

    def __repr__(self) -> str:
        return "GitCheckout({0!r}, {1!r})".format(self.path, self.url)

    def is_cloned(self) -> bool:
        return os.path.isdir(os.path.join(self.path, ".git"))

    def git(self, args: List[str], allow_failure: bool = False) -> str:
        """Run a git command inside this checkout."""
        return self.provisioner.run_executable(["git", "-C", self.path] + args, allow_failure=allow_failure)

    def clone(self, branch: Optional[str] = None, depth: Optional[int] = None) -> str:
        args = ["git", "clone"]
        if depth is not None:
            args.extend(["--depth", str(depth)])
        if branch is not None:
            args.extend(["--branch", branch])
        args.extend([self.url, self.path])
        parent = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(parent, exist_ok=True)
        return self.provisioner.run_executable(args)

    def pull(self, ff_only: bool = False) -> str:
        return self.git(["pull", "--ff-only"] if ff_only else ["pull"])

    def update(self, branch: str) -> None:
        """Bring an existing checkout up to date with the given branch."""
        self.git(["fetch", "--tags"])
        self.git(["checkout", branch])
        self.pull(ff_only=True)

    def submodule_update(self, submodule: str, allow_failure: bool = False) -> bool:
        """
        Initialise and fetch one submodule.

        :return: True if git succeeded.
        """
        _, code = self.provisioner.run_executable_status(
            ["git", "submodule", "update", "--init", submodule], cwd=self.path)
        if code != 0:
            if not allow_failure:
                self.provisioner.handle_errors(["git", "submodule", "update", "--init", submodule], "", code)
            return False
        return True

    def describe_version(self) -> str:
        """
        Version of the checked out source: the VERSION file if there is one,
        else `git describe --tags`, else "unknown".
        """
        version_file = os.path.join(self.path, "VERSION")
        if os.path.isfile(version_file):
            with open(version_file, "r") as f:
                version = f.read().strip()
            if version != "":
                return version
        output, code = self.provisioner.run_executable_status(["git", "-C", self.path, "describe", "--tags"])
        lines = output.strip().splitlines()
        if code == 0 and len(lines) > 0:
            return lines[0]
        return "unknown"


def configure_large_transfers(provisioner: "Provisioner") -> None:
    """Set the global git http buffers. Failures are ignored."""
    for key, value in LARGE_TRANSFER_SETTINGS:
        provisioner.run_executable_status(["git", "config", "--global", key, value])
