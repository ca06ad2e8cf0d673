#  errors.py
#  Exceptions raised while provisioning.
#
#  See LICENSE for licence details.

from typing import List

__all__ = ['ProvisionError', 'CommandFailedError', 'PreflightError', 'UnsupportedPlatformError']


class ProvisionError(Exception):
    """Base class for every failure that should abort an installer run."""


class CommandFailedError(ProvisionError):
    """A mandatory external command exited with a non-zero status."""

    def __init__(self, args: List[str], returncode: int, output: str = "") -> None:
        self.command = list(args)
        self.returncode = returncode
        self.output = output
        super().__init__("Command '{cmd}' failed with exit code {code}".format(
            cmd=" ".join(args), code=returncode))


class PreflightError(ProvisionError):
    """The host does not meet a hard requirement (e.g. running as root, missing git)."""


class UnsupportedPlatformError(ProvisionError):
    """The requested operation cannot be performed on this OS."""
