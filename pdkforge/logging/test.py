#  Test helper code for pdkforge logging.
#  This is considered a part of pdkforge internals.
#
#  See LICENSE for licence details.

from typing import List

from .logging import ForgeLogging


class ForgeLoggingCaptureContext:
    """
    Direct ForgeLogging to also log to a buffer with colours disabled, and
    restore the original settings at the end of this context.
    """
    def __init__(self) -> None:
        self.old_enable_buffering = False  # type: bool
        self.old_enable_colour = True  # type: bool
        self.logs = []  # type: List[str]

    def log_contains(self, s: str) -> bool:
        """
        Check if the captured log contains the given string.
        :param s: String to check
        :return: True if found
        """
        return any(s in line for line in self.logs)

    def __enter__(self) -> "ForgeLoggingCaptureContext":
        self.old_enable_buffering = ForgeLogging.enable_buffering
        self.old_enable_colour = ForgeLogging.enable_colour
        ForgeLogging.enable_buffering = True
        ForgeLogging.enable_colour = False
        ForgeLogging.output_buffer.clear()
        return self

    def __exit__(self, type, value, traceback) -> bool:
        self.logs = list(ForgeLogging.output_buffer)
        ForgeLogging.enable_buffering = self.old_enable_buffering
        ForgeLogging.output_buffer.clear()
        ForgeLogging.enable_colour = self.old_enable_colour
        return False
