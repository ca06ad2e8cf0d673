#  pdkforge logging code.
#
#  See LICENSE for licence details.

__all__ = ['ForgeFileLogger', 'ForgeLogging', 'ForgeLoggingContext', 'Level', 'FullMessage']

from .logging import ForgeFileLogger, ForgeLogging, ForgeLoggingContext, Level, FullMessage
