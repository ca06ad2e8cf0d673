#  pdkforge logging code.
#
#  See LICENSE for licence details.

from functools import reduce
from enum import Enum
from typing import Callable, Iterable, List, NamedTuple, Type, Optional


class Level(Enum):
    """
    Logging levels.
    """
    # DEBUG - output of external commands and internal bookkeeping
    # INFO - what is about to happen (e.g. "Cloning open_pdks...")
    # SUCCESS - a provisioning step finished (e.g. "Dependencies installed.")
    # WARNING - a non-fatal step failed or something needs the user's attention
    # ERROR - a mandatory step failed; the run will stop
    # FATAL - the run cannot continue at all (e.g. running as root)
    DEBUG = 0
    INFO = 1
    SUCCESS = 2
    WARNING = 3
    ERROR = 4
    FATAL = 5


# Message including additional metadata such as level and context.
FullMessage = NamedTuple('FullMessage', [
    ('message', str),
    ('level', Level),
    ('context', List[str])
])


def with_default_callbacks(cls):
    cls.add_callback(cls.callback_print)
    cls.add_callback(cls.callback_buffering)
    return cls


class ForgeFileLogger:
    """A file logger for ForgeLogging."""

    def __init__(self, output_path: str, header: Iterable[str] = (), truncate: bool = False,
                 format_msg_callback: Optional[Callable[[FullMessage], str]] = None) -> None:
        """
        Create a new file logger.

        :param output_path: Output path of the logger.
        :param header: Lines written once when the file is opened.
        :param truncate: Start from an empty file instead of appending.
        :param format_msg_callback: Optional callback to run to build the message. None to use ForgeLogging.build_log_message.
        """
        self.path = output_path
        self._file = open(output_path, "w" if truncate else "a")
        for line in header:
            self._file.write(line + "\n")
        self._file.flush()
        self._format_msg_callback = format_msg_callback

    def __enter__(self) -> "ForgeFileLogger":
        return self

    def close(self) -> None:
        """
        Close this file logger.
        """
        self._file.close()

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    @property
    def callback(self) -> Callable[[FullMessage], None]:
        """Get the callback for ForgeLogging.add_callback."""

        def file_callback(fullmessage: FullMessage) -> None:
            if self._file.closed:
                return
            if self._format_msg_callback is not None:
                self._file.write(self._format_msg_callback(fullmessage) + "\n")
            else:
                self._file.write(ForgeLogging.build_log_message(fullmessage) + "\n")
            self._file.flush()

        return file_callback


@with_default_callbacks
class ForgeLogging:
    """Singleton which handles logging in pdkforge.

    This class is generally not intended to be used directly for logging, but through ForgeLoggingContext instead.
    """

    # Enable colour in logging?
    enable_colour = True  # type: bool

    # If buffering is enabled, instead of printing right away, we will store it
    # into a buffer for later retrieval.
    enable_buffering = False  # type: bool

    # Enable printing the tag (e.g. "[sky130] ...).
    enable_tag = True  # type: bool

    # Various escape characters for colour output.
    COLOUR_CYAN = "\033[0;36m"
    COLOUR_GREEN = "\033[0;32m"
    COLOUR_GREY = "\033[37m"
    COLOUR_YELLOW = "\033[1;33m"
    COLOUR_RED = "\033[0;31m"
    COLOUR_RED_BG = "\033[101m"
    COLOUR_BOLD = "\033[1m"
    # Restore the default terminal colour.
    COLOUR_CLEAR = "\033[0m"

    @classmethod
    def callback_print(cls, fullmessage: FullMessage) -> None:
        """Default callback which prints a colour message."""
        print(cls.build_message(fullmessage), flush=True)

    output_buffer = []  # type: List[str]

    @classmethod
    def callback_buffering(cls, fullmessage: FullMessage) -> None:
        """Append the message to the buffer if buffering is enabled."""
        if not cls.enable_buffering:
            return
        cls.output_buffer.append(cls.build_message(fullmessage))

    @classmethod
    def build_log_message(cls, fullmessage: FullMessage) -> str:
        """Build a plain message for logs, without colour."""
        template = "{context} {level}: {message}"

        return template.format(context=cls.get_tag(fullmessage.context), level=fullmessage.level,
                               message=fullmessage.message)

    # List of callbacks to call for logging.
    callbacks = []  # type: List[Callable[[FullMessage], None]]

    @classmethod
    def clear_callbacks(cls) -> None:
        """Clear the list of callbacks."""
        cls.callbacks = []

    @classmethod
    def add_callback(cls, callback: Callable[[FullMessage], None]) -> None:
        """Add a callback."""
        cls.callbacks.append(callback)

    @classmethod
    def remove_callback(cls, callback: Callable[[FullMessage], None]) -> None:
        """Remove a previously added callback. Unknown callbacks are ignored."""
        cls.callbacks = [c for c in cls.callbacks if c is not callback]

    @classmethod
    def reset_callbacks(cls) -> None:
        """Go back to the default print and buffering callbacks."""
        cls.clear_callbacks()
        cls.add_callback(cls.callback_print)
        cls.add_callback(cls.callback_buffering)

    @classmethod
    def context(cls, new_context: str = "") -> "ForgeLoggingContext":
        """
        Create a new context.

        :param new_context: Context name. Leave blank to get the global context.
        """
        if new_context == "":
            return ForgeLoggingContext([], cls)
        else:
            return ForgeLoggingContext([new_context], cls)

    @classmethod
    def get_colour_escape(cls, level: Level) -> str:
        """Colour table to translate level -> colour in logging."""
        table = {
            Level.DEBUG: cls.COLOUR_GREY,
            Level.INFO: cls.COLOUR_CYAN,
            Level.SUCCESS: cls.COLOUR_GREEN,
            Level.WARNING: cls.COLOUR_YELLOW,
            Level.ERROR: cls.COLOUR_RED,
            Level.FATAL: cls.COLOUR_RED_BG
        }
        if level in table:
            return table[level]
        else:
            return ""

    @classmethod
    def log(cls, fullmessage: FullMessage) -> None:
        """
        Log the given message at the given level in the given context.
        """
        for callback in list(cls.callbacks):
            callback(fullmessage)

    @classmethod
    def build_message(cls, fullmessage: FullMessage) -> str:
        """Build a colour message."""
        message = fullmessage.message
        level = fullmessage.level
        context = fullmessage.context

        context_tag = cls.get_tag(context)  # type: str

        output = ""  # type: str
        output += cls.get_colour_escape(level) if cls.enable_colour else ""
        if cls.enable_tag and context_tag != "":
            output += context_tag + " "
        output += message
        output += cls.COLOUR_CLEAR if cls.enable_colour else ""

        return output

    @staticmethod
    def get_tag(context: List[str]) -> str:
        """Helper function to get the tag for outputting a message given a context."""
        if len(context) > 0:
            return str(reduce(lambda a, b: a + " " + b, map(lambda x: "[%s]" % (x), context)))
        else:
            return "[<global>]"

    @classmethod
    def get_buffer(cls) -> Iterable[str]:
        """Get the current contents of the logging buffer and clear it."""
        if not cls.enable_buffering:
            raise ValueError("Buffering is not enabled")
        output = list(cls.output_buffer)
        cls.output_buffer = []
        return output


class ForgeLoggingContext:
    """
    Logging interface to pdkforge which contains a context (list of strings denoting hierarchy where the log occurred).
    e.g. ["sky130", "Exec git clone ..."]
    """

    def __init__(self, context: List[str], logging_class: Type[ForgeLogging]) -> None:
        """
        Create a new interface with the given context.
        """
        self._context = context  # type: List[str]
        self.logging_class = logging_class  # type: Type[ForgeLogging]

    def context(self, new_context: str) -> "ForgeLoggingContext":
        """
        Create a new subcontext from this context.
        """
        context2 = list(self._context)
        context2.append(new_context)
        return ForgeLoggingContext(context2, self.logging_class)

    def debug(self, message: str) -> None:
        """Create a debug-level log message."""
        return self.log(message, Level.DEBUG)

    def info(self, message: str) -> None:
        """Create an info-level log message."""
        return self.log(message, Level.INFO)

    def success(self, message: str) -> None:
        """Create a success-level log message."""
        return self.log(message, Level.SUCCESS)

    def warning(self, message: str) -> None:
        """Create a warning-level log message."""
        return self.log(message, Level.WARNING)

    def error(self, message: str) -> None:
        """Create an error-level log message."""
        return self.log(message, Level.ERROR)

    def fatal(self, message: str) -> None:
        """Create a fatal-level log message."""
        return self.log(message, Level.FATAL)

    def section(self, title: str) -> None:
        """Log a section banner, used to separate the phases of an installer."""
        return self.log("── {0} ──".format(title), Level.INFO)

    def log(self, message: str, level: Level) -> None:
        return self.logging_class.log(FullMessage(message, level, self._context))
