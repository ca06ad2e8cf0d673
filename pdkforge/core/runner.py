#  runner.py
#  Command runners used by provisioners to execute external programs.
#
#  See LICENSE for licence details.

import atexit
import subprocess
import sys
import termios
from abc import abstractmethod
from typing import Dict, List, NamedTuple, Optional, Tuple

from pdkforge.logging import ForgeLoggingContext

__all__ = ['CommandRunner', 'LocalCommandRunner', 'DryRunCommandRunner', 'RecordedCommand',
           'get_program_tag']


def get_program_tag(args: List[str], program_name_length: int = 14,
                    arg_display_len: int = 16) -> str:
    """
    Get a short "tag" of the program for easier display in the log.
    :param args: Arguments for subprocess
    :param program_name_length: Capture last 14 (default) characters of
                                the command name.
    :param arg_display_len: How many characters of args to display after prog_name
    :return: Short tag of the program.
    """
    if len(args[0]) <= program_name_length:
        prog_name = args[0]
    else:
        prog_name = "..." + args[0][len(args[0]) - program_name_length:]

    remaining_args = " ".join(args[1:])
    if len(remaining_args) < arg_display_len:
        prog_args = remaining_args
    else:
        prog_args = remaining_args[0:arg_display_len - 1] + "..."

    return (prog_name + " " + prog_args).rstrip()


class CommandRunner:

    @abstractmethod
    def submit(self, args: List[str], env: Optional[Dict[str, str]],
               logger: ForgeLoggingContext, cwd: Optional[str] = None) -> Tuple[str, int]:
        """
        Run the given command. This function MUST block until the command is complete.

        :param args: Command-line to run; each item in the list is one token.
                     The first token should be the command to run.
        :param env: The environment variables to set for the command (None to inherit)
        :param logger: The logging context
        :param cwd: Working directory (leave as None to use the current working directory).
        :return: Tuple of the command output and a return code
        """
        pass


class LocalCommandRunner(CommandRunner):

    def submit(self, args: List[str], env: Optional[Dict[str, str]],
               logger: ForgeLoggingContext, cwd: Optional[str] = None) -> Tuple[str, int]:
        prog_tag = get_program_tag(args)
        term_settings = termios.tcgetattr(sys.stdin.fileno()) if sys.stdin.isatty() else None

        logger.debug("Executing subprocess: " + ' '.join(args))
        subprocess_logger = logger.context("Exec " + prog_tag)
        try:
            proc = subprocess.Popen(args, shell=False, stderr=subprocess.STDOUT,
                                    stdout=subprocess.PIPE, env=env, cwd=cwd)
        except FileNotFoundError:
            # Same status a shell reports for a missing program.
            message = "{0}: command not found".format(args[0])
            subprocess_logger.debug(message)
            return message + "\n", 127
        # These are run in reverse order of registration
        # Terminate is first to allow for the possibility of graceful shutdown
        # Then the program will be forceably terminated and we restore the terminal settings
        if term_settings is not None:
            atexit.register(termios.tcsetattr, sys.stdin.fileno(), termios.TCSANOW, term_settings)
        atexit.register(proc.kill)
        atexit.register(proc.terminate)

        output_buf = ""
        # Log output and also capture output at the same time.
        so = proc.stdout
        assert so is not None
        while True:
            line = so.readline().decode("utf-8", errors="replace")
            if line != '':
                subprocess_logger.debug(line.rstrip())
                output_buf += line
            else:
                break
        proc.communicate()

        return output_buf, proc.returncode


class RecordedCommand(NamedTuple):
    """A command seen by the dry-run runner."""
    args: List[str]
    cwd: Optional[str]


class DryRunCommandRunner(CommandRunner):
    """
    Runner which never executes anything. Every command is recorded and
    answered from the scripted responses (default: no output, exit code 0).
    """

    def __init__(self) -> None:
        self.commands = []  # type: List[RecordedCommand]
        self._responses = {}  # type: Dict[Tuple[str, ...], Tuple[str, int]]

    def respond(self, prefix: List[str], output: str = "", returncode: int = 0) -> None:
        """
        Script the result of every command starting with the given tokens.
        The longest matching prefix wins.
        """
        self._responses[tuple(prefix)] = (output, returncode)

    def lookup(self, args: List[str]) -> Tuple[str, int]:
        best = None  # type: Optional[Tuple[str, ...]]
        for prefix in self._responses:
            if tuple(args[:len(prefix)]) == prefix and (best is None or len(prefix) > len(best)):
                best = prefix
        if best is None:
            return "", 0
        return self._responses[best]

    @property
    def command_lines(self) -> List[str]:
        """Recorded commands joined into single strings."""
        return [" ".join(c.args) for c in self.commands]

    def ran(self, *args: str) -> bool:
        """True if a command starting with the given tokens was recorded."""
        return any(c.args[:len(args)] == list(args) for c in self.commands)

    def submit(self, args: List[str], env: Optional[Dict[str, str]],
               logger: ForgeLoggingContext, cwd: Optional[str] = None) -> Tuple[str, int]:
        self.commands.append(RecordedCommand(list(args), cwd))
        output, returncode = self.lookup(args)
        logger.debug("[dry-run] " + ' '.join(args) + ("" if cwd is None else " (in {0})".format(cwd)))
        if output != "":
            subprocess_logger = logger.context("Exec " + get_program_tag(args))
            for line in output.splitlines():
                subprocess_logger.debug(line)
        return output, returncode
