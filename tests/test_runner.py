import os
import sys

from pdkforge.core import DryRunCommandRunner, LocalCommandRunner, get_program_tag
from pdkforge.logging import ForgeLogging
from pdkforge.logging.test import ForgeLoggingCaptureContext


class TestCommandRunners:
    def test_program_tag(self) -> None:
        assert get_program_tag(["make"]) == "make"
        assert get_program_tag(["git", "clone"]) == "git clone"
        assert get_program_tag(["/usr/local/very/long/path/bin/magic", "--version"]) == "...path/bin/magic --version"
        assert get_program_tag(["git", "submodule", "update", "--init", "libraries/sky130_fd_sc_hd/latest"]) == \
            "git submodule updat..."

    def test_local_runner_captures_output(self, tmp_path) -> None:
        runner = LocalCommandRunner()
        with ForgeLoggingCaptureContext() as c:
            output, code = runner.submit(
                [sys.executable, "-c", "import os; print('hello'); print(os.getcwd()); raise SystemExit(3)"],
                dict(os.environ), ForgeLogging.context("test"), cwd=str(tmp_path))
        assert code == 3
        assert output.splitlines() == ["hello", os.path.realpath(str(tmp_path))]
        assert c.log_contains("hello")

    def test_local_runner_missing_program(self) -> None:
        runner = LocalCommandRunner()
        output, code = runner.submit(["pdkforge-no-such-program-xyz"], None, ForgeLogging.context("test"))
        assert code == 127
        assert "command not found" in output

    def test_dry_run_records(self) -> None:
        runner = DryRunCommandRunner()
        with ForgeLoggingCaptureContext() as c:
            output, code = runner.submit(["make", "-j4"], None, ForgeLogging.context("test"), cwd="/tmp/build")
        assert (output, code) == ("", 0)
        assert runner.commands[0].args == ["make", "-j4"]
        assert runner.commands[0].cwd == "/tmp/build"
        assert runner.command_lines == ["make -j4"]
        assert runner.ran("make")
        assert not runner.ran("make", "install")
        assert c.log_contains("[dry-run] make -j4 (in /tmp/build)")

    def test_dry_run_responses(self) -> None:
        runner = DryRunCommandRunner()
        runner.respond(["git"], returncode=1)
        runner.respond(["git", "describe"], output="8.3.460\n")
        log = ForgeLogging.context("test")
        assert runner.submit(["git", "describe", "--tags"], None, log) == ("8.3.460\n", 0)
        assert runner.submit(["git", "pull"], None, log) == ("", 1)
        assert runner.submit(["make"], None, log) == ("", 0)
