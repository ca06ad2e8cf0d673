import os
import stat

import pytest

from pdkforge.core import DryRunCommandRunner, ForgeDriver, PreflightError, StartStopStep
from pdkforge.logging.test import ForgeLoggingCaptureContext

from utils.installer import FEDORA, UBUNTU, UNKNOWN, create_context, fake_host, make_checkout

TXINPUT = """#include <termio.h>

static struct termio *oldTerm;
"""


class TestMagicInstaller:
    def test_full_run(self, tmp_path, monkeypatch) -> None:
        fake_host(monkeypatch)
        ctx = create_context(str(tmp_path))
        installer = ctx.installer("magic")
        build = ctx.path("magic-build")
        prefix = ctx.path("magic-prefix")

        with ForgeLoggingCaptureContext() as c:
            assert ctx.driver.run_installer(installer)

        packages = " ".join(installer.get_setting("magic.packages.debian"))
        assert ctx.runner.command_lines == [
            "sudo apt-get update -qq",
            "sudo apt-get install -y " + packages,
            "sudo apt-get install -y gcc-12 g++-12 libstdc++-12-dev linux-libc-dev",
            "git clone --depth 1 --branch master https://github.com/RTimothyEdwards/magic.git " + build,
            "git -C {0} describe --tags".format(build),
            "make clean",
            "./configure CC=gcc-12 --prefix={0} --with-tcl --with-tk --with-cairo --enable-readline".format(prefix),
            "make -j2",
            "sudo make install"
        ]
        assert [cmd.cwd for cmd in ctx.runner.commands[-4:]] == [build] * 4
        assert c.log_contains("Magic VLSI Layout Tool - Installer")
        assert c.log_contains("Source ready - version unknown")
        assert c.log_contains("txInput.c not found at {0}. Skipping patch.".format(
            os.path.join(build, "textio", "txInput.c")))
        assert c.log_contains("Binary not found at {0}.".format(os.path.join(prefix, "bin", "magic")))
        assert c.log_contains("Installer magic finished")

    def test_existing_checkout_is_updated_and_patched(self, tmp_path, monkeypatch) -> None:
        fake_host(monkeypatch)
        ctx = create_context(str(tmp_path))
        build = ctx.path("magic-build")
        make_checkout(build)
        os.makedirs(os.path.join(build, "textio"))
        txinput = os.path.join(build, "textio", "txInput.c")
        with open(txinput, "w") as f:
            f.write(TXINPUT)
        with open(os.path.join(build, "VERSION"), "w") as f:
            f.write("8.3.460\n")

        with ForgeLoggingCaptureContext() as c:
            assert ctx.driver.run_installer("magic")

        assert not ctx.runner.ran("git", "clone")
        assert ctx.runner.ran("git", "-C", build, "fetch", "--tags")
        assert ctx.runner.ran("git", "-C", build, "checkout", "master")
        assert ctx.runner.ran("git", "-C", build, "pull", "--ff-only")
        with open(txinput) as f:
            assert "struct termios" in f.read()
        assert c.log_contains("Source directory already exists - pulling latest changes...")
        assert c.log_contains("Source ready - version 8.3.460")
        assert c.log_contains("txInput.c patched successfully.")

    def test_verify_reports_version(self, tmp_path, monkeypatch) -> None:
        fake_host(monkeypatch)
        ctx = create_context(str(tmp_path))
        magic_bin = ctx.path("magic-prefix", "bin", "magic")
        os.makedirs(os.path.dirname(magic_bin))
        with open(magic_bin, "w") as f:
            f.write("#!/bin/sh\n")
        os.chmod(magic_bin, os.stat(magic_bin).st_mode | stat.S_IXUSR)
        ctx.runner.respond([magic_bin, "--version"], output="8.3.460\n")

        installer = ctx.installer("magic")
        with ForgeLoggingCaptureContext() as c:
            assert installer.verify_install()
        assert c.log_contains("Binary found: " + magic_bin)
        assert c.log_contains("Version report: 8.3.460")

    def test_fedora(self, tmp_path, monkeypatch) -> None:
        fake_host(monkeypatch)
        ctx = create_context(str(tmp_path), os_info=FEDORA)
        with ForgeLoggingCaptureContext() as c:
            assert ctx.driver.run_installer("magic")
        assert ctx.runner.command_lines[0].startswith("sudo dnf install -y git gcc make")
        assert not ctx.runner.ran("sudo", "apt-get")
        assert c.log_contains("gcc-12 fix step is only applicable on Debian/Ubuntu. Skipping.")

    def test_unknown_os(self, tmp_path, monkeypatch) -> None:
        fake_host(monkeypatch)
        ctx = create_context(str(tmp_path), os_info=UNKNOWN)
        with ForgeLoggingCaptureContext() as c:
            assert ctx.driver.run_installer("magic")
        assert ctx.runner.command_lines[0].startswith("git clone")
        assert c.log_contains("Unrecognised OS 'gentoo'. Skipping automatic dependency install.")

    def test_missing_git(self, tmp_path, monkeypatch) -> None:
        fake_host(monkeypatch, programs=["python3"])
        ctx = create_context(str(tmp_path))
        with pytest.raises(PreflightError, match="git is required"):
            ctx.driver.run_installer("magic")
        assert ctx.runner.commands == []

    def test_only_step(self, tmp_path, monkeypatch) -> None:
        fake_host(monkeypatch)
        ctx = create_context(str(tmp_path))
        installer = ctx.installer("magic")
        hooks = installer.make_start_stop_hooks(
            StartStopStep(step="build_and_install", inclusive=True),
            StartStopStep(step="build_and_install", inclusive=True))
        assert ctx.driver.run_installer(installer, hooks)
        assert ctx.runner.command_lines[0] == "make clean"
        assert ctx.runner.command_lines[-1] == "sudo make install"

    def test_environment_overrides(self, tmp_path, monkeypatch) -> None:
        fake_host(monkeypatch)
        runner = DryRunCommandRunner()
        driver = ForgeDriver(ForgeDriver.get_default_driver_options(), {"magic.jobs": 2}, runner=runner,
                             os_info=UBUNTU, environ={
                                 "MAGIC_BRANCH": "magic-8.3",
                                 "MAGIC_BUILD_DIR": str(tmp_path / "build"),
                                 "MAGIC_PREFIX": str(tmp_path / "prefix"),
                                 "MAGIC_JOBS": "7"
                             })
        installer = driver.load_installer("magic")
        assert installer.build_dir == str(tmp_path / "build")
        assert installer.prefix == str(tmp_path / "prefix")
        # Project settings win over the environment.
        assert installer.jobs == 2
        assert installer.fetch_source()
        assert runner.commands[0].args[:6] == ["git", "clone", "--depth", "1", "--branch", "magic-8.3"]
