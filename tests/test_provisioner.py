import os

import pytest

from pdkforge.core import CommandFailedError, DryRunCommandRunner, Provisioner, load_installer
from pdkforge.logging.test import ForgeLoggingCaptureContext

from utils.installer import RecordingInstaller, attach, fake_host


class TestRunExecutable:
    def test_success_returns_output(self, monkeypatch) -> None:
        fake_host(monkeypatch)
        runner = DryRunCommandRunner()
        runner.respond(["magic", "--version"], output="8.3.460\n")
        installer = attach(RecordingInstaller(), runner)
        assert installer.run_executable(["magic", "--version"]) == "8.3.460\n"
        assert installer.run_executable_status(["magic", "--version"]) == ("8.3.460\n", 0)

    def test_failure_raises(self, monkeypatch) -> None:
        fake_host(monkeypatch)
        runner = DryRunCommandRunner()
        runner.respond(["make"], output="error: no rule\n", returncode=2)
        installer = attach(RecordingInstaller(), runner)
        with pytest.raises(CommandFailedError) as excinfo:
            installer.run_executable(["make", "-j2"], cwd="/tmp/build")
        assert excinfo.value.command == ["make", "-j2"]
        assert excinfo.value.returncode == 2
        assert excinfo.value.output == "error: no rule\n"
        assert "Command 'make -j2' failed with exit code 2" in str(excinfo.value)
        assert runner.commands[0].cwd == "/tmp/build"

    def test_allow_failure_warns(self, monkeypatch) -> None:
        fake_host(monkeypatch)
        runner = DryRunCommandRunner()
        runner.respond(["make", "timing"], returncode=1)
        installer = attach(RecordingInstaller(), runner)
        with ForgeLoggingCaptureContext() as c:
            installer.run_executable(["make", "timing"], allow_failure=True)
        assert c.log_contains("'make timing' exited with code 1; continuing")

    def test_privileged(self, monkeypatch) -> None:
        fake_host(monkeypatch)
        runner = DryRunCommandRunner()
        installer = attach(RecordingInstaller(), runner)
        installer.run_executable(["make", "install"], privileged=True)
        assert runner.command_lines == ["sudo make install"]

    def test_privileged_as_root(self, monkeypatch) -> None:
        fake_host(monkeypatch, root=True)
        runner = DryRunCommandRunner()
        installer = attach(RecordingInstaller(), runner)
        installer.run_executable(["make", "install"], privileged=True)
        assert runner.command_lines == ["make install"]

    def test_custom_sudo(self, monkeypatch) -> None:
        fake_host(monkeypatch)
        runner = DryRunCommandRunner()
        installer = attach(RecordingInstaller(), runner, config={"provision.sudo": ["doas"]})
        installer.run_executable(["make", "install"], privileged=True)
        assert runner.command_lines == ["doas make install"]

    def test_env_vars_reach_commands(self, monkeypatch) -> None:
        seen = {}

        class EnvRunner(DryRunCommandRunner):
            def submit(self, args, env, logger, cwd=None):
                seen.update(env or {})
                return super().submit(args, env, logger, cwd)

        class EnvInstaller(RecordingInstaller):
            @property
            def env_vars(self):
                return {"PDKFORGE_TEST_VAR": "1"}

        fake_host(monkeypatch)
        installer = attach(EnvInstaller(), EnvRunner())
        installer.run_executable(["true"])
        assert seen["PDKFORGE_TEST_VAR"] == "1"


class TestProvisionerSettings:
    def test_expand_path(self, tmp_path) -> None:
        home = str(tmp_path)
        installer = attach(RecordingInstaller(), config={"provision.home": home})
        assert installer.home == home
        assert installer.expand_path("~") == home
        assert installer.expand_path("~/pdk") == os.path.join(home, "pdk")
        assert installer.expand_path("/opt/pdk") == "/opt/pdk"
        assert installer.expand_path("pdk~") == "pdk~"

    def test_home_defaults_to_user_home(self) -> None:
        installer = attach(RecordingInstaller())
        assert installer.home == os.path.expanduser("~")

    def test_jobs(self, monkeypatch) -> None:
        monkeypatch.setattr("pdkforge.core.provisioner.cpu_count", lambda: 12)
        assert attach(RecordingInstaller(), config={"recording.jobs": None}).jobs == 12
        assert attach(RecordingInstaller(), config={"recording.jobs": 3}).jobs == 3

    def test_dry_run(self) -> None:
        assert not attach(RecordingInstaller()).dry_run
        assert attach(RecordingInstaller(), config={"provision.dry_run": True}).dry_run

    def test_set_setting(self) -> None:
        installer = attach(RecordingInstaller(), config={"recording.value": "a"})
        assert installer.get_setting("recording.value") == "a"
        installer.set_setting("recording.value", "b")
        assert installer.get_setting("recording.value") == "b"

    def test_missing_internals(self) -> None:
        installer = RecordingInstaller()
        with pytest.raises(ValueError, match="logger not set"):
            installer.logger.info("hello")
        with pytest.raises(ValueError, match="no database set"):
            installer.get_setting("provision.sudo")


class TestLoadInstaller:
    def test_load_installer(self) -> None:
        installer = load_installer("pdkforge.installers.magic")
        assert isinstance(installer, Provisioner)
        assert installer.name == "magic"
        assert installer.package == "pdkforge.installers.magic"
        assert installer.config_prefix() == "magic"
        assert installer.requires == []

    def test_sky130_requires_magic(self) -> None:
        installer = load_installer("pdkforge.installers.sky130")
        assert installer.name == "sky130"
        assert installer.requires == ["magic"]
        assert [s.name for s in installer.steps][:3] == ["start_log", "preflight", "install_system_packages"]

    def test_installer_defaults(self) -> None:
        installer = load_installer("pdkforge.installers.magic")
        config, types = installer.get_config()
        assert config[0]["magic.branch"] == "master"
        assert len(types) == 1
