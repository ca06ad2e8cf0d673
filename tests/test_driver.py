import pytest

import pdkforge
from pdkforge.core import DryRunCommandRunner, ForgeDriver, LocalCommandRunner

from utils.installer import UBUNTU, RecordingInstaller


class TestForgeDriver:
    def test_default_options(self) -> None:
        options = ForgeDriver.get_default_driver_options()
        assert options.project_configs == []
        assert options.log_file is None
        assert not options.dry_run

    def test_runner_selection(self) -> None:
        options = ForgeDriver.get_default_driver_options()
        assert isinstance(ForgeDriver(options, environ={}).runner, LocalCommandRunner)
        assert isinstance(ForgeDriver(options._replace(dry_run=True), environ={}).runner, DryRunCommandRunner)
        assert isinstance(ForgeDriver(options, {"provision.dry_run": True}, environ={}).runner, DryRunCommandRunner)

    def test_builtins_and_defaults(self) -> None:
        driver = ForgeDriver(ForgeDriver.get_default_driver_options(), environ={})
        assert driver.database.get_setting("provision.builtins.version") == pdkforge.__version__
        assert driver.database.get_setting("magic.branch") == "master"
        assert driver.database.get_setting("sky130.pdk_variant") == "sky130A"

    def test_project_configs(self, tmp_path) -> None:
        first = tmp_path / "a.yml"
        first.write_text("magic:\n  branch: first\n  jobs: 3\n")
        second = tmp_path / "b.json"
        second.write_text('{"magic.branch": "second"}')
        options = ForgeDriver.get_default_driver_options()._replace(project_configs=[str(first), str(second)])
        driver = ForgeDriver(options, {"magic.compiler": "clang"}, environ={"MAGIC_JOBS": "9", "MAGIC_BRANCH": "env"})
        assert driver.database.get_setting("magic.branch") == "second"
        assert driver.database.get_setting("magic.jobs") == 3
        assert driver.database.get_setting("magic.compiler") == "clang"
        assert driver.project_config["magic.branch"] == "second"

    def test_missing_project_config(self, tmp_path) -> None:
        options = ForgeDriver.get_default_driver_options()._replace(project_configs=[str(tmp_path / "missing.yml")])
        with pytest.raises(FileNotFoundError, match="does not exist"):
            ForgeDriver(options, environ={})

    def test_load_installer(self) -> None:
        runner = DryRunCommandRunner()
        driver = ForgeDriver(ForgeDriver.get_default_driver_options(), runner=runner, os_info=UBUNTU, environ={})
        installer = driver.load_installer("magic")
        assert installer.name == "magic"
        assert installer.runner is runner
        assert installer.os_info == UBUNTU
        assert installer.get_setting("magic.compiler") == "gcc-12"
        assert driver.load_installer("pdkforge.installers.sky130").name == "sky130"

    def test_run_installer_object(self) -> None:
        driver = ForgeDriver(ForgeDriver.get_default_driver_options(), runner=DryRunCommandRunner(), environ={})
        installer = RecordingInstaller()
        installer.name = "recording"
        installer.logger = driver.log.context("recording")
        installer.set_database(driver.database)
        assert driver.run_installer(installer)
        assert installer.ran == ["step1", "step2", "step3", "step4"]

    def test_log_file(self, tmp_path) -> None:
        log_file = str(tmp_path / "driver.log")
        options = ForgeDriver.get_default_driver_options()._replace(log_file=log_file)
        driver = ForgeDriver(options, environ={})
        driver.log.info("hello from the driver")
        driver.close()
        driver.log.info("after close")
        with open(log_file) as f:
            text = f.read()
        assert "hello from the driver" in text
        assert "after close" not in text
