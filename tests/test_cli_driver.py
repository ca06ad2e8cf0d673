import json
import os
from typing import List

import pytest
import ruamel.yaml

from pdkforge.core.cli_driver import CLIDriver
from pdkforge.logging import ForgeLogging
from pdkforge.shell import get_config

from utils.installer import fake_host


def run_cli(argv: List[str]) -> int:
    driver = CLIDriver()
    return driver.run_main_parsed(vars(driver.create_parser().parse_args(argv)))


@pytest.fixture()
def quiet_logging():
    """Keep log messages off stdout so that only the action output lands there."""
    ForgeLogging.clear_callbacks()
    ForgeLogging.add_callback(ForgeLogging.callback_buffering)
    yield
    ForgeLogging.reset_callbacks()


@pytest.fixture()
def project_config(tmp_path) -> str:
    """Project config keeping every path of the installers inside tmp_path."""
    path = str(tmp_path / "project.yml")
    with open(path, "w") as f:
        f.write("""
provision.home: "{tmp}/home"
magic:
  build_dir: "{tmp}/magic-build"
  prefix: "{tmp}/magic-prefix"
sky130:
  pdk_root: "{tmp}/pdk"
  work_dir: "{tmp}/work"
  log_file: "{tmp}/sky130_pdk_install.log"
""".format(tmp=str(tmp_path)))
    return path


class TestCLIDriver:
    def test_valid_actions(self) -> None:
        assert CLIDriver().valid_actions() == ["all", "steps", "dump", "magic", "sky130"]

    def test_invalid_action(self, capsys) -> None:
        assert run_cli(["frobnicate"]) == 1
        assert "Invalid action frobnicate" in capsys.readouterr().err

    def test_steps(self, quiet_logging, capsys) -> None:
        assert run_cli(["steps"]) == 0
        out = capsys.readouterr().out
        assert out.splitlines()[0] == "start_log"
        assert out.splitlines()[-1] == "summary"
        assert len(out.splitlines()) == 15

        assert run_cli(["steps", "--installer", "magic"]) == 0
        assert capsys.readouterr().out.splitlines() == [
            "check_git", "install_dependencies", "install_gcc12_and_fixes", "fetch_source", "patch_txinput",
            "build_and_install", "verify_install"]

    def test_steps_unknown_installer(self, capsys) -> None:
        assert run_cli(["steps", "--installer", "gf180mcu"]) == 1
        assert "Unknown installer gf180mcu" in capsys.readouterr().err

    def test_dump_json(self, tmp_path, project_config) -> None:
        output = str(tmp_path / "db.json")
        assert run_cli(["dump", "-p", project_config, "--cleanup", "-o", output]) == 0
        with open(output) as f:
            db = json.load(f)
        assert db["magic.build_dir"] == str(tmp_path / "magic-build")
        assert db["sky130.prefix"] == str(tmp_path / "pdk")
        assert db["sky130.cleanup"] is True
        assert db["provision.dry_run"] is False
        assert "_config_path" not in db

    def test_dump_yaml(self, tmp_path, project_config, quiet_logging, capsys) -> None:
        assert run_cli(["dump", "-p", project_config, "--no-cleanup", "--dry-run"]) == 0
        db = ruamel.yaml.YAML(typ="safe").load(capsys.readouterr().out)
        assert db["sky130.cleanup"] is False
        assert db["provision.dry_run"] is True

        output = str(tmp_path / "db.yml")
        assert run_cli(["dump", "-p", project_config, "-o", output]) == 0
        with open(output) as f:
            assert ruamel.yaml.YAML(typ="safe").load(f)["magic.prefix"] == str(tmp_path / "magic-prefix")

    def test_missing_project_config(self, tmp_path, capsys) -> None:
        assert run_cli(["dump", "-p", str(tmp_path / "nope.yml")]) == 1
        assert "does not exist" in capsys.readouterr().err

    @pytest.mark.parametrize("flags, message", [
        (["--from_step", "preflight", "--after_step", "preflight"], "Specified both --from_step and --after_step."),
        (["--to_step", "summary", "--until_step", "summary"], "Specified both --to_step and --until_step."),
        (["--only_step", "summary", "--to_step", "summary"], "with --only_step."),
        (["--from_step", "summary", "--until_step", "summary"], "will result in nothing being run"),
    ])
    def test_conflicting_step_flags(self, flags, message, capsys) -> None:
        assert run_cli(["sky130", "--dry-run"] + flags) == 1
        assert message in capsys.readouterr().err

    def test_step_flags_with_all(self, capsys) -> None:
        assert run_cli(["all", "--dry-run", "--only_step", "preflight"]) == 1
        assert "not 'all'" in capsys.readouterr().err

    def test_only_step(self, tmp_path, project_config, capsys) -> None:
        """A dry run of one step that works only on files under tmp_path."""
        build = tmp_path / "magic-build" / "textio"
        os.makedirs(str(build))
        with open(str(build / "txInput.c"), "w") as f:
            f.write("#include <termio.h>\nstruct termio tbuf;\n")
        log_file = str(tmp_path / "pdkforge.log")

        assert run_cli(["magic", "--dry-run", "-p", project_config, "--only_step", "patch_txinput",
                        "-l", log_file]) == 0
        with open(str(build / "txInput.c")) as f:
            assert "struct termios tbuf;" in f.read()
        with open(log_file) as f:
            log = f.read()
        assert "txInput.c patched successfully." in log
        assert "Installer magic finished" in log

    def test_bad_step_fails(self, project_config, capsys) -> None:
        assert run_cli(["magic", "--dry-run", "-p", project_config, "--only_step", "free_lunch"]) == 1
        assert "Installer magic did not finish" in capsys.readouterr().err

    def test_provision_error_is_fatal(self, tmp_path, project_config, monkeypatch) -> None:
        fake_host(monkeypatch, programs=[])
        log_file = str(tmp_path / "pdkforge.log")
        assert run_cli(["magic", "--dry-run", "-p", project_config, "-l", log_file]) == 1
        with open(log_file) as f:
            lines = f.read().splitlines()
        fatal = [line for line in lines if "git is required" in line]
        assert len(fatal) == 1
        assert fatal[0].startswith("[cli]")
        assert "FATAL" in fatal[0]
        assert not any("Installer magic finished" in line for line in lines)

    def test_all_runs_magic_first(self, tmp_path, project_config, monkeypatch) -> None:
        fake_host(monkeypatch)
        monkeypatch.setattr("pdkforge.core.platform.platform.system", lambda: "Linux")
        host_config = str(tmp_path / "host.yml")
        os_release = str(tmp_path / "os-release")
        with open(os_release, "w") as f:
            f.write('ID=ubuntu\nID_LIKE=debian\nVERSION_ID="22.04"\n')
        with open(host_config, "w") as f:
            f.write('provision.os_release: "{0}"\n'.format(os_release))
        log_file = str(tmp_path / "pdkforge.log")

        assert run_cli(["all", "--dry-run", "--no-cleanup", "-p", project_config, "-p", host_config,
                        "-l", log_file]) == 0
        with open(log_file) as f:
            lines = f.read().splitlines()

        def first(text: str) -> int:
            return next(i for i, line in enumerate(lines) if text in line)

        magic_clone = first("[dry-run] git clone")
        assert str(tmp_path / "magic-build") in lines[magic_clone]
        assert first("Installer magic finished") < first("Running installer sky130")
        skywater_clone = first("[dry-run] git clone https://github.com/google/skywater-pdk.git")
        assert magic_clone < first("[dry-run] sudo -v") < skywater_clone
        assert first("Installer sky130 finished") > first("Installer magic finished")
        assert not os.path.exists(str(tmp_path / "home" / ".bashrc"))

    def test_main_exits(self) -> None:
        with pytest.raises(SystemExit) as excinfo:
            CLIDriver().main(["steps"])
        assert excinfo.value.code == 0


class TestGetConfig:
    def write_db(self, tmp_path) -> str:
        path = str(tmp_path / "db.json")
        with open(path, "w") as f:
            json.dump({"magic.branch": "master", "magic.jobs": None}, f)
        return path

    def test_get_setting(self, tmp_path, capsys) -> None:
        db = self.write_db(tmp_path)
        with pytest.raises(SystemExit) as excinfo:
            get_config.main(["--db", db, "magic.branch"])
        assert excinfo.value.code == 0
        assert capsys.readouterr().out == "master\n"

    def test_nullvalue(self, tmp_path, capsys) -> None:
        db = self.write_db(tmp_path)
        with pytest.raises(SystemExit):
            get_config.main(["--db", db, "-n", "auto", "magic.jobs"])
        assert capsys.readouterr().out == "auto\n"

    def test_missing_key(self, tmp_path, capsys) -> None:
        db = self.write_db(tmp_path)
        with pytest.raises(SystemExit) as excinfo:
            get_config.main(["--db", db, "sky130.pdk_root"])
        assert excinfo.value.code == 0
        assert capsys.readouterr().out == "null\n"

        with pytest.raises(SystemExit) as excinfo:
            get_config.main(["--db", db, "-e", "sky130.pdk_root"])
        assert excinfo.value.code == 1
        assert "Key sky130.pdk_root is missing" in capsys.readouterr().err

    def test_database_from_environment(self, tmp_path, monkeypatch, capsys) -> None:
        monkeypatch.setenv("PDKFORGE_DATABASE", self.write_db(tmp_path))
        with pytest.raises(SystemExit):
            get_config.main(["magic.branch"])
        assert capsys.readouterr().out == "master\n"

        monkeypatch.delenv("PDKFORGE_DATABASE")
        with pytest.raises(SystemExit) as excinfo:
            get_config.main(["magic.branch"])
        assert excinfo.value.code == 1
