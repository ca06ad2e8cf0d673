# SkyWater SKY130 PDK installer for pdkforge
#
# Builds sky130A with open_pdks from the google/skywater-pdk sources, then
# exports PDK_ROOT/PDK/STD_CELL_LIBRARY in the user's shell rc file.
#
# See LICENSE for licence details.

import datetime
import os
import shutil
import sys
from typing import Dict, List, Optional

from pydantic import BaseModel

from pdkforge.core import (CommandFailedError, PreflightError, ProvisionError, ProvisionHookAction,
                           Provisioner, ProvisionStep)
from pdkforge.core.git import GitCheckout, configure_large_transfers
from pdkforge.core.platform import free_disk_bytes, is_root
from pdkforge.core.rcfile import render_block, select_shell_rc, write_marker_block
from pdkforge.logging import ForgeFileLogger, ForgeLogging


class VerificationReport(BaseModel):
    """
    Result of checking an installed PDK.

    root: Directory of the installed PDK variant (e.g. <prefix>/share/pdk/sky130A).
    present: Expected directories that were found.
    missing: Expected directories that were not found.
    optional_present: Optional directories that were found.
    optional_missing: Optional directories that were not found.
    """
    root: str
    present: List[str] = []
    missing: List[str] = []
    optional_present: List[str] = []
    optional_missing: List[str] = []

    @property
    def ok(self) -> bool:
        return len(self.missing) == 0


def check_install(root: str, expected_dirs: List[str], optional_dirs: List[str]) -> VerificationReport:
    """
    Check which of the given directories exist under root.

    :param root: Installed PDK variant directory.
    :param expected_dirs: Directories relative to root that must exist.
    :param optional_dirs: Directories relative to root that may exist.
    :return: Report of what was found.
    """
    report = VerificationReport(root=root)
    for d in expected_dirs:
        (report.present if os.path.isdir(os.path.join(root, d)) else report.missing).append(d)
    for d in optional_dirs:
        (report.optional_present if os.path.isdir(os.path.join(root, d)) else report.optional_missing).append(d)
    return report


class Sky130Installer(Provisioner):

    #=========================================================================
    # overrides from parent classes
    #=========================================================================
    @property
    def steps(self) -> List[ProvisionStep]:
        return self.make_steps_from_methods([
            self.start_log,
            self.preflight,
            self.install_system_packages,
            self.install_magic,
            self.clone_skywater_pdk,
            self.init_submodules,
            self.make_timing,
            self.fetch_open_pdks,
            self.configure_open_pdks,
            self.build_pdk,
            self.install_pdk,
            self.verify_install,
            self.write_environment,
            self.cleanup,
            self.summary
        ])

    def config_prefix(self) -> str:
        return "sky130"

    @property
    def requires(self) -> List[str]:
        return ["magic"]

    def run(self, hook_actions: List[ProvisionHookAction] = []) -> bool:
        try:
            return super().run(hook_actions)
        finally:
            self.close_log()

    def do_pre_steps(self, first_step: ProvisionStep) -> bool:
        # A run resumed past start_log keeps the previous log and appends to it.
        fresh = first_step.name == "start_log"
        self.open_log(fresh)
        if not fresh:
            self.logger.info("Appending to install log {log}, starting at step '{step}'".format(
                log=self.log_file, step=first_step.name))
        return super().do_pre_steps(first_step)

    #=========================================================================
    # useful subroutines
    #=========================================================================
    @property
    def pdk_root(self) -> str:
        return self.get_path_setting("sky130.pdk_root")

    @property
    def prefix(self) -> str:
        return self.get_path_setting("sky130.prefix")

    @property
    def work_dir(self) -> str:
        return self.get_path_setting("sky130.work_dir")

    @property
    def log_file(self) -> str:
        return self.get_path_setting("sky130.log_file")

    @property
    def pdk_dir(self) -> str:
        """Where open_pdks puts the PDK, e.g. <prefix>/share/pdk/sky130A."""
        return os.path.join(self.prefix, "share", "pdk", self.get_setting("sky130.pdk_variant"))

    @property
    def skywater_pdk(self) -> GitCheckout:
        return GitCheckout(os.path.join(self.work_dir, "skywater-pdk"), self.get_setting("sky130.skywater_repo_url"), self)

    @property
    def open_pdks(self) -> GitCheckout:
        return GitCheckout(os.path.join(self.work_dir, "open_pdks"), self.get_setting("sky130.open_pdks_repo_url"), self)

    @property
    def magic_source(self) -> GitCheckout:
        return GitCheckout(os.path.join(self.work_dir, "magic"), self.get_setting("sky130.magic_repo_url"), self)

    @property
    def environment(self) -> Dict[str, str]:
        """Variables exported in the shell rc file, in order."""
        env = {"PDK_ROOT": os.path.join(self.prefix, "share", "pdk")}  # type: Dict[str, str]
        env.update(self.get_setting("sky130.environment", nullvalue={}))
        return env

    @property
    def shell_rc(self) -> str:
        return select_shell_rc(self.home)

    @property
    def report(self) -> Optional[VerificationReport]:
        """Report of the last verify_install step."""
        return getattr(self, "_report", None)

    def open_log(self, fresh: bool) -> None:
        """
        Attach the install log to ForgeLogging.

        :param fresh: Truncate the log and write its header instead of appending.
        """
        self.close_log()
        log_file = self.log_file
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        header = []  # type: List[str]
        if fresh:
            header = ["SKY130 PDK Install — {date}".format(date=datetime.datetime.now().strftime("%c")),
                      "PDK_ROOT={root}".format(root=self.pdk_root)]
        self._file_logger = ForgeFileLogger(log_file, header=header, truncate=fresh)
        self._file_log_callback = self._file_logger.callback
        ForgeLogging.add_callback(self._file_log_callback)

    def close_log(self) -> None:
        file_logger = getattr(self, "_file_logger", None)  # type: Optional[ForgeFileLogger]
        if file_logger is not None:
            ForgeLogging.remove_callback(self._file_log_callback)
            file_logger.close()
            self._file_logger = None  # type: Optional[ForgeFileLogger]

    def first_version_line(self, program: str) -> str:
        output, _ = self.run_executable_status([program, "--version"])
        lines = output.strip().splitlines()
        return lines[0] if len(lines) > 0 else "found"

    def fail(self, message: str, error: CommandFailedError) -> ProvisionError:
        """Error pointing the user at the install log."""
        self.logger.error(message)
        return ProvisionError("{msg} - see {log} ({err})".format(msg=message, log=self.log_file, err=error))

    #========================================================================
    # installer steps
    #========================================================================
    def start_log(self) -> bool:
        """Banner of the install log, which do_pre_steps has already started"""
        log_file = self.log_file
        if getattr(self, "_file_logger", None) is None:
            self.open_log(fresh=True)

        self.logger.section("SkyWater SKY130 PDK Installer (via open_pdks)")
        self.logger.info("PDK install path : " + self.pdk_dir)
        self.logger.info("Build work dir   : " + self.work_dir)
        self.logger.info("Log file         : " + log_file)
        self.logger.warning("Estimated time   : 30-90 min  |  ~30-45 GB disk")
        return True

    def preflight(self) -> bool:
        """Hard requirements of the build, plus a disk space check"""
        self.logger.section("Preflight checks")

        if self.os_info.system != "Linux":
            raise PreflightError("Linux (Ubuntu 20.04/22.04) required.")
        if is_root():
            raise PreflightError("Do not run as root. Use a normal user with sudo.")
        if self.which("python3") is None:
            raise PreflightError("python3 not found. Install it first.")
        sudo = self.sudo_prefix
        if len(sudo) > 0:
            _, code = self.run_executable_status(sudo + ["-v"])
            if code != 0:
                raise PreflightError("sudo access required.")

        required_gb = int(self.get_setting("sky130.required_disk_gb"))
        available = free_disk_bytes(self.home)
        if available < required_gb * 1024 ** 3:
            self.logger.warning("Less than {req} GB free in {home} ({avail} GB available).".format(
                req=required_gb, home=self.home, avail=available // 1024 ** 3))
            self.logger.warning("The build may fail. Free up space or set PDK_ROOT to a larger disk.")

        configure_large_transfers(self)

        self.logger.success("Preflight OK")
        return True

    def install_system_packages(self) -> bool:
        """apt packages needed by Magic and open_pdks"""
        self.logger.section("Installing system packages")
        try:
            self.run_executable(["apt-get", "update", "-qq"], privileged=True)
            self.run_executable(["apt-get", "install", "-y"] + list(self.get_setting("sky130.packages")),
                                privileged=True)
        except CommandFailedError as e:
            raise self.fail("APT install failed", e) from e
        self.logger.success("System packages installed.")
        return True

    def install_magic(self) -> bool:
        """Build Magic from source unless it is already on PATH"""
        self.logger.section("Installing Magic VLSI layout tool")

        if self.which("magic") is not None:
            self.logger.success("Magic already installed: " + self.first_version_line("magic"))
            return True

        self.logger.info("Cloning and building Magic from source...")
        os.makedirs(self.work_dir, exist_ok=True)
        checkout = self.magic_source
        if checkout.is_cloned():
            self.logger.warning("Magic repo already cloned - pulling latest.")
            checkout.pull()
        else:
            try:
                checkout.clone()
            except CommandFailedError as e:
                raise self.fail("Failed to clone Magic repo.", e) from e

        try:
            self.run_executable(["./configure"], cwd=checkout.path)
            self.run_executable(["make", "-j{jobs}".format(jobs=self.jobs)], cwd=checkout.path)
            self.run_executable(["make", "install"], cwd=checkout.path, privileged=True)
        except CommandFailedError as e:
            raise self.fail("Magic {cmd} failed.".format(cmd=" ".join(e.command[-2:])), e) from e

        self.logger.success("Magic installed: " + self.first_version_line("magic"))
        return True

    def clone_skywater_pdk(self) -> bool:
        """Foundry source (the raw data, several GB with submodules)"""
        self.logger.section("Cloning google/skywater-pdk foundry source")
        os.makedirs(self.work_dir, exist_ok=True)
        checkout = self.skywater_pdk
        if checkout.is_cloned():
            self.logger.warning("skywater-pdk already cloned - skipping re-clone.")
            return True
        self.logger.info("Cloning skywater-pdk ...")
        try:
            checkout.clone()
        except CommandFailedError as e:
            raise self.fail("Failed to clone skywater-pdk.", e) from e
        return True

    def init_submodules(self) -> bool:
        """Only the libraries most designs need"""
        self.logger.info("Initialising required submodules (this downloads several GB)...")
        checkout = self.skywater_pdk
        for lib in self.get_setting("sky130.submodules"):
            self.logger.info("  -> " + lib)
            if not checkout.submodule_update(lib, allow_failure=True):
                self.logger.warning("Submodule {lib} failed - continuing.".format(lib=lib))
        return True

    def make_timing(self) -> bool:
        self.logger.info("Generating timing data (make timing) ...")
        _, code = self.run_executable_status(["make", "timing"], cwd=self.skywater_pdk.path)
        if code != 0:
            self.logger.warning("'make timing' reported errors - may be safe to continue.")
        self.logger.success("skywater-pdk source ready.")
        return True

    def fetch_open_pdks(self) -> bool:
        """The PDK builder"""
        self.logger.section("Cloning open_pdks (PDK builder)")
        os.makedirs(self.work_dir, exist_ok=True)
        checkout = self.open_pdks
        if checkout.is_cloned():
            self.logger.warning("open_pdks already cloned - pulling latest.")
            checkout.pull()
        else:
            self.logger.info("Cloning open_pdks...")
            try:
                checkout.clone()
            except CommandFailedError as e:
                raise self.fail("Failed to clone open_pdks.", e) from e
        self.logger.success("open_pdks source ready.")
        return True

    def configure_open_pdks(self) -> bool:
        """Point open_pdks at our skywater-pdk checkout and the install prefix"""
        self.logger.section("Configuring open_pdks for SKY130")
        args = ["./configure",
                "--enable-sky130-pdk=" + os.path.join(self.skywater_pdk.path, "libraries"),
                "--prefix=" + self.prefix] + list(self.get_setting("sky130.configure_options"))
        try:
            self.run_executable(args, cwd=self.open_pdks.path)
        except CommandFailedError as e:
            raise self.fail("./configure failed", e) from e
        self.logger.success("Configuration complete.")
        return True

    def build_pdk(self) -> bool:
        """The long part: processes all foundry GDS, SPICE, LEF, Liberty and Verilog files"""
        self.logger.section("Building PDK (make) - this takes the longest")
        try:
            self.run_executable(["make", "-j{jobs}".format(jobs=self.jobs)], cwd=self.open_pdks.path)
        except CommandFailedError as e:
            raise self.fail("make failed", e) from e
        self.logger.success("Build complete.")
        return True

    def install_pdk(self) -> bool:
        self.logger.section("Installing PDK (sudo make install)")
        try:
            self.run_executable(["make", "install"], cwd=self.open_pdks.path, privileged=True)
        except CommandFailedError as e:
            raise self.fail("make install failed", e) from e
        self.logger.success("PDK installed to: " + self.pdk_dir)
        return True

    def verify_install(self) -> bool:
        """Check the expected directories; anything missing is reported, not fatal"""
        self.logger.section("Verifying installation")
        report = check_install(self.pdk_dir, self.get_setting("sky130.expected_dirs"),
                               self.get_setting("sky130.optional_dirs"))
        for d in report.present:
            self.logger.success("  ok  " + os.path.basename(d))
        for d in report.missing:
            self.logger.warning("  Missing: " + os.path.join(report.root, d))
        for d in report.optional_present:
            self.logger.success("  ok  {name} (optional)".format(name=os.path.basename(d)))
        for d in report.optional_missing:
            self.logger.warning("  {name} not found (optional, configure option may have been skipped)".format(
                name=os.path.basename(d)))
        if not report.ok:
            self.logger.warning("Some expected directories are missing. Check {log} for build errors.".format(
                log=self.log_file))
        self._report = report  # type: Optional[VerificationReport]
        return True

    def write_environment(self) -> bool:
        """Replace the marker block in the shell rc file and export the variables here too"""
        self.logger.section("Setting environment variables")
        rc = self.shell_rc
        env = self.environment
        begin = self.get_setting("sky130.rc_markers.begin")
        end = self.get_setting("sky130.rc_markers.end")
        if self.dry_run:
            self.logger.info("[dry-run] would write to {rc}:".format(rc=rc))
            for line in render_block(env, begin, end):
                self.logger.info("  " + line)
            return True
        if write_marker_block(rc, env, begin, end):
            self.logger.warning("Updated existing SKY130 PDK block in " + rc)
        os.environ.update(env)
        self.logger.success("Env vars written to " + rc)
        return True

    def cleanup(self) -> bool:
        """Optionally remove the build area (~10-20 GB of source checkouts)"""
        self.logger.section("Optional: Clean up build area")
        work_dir = self.work_dir
        choice = self.get_setting("sky130.cleanup")  # type: Optional[bool]
        if choice is None:
            if sys.stdin is not None and sys.stdin.isatty():
                self.logger.info("The build directory at {d} is no longer needed.".format(d=work_dir))
                self.logger.info("It contains the raw source checkouts (~10-20 GB).")
                answer = input("  Delete build directory now? [y/N] ")
                choice = answer.strip().lower() == "y"
            else:
                choice = False
        if not choice:
            self.logger.warning("Build directory kept at " + work_dir)
        elif self.dry_run:
            self.logger.info("[dry-run] would remove " + work_dir)
        else:
            try:
                shutil.rmtree(work_dir)
            except FileNotFoundError:
                pass
            except OSError as e:
                raise ProvisionError("Failed to remove build directory {d} ({err})".format(d=work_dir, err=e)) from e
            self.logger.success("Build directory removed.")
        return True

    def summary(self) -> bool:
        self.logger.section("SKY130 PDK installation complete!")
        self.logger.info("PDK location: " + self.pdk_dir)
        self.logger.info("Key subdirectories:")
        self.logger.info("  libs.tech/magic/    - Magic technology files")
        self.logger.info("  libs.tech/ngspice/  - SPICE device models")
        self.logger.info("  libs.tech/netgen/   - LVS setup")
        self.logger.info("  libs.ref/sky130_fd_sc_hd/  - Standard cells (GDS, LEF, LIB, Verilog)")
        self.logger.info("  libs.ref/sky130_sram_macros/ - Pre-built OpenRAM SRAM macros")
        self.logger.warning("Reload your shell to activate env variables:")
        self.logger.info("  source " + self.shell_rc)
        self.logger.info("Log file: " + self.log_file)
        return True


tool = Sky130Installer
