# Magic VLSI layout tool installer for pdkforge
#
# See LICENSE for licence details.

import os
from typing import Dict, List

from pdkforge.core import Provisioner, ProvisionStep, PreflightError
from pdkforge.core.git import GitCheckout
from pdkforge.core.patches import PatchResult, patch_txinput
from pdkforge.core.platform import OSFamily


class MagicInstaller(Provisioner):

    #=========================================================================
    # overrides from parent classes
    #=========================================================================
    @property
    def steps(self) -> List[ProvisionStep]:
        return self.make_steps_from_methods([
            self.check_git,
            self.install_dependencies,
            self.install_gcc12_and_fixes,
            self.fetch_source,
            self.patch_txinput,
            self.build_and_install,
            self.verify_install
        ])

    def config_prefix(self) -> str:
        return "magic"

    def do_pre_steps(self, first_step: ProvisionStep) -> bool:
        assert super().do_pre_steps(first_step)
        self.logger.section("Magic VLSI Layout Tool - Installer")
        return True

    #=========================================================================
    # useful subroutines
    #=========================================================================
    @property
    def build_dir(self) -> str:
        return self.get_path_setting("magic.build_dir")

    @property
    def prefix(self) -> str:
        return self.get_path_setting("magic.prefix")

    @property
    def magic_bin(self) -> str:
        return os.path.join(self.prefix, "bin", "magic")

    @property
    def txinput_path(self) -> str:
        return os.path.join(self.build_dir, "textio", "txInput.c")

    @property
    def checkout(self) -> GitCheckout:
        return GitCheckout(self.build_dir, self.get_setting("magic.repo_url"), self)

    def packages_by_family(self) -> Dict[str, List[str]]:
        return {family.value: self.get_setting("magic.packages." + family.value)
                for family in (OSFamily.DEBIAN, OSFamily.FEDORA, OSFamily.ARCH, OSFamily.MACOS)}

    def configure_args(self) -> List[str]:
        return ["./configure",
                "CC=" + self.get_setting("magic.compiler"),
                "--prefix=" + self.prefix] + list(self.get_setting("magic.configure_options"))

    #========================================================================
    # installer steps
    #========================================================================
    def check_git(self) -> bool:
        """git is needed before anything else"""
        if self.which("git") is None:
            raise PreflightError("git is required. Please install git first.")
        return True

    def install_dependencies(self) -> bool:
        """Base dependencies (tcl, tk, cairo, ...)"""
        if self.install_packages(self.packages_by_family(), self.get_setting("magic.packages.manual")):
            self.logger.success("Dependencies installed.")
        return True

    def install_gcc12_and_fixes(self) -> bool:
        """gcc-12, g++-12, libstdc++-12-dev and linux-libc-dev on Debian/Ubuntu"""
        if self.os_family != OSFamily.DEBIAN:
            self.logger.warning("gcc-12 fix step is only applicable on Debian/Ubuntu. Skipping.")
            return True
        self.logger.info("Installing gcc-12 and fix packages (libstdc++, linux-libc-dev)...")
        self.run_executable(["apt-get", "install", "-y"] + list(self.get_setting("magic.gcc_fix_packages")),
                            privileged=True)
        self.logger.success("gcc-12 and fix packages installed.")
        return True

    def fetch_source(self) -> bool:
        """Clone the Magic repository or bring an existing checkout up to date"""
        checkout = self.checkout
        branch = self.get_setting("magic.branch")
        if checkout.is_cloned():
            self.logger.info("Source directory already exists - pulling latest changes...")
            checkout.update(branch)
        else:
            self.logger.info("Cloning Magic VLSI repository (branch: {branch})...".format(branch=branch))
            checkout.clone(branch=branch, depth=self.get_setting("magic.clone_depth"))
        self.logger.success("Source ready - version {v}".format(v=checkout.describe_version()))
        return True

    def patch_txinput(self) -> bool:
        """Replace the obsolete termio interface with POSIX termios in txInput.c"""
        result = patch_txinput(self.txinput_path)
        if result == PatchResult.MISSING:
            self.logger.warning("txInput.c not found at {path}. Skipping patch.".format(path=self.txinput_path))
        elif result == PatchResult.ALREADY_PATCHED:
            self.logger.info("txInput.c already patched. Skipping.")
        else:
            self.logger.success("txInput.c patched successfully.")
        return True

    def build_and_install(self) -> bool:
        """clean, configure, make, install"""
        self.logger.info("Cleaning any previous build artifacts...")
        self.run_executable_status(["make", "clean"], cwd=self.build_dir)

        self.logger.info("Configuring Magic (prefix: {prefix}, compiler: {cc})...".format(
            prefix=self.prefix, cc=self.get_setting("magic.compiler")))
        self.run_executable(self.configure_args(), cwd=self.build_dir)

        self.logger.info("Building with {jobs} parallel jobs...".format(jobs=self.jobs))
        self.run_executable(["make", "-j{jobs}".format(jobs=self.jobs)], cwd=self.build_dir)

        self.logger.info("Installing to {prefix}...".format(prefix=self.prefix))
        self.run_executable(["make", "install"], cwd=self.build_dir, privileged=True)

        self.logger.success("Magic installed successfully.")
        return True

    def verify_install(self) -> bool:
        """Confirm the binary exists and report its version"""
        magic_bin = self.magic_bin
        if os.path.isfile(magic_bin) and os.access(magic_bin, os.X_OK):
            output, _ = self.run_executable_status([magic_bin, "--version"])
            lines = output.strip().splitlines()
            self.logger.success("Binary found: " + magic_bin)
            self.logger.info("Version report: " + (lines[0] if len(lines) > 0 else ""))
        else:
            self.logger.warning("Binary not found at {path}.".format(path=magic_bin))
            self.logger.warning("Check that {bin} is in your PATH.".format(bin=os.path.join(self.prefix, "bin")))

        self.logger.success("All done! Run 'magic' to launch the tool.")
        self.logger.info("Docs: " + self.get_setting("magic.docs_url"))
        return True


tool = MagicInstaller
