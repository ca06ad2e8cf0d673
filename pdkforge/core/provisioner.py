#  provisioner.py
#  Base class of the installers: an ordered list of steps run against the host.
#
#  See LICENSE for licence details.

import importlib
import inspect
import os
import shutil
from abc import ABCMeta, abstractmethod
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple

import pdkforge.config as forge_config
from pdkforge.logging import ForgeLoggingContext

from .errors import CommandFailedError, UnsupportedPlatformError
from .hooks import (HookLocation, ProvisionHookAction, ProvisionStep, ProvisionStepFunction,
                    StartStopStep)
from .packages import HomebrewPackageManager, get_package_manager
from .platform import OSFamily, OSInfo, classify_family, cpu_count, detect_os, is_root
from .runner import CommandRunner

__all__ = ['Provisioner', 'load_installer']


class Provisioner(metaclass=ABCMeta):
    # Interface methods.
    @abstractmethod
    def config_prefix(self) -> str:
        """
        Returns the config prefix that contains all installer specific settings.
        e.g. "magic".

        :return: A string that is the prefix for all installer specific settings.
        """
        pass

    @property
    @abstractmethod
    def steps(self) -> List[ProvisionStep]:
        """
        List of steps defined for the execution of this installer.
        """
        pass

    @property
    def requires(self) -> List[str]:
        """
        Names of installers that have to run before this one in a combined flow.
        """
        return []

    @property
    def env_vars(self) -> Dict[str, str]:
        """
        Environment variables to set for the external commands of this installer.
        Note to subclasses: remember to include variables from super().env_vars!
        """
        return {}

    def run(self, hook_actions: List[ProvisionHookAction] = []) -> bool:
        """
        Run this installer.

        :param hook_actions: Hooks that select, replace or add steps.
        :return: True if every step finished successfully; false otherwise.
        """
        return self.run_steps(self.steps, hook_actions)

    def do_pre_steps(self, first_step: ProvisionStep) -> bool:
        """
        Function to run before the first step that executes.
        Intended to be overridden by subclasses.

        :param first_step: First step to be taken.
        :return: True if successful, False otherwise.
        """
        return True

    def do_between_steps(self, prev: ProvisionStep, next: ProvisionStep) -> bool:
        """
        Function to run between the execution of two steps.
        Intended to be overridden by subclasses.

        :param prev: The step that just finished
        :param next: The next step about to run.
        :return: True if successful, False otherwise.
        """
        return True

    def do_post_steps(self) -> bool:
        """
        Function to run after the list of steps executes.
        Intended to be overridden by subclasses.

        :return: True if successful, False otherwise.
        """
        return True

    @property
    def _subprocess_env(self) -> dict:
        """
        Internal helper function to set the environment variables for
        self.run_executable().
        """
        env = os.environ.copy()
        env.update(self.env_vars)
        return env

    # Properties.
    @property
    def name(self) -> str:
        """
        Short name of the installer (e.g. "magic", "sky130").
        """
        try:
            return self._name
        except AttributeError:
            raise ValueError("Internal error: short name of the installer not set by pdkforge")

    @name.setter
    def name(self, value: str) -> None:
        self._name = value  # type: str

    @property
    def package(self) -> str:
        """Python package of the installer, used to find its defaults.yml."""
        try:
            return self._package
        except AttributeError:
            raise ValueError("Internal error: package of the installer not set by pdkforge")

    @package.setter
    def package(self, package: str) -> None:
        self._package = package  # type: str

    @property
    def logger(self) -> ForgeLoggingContext:
        """Get the logger for this installer."""
        try:
            return self._logger
        except AttributeError:
            raise ValueError("Internal error: logger not set by pdkforge")

    @logger.setter
    def logger(self, value: ForgeLoggingContext) -> None:
        self._logger = value  # type: ForgeLoggingContext

    @property
    def runner(self) -> CommandRunner:
        """Get the runner used for external commands."""
        try:
            return self._runner
        except AttributeError:
            raise ValueError("Internal error: command runner not set by pdkforge")

    @runner.setter
    def runner(self, value: CommandRunner) -> None:
        self._runner = value  # type: CommandRunner

    @property
    def os_info(self) -> OSInfo:
        """The host OS, detected from provision.os_release unless set by the driver."""
        if not hasattr(self, "_os_info"):
            self._os_info = detect_os(self.get_setting("provision.os_release"))  # type: OSInfo
        return self._os_info

    @os_info.setter
    def os_info(self, value: OSInfo) -> None:
        self._os_info = value

    @property
    def os_family(self) -> OSFamily:
        return classify_family(self.os_info)

    ##############################
    # Hooks
    ##############################
    def check_duplicates(self, lst: List[ProvisionStep]) -> Tuple[bool, Set[str]]:
        """Check that no two steps have the same name."""
        seen_names = set()  # type: Set[str]
        for step in lst:
            if step.name in seen_names:
                self.logger.error("Duplicate step '{step}' encountered".format(step=step.name))
                return False, set()
            else:
                seen_names.add(step.name)
        return True, seen_names

    def run_steps(self, steps: List[ProvisionStep], hook_actions: List[ProvisionHookAction] = []) -> bool:
        """
        Run the given steps, checking for errors/conditions between each step.

        :param steps: List of steps.
        :param hook_actions: List of hook actions.
        :return: Returns true if all the steps are successful.
        """
        duplicate_free, names = self.check_duplicates(steps)
        if not duplicate_free:
            return False

        def has_step(name: str) -> bool:
            return name in names

        # Copy the list of steps
        new_steps = list(steps)

        # Where to resume/pause, if such a hook exists
        resume_step = None  # type: Optional[str]
        pause_step = None  # type: Optional[str]
        # If resume/pause_step is not None, whether to resume/pause pre or post this step
        resume_step_pre = True  # type: bool
        pause_step_pre = True  # type: bool

        for action in hook_actions:
            if not has_step(action.target_name):
                if action.location in [HookLocation.ResumePreStep, HookLocation.ResumePostStep,
                                       HookLocation.PausePreStep, HookLocation.PausePostStep]:
                    self.logger.error("Target step '{step}' specified by --from/after/to/until_step does not exist".format(step=action.target_name))
                else:
                    self.logger.error("Target step '{step}' specified by a hook does not exist".format(step=action.target_name))
                return False

            step_id = -1
            for i, nstep in enumerate(new_steps):
                if nstep.name == action.target_name:
                    step_id = i
                    break
            assert step_id > -1, "Targeted step must be in the list of steps"

            if action.location == HookLocation.ReplaceStep:
                assert action.step is not None, "ReplaceStep requires a step"
                new_steps[step_id] = action.step
                # Replace name so it can be properly targeted by other hook actions, except for removal hooks
                names.remove(action.target_name)
                if action.step.name != "dummy_step":
                    names.add(action.step.name)
            elif action.location == HookLocation.InsertPreStep:
                assert action.step is not None, "InsertPreStep requires a step"
                if has_step(action.step.name):
                    self.logger.error("New step '{step}' already exists".format(step=action.step.name))
                    return False
                new_steps.insert(step_id, action.step)
                names.add(action.step.name)
            elif action.location == HookLocation.InsertPostStep:
                assert action.step is not None, "InsertPostStep requires a step"
                if has_step(action.step.name):
                    self.logger.error("New step '{step}' already exists".format(step=action.step.name))
                    return False
                new_steps.insert(step_id + 1, action.step)
                names.add(action.step.name)
            elif action.location == HookLocation.ResumePreStep or action.location == HookLocation.ResumePostStep:
                if resume_step is not None:
                    self.logger.error("More than one resume hook is present")
                    return False
                resume_step = action.target_name
                resume_step_pre = action.location == HookLocation.ResumePreStep
            elif action.location == HookLocation.PausePreStep or action.location == HookLocation.PausePostStep:
                if pause_step is not None:
                    self.logger.error("More than one pause hook is present")
                    return False
                pause_step = action.target_name
                pause_step_pre = action.location == HookLocation.PausePreStep
            else:
                assert False, "Should not reach here"

        for step in new_steps:
            if not isinstance(step, ProvisionStep):
                raise ValueError("Element in List[ProvisionStep] is not a ProvisionStep")
            if not callable(step.func):
                raise TypeError("Step {step} is not callable".format(step=step.name))

        # Run steps.
        prev_step = None  # type: Optional[ProvisionStep]

        for step_index, step in enumerate(new_steps):
            # Do this step?
            do_step = True

            if resume_step_pre and resume_step == step.name:
                self.logger.info("Resuming before '{step}' due to resume hook".format(step=step.name))
                # Remove resume marker
                resume_step = None
            elif resume_step is not None:
                self.logger.debug("Sub-step '{step}' skipped due to resume hook".format(step=step.name))
                do_step = False

            if pause_step_pre and pause_step == step.name:
                self.logger.info("Pausing before '{step}' due to pause hook".format(step=step.name))
                for s in new_steps[step_index:]:
                    self.logger.debug("Sub-step '{step}' skipped due to pause hook".format(step=s.name))
                break

            if do_step:
                if prev_step is None:
                    if not self.do_pre_steps(step):
                        return False
                elif not self.do_between_steps(prev_step, step):
                    return False

                self.logger.debug("Running sub-step '{step}'".format(step=step.name))
                func_out = step.func(self)  # type: bool
                prev_step = step
                assert isinstance(func_out, bool), "Step {step} must return a bool".format(step=step.name)
                if not func_out:
                    self.logger.error("Sub-step '{step}' failed".format(step=step.name))
                    return False

            if not resume_step_pre and resume_step == step.name:
                self.logger.info("Resuming after '{step}' due to resume hook".format(step=step.name))
                resume_step = None

            if not pause_step_pre and pause_step == step.name:
                self.logger.info("Pausing after '{step}' due to pause hook".format(step=step.name))
                for s in new_steps[step_index + 1:]:
                    self.logger.debug("Sub-step '{step}' skipped due to pause hook".format(step=s.name))
                break

        return self.do_post_steps()

    @staticmethod
    def make_step_from_method(func: Callable[[], bool], name: str = "") -> ProvisionStep:
        """
        Create a ProvisionStep from a method.

        :param func: Method for the given substep (e.g. self.fetch_source)
        :param name: Name of the hook. If unspecified, defaults to func.__name__.
        :return: A ProvisionStep defining this step.
        """
        if not callable(func):
            raise TypeError("func is not callable")
        if not hasattr(func, "__self__"):
            raise ValueError("This function does not take unbound functions")
        annotations = inspect.getfullargspec(func).annotations
        if annotations != {'return': bool}:
            raise TypeError("Function {func} does not meet the required signature".format(func=str(func)))

        # Wrapper to make __func__ take a proper type annotation for "self"
        def wrapper(x: Provisioner) -> bool:
            return func.__func__(x)  # type: ignore # no type stub for builtin __func__

        if name == "":
            name = func.__name__
        return ProvisionStep(func=wrapper, name=name)

    @staticmethod
    def make_steps_from_methods(funcs: List[Callable[[], bool]]) -> List[ProvisionStep]:
        """
        Create a series of ProvisionStep from the given list of bound methods.

        :param funcs: List of bound methods (e.g. [self.step1, self.step2])
        :return: List of ProvisionSteps
        """
        return list(map(lambda x: Provisioner.make_step_from_method(x), funcs))

    @staticmethod
    def make_step_from_function(func: ProvisionStepFunction, name: str = "") -> ProvisionStep:
        """
        Create a ProvisionStep from a function.

        :param func: Function taking the provisioner for the given substep
        :param name: Name of the hook. If unspecified, defaults to func.__name__.
        :return: A ProvisionStep defining this step.
        """
        if hasattr(func, "__self__"):
            raise ValueError("This function does not take bound methods")
        if name == "":
            name = func.__name__
        return ProvisionStep(func=func, name=name)

    @staticmethod
    def make_replacement_hook(step: str, func: ProvisionStepFunction) -> ProvisionHookAction:
        """
        Create a hook action which replaces an existing step.
        """
        return ProvisionHookAction(
            target_name=step,
            location=HookLocation.ReplaceStep,
            step=Provisioner.make_step_from_function(func)
        )

    @staticmethod
    def make_insertion_hook(step: str, location: HookLocation, func: ProvisionStepFunction) -> ProvisionHookAction:
        """
        Create a hook action which is inserted relative to the given step.
        """
        if location != HookLocation.InsertPreStep and location != HookLocation.InsertPostStep:
            raise ValueError("Insertion hook location must be Insert*")

        return ProvisionHookAction(
            target_name=step,
            location=location,
            step=Provisioner.make_step_from_function(func)
        )

    @staticmethod
    def make_resume_pause_hook(step: str, location: HookLocation) -> ProvisionHookAction:
        """
        Create a hook action which will start/stop the execution of the installer at/after the given step.

        :param step: The target step that bounds of the steps to run.
        :param location: Encodes whether this hook will cause a resume/pause pre/post the target step.
        """
        if location not in [HookLocation.ResumePreStep, HookLocation.ResumePostStep,
                            HookLocation.PausePreStep, HookLocation.PausePostStep]:
            raise ValueError("Resume/Pause hook location must be Resume*/Pause*")

        return ProvisionHookAction(
            target_name=step,
            location=location,
            step=None
        )

    @staticmethod
    def make_pre_pause_hook(step: str) -> ProvisionHookAction:
        """
        Pause before the execution of the given step.
        Note that only one pause hook may be present.
        """
        return Provisioner.make_resume_pause_hook(step, HookLocation.PausePreStep)

    @staticmethod
    def make_post_pause_hook(step: str) -> ProvisionHookAction:
        """
        Pause after the execution of the given step.
        Note that only one pause hook may be present.
        """
        return Provisioner.make_resume_pause_hook(step, HookLocation.PausePostStep)

    @staticmethod
    def make_pre_resume_hook(step: str) -> ProvisionHookAction:
        """
        Resume before the given step.
        Note that only one resume hook may be present.
        """
        return Provisioner.make_resume_pause_hook(step, HookLocation.ResumePreStep)

    @staticmethod
    def make_post_resume_hook(step: str) -> ProvisionHookAction:
        """
        Resume after the given step.
        Note that only one resume hook may be present.
        """
        return Provisioner.make_resume_pause_hook(step, HookLocation.ResumePostStep)

    @staticmethod
    def make_start_stop_hooks(start: StartStopStep, stop: StartStopStep) -> List[ProvisionHookAction]:
        """
        Helper function to create a ProvisionHookAction list which will run from/after and to/until the given steps.

        :param start: StartStopStep that defines where to resume from
        :param stop: StartStopStep that define where to pause at
        :return: ProvisionHookAction list for running from and to the given steps.
        """
        output = []  # type: List[ProvisionHookAction]
        if start.step is not None:
            if start.inclusive:
                output.append(Provisioner.make_pre_resume_hook(start.step))
            else:
                output.append(Provisioner.make_post_resume_hook(start.step))
        if stop.step is not None:
            if stop.inclusive:
                output.append(Provisioner.make_post_pause_hook(stop.step))
            else:
                output.append(Provisioner.make_pre_pause_hook(stop.step))
        return output

    @staticmethod
    def make_pre_insertion_hook(step: str, func: ProvisionStepFunction) -> ProvisionHookAction:
        """
        Create a hook action which is inserted prior to the given step.
        """
        return Provisioner.make_insertion_hook(step, HookLocation.InsertPreStep, func)

    @staticmethod
    def make_post_insertion_hook(step: str, func: ProvisionStepFunction) -> ProvisionHookAction:
        """
        Create a hook action which is inserted after the given step.
        """
        return Provisioner.make_insertion_hook(step, HookLocation.InsertPostStep, func)

    @staticmethod
    def make_removal_hook(step: str) -> ProvisionHookAction:
        """
        Helper function to remove a step by replacing it with an empty step.
        """
        def dummy_step(x: Provisioner) -> bool:
            return True
        return ProvisionHookAction(
            target_name=step,
            location=HookLocation.ReplaceStep,
            step=Provisioner.make_step_from_function(dummy_step)
        )

    ##############################
    # Accessory functions available to installers.
    ##############################
    def set_database(self, database: forge_config.SettingsDatabase) -> None:
        """Set the settings database for use by the installer."""
        self._database = database  # type: forge_config.SettingsDatabase

    def get_config(self) -> Tuple[List[dict], List[dict]]:
        """Get the default config of this installer."""
        return forge_config.load_config_from_defaults(self.package, types=True)

    def get_setting(self, key: str, nullvalue: Any = None) -> Any:
        """
        Get a particular setting from the database.

        :param key: Key of the setting to receive.
        :param nullvalue: Value to return in case of null (leave as None to use the default).
        """
        try:
            database = self._database
        except AttributeError:
            raise ValueError("Internal error: no database set by pdkforge")
        return database.get_setting(key, nullvalue)

    def set_setting(self, key: str, value: Any) -> None:
        """
        Set a runtime setting in the database.
        """
        self._database.set_setting(key, value)

    @property
    def dry_run(self) -> bool:
        """True if the run should leave the host untouched."""
        return bool(self.get_setting("provision.dry_run", nullvalue=False))

    @property
    def sudo_prefix(self) -> List[str]:
        """Prefix of privileged commands. Empty when already running as root."""
        if is_root():
            return []
        return list(self.get_setting("provision.sudo", nullvalue=[]))

    def run_executable_status(self, args: List[str], cwd: Optional[str] = None,
                              privileged: bool = False) -> Tuple[str, int]:
        """
        Run an executable and log the command to the log while also capturing the output.
        Does not check the return code.

        :return: Tuple of the command output and its return code.
        """
        if privileged:
            args = self.sudo_prefix + list(args)
        return self.runner.submit(args, self._subprocess_env, self.logger, cwd)

    def run_executable(self, args: List[str], cwd: Optional[str] = None, privileged: bool = False,
                       allow_failure: bool = False) -> str:
        """
        Run an executable and log the command to the log while also capturing the output.

        :param args: Command-line to run; each item in the list is one token. The first token should be the command to run.
        :param cwd: Working directory (leave as None to use the current working directory).
        :param privileged: Run the command through provision.sudo.
        :param allow_failure: Log a warning instead of raising if the command fails.
        :return: Output from the command.
        """
        output, returncode = self.run_executable_status(args, cwd, privileged)

        if returncode != 0:  # negative number denotes killed/terminated
            if allow_failure:
                self.logger.warning("'{cmd}' exited with code {code}; continuing".format(
                    cmd=" ".join(args), code=returncode))
            else:
                self.handle_errors(args, output, returncode)

        return output

    def handle_errors(self, args: List[str], output: str, code: int) -> bool:
        """
        Function to run on a mandatory command error (nonzero return code).
        Raises CommandFailedError by default.
        """
        raise CommandFailedError(args, code, output)

    def which(self, program: str) -> Optional[str]:
        """Full path of program if it is on PATH."""
        return shutil.which(program)

    @property
    def home(self) -> str:
        """Home directory used to expand '~' in settings."""
        return self.get_setting("provision.home", nullvalue=os.path.expanduser("~"))

    def expand_path(self, path: str) -> str:
        """Expand a leading ~ against self.home."""
        if path == "~":
            return self.home
        if path.startswith("~/"):
            return os.path.join(self.home, path[2:])
        return path

    def get_path_setting(self, key: str) -> str:
        return self.expand_path(self.get_setting(key))

    @property
    def jobs(self) -> int:
        """Parallel jobs for make: <prefix>.jobs if set, else the CPU count."""
        return int(self.get_setting(self.config_prefix() + ".jobs", nullvalue=cpu_count()))

    def install_packages(self, packages_by_family: Mapping[str, List[str]],
                         manual_packages: List[str] = []) -> bool:
        """
        Install OS packages with the package manager of the host.

        :param packages_by_family: Packages keyed by OS family ("debian", "fedora", "arch", "macos").
        :param manual_packages: Packages to suggest when the OS is not recognised.
        :return: True if packages were installed, False if the OS is not supported.
        """
        family = self.os_family
        manager = get_package_manager(family)
        if manager is None or family.value not in packages_by_family:
            self.logger.warning("Unrecognised OS '{os}'. Skipping automatic dependency install.".format(os=self.os_info.id))
            if len(manual_packages) > 0:
                self.logger.warning("Please manually install: " + ", ".join(manual_packages))
            return False

        if isinstance(manager, HomebrewPackageManager) and not manager.available():
            raise UnsupportedPlatformError("Homebrew is required on macOS. Install it from " + manager.install_hint)

        self.logger.info("Installing dependencies via {pm}...".format(pm=manager.name))
        for command in manager.refresh_commands():
            self.run_executable(command, privileged=manager.privileged)
        self.run_executable(manager.install_command(list(packages_by_family[family.value])),
                            privileged=manager.privileged)
        return True


def load_installer(installer_module: str) -> Provisioner:
    """
    Load the given installer.

    :param installer_module: The installer module e.g. "pdkforge.installers.magic"
    :return: Provisioner of the given installer
    """
    mod = importlib.import_module(installer_module)
    installer_class = getattr(mod, "tool")
    installer = installer_class()  # type: Provisioner
    installer.package = installer_module
    installer.name = installer_module.split(".")[-1]
    return installer
