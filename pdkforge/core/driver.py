#  driver.py
#  ForgeDriver and related code.
#
#  See LICENSE for licence details.

from typing import Dict, List, Mapping, NamedTuple, Optional, Union

import os

import pdkforge
import pdkforge.config as forge_config
from pdkforge.logging import ForgeFileLogger, ForgeLogging, ForgeLoggingContext

from .hooks import ProvisionHookAction
from .platform import OSInfo
from .provisioner import Provisioner, load_installer
from .runner import CommandRunner, DryRunCommandRunner, LocalCommandRunner

__all__ = ['DriverOptions', 'ForgeDriver', 'INSTALLERS']

# Short installer names and the modules that implement them.
INSTALLERS = {
    "magic": "pdkforge.installers.magic",
    "sky130": "pdkforge.installers.sky130",
}  # type: Dict[str, str]

# Options for invoking the driver.
DriverOptions = NamedTuple('DriverOptions', [
    # List of project config files in .json or .yml
    ('project_configs', List[str]),
    # Log file location (None for no driver log).
    ('log_file', Optional[str]),
    # Record external commands instead of running them.
    ('dry_run', bool)
])


class ForgeDriver:
    @staticmethod
    def get_default_driver_options() -> DriverOptions:
        """Get default driver options."""
        return DriverOptions(
            project_configs=[],
            log_file=None,
            dry_run=False
        )

    def __init__(self, options: DriverOptions, extra_project_config: dict = {},
                 runner: Optional[CommandRunner] = None, os_info: Optional[OSInfo] = None,
                 environ: Optional[Mapping[str, str]] = None) -> None:
        """
        Create a pdkforge driver: set up logging, the settings database and
        the command runner shared by every installer.

        :param options: Driver options.
        :param extra_project_config: An extra flattened config for the project. Optional.
        :param runner: Command runner to use instead of the one selected by provision.dry_run.
        :param os_info: Host OS to use instead of detecting it.
        :param environ: Environment variables to read overrides from (default: os.environ).
        """
        self.file_logger = None  # type: Optional[ForgeFileLogger]
        if options.log_file is not None:
            self.file_logger = ForgeFileLogger(options.log_file)
            self._log_callback = self.file_logger.callback
            ForgeLogging.add_callback(self._log_callback)
        self.log = ForgeLogging.context()  # type: ForgeLoggingContext

        self.options = options
        self.os_info = os_info

        self.database = forge_config.SettingsDatabase()  # type: forge_config.SettingsDatabase

        self.log.debug("Loading pdkforge {v} settings".format(v=pdkforge.__version__))
        self.database.update_builtins([{"provision.builtins.version": pdkforge.__version__}])
        core_config, core_types = forge_config.load_config_from_defaults("pdkforge.config", types=True)
        self.database.update_core(core_config, core_types)

        # Defaults of every known installer, so that overrides and dumps see all settings.
        installer_configs = []  # type: List[dict]
        installer_types = []  # type: List[dict]
        for module in INSTALLERS.values():
            config, types = forge_config.load_config_from_defaults(module, types=True)
            installer_configs.extend(config)
            installer_types.extend(types)
        self.database.update_installers(installer_configs, installer_types)

        self.database.update_environment([self.database.environment_config(environ)])

        project_configs = []  # type: List[dict]
        for config in options.project_configs:
            if not os.path.exists(config):
                raise FileNotFoundError("Project config %s does not exist!" % (config))
            project_configs.append(forge_config.load_config_from_file(config))
        extra = dict(extra_project_config)
        if options.dry_run:
            extra["provision.dry_run"] = True
        project_configs.append(extra)
        self.project_configs = []  # type: List[dict]
        self.update_project_configs(project_configs)

        if runner is None:
            if self.database.get_setting("provision.dry_run"):
                runner = DryRunCommandRunner()
            else:
                runner = LocalCommandRunner()
        self.runner = runner  # type: CommandRunner

    @property
    def project_config(self) -> dict:
        return forge_config.combine_configs(self.project_configs)

    def update_project_configs(self, project_configs: List[dict]) -> None:
        """
        Update the project configs in the driver and database.
        """
        self.project_configs = project_configs
        self.database.update_project(self.project_configs)

    def load_installer(self, name: str) -> Provisioner:
        """
        Load an installer by short name (e.g. "magic") or module path and
        connect it to this driver.
        """
        module = INSTALLERS.get(name, name)
        installer = load_installer(module)
        installer.logger = self.log.context(installer.name)
        installer.runner = self.runner
        installer.set_database(self.database)
        if self.os_info is not None:
            installer.os_info = self.os_info
        return installer

    def run_installer(self, installer: Union[str, Provisioner],
                      hook_actions: Optional[List[ProvisionHookAction]] = None) -> bool:
        """
        Run an installer.

        :param installer: Installer object or name to load.
        :param hook_actions: Step control and custom hooks.
        :return: True if the installer finished successfully.
        """
        if isinstance(installer, str):
            installer = self.load_installer(installer)
        self.log.info("Running installer {name}".format(name=installer.name))
        success = installer.run([] if hook_actions is None else hook_actions)
        if success:
            self.log.success("Installer {name} finished".format(name=installer.name))
        else:
            self.log.error("Installer {name} did not finish".format(name=installer.name))
        return success

    def close(self) -> None:
        """Detach and close the driver log."""
        if self.file_logger is not None:
            ForgeLogging.remove_callback(self._log_callback)
            self.file_logger.close()
            self.file_logger = None
