#  cli_driver.py
#  CLI driver class for pdkforge.
#
#  See LICENSE for licence details.

import argparse
import json
import os
import sys
from typing import Any, Callable, Dict, List, Optional, Tuple

import ruamel.yaml

from pdkforge.flowgraph import InstallerGraph
from pdkforge.logging import ForgeLogging
from pdkforge.utils import get_or_else

from .driver import INSTALLERS, DriverOptions, ForgeDriver
from .errors import ProvisionError
from .hooks import ProvisionHookAction, StartStopStep
from .provisioner import Provisioner

# Type signature of a CLIDriver action: output text, or None on failure.
CLIActionType = Callable[[ForgeDriver, Callable[[str], None]], Optional[str]]


def parse_optional_file_list_from_args(args_list: Any, append_error_func: Callable[[str], None]) -> List[str]:
    """Parse a possibly null list of files, validate the existence of each file, and return a list of paths (possibly
    empty)."""
    results = []  # type: List[str]
    if args_list is None:
        # No arguments
        pass
    elif isinstance(args_list, list):
        for c in args_list:
            if not os.path.exists(c):
                append_error_func("Given path %s does not exist!" % c)
            else:
                results.append(os.path.realpath(c))
    else:
        append_error_func("Argument was not a list?")
    return results


def get_nonempty_str(arg: Any) -> Optional[str]:
    """Either get the non-empty string from the given arg or None if it is not a non-empty string."""
    if isinstance(arg, str):
        if len(arg) > 0:
            return str(arg)
    return None


def dump_config_to_json_file(output_path: str, config: dict) -> None:
    """
    Helper function to dump the given config to the given output path while overwriting it if it already exists.
    :param output_path: Output path (e.g. "pdkforge-config.json")
    :param config: Config dictionary to dump
    """
    with open(output_path, "w") as f:
        f.write(json.dumps(config, sort_keys=True, indent=4))


def dump_config_to_yaml_file(output_path: str, config: dict) -> None:
    """
    Helper function to dump the given config in YAML form
    to the given output path while overwriting it if it already exists.
    :param output_path: Output path
    :param config: Config dictionary to dump
    """
    yaml = ruamel.yaml.YAML()
    yaml.indent(offset=2, sequence=4)
    with open(output_path, 'w') as f:
        yaml.dump(config, f)


def dump_config_to_yaml_stream(config: dict, stream: Any) -> None:
    yaml = ruamel.yaml.YAML()
    yaml.indent(offset=2, sequence=4)
    yaml.dump(config, stream)


class CLIDriver:
    """
    Helper class for projects to easily write/customize a CLI driver for pdkforge without needing to rewrite/copy all
    the argparse and plumbing.
    """

    def __init__(self) -> None:
        self.step_hooks = []  # type: List[ProvisionHookAction]
        self.installer_name = None  # type: Optional[str]
        self.output = None  # type: Optional[str]

    def action_map(self) -> Dict[str, CLIActionType]:
        """Return the mapping of valid actions -> functions for each action of the command-line driver."""
        actions = {
            "all": self.all_action,
            "steps": self.steps_action,
            "dump": self.dump_action
        }  # type: Dict[str, CLIActionType]
        for name in INSTALLERS:
            actions[name] = self.create_installer_action(name)
        return actions

    def valid_actions(self) -> List[str]:
        """Get the list of valid actions for the command-line driver."""
        return list(self.action_map().keys())

    def get_extra_hooks(self, installer: str) -> List[ProvisionHookAction]:
        """
        Return a list of extra hooks for the given installer.
        Projects can override this to insert their own steps.
        """
        return list()

    def create_installer_action(self, name: str) -> CLIActionType:
        """
        Create an action function for the action_map which runs one installer.

        :param name: Installer name (e.g. "magic")
        :return: Action function.
        """
        def action(driver: ForgeDriver, append_error_func: Callable[[str], None]) -> Optional[str]:
            if not driver.run_installer(name, self.get_extra_hooks(name) + self.step_hooks):
                append_error_func("Installer {name} did not finish".format(name=name))
                return None
            return ""
        return action

    def all_action(self, driver: ForgeDriver, append_error_func: Callable[[str], None]) -> Optional[str]:
        """Run every installer in dependency order."""
        graph = InstallerGraph.from_driver(driver)
        if not graph.run(driver):
            append_error_func("Installers did not finish")
            return None
        return ""

    def steps_action(self, driver: ForgeDriver, append_error_func: Callable[[str], None]) -> Optional[str]:
        """List the steps of --installer."""
        name = get_or_else(self.installer_name, "sky130")
        if name not in INSTALLERS:
            append_error_func("Unknown installer {name}. Valid installers are: {names}".format(
                name=name, names=", ".join(INSTALLERS.keys())))
            return None
        installer = driver.load_installer(name)  # type: Provisioner
        return "\n".join(step.name for step in installer.steps) + "\n"

    def dump_action(self, driver: ForgeDriver, append_error_func: Callable[[str], None]) -> Optional[str]:
        """Dump the resolved settings, as JSON if --output ends with .json and as YAML otherwise."""
        config = dict(driver.database.get_config())
        if self.output is None:
            dump_config_to_yaml_stream(config, sys.stdout)
        elif self.output.endswith(".json"):
            dump_config_to_json_file(self.output, config)
        else:
            dump_config_to_yaml_file(self.output, config)
        return ""

    def args_to_driver(self, args: dict,
                       default_options: Optional[DriverOptions] = None) -> Tuple[ForgeDriver, List[str]]:
        """Parse command line arguments for the command line front-end to pdkforge.

        :return: ForgeDriver and a list of errors."""
        options = default_options if default_options is not None else ForgeDriver.get_default_driver_options()

        # Extra config (flattened).
        config = {}  # type: Dict[str, Any]

        # Create a list of errors for the user.
        errors = []  # type: List[str]

        # Load project configs.
        project_configs = parse_optional_file_list_from_args(args['configs'], append_error_func=errors.append)
        options = options._replace(project_configs=list(project_configs))

        # Log file.
        log = args["log"]
        if log is not None:
            if isinstance(log, str):
                options = options._replace(log_file=log)
            else:
                errors.append("Log file 'log' is not a string")

        if args.get("dry_run"):
            options = options._replace(dry_run=True)

        cleanup = args.get("cleanup")
        if cleanup is not None:
            config["sky130.cleanup"] = bool(cleanup)

        self.installer_name = get_nonempty_str(args.get("installer"))
        self.output = get_nonempty_str(args.get("output"))

        # Stage control: from/to
        from_step = get_nonempty_str(args['from_step'])
        after_step = get_nonempty_str(args['after_step'])
        to_step = get_nonempty_str(args['to_step'])
        until_step = get_nonempty_str(args['until_step'])
        only_step = get_nonempty_str(args['only_step'])

        if from_step is not None and after_step is not None:
            errors.append("Specified both --from_step and --after_step.")
        if to_step is not None and until_step is not None:
            errors.append("Specified both --to_step and --until_step.")
        if only_step is not None and any(s is not None for s in [from_step, after_step, to_step, until_step]):
            errors.append("Specified --{from|after|to|until}_step with --only_step.")
        if (from_step is not None and until_step is not None and from_step == until_step) or \
           (after_step is not None and to_step is not None and after_step == to_step) or \
           (after_step is not None and until_step is not None and after_step == until_step):
            errors.append("--from_step == --until_step, --after_step == --to_step, or --after_step == --until_step "
                          "will result in nothing being run")

        start_step = only_step or from_step or after_step or None
        start_incl = (only_step or from_step) is not None
        stop_step = only_step or to_step or until_step or None
        stop_incl = (only_step or to_step) is not None
        self.step_hooks = []
        if (start_step or stop_step) is not None:
            if args['action'] == "all":
                errors.append("Step control flags apply to a single installer, not 'all'.")
            self.step_hooks = Provisioner.make_start_stop_hooks(
                StartStopStep(step=start_step, inclusive=start_incl),
                StartStopStep(step=stop_step, inclusive=stop_incl))

        driver = ForgeDriver(options, config)
        return driver, errors

    def run_main_parsed(self, args: dict) -> int:
        """
        Given a parsed dictionary of arguments, find and run the given action.

        :return: Return code (0 for success)
        """
        action = str(args['action'])  # type: str
        if action not in self.valid_actions():
            print("Invalid action {action}".format(action=action), file=sys.stderr)
            print("Valid actions are: {actions}".format(actions=", ".join(self.valid_actions())), file=sys.stderr)
            return 1

        log = ForgeLogging.context("cli")
        try:
            driver, errors = self.args_to_driver(args)
        except (FileNotFoundError, ValueError) as e:
            log.fatal(str(e))
            return 1
        if len(errors) > 0:
            for err in errors:
                print(err, file=sys.stderr)
            driver.close()
            return 1

        try:
            output_str = self.action_map()[action](driver, errors.append)
        except ProvisionError as e:
            log.fatal(str(e))
            return 1
        finally:
            driver.close()

        if output_str is None:
            print("Action {action} failed with errors".format(action=action), file=sys.stderr)
            for err in errors:
                print(err, file=sys.stderr)
            return 1
        if len(output_str) > 0:
            sys.stdout.write(output_str)
        return 0

    def main(self, args: Optional[List[str]] = None) -> None:
        """
        Main function to call from your entry point script.
        Parses command line arguments.
        :param args: Custom command-line arguments.  If not given, sys.argv[1:] will be used.
        Example:
        >>> if __name__ == '__main__':
        >>>   CLIDriver().main()
        """
        sys.exit(self.run_main_parsed(vars(self.create_parser().parse_args(args))))

    def create_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="pdkforge",
            description="Provision the Magic layout tool and the SkyWater SKY130 PDK.")

        parser.add_argument('action', metavar='ACTION', type=str,
                            help='Action to perform: {actions}.'.format(actions=", ".join(self.valid_actions())))
        parser.add_argument("-p", "--project_config", action='append', dest="configs", type=str,
                            help='Project config files (.yml or .json).')
        parser.add_argument("-l", "--log", required=False,
                            help='Log file for everything pdkforge logs.')
        parser.add_argument("--dry-run", dest="dry_run", action="store_true", default=False,
                            help='Log external commands instead of running them.')
        # Optional arguments for step control.
        parser.add_argument("--start_before_step", "--from_step", dest="from_step", required=False,
                            help="Run the given installer from before the given step (inclusive). Not compatible with --after_step.")
        parser.add_argument("--start_after_step", "--after_step", dest="after_step", required=False,
                            help="Run the given installer from after the given step (exclusive). Not compatible with --from_step.")
        parser.add_argument("--stop_after_step", "--to_step", dest="to_step", required=False,
                            help="Run the given installer to the given step (inclusive). Not compatible with --until_step.")
        parser.add_argument("--stop_before_step", "--until_step", dest="until_step", required=False,
                            help="Run the given installer until the given step (exclusive). Not compatible with --to_step.")
        parser.add_argument("--only_step", dest="only_step", required=False,
                            help="Run only the given step. Not compatible with the other step flags.")
        parser.add_argument("--cleanup", default=None, action=argparse.BooleanOptionalAction,
                            help='Remove (or keep) the SKY130 build directory without asking.')
        parser.add_argument("--installer", required=False,
                            help='Installer for the steps action (default: sky130).')
        parser.add_argument("-o", "--output", required=False,
                            help='Output file for the dump action (.json for JSON, YAML otherwise). Default: stdout.')
        return parser
