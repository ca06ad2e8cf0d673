#  pdkforge provisioning framework.
#
#  See LICENSE for licence details.

from .errors import CommandFailedError, PreflightError, ProvisionError, UnsupportedPlatformError
from .hooks import HookLocation, ProvisionHookAction, ProvisionStep, ProvisionStepFunction, StartStopStep
from .runner import CommandRunner, DryRunCommandRunner, LocalCommandRunner, get_program_tag
from .platform import OSFamily, OSInfo
from .provisioner import Provisioner, load_installer
from .driver import INSTALLERS, DriverOptions, ForgeDriver
