#  hooks.py
#  Steps and hook actions used to run a subset of an installer.
#
#  See LICENSE for licence details.

from enum import Enum
from typing import Callable, NamedTuple, Optional, TYPE_CHECKING

__all__ = ['ProvisionStepFunction', 'ProvisionStep', 'HookLocation', 'ProvisionHookAction',
           'StartStopStep']

# Necessary for mypy to learn about Provisioner.
if TYPE_CHECKING:
    from .provisioner import Provisioner  # pylint: disable=unused-import

ProvisionStepFunction = Callable[['Provisioner'], bool]

ProvisionStep = NamedTuple('ProvisionStep', [
    # Function to call to execute this step
    ('func', ProvisionStepFunction),
    # Name of the step
    ('name', str)
])

# Specify step to start/stop
StartStopStep = NamedTuple('StartStopStep', [
    # Name of the step
    ('step', Optional[str]),
    # Whether it is inclusive
    ('inclusive', bool)
])


# Where to insert/replace the given step.
class HookLocation(Enum):
    InsertPreStep = 1
    InsertPostStep = 2
    ReplaceStep = 10
    ResumePreStep = 20
    ResumePostStep = 21
    PausePreStep = 30
    PausePostStep = 31


# A hook action. Actions can insert new steps before or after an existing one,
# replace an existing step, or mark where to resume/pause.
# Note: hook actions are executed in the order provided.
ProvisionHookAction = NamedTuple('ProvisionHookAction', [
    # Where/what to do
    ('location', HookLocation),
    # Target step to insert before/after or replace
    ('target_name', str),
    # Step to insert/replace
    ('step', Optional[ProvisionStep])
])
