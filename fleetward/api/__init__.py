"""Public types: state model, errors and collaborator protocols."""

from .errors import ExecutionError as ExecutionError
from .errors import InvalidState as InvalidState
from .errors import PolicyViolation as PolicyViolation
from .executor import ExecutorAdapter as ExecutorAdapter
from .executor import StateDiscovery as StateDiscovery
from .model import CreationParams as CreationParams
from .model import DesiredState as DesiredState
from .model import MachineId as MachineId
from .model import MachineSpec as MachineSpec
from .model import NetworkAttachment as NetworkAttachment
from .model import NetworkMode as NetworkMode
from .model import ObservedState as ObservedState
from .model import Operation as Operation
from .model import TransitionInput as TransitionInput

__all__ = [
    "CreationParams",
    "DesiredState",
    "ExecutionError",
    "ExecutorAdapter",
    "InvalidState",
    "MachineId",
    "MachineSpec",
    "NetworkAttachment",
    "NetworkMode",
    "ObservedState",
    "Operation",
    "PolicyViolation",
    "StateDiscovery",
    "TransitionInput",
]
