"""qflow - constraint validation, observer protection and reversible execution."""

__version__ = "0.1.0"

from .config import EngineConfig, load_config
from .constraints import Action, Constraint, ConstraintKind, ConstraintValidator
from .events import EventBus, Notification
from .orchestrator import Orchestrator, SubmissionResult, SystemHealth
from .protection import ObserverType, ProtectionChain, ProtectionLevel, RightsSet
from .registry import RollbackProcedure, RollbackRegistry
from .reversibility import ReversibilityCoordinator, RollbackOptions

__all__ = [
    "Action",
    "Constraint",
    "ConstraintKind",
    "ConstraintValidator",
    "EngineConfig",
    "EventBus",
    "Notification",
    "ObserverType",
    "Orchestrator",
    "ProtectionChain",
    "ProtectionLevel",
    "ReversibilityCoordinator",
    "RightsSet",
    "RollbackOptions",
    "RollbackProcedure",
    "RollbackRegistry",
    "SubmissionResult",
    "SystemHealth",
    "__version__",
    "load_config",
]
