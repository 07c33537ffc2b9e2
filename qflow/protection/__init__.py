"""Rights-based protection for registered observers."""

from .chain import ProtectionChain, initial_rights
from .layers import (
    BLOCKING_PRIORITY,
    KeywordLayer,
    ProtectionLayer,
    anti_optimization_layer,
    default_layers,
    dignity_layer,
    existence_layer,
    narrative_layer,
)
from .rights import FUNDAMENTAL_RIGHTS, RIGHT_NAMES, RightsSet
from .schema import (
    Observer,
    ObserverType,
    ProtectionLevel,
    ProtectionResult,
    ProtectionSummary,
    RightsViolation,
)

__all__ = [
    "BLOCKING_PRIORITY",
    "FUNDAMENTAL_RIGHTS",
    "KeywordLayer",
    "Observer",
    "ObserverType",
    "ProtectionChain",
    "ProtectionLayer",
    "ProtectionLevel",
    "ProtectionResult",
    "ProtectionSummary",
    "RIGHT_NAMES",
    "RightsSet",
    "RightsViolation",
    "anti_optimization_layer",
    "default_layers",
    "dignity_layer",
    "existence_layer",
    "initial_rights",
    "narrative_layer",
]
