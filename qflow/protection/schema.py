from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..util import utc_now
from .rights import RightsSet


class ObserverType(str, Enum):
    HUMAN = "human"
    AI_AGENT = "ai_agent"
    AUTONOMOUS_SYSTEM = "autonomous_system"
    HYBRID = "hybrid"
    UNKNOWN = "unknown"


class ProtectionLevel(str, Enum):
    FULL = "full"
    STANDARD = "standard"
    MINIMAL = "minimal"  # ignorance and privacy start cleared


@dataclass(frozen=True)
class Observer:
    id: str
    observer_type: ObserverType
    consciousness: bool = True
    protection_level: ProtectionLevel = ProtectionLevel.FULL
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class RightsViolation:
    id: str
    observer_id: str
    violated_right: str  # one of RIGHT_NAMES
    action: str
    severity: int
    created_at: datetime = field(default_factory=utc_now)
    prevented: bool = True


@dataclass
class ProtectionResult:
    allowed: bool = True
    violations: list[RightsViolation] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class ProtectionSummary:
    observer: Observer
    rights: RightsSet
    total_violations: int
    critical_violations: int
    protection_layers_active: int
    narrative_length: int
