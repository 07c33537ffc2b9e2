"""
Observer rights.

Three rights are fundamental (exist, not_optimized_away, continuity): no
update path can clear them.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from typing import Any

FUNDAMENTAL_RIGHTS = frozenset({"exist", "not_optimized_away", "continuity"})


@dataclass(frozen=True)
class RightsSet:
    exist: bool = True
    narrative: bool = True
    ignorance: bool = True
    rejection: bool = True
    meaning: bool = True
    not_optimized_away: bool = True
    continuity: bool = True
    privacy: bool = True
    self_determination: bool = True

    def to_dict(self) -> dict[str, bool]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RightsSet:
        """
        Parse rights data; missing rights default to True.

        Unknown names and non-boolean values raise ValueError.
        """
        check_right_names(data)
        for name, value in data.items():
            if not isinstance(value, bool):
                raise ValueError(f"right {name!r} must be a boolean, got {type(value).__name__}")
        return cls(**data)

    def merged(self, updates: dict[str, bool]) -> RightsSet:
        return replace(self, **updates)

    def granted(self) -> list[str]:
        return [name for name, value in self.to_dict().items() if value]


RIGHT_NAMES = tuple(f.name for f in fields(RightsSet))


def check_right_names(data: dict[str, Any]) -> None:
    unknown = sorted(set(data) - set(RIGHT_NAMES))
    if unknown:
        raise ValueError(f"Unknown rights: {', '.join(unknown)}")
