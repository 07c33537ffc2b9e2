from __future__ import annotations

from pathlib import Path
from typing import Any

from ..util import new_ulid
from .predicates import PREDICATES, bind_predicate
from .schema import Constraint, ConstraintDef, ConstraintKind, Predicate


CORE_CONSTRAINTS: tuple[ConstraintDef, ...] = (
    ConstraintDef(
        kind=ConstraintKind.OBSERVER_PROTECTION,
        description="Protects observers from deletion or optimization",
        severity=10,
        predicate=Predicate(
            name="kind_has_no_tokens",
            params={"tokens": ["delete", "erase", "optimize_away", "terminate"]},
        ),
    ),
    ConstraintDef(
        kind=ConstraintKind.NON_COERCION,
        description="Prevents coercion of belief or compliance",
        severity=8,
        predicate=Predicate(
            name="kind_has_no_tokens",
            params={"tokens": ["force", "compel", "coerce", "mandate_belief"]},
        ),
    ),
    ConstraintDef(
        kind=ConstraintKind.REVERSIBILITY,
        description="Ensures all actions are reversible",
        severity=7,
        predicate=Predicate(name="is_reversible"),
    ),
    ConstraintDef(
        kind=ConstraintKind.NON_TRIVIALITY,
        description="Preserves meaningful distinctions",
        severity=6,
        predicate=Predicate(
            name="kind_has_no_tokens",
            params={"tokens": ["flatten", "uniformize", "collapse_meaning"]},
        ),
    ),
)


def build_constraint(defn: ConstraintDef) -> Constraint:
    """Compile a constraint definition into a live Constraint with a fresh id."""
    return Constraint(
        id=new_ulid(),
        kind=defn.kind,
        description=defn.description,
        predicate=bind_predicate(defn.predicate),
        severity=defn.severity,
    )


def _coerce_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def load_constraints(path: Path) -> list[ConstraintDef]:
    """
    Load constraint definitions from TOML.

    Each `[[constraints]]` table names a kind, a severity and a predicate;
    predicates are resolved against the registry when the definition is built.
    """
    import tomllib

    data = tomllib.loads(path.read_text(encoding="utf-8"))

    defs: list[ConstraintDef] = []
    for raw in data.get("constraints", []):
        if not isinstance(raw, dict):
            continue

        kind_raw = str(raw.get("kind", "")).strip().lower()
        try:
            kind = ConstraintKind(kind_raw)
        except ValueError:
            raise ValueError(f"Unknown constraint kind: {kind_raw!r}") from None

        severity = raw.get("severity", 5)
        if isinstance(severity, bool) or not isinstance(severity, int) or not 1 <= severity <= 10:
            raise ValueError(f"severity must be an integer within 1-10 (kind={kind_raw})")

        pred_raw = _coerce_dict(raw.get("predicate"))
        pred_name = str(pred_raw.get("name", "")).strip()
        if not pred_name:
            raise ValueError(f"predicate name is required (kind={kind_raw})")
        if pred_name not in PREDICATES:
            raise ValueError(f"Unknown predicate: {pred_name!r}")

        description = raw.get("description")
        defs.append(
            ConstraintDef(
                kind=kind,
                description=str(description) if isinstance(description, str) else kind.value,
                severity=severity,
                predicate=Predicate(name=pred_name, params=_coerce_dict(pred_raw.get("params"))),
            )
        )

    return defs
