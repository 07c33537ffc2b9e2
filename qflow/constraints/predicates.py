from __future__ import annotations

from typing import Any, Callable

from .schema import Action, ActionPredicate, Predicate


PredicateFn = Callable[[Action, dict[str, Any]], bool]


def _tokens(params: dict[str, Any]) -> list[str]:
    tokens = params.get("tokens", [])
    if not isinstance(tokens, list) or not all(isinstance(t, str) for t in tokens):
        raise ValueError("tokens must be a list of strings")
    return [t.lower() for t in tokens if t]


def contains_any_token(text: str, tokens: list[str] | tuple[str, ...]) -> bool:
    """Case-insensitive substring test shared by constraints and protection layers."""
    lowered = text.lower()
    return any(t.lower() in lowered for t in tokens if t)


def predicate_kind_has_no_tokens(action: Action, params: dict[str, Any]) -> bool:
    return not contains_any_token(action.kind, _tokens(params))


def predicate_is_reversible(action: Action, params: dict[str, Any]) -> bool:
    return action.reversible is True


def predicate_metadata_has_keys(action: Action, params: dict[str, Any]) -> bool:
    keys = params.get("keys", [])
    if not isinstance(keys, list) or not all(isinstance(k, str) for k in keys):
        raise ValueError("keys must be a list of strings")
    return all(k in action.metadata for k in keys)


def predicate_max_target_observers(action: Action, params: dict[str, Any]) -> bool:
    limit = params.get("limit", 1)
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise ValueError("limit must be an integer")
    return len(action.target_observers) <= limit


PREDICATES: dict[str, PredicateFn] = {
    "kind_has_no_tokens": predicate_kind_has_no_tokens,
    "is_reversible": predicate_is_reversible,
    "metadata_has_keys": predicate_metadata_has_keys,
    "max_target_observers": predicate_max_target_observers,
}


def bind_predicate(predicate: Predicate) -> ActionPredicate:
    """Resolve a named predicate into a single-argument check."""
    fn = PREDICATES.get(predicate.name)
    if fn is None:
        raise ValueError(f"Unknown predicate: {predicate.name!r}")
    params = dict(predicate.params)

    def check(action: Action) -> bool:
        return fn(action, params)

    check.__name__ = f"predicate_{predicate.name}"
    return check
