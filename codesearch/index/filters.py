"""Metadata filter compilation.

A filter is either a callable ``metadata -> bool`` or a mapping of
conditions that must all hold:

- ``{"lang": "rust"}`` equality
- ``{"lang": ["rust", "python"]}`` membership (list, tuple, set)
- ``{"path": {"prefix": "src/"}}`` operator form; operators are
  ``eq``, ``ne``, ``in``, ``prefix``
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from codesearch.errors import InvalidQuery

MetadataFilter = Mapping[str, Any] | Callable[[Mapping[str, Any]], bool]
Predicate = Callable[[Mapping[str, Any]], bool]

_MISSING = object()
_OPERATORS = {"eq", "ne", "in", "prefix"}


def _condition(key: str, expected: Any) -> Predicate:
    if isinstance(expected, (list, tuple, set, frozenset)):
        allowed = list(expected)
        return lambda meta: meta.get(key, _MISSING) in allowed

    if isinstance(expected, Mapping):
        if not expected:
            raise InvalidQuery(f"Empty operator mapping for filter key {key!r}")
        unknown = set(expected) - _OPERATORS
        if unknown:
            raise InvalidQuery(
                f"Unsupported filter operator(s) {sorted(map(str, unknown))} for key {key!r}. "
                f"Supported: {sorted(_OPERATORS)}"
            )
        checks: list[Predicate] = []
        for op, operand in expected.items():
            if op == "eq":
                checks.append(lambda meta, v=operand: meta.get(key, _MISSING) == v)
            elif op == "ne":
                checks.append(lambda meta, v=operand: meta.get(key, _MISSING) != v)
            elif op == "in":
                if not isinstance(operand, (list, tuple, set, frozenset)):
                    raise InvalidQuery(f"'in' operator for key {key!r} requires a list")
                values = list(operand)
                checks.append(lambda meta, v=values: meta.get(key, _MISSING) in v)
            else:
                if not isinstance(operand, str):
                    raise InvalidQuery(f"'prefix' operator for key {key!r} requires a string")
                checks.append(
                    lambda meta, p=operand: isinstance(meta.get(key), str)
                    and meta[key].startswith(p)
                )
        return lambda meta: all(check(meta) for check in checks)

    return lambda meta: meta.get(key, _MISSING) == expected


def compile_filter(criteria: MetadataFilter | None) -> Predicate | None:
    """Turn a filter into a predicate over entry metadata.

    Raises:
        InvalidQuery: If the filter is malformed
    """
    if criteria is None:
        return None

    if isinstance(criteria, Mapping):
        if not criteria:
            return None
        conditions: list[Predicate] = []
        for key, expected in criteria.items():
            if not isinstance(key, str) or not key:
                raise InvalidQuery(f"Filter keys must be non-empty strings; got {key!r}")
            conditions.append(_condition(key, expected))
        return lambda meta: all(cond(meta) for cond in conditions)

    if callable(criteria):
        user_predicate = criteria

        def guarded(meta: Mapping[str, Any]) -> bool:
            try:
                return bool(user_predicate(meta))
            except Exception as exc:
                raise InvalidQuery(f"Filter predicate raised {type(exc).__name__}: {exc}") from exc

        return guarded

    raise InvalidQuery(f"Unsupported filter type: {type(criteria).__name__}")
