"""Helpers for nested source-data dictionaries.

Update payloads may use dotted keys ("system.hp.value") which are expanded
into nested dictionaries before they are merged or diffed.
"""

import copy
from typing import Any, Mapping


def expand_object(data: Mapping[str, Any]) -> dict[str, Any]:
    """Expand dotted keys into nested dictionaries."""
    expanded: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, Mapping):
            value = expand_object(value)
        if "." not in key:
            if isinstance(value, dict) and isinstance(expanded.get(key), dict):
                merge_object(expanded[key], value)
            else:
                expanded[key] = value
            continue
        head, *rest = key.split(".")
        target = expanded.setdefault(head, {})
        for part in rest[:-1]:
            target = target.setdefault(part, {})
        target[rest[-1]] = value
    return expanded


def merge_object(target: dict[str, Any], changes: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge ``changes`` into ``target`` in place and return it."""
    for key, value in changes.items():
        if isinstance(value, Mapping) and isinstance(target.get(key), dict):
            merge_object(target[key], value)
        else:
            target[key] = copy.deepcopy(value)
    return target


def diff_object(original: Mapping[str, Any], changes: Mapping[str, Any]) -> dict[str, Any]:
    """Return the subset of ``changes`` that differs from ``original``."""
    diff: dict[str, Any] = {}
    for key, value in changes.items():
        current = original.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            inner = diff_object(current, value)
            if inner:
                diff[key] = inner
        elif key not in original or current != value:
            diff[key] = copy.deepcopy(value)
    return diff


def get_path(data: Mapping[str, Any], path: str, default: Any = None) -> Any:
    """Read a dotted path from nested dictionaries."""
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return default
        current = current[part]
    return current


def set_path(data: dict[str, Any], path: str, value: Any) -> None:
    """Write a dotted path into nested dictionaries, creating levels as needed."""
    *parents, leaf = path.split(".")
    current = data
    for part in parents:
        current = current.setdefault(part, {})
    current[leaf] = value


def project(data: Mapping[str, Any], fields: list[str] | tuple[str, ...]) -> dict[str, Any]:
    """Minimal projection of ``data`` onto dotted ``fields``; absent fields are skipped."""
    projection: dict[str, Any] = {}
    missing = object()
    for field in fields:
        value = get_path(data, field, missing)
        if value is not missing:
            set_path(projection, field, copy.deepcopy(value))
    return projection


def matches_query(data: Mapping[str, Any], query: Mapping[str, Any] | None) -> bool:
    """Equality match of every dotted query key; list values match by membership."""
    if not query:
        return True
    missing = object()
    for key, expected in query.items():
        value = get_path(data, key, missing)
        if isinstance(expected, (list, tuple, set)):
            if value is missing or value not in expected:
                return False
        elif value is missing or value != expected:
            return False
    return True
