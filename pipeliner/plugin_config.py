"""Parsing of connector configuration documents."""

from __future__ import annotations

import dataclasses
import json
from typing import Any, TypeVar

from pipeliner.errors import InvalidConfigError

T = TypeVar("T")

_NAMED_TYPES: dict[str, type] = {
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "dict": dict,
    "list": list,
}


def parse_config(config_json: str, target: type[T]) -> T:
    """Parse a JSON config string into ``target``.

    ``target`` is usually a dataclass; its fields without defaults are
    required and keys it does not declare are ignored.

    Raises:
        InvalidConfigError: if the JSON is malformed or does not fit ``target``.
    """
    try:
        value = json.loads(config_json)
    except json.JSONDecodeError as exc:
        raise InvalidConfigError(f"failed to parse config: {exc}") from exc
    try:
        return _convert(value, target, "config")
    except (TypeError, ValueError) as exc:
        raise InvalidConfigError(f"failed to parse config: {exc}") from exc


def _resolve(hint: Any) -> Any:
    """Turn a field annotation into a type, resolving simple string annotations."""
    if isinstance(hint, str):
        base = hint.split("[", 1)[0].strip()
        return _NAMED_TYPES.get(base)
    return hint


def _build_dataclass(value: Any, target: type) -> Any:
    if not isinstance(value, dict):
        raise TypeError(f"expected a JSON object for {target.__name__}")
    kwargs = {}
    for field in dataclasses.fields(target):
        if not field.init:
            continue
        if field.name in value:
            kwargs[field.name] = _convert(value[field.name], _resolve(field.type), field.name)
        elif field.default is dataclasses.MISSING and field.default_factory is dataclasses.MISSING:
            raise ValueError(f"missing field `{field.name}`")
    return target(**kwargs)


def _convert(value: Any, hint: Any, name: str) -> Any:
    if hint is None or hint is Any:
        return value
    if isinstance(hint, type) and dataclasses.is_dataclass(hint):
        return _build_dataclass(value, hint)
    if hint is bool:
        ok = isinstance(value, bool)
    elif hint is int:
        ok = isinstance(value, int) and not isinstance(value, bool)
    elif hint is float:
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
        if ok:
            return float(value)
    elif hint in (str, dict, list):
        ok = isinstance(value, hint)
    elif isinstance(hint, type):
        return hint(value)
    else:
        return value
    if not ok:
        raise TypeError(f"invalid type for `{name}`: expected {hint.__name__}")
    return value