"""Request parameter maps: single values and repeated ``name[]`` values."""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Union

ParamValue = Union[str, list[str]]
ParamMap = dict[str, ParamValue]

_ARRAY_SUFFIX = "[]"


def _as_list(value: ParamValue) -> list[str]:
    return [value] if isinstance(value, str) else list(value)


def merge_values(old: ParamValue, new: ParamValue) -> ParamValue:
    """Combine two values bound to the same parameter name.

    Two single values: the newer one wins. Otherwise both are
    concatenated into a list, old values first.
    """
    if isinstance(old, str) and isinstance(new, str):
        return new
    return _as_list(old) + _as_list(new)


def as_json_str(value: ParamValue) -> str:
    """Render a value as text: single values as-is, lists as a JSON array."""
    if isinstance(value, str):
        return value
    return json.dumps(list(value), ensure_ascii=False, separators=(",", ":"))


def param_map(pairs: Iterable[tuple[str, str]]) -> ParamMap:
    """Build a parameter map from ``(name, value)`` pairs.

    Names ending in ``[]`` lose the suffix and always hold a list;
    other names repeated keep only their last value.
    """
    result: ParamMap = {}
    for name, value in pairs:
        entry: ParamValue
        if name.endswith(_ARRAY_SUFFIX):
            name = name[: -len(_ARRAY_SUFFIX)]
            entry = [value]
        else:
            entry = value
        if name in result:
            result[name] = merge_values(result[name], entry)
        else:
            result[name] = entry
    return result