"""
Lossless conversion between native state values and a JSON-safe document.

Wire format (compatible with files written by the JavaScript plugin):

- associative map -> {"__isMap": true, "<key>": <value>, ...}
- set             -> {"__isSet": true, "values": [<value>, ...]}

Plain dicts are the "plain object" type. Any other Mapping (OrderedDict,
MappingProxyType, ...) is treated as an associative map and decodes back to an
OrderedDict. Dates and datetimes are left untouched; the HTTP layer renders
them as ISO strings when the document is serialized.
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Mapping
from typing import Any, Set

from ..errors import DecodingError, EncodingError


MAP_MARKER = "__isMap"
SET_MARKER = "__isSet"
SET_VALUES = "values"


def encode(value: Any) -> Any:
    """Convert `value` into a JSON-representable tree."""
    try:
        return _encode(value, set())
    except EncodingError:
        raise
    except Exception as ex:
        raise EncodingError(f"Failed to encode state: {ex}") from ex


def decode(doc: Any) -> Any:
    """Rebuild native values (OrderedDict for maps, set for sets) from `doc`."""
    try:
        return _decode(doc)
    except DecodingError:
        raise
    except Exception as ex:
        raise DecodingError(f"Failed to decode state: {ex}") from ex


def _check_key(key: Any) -> str:
    # JSON object keys are strings; anything else would be coerced silently
    if not isinstance(key, str):
        raise EncodingError(f"Unsupported non-string key: {key!r}")
    return key


def _encode(item: Any, active: Set[int]) -> Any:
    if not isinstance(item, (Mapping, list, tuple, set, frozenset)):
        return item

    marker = id(item)
    if marker in active:
        raise EncodingError("Circular reference detected while encoding state")
    active.add(marker)
    try:
        if isinstance(item, Mapping) and type(item) is not dict:
            out = {MAP_MARKER: True}
            for key, value in item.items():
                out[_check_key(key)] = _encode(value, active)
            return out
        if isinstance(item, (set, frozenset)):
            return {SET_MARKER: True, SET_VALUES: [_encode(v, active) for v in item]}
        if isinstance(item, (list, tuple)):
            return [_encode(v, active) for v in item]
        return {_check_key(k): _encode(v, active) for k, v in item.items()}
    finally:
        active.discard(marker)


def _decode(obj: Any) -> Any:
    if isinstance(obj, list):
        return [_decode(v) for v in obj]
    if not isinstance(obj, dict):
        return obj

    if MAP_MARKER in obj:
        return OrderedDict(
            (key, _decode(value)) for key, value in obj.items() if key != MAP_MARKER
        )
    if SET_MARKER in obj:
        members = obj.get(SET_VALUES)
        if not isinstance(members, list):
            raise DecodingError(f"Set payload must carry a '{SET_VALUES}' list")
        return {_freeze(_decode(v)) for v in members}
    return {key: _decode(value) for key, value in obj.items()}


def _freeze(value: Any) -> Any:
    """Make a decoded set member hashable again (lists -> tuples, sets -> frozensets)."""
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    if isinstance(value, set):
        return frozenset(value)
    if isinstance(value, Mapping):
        raise DecodingError("Mappings cannot be members of a set")
    return value


__all__ = ["encode", "decode", "MAP_MARKER", "SET_MARKER"]
