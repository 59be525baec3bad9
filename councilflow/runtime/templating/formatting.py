"""Value stringification for template insertion."""

from __future__ import annotations

import dataclasses
import json
import re
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel

_MAX_SIMPLE_ENTRIES = 10
_LONG_ITEM = 50


def humanize_key(key: str) -> str:
    """``firstDraft`` / ``first_draft`` -> ``First Draft``."""
    spaced = re.sub(r"([a-z])([A-Z])", r"\1 \2", key).replace("_", " ")
    return re.sub(r"\b\w", lambda m: m.group().upper(), spaced)


def to_plain(value: Any) -> Any:
    """Convert pydantic models and dataclasses into plain containers."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    return value


def to_json(value: Any, *, indent: int | None = 2) -> str:
    return json.dumps(to_plain(value), indent=indent, ensure_ascii=False, default=_json_default)


def stringify(value: Any) -> str:
    """Render any resolved value as prompt text.

    Strings pass through, scalars use their plain form, lists are joined
    (or JSON when they hold containers) and small flat mappings become
    ``Key: value`` lines.  Anything larger is pretty-printed JSON.
    """
    value = to_plain(value)
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (bool, int, float)):
        return _scalar(value)
    if isinstance(value, (list, tuple, set)):
        return _format_sequence(list(value))
    if isinstance(value, Mapping):
        return _format_mapping(value)
    return str(value)


def _scalar(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _format_sequence(items: list[Any]) -> str:
    if not items:
        return ""
    if any(isinstance(to_plain(item), (Mapping, list, tuple)) for item in items):
        return to_json(items)
    rendered = [_scalar(item) if not isinstance(item, str) else item for item in items]
    long_items = any(len(item) > _LONG_ITEM or "\n" in item for item in rendered)
    return ("\n" if long_items else ", ").join(rendered)


def _format_mapping(mapping: Mapping[str, Any]) -> str:
    if not mapping:
        return ""
    simple = all(not isinstance(to_plain(v), (Mapping, list, tuple)) for v in mapping.values())
    if simple and len(mapping) <= _MAX_SIMPLE_ENTRIES:
        return "\n".join(f"{humanize_key(str(k))}: {_scalar(v)}" for k, v in mapping.items())
    return to_json(dict(mapping))


def _json_default(value: Any) -> Any:
    plain = to_plain(value)
    if plain is not value:
        return plain
    return str(value)
