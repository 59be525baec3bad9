"""Transform functions for ``{{token | transform:arg}}`` pipelines.

A transform receives the current value (``None`` when the token did not
resolve) plus its colon-separated string arguments and returns a new value.
Values stay raw between steps; stringification happens once at the end.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from typing import Any

from markupsafe import escape

from councilflow.runtime.templating.formatting import stringify, to_json

Transform = Callable[..., Any]


def split_args(raw: str) -> list[str]:
    """Split ``a:"b:c":d`` into ``["a", "b:c", "d"]``."""
    if not raw:
        return []
    args: list[str] = []
    current: list[str] = []
    quote: str | None = None
    for ch in raw:
        if quote:
            if ch == quote:
                quote = None
            else:
                current.append(ch)
        elif ch in "\"'":
            quote = ch
        elif ch == ":":
            args.append("".join(current))
            current = []
        else:
            current.append(ch)
    args.append("".join(current))
    return args


def _text(value: Any) -> str:
    return stringify(value)


def _truncate(value: Any, length: str = "100", ellipsis: str = "...") -> str:
    text = _text(value)
    try:
        limit = int(length)
    except ValueError:
        return text
    return text[:limit] + ellipsis if len(text) > limit else text


def _default(value: Any, fallback: str = "") -> Any:
    if value is None or value == "" or value == [] or value == {}:
        return fallback
    return value


def _join(value: Any, separator: str = ", ") -> str:
    if isinstance(value, (list, tuple)):
        return separator.join(_text(v) for v in value)
    return _text(value)


def _first(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    text = _text(value)
    return text.splitlines()[0] if text else ""


def _last(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return value[-1] if value else None
    text = _text(value)
    return text.splitlines()[-1] if text else ""


def _length(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, (list, tuple, Mapping, str)):
        return len(value)
    return len(_text(value))


def _slug(value: Any) -> str:
    return re.sub(r"[^a-z0-9]+", "-", _text(value).lower()).strip("-")


def _lines(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return "\n".join(_text(v) for v in value)
    return _text(value)


def _split(value: Any, separator: str = ",") -> list[str]:
    return [part.strip() for part in _text(value).split(separator) if part.strip()]


def _capitalize(value: Any) -> str:
    text = _text(value)
    return text[:1].upper() + text[1:]


def _wrap(value: Any, left: str = "", right: str | None = None) -> str:
    text = _text(value)
    if not text:
        return ""
    return f"{left}{text}{left if right is None else right}"


DEFAULT_TRANSFORMS: dict[str, Transform] = {
    "upper": lambda v: _text(v).upper(),
    "uppercase": lambda v: _text(v).upper(),
    "lower": lambda v: _text(v).lower(),
    "lowercase": lambda v: _text(v).lower(),
    "capitalize": _capitalize,
    "title": lambda v: _text(v).title(),
    "trim": lambda v: _text(v).strip(),
    "truncate": _truncate,
    "default": _default,
    "join": _join,
    "json": lambda v: to_json(v),
    "escape": lambda v: str(escape(_text(v))),
    "lines": _lines,
    "split": _split,
    "first": _first,
    "last": _last,
    "length": _length,
    "slug": _slug,
    "replace": lambda v, old="", new="": _text(v).replace(old, new) if old else _text(v),
    "prefix": lambda v, p="": f"{p}{_text(v)}" if _text(v) else "",
    "suffix": lambda v, s="": f"{_text(v)}{s}" if _text(v) else "",
    "wrap": _wrap,
}


class TransformRegistry:
    """Named transforms available to template pipelines."""

    def __init__(self, transforms: Mapping[str, Transform] | None = None) -> None:
        self._transforms: dict[str, Transform] = dict(DEFAULT_TRANSFORMS)
        if transforms:
            self._transforms.update(transforms)

    def register(self, name: str, fn: Transform) -> None:
        self._transforms[name] = fn

    def unregister(self, name: str) -> None:
        self._transforms.pop(name, None)

    def get(self, name: str) -> Transform | None:
        return self._transforms.get(name)

    def names(self) -> list[str]:
        return sorted(self._transforms)

    def __contains__(self, name: object) -> bool:
        return name in self._transforms
