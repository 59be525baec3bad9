"""Macro library for ``{{macro:id key="value"}}`` invocations.

A macro is a named template fragment.  Invocation arguments are bound both
under ``args`` and as root keys of the resolution context, on top of the
macro's declared defaults, and the body is resolved recursively.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

MACRO_ID = re.compile(r"^[A-Za-z0-9_-]+$")
_ARGUMENT = re.compile(r"([A-Za-z_][\w-]*)\s*=\s*(?:\"([^\"]*)\"|'([^']*)'|([^\s}]+))")


class MacroNotFoundError(LookupError):
    def __init__(self, macro_id: str) -> None:
        super().__init__(f"Macro '{macro_id}' not registered")


@dataclass
class Macro:
    id: str
    template: str
    description: str = ""
    category: str = "custom"
    defaults: dict[str, Any] = field(default_factory=dict)

    def bind(self, arguments: dict[str, str]) -> dict[str, Any]:
        bound = dict(self.defaults)
        bound.update(arguments)
        return bound


def parse_arguments(raw: str) -> dict[str, str]:
    """Parse ``name="Bob" mood=calm`` into a dict of strings."""
    args: dict[str, str] = {}
    for match in _ARGUMENT.finditer(raw or ""):
        key = match.group(1)
        for group in (2, 3, 4):
            if match.group(group) is not None:
                args[key] = match.group(group)
                break
    return args


class MacroLibrary:
    """Registry of macros keyed by id."""

    def __init__(self) -> None:
        self._macros: dict[str, Macro] = {}

    def register(
        self,
        macro_id: str,
        template: str,
        *,
        description: str = "",
        category: str = "custom",
        defaults: dict[str, Any] | None = None,
    ) -> Macro:
        if not MACRO_ID.match(macro_id):
            raise ValueError(f"Invalid macro id '{macro_id}'")
        macro = Macro(
            id=macro_id,
            template=template,
            description=description,
            category=category,
            defaults=dict(defaults or {}),
        )
        self._macros[macro_id] = macro
        return macro

    def unregister(self, macro_id: str) -> bool:
        return self._macros.pop(macro_id, None) is not None

    def get(self, macro_id: str) -> Macro:
        try:
            return self._macros[macro_id]
        except KeyError:
            raise MacroNotFoundError(macro_id) from None

    def has(self, macro_id: str) -> bool:
        return macro_id in self._macros

    def list(self, category: str | None = None) -> list[Macro]:
        macros = self._macros.values()
        if category is not None:
            return [m for m in macros if m.category == category]
        return list(macros)
