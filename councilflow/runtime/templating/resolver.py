"""Token / template resolver.

Resolves ``{{...}}`` syntax against a layered context dict (see
``councilflow.runtime.execution.context.ContextAssembler``).  Each template
passes through four stages in order:

1. Conditional blocks: ``{{#if cond}}...{{else}}...{{/if}}`` and
   ``{{#unless cond}}...{{/unless}}``; nested blocks resolve innermost first.
2. Macro expansion: ``{{macro:id key="value"}}``.
3. Transform pipelines: ``{{token | transform | transform:arg}}``.
4. Plain tokens: ``{{scope.path}}`` and ``{{token:args}}``.

Host-native macros (``{{char}}``, ``{{user}}``, ``{{time}}``, ...) belong to
the host chat application's own macro engine and are always returned
verbatim so it can process them afterward.

Unresolved tokens are preserved verbatim by default, which keeps templates
safe for multi-pass resolution; alternatively they become a placeholder.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from councilflow.runtime.templating.conditions import MISSING, evaluate_condition
from councilflow.runtime.templating.formatting import stringify, to_plain
from councilflow.runtime.templating.macros import MacroLibrary, MacroNotFoundError, parse_arguments
from councilflow.runtime.templating.transforms import TransformRegistry, split_args

logger = logging.getLogger(__name__)

HOST_NATIVE_MACROS: frozenset[str] = frozenset({
    "char",
    "user",
    "persona",
    "scenario",
    "personality",
    "system",
    "jailbreak",
    "mesExamples",
    "description",
    "char_version",
    "model",
    "lastMessage",
    "lastMessageId",
    "firstIncludedMessageId",
    "currentSwipeId",
    "lastSwipeId",
    "original",
    "time",
    "date",
    "weekday",
    "isotime",
    "isodate",
    "idle_duration",
    "random",
    "roll",
    "pick",
    "ban",
    "newline",
    "trim",
    "inject",
    "button",
    "comment",
    "hidden",
    "note",
    "setvar",
    "getvar",
    "addvar",
    "incvar",
    "decvar",
    "mulvar",
    "divvar",
    "modvar",
    "powvar",
    "minvar",
    "maxvar",
    "setglobalvar",
    "getglobalvar",
    "addglobalvar",
})
"""Names owned by the host application.  ``input`` is deliberately absent:
it is the action-input shorthand scope here."""

MAX_MACRO_DEPTH = 10

_PATH = r"[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z0-9_]+)*"
TOKEN_PATTERN = re.compile(r"\{\{\s*(" + _PATH + r")(?::([^}]*))?\s*\}\}")
_PIPELINE_PATTERN = re.compile(r"\{\{\s*(" + _PATH + r")\s*((?:\|[^|}]+)+)\}\}")
_MACRO_PATTERN = re.compile(r"\{\{\s*macro:([A-Za-z0-9_-]+)((?:\s+[^}]*)?)\}\}")
_BLOCK_PATTERN = re.compile(
    r"\{\{#(if|unless)\s+([^}]+?)\s*\}\}((?:(?!\{\{#(?:if|unless)\s).)*?)\{\{/\1\}\}",
    re.DOTALL,
)
_ELSE = re.compile(r"\{\{\s*else\s*\}\}")

TokenFn = Callable[[Mapping[str, Any], str | None], Any]


@dataclass
class TemplateValidation:
    valid: bool
    tokens: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)


@dataclass
class _Options:
    preserve_unresolved: bool
    placeholder: str
    pass_host_macros: bool


class TemplateResolver:
    """Resolve templates against a layered context.

    Parameters
    ----------
    macros:
        Macro library used by stage 2.  A fresh library is created if omitted.
    transforms:
        Transform registry used by stage 3.
    preserve_unresolved:
        Default policy for tokens that cannot be resolved.
    placeholder:
        Replacement text for unresolved tokens when not preserving.
    """

    def __init__(
        self,
        *,
        macros: MacroLibrary | None = None,
        transforms: TransformRegistry | None = None,
        preserve_unresolved: bool = True,
        placeholder: str = "",
    ) -> None:
        self.macros = macros or MacroLibrary()
        self.transforms = transforms or TransformRegistry()
        self.preserve_unresolved = preserve_unresolved
        self.placeholder = placeholder
        self._tokens: dict[str, TokenFn] = {}

    # -- Token registry --------------------------------------------------------

    def register_token(self, token_id: str, resolver: TokenFn) -> None:
        """Register a computed token; it takes precedence over context lookup."""
        self._tokens[token_id] = resolver

    def unregister_token(self, token_id: str) -> None:
        self._tokens.pop(token_id, None)

    def has_token(self, token_id: str) -> bool:
        return token_id in self._tokens

    # -- Public API ------------------------------------------------------------

    def resolve(
        self,
        template: Any,
        context: Mapping[str, Any] | None = None,
        *,
        preserve_unresolved: bool | None = None,
        placeholder: str | None = None,
        pass_host_macros: bool = True,
    ) -> str:
        """Resolve every stage of *template* against *context*.

        Non-string templates are stringified; ``None`` becomes ``""``.
        """
        if template is None:
            return ""
        if not isinstance(template, str):
            return stringify(template)
        opts = _Options(
            preserve_unresolved=self.preserve_unresolved if preserve_unresolved is None else preserve_unresolved,
            placeholder=self.placeholder if placeholder is None else placeholder,
            pass_host_macros=pass_host_macros,
        )
        return self._resolve(template, context or {}, opts, depth=0)

    def resolve_token(self, path: str, context: Mapping[str, Any] | None = None, args: str | None = None) -> Any:
        """Return the raw value at *path*, or ``None`` if it does not resolve."""
        value = self._lookup(path, context or {}, args)
        return None if value is MISSING else value

    def extract_tokens(self, template: str | None) -> list[str]:
        """Unique plain-token paths in order of first appearance."""
        if not template:
            return []
        seen: dict[str, None] = {}
        for match in TOKEN_PATTERN.finditer(template):
            seen.setdefault(match.group(1), None)
        for match in _PIPELINE_PATTERN.finditer(template):
            seen.setdefault(match.group(1), None)
        return list(seen)

    def has_tokens(self, template: str | None) -> bool:
        return bool(template) and ("{{" in template) and bool(
            TOKEN_PATTERN.search(template) or _PIPELINE_PATTERN.search(template) or _BLOCK_PATTERN.search(template)
        )

    def token_scopes(self, template: str | None) -> list[str]:
        scopes: dict[str, None] = {}
        for token in self.extract_tokens(template):
            scopes.setdefault(token.split(".")[0], None)
        return list(scopes)

    def validate(self, template: str | None, context: Mapping[str, Any] | None = None) -> TemplateValidation:
        """Report tokens that would stay unresolved (host macros never count)."""
        tokens = self.extract_tokens(template)
        missing = [
            token
            for token in tokens
            if token.split(".")[0] not in HOST_NATIVE_MACROS and self._lookup(token, context or {}, None) is MISSING
        ]
        return TemplateValidation(valid=not missing, tokens=tokens, missing=missing)

    def evaluate(self, condition: str, context: Mapping[str, Any] | None = None) -> bool:
        """Evaluate a condition expression the way ``{{#if}}`` does."""
        ctx = context or {}
        return evaluate_condition(condition, lambda path: self._lookup(path, ctx, None))

    # -- Stages ----------------------------------------------------------------

    def _resolve(self, template: str, context: Mapping[str, Any], opts: _Options, depth: int) -> str:
        if "{{" not in template:
            return template
        text = self._process_conditionals(template, context)
        text = self._expand_macros(text, context, opts, depth)
        text = self._apply_pipelines(text, context, opts)
        return self._substitute_tokens(text, context, opts)

    def _process_conditionals(self, text: str, context: Mapping[str, Any]) -> str:
        def _replace(match: re.Match[str]) -> str:
            kind, condition, body = match.group(1), match.group(2), match.group(3)
            parts = _ELSE.split(body, maxsplit=1)
            when_true = parts[0]
            when_false = parts[1] if len(parts) > 1 else ""
            result = self.evaluate(condition, context)
            if kind == "unless":
                result = not result
            return when_true if result else when_false

        # Innermost blocks first; each pass removes one nesting level.
        while True:
            text, count = _BLOCK_PATTERN.subn(_replace, text)
            if not count:
                return text

    def _expand_macros(self, text: str, context: Mapping[str, Any], opts: _Options, depth: int) -> str:
        def _replace(match: re.Match[str]) -> str:
            macro_id, raw_args = match.group(1), match.group(2)
            if depth >= MAX_MACRO_DEPTH:
                logger.warning("Macro depth limit reached at '%s'", macro_id)
                return match.group(0)
            try:
                macro = self.macros.get(macro_id)
            except MacroNotFoundError:
                logger.warning("Unknown macro '%s'", macro_id)
                return match.group(0) if opts.preserve_unresolved else opts.placeholder
            bound = macro.bind(parse_arguments(raw_args))
            scoped = {**context, **bound, "args": bound}
            return self._resolve(macro.template, scoped, opts, depth + 1)

        return _MACRO_PATTERN.sub(_replace, text)

    def _apply_pipelines(self, text: str, context: Mapping[str, Any], opts: _Options) -> str:
        def _replace(match: re.Match[str]) -> str:
            path, chain = match.group(1), match.group(2)
            if opts.pass_host_macros and path.split(".")[0] in HOST_NATIVE_MACROS:
                return match.group(0)
            steps = [step.strip() for step in chain.split("|") if step.strip()]
            value = self._lookup(path, context, None)
            if value is MISSING:
                if not any(step.partition(":")[0].strip() == "default" for step in steps):
                    return match.group(0) if opts.preserve_unresolved else opts.placeholder
                value = None
            for step in steps:
                name, _, raw_args = step.partition(":")
                name = name.strip()
                transform = self.transforms.get(name)
                if transform is None:
                    logger.warning("Unknown transform '%s' in token '%s'", name, path)
                    continue
                try:
                    value = transform(value, *split_args(raw_args))
                except (TypeError, ValueError) as exc:
                    logger.warning("Transform '%s' failed in token '%s': %s", name, path, exc)
            return stringify(value)

        return _PIPELINE_PATTERN.sub(_replace, text)

    def _substitute_tokens(self, text: str, context: Mapping[str, Any], opts: _Options) -> str:
        def _replace(match: re.Match[str]) -> str:
            path, args = match.group(1), match.group(2)
            if opts.pass_host_macros and path.split(".")[0] in HOST_NATIVE_MACROS:
                return match.group(0)
            value = self._lookup(path, context, args)
            if value is MISSING:
                return match.group(0) if opts.preserve_unresolved else opts.placeholder
            return stringify(value)

        return TOKEN_PATTERN.sub(_replace, text)

    # -- Lookup ----------------------------------------------------------------

    def _lookup(self, path: str, context: Mapping[str, Any], args: str | None) -> Any:
        registered = self._tokens.get(path)
        if registered is not None:
            try:
                value = registered(context, args)
            except Exception:
                logger.warning("Token resolver for '%s' failed", path, exc_info=True)
                return MISSING
            return MISSING if value is None else value
        return resolve_scope(path, context)


# ---------------------------------------------------------------------------
# Scope resolution
# ---------------------------------------------------------------------------

_ALIASED_SCOPES = {
    "global": ("global", "globals"),
    "globals": ("globals", "global"),
}


def resolve_scope(path: str, context: Mapping[str, Any]) -> Any:
    """Resolve a dotted token path against the layered context.

    Returns ``MISSING`` when any segment is absent.
    """
    scope, *rest = path.split(".")

    if scope in _ALIASED_SCOPES:
        for key in _ALIASED_SCOPES[scope]:
            if key in context:
                return walk(context[key], rest)
        return MISSING

    if scope == "context":
        combined = context.get("combinedContext", context.get("context", MISSING))
        return walk(combined, rest)

    if scope not in context:
        return MISSING
    return walk(context[scope], rest)


def walk(value: Any, parts: list[str]) -> Any:
    """Follow *parts* through mappings, sequences, pydantic models and dataclasses.

    Attributes of any other object (``str.title`` and the like) are never
    looked up, so such paths stay unresolved.
    """
    current = value
    for part in parts:
        if current is None or current is MISSING:
            return MISSING
        if isinstance(current, Mapping):
            current = current.get(part, MISSING)
        elif isinstance(current, (list, tuple)):
            if not part.isdigit() or int(part) >= len(current):
                return MISSING
            current = current[int(part)]
        elif _is_record(current):
            current = _record_field(current, part)
        else:
            return MISSING
    return current


def _is_record(value: Any) -> bool:
    return isinstance(value, BaseModel) or (dataclasses.is_dataclass(value) and not isinstance(value, type))


def _record_field(record: Any, part: str) -> Any:
    # Field names first, then the camelCase document form.
    if isinstance(record, BaseModel):
        names = type(record).model_fields
    else:
        names = {f.name for f in dataclasses.fields(record)}
    if part in names:
        return getattr(record, part)
    return to_plain(record).get(part, MISSING)
