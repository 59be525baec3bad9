"""Template and token resolution.

- **resolver**: ``TemplateResolver`` (conditionals -> macros -> pipelines -> tokens)
- **conditions**: ``{{#if}}`` expression evaluator
- **macros**: ``{{macro:id}}`` library
- **transforms**: ``{{token | transform}}`` functions
- **formatting**: value stringification
"""

from councilflow.runtime.templating.conditions import MISSING, evaluate_condition, is_truthy
from councilflow.runtime.templating.formatting import humanize_key, stringify
from councilflow.runtime.templating.macros import Macro, MacroLibrary, MacroNotFoundError
from councilflow.runtime.templating.resolver import (
    HOST_NATIVE_MACROS,
    TemplateResolver,
    TemplateValidation,
    resolve_scope,
)
from councilflow.runtime.templating.transforms import TransformRegistry

__all__ = [
    "HOST_NATIVE_MACROS",
    "MISSING",
    "Macro",
    "MacroLibrary",
    "MacroNotFoundError",
    "TemplateResolver",
    "TemplateValidation",
    "TransformRegistry",
    "evaluate_condition",
    "humanize_key",
    "is_truthy",
    "resolve_scope",
    "stringify",
]
