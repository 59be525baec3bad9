"""Unit tests for TemplateResolver.

Covers the four resolution stages, host-macro pass-through, unresolved-token
policy, custom tokens and the template inspection helpers.
"""

from __future__ import annotations

import pytest

from councilflow.runtime.models.directory import Agent
from councilflow.runtime.templating import HOST_NATIVE_MACROS, TemplateResolver, resolve_scope
from councilflow.runtime.templating.conditions import MISSING


@pytest.fixture
def resolver() -> TemplateResolver:
    return TemplateResolver()


# ---------------------------------------------------------------------------
# Plain tokens
# ---------------------------------------------------------------------------


def test_plain_tokens_and_paths(resolver: TemplateResolver) -> None:
    ctx = {"input": "hi", "phase": {"name": "Draft"}, "items": ["a", "b"]}
    assert resolver.resolve("{{input}} / {{phase.name}} / {{items.1}}", ctx) == "hi / Draft / b"


def test_global_and_globals_are_aliases(resolver: TemplateResolver) -> None:
    assert resolver.resolve("{{globals.a}}", {"global": {"a": 1}}) == "1"
    assert resolver.resolve("{{global.a}}", {"globals": {"a": 2}}) == "2"


def test_context_shorthand_reads_combined_context(resolver: TemplateResolver) -> None:
    assert resolver.resolve("{{context}}", {"combinedContext": "## Notes\nx"}) == "## Notes\nx"


def test_values_are_stringified(resolver: TemplateResolver) -> None:
    ctx = {"flag": True, "count": 2.0, "names": ["a", "b"], "draft": {"firstDraft": "x"}, "nothing": None}
    assert resolver.resolve("{{flag}} {{count}} {{names}}", ctx) == "true 2 a, b"
    assert resolver.resolve("{{draft}}", ctx) == "First Draft: x"
    assert resolver.resolve("[{{nothing}}]", ctx) == "[]"


def test_non_string_templates(resolver: TemplateResolver) -> None:
    assert resolver.resolve(None) == ""
    assert resolver.resolve(5) == "5"
    assert resolver.resolve("no tokens here") == "no tokens here"


# ---------------------------------------------------------------------------
# Unresolved tokens
# ---------------------------------------------------------------------------


def test_unresolved_tokens_are_preserved_by_default(resolver: TemplateResolver) -> None:
    assert resolver.resolve("a {{unknown.path}} b", {}) == "a {{unknown.path}} b"


def test_unresolved_tokens_use_placeholder_when_not_preserving(resolver: TemplateResolver) -> None:
    result = resolver.resolve("a {{unknown}} b", {}, preserve_unresolved=False, placeholder="?")
    assert result == "a ? b"


def test_resolver_level_placeholder_policy() -> None:
    strict = TemplateResolver(preserve_unresolved=False, placeholder="")
    assert strict.resolve("[{{unknown}}]", {}) == "[]"


def test_preserved_tokens_resolve_on_a_later_pass(resolver: TemplateResolver) -> None:
    first = resolver.resolve("{{input}} then {{later}}", {"input": "now"})
    assert first == "now then {{later}}"
    assert resolver.resolve(first, {"later": "done"}) == "now then done"


# ---------------------------------------------------------------------------
# Host-native macros
# ---------------------------------------------------------------------------


def test_host_macros_pass_through_verbatim(resolver: TemplateResolver) -> None:
    template = "Hello {{char}}, it is {{time}}"
    assert resolver.resolve(template, {}) == template
    # Even when the context has the same keys.
    assert resolver.resolve(template, {"char": "X", "time": "noon"}) == template


def test_host_macros_with_arguments_pass_through(resolver: TemplateResolver) -> None:
    template = "{{random:1,2,3}} {{setvar::mood::calm}} {{user | upper}}"
    assert resolver.resolve(template, {"user": "bob"}) == template


def test_input_is_not_a_host_macro(resolver: TemplateResolver) -> None:
    assert "input" not in HOST_NATIVE_MACROS
    assert resolver.resolve("{{input}}", {"input": "x"}) == "x"


def test_host_macros_can_be_resolved_when_pass_through_is_off(resolver: TemplateResolver) -> None:
    assert resolver.resolve("{{user}}", {"user": "bob"}, pass_host_macros=False) == "bob"


# ---------------------------------------------------------------------------
# Conditionals
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("globals_", "expected"),
    [
        ({"flag": True}, "YES"),
        ({"flag": False}, "NO"),
        ({}, "NO"),
    ],
)
def test_if_else_on_global_flag(resolver: TemplateResolver, globals_: dict, expected: str) -> None:
    template = "{{#if globals.flag}}YES{{else}}NO{{/if}}"
    assert resolver.resolve(template, {"globals": globals_}) == expected


def test_if_else_without_any_globals(resolver: TemplateResolver) -> None:
    assert resolver.resolve("{{#if globals.flag}}YES{{else}}NO{{/if}}", {}) == "NO"


def test_unless_block(resolver: TemplateResolver) -> None:
    template = "{{#unless done}}todo{{/unless}}"
    assert resolver.resolve(template, {"done": False}) == "todo"
    assert resolver.resolve(template, {"done": True}) == ""


def test_nested_blocks_resolve_innermost_first(resolver: TemplateResolver) -> None:
    template = "{{#if a}}A{{#if b}}B{{else}}b{{/if}}{{/if}}"
    assert resolver.resolve(template, {"a": True, "b": False}) == "Ab"
    assert resolver.resolve(template, {"a": False, "b": True}) == ""


def test_condition_comparison_inside_block(resolver: TemplateResolver) -> None:
    template = "{{#if phase.index == 0}}first{{else}}later{{/if}}"
    assert resolver.resolve(template, {"phase": {"index": 0}}) == "first"
    assert resolver.resolve(template, {"phase": {"index": 2}}) == "later"


def test_block_bodies_are_resolved(resolver: TemplateResolver) -> None:
    template = "{{#if input}}Input: {{input}}{{/if}}"
    assert resolver.resolve(template, {"input": "x"}) == "Input: x"


# ---------------------------------------------------------------------------
# Macros
# ---------------------------------------------------------------------------


def test_macro_with_defaults_and_arguments(resolver: TemplateResolver) -> None:
    resolver.macros.register("greet", "Hello {{name}} ({{args.mood}})!", defaults={"name": "friend", "mood": "calm"})
    assert resolver.resolve("{{macro:greet}}", {}) == "Hello friend (calm)!"
    assert resolver.resolve('{{macro:greet name="Bob" mood=loud}}', {}) == "Hello Bob (loud)!"


def test_macro_sees_outer_context(resolver: TemplateResolver) -> None:
    resolver.macros.register("task", "Task: {{input}}")
    assert resolver.resolve("{{macro:task}}", {"input": "write"}) == "Task: write"


def test_unknown_macro_is_preserved(resolver: TemplateResolver) -> None:
    assert resolver.resolve("{{macro:nope}}", {}) == "{{macro:nope}}"


def test_recursive_macro_stops_at_depth_limit(resolver: TemplateResolver) -> None:
    resolver.macros.register("loop", "{{macro:loop}}")
    assert resolver.resolve("{{macro:loop}}", {}) == "{{macro:loop}}"


# ---------------------------------------------------------------------------
# Transform pipelines
# ---------------------------------------------------------------------------


def test_transform_chain(resolver: TemplateResolver) -> None:
    ctx = {"name": "Alice", "title": "Hello World!", "text": "abcdefgh", "html": "<b>"}
    assert resolver.resolve("{{name | upper}}", ctx) == "ALICE"
    assert resolver.resolve("{{name | lower | prefix:@}}", ctx) == "@alice"
    assert resolver.resolve("{{title | slug}}", ctx) == "hello-world"
    assert resolver.resolve("{{text | truncate:5}}", ctx) == "abcde..."
    assert resolver.resolve("{{html | escape}}", ctx) == "&lt;b&gt;"
    assert resolver.resolve("{{name | replace:A:E}}", ctx) == "Elice"


def test_join_and_length(resolver: TemplateResolver) -> None:
    ctx = {"items": ["a", "b", "c"]}
    assert resolver.resolve("{{items | join:-}}", ctx) == "a-b-c"
    assert resolver.resolve("{{items | length}}", ctx) == "3"
    assert resolver.resolve("{{items | first}}", ctx) == "a"


def test_missing_value_with_default(resolver: TemplateResolver) -> None:
    assert resolver.resolve("{{missing | default:none}}", {}) == "none"


def test_missing_value_without_default_is_preserved(resolver: TemplateResolver) -> None:
    assert resolver.resolve("{{missing | upper}}", {}) == "{{missing | upper}}"


def test_unknown_transform_is_skipped(resolver: TemplateResolver) -> None:
    assert resolver.resolve("{{name | sparkle | upper}}", {"name": "x"}) == "X"


@pytest.mark.parametrize("template", ["{{name | upper:x}}", "{{name | truncate:1:2:3}}"])
def test_transform_with_bad_arguments_is_skipped(resolver: TemplateResolver, template: str) -> None:
    assert resolver.resolve(template, {"name": "hey"}) == "hey"


def test_bad_transform_does_not_stop_the_chain(resolver: TemplateResolver) -> None:
    assert resolver.resolve("{{name | upper:x | suffix:!}}", {"name": "hey"}) == "hey!"


def test_custom_transform(resolver: TemplateResolver) -> None:
    resolver.transforms.register("shout", lambda v, bang="!": f"{v}{bang}")
    assert resolver.resolve("{{name | shout:!!}}", {"name": "hey"}) == "hey!!"


# ---------------------------------------------------------------------------
# Custom tokens
# ---------------------------------------------------------------------------


def test_registered_token_takes_precedence(resolver: TemplateResolver) -> None:
    resolver.register_token("input", lambda ctx, args: "computed")
    assert resolver.resolve("{{input}}", {"input": "raw"}) == "computed"


def test_registered_token_receives_args(resolver: TemplateResolver) -> None:
    resolver.register_token("echo", lambda ctx, args: f"<{args}>")
    assert resolver.resolve("{{echo:abc}}", {}) == "<abc>"


def test_failing_token_counts_as_unresolved(resolver: TemplateResolver) -> None:
    def _boom(ctx, args):
        raise RuntimeError("boom")

    resolver.register_token("boom", _boom)
    assert resolver.resolve("{{boom}}", {}) == "{{boom}}"


def test_unregister_token(resolver: TemplateResolver) -> None:
    resolver.register_token("now", lambda ctx, args: "NOW")
    assert resolver.has_token("now")
    resolver.unregister_token("now")
    assert not resolver.has_token("now")
    assert resolver.resolve("{{now}}", {}) == "{{now}}"


# ---------------------------------------------------------------------------
# Inspection helpers
# ---------------------------------------------------------------------------


def test_extract_tokens_and_scopes(resolver: TemplateResolver) -> None:
    template = "{{a.b}} {{c | upper}} {{a.b}} {{a.d}}"
    assert resolver.extract_tokens(template) == ["a.b", "a.d", "c"]
    assert resolver.token_scopes(template) == ["a", "c"]


def test_has_tokens(resolver: TemplateResolver) -> None:
    assert resolver.has_tokens("{{x}}")
    assert resolver.has_tokens("{{x | upper}}")
    assert not resolver.has_tokens("plain")
    assert not resolver.has_tokens(None)


def test_validate_reports_missing_tokens(resolver: TemplateResolver) -> None:
    report = resolver.validate("{{input}} {{char}} {{missing}}", {"input": "x"})
    assert report.valid is False
    assert report.tokens == ["input", "char", "missing"]
    assert report.missing == ["missing"]


def test_validate_passes_with_full_context(resolver: TemplateResolver) -> None:
    assert resolver.validate("{{input}}", {"input": "x"}).valid


def test_resolve_token_returns_raw_values(resolver: TemplateResolver) -> None:
    ctx = {"globals": {"flag": True, "items": [1, 2]}}
    assert resolver.resolve_token("globals.flag", ctx) is True
    assert resolver.resolve_token("globals.items", ctx) == [1, 2]
    assert resolver.resolve_token("globals.nope", ctx) is None


def test_resolve_scope_returns_missing_marker() -> None:
    assert resolve_scope("a.b", {"a": {}}) is MISSING
    assert resolve_scope("a.b", {"a": {"b": None}}) is None


def test_attributes_of_plain_values_stay_unresolved(resolver: TemplateResolver) -> None:
    ctx = {"input": "hi", "previousAction": {"output": "done"}}
    assert resolver.resolve("T={{input.title}}", ctx) == "T={{input.title}}"
    assert resolver.resolve("{{previousAction.output.count}}", ctx) == "{{previousAction.output.count}}"
    assert resolver.resolve("[{{input.split}}]", ctx, preserve_unresolved=False) == "[]"
    assert resolver.resolve("{{#if input.strip}}YES{{else}}NO{{/if}}", ctx) == "NO"


def test_model_fields_resolve_by_name_and_alias(resolver: TemplateResolver) -> None:
    ctx = {"agent": Agent(id="a", name="Ann", system_prompt="Be kind.")}
    assert resolver.resolve("{{agent.name}}|{{agent.system_prompt}}|{{agent.systemPrompt}}", ctx) == (
        "Ann|Be kind.|Be kind."
    )
    assert resolver.resolve("{{agent.model_dump}}", ctx) == "{{agent.model_dump}}"
