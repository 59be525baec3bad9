"""Unit tests for output routing and phase consolidation."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock

import pytest

from councilflow.runtime.collaborators.memory import MemoryCuration, MemoryThreadLog
from councilflow.runtime.context import ActionState, PhaseState, RunState
from councilflow.runtime.execution.context import ActionContext
from councilflow.runtime.execution.errors import CollaboratorUnavailableError
from councilflow.runtime.execution.routing import (
    MERGE_SEPARATOR,
    Consolidator,
    OutputRouter,
    append_value,
    merge_outputs,
    set_path,
)
from councilflow.runtime.execution.services import Services
from councilflow.runtime.models.enums import ActionType
from councilflow.runtime.models.pipeline import normalize_pipeline


def _make_ctx(output: dict[str, Any] | None = None, *, action_id: str = "a1", phase: dict | None = None) -> ActionContext:
    phase_doc = phase or {
        "id": "ph",
        "actions": [
            {"id": "a1", "actionType": "system", "output": output or {}},
            {"id": "a2", "actionType": "system"},
        ],
    }
    pipeline = normalize_pipeline({"id": "p", "phases": [phase_doc]})
    phase_model = pipeline.phases[0]
    run = RunState(pipeline_id="p", pipeline_name="P", globals={"custom": {}})
    phase_state = PhaseState(id=phase_model.id, name=phase_model.name)
    run.phases[phase_model.id] = phase_state
    action = phase_model.get_action(action_id)
    action_state = ActionState(id=action.id, name=action.name, action_type=action.action_type)
    phase_state.actions[action.id] = action_state
    return ActionContext(run, pipeline, phase_model, phase_state, action, action_state)


def _with_outputs(phase_doc: dict, outputs: list[Any]) -> tuple[Any, PhaseState, RunState]:
    pipeline = normalize_pipeline({"id": "p", "phases": [phase_doc]})
    phase = pipeline.phases[0]
    state = PhaseState(id=phase.id, name=phase.name)
    for index, (action, output) in enumerate(zip(phase.actions, outputs, strict=True)):
        state.actions[action.id] = ActionState(
            id=action.id, name=action.name, action_type=ActionType.SYSTEM, index=index, output=output
        )
    return phase, state, RunState(pipeline_id="p", pipeline_name="P")


def _phase_doc(consolidation: str, count: int = 3, **output: Any) -> dict:
    return {
        "id": "ph",
        "description": "Combine the drafts.",
        "output": {"consolidation": consolidation, **output},
        "actions": [{"id": f"a{i}", "actionType": "system"} for i in range(1, count + 1)],
    }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def test_merge_strings_uses_separator() -> None:
    assert merge_outputs(["a", "b", "c"]) == "a" + MERGE_SEPARATOR + "b" + MERGE_SEPARATOR + "c"
    assert MERGE_SEPARATOR == "\n\n---\n\n"


def test_merge_dicts_lists_and_mixed() -> None:
    assert merge_outputs([{"x": 1}, {"y": 2}]) == {"x": 1, "y": 2}
    assert merge_outputs([{"x": 1}, {"x": 3}]) == {"x": 3}
    assert merge_outputs([[1], [2, 3]]) == [1, 2, 3]
    assert merge_outputs(["a", {"x": 1}]) == ["a", {"x": 1}]
    assert merge_outputs(["", None]) == ""


def test_append_value() -> None:
    assert append_value(None, "a") == "a"
    assert append_value("a", "b") == "a\nb"
    assert append_value(["a"], "b") == ["a", "b"]
    assert append_value(["a"], ["b", "c"]) == ["a", "b", "c"]
    assert append_value({"k": 1}, "b") == [{"k": 1}, "b"]


def test_set_path_creates_intermediate_dicts() -> None:
    target: dict[str, Any] = {"drafts": "not a dict"}
    set_path(target, "drafts.first", "x")
    set_path(target, "drafts.first", "y", append=True)
    assert target == {"drafts": {"first": "x\ny"}}


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


async def test_phase_output_replace_and_append(settings) -> None:
    router = OutputRouter(Services(settings=settings))
    ctx = _make_ctx()
    ctx.action_state.output = "one"
    await router.route(ctx)
    ctx.action_state.output = "two"
    await router.route(ctx)
    assert ctx.phase_state.output == "two"

    ctx = _make_ctx({"append": True})
    for value in ("one", "two"):
        ctx.action_state.output = value
        await router.route(ctx)
    assert ctx.phase_state.output == "one\ntwo"


async def test_empty_output_is_not_routed(settings) -> None:
    router = OutputRouter(Services(settings=settings))
    ctx = _make_ctx()
    ctx.phase_state.output = "kept"
    for empty in (None, ""):
        ctx.action_state.output = empty
        await router.route(ctx)
    assert ctx.phase_state.output == "kept"


async def test_team_output(settings) -> None:
    router = OutputRouter(Services(settings=settings))
    ctx = _make_ctx({"target": "teamOutput"})
    ctx.action_state.output = "x"
    await router.route(ctx)
    assert ctx.phase_state.team_outputs == {"default": "x"}

    ctx = _make_ctx({"target": "teamOutput", "targetKey": "prose"})
    ctx.action_state.output = "y"
    await router.route(ctx)
    assert ctx.phase_state.team_outputs == {"prose": "y"}


@pytest.mark.parametrize("key", ["", "custom"])
async def test_global_custom_slot(settings, key: str) -> None:
    router = OutputRouter(Services(settings=settings))
    ctx = _make_ctx({"target": "global", "targetKey": key})
    ctx.action_state.output = "x"
    await router.route(ctx)
    assert ctx.run.globals["custom"] == {"a1": "x"}


async def test_global_dot_path(settings) -> None:
    router = OutputRouter(Services(settings=settings))
    ctx = _make_ctx({"target": "global", "targetKey": "drafts.first"})
    ctx.action_state.output = "x"
    await router.route(ctx)
    assert ctx.run.globals["drafts"] == {"first": "x"}


async def test_store_target_updates_or_creates(settings) -> None:
    curation = MemoryCuration()
    router = OutputRouter(Services(settings=settings, curation=curation))
    ctx = _make_ctx({"target": "store", "targetKey": "notes"})

    ctx.action_state.output = {"id": "n1", "text": "hello"}
    await router.route(ctx)
    ctx.action_state.output = "loose text"
    await router.route(ctx)

    assert await curation.read("notes", "n1") == {"id": "n1", "text": "hello"}
    assert await curation.read("notes", "loose") == [{"content": "loose text", "id": "notes_1"}]


async def test_store_target_without_curation(settings) -> None:
    router = OutputRouter(Services(settings=settings))
    ctx = _make_ctx({"target": "store", "targetKey": "notes"})
    ctx.action_state.output = "x"
    with pytest.raises(CollaboratorUnavailableError, match="CurationSystem not available"):
        await router.route(ctx)


async def test_next_action_target(settings) -> None:
    router = OutputRouter(Services(settings=settings))
    ctx = _make_ctx({"target": "nextAction"})
    ctx.action_state.output = "handoff"
    await router.route(ctx)
    assert ctx.phase_state.pending_inputs == {"a2": "handoff"}


async def test_next_action_from_last_action_is_dropped(settings) -> None:
    router = OutputRouter(Services(settings=settings))
    phase = {"id": "ph", "actions": [{"id": "only", "actionType": "system", "output": {"target": "nextAction"}}]}
    ctx = _make_ctx(action_id="only", phase=phase)
    ctx.action_state.output = "x"
    await router.route(ctx)
    assert ctx.phase_state.pending_inputs == {}


async def test_thread_target(settings) -> None:
    threads = MemoryThreadLog()
    router = OutputRouter(Services(settings=settings, threads=threads))
    ctx = _make_ctx({"target": "thread"})
    ctx.phase_state.thread_id = await threads.create_thread("Phase", "phase")

    ctx.action_state.output = {"score": 3}
    await router.route(ctx)

    assert threads.messages(ctx.phase_state.thread_id) == [{"role": "a1", "content": "Score: 3"}]


async def test_thread_target_key_overrides_phase_thread(settings) -> None:
    threads = AsyncMock()
    router = OutputRouter(Services(settings=settings, threads=threads))
    ctx = _make_ctx({"target": "thread", "targetKey": "thread_9"})
    ctx.phase_state.thread_id = "thread_1"

    ctx.action_state.output = "noted"
    await router.route(ctx)

    threads.add_message.assert_awaited_once_with("thread_9", "a1", "noted")


# ---------------------------------------------------------------------------
# Consolidator
# ---------------------------------------------------------------------------


async def test_consolidate_merge(settings) -> None:
    phase, state, run = _with_outputs(_phase_doc("merge"), ["a", "b", "c"])
    result = await Consolidator(Services(settings=settings)).consolidate(phase, state, run)
    assert result.output == "a\n\n---\n\nb\n\n---\n\nc"
    assert state.output == result.output
    assert result.gavel_options is None


async def test_consolidate_merge_dicts(settings) -> None:
    phase, state, run = _with_outputs(_phase_doc("merge", count=2), [{"x": 1}, {"y": 2}])
    result = await Consolidator(Services(settings=settings)).consolidate(phase, state, run)
    assert result.output == {"x": 1, "y": 2}


async def test_consolidate_first_last_designated(settings) -> None:
    consolidator = Consolidator(Services(settings=settings))

    phase, state, run = _with_outputs(_phase_doc("first_action"), [None, "b", "c"])
    assert (await consolidator.consolidate(phase, state, run)).output == "b"

    phase, state, run = _with_outputs(_phase_doc("last_action"), ["a", "b", "c"])
    state.output = "routed"
    assert (await consolidator.consolidate(phase, state, run)).output == "routed"

    phase, state, run = _with_outputs(_phase_doc("designated", consolidationActionId="a2"), ["a", "b", "c"])
    assert (await consolidator.consolidate(phase, state, run)).output == "b"


async def test_consolidate_synthesize_calls_synthesizer(settings, directory, llm) -> None:
    llm.responder = lambda agent, prompt: "synthesized"
    consolidator = Consolidator(Services(settings=settings, directory=directory, llm=llm))
    phase, state, run = _with_outputs(_phase_doc("synthesize", synthesizerPositionId="editor"), ["a", "b", "c"])

    result = await consolidator.consolidate(phase, state, run)

    assert result.output == "synthesized"
    assert llm.calls[0]["agent"] == "agent_editor"
    assert "Combine the drafts." in llm.calls[0]["prompt"]
    assert "### a2" in llm.calls[0]["prompt"]


async def test_consolidate_synthesize_defaults_to_publisher(settings, directory, llm) -> None:
    consolidator = Consolidator(Services(settings=settings, directory=directory, llm=llm))
    phase, state, run = _with_outputs(_phase_doc("synthesize", count=2), ["a", "b"])
    await consolidator.consolidate(phase, state, run)
    assert llm.calls[0]["agent"] == "agent_publisher"


async def test_consolidate_synthesize_falls_back_to_merge(settings, directory) -> None:
    consolidator = Consolidator(Services(settings=settings, directory=directory))
    phase, state, run = _with_outputs(_phase_doc("synthesize", count=2), ["a", "b"])
    assert (await consolidator.consolidate(phase, state, run)).output == "a" + MERGE_SEPARATOR + "b"


async def test_consolidate_synthesize_single_output(settings, directory, llm) -> None:
    consolidator = Consolidator(Services(settings=settings, directory=directory, llm=llm))
    phase, state, run = _with_outputs(_phase_doc("synthesize", count=2), ["only", None])
    assert (await consolidator.consolidate(phase, state, run)).output == "only"
    assert llm.calls == []


async def test_consolidate_user_gavel_sets_options(settings) -> None:
    phase, state, run = _with_outputs(_phase_doc("user_gavel", count=2), ["a", "b"])
    result = await Consolidator(Services(settings=settings)).consolidate(phase, state, run)

    assert result.output == "a" + MERGE_SEPARATOR + "b"
    assert result.gavel_options == {"outputs": {"a1": "a", "a2": "b"}, "merged": result.output}


async def test_consolidated_output_mirrors_into_global(settings) -> None:
    doc = _phase_doc("merge", count=2)
    doc["output"]["phaseOutput"] = {"target": "global", "targetKey": "finalDraft"}
    phase, state, run = _with_outputs(doc, ["a", "b"])
    await Consolidator(Services(settings=settings)).consolidate(phase, state, run)
    assert run.globals["finalDraft"] == "a" + MERGE_SEPARATOR + "b"
