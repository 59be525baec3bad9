"""Tests for the character workshop protocols."""

from __future__ import annotations

from typing import Any

import pytest

from councilflow.runtime.execution.engine import PipelineEngine
from councilflow.runtime.execution.errors import CollaboratorUnavailableError
from councilflow.runtime.execution.workshop import format_transcript
from councilflow.runtime.models.directory import CHARACTER_DIRECTOR_ID
from councilflow.runtime.models.enums import EventType


def _make_action(**config: Any) -> dict[str, Any]:
    return {"id": "workshop", "actionType": "character_workshop", "characterWorkshopConfig": config}


async def _run(engine: PipelineEngine, action: dict[str, Any], user_input: Any = "The heroes reach the bridge."):
    await engine.register_pipeline({"id": "p", "name": "P", "phases": [{"id": "main", "actions": [action]}]})
    return await engine.start_run("p", user_input)


def test_format_transcript() -> None:
    lines = [{"name": "Alice", "content": "Hi"}, {"name": "Bob", "content": "Hello"}]
    assert format_transcript(lines) == "[Alice]: Hi\n\n[Bob]: Hello"
    assert format_transcript([]) == ""


# ---------------------------------------------------------------------------
# Refinement
# ---------------------------------------------------------------------------


async def test_refinement_call_order(engine: PipelineEngine, llm) -> None:
    run = await _run(engine, _make_action(characterIds=["alice", "bob"]))

    assert [call["agent"] for call in llm.calls] == [
        CHARACTER_DIRECTOR_ID,
        "char_alice",
        "char_bob",
        CHARACTER_DIRECTOR_ID,
        "char_alice",
        "char_bob",
        CHARACTER_DIRECTOR_ID,
    ]
    assert run.final_output == "Character Director reply 7"
    assert len(run.phases["main"].actions["workshop"].responses) == 7


async def test_refinement_prompts_carry_drafts_and_feedback(engine: PipelineEngine, llm) -> None:
    await _run(engine, _make_action(characterIds=["alice", "bob"], prompts={"refinement": "Watch the tone."}))

    critique = llm.calls[3]["prompt"]
    assert "### Alice\nAlice reply 2" in critique
    assert "### Bob\nBob reply 3" in critique
    assert "Watch the tone." in critique

    revision = llm.calls[4]["prompt"]
    assert "Your previous draft:\nAlice reply 2" in revision
    assert "Character Director reply 4" in revision

    synthesis = llm.calls[6]["prompt"]
    assert "refinement workshop" in synthesis
    assert "[Bob]: Bob reply 6" in synthesis


async def test_character_calls_use_character_system_prompt(engine: PipelineEngine, llm) -> None:
    await _run(engine, _make_action(characterIds=["alice"]))

    alice_calls = [call for call in llm.calls if call["agent"] == "char_alice"]
    assert alice_calls
    assert all(call["system_prompt"].startswith("You are Alice.") for call in alice_calls)
    assert "**Personality:** curious" in alice_calls[0]["system_prompt"]


async def test_draft_prompt_includes_character_reference(engine: PipelineEngine, llm) -> None:
    await _run(engine, _make_action(characterIds=["alice", "bob"]))

    alice_draft = llm.prompts_for("char_alice")[0]
    bob_draft = llm.prompts_for("char_bob")[0]
    assert "Your character reference:" in alice_draft
    assert "dragon tamer" in alice_draft
    assert "Your character reference:" not in bob_draft


async def test_references_can_be_disabled(engine: PipelineEngine, llm) -> None:
    await _run(engine, _make_action(characterIds=["alice"], ragConfig={"enabled": False}))
    assert "dragon tamer" not in llm.prompts_for("char_alice")[0]


async def test_editorial_positions_join_the_critique(engine: PipelineEngine, llm) -> None:
    await _run(engine, _make_action(characterIds=["alice"], editorialPositions=["editor"]))

    agents = [call["agent"] for call in llm.calls]
    assert agents == [CHARACTER_DIRECTOR_ID, "char_alice", CHARACTER_DIRECTOR_ID, "agent_editor", "char_alice", CHARACTER_DIRECTOR_ID]
    revision = llm.calls[4]["prompt"]
    assert "Character Director reply 3\n\nEditor reply 4" in revision


async def test_refinement_without_director_returns_drafts(engine: PipelineEngine, llm) -> None:
    run = await _run(engine, _make_action(characterIds=["alice", "bob"], includeDirector=False))
    assert run.final_output == "[Alice]: Alice reply 1\n\n[Bob]: Bob reply 2"


async def test_spawned_characters_are_the_default_cast(engine: PipelineEngine, llm) -> None:
    await _run(engine, _make_action(includeDirector=False, consolidation="raw"))
    assert [call["agent"] for call in llm.calls] == ["char_alice", "char_bob"]


# ---------------------------------------------------------------------------
# Consistency and collaboration
# ---------------------------------------------------------------------------


async def test_consistency_raw_transcript(engine: PipelineEngine, llm) -> None:
    run = await _run(
        engine,
        _make_action(mode="consistency", characterIds=["alice", "bob"], includeDirector=False, consolidation="raw"),
    )
    assert run.final_output == "[Alice]: Alice reply 1\n\n[Bob]: Bob reply 2"
    assert "out of character" in llm.calls[0]["prompt"]


async def test_consistency_report_by_director(engine: PipelineEngine, llm) -> None:
    run = await _run(engine, _make_action(mode="consistency", characterIds=["alice", "bob"], consolidation="raw"))

    report = llm.calls[2]
    assert report["agent"] == CHARACTER_DIRECTOR_ID
    assert "### Alice\nAlice reply 1" in report["prompt"]
    assert run.final_output.endswith("[Character Director]: Character Director reply 3")


async def test_collaboration_turns_see_transcript(engine: PipelineEngine, llm) -> None:
    run = await _run(engine, _make_action(mode="collaboration", characterIds=["alice", "bob"], consolidation="raw"))

    alice_turn = llm.prompts_for("char_alice")[0]
    bob_turn = llm.prompts_for("char_bob")[0]
    assert alice_turn.startswith("Scene:\nCharacter Director reply 1")
    assert "[Character Director]: Character Director reply 1" in alice_turn
    assert "[Alice]: Alice reply 2" in bob_turn
    assert run.final_output.count("\n\n[") == 2


async def test_collaboration_without_director_uses_material_as_scene(engine: PipelineEngine, llm) -> None:
    await _run(
        engine,
        _make_action(mode="collaboration", characterIds=["alice"], includeDirector=False),
        user_input="A storm rolls in.",
    )
    assert llm.calls[0]["prompt"].startswith("Scene:\nA storm rolls in.")


# ---------------------------------------------------------------------------
# Edges
# ---------------------------------------------------------------------------


async def test_empty_cast_passes_input(engine: PipelineEngine, llm) -> None:
    run = await _run(engine, _make_action(characterIds=["ghost"]), user_input="unchanged")
    assert run.final_output == "unchanged"
    assert llm.calls == []


async def test_requires_character_directory(bare_engine: PipelineEngine) -> None:
    with pytest.raises(CollaboratorUnavailableError, match="CharacterDirectory not available"):
        await _run(bare_engine, _make_action())


async def test_workshop_complete_event_and_thread(engine: PipelineEngine, llm, threads) -> None:
    events = []
    engine.on(EventType.WORKSHOP_COMPLETE, lambda e: events.append(e.payload))

    await _run(engine, _make_action(characterIds=["alice", "bob"], includeDirector=False))

    assert events == [{"actionId": "workshop", "mode": "refinement", "characterCount": 2}]
    thread = next(t for t in threads.threads.values() if t["type"] == "workshop")
    assert thread["name"] == "Character Workshop"
    assert [m["role"] for m in thread["messages"]] == ["Alice", "Bob"]
