"""Shared test fixtures: settings, in-memory collaborators and a scripted LLM.

Everything here runs in-process.  No network, no Docker; the HTTP client
tests build their own ``httpx.MockTransport``.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from typing import Any

import pytest

from councilflow.runtime.collaborators.base import ChatResult
from councilflow.runtime.collaborators.memory import (
    MemoryCharacterDirectory,
    MemoryCuration,
    MemoryDirectory,
    MemoryThreadLog,
)
from councilflow.runtime.execution.engine import PipelineEngine
from councilflow.runtime.models.directory import Agent
from councilflow.runtime.settings import CouncilSettings, _get_settings_cached

ROSTER: dict[str, Any] = {
    "agents": [
        {"id": "agent_writer", "name": "Writer", "systemPrompt": "You write."},
        {"id": "agent_editor", "name": "Editor", "systemPrompt": "You edit."},
        {"id": "agent_archivist", "name": "Archivist"},
        {"id": "agent_dragon", "name": "Dragon Expert"},
        {"id": "agent_magic", "name": "Magic Expert"},
        {"id": "agent_publisher", "name": "Publisher"},
    ],
    "positions": [
        {
            "id": "writer",
            "name": "Lead Writer",
            "teamId": "prose",
            "assignedAgentId": "agent_writer",
            "promptModifiers": {"prefix": "PREFIX", "suffix": "SUFFIX", "roleDescription": "ROLE"},
        },
        {"id": "editor", "name": "Editor", "teamId": "prose", "assignedAgentId": "agent_editor"},
        {"id": "archivist", "name": "Archivist", "assignedAgentId": "agent_archivist"},
        {
            "id": "dragon_sme",
            "name": "Dragon SME",
            "assignedAgentId": "agent_dragon",
            "isSME": True,
            "smeKeywords": ["dragon", "wyrm"],
        },
        {
            "id": "magic_sme",
            "name": "Magic SME",
            "assignedAgentId": "agent_magic",
            "isSME": True,
            "smeKeywords": ["magic", "spell"],
        },
        {"id": "publisher", "name": "Publisher", "tier": "executive", "assignedAgentId": "agent_publisher"},
    ],
    "teams": [{"id": "prose", "name": "Prose", "leaderId": "writer", "memberIds": ["editor"]}],
}


class ScriptedLLM:
    """``LLMClient`` double.

    Replies come from ``responder(agent, prompt)`` when set, otherwise they
    are ``"<agent name> reply <n>"``.  Every call is recorded.
    """

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.timeouts: list[float | None] = []
        self.responder: Callable[[Agent | None, str], str] | None = None

    async def chat(self, messages: list[dict[str, str]], **model_config: Any) -> ChatResult:
        return ChatResult(content=await self.generate(messages[-1]["content"]))

    async def generate(
        self,
        prompt: str,
        *,
        agent: Agent | None = None,
        system_prompt: str | None = None,
        timeout: float | None = None,
    ) -> str:
        self.calls.append({
            "agent": agent.id if agent is not None else None,
            "prompt": prompt,
            "system_prompt": system_prompt,
        })
        self.timeouts.append(timeout)
        if self.responder is not None:
            return self.responder(agent, prompt)
        name = agent.display_name if agent is not None else "llm"
        return f"{name} reply {len(self.calls)}"

    def prompts_for(self, agent_id: str) -> list[str]:
        return [call["prompt"] for call in self.calls if call["agent"] == agent_id]


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _isolated_settings(tmp_path) -> Iterator[None]:
    """Point the cached settings at a temp data root for every test."""
    previous = os.environ.get("COUNCIL_DATA_ROOT")
    os.environ["COUNCIL_DATA_ROOT"] = str(tmp_path / "data")
    _get_settings_cached.cache_clear()
    yield
    if previous is None:
        os.environ.pop("COUNCIL_DATA_ROOT", None)
    else:
        os.environ["COUNCIL_DATA_ROOT"] = previous
    _get_settings_cached.cache_clear()


@pytest.fixture
def settings(tmp_path) -> CouncilSettings:
    """Settings with fast polling so timing tests stay short."""
    return CouncilSettings(
        data_root=str(tmp_path / "data"),
        retry_backoff_ms=1,
        trigger_poll_ms=5,
        pause_poll_ms=5,
    )


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def directory() -> MemoryDirectory:
    return MemoryDirectory.from_roster(ROSTER)


@pytest.fixture
def characters() -> MemoryCharacterDirectory:
    chars = MemoryCharacterDirectory()
    chars.add_character(
        "alice",
        "Alice",
        character_type="main",
        traits={"personality": "curious", "speechPatterns": "asks questions"},
        spawned=True,
    )
    chars.add_character("bob", "Bob", character_type="supporting", spawned=True)
    chars.add_character("carol", "Carol", character_type="supporting")
    return chars


@pytest.fixture
async def curation() -> MemoryCuration:
    store = MemoryCuration()
    await store.create("characterSheets", {"id": "alice", "name": "Alice", "role": "dragon tamer"})
    await store.create("lore", {"id": "magic", "text": "Magic requires a spoken spell."})
    store.register_rag_pipeline("lore_search", ["lore"])
    store.register_rag_pipeline("sheet_search", ["characterSheets"])
    return store


@pytest.fixture
def threads() -> MemoryThreadLog:
    return MemoryThreadLog()


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def engine(
    settings: CouncilSettings,
    directory: MemoryDirectory,
    characters: MemoryCharacterDirectory,
    curation: MemoryCuration,
    threads: MemoryThreadLog,
    llm: ScriptedLLM,
) -> PipelineEngine:
    return PipelineEngine(
        directory=directory,
        characters=characters,
        curation=curation,
        llm=llm,
        threads=threads,
        settings=settings,
    )


@pytest.fixture
def bare_engine(settings: CouncilSettings) -> PipelineEngine:
    """Engine without any collaborators."""
    return PipelineEngine(settings=settings)
