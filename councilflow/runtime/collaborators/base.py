"""Capability interfaces for the engine's external collaborators.

The engine never reaches into a collaborator's internals; it only calls the
narrow methods below.  Directory lookups are synchronous (in-process
records); anything that may cross a process boundary is async.

Bundled implementations live in ``councilflow.runtime.collaborators.memory``
and ``councilflow.runtime.collaborators.llm``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from councilflow.runtime.models.directory import Agent, Position, Team


@dataclass
class ChatResult:
    """Completion returned by an ``LLMClient``."""

    content: str
    model: str = ""
    usage: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


@runtime_checkable
class AgentDirectory(Protocol):
    """Positions, teams and the agents assigned to them."""

    def get_position(self, position_id: str) -> Position | None: ...

    def get_agent_for_position(self, position_id: str) -> Agent | None:
        """Resolve the position's agent, selecting from its pool if it has one."""
        ...

    def get_team(self, team_id: str) -> Team | None: ...

    def get_all_positions(self) -> list[Position]: ...

    def get_agent(self, agent_id: str) -> Agent | None: ...


@runtime_checkable
class CharacterDirectory(Protocol):
    """Character-backed agents and the director that coordinates them."""

    def get_agent_by_character_id(self, character_id: str) -> Agent | None: ...

    def get_spawned_agents(self) -> list[Agent]: ...

    def get_agents_by_type(self, character_type: str) -> list[Agent]: ...

    def get_character_director(self) -> Agent | None: ...

    def generate_system_prompt(self, agent_id: str) -> str: ...

    def resolve_position_agent(self, position_id: str) -> dict[str, Any] | None:
        """Return ``{"position", "agent", "systemPrompt"}`` or None."""
        ...

    def get_all_character_agents(self) -> list[Agent]: ...


@runtime_checkable
class CurationStore(Protocol):
    """Structured stores plus retrieval pipelines."""

    async def read(self, store_id: str, query: Any = None) -> Any: ...

    async def create(self, store_id: str, data: Any) -> Any: ...

    async def update(self, store_id: str, key: Any, data: Any) -> Any: ...

    async def delete(self, store_id: str, key: Any) -> Any: ...

    async def execute_rag(self, pipeline_id: str | None, *, query: str, limit: int = 5) -> dict[str, Any]:
        """Run a retrieval pipeline.

        Returns ``{"query", "results": [{"storeName", "entry"}], "count"}``.
        """
        ...

    def get_crud_pipeline(self, pipeline_id: str) -> dict[str, Any] | None: ...


@runtime_checkable
class LLMClient(Protocol):
    async def chat(self, messages: list[dict[str, str]], **model_config: Any) -> ChatResult: ...

    async def generate(
        self,
        prompt: str,
        *,
        agent: Agent | None = None,
        system_prompt: str | None = None,
        timeout: float | None = None,
    ) -> str:
        """Single-turn completion using the agent's system prompt and api config."""
        ...


@runtime_checkable
class ThreadLog(Protocol):
    """Conversation threads recording multi-step exchanges."""

    async def create_thread(self, name: str, type: str = "action") -> str: ...

    async def add_message(self, thread_id: str, role: str, content: str) -> None: ...
