"""In-memory collaborator implementations.

Used by the CLI and by tests.  They hold plain Python dicts and are not
persistent.  The retrieval "ranking" in ``MemoryCuration`` is a naive
substring match suitable for local use only.
"""

from __future__ import annotations

import itertools
import json
import random
from typing import Any

from loguru import logger

from councilflow.runtime.models.directory import (
    CHARACTER_DIRECTOR_ID,
    PUBLISHER_POSITION_ID,
    Agent,
    AgentPool,
    Position,
    Team,
)
from councilflow.runtime.models.enums import PoolSelection, PositionTier

DEFAULT_DIRECTOR_PROMPT = (
    "You are the Character Director of an editorial team. You keep every character's voice "
    "consistent with their personality, background and speech patterns, decide which characters "
    "belong in a scene, and give character agents guidance on how to embody their roles."
)


# ---------------------------------------------------------------------------
# Agent directory
# ---------------------------------------------------------------------------


class MemoryDirectory:
    """Agents, pools, positions and teams held in dicts.

    A ``publisher`` executive position always exists.
    """

    def __init__(self, *, rng: random.Random | None = None) -> None:
        self._agents: dict[str, Agent] = {}
        self._pools: dict[str, AgentPool] = {}
        self._positions: dict[str, Position] = {}
        self._teams: dict[str, Team] = {}
        self._pool_cursor: dict[str, int] = {}
        self._rng = rng or random.Random()
        self.add_position(Position(id=PUBLISHER_POSITION_ID, name="Publisher", tier=PositionTier.EXECUTIVE))

    @classmethod
    def from_roster(cls, roster: dict[str, Any], *, rng: random.Random | None = None) -> MemoryDirectory:
        """Build a directory from a roster document.

        The document has ``agents``, ``pools``, ``positions`` and ``teams``
        lists in camelCase form.
        """
        directory = cls(rng=rng)
        directory.load(roster)
        return directory

    def load(self, roster: dict[str, Any]) -> None:
        for raw in roster.get("agents", []):
            self.add_agent(Agent.model_validate(raw))
        for raw in roster.get("pools", []):
            self.add_pool(AgentPool.model_validate(raw))
        for raw in roster.get("positions", []):
            self.add_position(Position.model_validate(raw))
        for raw in roster.get("teams", []):
            self.add_team(Team.model_validate(raw))
        logger.debug(
            "Directory loaded: {} agents, {} pools, {} positions, {} teams",
            len(self._agents),
            len(self._pools),
            len(self._positions),
            len(self._teams),
        )

    # -- Mutation --------------------------------------------------------------

    def add_agent(self, agent: Agent) -> Agent:
        self._agents[agent.id] = agent
        return agent

    def add_pool(self, pool: AgentPool) -> AgentPool:
        self._pools[pool.id] = pool
        return pool

    def add_position(self, position: Position) -> Position:
        self._positions[position.id] = position
        return position

    def add_team(self, team: Team) -> Team:
        self._teams[team.id] = team
        return team

    def remove_position(self, position_id: str) -> bool:
        if position_id == PUBLISHER_POSITION_ID:
            raise ValueError("The publisher position is mandatory")
        return self._positions.pop(position_id, None) is not None

    # -- Query -----------------------------------------------------------------

    def get_agent(self, agent_id: str) -> Agent | None:
        return self._agents.get(agent_id)

    def get_position(self, position_id: str) -> Position | None:
        return self._positions.get(position_id)

    def get_team(self, team_id: str) -> Team | None:
        return self._teams.get(team_id)

    def get_all_positions(self) -> list[Position]:
        return list(self._positions.values())

    def get_agent_for_position(self, position_id: str) -> Agent | None:
        position = self._positions.get(position_id)
        if position is None:
            return None
        if position.assigned_agent_id:
            return self._agents.get(position.assigned_agent_id)
        if position.assigned_pool_id:
            return self.select_from_pool(position.assigned_pool_id)
        return None

    def select_from_pool(self, pool_id: str) -> Agent | None:
        pool = self._pools.get(pool_id)
        if pool is None or not pool.agent_ids:
            return None

        match pool.selection_mode:
            case PoolSelection.RANDOM:
                selected = self._rng.choice(pool.agent_ids)
            case PoolSelection.ROUND_ROBIN:
                cursor = self._pool_cursor.get(pool_id, 0)
                selected = pool.agent_ids[cursor % len(pool.agent_ids)]
                self._pool_cursor[pool_id] = cursor + 1
            case PoolSelection.WEIGHTED:
                weights = [pool.weights.get(agent_id, 1.0) for agent_id in pool.agent_ids]
                selected = self._rng.choices(pool.agent_ids, weights=weights, k=1)[0]
            case _:
                selected = pool.agent_ids[0]
        return self._agents.get(selected)


# ---------------------------------------------------------------------------
# Character directory
# ---------------------------------------------------------------------------


class MemoryCharacterDirectory:
    """Character agents keyed by agent id (``char_<characterId>``)."""

    def __init__(self, director: Agent | None = None) -> None:
        self._agents: dict[str, Agent] = {}
        self._spawned: list[str] = []
        self._director = director or Agent(
            id=CHARACTER_DIRECTOR_ID,
            name="Character Director",
            system_prompt=DEFAULT_DIRECTOR_PROMPT,
        )

    def add_character(
        self,
        character_id: str,
        name: str,
        *,
        character_type: str = "supporting",
        traits: dict[str, Any] | None = None,
        spawned: bool = False,
        **fields: Any,
    ) -> Agent:
        agent = Agent(
            id=f"char_{character_id}",
            name=name,
            character_id=character_id,
            character_type=character_type,
            traits=traits or {},
            **fields,
        )
        self._agents[agent.id] = agent
        if spawned:
            self.spawn([character_id])
        return agent

    def spawn(self, character_ids: list[str]) -> list[Agent]:
        spawned = []
        for character_id in character_ids:
            agent = self.get_agent_by_character_id(character_id)
            if agent is None:
                logger.warning("Cannot spawn unknown character {}", character_id)
                continue
            agent.spawned = True
            if agent.id not in self._spawned:
                self._spawned.append(agent.id)
            spawned.append(agent)
        logger.info("Spawned {} character agents", len(spawned))
        return spawned

    def despawn_all(self) -> None:
        for agent_id in self._spawned:
            self._agents[agent_id].spawned = False
        self._spawned.clear()

    # -- CharacterDirectory protocol --------------------------------------------

    def get_agent_by_character_id(self, character_id: str) -> Agent | None:
        return self._agents.get(f"char_{character_id}")

    def get_spawned_agents(self) -> list[Agent]:
        return [self._agents[agent_id] for agent_id in self._spawned if agent_id in self._agents]

    def get_agents_by_type(self, character_type: str) -> list[Agent]:
        return [a for a in self._agents.values() if a.character_type == character_type]

    def get_character_director(self) -> Agent | None:
        return self._director

    def get_all_character_agents(self) -> list[Agent]:
        return list(self._agents.values())

    def generate_system_prompt(self, agent_id: str) -> str:
        """Build an in-character system prompt from the agent's traits."""
        if agent_id == self._director.id:
            return self._director.system_prompt
        agent = self._agents.get(agent_id)
        if agent is None:
            raise KeyError(f"Character agent {agent_id} not found")

        parts = [
            f"You are {agent.display_name}. You embody this character and speak as them, "
            "staying true to their personality and voice."
        ]
        traits: dict[str, Any] = getattr(agent, "traits", None) or {}
        for key, label in (
            ("personality", "Personality"),
            ("background", "Background"),
            ("speechPatterns", "Speech Patterns"),
            ("motivations", "Motivations"),
            ("fears", "Fears"),
            ("flaws", "Flaws"),
            ("mannerisms", "Mannerisms"),
        ):
            value = traits.get(key)
            if isinstance(value, list):
                value = ", ".join(str(v) for v in value)
            if value:
                parts.append(f"**{label}:** {value}")
        if traits.get("voicingGuidance"):
            parts.append(f"**Voicing Guidance:** {traits['voicingGuidance']}")
        if agent.system_prompt:
            parts.append(agent.system_prompt)
        parts.append(
            f"When responding, stay in character. Your dialogue, thoughts, and actions should "
            f"reflect {agent.display_name}'s personality, speech patterns, and current emotional state."
        )
        return "\n\n".join(parts)

    def resolve_position_agent(self, position_id: str) -> dict[str, Any] | None:
        if position_id in ("character_director", CHARACTER_DIRECTOR_ID):
            return {
                "position": {"id": "character_director", "name": self._director.display_name},
                "agent": self._director,
                "systemPrompt": self._director.system_prompt,
            }
        agent_id = position_id.removeprefix("pos_")
        agent = self._agents.get(agent_id)
        if agent is None:
            return None
        return {
            "position": {"id": f"pos_{agent.id}", "name": agent.display_name},
            "agent": agent,
            "systemPrompt": self.generate_system_prompt(agent.id),
        }


# ---------------------------------------------------------------------------
# Curation store
# ---------------------------------------------------------------------------


class MemoryCuration:
    """Dict-of-stores CRUD with a substring retrieval fallback.

    Entries are dicts; each store keeps them keyed by their ``id`` field (one
    is assigned when missing).
    """

    def __init__(self) -> None:
        self._stores: dict[str, dict[str, Any]] = {}
        self._rag_pipelines: dict[str, dict[str, Any]] = {}
        self._crud_pipelines: dict[str, dict[str, Any]] = {}
        self._ids = itertools.count(1)

    # -- Registration ----------------------------------------------------------

    def register_rag_pipeline(self, pipeline_id: str, target_stores: list[str], **extra: Any) -> None:
        self._rag_pipelines[pipeline_id] = {"id": pipeline_id, "targetStores": list(target_stores), **extra}

    def register_crud_pipeline(self, pipeline_id: str, **definition: Any) -> None:
        self._crud_pipelines[pipeline_id] = {"id": pipeline_id, **definition}

    def get_crud_pipeline(self, pipeline_id: str) -> dict[str, Any] | None:
        return self._crud_pipelines.get(pipeline_id)

    # -- CRUD ------------------------------------------------------------------

    async def create(self, store_id: str, data: Any) -> Any:
        entry = dict(data) if isinstance(data, dict) else {"content": data}
        entry.setdefault("id", f"{store_id}_{next(self._ids)}")
        self._stores.setdefault(store_id, {})[str(entry["id"])] = entry
        logger.debug("Curation: created {} in {}", entry["id"], store_id)
        return entry

    async def read(self, store_id: str, query: Any = None) -> Any:
        store = self._stores.get(store_id, {})
        if query is None or query == "":
            return list(store.values())
        if isinstance(query, dict) and "id" in query:
            return store.get(str(query["id"]))
        if isinstance(query, str) and query in store:
            return store[query]
        return [entry for entry in store.values() if _matches(entry, str(query))]

    async def update(self, store_id: str, key: Any, data: Any) -> Any:
        store = self._stores.setdefault(store_id, {})
        if key is None:
            return await self.create(store_id, data)
        entry = store.get(str(key), {"id": key})
        if isinstance(data, dict):
            entry.update(data)
        else:
            entry["content"] = data
        store[str(key)] = entry
        logger.debug("Curation: updated {} in {}", key, store_id)
        return entry

    async def delete(self, store_id: str, key: Any) -> Any:
        removed = self._stores.get(store_id, {}).pop(str(key), None)
        return removed is not None

    # -- Retrieval -------------------------------------------------------------

    async def execute_rag(self, pipeline_id: str | None, *, query: str, limit: int = 5) -> dict[str, Any]:
        if pipeline_id:
            pipeline = self._rag_pipelines.get(pipeline_id)
            if pipeline is None:
                raise KeyError(f'RAG pipeline "{pipeline_id}" not found')
            stores = pipeline["targetStores"]
        else:
            stores = list(self._stores)

        terms = [t for t in (query or "").lower().split() if len(t) >= 3]
        scored: list[tuple[int, str, dict[str, Any]]] = []
        for store_id in stores:
            for entry in self._stores.get(store_id, {}).values():
                text = json.dumps(entry, ensure_ascii=False).lower()
                score = sum(text.count(term) for term in terms)
                if score:
                    scored.append((score, store_id, entry))
        scored.sort(key=lambda item: item[0], reverse=True)
        results = [{"storeName": store_id, "entry": entry} for _, store_id, entry in scored[:limit]]
        return {"query": query, "results": results, "count": len(results)}


def _matches(entry: Any, needle: str) -> bool:
    return needle.lower() in json.dumps(entry, ensure_ascii=False).lower()


# ---------------------------------------------------------------------------
# Thread log
# ---------------------------------------------------------------------------


class MemoryThreadLog:
    """Ordered threads of ``{role, content}`` messages."""

    def __init__(self) -> None:
        self.threads: dict[str, dict[str, Any]] = {}
        self._ids = itertools.count(1)

    async def create_thread(self, name: str, type: str = "action") -> str:
        thread_id = f"thread_{next(self._ids)}"
        self.threads[thread_id] = {"id": thread_id, "name": name, "type": type, "messages": []}
        return thread_id

    async def add_message(self, thread_id: str, role: str, content: str) -> None:
        thread = self.threads.get(thread_id)
        if thread is None:
            thread = {"id": thread_id, "name": thread_id, "type": "custom", "messages": []}
            self.threads[thread_id] = thread
        thread["messages"].append({"role": role, "content": content})

    def messages(self, thread_id: str) -> list[dict[str, str]]:
        return list(self.threads.get(thread_id, {}).get("messages", []))
