"""Agent directory records: agents, pools, positions, and teams.

Positions are the seats an action addresses; agents are the LLM-backed
workers assigned to them, either directly or through a pool.  Character
agents are ordinary agents carrying a ``character_id``.
"""

from __future__ import annotations

from typing import Any

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from councilflow.runtime.models.enums import PoolSelection, PositionTier
from councilflow.runtime.models.pipeline import DocumentModel

PUBLISHER_POSITION_ID = "publisher"
CHARACTER_DIRECTOR_ID = "character_director_agent"


class Agent(DocumentModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str
    name: str = ""
    description: str = ""
    api_config: dict[str, Any] = Field(default_factory=dict)
    system_prompt: str = ""
    reasoning: dict[str, Any] = Field(default_factory=dict)

    # Character-system fields
    character_id: str | None = None
    character_type: str | None = None
    spawned: bool = False

    @property
    def display_name(self) -> str:
        return self.name or self.id


class AgentPool(DocumentModel):
    id: str
    name: str = ""
    agent_ids: list[str] = Field(default_factory=list)
    selection_mode: PoolSelection = PoolSelection.ROUND_ROBIN
    weights: dict[str, float] = Field(default_factory=dict)


class PromptModifiers(DocumentModel):
    prefix: str = ""
    suffix: str = ""
    role_description: str = ""


class Position(DocumentModel):
    id: str
    name: str = ""
    tier: PositionTier = PositionTier.MEMBER
    team_id: str = ""
    assigned_agent_id: str = ""
    assigned_pool_id: str = ""
    prompt_modifiers: PromptModifiers = Field(default_factory=PromptModifiers)
    is_sme: bool = Field(default=False, alias="isSME")
    sme_keywords: list[str] = Field(default_factory=list)


class Team(DocumentModel):
    id: str
    name: str = ""
    leader_id: str = ""
    member_ids: list[str] = Field(default_factory=list)

    @property
    def position_ids(self) -> list[str]:
        """Leader first, then members, without duplicates."""
        ordered = [self.leader_id] if self.leader_id else []
        ordered.extend(m for m in self.member_ids if m not in ordered)
        return ordered
