"""Participant resolution for standard actions.

Resolution precedence, de-duplicated by position id:

1. explicit ``positionIds``
2. every position of each ``teamIds`` team (leader first, then members)
3. keyword-scored subject-matter experts when ``participants.dynamic`` is on
4. character-system participants when ``participants.characters`` is on

SME scoring compares the search keywords extracted from the configured source
text against each SME position's keyword list: +3 for an exact match and +1
for a substring overlap in either direction, summed over all keyword pairs.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from councilflow.runtime.execution.errors import CollaboratorUnavailableError
from councilflow.runtime.execution.prompts import render_prompt
from councilflow.runtime.models.directory import CHARACTER_DIRECTOR_ID, Agent
from councilflow.runtime.models.enums import CharacterMode
from councilflow.runtime.templating.formatting import stringify, to_plain

if TYPE_CHECKING:
    from councilflow.runtime.execution.services import Services
    from councilflow.runtime.models.directory import Position
    from councilflow.runtime.models.pipeline import Action, CharacterParticipation, DynamicSMEConfig

logger = logging.getLogger(__name__)

STOP_WORDS: frozenset[str] = frozenset({
    "the", "and", "for", "are", "but", "not", "you", "all", "can", "had",
    "her", "was", "one", "our", "out", "has", "have", "been", "were", "they",
    "this", "that", "with", "from", "will", "would", "there", "their", "what", "about",
    "which", "when", "make", "like", "time", "just", "know", "take", "into", "year",
    "your", "good", "some", "could", "them", "than", "then", "look", "only", "come",
    "over", "such", "also", "back", "after", "most",
})  # fmt: skip

_WORD = re.compile(r"\w+")
_JSON_ARRAY = re.compile(r"\[[^\[\]]*\]", re.DOTALL)


@dataclass
class Participant:
    """A (position, agent) pair ready to be called."""

    position_id: str
    position_name: str
    agent: Agent
    team_id: str = ""
    is_character: bool = False
    character_id: str | None = None
    prompt_prefix: str = ""
    prompt_suffix: str = ""
    role_description: str = ""
    system_prompt: str | None = None
    """Overrides the agent's own system prompt when set (character agents)."""

    @property
    def name(self) -> str:
        return self.agent.display_name

    @property
    def agent_id(self) -> str:
        return self.agent.id

    def agent_scope(self) -> dict[str, Any]:
        scope = to_plain(self.agent)
        scope["name"] = self.name
        return scope

    def position_scope(self) -> dict[str, Any]:
        return {
            "id": self.position_id,
            "name": self.position_name,
            "teamId": self.team_id,
            "roleDescription": self.role_description,
            "isCharacter": self.is_character,
        }


# ---------------------------------------------------------------------------
# Keyword scoring
# ---------------------------------------------------------------------------


def extract_keywords(text: str | None) -> list[str]:
    """Lowercase word tokens of length >= 3, stop words removed, first occurrence order."""
    seen: dict[str, None] = {}
    for word in _WORD.findall((text or "").lower()):
        if len(word) >= 3 and word not in STOP_WORDS:
            seen.setdefault(word, None)
    return list(seen)


def score_sme(keywords: list[str], sme_keywords: list[str]) -> int:
    score = 0
    for sme_keyword in sme_keywords:
        candidate = sme_keyword.lower().strip()
        if not candidate:
            continue
        for keyword in keywords:
            if keyword == candidate:
                score += 3
            elif keyword in candidate or candidate in keyword:
                score += 1
    return score


def rank_smes(keywords: list[str], positions: list[Position], limit: int) -> list[tuple[Position, int]]:
    """Score SME positions and return the top *limit* in descending score order.

    Ties keep directory order; zero scores are dropped.
    """
    scored = [
        (index, position, score_sme(keywords, position.sme_keywords))
        for index, position in enumerate(positions)
        if position.is_sme
    ]
    ranked = sorted((item for item in scored if item[2] > 0), key=lambda item: (-item[2], item[0]))
    return [(position, score) for _, position, score in ranked[: max(limit, 0)]]


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class ParticipantResolver:
    def __init__(self, services: Services) -> None:
        self.services = services

    async def resolve(
        self,
        action: Action,
        scope: dict[str, Any],
        *,
        source_text: str | None = None,
    ) -> list[Participant]:
        """Resolve an action's participants in precedence order.

        Parameters
        ----------
        action:
            The action whose ``participants`` config is resolved.
        scope:
            Resolver scope used for ``dynamic.sourceTemplate`` and
            character RAG queries.
        source_text:
            Overrides the SME source template when given.

        Raises
        ------
        CollaboratorUnavailableError
            Positions or teams are configured but no agent directory is.
        """
        config = action.participants
        resolved: dict[str, Participant] = {}

        def _add(participant: Participant | None) -> None:
            if participant is not None and participant.position_id not in resolved:
                resolved[participant.position_id] = participant

        if (config.position_ids or config.team_ids or config.dynamic.enabled) and self.services.directory is None:
            raise CollaboratorUnavailableError("AgentDirectory", f'participants of action "{action.id}"')

        for position_id in config.position_ids:
            _add(self.from_position(position_id))

        for team_id in config.team_ids:
            team = self.services.directory.get_team(team_id)
            if team is None:
                logger.warning("Team %s not found for action %s", team_id, action.id)
                continue
            for position_id in team.position_ids:
                _add(self.from_position(position_id, team_id=team_id))

        if config.dynamic.enabled:
            for participant in self._dynamic_smes(config.dynamic, scope, source_text):
                _add(participant)

        if config.characters.enabled:
            participants = list(resolved.values())
            for participant in await self._characters(action, config.characters, scope, participants):
                _add(participant)

        return list(resolved.values())

    # -- Directory positions ---------------------------------------------------

    def from_position(self, position_id: str, *, team_id: str = "") -> Participant | None:
        directory = self.services.directory
        position = directory.get_position(position_id)
        if position is None:
            logger.warning("Position %s not found", position_id)
            return None
        agent = directory.get_agent_for_position(position_id)
        if agent is None:
            logger.warning("Position %s has no agent assigned", position_id)
            return None
        modifiers = position.prompt_modifiers
        return Participant(
            position_id=position.id,
            position_name=position.name or position.id,
            agent=agent,
            team_id=team_id or position.team_id,
            prompt_prefix=modifiers.prefix,
            prompt_suffix=modifiers.suffix,
            role_description=modifiers.role_description,
        )

    def _dynamic_smes(self, config: DynamicSMEConfig, scope: dict[str, Any], source_text: str | None) -> list[Participant]:
        text = source_text if source_text is not None else self.services.resolver.resolve(config.source_template, scope)
        keywords = extract_keywords(text)
        ranked = rank_smes(keywords, self.services.directory.get_all_positions(), config.max_smes)
        logger.debug("SME ranking for %s: %s", keywords, [(p.id, s) for p, s in ranked])

        participants = [p for p in (self.from_position(position.id) for position, _ in ranked) if p is not None]
        if not participants and config.fallback_position_id:
            fallback = self.from_position(config.fallback_position_id)
            if fallback is not None:
                participants.append(fallback)
        return participants

    # -- Character participants ------------------------------------------------

    async def _characters(
        self,
        action: Action,
        config: CharacterParticipation,
        scope: dict[str, Any],
        resolved: list[Participant],
    ) -> list[Participant]:
        characters = self.services.characters
        if characters is None:
            raise CollaboratorUnavailableError("CharacterDirectory", f'character participants of action "{action.id}"')

        match config.mode:
            case CharacterMode.EXPLICIT:
                agents = [a for a in (characters.get_agent_by_character_id(cid) for cid in config.character_ids) if a]
            case CharacterMode.SPAWNED:
                agents = characters.get_spawned_agents()
            case CharacterMode.TYPE:
                agents = [a for t in config.character_types for a in characters.get_agents_by_type(t)]
            case CharacterMode.DYNAMIC:
                agents = await self._select_characters(config, scope, resolved)
            case _:
                agents = []

        rag_reference = await self._character_rag(config, scope)
        participants = [self._from_character(agent, config.voicing_guidance, rag_reference) for agent in agents]

        if config.include_director:
            director = characters.get_character_director()
            if director is not None:
                participants.append(
                    Participant(
                        position_id="character_director",
                        position_name="Character Director",
                        agent=director,
                        role_description="Coordinates the character agents and keeps voices consistent.",
                    )
                )
        return participants

    def _from_character(self, agent: Agent, voicing_guidance: str, rag_reference: str) -> Participant:
        system_prompt = self.services.characters.generate_system_prompt(agent.id)
        if voicing_guidance:
            system_prompt = f"{system_prompt}\n\n**Voicing Guidance:** {voicing_guidance}"
        if rag_reference:
            system_prompt = f"{system_prompt}\n\n**Reference:**\n{rag_reference}"
        return Participant(
            position_id=f"pos_{agent.id}",
            position_name=agent.display_name,
            agent=agent,
            is_character=True,
            character_id=agent.character_id,
            role_description=f"Character avatar for {agent.display_name}",
            system_prompt=system_prompt,
        )

    async def _character_rag(self, config: CharacterParticipation, scope: dict[str, Any]) -> str:
        rag = config.rag_context
        if not rag.enabled or self.services.curation is None:
            return ""
        query = self.services.resolver.resolve(rag.query_template, scope)
        try:
            result = await self.services.curation.execute_rag(rag.pipeline_id or None, query=query, limit=5)
        except Exception as exc:
            logger.warning("Character RAG prefetch failed: %s", exc)
            return ""
        entries = (result or {}).get("results") or []
        return "\n".join(json.dumps(r.get("entry"), ensure_ascii=False, default=str) for r in entries)

    async def _select_characters(
        self,
        config: CharacterParticipation,
        scope: dict[str, Any],
        resolved: list[Participant],
    ) -> list[Agent]:
        """Ask the director (or the first resolved participant) which characters to use."""
        characters = self.services.characters
        candidates = characters.get_all_character_agents()
        if not candidates:
            return []
        limit = config.max_characters or 3

        selector = characters.get_character_director()
        system_prompt = None
        if selector is None and resolved:
            selector, system_prompt = resolved[0].agent, resolved[0].system_prompt
        if selector is None or self.services.llm is None:
            logger.info("No selector for dynamic characters, using spawned agents")
            return characters.get_spawned_agents()[:limit]

        prompt = render_prompt(
            "character_selection",
            characters=candidates,
            input=stringify(scope.get("input")),
            max_characters=limit,
        )
        reply = await self.services.call_agent(selector, prompt, system_prompt=system_prompt)
        selected = parse_character_selection(reply, candidates)[:limit]
        if not selected:
            logger.info("Dynamic character selection returned nothing usable, using spawned agents")
            return characters.get_spawned_agents()[:limit]
        return selected


def parse_character_selection(reply: str, candidates: list[Agent]) -> list[Agent]:
    """Map an LLM reply to candidate agents.

    A JSON array of ids (agent ids or character ids) wins; otherwise any
    candidate whose id or name is mentioned is selected, in candidate order.
    """
    by_key: dict[str, Agent] = {}
    for agent in candidates:
        by_key[agent.id.lower()] = agent
        if agent.character_id:
            by_key[agent.character_id.lower()] = agent

    match = _JSON_ARRAY.search(reply or "")
    if match:
        try:
            ids = json.loads(match.group(0))
        except json.JSONDecodeError:
            ids = []
        picked: list[Agent] = []
        for value in ids if isinstance(ids, list) else []:
            agent = by_key.get(str(value).lower())
            if agent is not None and agent not in picked:
                picked.append(agent)
        if picked:
            return picked

    text = (reply or "").lower()
    return [
        agent
        for agent in candidates
        if agent.id != CHARACTER_DIRECTOR_ID
        and (agent.id.lower() in text or (agent.name and agent.name.lower() in text))
    ]
