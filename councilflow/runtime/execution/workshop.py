"""Character workshop choreographies.

Three fixed conversation protocols between a director agent and a set of
character agents:

- **refinement**: director briefing, one draft per character, a critique
  from the director and any editorial positions, then one revision each.
- **consistency**: each character reviews the material for out-of-character
  content; the director compiles the reviews into a report.
- **collaboration**: the director sets a scene and the characters take one
  turn each, seeing the transcript so far.

With ``consolidation = synthesize`` and a director present, the director
turns the transcript into the final material.  Otherwise the transcript is
returned as ``[Name]: text`` blocks.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from councilflow.runtime.context import ParticipantResponse
from councilflow.runtime.execution.errors import CollaboratorUnavailableError
from councilflow.runtime.execution.prompts import render_prompt
from councilflow.runtime.models.directory import CHARACTER_DIRECTOR_ID
from councilflow.runtime.models.enums import DeliberationConsolidation, EventType, WorkshopMode
from councilflow.runtime.templating.formatting import stringify

if TYPE_CHECKING:
    from councilflow.runtime.execution.context import ActionContext
    from councilflow.runtime.execution.participants import Participant, ParticipantResolver
    from councilflow.runtime.execution.services import Services
    from councilflow.runtime.models.directory import Agent
    from councilflow.runtime.models.pipeline import CharacterWorkshopConfig

logger = logging.getLogger(__name__)


def format_transcript(transcript: list[dict[str, str]]) -> str:
    return "\n\n".join(f"[{line['name']}]: {line['content']}" for line in transcript)


class Workshop:
    def __init__(self, services: Services, participants: ParticipantResolver) -> None:
        self.services = services
        self.participants = participants

    async def run(self, ctx: ActionContext) -> Any:
        """Run a ``character_workshop`` action and return its output.

        Raises
        ------
        CollaboratorUnavailableError
            No character directory is configured.
        """
        characters = self.services.characters
        if characters is None:
            raise CollaboratorUnavailableError("CharacterDirectory", "character workshop")

        config = ctx.action.character_workshop_config
        cast = self._cast(config)
        if not cast:
            logger.warning("Character workshop %s has no characters, passing input through", ctx.action.id)
            return ctx.action_state.input

        director = characters.get_character_director() if config.include_director else None
        editors = self._editors(config)
        material = stringify(ctx.action_state.input)
        references = await self._references(config, cast)
        thread_id = await self.services.open_thread(
            config.workshop_thread.name or ctx.action.name,
            "workshop",
            enabled=config.workshop_thread.enabled,
        )
        session = _Session(self.services, ctx, thread_id)

        match config.mode:
            case WorkshopMode.CONSISTENCY:
                await self._consistency(session, config, cast, director, material, references)
            case WorkshopMode.COLLABORATION:
                await self._collaboration(session, config, cast, director, material)
            case _:
                await self._refinement(session, config, cast, director, editors, material, references)

        if config.consolidation == DeliberationConsolidation.SYNTHESIZE and director is not None:
            output = await session.say(
                director,
                render_prompt(
                    "workshop_synthesis",
                    input=material,
                    mode=config.mode.value,
                    transcript=session.transcript,
                ),
            )
        else:
            output = format_transcript(session.transcript)

        await self.services.emit(
            EventType.WORKSHOP_COMPLETE,
            ctx.run,
            actionId=ctx.action.id,
            mode=config.mode.value,
            characterCount=len(cast),
        )
        return output

    # -- Protocols -------------------------------------------------------------

    async def _refinement(
        self,
        session: _Session,
        config: CharacterWorkshopConfig,
        cast: list[Agent],
        director: Agent | None,
        editors: list[Participant],
        material: str,
        references: dict[str, str],
    ) -> None:
        notes = ""
        if director is not None:
            notes = await session.say(
                director,
                render_prompt(
                    "workshop_briefing",
                    input=material,
                    characters=cast,
                    instructions=config.prompts.director,
                    references="\n".join(v for v in references.values() if v),
                ),
            )

        drafts = []
        for agent in cast:
            content = await session.say(
                agent,
                render_prompt(
                    "workshop_draft",
                    name=agent.display_name,
                    input=material,
                    notes=notes,
                    reference=references.get(agent.id, ""),
                ),
                character=True,
            )
            drafts.append({"name": agent.display_name, "content": content})

        critique = render_prompt("workshop_critique", drafts=drafts, instructions=config.prompts.refinement)
        feedback = []
        if director is not None:
            feedback.append(await session.say(director, critique))
        for editor in editors:
            feedback.append(await session.say(editor.agent, critique, system_prompt=editor.system_prompt))
        if not feedback:
            return

        combined = "\n\n".join(feedback)
        for agent, draft in zip(cast, drafts, strict=True):
            await session.say(
                agent,
                render_prompt("workshop_revision", name=agent.display_name, draft=draft["content"], feedback=combined),
                character=True,
            )

    async def _consistency(
        self,
        session: _Session,
        config: CharacterWorkshopConfig,
        cast: list[Agent],
        director: Agent | None,
        material: str,
        references: dict[str, str],
    ) -> None:
        reviews = []
        for agent in cast:
            content = await session.say(
                agent,
                render_prompt(
                    "workshop_consistency_review",
                    name=agent.display_name,
                    input=material,
                    reference=references.get(agent.id, ""),
                    instructions=config.prompts.consistency,
                ),
                character=True,
            )
            reviews.append({"name": agent.display_name, "content": content})

        if director is not None:
            await session.say(director, render_prompt("workshop_consistency_report", input=material, reviews=reviews))

    async def _collaboration(
        self,
        session: _Session,
        config: CharacterWorkshopConfig,
        cast: list[Agent],
        director: Agent | None,
        material: str,
    ) -> None:
        scene = material
        if director is not None:
            scene = await session.say(
                director,
                render_prompt("workshop_scene", input=material, characters=cast, instructions=config.prompts.director),
            )

        for agent in cast:
            await session.say(
                agent,
                render_prompt(
                    "workshop_turn",
                    name=agent.display_name,
                    scene=scene,
                    transcript=list(session.transcript),
                ),
                character=True,
            )

    # -- Cast ------------------------------------------------------------------

    def _cast(self, config: CharacterWorkshopConfig) -> list[Agent]:
        characters = self.services.characters
        if config.character_ids:
            cast = []
            for character_id in config.character_ids:
                agent = characters.get_agent_by_character_id(character_id)
                if agent is None:
                    logger.warning("Character %s not found for workshop", character_id)
                    continue
                cast.append(agent)
            return cast
        return [a for a in characters.get_spawned_agents() if a.id != CHARACTER_DIRECTOR_ID]

    def _editors(self, config: CharacterWorkshopConfig) -> list[Participant]:
        if not config.editorial_positions or self.services.directory is None:
            return []
        return [p for p in (self.participants.from_position(pid) for pid in config.editorial_positions) if p]

    async def _references(self, config: CharacterWorkshopConfig, cast: list[Agent]) -> dict[str, str]:
        rag = config.rag_config
        curation = self.services.curation
        if not rag.enabled or curation is None:
            return {}
        references = {}
        for agent in cast:
            try:
                result = await curation.execute_rag(rag.pipeline_id or None, query=agent.display_name, limit=3)
            except Exception as exc:
                logger.warning("Workshop reference lookup for %s failed: %s", agent.display_name, exc)
                continue
            entries = [
                r for r in (result or {}).get("results") or [] if not rag.store_ids or r.get("storeName") in rag.store_ids
            ]
            references[agent.id] = "\n".join(
                json.dumps(r.get("entry"), ensure_ascii=False, default=str) for r in entries
            )
        return references


class _Session:
    """Transcript bookkeeping for one workshop run."""

    def __init__(self, services: Services, ctx: ActionContext, thread_id: str | None) -> None:
        self.services = services
        self.ctx = ctx
        self.thread_id = thread_id
        self.transcript: list[dict[str, str]] = []

    async def say(self, agent: Agent, prompt: str, *, character: bool = False, system_prompt: str | None = None) -> str:
        if character and system_prompt is None:
            system_prompt = self.services.characters.generate_system_prompt(agent.id)
        content = await self.services.call_agent(agent, prompt, system_prompt=system_prompt)
        name = agent.display_name
        self.transcript.append({"name": name, "content": content})
        self.ctx.action_state.responses.append(
            ParticipantResponse(
                participant_id=f"pos_{agent.id}" if character else agent.id,
                agent_id=agent.id,
                agent_name=name,
                position_name=name,
                content=content,
            )
        )
        await self.services.log_message(self.thread_id, name, content)
        return content
