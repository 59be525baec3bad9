"""Deliberative retrieval: a bounded question/answer loop.

Each round, every query participant asks one question given the Q&A history
so far.  Curation participants answer it from retrieval results.  A query
participant ends the loop early by saying it has "sufficient" information or
needs "no further" questions.  The log is then either summarized by the
first query participant or returned raw.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from councilflow.runtime.context import ParticipantResponse
from councilflow.runtime.execution.errors import ActionConfigError, CollaboratorUnavailableError
from councilflow.runtime.execution.prompts import render_prompt
from councilflow.runtime.models.enums import DeliberationConsolidation, EventType
from councilflow.runtime.templating.formatting import stringify

if TYPE_CHECKING:
    from councilflow.runtime.execution.context import ActionContext
    from councilflow.runtime.execution.participants import Participant, ParticipantResolver
    from councilflow.runtime.execution.services import Services
    from councilflow.runtime.models.pipeline import DeliberativeConfig

logger = logging.getLogger(__name__)

STOP_PHRASES = ("sufficient", "no further")
NO_RESULTS = "No relevant information found."


def is_sufficient(reply: str) -> bool:
    text = (reply or "").lower()
    return any(phrase in text for phrase in STOP_PHRASES)


def format_rag_results(result: dict[str, Any] | None) -> str:
    """Render ``execute_rag`` results as ``[storeName] json`` entries."""
    entries = (result or {}).get("results") or []
    if not entries:
        return NO_RESULTS
    return "\n".join(
        f"[{entry.get('storeName', 'unknown')}] {json.dumps(entry.get('entry'), ensure_ascii=False, default=str)}"
        for entry in entries
    )


def format_log(history: list[dict[str, Any]]) -> str:
    return "\n\n".join(f"Q: {item['question']}\nA: {item['answer']}" for item in history)


class Deliberation:
    def __init__(self, services: Services, participants: ParticipantResolver) -> None:
        self.services = services
        self.participants = participants

    async def run(self, ctx: ActionContext) -> str:
        """Run the Q&A loop for a ``deliberative_rag`` action and return its output.

        Raises
        ------
        ActionConfigError
            No query participant could be resolved.
        """
        config = ctx.action.deliberative_config
        askers = self._resolve(config.query_participants or ctx.action.participants.position_ids)
        if not askers:
            raise ActionConfigError("Deliberative RAG action requires at least one query participant")
        curators = self._resolve(config.curation_positions)

        task = stringify(ctx.action_state.input)
        thread_id = await self.services.open_thread(
            config.deliberation_thread.name or ctx.action.name,
            "deliberation",
            enabled=config.deliberation_thread.enabled,
        )
        history: list[dict[str, Any]] = []

        for round_number in range(1, max(config.max_rounds, 1) + 1):
            questions = []
            done = False
            for asker in askers:
                prompt = render_prompt(
                    "deliberation_question",
                    input=task,
                    history=history,
                    stores=config.available_stores,
                    round=round_number,
                )
                question = await self.services.call_agent(asker.agent, prompt, system_prompt=asker.system_prompt)
                self._record(ctx, asker, question, round_number)
                await self.services.log_message(thread_id, asker.name, question)
                if is_sufficient(question):
                    logger.debug("%s has sufficient information after round %d", asker.name, round_number)
                    done = True
                    break

                answer = await self._answer(ctx, config, curators, question, round_number, thread_id)
                history.append({"round": round_number, "asker": asker.name, "question": question, "answer": answer})
                questions.append(question)

            await self.services.emit(
                EventType.DELIBERATION_ROUND,
                ctx.run,
                actionId=ctx.action.id,
                round=round_number,
                questions=questions,
                finished=done,
            )
            if done:
                break

        if not history:
            return task
        if config.consolidation == DeliberationConsolidation.RAW:
            return format_log(history)

        lead = askers[0]
        summary = await self.services.call_agent(
            lead.agent,
            render_prompt("deliberation_summary", input=task, history=history),
            system_prompt=lead.system_prompt,
        )
        await self.services.log_message(thread_id, lead.name, summary)
        return summary

    def _resolve(self, position_ids: list[str]) -> list[Participant]:
        if not position_ids:
            return []
        if self.services.directory is None:
            raise CollaboratorUnavailableError("AgentDirectory", "deliberative RAG action")
        return [p for p in (self.participants.from_position(pid) for pid in position_ids) if p is not None]

    async def _answer(
        self,
        ctx: ActionContext,
        config: DeliberativeConfig,
        curators: list[Participant],
        question: str,
        round_number: int,
        thread_id: str | None,
    ) -> str:
        retrieved = await self._retrieve(config, question)
        if not curators:
            return retrieved

        answers = []
        for curator in curators:
            prompt = render_prompt(
                "deliberation_answer",
                curation_prompt=config.curation_prompt,
                question=question,
                retrieved=retrieved,
            )
            answer = await self.services.call_agent(curator.agent, prompt, system_prompt=curator.system_prompt)
            self._record(ctx, curator, answer, round_number)
            await self.services.log_message(thread_id, curator.name, answer)
            answers.append(answer if len(curators) == 1 else f"[{curator.name}]: {answer}")
        return "\n\n".join(answers)

    async def _retrieve(self, config: DeliberativeConfig, question: str) -> str:
        curation = self.services.curation
        if curation is None or not config.available_rag_pipelines:
            return NO_RESULTS
        results: list[dict[str, Any]] = []
        for pipeline_id in config.available_rag_pipelines:
            try:
                result = await curation.execute_rag(pipeline_id, query=question, limit=5)
            except Exception as exc:
                logger.warning("Retrieval pipeline %s failed: %s", pipeline_id, exc)
                continue
            results.extend((result or {}).get("results") or [])
        return format_rag_results({"results": results})

    @staticmethod
    def _record(ctx: ActionContext, participant: Participant, content: str, round_number: int) -> None:
        ctx.action_state.responses.append(
            ParticipantResponse(
                participant_id=participant.position_id,
                agent_id=participant.agent_id,
                agent_name=participant.name,
                position_name=participant.position_name,
                content=content,
                round=round_number,
            )
        )
