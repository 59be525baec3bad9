"""Orchestration modes for standard actions.

Each mode drives the resolved participant list and returns every response in
call order.  Only the last response becomes the action output; the rest are
kept on ``ActionState.responses`` for audit and for later prompts.

- **sequential**: one call per participant; each prompt sees prior responses.
- **parallel**: all calls issued concurrently; results kept positionally and
  a failing participant becomes an ``[Error: ...]`` response.
- **round_robin**: ``maxRounds`` sequential passes.
- **consensus**: round-robin that stops once the last two responses of a
  round differ in length by less than 10% of the longer one.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from councilflow.runtime.context import ParticipantResponse
from councilflow.runtime.execution.errors import RunAbortedError
from councilflow.runtime.execution.participants import Participant
from councilflow.runtime.models.enums import ParticipantOrchestration

logger = logging.getLogger(__name__)

PromptBuilder = Callable[[Participant, list[ParticipantResponse], int], str]
"""(participant, prior responses, round number) -> prompt text."""

AgentCaller = Callable[[Participant, str], Awaitable[str]]

CONSENSUS_THRESHOLD = 0.10


def _response(participant: Participant, content: str, round_number: int, *, is_error: bool = False) -> ParticipantResponse:
    return ParticipantResponse(
        participant_id=participant.position_id,
        agent_id=participant.agent_id,
        agent_name=participant.name,
        position_name=participant.position_name,
        content=content,
        round=round_number,
        is_error=is_error,
    )


async def run_sequential(
    participants: list[Participant],
    build_prompt: PromptBuilder,
    call: AgentCaller,
    *,
    round_number: int = 1,
    history: list[ParticipantResponse] | None = None,
) -> list[ParticipantResponse]:
    responses = list(history or [])
    produced: list[ParticipantResponse] = []
    for participant in participants:
        prompt = build_prompt(participant, responses, round_number)
        content = await call(participant, prompt)
        response = _response(participant, content, round_number)
        responses.append(response)
        produced.append(response)
    return produced


async def run_parallel(
    participants: list[Participant],
    build_prompt: PromptBuilder,
    call: AgentCaller,
    *,
    round_number: int = 1,
) -> list[ParticipantResponse]:
    prompts = [build_prompt(participant, [], round_number) for participant in participants]
    results = await asyncio.gather(
        *(call(participant, prompt) for participant, prompt in zip(participants, prompts, strict=True)),
        return_exceptions=True,
    )

    responses = []
    for participant, result in zip(participants, results, strict=True):
        if isinstance(result, (RunAbortedError, asyncio.CancelledError)):
            raise result
        if isinstance(result, BaseException):
            logger.warning("Participant %s failed: %s", participant.name, result)
            responses.append(_response(participant, f"[Error: {result}]", round_number, is_error=True))
        else:
            responses.append(_response(participant, result, round_number))
    return responses


async def run_round_robin(
    participants: list[Participant],
    build_prompt: PromptBuilder,
    call: AgentCaller,
    *,
    max_rounds: int = 3,
) -> list[ParticipantResponse]:
    responses: list[ParticipantResponse] = []
    for round_number in range(1, max(max_rounds, 1) + 1):
        responses.extend(
            await run_sequential(participants, build_prompt, call, round_number=round_number, history=responses)
        )
    return responses


async def run_consensus(
    participants: list[Participant],
    build_prompt: PromptBuilder,
    call: AgentCaller,
    *,
    max_rounds: int = 3,
) -> list[ParticipantResponse]:
    responses: list[ParticipantResponse] = []
    for round_number in range(1, max(max_rounds, 1) + 1):
        produced = await run_sequential(participants, build_prompt, call, round_number=round_number, history=responses)
        responses.extend(produced)
        if has_consensus(produced):
            logger.debug("Consensus reached in round %d", round_number)
            break
    return responses


def has_consensus(round_responses: list[ParticipantResponse]) -> bool:
    """Length heuristic: the last two responses of a round are within 10%."""
    if len(round_responses) < 2:
        return False
    a, b = len(round_responses[-2].content), len(round_responses[-1].content)
    return abs(a - b) < max(a, b) * CONSENSUS_THRESHOLD


async def orchestrate(
    mode: ParticipantOrchestration,
    participants: list[Participant],
    build_prompt: PromptBuilder,
    call: AgentCaller,
    *,
    max_rounds: int = 3,
) -> list[ParticipantResponse]:
    """Dispatch to the orchestration mode."""
    match mode:
        case ParticipantOrchestration.PARALLEL:
            return await run_parallel(participants, build_prompt, call)
        case ParticipantOrchestration.ROUND_ROBIN:
            return await run_round_robin(participants, build_prompt, call, max_rounds=max_rounds)
        case ParticipantOrchestration.CONSENSUS:
            return await run_consensus(participants, build_prompt, call, max_rounds=max_rounds)
        case _:
            return await run_sequential(participants, build_prompt, call)
