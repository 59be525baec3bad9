"""Unit tests for the standard-action orchestration modes."""

from __future__ import annotations

import pytest

from councilflow.runtime.context import ParticipantResponse
from councilflow.runtime.execution.errors import RunAbortedError
from councilflow.runtime.execution.orchestration import (
    has_consensus,
    orchestrate,
    run_consensus,
    run_parallel,
    run_round_robin,
    run_sequential,
)
from councilflow.runtime.execution.participants import Participant
from councilflow.runtime.models.directory import Agent
from councilflow.runtime.models.enums import ParticipantOrchestration


def _make_participant(name: str) -> Participant:
    return Participant(position_id=f"pos_{name}", position_name=name.title(), agent=Agent(id=name, name=name.title()))


def _build_prompt(participant: Participant, prior: list[ParticipantResponse], round_number: int) -> str:
    seen = ",".join(r.agent_id for r in prior)
    return f"{participant.agent_id}|r{round_number}|seen={seen}"


def _recording_call(log: list[str], replies: dict[str, str] | None = None):
    async def _call(participant: Participant, prompt: str) -> str:
        log.append(prompt)
        return (replies or {}).get(participant.agent_id, f"{participant.agent_id} says hi")

    return _call


def _response(content: str) -> ParticipantResponse:
    return ParticipantResponse(participant_id="p", agent_id="a", agent_name="A", position_name="A", content=content)


# ---------------------------------------------------------------------------
# Modes
# ---------------------------------------------------------------------------


async def test_sequential_prompts_see_prior_responses() -> None:
    log: list[str] = []
    participants = [_make_participant("ann"), _make_participant("ben")]

    responses = await run_sequential(participants, _build_prompt, _recording_call(log))

    assert log == ["ann|r1|seen=", "ben|r1|seen=ann"]
    assert [r.content for r in responses] == ["ann says hi", "ben says hi"]
    assert responses[0].participant_id == "pos_ann"
    assert responses[0].agent_name == "Ann"


async def test_parallel_keeps_positional_results_and_isolates_errors() -> None:
    participants = [_make_participant("ann"), _make_participant("ben"), _make_participant("cat")]

    async def _call(participant: Participant, prompt: str) -> str:
        if participant.agent_id == "ben":
            raise RuntimeError("boom")
        return f"{participant.agent_id} ok"

    responses = await run_parallel(participants, _build_prompt, _call)

    assert [r.content for r in responses] == ["ann ok", "[Error: boom]", "cat ok"]
    assert [r.is_error for r in responses] == [False, True, False]


async def test_parallel_prompts_do_not_see_each_other() -> None:
    log: list[str] = []
    await run_parallel([_make_participant("ann"), _make_participant("ben")], _build_prompt, _recording_call(log))
    assert sorted(log) == ["ann|r1|seen=", "ben|r1|seen="]


async def test_parallel_propagates_abort() -> None:
    async def _call(participant: Participant, prompt: str) -> str:
        raise RunAbortedError("stop")

    with pytest.raises(RunAbortedError):
        await run_parallel([_make_participant("ann")], _build_prompt, _call)


async def test_round_robin_runs_every_round() -> None:
    log: list[str] = []
    participants = [_make_participant("ann"), _make_participant("ben")]

    responses = await run_round_robin(participants, _build_prompt, _recording_call(log), max_rounds=2)

    assert [r.round for r in responses] == [1, 1, 2, 2]
    assert log[-1] == "ben|r2|seen=ann,ben,ann"


async def test_consensus_stops_when_lengths_agree() -> None:
    log: list[str] = []
    participants = [_make_participant("ann"), _make_participant("ben")]
    replies = {"ann": "x" * 100, "ben": "y" * 95}

    responses = await run_consensus(participants, _build_prompt, _recording_call(log, replies), max_rounds=3)

    assert len(responses) == 2
    assert len(log) == 2


async def test_consensus_runs_all_rounds_without_agreement() -> None:
    log: list[str] = []
    replies = {"ann": "x" * 100, "ben": "y" * 10}
    participants = [_make_participant("ann"), _make_participant("ben")]

    responses = await run_consensus(participants, _build_prompt, _recording_call(log, replies), max_rounds=3)

    assert len(responses) == 6
    assert responses[-1].round == 3


def test_has_consensus() -> None:
    assert has_consensus([_response("a" * 100), _response("b" * 91)])
    assert not has_consensus([_response("a" * 100), _response("b" * 90)])
    assert not has_consensus([_response("only one")])
    assert not has_consensus([_response(""), _response("")])


@pytest.mark.parametrize(
    ("mode", "expected_calls"),
    [
        (ParticipantOrchestration.SEQUENTIAL, 2),
        (ParticipantOrchestration.PARALLEL, 2),
        (ParticipantOrchestration.ROUND_ROBIN, 4),
    ],
)
async def test_orchestrate_dispatch(mode: ParticipantOrchestration, expected_calls: int) -> None:
    log: list[str] = []
    participants = [_make_participant("ann"), _make_participant("ben")]
    responses = await orchestrate(mode, participants, _build_prompt, _recording_call(log), max_rounds=2)
    assert len(responses) == expected_calls
