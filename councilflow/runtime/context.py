"""Run-scoped execution state.

A ``RunState`` is created by ``PipelineEngine.start_run`` and exclusively
owns its ``PhaseState`` and ``ActionState`` records.  All of them are
discarded (moved to the history ring buffer) when the run terminates.
Pipeline documents are never mutated by a run; globals are copied on start.
"""

from __future__ import annotations

import asyncio
import secrets
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from councilflow.runtime.models.enums import (
    ActionLifecycle,
    ActionType,
    OrchestrationStrategy,
    PhaseLifecycle,
    RunStatus,
)


def new_run_id() -> str:
    return f"run_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def new_gavel_id(prefix: str = "gavel") -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


@dataclass
class ParticipantResponse:
    """One participant's contribution to a standard action."""

    participant_id: str
    agent_id: str
    agent_name: str
    position_name: str
    content: str
    timestamp: datetime = field(default_factory=datetime.now)
    round: int = 1
    is_error: bool = False


@dataclass
class ActionState:
    id: str
    name: str
    action_type: ActionType
    index: int = 0
    lifecycle: ActionLifecycle = ActionLifecycle.CALLED
    input: Any = None
    output: Any = None
    responses: list[ParticipantResponse] = field(default_factory=list)
    rag: Any = None
    """Result of the optional retrieval pre-fetch (the ``rag`` token scope)."""

    attempts: int = 0
    error: str | None = None
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: datetime | None = None


@dataclass
class PhaseState:
    id: str
    name: str
    index: int = 0
    lifecycle: PhaseLifecycle = PhaseLifecycle.START
    input: Any = None
    output: Any = None
    actions: dict[str, ActionState] = field(default_factory=dict)
    variables: dict[str, Any] = field(default_factory=dict)
    team_outputs: dict[str, Any] = field(default_factory=dict)
    pending_inputs: dict[str, Any] = field(default_factory=dict)
    """Values routed with the ``nextAction`` target, keyed by receiving action id."""

    stores: dict[str, Any] = field(default_factory=dict)
    """Snapshot of the stores named in the phase context selection."""

    thread_id: str | None = None
    error: str | None = None
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: datetime | None = None


@dataclass
class GavelRequest:
    """A pending human-review decision (phase gate or ``user_gavel`` action)."""

    id: str
    phase_id: str
    prompt: str
    current_output: Any
    action_id: str | None = None
    editable_fields: list[str] = field(default_factory=lambda: ["output"])
    can_skip: bool = True
    timeout: int = 0
    options: dict[str, Any] = field(default_factory=dict)
    future: asyncio.Future | None = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "phaseId": self.phase_id,
            "actionId": self.action_id,
            "prompt": self.prompt,
            "currentOutput": self.current_output,
            "editableFields": list(self.editable_fields),
            "canSkip": self.can_skip,
            "timeout": self.timeout,
            "options": self.options,
        }


@dataclass
class RunProgress:
    total_phases: int = 0
    completed_phases: int = 0
    total_actions: int = 0
    completed_actions: int = 0

    @property
    def percentage(self) -> int:
        if self.total_actions:
            return round(self.completed_actions / self.total_actions * 100)
        if self.total_phases:
            return round(self.completed_phases / self.total_phases * 100)
        return 0


@dataclass
class RunState:
    """In-flight state for a single pipeline run."""

    # -- Identity --------------------------------------------------------------
    pipeline_id: str
    pipeline_name: str
    id: str = field(default_factory=new_run_id)

    # -- Status ----------------------------------------------------------------
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: datetime | None = None
    error: str | None = None

    # -- Inputs ----------------------------------------------------------------
    user_input: Any = None
    host_context: dict[str, Any] = field(default_factory=dict)
    """Pass-through host application context (the ``st`` token scope)."""

    globals: dict[str, Any] = field(default_factory=dict)

    # -- Progress --------------------------------------------------------------
    phases: dict[str, PhaseState] = field(default_factory=dict)
    current_phase_id: str | None = None
    current_phase_index: int = -1
    current_action_id: str | None = None
    current_action_index: int = -1
    progress: RunProgress = field(default_factory=RunProgress)

    # -- Outputs ---------------------------------------------------------------
    final_output: Any = None
    strategy: OrchestrationStrategy = OrchestrationStrategy.SYNTHESIS
    compiled_prompt: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-compatible snapshot for history storage."""
        data = asdict(self)
        return _jsonable(data)


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, asyncio.Future):
        return None
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)
