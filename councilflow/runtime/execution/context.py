"""Context assembly -- the layered scope consumed by the template resolver.

``ContextAssembler.build`` produces a plain dict whose top-level keys are the
token scopes (``pipeline``, ``phase``, ``action``, ``global``/``globals``,
``team``, ``store``, ``agent``, ``position``, ``st``, ``previousPhase``,
``previousAction``, ``rag``, ``constants``) plus the ``input``, ``output``
and ``context`` shorthands.

The ``context`` shorthand is the combined context text: the keys selected by
the phase's ``context`` config, adjusted by the action's
``contextOverrides``, rendered as ``## <Key>`` sections.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from councilflow.runtime.templating.conditions import MISSING
from councilflow.runtime.templating.formatting import humanize_key, stringify, to_plain
from councilflow.runtime.templating.resolver import walk

if TYPE_CHECKING:
    from councilflow.runtime.collaborators.base import AgentDirectory
    from councilflow.runtime.context import ActionState, PhaseState, RunState
    from councilflow.runtime.execution.participants import Participant
    from councilflow.runtime.models.pipeline import Action, Phase, Pipeline

# staticContext flag -> host context keys it exposes
_STATIC_FLAGS = {
    "include_character_card": ("characterCard", "character", "description", "personality"),
    "include_world_info": ("worldInfo",),
    "include_persona": ("persona",),
    "include_scenario": ("scenario",),
}

_LAYER_PREFIXES = ("static", "global", "globals", "phase", "team", "store")


@dataclass
class ActionContext:
    """The run/phase/action triple an action handler operates on."""

    run: RunState
    pipeline: Pipeline
    phase: Phase
    phase_state: PhaseState
    action: Action
    action_state: ActionState


class ContextAssembler:
    """Build resolver scopes from run state."""

    def __init__(self, directory: AgentDirectory | None = None) -> None:
        self.directory = directory

    def for_action(self, ctx: ActionContext, *, participant: Participant | None = None, **extra: Any) -> dict[str, Any]:
        return self.build(
            ctx.run,
            ctx.pipeline,
            ctx.phase,
            ctx.phase_state,
            ctx.action,
            ctx.action_state,
            participant=participant,
            extra=extra,
        )

    def build(
        self,
        run: RunState,
        pipeline: Pipeline,
        phase: Phase,
        phase_state: PhaseState,
        action: Action | None = None,
        action_state: ActionState | None = None,
        *,
        participant: Participant | None = None,
        extra: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Assemble the full scope for one resolution.

        Parameters
        ----------
        run, pipeline, phase, phase_state:
            Current run position.
        action, action_state:
            The executing action, if any (phase-level resolutions omit it).
        participant:
            Adds the ``agent`` and ``position`` scopes.
        extra:
            Additional root keys (e.g. ``previousResponse``); they override
            assembled keys of the same name.
        """
        static = self.static_section(pipeline, run.host_context)
        action_input = action_state.input if action_state is not None else phase_state.input
        action_output = action_state.output if action_state is not None else None

        scope: dict[str, Any] = {
            "pipeline": {
                "id": pipeline.id,
                "name": pipeline.name,
                "description": pipeline.description,
                "userInput": run.user_input,
                "startedAt": run.started_at.isoformat(),
                "runId": run.id,
            },
            "phase": {
                "id": phase.id,
                "name": phase.name,
                "description": phase.description,
                "input": phase_state.input,
                "output": phase_state.output,
                "variables": phase_state.variables,
                "teamOutputs": phase_state.team_outputs,
                "index": phase_state.index,
            },
            "global": run.globals,
            "globals": run.globals,
            "team": self._team_scope(phase, phase_state, participant),
            "store": phase_state.stores,
            "st": run.host_context,
            "static": static,
            "previousPhase": _previous_phase(run, phase_state),
            "previousAction": _previous_action(phase_state, action_state),
            "rag": action_state.rag if action_state is not None else None,
            "constants": {**pipeline.constants, **phase.constants},
            "userInput": run.user_input,
            "input": action_input,
            "output": action_output,
        }
        if action is not None:
            scope["action"] = {
                "id": action.id,
                "name": action.name,
                "type": action.action_type.value,
                "input": action_input,
                "output": action_output,
                "attempts": action_state.attempts if action_state else 0,
            }
        if participant is not None:
            scope["agent"] = participant.agent_scope()
            scope["position"] = participant.position_scope()

        scope["context"] = self.combined_text(scope, phase, action)
        scope["combinedContext"] = scope["context"]
        if extra:
            scope.update(extra)
        return scope

    # -- Sections --------------------------------------------------------------

    def static_section(self, pipeline: Pipeline, host_context: dict[str, Any]) -> dict[str, Any]:
        """Host-provided static context filtered by the pipeline's flags."""
        flags = pipeline.static_context
        section: dict[str, Any] = {}
        for flag, keys in _STATIC_FLAGS.items():
            if not getattr(flags, flag):
                continue
            for key in keys:
                if host_context.get(key) not in (None, ""):
                    section[key] = host_context[key]
        section.update(flags.custom)
        return section

    def combined_text(self, scope: dict[str, Any], phase: Phase, action: Action | None) -> str:
        """Render the selected context keys as ``## Key`` sections."""
        selection = phase.context
        entries: dict[str, Any] = {}
        for prefix, keys in (
            ("static", selection.static_keys),
            ("global", selection.global_keys),
            ("phase", selection.phase_keys),
            ("team", selection.team_keys),
            ("store", selection.stores),
        ):
            for key in keys:
                entries[f"{prefix}.{key}"] = _select(scope, prefix, key)

        if action is not None:
            overrides = action.context_overrides
            for key in overrides.include:
                entries[_qualify(key)] = _select_path(scope, key)
            for key in overrides.exclude:
                entries.pop(_qualify(key), None)
            if overrides.priority:
                ordered = [_qualify(k) for k in overrides.priority if _qualify(k) in entries]
                entries = {k: entries[k] for k in ordered} | {k: v for k, v in entries.items() if k not in ordered}

        sections = []
        for key, value in entries.items():
            if value is MISSING or value in (None, "", [], {}):
                continue
            label = humanize_key(key.split(".")[-1])
            sections.append(f"## {label}\n{stringify(value)}")
        return "\n\n".join(sections)

    def _team_scope(self, phase: Phase, phase_state: PhaseState, participant: Participant | None) -> dict[str, Any]:
        team_id = participant.team_id if participant is not None and participant.team_id else ""
        if not team_id and phase.teams:
            team_id = phase.teams[0]
        if not team_id:
            return {}
        team = self.directory.get_team(team_id) if self.directory is not None else None
        scope: dict[str, Any] = to_plain(team) if team is not None else {"id": team_id}
        scope["output"] = phase_state.team_outputs.get(team_id)
        return scope


def _qualify(key: str) -> str:
    head = key.split(".")[0]
    if head in _LAYER_PREFIXES:
        return key.replace("globals.", "global.", 1) if head == "globals" else key
    return f"global.{key}"


def _select(scope: dict[str, Any], prefix: str, key: str) -> Any:
    if prefix == "phase":
        phase = scope["phase"]
        if key in phase:
            return phase[key]
        return phase["variables"].get(key, MISSING)
    if prefix == "team":
        return scope["phase"]["teamOutputs"].get(key, MISSING)
    layer = {"static": scope["static"], "global": scope["global"], "store": scope["store"]}[prefix]
    return walk(layer, key.split("."))


def _select_path(scope: dict[str, Any], key: str) -> Any:
    qualified = _qualify(key)
    prefix, _, rest = qualified.partition(".")
    return _select(scope, prefix, rest)


def _previous_phase(run: RunState, phase_state: PhaseState) -> dict[str, Any] | None:
    previous = None
    for state in run.phases.values():
        if state.id == phase_state.id:
            break
        previous = state
    if previous is None:
        return None
    return {"id": previous.id, "name": previous.name, "output": previous.output, "input": previous.input}


def _previous_action(phase_state: PhaseState, action_state: ActionState | None) -> dict[str, Any] | None:
    if action_state is None:
        states = list(phase_state.actions.values())
        previous = states[-1] if states else None
    else:
        previous = None
        for state in sorted(phase_state.actions.values(), key=lambda s: s.index):
            if state.index >= action_state.index:
                break
            previous = state
    if previous is None:
        return None
    return {"id": previous.id, "name": previous.name, "output": previous.output, "input": previous.input}
