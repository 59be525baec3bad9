"""Output routing and phase consolidation.

``OutputRouter`` moves one action output to its configured target.
``Consolidator`` reduces the outputs of a finished phase to the phase output.
Neither rolls back on failure: a routing error propagates to the retry loop
with whatever was already written left in place.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from councilflow.runtime.execution.errors import CollaboratorUnavailableError
from councilflow.runtime.execution.prompts import render_prompt
from councilflow.runtime.models.directory import PUBLISHER_POSITION_ID
from councilflow.runtime.models.enums import ConsolidationPolicy, OutputTarget
from councilflow.runtime.templating.formatting import stringify

if TYPE_CHECKING:
    from councilflow.runtime.context import PhaseState, RunState
    from councilflow.runtime.execution.context import ActionContext
    from councilflow.runtime.execution.services import Services
    from councilflow.runtime.models.pipeline import Phase

logger = logging.getLogger(__name__)

MERGE_SEPARATOR = "\n\n---\n\n"
APPEND_SEPARATOR = "\n"


def is_empty(value: Any) -> bool:
    return value is None or value == ""


def append_value(existing: Any, value: Any) -> Any:
    """String/list-aware append used by ``append: true`` targets."""
    if is_empty(existing):
        return value
    if isinstance(existing, list):
        return existing + (value if isinstance(value, list) else [value])
    if isinstance(existing, str) and isinstance(value, str):
        return existing + APPEND_SEPARATOR + value
    return [existing, value]


def merge_outputs(outputs: list[Any]) -> Any:
    """Type-aware merge.

    All strings join with ``MERGE_SEPARATOR``; all lists flatten; all dicts
    shallow-merge (later keys win).  Mixed types become a list.
    """
    values = [v for v in outputs if not is_empty(v)]
    if not values:
        return ""
    if all(isinstance(v, str) for v in values):
        return MERGE_SEPARATOR.join(values)
    if all(isinstance(v, list) for v in values):
        return [item for v in values for item in v]
    if all(isinstance(v, dict) for v in values):
        merged: dict[str, Any] = {}
        for v in values:
            merged.update(v)
        return merged
    return values


def set_path(target: dict[str, Any], path: str, value: Any, *, append: bool = False) -> None:
    """Write *value* at a dot path, creating intermediate dicts."""
    parts = path.split(".")
    node = target
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    leaf = parts[-1]
    node[leaf] = append_value(node.get(leaf), value) if append else value


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


class OutputRouter:
    def __init__(self, services: Services) -> None:
        self.services = services

    async def route(self, ctx: ActionContext) -> None:
        """Route ``ctx.action_state.output`` to the action's output target.

        Empty outputs (``None`` or ``""``) are not routed.
        """
        output = ctx.action_state.output
        if is_empty(output):
            return

        config = ctx.action.output
        phase_state = ctx.phase_state

        match config.target:
            case OutputTarget.TEAM_OUTPUT:
                key = config.target_key or "default"
                current = phase_state.team_outputs.get(key)
                phase_state.team_outputs[key] = append_value(current, output) if config.append else output

            case OutputTarget.GLOBAL:
                key = config.target_key
                if not key or key == "custom":
                    custom = ctx.run.globals.setdefault("custom", {})
                    custom[ctx.action.id] = append_value(custom.get(ctx.action.id), output) if config.append else output
                else:
                    set_path(ctx.run.globals, key, output, append=config.append)

            case OutputTarget.STORE:
                await self._to_store(ctx, output)

            case OutputTarget.NEXT_ACTION:
                target_id = config.target_key or _next_action_id(ctx)
                if target_id:
                    phase_state.pending_inputs[target_id] = output
                else:
                    logger.warning("Action %s routes to nextAction but is last in its phase", ctx.action.id)

            case OutputTarget.THREAD:
                thread_id = config.target_key or phase_state.thread_id
                await self.services.log_message(thread_id, ctx.action.name, stringify(output))

            case _:
                if config.append:
                    phase_state.output = append_value(phase_state.output, output)
                else:
                    phase_state.output = output

    async def _to_store(self, ctx: ActionContext, output: Any) -> None:
        curation = self.services.curation
        if curation is None:
            raise CollaboratorUnavailableError("CurationSystem", "store output routing")
        store_id = ctx.action.output.target_key
        if isinstance(output, dict) and output.get("id") is not None:
            await curation.update(store_id, output["id"], output)
        else:
            await curation.create(store_id, output)


def _next_action_id(ctx: ActionContext) -> str | None:
    actions = ctx.phase.actions
    for index, action in enumerate(actions):
        if action.id == ctx.action.id and index + 1 < len(actions):
            return actions[index + 1].id
    return None


# ---------------------------------------------------------------------------
# Consolidator
# ---------------------------------------------------------------------------


@dataclass
class ConsolidationResult:
    output: Any
    gavel_options: dict[str, Any] | None = None
    """Set by ``user_gavel`` consolidation; forces a phase gavel."""


class Consolidator:
    def __init__(self, services: Services) -> None:
        self.services = services

    async def consolidate(self, phase: Phase, phase_state: PhaseState, run: RunState) -> ConsolidationResult:
        """Reduce action outputs to the phase output and write it to ``phase_state.output``."""
        ordered = sorted(phase_state.actions.values(), key=lambda s: s.index)
        outputs = [s.output for s in ordered if not is_empty(s.output)]
        policy = phase.output.consolidation
        gavel_options = None

        match policy:
            case ConsolidationPolicy.FIRST_ACTION:
                result = outputs[0] if outputs else phase_state.output
            case ConsolidationPolicy.MERGE:
                result = merge_outputs(outputs)
            case ConsolidationPolicy.DESIGNATED:
                designated = phase_state.actions.get(phase.output.consolidation_action_id)
                if designated is None:
                    logger.warning("Designated action %s has no state", phase.output.consolidation_action_id)
                    result = phase_state.output
                else:
                    result = designated.output
            case ConsolidationPolicy.SYNTHESIZE:
                named = {s.name: s.output for s in ordered if not is_empty(s.output)}
                result = await self._synthesize(phase, named, outputs)
            case ConsolidationPolicy.USER_GAVEL:
                merged = merge_outputs(outputs)
                gavel_options = {
                    "outputs": {s.id: s.output for s in ordered if not is_empty(s.output)},
                    "merged": merged,
                }
                result = merged
            case _:
                result = phase_state.output

        phase_state.output = result

        target = phase.output.phase_output
        if target.target == OutputTarget.GLOBAL and target.target_key and not is_empty(result):
            set_path(run.globals, target.target_key, result, append=target.append)

        return ConsolidationResult(output=result, gavel_options=gavel_options)

    async def _synthesize(self, phase: Phase, named: dict[str, Any], outputs: list[Any]) -> Any:
        if len(outputs) <= 1:
            return outputs[0] if outputs else ""
        directory = self.services.directory
        llm = self.services.llm
        position_id = phase.output.synthesizer_position_id or PUBLISHER_POSITION_ID
        agent = directory.get_agent_for_position(position_id) if directory is not None else None
        if llm is None or agent is None:
            logger.info("No synthesizer for phase %s, merging outputs", phase.id)
            return merge_outputs(outputs)

        prompt = render_prompt(
            "phase_synthesis",
            outputs={name: stringify(value) for name, value in named.items()},
            instructions=phase.description,
        )
        return await self.services.call_agent(agent, prompt)
