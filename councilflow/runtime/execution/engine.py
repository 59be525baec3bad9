"""Pipeline execution engine -- owns the single active run.

The engine drives a run through its phases in declared order:

1. **Phase**: ``start -> before_actions -> in_progress -> after_actions``,
   consolidation, an optional ``respond`` gavel, then ``end``.
2. **Action**: ``called``, then per attempt ``start -> in_progress ->
   complete``.  Each attempt resolves input, dispatches to the type handler
   inside a timeout race, and routes the output.
3. **Run**: the last phase output becomes ``final_output``; the orchestration
   strategy decides what is handed back to the host.

At most one run is active per engine.  A second ``start_run`` is rejected
outright; there is no queue.  Abort and pause are cooperative and checked at
phase and action boundaries.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from councilflow.runtime.context import ActionState, GavelRequest, PhaseState, RunState, new_gavel_id
from councilflow.runtime.events import EventBus
from councilflow.runtime.execution.actions import ActionHandlers
from councilflow.runtime.execution.context import ActionContext, ContextAssembler
from councilflow.runtime.execution.deliberation import format_rag_results
from councilflow.runtime.execution.errors import (
    NON_RETRYABLE,
    ActionTimeoutError,
    CollaboratorUnavailableError,
    GavelTimeoutError,
    NoActiveRunError,
    RunAbortedError,
    RunInProgressError,
    TriggerTimeoutError,
)
from councilflow.runtime.execution.gavel import GavelBroker
from councilflow.runtime.execution.routing import Consolidator, OutputRouter, set_path
from councilflow.runtime.execution.services import Services
from councilflow.runtime.log import run_context
from councilflow.runtime.models.enums import (
    ActionLifecycle,
    ActionType,
    EventType,
    ExecutionMode,
    InputSource,
    OrchestrationStrategy,
    OutputTarget,
    PhaseLifecycle,
    RunStatus,
    TriggerType,
)
from councilflow.runtime.registry import PipelineRegistry
from councilflow.runtime.settings import get_settings
from councilflow.runtime.templating.conditions import MISSING
from councilflow.runtime.templating.formatting import stringify
from councilflow.runtime.templating.resolver import walk

if TYPE_CHECKING:
    from councilflow.runtime.collaborators.base import (
        AgentDirectory,
        CharacterDirectory,
        CurationStore,
        LLMClient,
        ThreadLog,
    )
    from councilflow.runtime.events import Listener
    from councilflow.runtime.models.pipeline import Action, Phase, Pipeline
    from councilflow.runtime.settings import CouncilSettings
    from councilflow.runtime.store.base import RunStore
    from councilflow.runtime.templating.resolver import TemplateResolver

logger = logging.getLogger(__name__)

Hook = Callable[[RunState], None | Awaitable[None]]

HOOK_NAMES = ("beforePipelineRun", "afterPipelineRun")


class PipelineEngine:
    """Run pipelines against a set of optional collaborators.

    Parameters
    ----------
    registry:
        Pipeline registry; a fresh one is created when omitted.
    directory, characters, curation, llm, threads:
        Collaborators.  Actions that need a missing one fail with
        ``CollaboratorUnavailableError``; a missing LLM yields placeholder
        responses instead.
    resolver:
        Template resolver; built from *settings* when omitted.
    settings:
        Engine settings (timing, history size, resolver defaults).
    store:
        Optional run store; finished runs are written to it.
    event_bus:
        Event bus; a private one is created when omitted.
    """

    def __init__(
        self,
        registry: PipelineRegistry | None = None,
        *,
        directory: AgentDirectory | None = None,
        characters: CharacterDirectory | None = None,
        curation: CurationStore | None = None,
        llm: LLMClient | None = None,
        threads: ThreadLog | None = None,
        resolver: TemplateResolver | None = None,
        settings: CouncilSettings | None = None,
        store: RunStore | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.registry = registry or PipelineRegistry()
        self.store = store
        self.services = Services(
            settings=self.settings,
            resolver=resolver,
            events=event_bus or EventBus(),
            directory=directory,
            characters=characters,
            curation=curation,
            llm=llm,
            threads=threads,
        )
        self.assembler = ContextAssembler(directory)
        self.gavels = GavelBroker(self.services)
        self.handlers = ActionHandlers(self.services, self.assembler, self.gavels)
        self.router = OutputRouter(self.services)
        self.consolidator = Consolidator(self.services)

        self._active: RunState | None = None
        self._abort_reason: str | None = None
        self._aborted = False
        self._history: deque[RunState] = deque(maxlen=max(self.settings.history_limit, 1))
        self._hooks: dict[str, list[Hook]] = {name: [] for name in HOOK_NAMES}
        # Retry backoff sleep; tests replace it to observe delays.
        self._sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    @property
    def resolver(self) -> TemplateResolver:
        return self.services.resolver

    @property
    def events(self) -> EventBus:
        return self.services.events

    # -------------------------------------------------------------------------
    # Pipelines
    # -------------------------------------------------------------------------

    async def register_pipeline(self, raw: dict[str, Any] | Pipeline, *, overwrite: bool = True) -> Pipeline:
        pipeline = self.registry.register(raw, overwrite=overwrite)
        await self.services.emit(EventType.PIPELINE_REGISTERED, pipelineId=pipeline.id, name=pipeline.name)
        return pipeline

    def get_pipeline(self, pipeline_id: str) -> Pipeline:
        return self.registry.get(pipeline_id)

    def list_pipelines(self) -> list[dict[str, Any]]:
        return self.registry.list()

    async def delete_pipeline(self, pipeline_id: str) -> bool:
        deleted = self.registry.delete(pipeline_id)
        if deleted:
            await self.services.emit(EventType.PIPELINE_DELETED, pipelineId=pipeline_id)
        return deleted

    # -------------------------------------------------------------------------
    # Run control
    # -------------------------------------------------------------------------

    @property
    def active_run(self) -> RunState | None:
        return self._active

    @property
    def is_running(self) -> bool:
        return self._active is not None

    async def start_run(
        self,
        pipeline_id: str,
        user_input: Any = None,
        *,
        host_context: dict[str, Any] | None = None,
        globals_override: dict[str, Any] | None = None,
        strategy: OrchestrationStrategy = OrchestrationStrategy.SYNTHESIS,
        injection_mappings: dict[str, str] | None = None,
    ) -> RunState:
        """Execute a registered pipeline to completion.

        Parameters
        ----------
        pipeline_id:
            Id of a registered pipeline.
        user_input:
            Input of the first phase.
        host_context:
            Host application context, exposed as the ``st`` scope and used
            for the static context section.
        globals_override:
            Values merged over the pipeline's globals for this run only.
        strategy:
            How the final output is handed back to the host.
        injection_mappings:
            Host token -> retrieval pipeline id, used by the ``injection``
            strategy.

        Returns
        -------
        RunState
            The finished run (``status == completed``).

        Raises
        ------
        RunInProgressError
            Another run is active; its state is left untouched.
        PipelineNotFoundError
            *pipeline_id* is not registered.
        RunAbortedError
            The run was aborted.
        Exception
            Any unrecoverable action or phase error, re-raised after it is
            recorded on the run.
        """
        if self._active is not None:
            raise RunInProgressError()
        pipeline = self.registry.get(pipeline_id)

        run = RunState(
            pipeline_id=pipeline.id,
            pipeline_name=pipeline.name,
            user_input=user_input,
            host_context=dict(host_context or {}),
            globals=_initial_globals(pipeline, globals_override),
            strategy=OrchestrationStrategy(strategy),
        )
        run.progress.total_phases = len(pipeline.phases)
        run.progress.total_actions = sum(len(phase.actions) for phase in pipeline.phases)

        self._active = run
        self._aborted = False
        self._abort_reason = None
        with run_context(run.id):
            logger.info("Run %s started for pipeline %s", run.id, pipeline.id)

            await self._run_hooks("beforePipelineRun", run)
            await self.services.emit(EventType.RUN_STARTED, run, pipelineId=pipeline.id, userInput=user_input)

            try:
                run.final_output = await self._execute_phases(run, pipeline)
                await self._apply_strategy(run, injection_mappings or {})
                run.status = RunStatus.COMPLETED
                run.ended_at = datetime.now()
                logger.info("Run %s completed", run.id)
                await self.services.emit(EventType.RUN_COMPLETED, run, finalOutput=run.final_output)
            except RunAbortedError as exc:
                self._fail(run, exc)
                logger.info("Run %s aborted", run.id)
                await self.services.emit(EventType.RUN_ABORTED, run, reason=exc.reason)
                raise
            except Exception as exc:
                self._fail(run, exc)
                logger.exception("Run %s failed", run.id)
                await self.services.emit(EventType.RUN_ERROR, run, error=str(exc))
                raise
            finally:
                self._active = None
                self._history.appendleft(run)
                await self._persist(run)
                await self._run_hooks("afterPipelineRun", run)

            return run

    async def abort_run(self, reason: str | None = None) -> bool:
        """Signal the active run to stop at its next boundary.

        Returns ``False`` when no run is active.
        """
        if self._active is None:
            return False
        self._aborted = True
        self._abort_reason = reason
        self.gavels.abort(reason)
        logger.info("Abort requested for run %s", self._active.id)
        return True

    async def pause_run(self) -> None:
        run = self._active
        if run is None:
            raise NoActiveRunError("pause")
        if run.status == RunStatus.RUNNING:
            run.status = RunStatus.PAUSED
            await self.services.emit(EventType.RUN_PAUSED, run)

    async def resume_run(self) -> None:
        run = self._active
        if run is None:
            raise NoActiveRunError("resume")
        if run.status == RunStatus.PAUSED:
            run.status = RunStatus.RUNNING
            await self.services.emit(EventType.RUN_RESUMED, run)

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def get_progress(self) -> dict[str, Any] | None:
        run = self._active
        if run is None:
            return None
        return _progress(run)

    def get_run_history(self, limit: int | None = None) -> list[RunState]:
        history = list(self._history)
        return history[:limit] if limit is not None else history

    def get_summary(self) -> dict[str, Any]:
        gavel = self.gavels.active
        return {
            "pipelineCount": len(self.registry),
            "isRunning": self.is_running,
            "activeRunId": self._active.id if self._active else None,
            "progress": self.get_progress(),
            "historyCount": len(self._history),
            "activeGavel": gavel.to_dict() if gavel else None,
        }

    # -------------------------------------------------------------------------
    # Gavels
    # -------------------------------------------------------------------------

    def get_active_gavel(self) -> GavelRequest | None:
        return self.gavels.active

    async def approve_gavel(self, gavel_id: str, modifications: dict[str, Any] | None = None) -> None:
        await self.gavels.approve(gavel_id, modifications)

    async def reject_gavel(self, gavel_id: str, reason: str | None = None) -> None:
        await self.gavels.reject(gavel_id, reason)

    # -------------------------------------------------------------------------
    # Events and hooks
    # -------------------------------------------------------------------------

    def on(self, event: str, callback: Listener) -> Callable[[], None]:
        return self.events.on(event, callback)

    def off(self, event: str, callback: Listener) -> None:
        self.events.off(event, callback)

    def add_hook(self, name: str, hook: Hook) -> Callable[[], None]:
        """Register a run hook.  Returns a function that removes it."""
        if name not in self._hooks:
            raise ValueError(f"Unknown hook: {name}")
        hooks = self._hooks[name]
        hooks.append(hook)

        def _remove() -> None:
            if hook in hooks:
                hooks.remove(hook)

        return _remove

    async def _run_hooks(self, name: str, run: RunState) -> None:
        for hook in list(self._hooks[name]):
            try:
                result = hook(run)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Hook %s failed", name)

    # -------------------------------------------------------------------------
    # Orchestration strategy
    # -------------------------------------------------------------------------

    async def execute_injection_rag(self, query: str, mappings: dict[str, str]) -> dict[str, str]:
        """Run each mapped retrieval pipeline and return ``{token: formatted results}``."""
        if not mappings:
            return {}
        curation = self.services.curation
        if curation is None:
            raise CollaboratorUnavailableError("CurationSystem", "injection strategy")
        values = {}
        for token, pipeline_id in mappings.items():
            result = await curation.execute_rag(pipeline_id, query=query, limit=5)
            values[token] = format_rag_results(result)
        return values

    @staticmethod
    def inject(prompt: str, values: dict[str, str]) -> str:
        """Replace ``{{token}}`` occurrences in *prompt* with injected values."""
        for token, value in values.items():
            prompt = prompt.replace("{{" + token + "}}", value)
        return prompt

    async def _apply_strategy(self, run: RunState, injection_mappings: dict[str, str]) -> None:
        match run.strategy:
            case OrchestrationStrategy.COMPILATION:
                run.compiled_prompt = f"[Pipeline Output: {run.pipeline_name}]\n\n{stringify(run.final_output)}"
            case OrchestrationStrategy.INJECTION:
                values = await self.execute_injection_rag(stringify(run.user_input), injection_mappings)
                run.compiled_prompt = self.inject(stringify(run.final_output), values)
            case _:
                run.compiled_prompt = None

    # -------------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------------

    async def _execute_phases(self, run: RunState, pipeline: Pipeline) -> Any:
        current = run.user_input
        for index, phase in enumerate(pipeline.phases):
            await self._checkpoint(run)
            current = await self._execute_phase(run, pipeline, phase, index, current)
            run.progress.completed_phases += 1
            await self.services.emit(EventType.PROGRESS, run, **_progress(run))
        return current

    async def _execute_phase(self, run: RunState, pipeline: Pipeline, phase: Phase, index: int, phase_input: Any) -> Any:
        state = PhaseState(
            id=phase.id,
            name=phase.name,
            index=index,
            input=phase_input,
            variables=copy.deepcopy(phase.variables),
        )
        run.phases[phase.id] = state
        run.current_phase_id = phase.id
        run.current_phase_index = index

        try:
            await self._phase_lifecycle(run, state, PhaseLifecycle.START)
            state.thread_id = await self.services.open_thread(
                phase.name, "phase", enabled=phase.threads.phase_thread.enabled
            )
            state.stores = await self._prefetch_stores(phase)

            await self._phase_lifecycle(run, state, PhaseLifecycle.BEFORE_ACTIONS)
            await self._phase_lifecycle(run, state, PhaseLifecycle.IN_PROGRESS)
            await self._execute_actions(run, pipeline, phase, state)
            await self._phase_lifecycle(run, state, PhaseLifecycle.AFTER_ACTIONS)

            result = await self.consolidator.consolidate(phase, state, run)
            if phase.gavel.enabled or result.gavel_options is not None:
                await self._phase_lifecycle(run, state, PhaseLifecycle.RESPOND)
                await self._phase_gavel(run, pipeline, phase, state, result.gavel_options)

            await self.services.log_message(state.thread_id, phase.name, stringify(state.output))
            state.ended_at = datetime.now()
            await self._phase_lifecycle(run, state, PhaseLifecycle.END)
        except Exception as exc:
            state.error = str(exc)
            state.ended_at = datetime.now()
            await self.services.emit(EventType.PHASE_ERROR, run, phaseId=phase.id, error=str(exc))
            raise
        finally:
            run.current_action_id = None
            run.current_action_index = -1

        return state.output

    async def _phase_lifecycle(self, run: RunState, state: PhaseState, lifecycle: PhaseLifecycle) -> None:
        state.lifecycle = lifecycle
        logger.debug("Phase %s -> %s", state.id, lifecycle)
        await self.services.emit(EventType.PHASE_LIFECYCLE, run, phaseId=state.id, lifecycle=lifecycle.value)

    async def _prefetch_stores(self, phase: Phase) -> dict[str, Any]:
        curation = self.services.curation
        if not phase.context.stores or curation is None:
            return {}
        stores = {}
        for store_id in phase.context.stores:
            try:
                stores[store_id] = await curation.read(store_id)
            except Exception as exc:
                logger.warning("Could not read store %s for phase %s: %s", store_id, phase.id, exc)
        return stores

    async def _phase_gavel(
        self,
        run: RunState,
        pipeline: Pipeline,
        phase: Phase,
        state: PhaseState,
        options: dict[str, Any] | None,
    ) -> None:
        config = phase.gavel
        scope = self.assembler.build(run, pipeline, phase, state)
        gavel = GavelRequest(
            id=new_gavel_id("phase_gavel"),
            phase_id=phase.id,
            prompt=self.resolver.resolve(config.prompt, scope),
            current_output=state.output,
            editable_fields=list(config.editable_fields),
            can_skip=config.can_skip,
            timeout=config.timeout,
            options=options or {},
        )
        try:
            response = await self.gavels.request(run, gavel, timeout=config.timeout / 1000 if config.timeout else None)
        except TimeoutError:
            if config.can_skip:
                logger.info("Phase gavel for %s timed out, keeping output", phase.id)
                return
            raise GavelTimeoutError() from None

        if response["approved"]:
            state.output = response["output"]
            target = phase.output.phase_output
            if target.target == OutputTarget.GLOBAL and target.target_key:
                set_path(run.globals, target.target_key, state.output)

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    async def _execute_actions(self, run: RunState, pipeline: Pipeline, phase: Phase, state: PhaseState) -> None:
        pending: list[asyncio.Task] = []
        try:
            for index, action in enumerate(phase.actions):
                await self._checkpoint(run)
                action_state = ActionState(id=action.id, name=action.name, action_type=action.action_type, index=index)
                state.actions[action.id] = action_state
                ctx = ActionContext(run, pipeline, phase, state, action, action_state)

                if action.execution.mode == ExecutionMode.ASYNC:
                    pending.append(asyncio.create_task(self._execute_async_action(ctx), name=f"action:{action.id}"))
                else:
                    await self._execute_action(ctx)
                    self._check_abort()

            if pending:
                await asyncio.gather(*pending)
        finally:
            leftover = [task for task in pending if not task.done()]
            for task in leftover:
                task.cancel()
            if leftover:
                await asyncio.gather(*leftover, return_exceptions=True)

    async def _execute_async_action(self, ctx: ActionContext) -> None:
        await self._wait_for_trigger(ctx)
        self._check_abort()
        await self._execute_action(ctx)
        self._check_abort()

    async def _wait_for_trigger(self, ctx: ActionContext) -> None:
        """Poll until the trigger target reaches its state, bounded by the action timeout."""
        trigger = ctx.action.execution.trigger
        if trigger.type not in (TriggerType.AWAIT, TriggerType.ON) or not trigger.target_action_id:
            return

        interval = self.settings.trigger_poll_ms / 1000
        timeout_ms = ctx.action.execution.timeout
        try:
            async with asyncio.timeout(timeout_ms / 1000 if timeout_ms > 0 else None):
                while True:
                    self._check_abort()
                    target = ctx.phase_state.actions.get(trigger.target_action_id)
                    if target is not None and target.lifecycle.reached(trigger.target_state):
                        return
                    await asyncio.sleep(interval)
        except TimeoutError:
            raise TriggerTimeoutError(trigger.target_action_id, trigger.target_state.value) from None

    async def _execute_action(self, ctx: ActionContext) -> None:
        """Run one action with retries.

        ``retryCount = n`` allows ``n + 1`` attempts with a linear backoff
        of ``retry_backoff_ms * attempt`` between them.  Aborts,
        configuration errors and gavel timeouts are never retried.
        """
        run, action, state = ctx.run, ctx.action, ctx.action_state
        run.current_action_id = action.id
        run.current_action_index = state.index
        await self._action_lifecycle(ctx, ActionLifecycle.CALLED)

        attempts = max(action.execution.retry_count, 0) + 1
        for attempt in range(1, attempts + 1):
            state.attempts = attempt
            try:
                await self._attempt(ctx)
                break
            except Exception as exc:
                state.error = str(exc)
                if isinstance(exc, NON_RETRYABLE) or attempt >= attempts:
                    state.ended_at = datetime.now()
                    logger.error("Action %s failed after %d attempt(s): %s", action.id, attempt, exc)
                    await self.services.emit(
                        EventType.ACTION_ERROR,
                        run,
                        phaseId=ctx.phase.id,
                        actionId=action.id,
                        error=str(exc),
                        attempts=attempt,
                    )
                    raise
                delay = self.settings.retry_backoff_ms * attempt / 1000
                logger.warning("Action %s attempt %d failed, retrying in %.1fs: %s", action.id, attempt, delay, exc)
                await self.services.emit(
                    EventType.ACTION_RETRY,
                    run,
                    phaseId=ctx.phase.id,
                    actionId=action.id,
                    attempt=attempt,
                    delayMs=int(delay * 1000),
                    error=str(exc),
                )
                await self._sleep(delay)
                self._check_abort()

        run.progress.completed_actions += 1
        await self.services.emit(EventType.PROGRESS, run, **_progress(run))

    async def _attempt(self, ctx: ActionContext) -> None:
        state = ctx.action_state
        await self._action_lifecycle(ctx, ActionLifecycle.START)
        state.input = await self._resolve_input(ctx)

        await self._action_lifecycle(ctx, ActionLifecycle.IN_PROGRESS)
        if ctx.action.action_type == ActionType.USER_GAVEL:
            state.output = await self.handlers.execute(ctx)
        else:
            state.output = await self._execute_with_timeout(ctx)

        await self.router.route(ctx)
        state.error = None
        state.ended_at = datetime.now()
        await self._action_lifecycle(ctx, ActionLifecycle.COMPLETE)

    async def _execute_with_timeout(self, ctx: ActionContext) -> Any:
        timeout_ms = ctx.action.execution.timeout
        if timeout_ms <= 0:
            return await self.handlers.execute(ctx)
        scope = asyncio.timeout(timeout_ms / 1000)
        try:
            async with scope:
                return await self.handlers.execute(ctx)
        except TimeoutError as exc:
            if scope.expired():
                raise ActionTimeoutError(ctx.action.name or ctx.action.id, timeout_ms) from exc
            raise

    async def _action_lifecycle(self, ctx: ActionContext, lifecycle: ActionLifecycle) -> None:
        ctx.action_state.lifecycle = lifecycle
        await self.services.emit(
            EventType.ACTION_LIFECYCLE,
            ctx.run,
            phaseId=ctx.phase.id,
            actionId=ctx.action.id,
            lifecycle=lifecycle.value,
            attempt=ctx.action_state.attempts,
        )

    async def _resolve_input(self, ctx: ActionContext) -> Any:
        """Pick the action input from its configured source, then apply ``input.transform``."""
        action, state = ctx.action, ctx.phase_state
        if action.id in state.pending_inputs:
            value = state.pending_inputs[action.id]
        else:
            value = await self._input_from_source(ctx, action)

        if action.input.transform:
            ctx.action_state.input = value
            value = self.resolver.resolve(action.input.transform, self.assembler.for_action(ctx))
        return value

    async def _input_from_source(self, ctx: ActionContext, action: Action) -> Any:
        config = action.input
        state = ctx.phase_state
        match config.source:
            case InputSource.PREVIOUS_ACTION:
                if config.source_key:
                    previous = state.actions.get(config.source_key)
                    return previous.output if previous is not None else None
                earlier = [s for s in state.actions.values() if s.index < ctx.action_state.index]
                if earlier:
                    return max(earlier, key=lambda s: s.index).output
                return state.input
            case InputSource.GLOBAL:
                value = walk(ctx.run.globals, config.source_key.split(".")) if config.source_key else ctx.run.globals
                return None if value is MISSING else value
            case InputSource.CUSTOM:
                return config.source_key
            case InputSource.STORE:
                curation = self.services.curation
                if curation is None:
                    raise CollaboratorUnavailableError("CurationSystem", "store input")
                return await curation.read(config.source_key)
            case _:
                return state.input if state.input is not None else ctx.run.user_input

    # -------------------------------------------------------------------------
    # Abort / pause / persistence
    # -------------------------------------------------------------------------

    def _check_abort(self) -> None:
        if self._aborted:
            raise RunAbortedError(self._abort_reason)

    async def _checkpoint(self, run: RunState) -> None:
        self._check_abort()
        while run.status == RunStatus.PAUSED:
            await asyncio.sleep(self.settings.pause_poll_ms / 1000)
            self._check_abort()

    @staticmethod
    def _fail(run: RunState, exc: BaseException) -> None:
        run.status = RunStatus.ERROR
        run.error = str(exc)
        run.ended_at = datetime.now()

    async def _persist(self, run: RunState) -> None:
        if self.store is None:
            return
        try:
            await self.store.write_run(run.to_dict())
        except Exception:
            logger.exception("Failed to persist run %s", run.id)


def _initial_globals(pipeline: Pipeline, overrides: dict[str, Any] | None) -> dict[str, Any]:
    """Copy the pipeline's globals for a run; the pipeline itself is never mutated."""
    values = copy.deepcopy(pipeline.globals.model_dump(by_alias=True))
    for key, value in (overrides or {}).items():
        if key == "custom" and isinstance(value, dict):
            values.setdefault("custom", {}).update(copy.deepcopy(value))
        else:
            values[key] = copy.deepcopy(value)
    return values


def _progress(run: RunState) -> dict[str, Any]:
    progress = run.progress
    return {
        "runId": run.id,
        "status": run.status.value,
        "currentPhaseId": run.current_phase_id,
        "currentActionId": run.current_action_id,
        "totalPhases": progress.total_phases,
        "completedPhases": progress.completed_phases,
        "totalActions": progress.total_actions,
        "completedActions": progress.completed_actions,
        "percentage": progress.percentage,
    }
