"""Action-type handlers.

``ActionHandlers.execute`` dispatches on ``action.action_type`` to exactly
one handler.  Each handler receives the ``ActionContext`` after input
resolution (``action_state.input`` is set) and returns the raw action output;
routing and lifecycle bookkeeping stay with the engine.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from councilflow.runtime.context import GavelRequest, new_gavel_id
from councilflow.runtime.execution.deliberation import Deliberation, format_rag_results
from councilflow.runtime.execution.errors import ActionConfigError, CollaboratorUnavailableError, GavelTimeoutError
from councilflow.runtime.execution.orchestration import orchestrate
from councilflow.runtime.execution.participants import ParticipantResolver
from councilflow.runtime.execution.workshop import Workshop
from councilflow.runtime.models.enums import ActionLifecycle, ActionType, CrudOperation, EventType
from councilflow.runtime.models.pipeline import CrudConfig, GavelConfig, RagConfig
from councilflow.runtime.templating.conditions import MISSING
from councilflow.runtime.templating.formatting import stringify
from councilflow.runtime.templating.resolver import resolve_scope, walk

if TYPE_CHECKING:
    from councilflow.runtime.context import ParticipantResponse
    from councilflow.runtime.execution.context import ActionContext, ContextAssembler
    from councilflow.runtime.execution.gavel import GavelBroker
    from councilflow.runtime.execution.participants import Participant
    from councilflow.runtime.execution.services import Services

logger = logging.getLogger(__name__)

DEFAULT_PROMPT_TEMPLATE = "{{input}}"

Handler = Callable[["ActionContext"], Awaitable[Any]]


class ActionHandlers:
    def __init__(self, services: Services, assembler: ContextAssembler, gavels: GavelBroker) -> None:
        self.services = services
        self.assembler = assembler
        self.gavels = gavels
        self.participants = ParticipantResolver(services)
        self.deliberation = Deliberation(services, self.participants)
        self.workshop = Workshop(services, self.participants)
        self._handlers: dict[ActionType, Handler] = {
            ActionType.STANDARD: self.standard,
            ActionType.CRUD_PIPELINE: self.crud,
            ActionType.RAG_PIPELINE: self.rag,
            ActionType.DELIBERATIVE_RAG: self.deliberation.run,
            ActionType.USER_GAVEL: self.user_gavel,
            ActionType.SYSTEM: self.system,
            ActionType.CHARACTER_WORKSHOP: self.workshop.run,
        }

    async def execute(self, ctx: ActionContext) -> Any:
        return await self._handlers[ctx.action.action_type](ctx)

    # -- standard --------------------------------------------------------------

    async def standard(self, ctx: ActionContext) -> Any:
        """Resolve participants and drive them with the configured orchestration mode.

        The last response becomes the output; every response is kept on
        ``action_state.responses``.
        """
        action = ctx.action
        if action.rag.enabled:
            ctx.action_state.rag = await self._prefetch_rag(ctx)

        participants = await self.participants.resolve(action, self.assembler.for_action(ctx))
        if not participants:
            logger.warning("Action %s has no participants, passing input through", action.id)
            return ctx.action_state.input

        template = action.prompt_template or DEFAULT_PROMPT_TEMPLATE
        call_timeout = action.execution.timeout / 1000 if action.execution.timeout > 0 else None

        def build_prompt(participant: Participant, prior: list[ParticipantResponse], round_number: int) -> str:
            scope = self.assembler.for_action(
                ctx,
                participant=participant,
                previousResponse=prior[-1].content if prior else "",
                responses=[{"name": r.agent_name, "position": r.position_name, "content": r.content} for r in prior],
                round=round_number,
            )
            body = self.services.resolver.resolve(template, scope)
            parts = [participant.role_description, participant.prompt_prefix, body, participant.prompt_suffix]
            return "\n\n".join(part for part in parts if part)

        async def call(participant: Participant, prompt: str) -> str:
            return await self.services.call_agent(
                participant.agent, prompt, system_prompt=participant.system_prompt, timeout=call_timeout
            )

        responses = await orchestrate(
            action.participants.orchestration,
            participants,
            build_prompt,
            call,
            max_rounds=action.participants.max_rounds,
        )
        ctx.action_state.responses.extend(responses)
        return responses[-1].content if responses else ""

    async def _prefetch_rag(self, ctx: ActionContext) -> str | None:
        config = ctx.action.rag
        curation = self.services.curation
        if curation is None or not config.rag_pipeline_id:
            logger.warning("RAG prefetch for action %s skipped: no curation store or pipeline", ctx.action.id)
            return None
        query = self.services.resolver.resolve(config.query_template, self.assembler.for_action(ctx))
        try:
            result = await curation.execute_rag(config.rag_pipeline_id, query=query, limit=config.max_results)
        except Exception as exc:
            logger.warning("RAG prefetch for action %s failed: %s", ctx.action.id, exc)
            return None
        return format_rag_results(result)

    # -- crud_pipeline ---------------------------------------------------------

    async def crud(self, ctx: ActionContext) -> Any:
        """Perform one create/read/update/delete against the configured store.

        Raises
        ------
        CollaboratorUnavailableError
            No curation store is configured.
        ActionConfigError
            ``crudConfig.pipelineId`` is empty, or no store id can be found.
        """
        curation = self.services.curation
        if curation is None:
            raise CollaboratorUnavailableError("CurationSystem", "CRUD action")
        config = ctx.action.crud_config or CrudConfig()
        if not config.pipeline_id:
            raise ActionConfigError("CRUD action requires crudConfig.pipelineId")

        store_id = config.store_id
        if not store_id:
            definition = curation.get_crud_pipeline(config.pipeline_id) or {}
            store_id = definition.get("storeId") or definition.get("store_id") or ""
        if not store_id:
            raise ActionConfigError(f'CRUD pipeline "{config.pipeline_id}" has no store')

        scope = self.assembler.for_action(ctx)
        payload = self._map_fields(ctx.action_state.input, config.input_mapping, scope)
        key = payload.get("id") if isinstance(payload, dict) else None

        match config.operation:
            case CrudOperation.CREATE:
                result = await curation.create(store_id, payload)
            case CrudOperation.READ:
                result = await curation.read(store_id, payload)
            case CrudOperation.UPDATE:
                result = await curation.update(store_id, key, payload)
            case CrudOperation.DELETE:
                result = await curation.delete(store_id, payload if key is None else key)
            case _:
                raise ActionConfigError(f"Unknown CRUD operation: {config.operation}")

        await self.services.emit(
            EventType.CRUD_COMPLETE,
            ctx.run,
            actionId=ctx.action.id,
            operation=config.operation.value,
            storeId=store_id,
        )
        result = self._map_fields(result, config.output_mapping, {**scope, "result": result})
        if isinstance(result, str):
            return result
        return json.dumps(result, indent=2, ensure_ascii=False, default=str)

    # -- rag_pipeline ----------------------------------------------------------

    async def rag(self, ctx: ActionContext) -> str:
        curation = self.services.curation
        if curation is None:
            raise CollaboratorUnavailableError("CurationSystem", "RAG action")
        config = ctx.action.rag_config or RagConfig()
        if not config.pipeline_id:
            raise ActionConfigError("RAG action requires ragConfig.pipelineId")

        scope = self.assembler.for_action(ctx)
        if config.query_source and config.query_source != "input":
            source = resolve_scope(config.query_source, scope)
            scope["input"] = None if source is MISSING else source
        if config.query_template:
            query = self.services.resolver.resolve(config.query_template, scope)
        else:
            query = stringify(scope["input"])

        result = await curation.execute_rag(config.pipeline_id, query=query, limit=config.max_results)
        await self.services.emit(
            EventType.RAG_COMPLETE,
            ctx.run,
            actionId=ctx.action.id,
            pipelineId=config.pipeline_id,
            count=(result or {}).get("count", len((result or {}).get("results") or [])),
        )
        formatted = format_rag_results(result)
        if config.result_target == "context":
            ctx.action_state.rag = formatted
        return formatted

    # -- user_gavel ------------------------------------------------------------

    async def user_gavel(self, ctx: ActionContext) -> Any:
        """Suspend until the host approves or rejects, or the gavel times out.

        Raises
        ------
        GavelTimeoutError
            The timeout elapsed and ``canSkip`` is off.
        """
        config = ctx.action.gavel_config or GavelConfig()
        gavel = GavelRequest(
            id=new_gavel_id("gavel"),
            phase_id=ctx.phase.id,
            action_id=ctx.action.id,
            prompt=self.services.resolver.resolve(config.prompt, self.assembler.for_action(ctx)),
            current_output=ctx.action_state.input,
            editable_fields=list(config.editable_fields),
            can_skip=config.can_skip,
            timeout=config.timeout,
        )
        ctx.action_state.lifecycle = ActionLifecycle.RESPOND
        await self.services.emit(
            EventType.ACTION_LIFECYCLE,
            ctx.run,
            phaseId=ctx.phase.id,
            actionId=ctx.action.id,
            lifecycle=ActionLifecycle.RESPOND.value,
        )

        try:
            response = await self.gavels.request(ctx.run, gavel, timeout=config.timeout / 1000 if config.timeout else None)
        except TimeoutError:
            if config.can_skip:
                logger.info("Gavel for action %s timed out, passing input through", ctx.action.id)
                return ctx.action_state.input
            raise GavelTimeoutError() from None

        output = response.get("output")
        return output if output not in (None, "") else ctx.action_state.input

    # -- system ----------------------------------------------------------------

    async def system(self, ctx: ActionContext) -> Any:
        template = ctx.action.prompt_template
        if not template:
            return ctx.action_state.input
        return self.services.resolver.resolve(template, self.assembler.for_action(ctx))

    def _map_fields(self, value: Any, mapping: dict[str, str], scope: dict[str, Any]) -> Any:
        """Apply a ``{targetField: sourcePath}`` mapping.

        Source paths are looked up in *value* first (when it is a dict), then
        in the resolver scope.  Sources containing ``{{`` are resolved as
        templates.
        """
        if not mapping:
            return value
        mapped: dict[str, Any] = {}
        for target, source in mapping.items():
            if "{{" in source:
                mapped[target] = self.services.resolver.resolve(source, scope)
                continue
            found = walk(value, source.split(".")) if isinstance(value, dict) else MISSING
            if found is MISSING:
                found = resolve_scope(source, scope)
            mapped[target] = None if found is MISSING else found
        return mapped
