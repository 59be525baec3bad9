"""Pipeline document models.

A pipeline is a declarative, JSON-compatible document.  These models are the
normalized form: every field has a default so downstream code never has to
ask whether a key is present.  Attributes are snake_case; the document form
(``model_dump(by_alias=True)``) uses camelCase keys.

Normalizing an already-normalized document is a no-op::

    normalize_pipeline(p.model_dump(by_alias=True)) == p
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from councilflow.runtime.models.enums import (
    ActionLifecycle,
    ActionType,
    CharacterMode,
    ConsolidationPolicy,
    CrudOperation,
    DeliberationConsolidation,
    ExecutionMode,
    InputSource,
    OutputTarget,
    ParticipantOrchestration,
    TriggerType,
    WorkshopMode,
)

DEFAULT_CURATION_POSITIONS = ["archivist", "story_topologist", "lore_topologist", "character_topologist"]
DEFAULT_CURATION_PROMPT = (
    "You are a member of the Record Keeping team with access to story data. "
    "Answer questions accurately based on stored information."
)
DEFAULT_GAVEL_PROMPT = "Review and edit if needed:"


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


class DocumentModel(BaseModel):
    """Base for document models: camelCase aliases, populate by either name."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -- Shared pieces -----------------------------------------------------------


class ThreadConfig(DocumentModel):
    enabled: bool = True
    first_message: str = ""
    max_messages: int = 100


class NamedThread(DocumentModel):
    """Conversation thread opened by a multi-step action (deliberation, workshop)."""

    enabled: bool = True
    name: str = ""


class OutputConfig(DocumentModel):
    target: OutputTarget = OutputTarget.PHASE_OUTPUT
    target_key: str = ""
    append: bool = False


# -- Pipeline level ----------------------------------------------------------


class StaticContextFlags(DocumentModel):
    """Which host-provided static sections are exposed to prompts."""

    include_character_card: bool = True
    include_world_info: bool = True
    include_persona: bool = True
    include_scenario: bool = True
    custom: dict[str, Any] = Field(default_factory=dict)


class PipelineGlobals(DocumentModel):
    """Named global slots shared by every phase of a run.

    Extra keys are allowed; output routing may create new globals by dot path.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    instructions: str = ""
    outline_draft: str = ""
    final_outline: str = ""
    first_draft: str = ""
    second_draft: str = ""
    final_draft: str = ""
    commentary: str = ""
    custom: dict[str, Any] = Field(default_factory=dict)


class PipelineMetadata(DocumentModel):
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)
    author: str = ""
    tags: list[str] = Field(default_factory=list)


# -- Action level ------------------------------------------------------------


class TriggerConfig(DocumentModel):
    type: TriggerType = TriggerType.SEQUENTIAL
    target_action_id: str = ""
    target_state: ActionLifecycle = ActionLifecycle.COMPLETE


class ExecutionConfig(DocumentModel):
    mode: ExecutionMode = ExecutionMode.SYNC
    trigger: TriggerConfig = Field(default_factory=TriggerConfig)
    timeout: int = 60000
    """Execution timeout in milliseconds; ``0`` disables the race."""

    retry_count: int = 0


class DynamicSMEConfig(DocumentModel):
    """Keyword-scored subject-matter-expert selection."""

    enabled: bool = False
    source_template: str = "{{input}}"
    max_smes: int = Field(default=2, alias="maxSMEs")
    fallback_position_id: str = ""


class CharacterRagContext(DocumentModel):
    enabled: bool = False
    pipeline_id: str = ""
    query_template: str = "{{input}}"


class CharacterParticipation(DocumentModel):
    enabled: bool = False
    mode: CharacterMode = CharacterMode.DYNAMIC
    character_ids: list[str] = Field(default_factory=list)
    character_types: list[str] = Field(default_factory=list)
    include_director: bool = False
    voicing_guidance: str = ""
    max_characters: int = 3
    rag_context: CharacterRagContext = Field(default_factory=CharacterRagContext)


class ParticipantsConfig(DocumentModel):
    position_ids: list[str] = Field(default_factory=list)
    team_ids: list[str] = Field(default_factory=list)
    orchestration: ParticipantOrchestration = ParticipantOrchestration.SEQUENTIAL
    max_rounds: int = 3
    dynamic: DynamicSMEConfig = Field(default_factory=DynamicSMEConfig)
    characters: CharacterParticipation = Field(default_factory=CharacterParticipation)

    @property
    def is_empty(self) -> bool:
        return not (self.position_ids or self.team_ids or self.dynamic.enabled or self.characters.enabled)


class ActionThreads(DocumentModel):
    action_thread: ThreadConfig = Field(default_factory=ThreadConfig)
    team_task_threads: dict[str, ThreadConfig] = Field(default_factory=dict)


class InputConfig(DocumentModel):
    source: InputSource = InputSource.PHASE_INPUT
    source_key: str = ""
    transform: str = ""


class ContextOverrides(DocumentModel):
    include: list[str] = Field(default_factory=list)
    exclude: list[str] = Field(default_factory=list)
    priority: list[str] = Field(default_factory=list)


class ActionRagConfig(DocumentModel):
    """Optional retrieval pre-fetch for standard actions."""

    enabled: bool = False
    rag_pipeline_id: str = ""
    query_template: str = "{{input}}"
    result_target: str = "context"
    max_results: int = 5


# -- Type-specific action configs --------------------------------------------


class CrudConfig(DocumentModel):
    pipeline_id: str = ""
    operation: CrudOperation = CrudOperation.CREATE
    store_id: str = ""
    input_mapping: dict[str, str] = Field(default_factory=dict)
    output_mapping: dict[str, str] = Field(default_factory=dict)


class RagConfig(DocumentModel):
    pipeline_id: str = ""
    query_source: str = "input"
    query_template: str = "{{input}}"
    result_target: str = "context"
    max_results: int = 5


class DeliberativeConfig(DocumentModel):
    query_participants: list[str] = Field(default_factory=list)
    curation_positions: list[str] = Field(default_factory=lambda: list(DEFAULT_CURATION_POSITIONS))
    max_rounds: int = 3
    available_rag_pipelines: list[str] = Field(default_factory=list, alias="availableRAGPipelines")
    available_stores: list[str] = Field(default_factory=list)
    deliberation_thread: NamedThread = Field(default_factory=lambda: NamedThread(name="Deliberative RAG"))
    consolidation: DeliberationConsolidation = DeliberationConsolidation.SYNTHESIZE
    curation_prompt: str = DEFAULT_CURATION_PROMPT


class GavelConfig(DocumentModel):
    """Human review gate, used both by phases and by ``user_gavel`` actions."""

    enabled: bool = False
    prompt: str = DEFAULT_GAVEL_PROMPT
    editable_fields: list[str] = Field(default_factory=lambda: ["output"])
    can_skip: bool = True
    timeout: int = 0
    """Milliseconds to wait for a decision; ``0`` waits indefinitely."""


class WorkshopRagConfig(DocumentModel):
    enabled: bool = True
    pipeline_id: str = ""
    store_ids: list[str] = Field(default_factory=lambda: ["characterSheets"])


class WorkshopPrompts(DocumentModel):
    director: str = ""
    refinement: str = ""
    consistency: str = ""


class CharacterWorkshopConfig(DocumentModel):
    mode: WorkshopMode = WorkshopMode.REFINEMENT
    character_ids: list[str] = Field(default_factory=list)
    include_director: bool = True
    editorial_positions: list[str] = Field(default_factory=list)
    rag_config: WorkshopRagConfig = Field(default_factory=WorkshopRagConfig)
    prompts: WorkshopPrompts = Field(default_factory=WorkshopPrompts)
    consolidation: DeliberationConsolidation = DeliberationConsolidation.SYNTHESIZE
    workshop_thread: NamedThread = Field(default_factory=lambda: NamedThread(name="Character Workshop"))


_TYPE_CONFIGS: dict[ActionType, tuple[str, type[DocumentModel]]] = {
    ActionType.CRUD_PIPELINE: ("crud_config", CrudConfig),
    ActionType.RAG_PIPELINE: ("rag_config", RagConfig),
    ActionType.DELIBERATIVE_RAG: ("deliberative_config", DeliberativeConfig),
    ActionType.USER_GAVEL: ("gavel_config", GavelConfig),
    ActionType.CHARACTER_WORKSHOP: ("character_workshop_config", CharacterWorkshopConfig),
}


class Action(DocumentModel):
    id: str
    name: str = ""
    description: str = ""
    action_type: ActionType = ActionType.STANDARD
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    participants: ParticipantsConfig = Field(default_factory=ParticipantsConfig)
    threads: ActionThreads = Field(default_factory=ActionThreads)
    input: InputConfig = Field(default_factory=InputConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    context_overrides: ContextOverrides = Field(default_factory=ContextOverrides)
    rag: ActionRagConfig = Field(default_factory=ActionRagConfig)
    prompt_template: str = ""
    display_order: int | None = None

    crud_config: CrudConfig | None = None
    rag_config: RagConfig | None = None
    deliberative_config: DeliberativeConfig | None = None
    gavel_config: GavelConfig | None = None
    character_workshop_config: CharacterWorkshopConfig | None = None

    @model_validator(mode="after")
    def _fill_defaults(self) -> Action:
        if not self.name:
            self.name = self.id
        # Only the config matching action_type survives normalization.
        for action_type, (field_name, config_cls) in _TYPE_CONFIGS.items():
            if action_type == self.action_type:
                if getattr(self, field_name) is None:
                    setattr(self, field_name, config_cls())
            else:
                setattr(self, field_name, None)
        return self


# -- Phase level -------------------------------------------------------------


class PhaseThreads(DocumentModel):
    phase_thread: ThreadConfig = Field(default_factory=ThreadConfig)
    team_threads: dict[str, ThreadConfig] = Field(default_factory=dict)


class PhaseContextSelection(DocumentModel):
    """Keys from each context layer exposed to this phase's prompts."""

    static_keys: list[str] = Field(default_factory=list, alias="static")
    global_keys: list[str] = Field(default_factory=list, alias="global")
    phase_keys: list[str] = Field(default_factory=list, alias="phase")
    team_keys: list[str] = Field(default_factory=list, alias="team")
    stores: list[str] = Field(default_factory=list)


class PhaseOutputConfig(DocumentModel):
    phase_output: OutputConfig = Field(default_factory=OutputConfig)
    team_outputs: dict[str, OutputConfig] = Field(default_factory=dict)
    consolidation: ConsolidationPolicy = ConsolidationPolicy.LAST_ACTION
    consolidation_action_id: str = ""
    synthesizer_position_id: str = ""


class Phase(DocumentModel):
    id: str
    name: str = ""
    description: str = ""
    icon: str = ""
    teams: list[str] = Field(default_factory=list)
    threads: PhaseThreads = Field(default_factory=PhaseThreads)
    context: PhaseContextSelection = Field(default_factory=PhaseContextSelection)
    actions: list[Action] = Field(default_factory=list)
    output: PhaseOutputConfig = Field(default_factory=PhaseOutputConfig)
    gavel: GavelConfig = Field(default_factory=GavelConfig)
    constants: dict[str, Any] = Field(default_factory=dict)
    variables: dict[str, Any] = Field(default_factory=dict)
    display_order: int | None = None

    @model_validator(mode="after")
    def _fill_defaults(self) -> Phase:
        if not self.name:
            self.name = self.id
        for index, action in enumerate(self.actions):
            if action.display_order is None:
                action.display_order = index
        return self

    def get_action(self, action_id: str) -> Action | None:
        return next((a for a in self.actions if a.id == action_id), None)


class Pipeline(DocumentModel):
    id: str
    name: str = ""
    description: str = ""
    version: str = "1.0.0"
    static_context: StaticContextFlags = Field(default_factory=StaticContextFlags)
    globals: PipelineGlobals = Field(default_factory=PipelineGlobals)
    constants: dict[str, Any] = Field(default_factory=dict)
    phases: list[Phase] = Field(default_factory=list)
    metadata: PipelineMetadata = Field(default_factory=PipelineMetadata)

    @model_validator(mode="after")
    def _fill_defaults(self) -> Pipeline:
        if not self.name:
            self.name = self.id
        for index, phase in enumerate(self.phases):
            if phase.display_order is None:
                phase.display_order = index
        return self

    def get_phase(self, phase_id: str) -> Phase | None:
        return next((p for p in self.phases if p.id == phase_id), None)

    def to_document(self) -> dict[str, Any]:
        """Return the camelCase JSON-compatible document form."""
        return self.model_dump(mode="json", by_alias=True)


def normalize_pipeline(raw: dict[str, Any] | Pipeline) -> Pipeline:
    """Fill every default of a pipeline document."""
    if isinstance(raw, Pipeline):
        raw = raw.model_dump(by_alias=True)
    return Pipeline.model_validate(raw)


def normalize_phase(raw: dict[str, Any], index: int | None = None) -> Phase:
    phase = Phase.model_validate(raw)
    if index is not None and raw.get("displayOrder") is None and raw.get("display_order") is None:
        phase.display_order = index
    return phase


def normalize_action(raw: dict[str, Any], index: int | None = None) -> Action:
    action = Action.model_validate(raw)
    if index is not None and raw.get("displayOrder") is None and raw.get("display_order") is None:
        action.display_order = index
    return action
