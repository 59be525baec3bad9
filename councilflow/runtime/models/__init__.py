"""Data models for the pipeline runtime."""

from councilflow.runtime.models.directory import (
    CHARACTER_DIRECTOR_ID,
    PUBLISHER_POSITION_ID,
    Agent,
    AgentPool,
    Position,
    PromptModifiers,
    Team,
)
from councilflow.runtime.models.enums import (
    ActionLifecycle,
    ActionType,
    CharacterMode,
    ConsolidationPolicy,
    CrudOperation,
    DeliberationConsolidation,
    EventType,
    ExecutionMode,
    InputSource,
    OrchestrationStrategy,
    OutputTarget,
    ParticipantOrchestration,
    PhaseLifecycle,
    PoolSelection,
    PositionTier,
    RunStatus,
    TriggerType,
    WorkshopMode,
)
from councilflow.runtime.models.events import PipelineEvent
from councilflow.runtime.models.pipeline import (
    Action,
    CharacterWorkshopConfig,
    CrudConfig,
    DeliberativeConfig,
    GavelConfig,
    OutputConfig,
    Phase,
    Pipeline,
    RagConfig,
    normalize_action,
    normalize_phase,
    normalize_pipeline,
)

__all__ = [
    # Directory
    "CHARACTER_DIRECTOR_ID",
    "PUBLISHER_POSITION_ID",
    # Pipeline
    "Action",
    "ActionLifecycle",
    "ActionType",
    "Agent",
    "AgentPool",
    "CharacterMode",
    "CharacterWorkshopConfig",
    "ConsolidationPolicy",
    "CrudConfig",
    "CrudOperation",
    "DeliberationConsolidation",
    "DeliberativeConfig",
    "EventType",
    "ExecutionMode",
    "GavelConfig",
    "InputSource",
    "OrchestrationStrategy",
    "OutputConfig",
    "OutputTarget",
    "ParticipantOrchestration",
    "Phase",
    "PhaseLifecycle",
    "Pipeline",
    # Events
    "PipelineEvent",
    "PoolSelection",
    "Position",
    "PositionTier",
    "PromptModifiers",
    "RagConfig",
    "RunStatus",
    "Team",
    "TriggerType",
    "WorkshopMode",
    "normalize_action",
    "normalize_phase",
    "normalize_pipeline",
]
