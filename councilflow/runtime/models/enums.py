"""Shared enumerations used across the pipeline runtime."""

from __future__ import annotations

from enum import StrEnum

# -- Run ---------------------------------------------------------------------


class RunStatus(StrEnum):
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


class OrchestrationStrategy(StrEnum):
    """How the final run output is delivered to the host application."""

    SYNTHESIS = "synthesis"
    COMPILATION = "compilation"
    INJECTION = "injection"


# -- Lifecycles --------------------------------------------------------------


class PhaseLifecycle(StrEnum):
    START = "start"
    BEFORE_ACTIONS = "before_actions"
    IN_PROGRESS = "in_progress"
    AFTER_ACTIONS = "after_actions"
    RESPOND = "respond"
    END = "end"


class ActionLifecycle(StrEnum):
    """Action lifecycle states, declared in their total order."""

    CALLED = "called"
    START = "start"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    RESPOND = "respond"

    @property
    def rank(self) -> int:
        return _ACTION_ORDER.index(self)

    def reached(self, target: ActionLifecycle) -> bool:
        """Return True when this state is at or past *target*."""
        return self.rank >= target.rank


_ACTION_ORDER = list(ActionLifecycle)


# -- Action configuration ----------------------------------------------------


class ActionType(StrEnum):
    STANDARD = "standard"
    CRUD_PIPELINE = "crud_pipeline"
    RAG_PIPELINE = "rag_pipeline"
    DELIBERATIVE_RAG = "deliberative_rag"
    USER_GAVEL = "user_gavel"
    SYSTEM = "system"
    CHARACTER_WORKSHOP = "character_workshop"


class ExecutionMode(StrEnum):
    SYNC = "sync"
    ASYNC = "async"


class TriggerType(StrEnum):
    SEQUENTIAL = "sequential"
    AWAIT = "await"
    ON = "on"
    IMMEDIATE = "immediate"


class ParticipantOrchestration(StrEnum):
    """Fan-out strategy for the participants of a standard action."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    ROUND_ROBIN = "round_robin"
    CONSENSUS = "consensus"


class InputSource(StrEnum):
    PHASE_INPUT = "phaseInput"
    PREVIOUS_ACTION = "previousAction"
    GLOBAL = "global"
    STORE = "store"
    CUSTOM = "custom"


class OutputTarget(StrEnum):
    PHASE_OUTPUT = "phaseOutput"
    TEAM_OUTPUT = "teamOutput"
    GLOBAL = "global"
    STORE = "store"
    NEXT_ACTION = "nextAction"
    THREAD = "thread"


class ConsolidationPolicy(StrEnum):
    LAST_ACTION = "last_action"
    FIRST_ACTION = "first_action"
    MERGE = "merge"
    DESIGNATED = "designated"
    SYNTHESIZE = "synthesize"
    USER_GAVEL = "user_gavel"


class CrudOperation(StrEnum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


class CharacterMode(StrEnum):
    """How character-system participants are chosen for an action."""

    EXPLICIT = "explicit"
    SPAWNED = "spawned"
    TYPE = "type"
    DYNAMIC = "dynamic"


class WorkshopMode(StrEnum):
    REFINEMENT = "refinement"
    CONSISTENCY = "consistency"
    COLLABORATION = "collaboration"


class DeliberationConsolidation(StrEnum):
    SYNTHESIZE = "synthesize"
    RAW = "raw"


# -- Directory ---------------------------------------------------------------


class PositionTier(StrEnum):
    EXECUTIVE = "executive"
    LEADER = "leader"
    MEMBER = "member"


class PoolSelection(StrEnum):
    RANDOM = "random"
    ROUND_ROBIN = "round_robin"
    WEIGHTED = "weighted"


# -- Events ------------------------------------------------------------------


class EventType(StrEnum):
    """Event names published on the engine's event bus."""

    # Registry
    PIPELINE_REGISTERED = "pipeline:registered"
    PIPELINE_DELETED = "pipeline:deleted"

    # Run
    RUN_STARTED = "run:started"
    RUN_COMPLETED = "run:completed"
    RUN_ERROR = "run:error"
    RUN_ABORTED = "run:aborted"
    RUN_PAUSED = "run:paused"
    RUN_RESUMED = "run:resumed"
    PROGRESS = "progress"

    # Phase
    PHASE_LIFECYCLE = "phase:lifecycle"
    PHASE_ERROR = "phase:error"

    # Action
    ACTION_LIFECYCLE = "action:lifecycle"
    ACTION_RETRY = "action:retry"
    ACTION_ERROR = "action:error"
    CRUD_COMPLETE = "action:crud:complete"
    RAG_COMPLETE = "action:rag:complete"
    DELIBERATION_ROUND = "deliberation:round"
    WORKSHOP_COMPLETE = "workshop:complete"

    # Gavel
    GAVEL_REQUESTED = "gavel:requested"
    GAVEL_RESOLVED = "gavel:resolved"
