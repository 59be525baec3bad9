"""In-process pipeline registry.

Holds normalized pipeline documents keyed by id.  Registration validates the
raw document first and never stores an unvalidated one; normalization fills
every default so runs can read any field without presence checks.

Registered pipelines are shared and read-only during execution.  A run copies
the globals it mutates.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from loguru import logger
from pydantic import ValidationError

from councilflow.runtime.models.enums import ActionType, ConsolidationPolicy, TriggerType
from councilflow.runtime.models.pipeline import Pipeline, normalize_pipeline

PIPELINE_ID = re.compile(r"^[A-Za-z0-9_-]+$")
EXPORT_VERSION = "1.0.0"

_ACTION_TYPES = {t.value for t in ActionType}
_PARTICIPANT_EXEMPT = {ActionType.SYSTEM.value, ActionType.USER_GAVEL.value}


class PipelineValidationError(ValueError):
    """Raised when a pipeline document fails validation."""

    def __init__(self, errors: list[str], warnings: list[str] | None = None) -> None:
        self.errors = errors
        self.warnings = warnings or []
        super().__init__("Invalid pipeline: " + "; ".join(errors))


class PipelineNotFoundError(LookupError):
    """Raised when a pipeline id is not registered."""

    def __init__(self, pipeline_id: str) -> None:
        self.pipeline_id = pipeline_id
        super().__init__(f'Pipeline "{pipeline_id}" not found')


@dataclass
class ValidationReport:
    valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def error(self, message: str) -> None:
        self.errors.append(message)
        self.valid = False

    def warn(self, message: str) -> None:
        self.warnings.append(message)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _get(raw: dict[str, Any], camel: str, snake: str | None = None, default: Any = None) -> Any:
    if camel in raw:
        return raw[camel]
    if snake and snake in raw:
        return raw[snake]
    return default


def validate_pipeline(raw: dict[str, Any] | Pipeline) -> ValidationReport:
    """Check a raw pipeline document for structural errors.

    Parameters
    ----------
    raw:
        Pipeline document (camelCase or snake_case keys) or a ``Pipeline``.

    Returns
    -------
    ValidationReport
        ``valid`` is False when any error was found.  Warnings never make a
        document invalid.
    """
    if isinstance(raw, Pipeline):
        raw = raw.to_document()

    report = ValidationReport()
    if not isinstance(raw, dict):
        report.error("Pipeline must be an object")
        return report

    pipeline_id = raw.get("id")
    if not pipeline_id:
        report.error("Pipeline requires an id")
    elif not isinstance(pipeline_id, str):
        report.error("Pipeline id must be a string")
    elif not PIPELINE_ID.match(pipeline_id):
        report.error(f'Pipeline id "{pipeline_id}" may only contain letters, digits, "_" and "-"')

    if not raw.get("name"):
        report.warn("Pipeline has no name; the id will be used")

    phases = raw.get("phases") or []
    if not isinstance(phases, list):
        report.error("Pipeline phases must be a list")
        return report
    if not phases:
        report.warn("Pipeline has no phases")

    seen_phases: set[str] = set()
    for index, phase in enumerate(phases):
        if not isinstance(phase, dict):
            report.error(f"Phase {index} must be an object")
            continue
        phase_id = phase.get("id")
        if not phase_id:
            report.error(f"Phase {index} requires an id")
            continue
        if phase_id in seen_phases:
            report.error(f'Duplicate phase id "{phase_id}"')
        seen_phases.add(phase_id)
        _validate_phase(phase, report)

    return report


def _validate_phase(phase: dict[str, Any], report: ValidationReport) -> None:
    phase_id = phase["id"]
    actions = phase.get("actions") or []
    seen: set[str] = set()
    triggers: list[tuple[str, str]] = []

    for index, action in enumerate(actions):
        if not isinstance(action, dict):
            report.error(f'Phase "{phase_id}" action {index} must be an object')
            continue
        action_id = action.get("id")
        if not action_id:
            report.error(f'Phase "{phase_id}" action {index} requires an id')
            continue
        if action_id in seen:
            report.error(f'Duplicate action id "{action_id}" in phase "{phase_id}"')
        seen.add(action_id)

        action_type = _get(action, "actionType", "action_type", ActionType.STANDARD.value)
        if action_type not in _ACTION_TYPES:
            report.error(f'Action "{action_id}" has unknown actionType "{action_type}"')
            continue

        if action_type == ActionType.STANDARD.value and not _has_participants(action):
            report.warn(f'Action "{action_id}" has no participants')

        trigger = (_get(action, "execution", default={}) or {}).get("trigger") or {}
        if trigger.get("type") in (TriggerType.AWAIT.value, TriggerType.ON.value):
            triggers.append((action_id, _get(trigger, "targetActionId", "target_action_id", "")))

    for action_id, target in triggers:
        if target not in seen:
            report.warn(f'Action "{action_id}" waits on unknown action "{target}"')

    output = phase.get("output") or {}
    if output.get("consolidation") == ConsolidationPolicy.DESIGNATED.value:
        designated = _get(output, "consolidationActionId", "consolidation_action_id", "")
        if designated not in seen:
            report.warn(f'Phase "{phase_id}" designates unknown action "{designated}"')


def _has_participants(action: dict[str, Any]) -> bool:
    participants = action.get("participants") or {}
    dynamic = participants.get("dynamic") or {}
    characters = participants.get("characters") or {}
    return bool(
        _get(participants, "positionIds", "position_ids")
        or _get(participants, "teamIds", "team_ids")
        or dynamic.get("enabled")
        or characters.get("enabled")
    )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class PipelineRegistry:
    """Normalized pipeline documents keyed by id."""

    def __init__(self) -> None:
        self._pipelines: dict[str, Pipeline] = {}

    # -- Mutation --------------------------------------------------------------

    def register(self, raw: dict[str, Any] | Pipeline, *, overwrite: bool = True) -> Pipeline:
        """Validate, normalize and store a pipeline.

        Raises ``PipelineValidationError`` on validation errors, or when the
        id exists and *overwrite* is False.
        """
        report = validate_pipeline(raw)
        if not report.valid:
            raise PipelineValidationError(report.errors, report.warnings)
        for warning in report.warnings:
            logger.warning("Pipeline {}: {}", _raw_id(raw), warning)

        try:
            pipeline = normalize_pipeline(raw)
        except ValidationError as exc:
            raise PipelineValidationError([str(err["msg"]) for err in exc.errors()]) from exc

        existing = self._pipelines.get(pipeline.id)
        if existing is not None:
            if not overwrite:
                raise PipelineValidationError([f'Pipeline "{pipeline.id}" already registered'])
            pipeline.metadata.created_at = existing.metadata.created_at
            pipeline.metadata.updated_at = datetime.now(tz=UTC).isoformat()

        self._pipelines[pipeline.id] = pipeline
        logger.info("Pipeline registered: {} ({})", pipeline.name, pipeline.id)
        return pipeline

    def delete(self, pipeline_id: str) -> bool:
        if self._pipelines.pop(pipeline_id, None) is None:
            return False
        logger.info("Pipeline deleted: {}", pipeline_id)
        return True

    def clear(self) -> None:
        self._pipelines.clear()

    # -- Query -----------------------------------------------------------------

    def get(self, pipeline_id: str) -> Pipeline:
        """Return a registered pipeline.  Raises ``PipelineNotFoundError``."""
        try:
            return self._pipelines[pipeline_id]
        except KeyError:
            raise PipelineNotFoundError(pipeline_id) from None

    def has(self, pipeline_id: str) -> bool:
        return pipeline_id in self._pipelines

    def list(self) -> list[dict[str, Any]]:
        """Summaries of all registered pipelines in registration order."""
        return [
            {
                "id": p.id,
                "name": p.name,
                "description": p.description,
                "version": p.version,
                "phaseCount": len(p.phases),
                "actionCount": sum(len(phase.actions) for phase in p.phases),
                "updatedAt": p.metadata.updated_at,
            }
            for p in self._pipelines.values()
        ]

    def __len__(self) -> int:
        return len(self._pipelines)

    # -- Import / export -------------------------------------------------------

    def export(self, ids: list[str] | None = None) -> dict[str, Any]:
        """Return a JSON-ready bundle of pipelines (all when *ids* is None)."""
        selected = [self.get(pid) for pid in ids] if ids is not None else list(self._pipelines.values())
        return {
            "version": EXPORT_VERSION,
            "exportedAt": datetime.now(tz=UTC).isoformat(),
            "pipelines": [p.to_document() for p in selected],
        }

    def import_pipelines(self, data: dict[str, Any], *, overwrite: bool = False) -> dict[str, list[str]]:
        """Register every pipeline in an export bundle.

        Existing ids are skipped unless *overwrite* is set.  Invalid documents
        are reported under ``errors`` and do not stop the import.
        """
        if not isinstance(data, dict) or not isinstance(data.get("pipelines"), list):
            raise PipelineValidationError(["Invalid import data: missing pipelines list"])

        result: dict[str, list[str]] = {"imported": [], "skipped": [], "errors": []}
        for raw in data["pipelines"]:
            pipeline_id = _raw_id(raw)
            if pipeline_id in self._pipelines and not overwrite:
                result["skipped"].append(pipeline_id)
                continue
            try:
                self.register(raw)
            except PipelineValidationError as exc:
                logger.warning("Import of pipeline {} failed: {}", pipeline_id, exc)
                result["errors"].append(f"{pipeline_id}: {exc}")
                continue
            result["imported"].append(pipeline_id)

        logger.info(
            "Imported {} pipelines ({} skipped, {} failed)",
            len(result["imported"]),
            len(result["skipped"]),
            len(result["errors"]),
        )
        return result


def _raw_id(raw: Any) -> str:
    if isinstance(raw, Pipeline):
        return raw.id
    if isinstance(raw, dict):
        return str(raw.get("id", "<unknown>"))
    return "<unknown>"
