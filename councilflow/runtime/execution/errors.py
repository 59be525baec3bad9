"""Execution error taxonomy.

``RunAbortedError``, every ``ConfigurationError`` and ``GavelTimeoutError``
are terminal: the retry loop re-raises them without another attempt.
"""

from __future__ import annotations


class RunInProgressError(RuntimeError):
    """Raised when starting a run while another is active."""

    def __init__(self) -> None:
        super().__init__("A pipeline run is already in progress")


class NoActiveRunError(RuntimeError):
    def __init__(self, operation: str) -> None:
        super().__init__(f"No active run to {operation}")


class RunAbortedError(RuntimeError):
    """Abort sentinel; bypasses retry and ends the run."""

    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason
        super().__init__("Pipeline run aborted")


class ActionTimeoutError(TimeoutError):
    def __init__(self, action_name: str, timeout_ms: int) -> None:
        self.action_name = action_name
        self.timeout_ms = timeout_ms
        super().__init__(f'Action "{action_name}" timed out after {timeout_ms}ms')


class TriggerTimeoutError(TimeoutError):
    """Raised when an await/on trigger target never reaches its state in time."""

    def __init__(self, target_action_id: str, target_state: str) -> None:
        self.target_action_id = target_action_id
        self.target_state = target_state
        super().__init__(f'Timeout waiting for action "{target_action_id}" to reach "{target_state}"')


class ConfigurationError(RuntimeError):
    """Base for missing collaborators and unusable action configuration."""


class CollaboratorUnavailableError(ConfigurationError):
    def __init__(self, collaborator: str, purpose: str) -> None:
        self.collaborator = collaborator
        super().__init__(f"{collaborator} not available for {purpose}")


class ActionConfigError(ConfigurationError):
    """Raised when a type-specific action config lacks a required field."""


class GavelTimeoutError(TimeoutError):
    def __init__(self) -> None:
        super().__init__("User gavel timed out")


class GavelNotFoundError(LookupError):
    def __init__(self, gavel_id: str) -> None:
        self.gavel_id = gavel_id
        super().__init__(f"No active gavel with ID: {gavel_id}")


NON_RETRYABLE: tuple[type[BaseException], ...] = (RunAbortedError, ConfigurationError, GavelTimeoutError)
