"""Collaborator bundle shared by the execution components."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from councilflow.runtime.events import EventBus
from councilflow.runtime.settings import CouncilSettings, get_settings
from councilflow.runtime.templating.resolver import TemplateResolver

if TYPE_CHECKING:
    from councilflow.runtime.collaborators.base import (
        AgentDirectory,
        CharacterDirectory,
        CurationStore,
        LLMClient,
        ThreadLog,
    )
    from councilflow.runtime.context import RunState
    from councilflow.runtime.models.directory import Agent

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything an action handler may call out to.

    All collaborators are optional.  Handlers that need one raise
    ``CollaboratorUnavailableError`` when it is missing.
    """

    settings: CouncilSettings = field(default_factory=get_settings)
    resolver: TemplateResolver | None = None
    events: EventBus = field(default_factory=EventBus)
    directory: AgentDirectory | None = None
    characters: CharacterDirectory | None = None
    curation: CurationStore | None = None
    llm: LLMClient | None = None
    threads: ThreadLog | None = None

    def __post_init__(self) -> None:
        if self.resolver is None:
            self.resolver = TemplateResolver(
                preserve_unresolved=self.settings.preserve_unresolved,
                placeholder=self.settings.unresolved_placeholder,
            )

    async def emit(self, event: str, run: RunState | None = None, **payload: Any) -> None:
        await self.events.emit(event, run_id=run.id if run else None, **payload)

    async def call_agent(
        self, agent: Agent, prompt: str, *, system_prompt: str | None = None, timeout: float | None = None
    ) -> str:
        """Send *prompt* to *agent* through the LLM collaborator.

        Without an LLM client this returns a placeholder rather than failing,
        so pipelines can be dry-run.
        """
        if self.llm is None:
            logger.warning("LLM client not available, returning placeholder for %s", agent.display_name)
            return f"[{agent.display_name}]: (API unavailable)"
        return await self.llm.generate(prompt, agent=agent, system_prompt=system_prompt, timeout=timeout)

    async def log_message(self, thread_id: str | None, role: str, content: str) -> None:
        if self.threads is None or not thread_id:
            return
        await self.threads.add_message(thread_id, role, content)

    async def open_thread(self, name: str, type: str, enabled: bool = True) -> str | None:
        if self.threads is None or not enabled:
            return None
        return await self.threads.create_thread(name, type)
