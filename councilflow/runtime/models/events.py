"""Event envelope published on the engine's event bus."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class PipelineEvent(BaseModel):
    """Envelope delivered to every event listener."""

    event_id: str = Field(default_factory=lambda: uuid4().hex)
    event_type: str
    run_id: str | None = None
    timestamp: datetime = Field(default_factory=datetime.now)
    payload: dict[str, Any] = Field(default_factory=dict)
