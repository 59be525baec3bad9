"""In-process event bus.

Listeners are best-effort observers: each callback runs inside its own
try/except so a failing listener is logged and never interrupts emission to
the rest, nor the run that emitted the event.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from councilflow.runtime.models.events import PipelineEvent

Listener = Callable[[PipelineEvent], None | Awaitable[None]]

WILDCARD = "*"


class EventBus:
    """Publish/subscribe channel keyed by event name."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    # -- Subscription ----------------------------------------------------------

    def on(self, event: str, callback: Listener) -> Callable[[], None]:
        """Subscribe *callback* to *event* (``"*"`` for all).  Returns an unsubscribe function."""
        self._listeners.setdefault(str(event), []).append(callback)
        return lambda: self.off(event, callback)

    def off(self, event: str, callback: Listener) -> None:
        listeners = self._listeners.get(str(event))
        if listeners and callback in listeners:
            listeners.remove(callback)

    def once(self, event: str, callback: Listener) -> Callable[[], None]:
        """Subscribe for a single delivery."""

        async def _wrapper(evt: PipelineEvent) -> None:
            self.off(event, _wrapper)
            result = callback(evt)
            if inspect.isawaitable(result):
                await result

        return self.on(event, _wrapper)

    def listener_count(self, event: str | None = None) -> int:
        if event is None:
            return sum(len(v) for v in self._listeners.values())
        return len(self._listeners.get(str(event), []))

    def clear(self) -> None:
        self._listeners.clear()

    # -- Emission --------------------------------------------------------------

    async def emit(self, event: str, run_id: str | None = None, **payload: Any) -> PipelineEvent:
        """Deliver an event to its listeners and to wildcard listeners."""
        envelope = PipelineEvent(event_type=str(event), run_id=run_id, payload=payload)
        targets = list(self._listeners.get(str(event), []))
        if event != WILDCARD:
            targets.extend(self._listeners.get(WILDCARD, []))
        for callback in targets:
            try:
                result = callback(envelope)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Event listener failed for {}", event)
        return envelope
