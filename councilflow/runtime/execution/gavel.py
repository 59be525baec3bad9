"""Human-review gates.

A gavel is a pending decision the host resolves with ``approve`` or
``reject``.  Only one gavel is open at a time: a run is sequential at the
phase level and ``user_gavel`` actions block their phase until resolved.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from councilflow.runtime.execution.errors import GavelNotFoundError, RunAbortedError
from councilflow.runtime.models.enums import EventType

if TYPE_CHECKING:
    from councilflow.runtime.context import GavelRequest, RunState
    from councilflow.runtime.execution.services import Services

logger = logging.getLogger(__name__)


class GavelBroker:
    def __init__(self, services: Services) -> None:
        self.services = services
        self._active: GavelRequest | None = None
        self._run: RunState | None = None

    @property
    def active(self) -> GavelRequest | None:
        return self._active

    async def request(self, run: RunState, gavel: GavelRequest, *, timeout: float | None = None) -> dict[str, Any]:
        """Open *gavel* and wait for the host's decision.

        Returns the response dict ``{approved, skipped, output, modifications, reason}``.

        Raises
        ------
        TimeoutError
            *timeout* seconds elapsed with no decision.  The caller decides
            whether that is a skip or a failure.
        """
        loop = asyncio.get_running_loop()
        gavel.future = loop.create_future()
        self._active = gavel
        self._run = run
        logger.info("Gavel %s requested for phase %s", gavel.id, gavel.phase_id)
        await self.services.emit(EventType.GAVEL_REQUESTED, run, gavel=gavel.to_dict())
        try:
            async with asyncio.timeout(timeout):
                return await gavel.future
        finally:
            if self._active is gavel:
                self._active = None

    async def approve(self, gavel_id: str, modifications: dict[str, Any] | None = None) -> None:
        gavel = self._take(gavel_id)
        output = gavel.current_output
        if modifications and "output" in modifications:
            output = modifications["output"]
        response = {
            "approved": True,
            "skipped": False,
            "output": output,
            "modifications": modifications or {},
            "reason": None,
        }
        await self._resolve(gavel, response)

    async def reject(self, gavel_id: str, reason: str | None = None) -> None:
        gavel = self._take(gavel_id)
        response = {
            "approved": False,
            "skipped": True,
            "output": gavel.current_output,
            "modifications": {},
            "reason": reason,
        }
        await self._resolve(gavel, response)

    def abort(self, reason: str | None = None) -> None:
        """Fail the open gavel with the abort sentinel."""
        gavel, self._active = self._active, None
        if gavel is not None and gavel.future is not None and not gavel.future.done():
            gavel.future.set_exception(RunAbortedError(reason))

    def _take(self, gavel_id: str) -> GavelRequest:
        gavel = self._active
        if gavel is None or gavel.id != gavel_id or gavel.future is None or gavel.future.done():
            raise GavelNotFoundError(gavel_id)
        self._active = None
        return gavel

    async def _resolve(self, gavel: GavelRequest, response: dict[str, Any]) -> None:
        gavel.future.set_result(response)
        logger.info("Gavel %s resolved (approved=%s)", gavel.id, response["approved"])
        await self.services.emit(
            EventType.GAVEL_RESOLVED,
            self._run,
            gavelId=gavel.id,
            phaseId=gavel.phase_id,
            actionId=gavel.action_id,
            approved=response["approved"],
            reason=response["reason"],
        )
