"""Run/pipeline store interface.

Finished runs are written once as JSON snapshots (``RunState.to_dict()``);
pipeline documents are written whenever they are registered through the
CLI.  The interface is async so remote backends can implement it.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class RunStore(Protocol):
    """Async protocol for persisting run snapshots and pipeline documents.

    Storage layout::

        {root}/runs/{run_id}.json
        {root}/pipelines/{pipeline_id}.json
    """

    async def write_run(self, run: dict[str, Any]) -> None:
        """Write a finished run snapshot (keyed by ``run["id"]``)."""
        ...

    async def read_run(self, run_id: str) -> dict[str, Any]:
        """Read a run snapshot.  Raises ``FileNotFoundError`` if not found."""
        ...

    async def list_runs(self) -> list[dict[str, Any]]:
        """Return run summaries, newest first."""
        ...

    async def write_pipeline(self, document: dict[str, Any]) -> None: ...

    async def read_pipeline(self, pipeline_id: str) -> dict[str, Any]:
        """Read a pipeline document.  Raises ``FileNotFoundError`` if not found."""
        ...

    async def list_pipelines(self) -> list[str]: ...

    async def delete_pipeline(self, pipeline_id: str) -> None:
        """Delete a stored pipeline.  No-op if not found."""
        ...
