"""Local filesystem run store.

Stores run snapshots and pipeline documents as JSON files under a unified
data root with optional namespace prefix::

    {data_root}/{prefix}/runs/{run_id}.json
    {data_root}/{prefix}/pipelines/{pipeline_id}.json

When prefix is None, the path collapses to ``{data_root}/runs/...``.

Uses ``anyio.to_thread.run_sync`` for non-blocking file I/O.  Writes are
atomic: data is written to a temporary file in the same directory, then
renamed to the target path.
"""

from __future__ import annotations

import contextlib
import json
import os
import tempfile
from functools import partial
from pathlib import Path
from typing import Any

from anyio import to_thread
from loguru import logger

_SAFE_ID = frozenset("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_-")


class LocalRunStore:
    """Local filesystem implementation of the RunStore protocol."""

    def __init__(self, data_root: str | Path, prefix: str | None = None) -> None:
        base = Path(data_root)
        if prefix:
            base = base / prefix
        self._base = base
        self._runs = base / "runs"
        self._pipelines = base / "pipelines"

    @property
    def base(self) -> Path:
        return self._base

    # -- Runs ------------------------------------------------------------------

    async def write_run(self, run: dict[str, Any]) -> None:
        path = self._runs / f"{_check_id(run['id'])}.json"
        data = json.dumps(run, indent=2, ensure_ascii=False, default=str)
        await to_thread.run_sync(partial(_atomic_write, path, data))
        logger.debug("Stored run {} at {}", run["id"], path)

    async def read_run(self, run_id: str) -> dict[str, Any]:
        raw = await to_thread.run_sync(partial(_read_file, self._runs / f"{_check_id(run_id)}.json"))
        return json.loads(raw)

    async def list_runs(self) -> list[dict[str, Any]]:
        runs = await to_thread.run_sync(partial(_read_all, self._runs))
        summaries = [
            {
                "id": run.get("id"),
                "pipelineId": run.get("pipeline_id"),
                "status": run.get("status"),
                "startedAt": run.get("started_at"),
                "endedAt": run.get("ended_at"),
                "error": run.get("error"),
            }
            for run in runs
        ]
        summaries.sort(key=lambda s: s["startedAt"] or "", reverse=True)
        return summaries

    # -- Pipelines -------------------------------------------------------------

    async def write_pipeline(self, document: dict[str, Any]) -> None:
        path = self._pipelines / f"{_check_id(document['id'])}.json"
        data = json.dumps(document, indent=2, ensure_ascii=False)
        await to_thread.run_sync(partial(_atomic_write, path, data))

    async def read_pipeline(self, pipeline_id: str) -> dict[str, Any]:
        raw = await to_thread.run_sync(partial(_read_file, self._pipelines / f"{_check_id(pipeline_id)}.json"))
        return json.loads(raw)

    async def list_pipelines(self) -> list[str]:
        return await to_thread.run_sync(partial(_list_stems, self._pipelines))

    async def delete_pipeline(self, pipeline_id: str) -> None:
        path = self._pipelines / f"{_check_id(pipeline_id)}.json"
        await to_thread.run_sync(partial(_unlink, path))


def _check_id(value: str) -> str:
    if not value or not set(value) <= _SAFE_ID:
        raise ValueError(f"Unsafe storage id: {value!r}")
    return value


# -- Sync helpers (run in thread pool) -----------------------------------------


def _atomic_write(path: Path, data: str) -> None:
    """Write data atomically: temp file + rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise


def _read_file(path: Path) -> str:
    """Read file contents.  Raises ``FileNotFoundError`` if missing."""
    return path.read_text(encoding="utf-8")


def _read_all(directory: Path) -> list[dict[str, Any]]:
    if not directory.exists():
        return []
    return [json.loads(p.read_text(encoding="utf-8")) for p in sorted(directory.glob("*.json"))]


def _list_stems(directory: Path) -> list[str]:
    if not directory.exists():
        return []
    return sorted(p.stem for p in directory.glob("*.json"))


def _unlink(path: Path) -> None:
    """Remove a file.  No-op if it doesn't exist."""
    path.unlink(missing_ok=True)
