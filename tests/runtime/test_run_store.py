"""Unit tests for LocalRunStore.

Uses a temporary directory; nothing else is required.
"""

from __future__ import annotations

import pytest

from councilflow.runtime.store import LocalRunStore, RunStore


def _make_run(run_id: str, started_at: str, status: str = "completed") -> dict:
    return {
        "id": run_id,
        "pipeline_id": "story",
        "status": status,
        "started_at": started_at,
        "ended_at": None,
        "error": None,
        "final_output": f"output of {run_id}",
    }


@pytest.fixture
def store(tmp_path) -> LocalRunStore:
    return LocalRunStore(tmp_path)


def test_satisfies_protocol(store: LocalRunStore) -> None:
    assert isinstance(store, RunStore)


async def test_write_and_read_run(store: LocalRunStore) -> None:
    await store.write_run(_make_run("run_1", "2024-01-01T10:00:00"))

    result = await store.read_run("run_1")
    assert result["final_output"] == "output of run_1"
    assert (store.base / "runs" / "run_1.json").exists()


async def test_read_run_not_found(store: LocalRunStore) -> None:
    with pytest.raises(FileNotFoundError):
        await store.read_run("run_missing")


async def test_list_runs_newest_first(store: LocalRunStore) -> None:
    assert await store.list_runs() == []

    await store.write_run(_make_run("run_a", "2024-01-01T10:00:00"))
    await store.write_run(_make_run("run_c", "2024-01-03T10:00:00", status="error"))
    await store.write_run(_make_run("run_b", "2024-01-02T10:00:00"))

    summaries = await store.list_runs()
    assert [s["id"] for s in summaries] == ["run_c", "run_b", "run_a"]
    assert summaries[0] == {
        "id": "run_c",
        "pipelineId": "story",
        "status": "error",
        "startedAt": "2024-01-03T10:00:00",
        "endedAt": None,
        "error": None,
    }


async def test_overwrite_run(store: LocalRunStore) -> None:
    await store.write_run(_make_run("run_1", "2024-01-01T10:00:00", status="running"))
    await store.write_run(_make_run("run_1", "2024-01-01T10:00:00"))
    assert (await store.read_run("run_1"))["status"] == "completed"
    assert list((store.base / "runs").glob("*.tmp")) == []


async def test_pipelines(store: LocalRunStore) -> None:
    assert await store.list_pipelines() == []

    await store.write_pipeline({"id": "story", "name": "Story"})
    await store.write_pipeline({"id": "lore", "name": "Lore"})

    assert await store.list_pipelines() == ["lore", "story"]
    assert (await store.read_pipeline("story"))["name"] == "Story"

    await store.delete_pipeline("story")
    assert await store.list_pipelines() == ["lore"]

    # Deleting a missing pipeline is a no-op.
    await store.delete_pipeline("story")


@pytest.mark.parametrize("unsafe", ["../escape", "a/b", "", "has space"])
async def test_unsafe_ids_are_rejected(store: LocalRunStore, unsafe: str) -> None:
    with pytest.raises(ValueError, match="Unsafe storage id"):
        await store.read_run(unsafe)
    with pytest.raises(ValueError, match="Unsafe storage id"):
        await store.write_pipeline({"id": unsafe})


async def test_prefix_creates_namespaced_path(tmp_path) -> None:
    store = LocalRunStore(tmp_path, prefix="alice")
    await store.write_run(_make_run("run_1", "2024-01-01T10:00:00"))

    assert (tmp_path / "alice" / "runs" / "run_1.json").exists()


async def test_different_prefixes_isolated(tmp_path) -> None:
    store_a = LocalRunStore(tmp_path, prefix="alice")
    store_b = LocalRunStore(tmp_path, prefix="bob")

    await store_a.write_pipeline({"id": "story", "owner": "alice"})
    await store_b.write_pipeline({"id": "story", "owner": "bob"})

    assert (await store_a.read_pipeline("story"))["owner"] == "alice"
    assert (await store_b.read_pipeline("story"))["owner"] == "bob"

    await store_a.delete_pipeline("story")
    assert await store_a.list_pipelines() == []
    assert await store_b.list_pipelines() == ["story"]
