from __future__ import annotations

import pytest

from conftest import START_TS
from variations.pipeline.errors import RegistryError
from variations.pipeline.models import GenerationTask, TaskStatus
from variations.pipeline.registry import GenerationRegistry


def _task(key: str, status: TaskStatus = TaskStatus.GENERATING) -> GenerationTask:
    return GenerationTask(slot_id=key, status=status, prompt="p")


def test_insert_many_is_atomic_and_single_batch() -> None:
    registry = GenerationRegistry()
    registry.insert_many([_task(f"variation-{START_TS}-{i}") for i in range(4)])
    assert len(registry) == 4

    with pytest.raises(RegistryError):
        registry.insert_many([_task(f"variation-{START_TS + 1}-0"), _task(f"variation-{START_TS + 2}-0")])
    assert len(registry) == 4

    with pytest.raises(RegistryError):
        registry.insert_many([_task("not-a-slot")])


def test_snapshot_is_stable_across_writes() -> None:
    registry = GenerationRegistry()
    registry.insert_many([_task(f"variation-{START_TS}-0")])
    snap = registry.snapshot()

    registry.delete(f"variation-{START_TS}-0")

    assert f"variation-{START_TS}-0" in snap
    assert len(registry) == 0
    with pytest.raises(TypeError):
        snap["x"] = _task(f"variation-{START_TS}-1")  # type: ignore[index]


def test_transition_replaces_stage_entry() -> None:
    registry = GenerationRegistry()
    upload = f"variation-{START_TS}-upload"
    analyze = f"variation-{START_TS}-analyze"
    registry.insert_many([_task(upload, TaskStatus.UPLOADING)])

    registry.transition(START_TS, remove=[upload], add=[_task(analyze, TaskStatus.ANALYZING)])

    assert list(registry.snapshot()) == [analyze]
    assert registry.status_of(START_TS) == TaskStatus.ANALYZING


def test_status_regression_is_rejected() -> None:
    registry = GenerationRegistry()
    registry.insert_many([_task(f"variation-{START_TS}-process", TaskStatus.CREATING_CONCEPTS)])

    with pytest.raises(RegistryError):
        registry.transition(
            START_TS,
            remove=[f"variation-{START_TS}-process"],
            add=[_task(f"variation-{START_TS}-upload", TaskStatus.UPLOADING)],
        )
    assert f"variation-{START_TS}-process" in registry


def test_transition_rejects_foreign_batch() -> None:
    registry = GenerationRegistry()
    with pytest.raises(RegistryError):
        registry.transition(START_TS, add=[_task(f"variation-{START_TS + 1}-0")])


def test_delete_batch_matches_whole_timestamp_only() -> None:
    registry = GenerationRegistry()
    registry.insert_many([_task(f"variation-17-{i}") for i in range(2)])
    registry.insert_many([_task(f"variation-170-{i}") for i in range(2)])
    registry.insert_many([_task(f"sora-video-17-{i}") for i in range(2)])

    assert registry.delete_batch(17) == 4
    assert sorted(registry.snapshot()) == ["variation-170-0", "variation-170-1"]
    assert registry.delete_batch(17) == 0


def test_batch_entries() -> None:
    registry = GenerationRegistry()
    registry.insert_many([_task(f"variation-{START_TS}-{i}") for i in range(2)])
    registry.insert_many([_task(f"variation-{START_TS + 1}-0")])
    assert sorted(registry.batch_entries(START_TS)) == [f"variation-{START_TS}-0", f"variation-{START_TS}-1"]


def test_drained_batch_releases_its_status() -> None:
    registry = GenerationRegistry()
    for offset in range(50):
        ts = START_TS + offset
        registry.insert_many([_task(f"variation-{ts}-{i}") for i in range(4)])
        for i in range(4):
            registry.delete(f"variation-{ts}-{i}")

    assert len(registry) == 0
    assert registry._watermarks == {}


def test_partly_drained_batch_keeps_its_status() -> None:
    registry = GenerationRegistry()
    registry.insert_many([_task(f"variation-{START_TS}-{i}") for i in range(2)])
    registry.delete(f"variation-{START_TS}-0")
    assert registry.status_of(START_TS) == TaskStatus.GENERATING

    registry.delete(f"variation-{START_TS}-1")
    assert registry.status_of(START_TS) is None


def test_stage_entry_delete_does_not_release_status() -> None:
    registry = GenerationRegistry()
    upload = f"variation-{START_TS}-upload"
    registry.insert_many([_task(upload, TaskStatus.UPLOADING)])
    registry.delete(upload)
    assert registry.status_of(START_TS) == TaskStatus.UPLOADING


def test_rolled_back_batch_releases_its_status() -> None:
    registry = GenerationRegistry()
    registry.insert_many([_task(f"variation-{START_TS}-analyze", TaskStatus.ANALYZING)])
    registry.delete_batch(START_TS)
    assert registry.status_of(START_TS) is None
