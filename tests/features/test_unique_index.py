import asyncio

import pytest

from gallery_backend.features.index.models import ImageRecord
from gallery_backend.features.index.unique_index import UniquePromptIndex, simplify_prompt


def _rec(image_id: str, prompt: str | None, folder: str = "", modified: int = 0) -> ImageRecord:
    return ImageRecord(id=image_id, file=f"/imgs/{image_id}.png", folder=folder, modified_date=modified, prompt=prompt)


def test_simplify_prompt_strips_seed_and_versions():
    a = simplify_prompt("cat, Seed: 123, Steps: 20, Version: v1.2", "x")
    b = simplify_prompt("cat, Seed: 999, Steps: 20, Version: v1.3", "x")
    assert a == b
    assert simplify_prompt("cat", "x") != simplify_prompt("cat", "y")
    assert simplify_prompt(None) == ""


def test_add_is_last_write_wins():
    index = UniquePromptIndex()
    index.add(_rec("a", "same"))
    index.add(_rec("b", "same"))
    assert not index.is_unique("a")
    assert index.is_unique("b")
    assert len(index) == index.prompt_count == 1


def test_add_with_changed_prompt_drops_old_key():
    index = UniquePromptIndex()
    index.add(_rec("a", "one"))
    index.add(_rec("a", "two"))
    assert index.prompt_count == 1
    assert list(index.snapshot().values()) == ["a"]


def test_records_without_prompt_are_not_tracked():
    index = UniquePromptIndex()
    index.add(_rec("a", None))
    assert len(index) == 0


def test_sizes_stay_equal_across_add_remove_sequences():
    index = UniquePromptIndex()
    records = [_rec(f"r{i}", f"prompt {i % 3}", modified=i) for i in range(9)]
    for record in records:
        index.add(record)
        assert index.consistent
    for record in records[::2]:
        index.remove(record)
        assert index.consistent
    index.remove(None)
    assert index.consistent


@pytest.mark.asyncio
async def test_rebuild_picks_newest_duplicate():
    index = UniquePromptIndex(chunk_size=2)
    records = {
        "old": _rec("old", "dup", modified=1),
        "new": _rec("new", "dup", modified=5),
        "solo": _rec("solo", "other", modified=3),
        "empty": _rec("empty", None, modified=4),
    }
    reused = await index.rebuild(records)
    assert reused is False
    assert index.is_unique("new") and not index.is_unique("old")
    assert index.is_unique("solo")
    assert len(index) == 2
    assert index.rebuilds == 1


@pytest.mark.asyncio
async def test_rebuild_reuses_valid_snapshot_only():
    records = {"a": _rec("a", "p1"), "b": _rec("b", "p2")}
    good = {simplify_prompt("p1", ""): "a", simplify_prompt("p2", ""): "b"}

    index = UniquePromptIndex()
    assert await index.rebuild(records, good) is True
    assert index.snapshot() == good

    stale = {simplify_prompt("p1", ""): "gone"}
    assert await index.rebuild(records, stale) is False
    assert index.prompt_count == 2


@pytest.mark.asyncio
async def test_inconsistency_schedules_rebuild_and_persist():
    records = {"a": _rec("a", "p1"), "b": _rec("b", "p2")}
    persisted: list[dict] = []

    async def _persist(mapping):
        persisted.append(mapping)

    index = UniquePromptIndex(lambda: records, _persist, rebuild_delay_s=0.01)
    for record in records.values():
        index.add(record)

    # Corrupt the map so the next removal detects a size mismatch.
    index._representatives.add("ghost")
    index.remove(records["a"])
    assert not index.consistent

    await asyncio.sleep(0.1)
    assert index.consistent
    assert index.rebuilds == 1
    assert persisted and set(persisted[-1].values()) == {"a", "b"}
    await index.cancel()


@pytest.mark.asyncio
async def test_schedule_rebuild_supersedes_pending():
    records = {"a": _rec("a", "p1")}
    index = UniquePromptIndex(lambda: records, rebuild_delay_s=0.05)
    index.schedule_rebuild()
    index.schedule_rebuild()
    index.schedule_rebuild()
    await asyncio.sleep(0.2)
    assert index.rebuilds == 1
    await index.cancel()
