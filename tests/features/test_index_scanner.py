import hashlib
import json
import os
from pathlib import Path

import pytest

from gallery_backend.deps import build_services
from gallery_backend.features.index import scanner as scanner_mod
from gallery_backend.features.index.scanner import map_sidecars
from gallery_backend.utils import hash_relative_path

from ..helpers import A1111_PARAMETERS, comfy_graph, write_png


def _populate(root: Path) -> dict[str, Path]:
    files = {
        "a1111": write_png(root / "a1111.png", text={"parameters": A1111_PARAMETERS}),
        "comfy": write_png(root / "comfy" / "c.png", text={"prompt": comfy_graph("red fox", "grain")}),
        "sidecar": write_png(root / "notes" / "s.png"),
        "plain": write_png(root / "plain.png"),
    }
    (root / "notes" / "s.txt").write_text("sidecar prompt", encoding="utf-8")
    return files


def test_map_sidecars_prefers_txt():
    mapped = map_sidecars(["/x/a.json", "/x/a.txt", "/x/b.yml"])
    assert mapped == {"/x/a": "/x/a.txt", "/x/b": "/x/b.yml"}


@pytest.mark.asyncio
async def test_cold_scan_builds_index(services, img_root: Path):
    files = _populate(img_root)
    index = services["index"]
    state = index.state

    res = await index.scanner.index_files()

    assert res.ok, res.error
    stats = res.data
    assert stats["found"] == 4
    assert stats["new"] == 4
    assert stats["sidecar"] == 1
    assert stats["embedded"] == 2
    assert stats["with_metadata"] == 3
    assert stats["added"] == 4

    comfy_id = hash_relative_path(files["comfy"], img_root)
    assert state.records[comfy_id].folder == "comfy"
    assert comfy_id in state.prompts
    sidecar_id = hash_relative_path(files["sidecar"], img_root)
    assert state.records[sidecar_id].prompt == "sidecar prompt"
    assert state.unique.prompt_count == 3
    assert state.gate.disabled is False
    # The first scan seeds the index; it is not "fresh" activity.
    assert len(state.fresh) == 0

    cached = await services["store"].aload_all()
    assert set(cached.data) == set(state.records)


@pytest.mark.asyncio
async def test_second_scan_without_changes_writes_empty_diff(services, img_root: Path):
    _populate(img_root)
    scanner = services["index"].scanner
    await scanner.index_files()

    res = await scanner.index_files()

    assert res.ok
    assert (res.data["added"], res.data["updated"], res.data["deleted"]) == (0, 0, 0)
    assert res.data["new"] == 0
    assert scanner.scans_completed == 2


@pytest.mark.asyncio
async def test_cache_round_trip_reproduces_index(services, settings, img_root: Path):
    _populate(img_root)
    first = services["index"]
    await first.scanner.index_files()
    expected = dict(first.state.records)
    expected_unique = first.state.unique.snapshot()

    other = build_services(settings).data
    try:
        res = await other["index"].scanner.index_files()
        assert res.ok
        assert res.data["new"] == 0
        assert res.data["cached"] == 4
        assert other["state"].records == expected
        assert other["state"].unique.snapshot() == expected_unique
    finally:
        await other["store"].aclose()


@pytest.mark.asyncio
async def test_rescan_tracks_added_and_removed_files(services, img_root: Path):
    files = _populate(img_root)
    index = services["index"]
    state = index.state
    await index.scanner.index_files()

    os.remove(files["plain"])
    added = write_png(img_root / "later.png", text={"parameters": "later prompt\nSteps: 3"})

    res = await index.scanner.index_files()

    assert res.data["new"] == 1
    assert res.data["deleted"] == 1
    plain_id = hash_relative_path(files["plain"], img_root)
    added_id = hash_relative_path(added, img_root)
    assert plain_id not in state.records
    assert [e.id for e in state.deleted] == [plain_id]
    assert [e.id for e in state.fresh] == [added_id]


@pytest.mark.asyncio
async def test_scan_cleans_stale_artifacts(services, img_root: Path):
    write_png(img_root / "a.png")
    state = services["state"]
    state.settings.ensure_directories()
    stale = state.artifacts.thumbnail_path("not-an-image-id")
    stale.write_bytes(b"x")

    res = await services["index"].scanner.index_files()

    assert res.data["cleaned"] == 1
    assert not stale.exists()


@pytest.mark.asyncio
async def test_legacy_cache_is_migrated(services, settings, img_root: Path):
    path = write_png(img_root / "old.png")
    image_id = hash_relative_path(path, img_root)
    # Legacy ids hash the path with the root prefix stripped, leading slash kept.
    legacy_id = hashlib.sha256(b"/old.png").hexdigest()
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.legacy_cache_path.write_text(
        json.dumps([[legacy_id, {"file": str(path), "modifiedDate": 42, "prompt": "legacy prompt"}]]),
        encoding="utf-8",
    )

    res = await services["index"].scanner.index_files()

    assert res.ok
    assert res.data["cached"] == 1
    record = services["state"].records[image_id]
    assert record.prompt == "legacy prompt"
    assert record.file == str(path)
    assert not settings.legacy_cache_path.exists()
    assert (settings.data_dir / "metadata-deprecated-delete-this.json").exists()
    assert set((await services["store"].aload_all()).data) == {image_id}


@pytest.mark.asyncio
async def test_missing_root_returns_not_found(services, img_root: Path):
    img_root.rmdir()
    res = await services["index"].scanner.index_files()
    assert not res.ok
    assert res.code == "NOT_FOUND"


@pytest.mark.asyncio
async def test_scan_logs_structured_summary(services, img_root: Path, monkeypatch):
    write_png(img_root / "a.png")
    events = []
    monkeypatch.setattr(
        scanner_mod, "log_structured", lambda _logger, level, message, **ctx: events.append((message, ctx))
    )

    await services["index"].scanner.index_files()

    assert len(events) == 1
    message, ctx = events[0]
    assert message == "scan_complete"
    assert ctx["scan_id"].startswith("scan-")
    assert ctx["images"] == 1
    assert ctx["found"] == 1
