import sys
from pathlib import Path

import pytest
import pytest_asyncio

from .repo_root import REPO_ROOT

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from .helpers import FakeGenerator  # noqa: E402


@pytest.fixture
def img_root(tmp_path: Path) -> Path:
    root = (tmp_path / "images").resolve()
    root.mkdir()
    return root


@pytest.fixture
def settings(tmp_path: Path, img_root: Path):
    from gallery_backend.config import IndexSettings

    return IndexSettings().with_overrides(
        img_folder=img_root,
        data_dir=tmp_path / "localData",
        polling_seconds=0.0,
        watcher_enabled=False,
        fresh_limit=1000,
        dir_reindex_debounce_s=0.01,
        unique_rebuild_delay_s=0.01,
        watcher_settle_s=0.0,
    )


@pytest.fixture
def fake_generator() -> FakeGenerator:
    return FakeGenerator()


@pytest_asyncio.fixture
async def services(settings, fake_generator):
    from gallery_backend.deps import build_services

    svc_res = build_services(settings, generator=fake_generator)
    assert svc_res.ok, svc_res.error
    svc = svc_res.data
    try:
        yield svc
    finally:
        index = svc["index"]
        await index.watcher.stop()
        await index.state.unique.cancel()
        await index.state.tasks.cancel()
        await svc["store"].aclose()
