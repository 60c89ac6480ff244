import json
from pathlib import Path

from PIL import Image

from gallery_backend.features.metadata import extractors as ex

from ..helpers import A1111_PARAMETERS, comfy_graph, write_oversized_png, write_png


def test_png_parameters_chunk(tmp_path: Path):
    path = write_png(tmp_path / "a.png", text={"parameters": A1111_PARAMETERS})
    assert ex.read_embedded_metadata(str(path)) == (A1111_PARAMETERS, None)


def test_png_comfy_prompt_and_workflow(tmp_path: Path):
    graph = comfy_graph("fox", "blur")
    workflow = json.dumps({"nodes": []})
    path = write_png(tmp_path / "c.png", text={"prompt": graph, "workflow": workflow})
    assert ex.read_embedded_metadata(str(path)) == (graph, workflow)


def test_png_without_metadata(tmp_path: Path):
    path = write_png(tmp_path / "plain.png")
    assert ex.read_embedded_metadata(str(path)) == (None, None)


def test_unknown_text_chunks_are_serialized(tmp_path: Path):
    path = write_png(tmp_path / "o.png", text={"Comment": "hello"})
    prompt, workflow = ex.read_embedded_metadata(str(path))
    assert json.loads(prompt) == {"Comment": "hello"}
    assert workflow is None


def test_jpeg_image_description(tmp_path: Path):
    exif = Image.Exif()
    exif[0x010E] = "jpeg prompt\nSteps: 5"
    path = tmp_path / "j.jpg"
    Image.new("RGB", (16, 16)).save(path, "JPEG", exif=exif)
    prompt, _ = ex.read_embedded_metadata(str(path))
    assert prompt == "jpeg prompt\nSteps: 5"


def test_unreadable_image_returns_empty(tmp_path: Path):
    path = tmp_path / "broken.png"
    path.write_bytes(b"not a png")
    assert ex.read_embedded_metadata(str(path)) == (None, None)
    assert ex.read_embedded_metadata(str(tmp_path / "missing.png")) == (None, None)


def test_sidecar_wins_and_txt_is_preferred(tmp_path: Path):
    path = write_png(tmp_path / "s.png", text={"parameters": A1111_PARAMETERS})
    (tmp_path / "s.yaml").write_text("yaml prompt", encoding="utf-8")
    (tmp_path / "s.txt").write_text("txt prompt", encoding="utf-8")

    assert ex.find_sidecar(str(path)) == str(tmp_path / "s.txt")
    meta = ex.read_metadata(str(path))
    assert meta.prompt == "txt prompt"
    assert meta.workflow is None
    assert meta.modified_date > 0


def test_empty_sidecar_falls_back_to_embedded(tmp_path: Path):
    path = write_png(tmp_path / "e.png", text={"parameters": A1111_PARAMETERS})
    (tmp_path / "e.txt").write_text("   ", encoding="utf-8")
    assert ex.read_metadata(str(path)).prompt == A1111_PARAMETERS


def test_sidecar_candidates_order(tmp_path: Path):
    base = str(tmp_path / "x.png")
    assert [Path(p).suffix for p in ex.sidecar_candidates(base)] == [".txt", ".yaml", ".yml", ".json"]


def test_file_dates(tmp_path: Path):
    path = write_png(tmp_path / "d.png")
    modified, created = ex.read_file_dates(str(path))
    assert modified > 0 and created > 0
    assert ex.read_file_dates(str(tmp_path / "nope.png")) == (0, 0)


def test_read_metadata_survives_decompression_bomb(tmp_path: Path):
    path = write_oversized_png(tmp_path / "huge.png")

    assert ex.read_embedded_metadata(str(path)) == (None, None)
    meta = ex.read_metadata(str(path))
    assert meta.prompt is None
    assert meta.workflow is None
    assert meta.modified_date > 0
