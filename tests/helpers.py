"""Builders shared by the test modules."""
import json
import struct
import zlib
from pathlib import Path

from PIL import Image
from PIL.PngImagePlugin import PngInfo

from gallery_backend.shared import ErrorCode, Result

A1111_PARAMETERS = (
    "a cat in a hat, masterpiece\n"
    "Negative prompt: blurry, lowres\n"
    "Steps: 20, Sampler: Euler a, CFG scale: 7, Seed: 1234, Model hash: abc123, Model: dreamshaper_8"
)


def write_png(path: Path, *, text: dict[str, str] | None = None, size=(32, 32), color=(200, 30, 30)) -> Path:
    """Write a small PNG with optional tEXt chunks."""
    path.parent.mkdir(parents=True, exist_ok=True)
    info = PngInfo()
    for key, value in (text or {}).items():
        info.add_text(key, value)
    Image.new("RGB", size, color).save(path, "PNG", pnginfo=info)
    return path


def _png_chunk(kind: bytes, data: bytes) -> bytes:
    return struct.pack(">I", len(data)) + kind + data + struct.pack(">I", zlib.crc32(kind + data) & 0xFFFFFFFF)


def write_oversized_png(path: Path, width: int = 20000, height: int = 20000) -> Path:
    """PNG whose header declares `width` x `height`; Pillow refuses it as a decompression bomb."""
    path.parent.mkdir(parents=True, exist_ok=True)
    header = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    path.write_bytes(
        b"\x89PNG\r\n\x1a\n"
        + _png_chunk(b"IHDR", header)
        + _png_chunk(b"IDAT", zlib.compress(b"\x00"))
        + _png_chunk(b"IEND", b"")
    )
    return path


def comfy_graph(positive: str, negative: str) -> str:
    return json.dumps(
        {
            "3": {
                "class_type": "KSampler",
                "inputs": {"seed": 1, "positive": ["6", 0], "negative": ["7", 0], "model": ["4", 0]},
            },
            "4": {"class_type": "CheckpointLoaderSimple", "inputs": {"ckpt_name": "sdxl.safetensors"}},
            "6": {"class_type": "CLIPTextEncode", "inputs": {"text": positive, "clip": ["4", 1]}},
            "7": {"class_type": "CLIPTextEncode", "inputs": {"text": negative, "clip": ["4", 1]}},
        }
    )


class FakeGenerator:
    """Records generation requests and writes a placeholder artifact."""

    def __init__(self, ok: bool = True):
        self.ok = ok
        self.calls: list[tuple[str, str, str]] = []

    async def _generate(self, kind: str, src: str, dest: str) -> Result[bool]:
        self.calls.append((kind, src, dest))
        if not self.ok:
            return Result.Err(ErrorCode.PREVIEW_FAILED, "boom")
        Path(dest).parent.mkdir(parents=True, exist_ok=True)
        Path(dest).write_bytes(b"webp")
        return Result.Ok(True)

    async def generate_thumbnail(self, src: str, dest: str) -> Result[bool]:
        return await self._generate("thumbnail", src, dest)

    async def generate_compressed(self, src: str, dest: str) -> Result[bool]:
        return await self._generate("compressed", src, dest)
