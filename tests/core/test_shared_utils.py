"""
Tests for gallery_shared (result, types, log, time) and backend utils.
"""
from __future__ import annotations

import hashlib
import json
import logging
import os

import pytest

from gallery_backend import utils
from gallery_shared import log as log_mod
from gallery_shared import result as result_mod
from gallery_shared import time as time_mod
from gallery_shared import types as types_mod


# ─── result.py ─────────────────────────────────────────────────────────────


def test_result_ok_and_err():
    ok = result_mod.Result.Ok(3, source="x")
    assert ok.ok and ok.data == 3 and ok.meta == {"source": "x"}
    assert ok.map(lambda v: v * 2).data == 6

    err = result_mod.Result.Err(types_mod.ErrorCode.NOT_FOUND, "missing")
    assert not err.ok
    assert err.code == "NOT_FOUND"
    assert err.unwrap_or(7) == 7
    with pytest.raises(ValueError):
        err.unwrap()


# ─── types.py ──────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "name,kind",
    [("a.PNG", "image"), ("b.jpeg", "image"), ("c.webp", "image"), ("d.txt", "sidecar"), ("e.yml", "sidecar"), ("f.gif", "unknown")],
)
def test_classify_file(name, kind):
    assert types_mod.classify_file(name) == kind


def test_enums_are_string_valued():
    assert types_mod.SearchMode("words") is types_mod.SearchMode.WORDS
    assert types_mod.FlagKind("nsfw") is types_mod.FlagKind.NSFW


# ─── log.py ────────────────────────────────────────────────────────────────


def test_get_logger_strips_package_prefix():
    logger = log_mod.get_logger("gallery_backend.features.index.scanner")
    assert logger.name == "gallery.features.index.scanner"


def test_formatter_includes_scan_id():
    token = log_mod.scan_id_var.set("scan-9")
    try:
        record = logging.LogRecord("gallery.x", logging.INFO, __file__, 1, "hello", None, None)
        log_mod.CorrelationFilter().filter(record)
        text = log_mod.EmojiFormatter().format(record)
    finally:
        log_mod.scan_id_var.reset(token)
    assert "[scan-9]" in text and "hello" in text


def test_log_success_uses_success_level(caplog):
    logger = logging.getLogger("gallery.test_success")
    with caplog.at_level(log_mod.SUCCESS_LEVEL, logger="gallery.test_success"):
        log_mod.log_success(logger, "done %d", 1)
    assert caplog.records[0].levelname == "SUCCESS"


def test_log_structured_emits_json_payload(caplog):
    logger = logging.getLogger("test.structured")
    with caplog.at_level(logging.DEBUG, logger="test.structured"):
        log_mod.log_structured(logger, logging.DEBUG, "scan_complete", found=3)
    payload = json.loads(caplog.records[0].getMessage())
    assert payload["message"] == "scan_complete"
    assert payload["context"] == {"found": 3}
    assert payload["timestamp"].endswith("Z")


# ─── time.py ───────────────────────────────────────────────────────────────


def test_format_elapsed():
    assert time_mod.format_elapsed(time_mod.ms()).endswith("s")
    assert time_mod.format_elapsed(time_mod.ms() - 125_000) == "2m 5s"


# ─── utils.py ──────────────────────────────────────────────────────────────


def test_relative_key_and_hash(tmp_path):
    root = str(tmp_path)
    path = os.path.join(root, "sub", "a.png")
    assert utils.relative_key(path, root) == "sub/a.png"
    assert utils.relative_key(root, root) == ""
    assert utils.hash_relative_path(path, root) == hashlib.sha256(b"sub/a.png").hexdigest()


def test_folder_label(tmp_path):
    root = str(tmp_path)
    assert utils.folder_label(os.path.join(root, "a.png"), root) == ""
    assert utils.folder_label(os.path.join(root, "x", "y", "a.png"), root) == "x/y"


def test_parse_bool_and_under_path(tmp_path):
    assert utils.parse_bool("yes") is True
    assert utils.parse_bool("off", True) is False
    assert utils.parse_bool("maybe", True) is True
    assert utils.is_under_path(str(tmp_path / "a" / "b.png"), str(tmp_path / "a"))
    assert not utils.is_under_path(str(tmp_path / "ab" / "b.png"), str(tmp_path / "a"))
