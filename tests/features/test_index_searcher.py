import pytest

from gallery_backend.features.index.models import ImageRecord
from gallery_backend.features.index.searcher import build_matcher, parse_clause, search_records, sort_records
from gallery_backend.features.metadata.interpreter import PromptPair
from gallery_backend.shared import SearchMode

from ..helpers import comfy_graph


def _rec(image_id, prompt=None, folder="", modified=0, file=None):
    return ImageRecord(
        id=image_id,
        file=file or f"/imgs/{image_id}.png",
        folder=folder,
        modified_date=modified,
        prompt=prompt,
    )


CAT = _rec("cat", "a cat in a hat\nNegative prompt: blurry\nSteps: 20, Seed: 1", folder="animals")
CAT_DOG = _rec("catdog", "a cat and a dog\nNegative prompt: text\nSteps: 30, Seed: 2", folder="animals/nsfw")
CATALOG = _rec("catalog", "a catalog page\nSteps: 10", folder="docs")
BARE = _rec("bare", None, folder="misc")


def _search(query, mode="contains", filters=None, records=(CAT, CAT_DOG, CATALOG, BARE), **kw):
    return {r.id for r in search_records(records, query, filters, mode, prompt_cache={}, **kw)}


def test_words_mode_with_not_clause():
    assert _search("cat AND NOT dog", "words") == {"cat"}


def test_words_mode_respects_word_boundaries():
    assert _search("cat", "words") == {"cat", "catdog"}
    assert _search("cat", "contains") == {"cat", "catdog", "catalog"}


def test_words_tokens_are_literal():
    record = _rec("c", "c++ (v2) tips\nSteps: 1")
    assert _search("(v2)", "words", records=[record]) == set()
    assert _search("tips", "words", records=[record]) == {"c"}


def test_folder_keyword():
    assert _search("FOLDER nsfw") == {"catdog"}
    assert _search("FD nsfw") == {"catdog"}
    assert _search("NOT FOLDER nsfw") == {"cat", "catalog", "bare"}


def test_negative_and_params_keywords():
    assert _search("NEG blurry") == {"cat"}
    assert _search("NEGATIVE text") == {"catdog"}
    assert _search("PR Steps: 30") == {"catdog"}
    assert _search("PARAMS seed: 1") == {"cat"}


def test_all_keyword_includes_folder_label():
    assert _search("ALL Folder: docs") == {"catalog"}


def test_keyword_order_does_not_matter_for_not():
    assert _search("FOLDER NOT nsfw") == _search("NOT FOLDER nsfw")


def test_regex_mode_and_invalid_regex():
    assert _search("c.t (in|and)", "regex") == {"cat", "catdog"}
    assert _search("(unclosed", "regex") == set()
    assert build_matcher("(unclosed", SearchMode.REGEX) is None


def test_filters_are_anded_as_regex():
    assert _search("cat", filters=["FOLDER ^animals", "NOT NEG text"]) == {"cat"}
    assert _search("cat", filters=["[bad"]) == set()


def test_empty_query_matches_everything():
    assert _search("") == {"cat", "catdog", "catalog", "bare"}


def test_collapse_keeps_representatives_and_promptless_records():
    kept = _search("", is_unique=lambda image_id: image_id == "cat")
    assert kept == {"cat", "bare"}


def test_comfy_records_use_prompt_cache():
    record = _rec("comfy", comfy_graph("red fox", "grain"))
    cache = {"comfy": PromptPair("red fox", "grain")}
    found = search_records([record], "fox", None, "words", prompt_cache=cache)
    assert [r.id for r in found] == ["comfy"]
    assert search_records([record], "NEG fox", None, "words", prompt_cache=cache) == []


def test_parse_clause_fields():
    clause = parse_clause("NOT NEG blurry", SearchMode.CONTAINS)
    assert clause.field == "negative"
    assert clause.negated is True
    assert clause.raw == "blurry"
    assert parse_clause("ALL x", SearchMode.CONTAINS).field == "all"


@pytest.mark.parametrize(
    "method,expected",
    [
        ("date", ["b", "c", "a"]),
        ("date (asc)", ["a", "c", "b"]),
        ("name", ["a", "b", "c"]),
        ("name (desc)", ["c", "b", "a"]),
        ("bogus", []),
    ],
)
def test_sort_records(method, expected):
    records = [_rec("a", modified=1), _rec("b", modified=9), _rec("c", modified=5)]
    assert [r.id for r in sort_records(records, method)] == expected


def test_sort_random_is_a_permutation():
    records = [_rec(str(i)) for i in range(10)]
    assert sorted(r.id for r in sort_records(records, "random")) == sorted(r.id for r in records)
