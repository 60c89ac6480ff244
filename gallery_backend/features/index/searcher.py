"""
Boolean search over index records.

Query grammar: clauses joined by `` AND ``; each clause may start with keyword
prefixes (``NOT ALL NEGATIVE NEG FOLDER FD PARAMS PR``) choosing the text it is
tested against and whether the outcome is inverted. A record matches when no
clause disqualifies it. Matching is boolean; there is no ranking.
"""
from __future__ import annotations

import random
import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass

from ...shared import SearchMode, get_logger
from ..metadata.interpreter import MatchField, PromptPair, text_for_field
from .models import ImageRecord

logger = get_logger(__name__)

SEARCH_KEYWORDS = ("NOT", "ALL", "NEGATIVE", "NEG", "FOLDER", "FD", "PARAMS", "PR")
CLAUSE_SEPARATOR = " AND "
SORT_METHODS = ("date", "date (asc)", "name", "name (desc)", "random")

_KEYWORDS = f"(?:(?:{'|'.join(SEARCH_KEYWORDS)}) )*"
_PREFIX_RE = re.compile(f"^{_KEYWORDS}")
_NOT_RE = re.compile(f"^{_KEYWORDS}NOT ")
_ALL_RE = re.compile(f"^{_KEYWORDS}ALL ")
_NEGATIVE_RE = re.compile(f"^{_KEYWORDS}(?:NEGATIVE|NEG) ")
_FOLDER_RE = re.compile(f"^{_KEYWORDS}(?:FOLDER|FD) ")
_PARAMS_RE = re.compile(f"^{_KEYWORDS}(?:PARAMS|PR) ")

Matcher = Callable[[ImageRecord], bool]


@dataclass(frozen=True)
class Clause:
    raw: str
    field: MatchField
    negated: bool
    pattern: re.Pattern[str] | None = None
    words: tuple[re.Pattern[str], ...] = ()


def _clause_field(text: str) -> MatchField:
    if _ALL_RE.match(text):
        return "all"
    if _NEGATIVE_RE.match(text):
        return "negative"
    if _FOLDER_RE.match(text):
        return "folder"
    if _PARAMS_RE.match(text):
        return "params"
    return "positive"


def parse_clause(text: str, mode: SearchMode) -> Clause:
    """Split keyword prefixes off `text`; raises re.error for an invalid regex clause."""
    raw = _PREFIX_RE.sub("", text, count=1)
    field = _clause_field(text)
    negated = _NOT_RE.match(text) is not None
    if mode is SearchMode.REGEX:
        return Clause(raw, field, negated, pattern=re.compile(raw, re.IGNORECASE))
    if mode is SearchMode.WORDS:
        words = tuple(re.compile(rf"\b{re.escape(word)}\b", re.IGNORECASE) for word in raw.split())
        return Clause(raw, field, negated, words=words)
    return Clause(raw.lower(), field, negated)


def _clause_hits(clause: Clause, text: str, mode: SearchMode) -> bool:
    if mode is SearchMode.REGEX:
        return clause.pattern is not None and clause.pattern.search(text) is not None
    if mode is SearchMode.WORDS:
        return all(word.search(text) for word in clause.words)
    return clause.raw in text.lower()


def build_matcher(
    query: str,
    mode: SearchMode | str = SearchMode.CONTAINS,
    prompt_cache: Mapping[str, PromptPair] | None = None,
) -> Matcher | None:
    """
    Compile `query` into a record predicate.

    Returns None when a regex clause does not compile; callers treat that as
    "match nothing".
    """
    mode = SearchMode(mode)
    try:
        clauses = [parse_clause(part, mode) for part in (query or "").split(CLAUSE_SEPARATOR)]
    except re.error as exc:
        logger.debug("Invalid search pattern %r: %s", query, exc)
        return None

    def matcher(record: ImageRecord) -> bool:
        for clause in clauses:
            text = text_for_field(record, clause.field, prompt_cache)
            if clause.negated == _clause_hits(clause, text, mode):
                return False
        return True

    return matcher


def search_records(
    records: Iterable[ImageRecord],
    query: str,
    filters: Sequence[str] | None = None,
    mode: SearchMode | str = SearchMode.CONTAINS,
    *,
    prompt_cache: Mapping[str, PromptPair] | None = None,
    is_unique: Callable[[str], bool] | None = None,
) -> list[ImageRecord]:
    """Records matching `query` and every filter; with `is_unique`, duplicates are collapsed."""
    matcher = build_matcher(query, mode, prompt_cache)
    if matcher is None:
        return []
    filter_matcher = build_matcher(CLAUSE_SEPARATOR.join(filters or []), SearchMode.REGEX, prompt_cache)
    if filter_matcher is None:
        return []

    out = [r for r in records if matcher(r) and filter_matcher(r)]
    if is_unique is not None:
        out = [r for r in out if r.prompt is None or is_unique(r.id)]
    return out


def sort_records(records: Iterable[ImageRecord], method: str) -> list[ImageRecord]:
    """Ordered copy of `records`; an unknown method yields an empty list."""
    items = list(records)
    if method == "date":
        return sorted(items, key=lambda r: r.modified_date, reverse=True)
    if method == "date (asc)":
        return sorted(items, key=lambda r: r.modified_date)
    if method == "name":
        return sorted(items, key=lambda r: r.file)
    if method == "name (desc)":
        return sorted(items, key=lambda r: r.file, reverse=True)
    if method == "random":
        random.shuffle(items)
        return items
    return []
