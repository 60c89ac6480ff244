"""
Prompt-field interpreter.

Pure functions that pull positive/negative prompts, parameter blocks and model
names out of a raw metadata blob. Three dialects are understood:

- ComfyUI node graphs (`prompt` graph JSON plus optional `workflow` export),
- A1111 style parameter text (``prompt\\nNegative prompt: ...\\nSteps: ...``),
- SwarmUI (``sui_image_params`` JSON, or the older ``sv_prompt:`` text form).

Nothing in here raises: a grammar that does not match yields ``""``.
"""
from __future__ import annotations

import json
import re
from collections import deque
from enum import Enum
from typing import Any, Literal, Mapping, NamedTuple

MatchField = Literal["all", "folder", "positive", "negative", "params"]


class Dialect(str, Enum):
    COMFY = "comfy"
    SWARM = "swarm"
    A1111 = "a1111"


class PromptPair(NamedTuple):
    pos: str
    neg: str


_POSITIVE_RE = re.compile(r"^([\s\S]*?)\n\r?(Negative prompt:|.*$)")
_NEGATIVE_RE = re.compile(r"\n\r?Negative prompt: ([\s\S]*?)\n\r?Steps: \d+[\s\S]*$")
_SV_POSITIVE_RE = re.compile(r'sv_prompt: ("(?:[^"]|(?<=\\)")*"|[^,"]*)')
_SV_NEGATIVE_RE = re.compile(r'sv_negative: ("(?:[^"]|(?<=\\)")*"|[^,"]*)')
_PARAMS_RE = re.compile(r"\n\r?(Steps: \d+[\s\S]*)$")
_A1111_MODEL_RE = re.compile(r"Model: (.*?)(,|$)", re.MULTILINE)
_COMFY_MODEL_RE = re.compile(r'\{"ckpt_name": (".*?")\}')
_MODEL_HASH_RE = re.compile(r"Model hash: (.*?)(,|$)", re.MULTILINE)
_A1111_STEPS_RE = re.compile(r"(^|\n)Steps: \d+")

SWARM_SIGNATURE = "sui_image_params"
SWARM_LEGACY_SIGNATURE = "sv_prompt"

_TEXT_INPUT_KEYS = ("text", "text_g", "text_l", "prompt")
_STRING_VALUE_KEYS = ("text", "string", "value", "prompt")
_MAX_TRACE_NODES = 256


def _first_group(regex: re.Pattern[str], text: str | None) -> str:
    if not text:
        return ""
    match = regex.search(text)
    if not match:
        return ""
    return match.group(1) or ""


def _decode_quoted(value: str) -> str:
    if not value.startswith('"'):
        return value
    try:
        decoded = json.loads(value)
    except ValueError:
        return value.strip('"')
    return decoded if isinstance(decoded, str) else str(decoded)


def get_positive_prompt(prompt: str | None) -> str:
    return _first_group(_POSITIVE_RE, prompt)


def get_negative_prompt(prompt: str | None) -> str:
    return _first_group(_NEGATIVE_RE, prompt)


def get_params(prompt: str | None) -> str:
    return _first_group(_PARAMS_RE, prompt)


def get_sv_positive_prompt(prompt: str | None) -> str:
    return _decode_quoted(_first_group(_SV_POSITIVE_RE, prompt))


def get_sv_negative_prompt(prompt: str | None) -> str:
    return _decode_quoted(_first_group(_SV_NEGATIVE_RE, prompt))


def get_model(prompt: str | None) -> str:
    if not prompt:
        return "Unknown"
    model = _first_group(_A1111_MODEL_RE, prompt)
    if model:
        return model
    return _decode_quoted(_first_group(_COMFY_MODEL_RE, prompt)) or "Unknown"


def get_model_hash(prompt: str | None) -> str:
    return _first_group(_MODEL_HASH_RE, prompt)


def _load_json_dict(text: str | None) -> dict[str, Any] | None:
    if not text:
        return None
    raw = text.strip()
    if not raw.startswith("{"):
        return None
    try:
        parsed = json.loads(raw)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def get_metadata_version(prompt: str | None) -> str:
    """Signature-token sniffing: ``"swarm"``, ``"a1111"`` or ``""``."""
    if not prompt:
        return ""
    if SWARM_SIGNATURE in prompt or SWARM_LEGACY_SIGNATURE in prompt:
        return "swarm"
    if _A1111_STEPS_RE.search(prompt) or "Negative prompt:" in prompt:
        return "a1111"
    return ""


def _swarm_params_block(prompt: str | None) -> dict[str, Any] | None:
    data = _load_json_dict(prompt)
    if data is None:
        return None
    params = data.get(SWARM_SIGNATURE)
    return params if isinstance(params, dict) else None


def get_swarm_prompts(prompt: str | None) -> PromptPair | None:
    params = _swarm_params_block(prompt)
    if params is not None:
        pos = params.get("prompt")
        neg = params.get("negativeprompt")
        return PromptPair(
            pos if isinstance(pos, str) else "",
            neg if isinstance(neg, str) else "",
        )
    if prompt and SWARM_LEGACY_SIGNATURE in prompt:
        return PromptPair(get_sv_positive_prompt(prompt), get_sv_negative_prompt(prompt))
    return None


def get_swarm_params(prompt: str | None) -> str:
    """Every `sui_image_params` entry except the prompts, as ``key: value`` pairs."""
    params = _swarm_params_block(prompt)
    if params is None:
        return ""
    parts = []
    for key, value in params.items():
        if key in ("prompt", "negativeprompt"):
            continue
        if isinstance(value, (dict, list)):
            value = json.dumps(value, ensure_ascii=False)
        parts.append(f"{key}: {value}")
    return ", ".join(parts)


# --- ComfyUI graphs -----------------------------------------------------------


def _is_link(value: Any) -> bool:
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        return False
    return isinstance(value[0], (str, int)) and isinstance(value[1], int)


def _looks_like_prompt_graph(value: Any) -> bool:
    if not isinstance(value, dict) or not value:
        return False
    if isinstance(value.get("nodes"), list):
        return False
    valid = 0
    for node in list(value.values())[:8]:
        if isinstance(node, dict) and isinstance(node.get("class_type"), str) and isinstance(node.get("inputs"), dict):
            valid += 1
    return valid >= max(1, min(len(value), 8) // 2)


def _resolve_string(graph: Mapping[str, Any], value: Any) -> str:
    if isinstance(value, str):
        return value
    if not _is_link(value):
        return ""
    node = graph.get(str(value[0]))
    if not isinstance(node, dict):
        return ""
    inputs = node.get("inputs") or {}
    for key in _STRING_VALUE_KEYS:
        candidate = inputs.get(key)
        if isinstance(candidate, str):
            return candidate
    return ""


def _trace_conditioning(graph: Mapping[str, Any], link: Any) -> str:
    """Walk upstream from a conditioning link and join the text-encoder prompts found."""
    texts: list[str] = []
    seen: set[str] = set()
    queue: deque[Any] = deque([link])
    while queue and len(seen) < _MAX_TRACE_NODES:
        current = queue.popleft()
        if not _is_link(current):
            continue
        node_id = str(current[0])
        if node_id in seen:
            continue
        seen.add(node_id)
        node = graph.get(node_id)
        if not isinstance(node, dict):
            continue
        inputs = node.get("inputs") or {}
        found = False
        for key in _TEXT_INPUT_KEYS:
            text = _resolve_string(graph, inputs.get(key))
            if text.strip():
                texts.append(text.strip())
                found = True
                break
        if found:
            continue
        for key, value in inputs.items():
            if "conditioning" in str(key).lower() and _is_link(value):
                queue.append(value)
    return "\n".join(texts)


def _prompts_from_graph(graph: Mapping[str, Any]) -> PromptPair | None:
    for node in graph.values():
        if not isinstance(node, dict):
            continue
        inputs = node.get("inputs") or {}
        if _is_link(inputs.get("positive")) or _is_link(inputs.get("negative")):
            return PromptPair(
                _trace_conditioning(graph, inputs.get("positive")),
                _trace_conditioning(graph, inputs.get("negative")),
            )
    return None


def _prompts_from_workflow(workflow: dict[str, Any]) -> PromptPair | None:
    nodes = workflow.get("nodes")
    if not isinstance(nodes, list):
        return None
    pos: list[str] = []
    neg: list[str] = []
    for node in nodes:
        if not isinstance(node, dict) or "textencode" not in str(node.get("type") or "").lower():
            continue
        values = node.get("widgets_values") or []
        text = next((v for v in values if isinstance(v, str) and v.strip()), "")
        if not text:
            continue
        title = str(node.get("title") or "").lower()
        (neg if "neg" in title else pos).append(text.strip())
    if not pos and not neg:
        return None
    return PromptPair("\n".join(pos), "\n".join(neg))


def get_comfy_prompts(prompt: str | None, workflow: str | None = None) -> PromptPair | None:
    """
    Positive/negative prompts of a ComfyUI generation, or None when neither blob is a graph.

    Sampler `positive`/`negative` links are traced back to text encoders; when the
    prompt graph gives nothing, encoder node titles in the workflow decide the side.
    """
    graph = _load_json_dict(prompt)
    wf = _load_json_dict(workflow)
    is_graph = _looks_like_prompt_graph(graph)
    if not is_graph and wf is None:
        return None
    pair = _prompts_from_graph(graph) if is_graph and graph is not None else None
    if pair is not None and (pair.pos or pair.neg):
        return pair
    fallback = _prompts_from_workflow(wf) if wf is not None else None
    if fallback is not None:
        return fallback
    return pair if is_graph else None


# --- Dialect dispatch -----------------------------------------------------------


def detect_dialect(record: Any, prompt_cache: Mapping[str, Any] | None = None) -> Dialect:
    if prompt_cache is not None and getattr(record, "id", None) in prompt_cache:
        return Dialect.COMFY
    if get_metadata_version(getattr(record, "prompt", None)) == "swarm":
        return Dialect.SWARM
    return Dialect.A1111


def text_for_field(record: Any, field: MatchField, prompt_cache: Mapping[str, PromptPair] | None = None) -> str:
    """Derived text of `record` a search clause is evaluated against."""
    if record is None:
        return ""
    prompt = getattr(record, "prompt", None) or ""
    folder = getattr(record, "folder", "") or ""
    if field == "all":
        return f"{prompt}, Folder: {folder}"
    if field == "folder":
        return folder

    dialect = detect_dialect(record, prompt_cache)
    if dialect is Dialect.COMFY and prompt_cache is not None:
        pos, neg = prompt_cache[record.id]
        if field == "positive":
            return pos
        if field == "negative":
            return neg
        return prompt
    if dialect is Dialect.SWARM:
        pair = get_swarm_prompts(prompt)
        if field == "positive":
            return (pair.pos if pair else "") or prompt
        if field == "negative":
            return pair.neg if pair else ""
        return get_swarm_params(prompt) or get_params(prompt)
    if field == "positive":
        return get_positive_prompt(prompt) or prompt
    if field == "negative":
        return get_negative_prompt(prompt)
    return get_params(prompt)
