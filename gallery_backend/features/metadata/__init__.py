"""Metadata extraction and prompt interpretation."""
from .extractors import (
    ExtractedMetadata,
    find_sidecar,
    read_embedded_metadata,
    read_file_dates,
    read_metadata,
    read_sidecar_text,
    sidecar_candidates,
)
from .interpreter import (
    Dialect,
    PromptPair,
    detect_dialect,
    get_comfy_prompts,
    get_metadata_version,
    get_model,
    get_model_hash,
    get_negative_prompt,
    get_params,
    get_positive_prompt,
    get_sv_negative_prompt,
    get_sv_positive_prompt,
    get_swarm_params,
    get_swarm_prompts,
    text_for_field,
)

__all__ = [
    "ExtractedMetadata",
    "find_sidecar",
    "read_embedded_metadata",
    "read_file_dates",
    "read_metadata",
    "read_sidecar_text",
    "sidecar_candidates",
    "Dialect",
    "PromptPair",
    "detect_dialect",
    "get_comfy_prompts",
    "get_metadata_version",
    "get_model",
    "get_model_hash",
    "get_negative_prompt",
    "get_params",
    "get_positive_prompt",
    "get_sv_negative_prompt",
    "get_sv_positive_prompt",
    "get_swarm_params",
    "get_swarm_prompts",
    "text_for_field",
]
