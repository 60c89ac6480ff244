"""Per-record cache of ComfyUI positive/negative prompts."""
from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping

from ..metadata.interpreter import PromptPair, get_comfy_prompts
from .models import ImageRecord


class ComfyPromptCache(Mapping[str, PromptPair]):
    """
    Maps record id to the prompts traced out of its node graph.

    Membership doubles as dialect detection: a record is treated as a ComfyUI
    generation exactly when it has an entry here.
    """

    def __init__(self) -> None:
        self._prompts: dict[str, PromptPair] = {}

    def __getitem__(self, image_id: str) -> PromptPair:
        return self._prompts[image_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._prompts)

    def __len__(self) -> int:
        return len(self._prompts)

    def add(self, record: ImageRecord) -> bool:
        pair = get_comfy_prompts(record.prompt, record.workflow) if record.has_metadata else None
        if pair is None:
            self._prompts.pop(record.id, None)
            return False
        self._prompts[record.id] = pair
        return True

    def remove(self, image_id: str) -> None:
        self._prompts.pop(image_id, None)

    def build(self, records: Iterable[ImageRecord]) -> int:
        self._prompts.clear()
        for record in records:
            self.add(record)
        return len(self._prompts)
