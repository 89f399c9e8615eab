from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class VisionCompletion:
    text: str
    provider: str
    model: str


class VisionProvider(Protocol):
    name: str
    model: str

    async def complete_json(
        self,
        system_prompt: str,
        text: str,
        image_urls: list[str],
    ) -> VisionCompletion: ...
