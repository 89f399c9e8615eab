from __future__ import annotations

import logging
from typing import Any

import httpx

from creative_evaluator.config import settings
from creative_evaluator.errors import UpstreamError
from creative_evaluator.providers.base import VisionCompletion
from creative_evaluator.staging import decode_data_uri

logger = logging.getLogger(__name__)


class GeminiVisionProvider:
    name = "gemini"

    def __init__(self, api_key: str, model: str | None = None, max_tokens: int | None = None) -> None:
        # Imported lazily so the app can start without the dependency installed.
        from google import genai  # type: ignore

        self._genai = genai
        self.client = genai.Client(api_key=api_key)
        self.model = model or settings.gemini_vision_model
        self.max_tokens = max_tokens or settings.max_output_tokens

    async def complete_json(
        self,
        system_prompt: str,
        text: str,
        image_urls: list[str],
    ) -> VisionCompletion:
        from google.genai import errors, types  # type: ignore

        # Gemini takes raw bytes, so data URIs are unpacked into inline parts.
        contents: list[Any] = [text]
        for url in image_urls:
            mime, data = decode_data_uri(url)
            contents.append(types.Part.from_bytes(data=data, mime_type=mime))

        try:
            resp = await self.client.aio.models.generate_content(
                model=self.model,
                contents=contents,
                config=types.GenerateContentConfig(
                    system_instruction=system_prompt,
                    response_mime_type="application/json",
                    max_output_tokens=self.max_tokens,
                ),
            )
        except errors.APIError as exc:
            raise UpstreamError(getattr(exc, "message", None) or str(exc), provider=self.name) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Gemini request failed: {exc}", provider=self.name) from exc

        raw_text: str | None = getattr(resp, "text", None)
        if not raw_text:
            logger.warning("Gemini returned no text (model=%s)", self.model)
        return VisionCompletion(text=raw_text or "", provider=self.name, model=self.model)
