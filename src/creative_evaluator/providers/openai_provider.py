from __future__ import annotations

import logging
from typing import Any

from creative_evaluator.config import settings
from creative_evaluator.errors import UpstreamError
from creative_evaluator.providers.base import VisionCompletion

logger = logging.getLogger(__name__)


class OpenAIVisionProvider:
    name = "openai"

    def __init__(self, api_key: str, model: str | None = None, max_tokens: int | None = None) -> None:
        from openai import AsyncOpenAI  # type: ignore

        self.client = AsyncOpenAI(api_key=api_key)
        self.model = model or settings.openai_vision_model
        self.max_tokens = max_tokens or settings.max_output_tokens

    async def complete_json(
        self,
        system_prompt: str,
        text: str,
        image_urls: list[str],
    ) -> VisionCompletion:
        """
        One system message, one user message: the text part first, then every
        image inline as a data URI. The reply is constrained to a JSON object.
        """
        import openai  # type: ignore

        content: list[dict[str, Any]] = [{"type": "text", "text": text}]
        content.extend({"type": "image_url", "image_url": {"url": url}} for url in image_urls)

        try:
            resp = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": content},
                ],
                response_format={"type": "json_object"},
                max_tokens=self.max_tokens,
            )
        except openai.APIStatusError as exc:
            raise UpstreamError(_error_message(exc), provider=self.name) from exc
        except openai.OpenAIError as exc:
            raise UpstreamError(str(exc) or "OpenAI request failed", provider=self.name) from exc

        choice = resp.choices[0] if resp.choices else None
        raw = (choice.message.content if choice else None) or ""
        if choice is not None and choice.finish_reason == "length":
            logger.warning("OpenAI reply truncated at max_tokens=%d", self.max_tokens)
        return VisionCompletion(text=raw, provider=self.name, model=self.model)


def _error_message(exc: Any) -> str:
    body = getattr(exc, "body", None)
    if isinstance(body, dict):
        err = body.get("error") if isinstance(body.get("error"), dict) else body
        msg = err.get("message") if isinstance(err, dict) else None
        if msg:
            return str(msg)
    return getattr(exc, "message", None) or "OpenAI request failed"
