from __future__ import annotations

from creative_evaluator.config import settings
from creative_evaluator.errors import ConfigurationError
from creative_evaluator.providers.base import VisionProvider


def get_vision_provider() -> VisionProvider:
    if settings.vision_provider == "gemini":
        if not settings.gemini_api_key:
            raise ConfigurationError("Gemini API key not configured")
        from creative_evaluator.providers.gemini_provider import GeminiVisionProvider

        return GeminiVisionProvider(api_key=settings.gemini_api_key)

    if settings.vision_provider != "openai":
        raise ConfigurationError(f"Unknown vision provider '{settings.vision_provider}'")
    if not settings.openai_api_key:
        raise ConfigurationError("OpenAI API key not configured")
    from creative_evaluator.providers.openai_provider import OpenAIVisionProvider

    return OpenAIVisionProvider(api_key=settings.openai_api_key)
