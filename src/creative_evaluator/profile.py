from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

import pydantic

from creative_evaluator.errors import ResponseParseError, ValidationError
from creative_evaluator.schemas import BrandProfile, ImageRef
from creative_evaluator.staging import StagingArea

logger = logging.getLogger(__name__)

PROFILE_INCOMPLETE = "Please upload at least one logo file and provide a target audience description."
TONE_MODES = ("text", "images")


@dataclass
class BrandProfileAssembler:
    """Collects the Brand Interpretation Profile (BIP) inputs until they are saved."""

    logos: StagingArea = field(default_factory=StagingArea)
    tone_images: StagingArea = field(default_factory=StagingArea)
    pre_approved: StagingArea = field(default_factory=StagingArea)
    tone_of_voice_mode: str = "text"
    tone_of_voice_text: str = ""
    target_audience: str = ""
    offering_description: str = ""

    def set_tone_mode(self, mode: str) -> None:
        if mode not in TONE_MODES:
            raise ValidationError(f"tone of voice mode must be one of {', '.join(TONE_MODES)}")
        self.tone_of_voice_mode = mode

    def build(self) -> BrandProfile:
        if not len(self.logos) or not self.target_audience.strip():
            raise ValidationError(PROFILE_INCOMPLETE)
        return BrandProfile(
            logo_files=[ImageRef(name=i.name, data=i.data_uri) for i in self.logos],
            tone_of_voice_mode=self.tone_of_voice_mode,
            tone_of_voice_text=self.tone_of_voice_text,
            tone_of_voice_images=[ImageRef(name=i.name, data=i.data_uri) for i in self.tone_images],
            pre_approved_creatives=[ImageRef(name=i.name, data=i.data_uri) for i in self.pre_approved],
            target_audience=self.target_audience,
            offering_description=self.offering_description,
        )

    def to_json(self) -> str:
        """The opaque BIP document handed to the scoring pipeline as-is."""
        profile = self.build()
        logger.info(
            "Saved brand profile: %d logo(s), %d tone image(s), %d pre-approved",
            len(profile.logo_files),
            len(profile.tone_of_voice_images),
            len(profile.pre_approved_creatives),
        )
        return json.dumps(profile.model_dump(by_alias=True), indent=2)


def parse_profile(bip: str) -> BrandProfile:
    """
    Decode a saved BIP string. The shape is not checked at save time, so a
    malformed document only surfaces here, when scoring starts.
    """
    try:
        raw = json.loads(bip)
    except json.JSONDecodeError as exc:
        raise ResponseParseError(f"Brand profile is not valid JSON: {exc.msg}") from exc
    if not isinstance(raw, dict):
        raise ResponseParseError("Brand profile must be a JSON object")
    try:
        return BrandProfile.model_validate(raw)
    except pydantic.ValidationError as exc:
        raise ResponseParseError(f"Brand profile has an unexpected shape: {exc.error_count()} error(s)") from exc
