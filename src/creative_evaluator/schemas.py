from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class WireModel(BaseModel):
    # Wire keys follow the browser client (imageData, creativeImage, ...); Python code uses snake_case.
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class ImageRef(WireModel):
    name: str = ""
    data: str


class BrandProfile(WireModel):
    logo_files: list[ImageRef] = Field(default_factory=list, alias="logoFiles")
    tone_of_voice_mode: Literal["text", "images"] = Field("text", alias="toneOfVoiceMode")
    tone_of_voice_text: str = Field("", alias="toneOfVoiceText")
    tone_of_voice_images: list[ImageRef] = Field(default_factory=list, alias="toneOfVoiceImages")
    pre_approved_creatives: list[ImageRef] = Field(default_factory=list, alias="preApprovedCreatives")
    target_audience: str = Field("", alias="targetAudience")
    offering_description: str = Field("", alias="offeringDescription")

    def reference_images(self) -> list[str]:
        """Data URIs in the order the model sees them: logos, tone images, pre-approved work."""
        urls = [img.data for img in self.logo_files]
        if self.tone_of_voice_mode == "images":
            urls.extend(img.data for img in self.tone_of_voice_images)
        urls.extend(img.data for img in self.pre_approved_creatives)
        return urls


class CreativeInput(WireModel):
    filename: str
    image_data: str = Field(alias="imageData")
    is_ecommerce: bool = False
    highlighted_product: str = ""
    highlighted_product_image: str | None = None
    platform: str = "Instagram Feed"


class ScoreResult(WireModel):
    filename: str = ""
    image_data: str | None = Field(None, alias="imageData")
    creative_id: str | None = None
    overall_score: int = 0
    brand_subtotal: int = 0
    ecommerce_subtotal: int | None = None
    brand_scores: dict[str, int] = Field(default_factory=dict)
    ecommerce_scores: dict[str, int] | None = None
    strengths: list[str] = Field(default_factory=list)
    risks: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)

    @property
    def is_ecommerce(self) -> bool:
        return self.ecommerce_subtotal is not None


class ResultsData(WireModel):
    executive_summary: str = ""
    comparison_table: str | None = None
    creatives: list[ScoreResult] = Field(default_factory=list)
    csv_data: str | None = None


# --- Request bodies ---------------------------------------------------------
# Required fields default to empty so handlers can answer with the same
# "missing fields" message instead of a generic schema error.


class ScoreRequest(WireModel):
    bip: str = ""
    creatives: list[CreativeInput] = Field(default_factory=list)


class OTPRequest(WireModel):
    email: str = ""
    action: str = ""
    otp: str | None = None


class FeedbackRequest(WireModel):
    creative: ScoreResult | None = None
    creative_image: str = Field("", alias="creativeImage")
    additional_comments: str = Field("", alias="additionalComments")
    emails: list[str] = Field(default_factory=list)


class ApprovalRequest(WireModel):
    filename: str
    image_data: str = Field(alias="imageData")
    is_approved: bool = Field(True, alias="isApproved")


class ApprovalLookupItem(WireModel):
    filename: str
    image_data: str = Field(alias="imageData")


class ApprovalLookupRequest(WireModel):
    creatives: list[ApprovalLookupItem] = Field(default_factory=list)


class CsvExportRequest(WireModel):
    csv_data: str = ""
