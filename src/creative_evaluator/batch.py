from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from creative_evaluator.errors import ValidationError
from creative_evaluator.schemas import CreativeInput
from creative_evaluator.staging import StagedImage, encode_all, stage_image

PLATFORMS = [
    "Instagram Feed",
    "Instagram Story",
    "Instagram Reels",
    "Instagram Carousel",
    "Facebook Feed",
    "Facebook Story",
    "Facebook Reels",
    "TikTok Feed",
    "TikTok Story",
    "YouTube Shorts",
    "YouTube Pre-Roll",
    "YouTube Banner",
    "Twitter/X Feed",
    "Twitter/X Header",
    "LinkedIn Feed",
    "LinkedIn Banner",
    "Pinterest Pin",
    "Snapchat Story",
    "Web Hero Banner",
    "Web Square Banner",
    "Web Leaderboard",
    "Web Skyscraper",
    "Display Banner (300x250)",
    "Display Banner (728x90)",
    "Display Banner (160x600)",
    "Amazon PDP (Main Image)",
    "Amazon A+ Content",
    "Amazon Storefront",
    "Amazon Sponsored Brand",
    "Walmart Product Image",
    "Etsy Listing Image",
    "eBay Listing Image",
    "Shopify Product Image",
    "Email Header",
    "Email Banner",
    "SMS/MMS Creative",
]
DEFAULT_PLATFORM = PLATFORMS[0]


@dataclass
class CreativeDraft:
    id: str
    filename: str
    image: StagedImage
    is_ecommerce: bool = False
    highlighted_product: str = ""
    product_image: StagedImage | None = None
    platform: str = DEFAULT_PLATFORM

    def release(self) -> None:
        self.image.release()
        if self.product_image is not None:
            self.product_image.release()

    def to_input(self) -> CreativeInput:
        # The product slot may legitimately stay empty even for e-commerce creatives.
        product = self.product_image.data_uri if (self.is_ecommerce and self.product_image) else None
        return CreativeInput(
            filename=self.filename,
            image_data=self.image.data_uri,
            is_ecommerce=self.is_ecommerce,
            highlighted_product=self.highlighted_product,
            highlighted_product_image=product,
            platform=self.platform,
        )


@dataclass
class CreativeBatch:
    drafts: list[CreativeDraft] = field(default_factory=list)

    def _draft(self, image: StagedImage) -> CreativeDraft:
        return CreativeDraft(id=uuid.uuid4().hex[:12], filename=image.name, image=image)

    def add(self, filename: str, content: bytes) -> CreativeDraft:
        draft = self._draft(stage_image(filename, content))
        self.drafts.append(draft)
        return draft

    async def add_files(self, files: list[tuple[str, bytes]]) -> list[CreativeDraft]:
        staged = await encode_all(files)
        added = [self._draft(img) for img in staged]
        self.drafts.extend(added)
        return added

    def get(self, draft_id: str) -> CreativeDraft:
        for d in self.drafts:
            if d.id == draft_id:
                return d
        raise KeyError(draft_id)

    def update(
        self,
        draft_id: str,
        *,
        filename: str | None = None,
        platform: str | None = None,
        is_ecommerce: bool | None = None,
        highlighted_product: str | None = None,
    ) -> CreativeDraft:
        draft = self.get(draft_id)
        if platform is not None:
            if platform not in PLATFORMS:
                raise ValidationError(f"unknown platform '{platform}'")
            draft.platform = platform
        if filename is not None and filename.strip():
            draft.filename = filename.strip()
        if is_ecommerce is not None:
            draft.is_ecommerce = is_ecommerce
        if highlighted_product is not None:
            draft.highlighted_product = highlighted_product
        return draft

    def set_product_image(self, draft_id: str, filename: str, content: bytes) -> CreativeDraft:
        draft = self.get(draft_id)
        staged = stage_image(filename, content)
        if draft.product_image is not None:
            draft.product_image.release()
        draft.product_image = staged
        return draft

    def remove(self, draft_id: str) -> bool:
        for idx, d in enumerate(self.drafts):
            if d.id == draft_id:
                d.release()
                del self.drafts[idx]
                return True
        return False

    def clear(self) -> None:
        for d in self.drafts:
            d.release()
        self.drafts.clear()

    def to_inputs(self) -> list[CreativeInput]:
        return [d.to_input() for d in self.drafts]

    def __len__(self) -> int:
        return len(self.drafts)
