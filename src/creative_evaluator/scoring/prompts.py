from __future__ import annotations

import json

from creative_evaluator.schemas import BrandProfile, CreativeInput

BRAND_PARAMETERS = [
    "Logo usage",
    "Color palette",
    "Typography",
    "Imagery style",
    "Tone of voice",
    "Tagline / messaging alignment",
    "Audience fit",
    "Core message clarity",
]

ECOMMERCE_PARAMETERS = [
    "Product visibility & dominance",
    "Product accuracy",
    "Product angle & presentation",
    "Usage / context clarity",
    "CTA integration & prominence",
]

SCORE_MIN = 1
SCORE_MAX = 5
BRAND_MAX = SCORE_MAX * len(BRAND_PARAMETERS)
ECOMMERCE_MAX = SCORE_MAX * len(ECOMMERCE_PARAMETERS)

SYSTEM_PROMPT = """You are a Brand Creative Evaluator AI specialized in analyzing creative assets against Brand Interpretation Profiles (BIP).

CRITICAL: You must score using a 1-5 scale for individual parameters.

SCORING FRAMEWORK (1-5 scale):
1 = Very Poor, 2 = Needs Improvement, 3 = Acceptable, 4 = Strong, 5 = Fully On-Brand

Brand Expression Parameters (score ALL creatives):
- Logo usage (no modification or alteration of a logo. it has to be present in its entirety as shared)
- Color palette
- Typography
- Imagery style
- Tone of voice
- Tagline / messaging alignment
- Audience fit
- Core message clarity

E-commerce Product Showcase Parameters (ONLY if is_ecommerce = true):
- Product visibility & dominance
- Product accuracy (color/form/texture)
- Product angle & presentation
- Usage / context clarity (if applicable)
- CTA integration & prominence

SCORING TOTALS:
- Brand subtotal: Sum of all 8 brand scores (max 40)
- E-commerce subtotal: Sum of all 5 e-commerce scores (max 25, only if is_ecommerce = true)
- Overall score for non-ecommerce: Brand subtotal (max 40)
- Overall score for ecommerce: Brand subtotal + E-commerce subtotal (max 65)

RECOMMENDATIONS:
For any parameter scored 3 or below, provide at least one specific, actionable recommendation.
Recommendations must:
- Reference concrete adjustments (e.g., "Increase logo size by ~15% and maintain clear space at 1x logo height")
- Avoid vague language (no "make it better" or "improve tone")
- Be specific and measurable

The BIP includes:
- Logo Files (for brand consistency checks)
- Tone of Voice Reference (text description or example images with copy)
- Pre-approved Creatives (examples of approved brand work)
- Target Audience Description
- Offering Description (what the brand sells, when provided)

For each creative to score, you will receive:
- creative_id: An identifier you must echo back unchanged in the matching result
- filename: The name of the creative file
- is_ecommerce: Boolean indicating if this is an e-commerce creative
- highlighted_product: The specific product featured (if applicable)
- highlighted_product_image: A separate image of the highlighted product (for e-commerce creatives)
- platform: The intended placement (e.g. Instagram Feed, Instagram Story, Web Hero Banner, Display Banner, Amazon PDP)

You must return a JSON response with the following structure:

{
  "executive_summary": "Brief 2-3 sentence overview of overall brand alignment across all creatives",
  "comparison_table": "Markdown table comparing all creatives (if 2+ provided)",
  "creatives": [
    {
      "creative_id": "creative-1",
      "filename": "creative1.jpg",
      "overall_score": 57,
      "brand_subtotal": 35,
      "ecommerce_subtotal": 22,
      "brand_scores": {
        "Logo usage": 5,
        "Color palette": 4,
        "Typography": 4,
        "Imagery style": 5,
        "Tone of voice": 4,
        "Tagline / messaging alignment": 5,
        "Audience fit": 4,
        "Core message clarity": 4
      },
      "ecommerce_scores": {
        "Product visibility & dominance": 5,
        "Product accuracy": 4,
        "Product angle & presentation": 4,
        "Usage / context clarity": 5,
        "CTA integration & prominence": 4
      },
      "strengths": [
        "Logo is properly sized and positioned with adequate clear space",
        "Brand colors are consistently applied throughout the design"
      ],
      "risks": [
        "Typography hierarchy could be stronger for mobile viewing",
        "Messaging may not resonate with younger demographic"
      ],
      "recommendations": [
        "Increase headline font size from 18pt to 24pt for better mobile readability",
        "Add a secondary CTA button to capture hesitant buyers"
      ]
    }
  ]
}

IMPORTANT: Return exactly one result per input creative, in the same order, each carrying its creative_id.
Omit ecommerce_subtotal and ecommerce_scores for creatives where is_ecommerce is false.

Analyze images thoroughly, considering:
- Visual elements (colors, typography, layout, imagery)
- Brand consistency and recognition
- Message clarity and tone
- Platform-specific best practices
- Legal/compliance requirements (if logos are altered, this is a critical violation)
- Product presentation quality (for e-commerce)
- Call-to-action effectiveness

Be specific and actionable in your feedback. Every recommendation must be concrete and measurable."""


def creative_id(index: int) -> str:
    return f"creative-{index + 1}"


def describe_profile(profile: BrandProfile) -> str:
    lines = [f"Target Audience: {profile.target_audience}"]
    if profile.offering_description.strip():
        lines.append(f"\nOffering: {profile.offering_description}")
    if profile.tone_of_voice_mode == "text" and profile.tone_of_voice_text.strip():
        lines.append(f"\nTone of Voice: {profile.tone_of_voice_text}")
    return "\n".join(lines)


def creatives_metadata(creatives: list[CreativeInput]) -> list[dict]:
    return [
        {
            "creative_id": creative_id(i),
            "filename": c.filename,
            "is_ecommerce": c.is_ecommerce,
            "highlighted_product": c.highlighted_product,
            "has_product_image": bool(c.is_ecommerce and c.highlighted_product_image),
            "platform": c.platform,
        }
        for i, c in enumerate(creatives)
    ]


def build_user_message(profile: BrandProfile, creatives: list[CreativeInput]) -> str:
    reference_lines = ["- Logo files (for consistency checks - logos must NOT be modified or altered)"]
    if profile.tone_of_voice_mode == "images" and profile.tone_of_voice_images:
        reference_lines.append("- Tone of voice examples (images with copy)")
    if profile.pre_approved_creatives:
        reference_lines.append("- Pre-approved creatives (examples of approved work)")

    return f"""Brand Interpretation Profile (BIP):

{describe_profile(profile)}

Brand reference images follow this message, in this order:
{chr(10).join(reference_lines)}

Creatives to analyze:
{json.dumps(creatives_metadata(creatives), indent=2)}

The creative images to score are provided after the brand reference images, in the order listed above.
An e-commerce creative with has_product_image=true is immediately followed by its product image.

IMPORTANT SCORING INSTRUCTIONS:
1. Score each parameter on a 1-5 scale
2. Calculate brand_subtotal as sum of all 8 brand scores (max 40)
3. If is_ecommerce=true, calculate ecommerce_subtotal as sum of 5 e-commerce scores (max 25)
4. Overall score = brand_subtotal (+ ecommerce_subtotal if applicable)
5. For any score of 3 or below, provide specific, actionable recommendations
6. Echo each creative's creative_id in its result

Please analyze the creatives against the BIP and return a JSON response."""


def image_sequence(profile: BrandProfile, creatives: list[CreativeInput]) -> list[str]:
    """Reference images first, then each creative followed by its product image when present."""
    urls = profile.reference_images()
    for c in creatives:
        urls.append(c.image_data)
        if c.is_ecommerce and c.highlighted_product_image:
            urls.append(c.highlighted_product_image)
    return urls
