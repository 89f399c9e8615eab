from __future__ import annotations

import json
import logging
from typing import Any

from creative_evaluator.errors import ResponseParseError, ValidationError
from creative_evaluator.profile import parse_profile
from creative_evaluator.providers.base import VisionProvider
from creative_evaluator.providers.registry import get_vision_provider
from creative_evaluator.schemas import CreativeInput, ResultsData, ScoreResult
from creative_evaluator.scoring.csv_export import encode_csv
from creative_evaluator.scoring.prompts import (
    BRAND_MAX,
    BRAND_PARAMETERS,
    ECOMMERCE_MAX,
    ECOMMERCE_PARAMETERS,
    SCORE_MAX,
    SCORE_MIN,
    SYSTEM_PROMPT,
    build_user_message,
    creative_id,
    image_sequence,
)

logger = logging.getLogger(__name__)

MISSING_FIELDS = "Missing required fields: bip and creatives"


class ScoringPipeline:
    """
    Serializes a profile and a creative batch into one vision-model request and
    turns the reply into ResultsData. The batch succeeds or fails as a whole.
    """

    def __init__(self, provider: VisionProvider | None = None) -> None:
        self._provider = provider

    async def score(self, bip: str, creatives: list[CreativeInput]) -> ResultsData:
        if not bip or not creatives:
            raise ValidationError(MISSING_FIELDS)
        provider = self._provider or get_vision_provider()
        profile = parse_profile(bip)

        images = image_sequence(profile, creatives)
        logger.info(
            "Scoring %d creative(s) with %s/%s (%d image(s) total)",
            len(creatives),
            provider.name,
            provider.model,
            len(images),
        )
        completion = await provider.complete_json(SYSTEM_PROMPT, build_user_message(profile, creatives), images)
        payload = parse_model_json(completion.text)
        return normalize_results(payload, creatives)


def _strip_code_fences(text: str) -> str:
    s = text.strip()
    if s.startswith("```"):
        # Remove leading fence line
        first_nl = s.find("\n")
        if first_nl != -1:
            s = s[first_nl + 1 :]
        # Remove trailing fence
        if s.rstrip().endswith("```"):
            s = s.rstrip()[:-3]
    return s.strip()


def parse_model_json(raw_text: str) -> dict[str, Any]:
    if not raw_text or not raw_text.strip():
        raise ResponseParseError("Model returned an empty response")
    try:
        data = json.loads(_strip_code_fences(raw_text))
    except json.JSONDecodeError as exc:
        raise ResponseParseError(f"Model response was not valid JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise ResponseParseError("Model response was not a JSON object")
    return data


def _to_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return None


def _clamp(value: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, value))


def _match_parameter(key: str, names: list[str]) -> str | None:
    # Models sometimes echo the rubric label with its parenthetical, e.g. "Product accuracy (color/form/texture)".
    folded = key.strip().casefold()
    for name in names:
        if folded == name.casefold():
            return name
    for name in names:
        if folded.startswith(name.casefold()):
            return name
    return None


def _scores(raw: Any, names: list[str]) -> dict[str, int]:
    if not isinstance(raw, dict):
        return {}
    found: dict[str, int] = {}
    for key, value in raw.items():
        name = _match_parameter(str(key), names)
        score = _to_int(value)
        if name is None or score is None or name in found:
            continue
        found[name] = _clamp(score, SCORE_MIN, SCORE_MAX)
    # Fixed rubric order regardless of the order the model used.
    return {name: found[name] for name in names if name in found}


def _strings(raw: Any) -> list[str]:
    if isinstance(raw, str):
        return [raw] if raw.strip() else []
    if not isinstance(raw, list):
        return []
    return [str(item).strip() for item in raw if str(item).strip()]


def _subtotal(scores: dict[str, int], claimed: Any, maximum: int) -> int:
    if scores:
        return sum(scores.values())
    value = _to_int(claimed)
    return _clamp(value, 0, maximum) if value is not None else 0


def normalize_result(item: dict[str, Any], source: CreativeInput) -> ScoreResult:
    filename = str(item.get("filename") or source.filename)
    brand_scores = _scores(item.get("brand_scores"), BRAND_PARAMETERS)
    brand_subtotal = _subtotal(brand_scores, item.get("brand_subtotal"), BRAND_MAX)

    ecommerce_scores: dict[str, int] | None = None
    ecommerce_subtotal: int | None = None
    if source.is_ecommerce:
        ecommerce_scores = _scores(item.get("ecommerce_scores"), ECOMMERCE_PARAMETERS) or None
        if ecommerce_scores or item.get("ecommerce_subtotal") is not None:
            ecommerce_subtotal = _subtotal(ecommerce_scores or {}, item.get("ecommerce_subtotal"), ECOMMERCE_MAX)

    overall = brand_subtotal + (ecommerce_subtotal or 0)
    claimed = (_to_int(item.get("brand_subtotal")), _to_int(item.get("overall_score")))
    if claimed != (brand_subtotal, overall):
        logger.warning(
            "Corrected totals for %s: model said brand=%s overall=%s, recomputed brand=%d overall=%d",
            filename,
            claimed[0],
            claimed[1],
            brand_subtotal,
            overall,
        )

    return ScoreResult(
        filename=filename,
        # The submitted image, never a model echo.
        image_data=source.image_data,
        creative_id=item.get("creative_id") if isinstance(item.get("creative_id"), str) else None,
        overall_score=overall,
        brand_subtotal=brand_subtotal,
        ecommerce_subtotal=ecommerce_subtotal,
        brand_scores=brand_scores,
        ecommerce_scores=ecommerce_scores,
        strengths=_strings(item.get("strengths")),
        risks=_strings(item.get("risks")),
        recommendations=_strings(item.get("recommendations")),
    )


def correlate(items: list[dict[str, Any]], creatives: list[CreativeInput]) -> list[tuple[dict[str, Any], CreativeInput]]:
    """
    Pair model results with request creatives. When every result echoes a
    known, distinct creative_id the ids decide; otherwise results are taken
    positionally and anything past the request length is dropped.
    """
    by_id = {creative_id(i): c for i, c in enumerate(creatives)}
    echoed = [item.get("creative_id") for item in items]
    if items and all(e in by_id for e in echoed) and len(set(echoed)) == len(echoed):
        order = {creative_id(i): i for i in range(len(creatives))}
        pairs = sorted(zip(items, echoed), key=lambda p: order[p[1]])
        if len(pairs) < len(creatives):
            logger.warning("Model returned %d result(s) for %d creative(s)", len(pairs), len(creatives))
        return [(item, by_id[cid]) for item, cid in pairs]

    if len(items) != len(creatives):
        logger.warning(
            "Model returned %d result(s) for %d creative(s); matching by position",
            len(items),
            len(creatives),
        )
    return list(zip(items, creatives))


def normalize_results(payload: dict[str, Any], creatives: list[CreativeInput]) -> ResultsData:
    raw_items = payload.get("creatives")
    items = [i for i in raw_items if isinstance(i, dict)] if isinstance(raw_items, list) else []
    results = [normalize_result(item, source) for item, source in correlate(items, creatives)]

    table = payload.get("comparison_table")
    csv_data = payload.get("csv_data") if isinstance(payload.get("csv_data"), str) else None
    if len(creatives) >= 2 and not csv_data:
        csv_data = encode_csv(results)

    return ResultsData(
        executive_summary=str(payload.get("executive_summary") or ""),
        comparison_table=table if isinstance(table, str) and table.strip() else None,
        creatives=results,
        csv_data=csv_data,
    )
