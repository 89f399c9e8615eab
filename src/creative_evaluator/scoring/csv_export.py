from __future__ import annotations

import base64
import binascii
import csv
import io
from datetime import date

from creative_evaluator.errors import ResponseParseError
from creative_evaluator.schemas import ScoreResult
from creative_evaluator.scoring.prompts import BRAND_PARAMETERS, ECOMMERCE_PARAMETERS

NOT_APPLICABLE = "N/A"

CSV_COLUMNS = [
    "Filename",
    "Overall Score",
    "Brand Subtotal",
    "E-commerce Subtotal",
    *BRAND_PARAMETERS,
    *ECOMMERCE_PARAMETERS,
    "Top Strength",
    "Top Risk",
]


def _row(result: ScoreResult) -> list[str | int]:
    ecommerce = result.ecommerce_scores or {}
    return [
        result.filename,
        result.overall_score,
        result.brand_subtotal,
        NOT_APPLICABLE if result.ecommerce_subtotal is None else result.ecommerce_subtotal,
        *(result.brand_scores.get(p, "") for p in BRAND_PARAMETERS),
        *(ecommerce.get(p, NOT_APPLICABLE) for p in ECOMMERCE_PARAMETERS),
        result.strengths[0] if result.strengths else "",
        result.risks[0] if result.risks else "",
    ]


def build_csv(results: list[ScoreResult]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for result in results:
        writer.writerow(_row(result))
    return buf.getvalue()


def encode_csv(results: list[ScoreResult]) -> str:
    return base64.b64encode(build_csv(results).encode("utf-8")).decode("ascii")


def decode_csv(csv_data: str) -> str:
    try:
        return base64.b64decode(csv_data, validate=True).decode("utf-8")
    except (binascii.Error, ValueError) as exc:
        raise ResponseParseError("CSV export is not valid base64") from exc


def csv_filename(day: date | None = None) -> str:
    return f"creative-scores-{(day or date.today()).isoformat()}.csv"
