from __future__ import annotations

from datetime import date
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape
from markupsafe import Markup

from creative_evaluator.schemas import ScoreResult
from creative_evaluator.scoring.prompts import BRAND_MAX, ECOMMERCE_MAX

TEMPLATES_DIR = Path(__file__).resolve().parent / "api" / "templates"


def badge_class(score: int) -> str:
    if score >= 4:
        return "score-green"
    if score == 3:
        return "score-yellow"
    return "score-red"


def max_score(result: ScoreResult) -> int:
    return BRAND_MAX + ECOMMERCE_MAX if result.is_ecommerce else BRAND_MAX


def _is_separator(line: str) -> bool:
    return "---" in line or "===" in line


def markdown_table_to_html(markdown: str) -> Markup:
    """
    Render the model's comparison table. First non-separator line is the
    header; every cell is escaped since the text comes from the model.
    """
    lines = [ln for ln in markdown.strip().splitlines() if ln.strip()]
    if len(lines) < 2:
        return Markup("<p>{}</p>").format(markdown)

    head: list[str] | None = None
    body: list[list[str]] = []
    for line in lines:
        if _is_separator(line):
            continue
        cells = [c.strip() for c in line.split("|")]
        cells = [c for c in cells if c]
        if head is None:
            head = cells
        else:
            body.append(cells)

    parts = [Markup('<table class="comparison-table"><thead><tr>')]
    parts.extend(Markup("<th>{}</th>").format(c) for c in head or [])
    parts.append(Markup("</tr></thead><tbody>"))
    for row in body:
        parts.append(Markup("<tr>"))
        parts.extend(Markup("<td>{}</td>").format(c) for c in row)
        parts.append(Markup("</tr>"))
    parts.append(Markup("</tbody></table>"))
    return Markup("").join(parts)


def long_date(day: date | None = None) -> str:
    d = day or date.today()
    return f"{d:%B} {d.day}, {d.year}"


def build_environment() -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        autoescape=select_autoescape(["html"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["badge_class"] = badge_class
    env.filters["markdown_table"] = markdown_table_to_html
    env.globals["max_score"] = max_score
    env.globals["brand_max"] = BRAND_MAX
    env.globals["ecommerce_max"] = ECOMMERCE_MAX
    return env


environment = build_environment()


def render(template: str, **context) -> str:
    return environment.get_template(template).render(**context)

