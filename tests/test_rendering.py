from datetime import date

import pytest

from conftest import BRAND_SCORES, ECOMMERCE_SCORES
from creative_evaluator.rendering import badge_class, long_date, markdown_table_to_html, max_score, render
from creative_evaluator.schemas import ScoreResult


@pytest.mark.parametrize(
    "score, expected",
    [(5, "score-green"), (4, "score-green"), (3, "score-yellow"), (2, "score-red"), (1, "score-red")],
)
def test_badge_class(score, expected):
    assert badge_class(score) == expected


def test_table_with_header_and_rows():
    html = markdown_table_to_html(
        "| Creative | Score |\n|---|---|\n| a.png | 35 |\n| b.png | 57 |"
    )
    assert html.startswith('<table class="comparison-table"><thead><tr><th>Creative</th><th>Score</th>')
    assert "<tr><td>a.png</td><td>35</td></tr>" in html
    assert "<tr><td>b.png</td><td>57</td></tr>" in html
    assert "---" not in html


def test_single_line_is_a_paragraph():
    assert markdown_table_to_html("No comparison available") == "<p>No comparison available</p>"


def test_model_text_is_escaped():
    html = markdown_table_to_html("| Creative | Note |\n|---|---|\n| <script>x</script> | a & b |")
    assert "<script>" not in html
    assert "&lt;script&gt;x&lt;/script&gt;" in html
    assert "a &amp; b" in html


def test_max_score_depends_on_ecommerce():
    base = dict(
        filename="a.png",
        image_data="data:image/png;base64,AAAA",
        overall_score=35,
        brand_subtotal=35,
        brand_scores=dict(BRAND_SCORES),
    )
    assert max_score(ScoreResult(**base)) == 40
    assert max_score(ScoreResult(**base, ecommerce_subtotal=22, ecommerce_scores=dict(ECOMMERCE_SCORES))) == 65


def test_long_date():
    assert long_date(date(2026, 3, 1)) == "March 1, 2026"


def test_feedback_email_escapes_comments():
    result = ScoreResult(
        filename="<b>a</b>.png",
        image_data="data:image/png;base64,AAAA",
        overall_score=35,
        brand_subtotal=35,
        brand_scores=dict(BRAND_SCORES),
        strengths=["Clean layout"],
    )
    html = render(
        "email/feedback.html",
        creative=result,
        image=result.image_data,
        comments="<img src=x onerror=alert(1)>",
        generated_on="March 1, 2026",
    )
    assert "<img src=x" not in html
    assert "&lt;img src=x onerror=alert(1)&gt;" in html
    assert "&lt;b&gt;a&lt;/b&gt;.png" in html
    assert "35/40" in html
