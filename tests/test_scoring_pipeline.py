import asyncio
import base64
import csv
import io
import json

import pytest

from conftest import BRAND_SCORES, ECOMMERCE_SCORES, FakeVisionProvider, bip_json, model_result
from creative_evaluator.config import settings
from creative_evaluator.errors import ConfigurationError, ResponseParseError, ValidationError
from creative_evaluator.schemas import CreativeInput
from creative_evaluator.scoring.pipeline import ScoringPipeline, parse_model_json
from creative_evaluator.scoring.prompts import BRAND_PARAMETERS, ECOMMERCE_PARAMETERS


def _creative(name, ecommerce=False, product=None):
    return CreativeInput(
        filename=name,
        image_data=f"data:image/png;base64,{base64.b64encode(name.encode()).decode()}",
        is_ecommerce=ecommerce,
        highlighted_product="Oat pouch" if ecommerce else "",
        highlighted_product_image=product,
        platform="Instagram Feed",
    )


def _score(reply, creatives, bip=None):
    provider = FakeVisionProvider(reply)
    results = asyncio.run(ScoringPipeline(provider).score(bip or bip_json(), creatives))
    return results, provider


def test_request_holds_reference_images_then_creatives_in_order():
    creatives = [
        _creative("a.png"),
        _creative("b.png", ecommerce=True, product="data:image/png;base64,UFJPRFVDVA=="),
    ]
    reply = {"executive_summary": "ok", "creatives": [model_result("a.png"), model_result("b.png", ecommerce=True)]}

    _, provider = _score(reply, creatives)

    call = provider.calls[0]
    assert call["image_urls"] == [
        "data:image/png;base64,TE9HTw==",
        "data:image/png;base64,QVBQUk9WRUQ=",
        creatives[0].image_data,
        creatives[1].image_data,
        "data:image/png;base64,UFJPRFVDVA==",
    ]
    assert "Target Audience: Urban parents aged 28-40" in call["text"]
    assert "Offering: Organic baby food subscription" in call["text"]
    assert '"creative_id": "creative-2"' in call["text"]
    # Image bytes stay out of the text part.
    assert creatives[0].image_data not in call["text"]


def test_totals_follow_parameter_scores():
    creatives = [_creative("a.png"), _creative("b.png", ecommerce=True)]
    reply = {
        "creatives": [
            model_result("a.png", overall_score=99, brand_subtotal=12),
            model_result("b.png", ecommerce=True),
        ]
    }

    results, _ = _score(reply, creatives)

    for r in results.creatives:
        assert r.brand_subtotal == sum(r.brand_scores.values())
        assert all(1 <= v <= 5 for v in r.brand_scores.values())
        assert r.overall_score == r.brand_subtotal + (r.ecommerce_subtotal or 0)
    assert results.creatives[0].overall_score == sum(BRAND_SCORES.values())
    assert results.creatives[1].ecommerce_subtotal == sum(ECOMMERCE_SCORES.values())
    assert len(results.creatives[1].ecommerce_scores) == 5


def test_out_of_range_scores_are_clamped():
    brand = dict(BRAND_SCORES, **{"Logo usage": 9, "Typography": 0, "Audience fit": "3"})
    results, _ = _score({"creatives": [model_result("a.png", brand_scores=brand)]}, [_creative("a.png")])

    scores = results.creatives[0].brand_scores
    assert scores["Logo usage"] == 5
    assert scores["Typography"] == 1
    assert scores["Audience fit"] == 3
    assert list(scores) == BRAND_PARAMETERS


def test_parameter_labels_with_parentheticals_are_recognised():
    ecommerce = {f"{k} (detail)": v for k, v in ECOMMERCE_SCORES.items()}
    results, _ = _score(
        {"creatives": [model_result("a.png", ecommerce=True, ecommerce_scores=ecommerce)]},
        [_creative("a.png", ecommerce=True)],
    )
    assert list(results.creatives[0].ecommerce_scores) == ECOMMERCE_PARAMETERS


def test_ecommerce_fields_dropped_for_brand_only_creatives():
    results, _ = _score({"creatives": [model_result("a.png", ecommerce=True)]}, [_creative("a.png")])
    r = results.creatives[0]
    assert r.ecommerce_subtotal is None
    assert r.ecommerce_scores is None
    assert r.overall_score == r.brand_subtotal


def test_missing_image_data_is_backfilled_by_position():
    creatives = [_creative("a.png"), _creative("b.png"), _creative("c.png")]
    reply = {"creatives": [model_result("a.png"), model_result("b.png"), model_result("c.png")]}

    results, _ = _score(reply, creatives)

    assert len(results.creatives) == 3
    for i, r in enumerate(results.creatives):
        assert r.image_data == creatives[i].image_data


def test_echoed_ids_win_over_position():
    creatives = [_creative("a.png"), _creative("b.png")]
    reply = {
        "creatives": [
            model_result("b.png", creative_id="creative-2"),
            model_result("a.png", creative_id="creative-1"),
        ]
    }

    results, _ = _score(reply, creatives)

    assert [r.filename for r in results.creatives] == ["a.png", "b.png"]
    assert results.creatives[0].image_data == creatives[0].image_data
    assert results.creatives[1].image_data == creatives[1].image_data


def test_extra_results_beyond_request_are_dropped():
    creatives = [_creative("a.png")]
    reply = {"creatives": [model_result("a.png"), model_result("ghost.png")]}
    results, _ = _score(reply, creatives)
    assert [r.filename for r in results.creatives] == ["a.png"]


def test_csv_is_synthesised_for_two_or_more_creatives():
    creatives = [_creative("a.png"), _creative("b.png", ecommerce=True)]
    reply = {"creatives": [model_result("a.png"), model_result("b.png", ecommerce=True)]}

    results, _ = _score(reply, creatives)

    rows = list(csv.reader(io.StringIO(base64.b64decode(results.csv_data).decode("utf-8"))))
    assert len(rows) == 3
    header = rows[0]
    assert rows[1][header.index("E-commerce Subtotal")] == "N/A"
    assert rows[1][header.index("Product accuracy")] == "N/A"
    assert rows[2][header.index("E-commerce Subtotal")] == "22"


def test_model_supplied_csv_is_kept():
    creatives = [_creative("a.png"), _creative("b.png")]
    reply = {"creatives": [model_result("a.png"), model_result("b.png")], "csv_data": "bW9kZWw="}
    results, _ = _score(reply, creatives)
    assert results.csv_data == "bW9kZWw="


def test_single_creative_gets_no_csv():
    results, _ = _score({"creatives": [model_result("a.png")]}, [_creative("a.png")])
    assert results.csv_data is None


def test_invalid_model_json_is_a_parse_error():
    with pytest.raises(ResponseParseError):
        _score("Sorry, I cannot help with that.", [_creative("a.png")])


def test_fenced_json_is_accepted():
    payload = parse_model_json('```json\n{"executive_summary": "fine"}\n```')
    assert payload == {"executive_summary": "fine"}


def test_malformed_profile_surfaces_at_scoring_time():
    with pytest.raises(ResponseParseError):
        _score({"creatives": []}, [_creative("a.png")], bip="not json")


def test_empty_inputs_are_rejected_before_any_call():
    provider = FakeVisionProvider({})
    with pytest.raises(ValidationError):
        asyncio.run(ScoringPipeline(provider).score("", [_creative("a.png")]))
    with pytest.raises(ValidationError):
        asyncio.run(ScoringPipeline(provider).score(bip_json(), []))
    assert provider.calls == []


def test_missing_api_key_is_a_configuration_error(monkeypatch):
    monkeypatch.setattr(settings, "vision_provider", "openai")
    monkeypatch.setattr(settings, "openai_api_key", None)
    with pytest.raises(ConfigurationError) as exc:
        asyncio.run(ScoringPipeline().score(bip_json(), [_creative("a.png")]))
    assert exc.value.status_code == 500


def test_list_fields_default_to_empty():
    item = {"filename": "a.png", "brand_scores": BRAND_SCORES}
    results, _ = _score({"creatives": [item]}, [_creative("a.png")])
    r = results.creatives[0]
    assert (r.strengths, r.risks, r.recommendations) == ([], [], [])
    assert json.loads(results.model_dump_json())["creatives"][0]["filename"] == "a.png"


def test_echoed_image_data_is_ignored():
    creatives = [_creative("a.png")]
    echoed = model_result("a.png", imageData="data:image/png;base64,dHJ1bmNhdGVk")
    results, _ = _score({"creatives": [echoed]}, creatives)
    assert results.creatives[0].image_data == creatives[0].image_data
