from __future__ import annotations

import json

from conftest import envelope
import pytest

from sqlmodeler_mcp.conversation.envelope import extract_json_object, parse_envelope
from sqlmodeler_mcp.exceptions import MalformedAIResponseError


def test_parse_plain_envelope() -> None:
    response = parse_envelope(envelope())
    assert response.analysis == "Orders per customer"
    assert [m.id for m in response.models] == ["m1"]
    assert response.sql[0].model_id == "m1"
    assert response.models[0].joins[0].on_columns == [{"left": "o.customer_id", "right": "c.id"}]


def test_parse_fenced_envelope_with_surrounding_prose() -> None:
    raw = "Here you go:\n```json\n" + envelope(analysis="fenced") + "\n```\nAnything else?"
    assert parse_envelope(raw).analysis == "fenced"


def test_camel_case_keys_are_accepted() -> None:
    raw = json.dumps(
        {
            "analysis": "a",
            "models": [
                {
                    "id": "m1",
                    "joins": [{"leftTable": "x", "rightTable": "y", "joinType": "LEFT"}],
                }
            ],
            "sql": [{"modelId": "m1", "text": "SELECT 1"}],
        }
    )
    response = parse_envelope(raw)
    assert response.models[0].joins[0].join_type == "LEFT"
    assert response.payload()["sql"][0]["model_id"] == "m1"


def test_clarifying_reply_without_models_is_valid() -> None:
    response = parse_envelope('{"analysis": "Which period?", "models": [], "sql": []}')
    assert response.models == []
    assert response.sql == []


def test_dangling_model_id_is_malformed() -> None:
    data = json.loads(envelope())
    data["sql"][0]["model_id"] = "m9"
    with pytest.raises(MalformedAIResponseError, match="m9"):
        parse_envelope(json.dumps(data))


@pytest.mark.parametrize(
    ("mutate", "match"),
    [
        (lambda d: d.update(sql=[]), "no SQL section"),
        (lambda d: d.update(models=[]), "no models section"),
        (lambda d: d["models"].append(dict(d["models"][0])), "duplicate model ids"),
        (lambda d: d.pop("analysis"), "does not match"),
    ],
)
def test_inconsistent_sections_are_malformed(mutate, match: str) -> None:  # noqa: ANN001
    data = json.loads(envelope())
    mutate(data)
    with pytest.raises(MalformedAIResponseError, match=match):
        parse_envelope(json.dumps(data))


@pytest.mark.parametrize("raw", ["", "Sure! SELECT * FROM t", "[1, 2, 3]", "{not json}"])
def test_free_text_is_never_accepted(raw: str) -> None:
    with pytest.raises(MalformedAIResponseError):
        extract_json_object(raw)
