"""Structured AI response envelope and its strict parser.

The AI engine is asked to answer with one JSON object:

    {"analysis": "...",
     "models": [{"id": "m1", "description": "...", "tables": [...],
                 "columns": [...], "joins": [...]}],
     "sql": [{"model_id": "m1", "text": "SELECT ..."}]}

optionally wrapped in a fenced ```json block. Free-form text is never
accepted as a query: a reply that does not satisfy the envelope is rejected
as malformed before anything reaches the session.
"""

from __future__ import annotations

import json
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from sqlmodeler_mcp.exceptions import MalformedAIResponseError

_FENCE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)


class ModelJoin(BaseModel):
    """A join proposed for a candidate model."""

    model_config = ConfigDict(populate_by_name=True)

    left_table: str = Field(alias="leftTable")
    right_table: str = Field(alias="rightTable")
    join_type: str = Field(default="INNER", alias="joinType")
    on_columns: list[dict[str, str]] = Field(default_factory=list, alias="onColumns")


class CandidateModel(BaseModel):
    """One proposed data model."""

    id: str = Field(min_length=1, description="Identifier referenced by SQL entries")
    description: str = Field(default="", description="What the model answers")
    tables: list[str] = Field(default_factory=list, description="Tables the model reads")
    columns: list[str] = Field(default_factory=list, description="Selected columns")
    joins: list[ModelJoin] = Field(default_factory=list, description="Joins between tables")


class CandidateSql(BaseModel):
    """A query implementing one candidate model."""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    model_id: str = Field(alias="modelId", min_length=1)
    text: str = Field(min_length=1)


class StructuredAIResponse(BaseModel):
    """The three-section reply: Analysis, Models and SQL."""

    analysis: str = Field(description="Free-text analysis of the request")
    models: list[CandidateModel] = Field(default_factory=list, description="Candidate models")
    sql: list[CandidateSql] = Field(default_factory=list, description="One query per model")

    def payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


def extract_json_object(raw: str) -> dict[str, Any]:
    """Pull the envelope object out of raw model text.

    Tries a fenced ```json block first, then the outermost braces.

    Raises:
        MalformedAIResponseError: If no JSON object can be decoded
    """
    candidates: list[str] = [m.group(1) for m in _FENCE.finditer(raw)]
    start, end = raw.find("{"), raw.rfind("}")
    if start != -1 and end > start:
        candidates.append(raw[start : end + 1])
    for text in candidates:
        try:
            value = json.loads(text)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    msg = "AI reply does not contain a JSON envelope with analysis, models and sql sections"
    raise MalformedAIResponseError(msg)


def parse_envelope(raw: str) -> StructuredAIResponse:
    """Parse and validate an AI reply.

    Raises:
        MalformedAIResponseError: When the reply has no envelope, fails schema
            validation, has models without SQL (or SQL without models), has
            duplicate model ids, or an SQL entry references an unknown model
    """
    data = extract_json_object(raw)
    try:
        response = StructuredAIResponse.model_validate(data)
    except ValidationError as exc:
        msg = f"AI reply does not match the response envelope: {exc.error_count()} errors"
        raise MalformedAIResponseError(msg) from exc

    if response.models and not response.sql:
        msg = "AI reply proposes models but has no SQL section"
        raise MalformedAIResponseError(msg)
    if response.sql and not response.models:
        msg = "AI reply has SQL but no models section"
        raise MalformedAIResponseError(msg)

    ids = [m.id for m in response.models]
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        msg = f"AI reply defines duplicate model ids: {', '.join(duplicates)}"
        raise MalformedAIResponseError(msg)
    dangling = [s.model_id for s in response.sql if s.model_id not in ids]
    if dangling:
        msg = f"AI reply SQL references unknown model ids: {', '.join(dangling)}"
        raise MalformedAIResponseError(msg)
    return response
