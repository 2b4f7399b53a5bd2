"""Join candidate inference over collected schemas.

Declared foreign keys are always the strongest candidates. Tables without
declared constraints get rule-based suggestions from column naming patterns,
each with a confidence score:

1. Exact column name match (0.95), e.g. ``orders.customer_id`` and
   ``payments.customer_id``; generic names such as ``id`` or ``name`` are skipped
2. Id pattern (0.90): ``orders.id`` and ``order_items.order_id``
3. Matching id suffix (0.85): ``product_ref_id`` and ``product_ref_id``
4. Table reference in column name (0.75): ``shipments.order_no`` and ``orders.id``
5. Common identifier patterns (0.70): ``uuid``, ``code``, ``key``, ``reference``

Columns of incompatible type families never match. Across two sources there
are no foreign keys, so names are compared after normalization and ranked by
string similarity instead.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from difflib import SequenceMatcher
import re
from typing import Any, Final, Literal

from .models import ColumnSchema, Relationship, SourceSchema, TableSchema
from .type_families import types_compatible

MIN_CONFIDENCE: Final[float] = 0.6
CROSS_SOURCE_LIMIT: Final[int] = 5

_GENERIC_COLUMNS: Final[frozenset[str]] = frozenset(
    {
        "id",
        "name",
        "title",
        "description",
        "status",
        "type",
        "created_at",
        "updated_at",
        "deleted_at",
        "created",
        "updated",
    }
)
_IDENTIFIER_PATTERNS: Final[tuple[str, ...]] = ("uuid", "code", "key", "reference", "ref")
_IRREGULAR_PLURALS: Final[dict[str, str]] = {
    "people": "person",
    "children": "child",
    "men": "man",
    "women": "woman",
}
_KEY_SUFFIX = re.compile(r"_(id|key|code)$")


@dataclass(frozen=True)
class JoinCandidate:
    """A suggested join between two columns.

    The left side is the referencing column and the right side the referenced
    one whenever the rule can tell them apart.
    """

    left_table: str
    left_column: str
    left_type: str
    right_table: str
    right_column: str
    right_type: str
    confidence: float
    reason: str
    origin: Literal["foreign_key", "inferred"] = "inferred"
    patterns: tuple[str, ...] = ()
    left_source: str | None = None
    right_source: str | None = None

    @property
    def confidence_level(self) -> Literal["high", "medium", "low"]:
        return confidence_level(self.confidence)

    def pair_key(self) -> frozenset[tuple[str | None, str, str]]:
        """Identity of the column pair regardless of orientation."""
        return frozenset(
            {
                (self.left_source, self.left_table.lower(), self.left_column.lower()),
                (self.right_source, self.right_table.lower(), self.right_column.lower()),
            }
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "left_table": self.left_table,
            "left_column": self.left_column,
            "left_type": self.left_type,
            "right_table": self.right_table,
            "right_column": self.right_column,
            "right_type": self.right_type,
            "confidence": round(self.confidence, 3),
            "confidence_level": self.confidence_level,
            "reason": self.reason,
            "origin": self.origin,
            "patterns": list(self.patterns),
            "suggested_join_type": "INNER" if self.origin == "foreign_key" else "LEFT",
        }
        if self.left_source is not None:
            out["left_source"] = self.left_source
            out["right_source"] = self.right_source
        return out


def confidence_level(score: float) -> Literal["high", "medium", "low"]:
    """Map a 0-1 confidence score to a band."""
    if score >= 0.7:  # noqa: PLR2004
        return "high"
    if score >= 0.4:  # noqa: PLR2004
        return "medium"
    return "low"


def singularize(word: str) -> str:
    """Naive English singular form used for table-name matching."""
    lower = word.lower()
    if lower in _IRREGULAR_PLURALS:
        return _IRREGULAR_PLURALS[lower]
    if lower.endswith("ies") and len(lower) > 3:  # noqa: PLR2004
        return lower[:-3] + "y"
    if lower.endswith(("ses", "xes", "ches", "shes")):
        return lower[:-2]
    if lower.endswith("s") and not lower.endswith("ss"):
        return lower[:-1]
    return lower


def evaluate_column_match(
    left: ColumnSchema, right: ColumnSchema, left_table: str, right_table: str
) -> tuple[float, str, tuple[str, ...]]:
    """Score a column pair; returns ``(confidence, reason, patterns)``.

    A confidence of 0 means no rule matched.
    """
    if not types_compatible(left.type, right.type):
        return 0.0, "Incompatible types", ()

    c1 = left.name.lower()
    c2 = right.name.lower()
    t1 = singularize(left_table)
    t2 = singularize(right_table)

    if c1 == c2 and c1 not in _GENERIC_COLUMNS:
        return 0.95, f"Exact column name match: {left.name}", ("exact_name_match", "type_match")

    if c1 == "id" and c2 == f"{t1}_id":
        return 0.90, f"ID pattern: {left_table}.id -> {right.name}", ("id_suffix", "type_match")
    if c2 == "id" and c1 == f"{t2}_id":
        return 0.90, f"ID pattern: {right_table}.id -> {left.name}", ("id_suffix", "type_match")

    if c1.endswith("_id") and c1 == c2:
        return 0.85, f"Matching ID suffix: {left.name}", ("matching_suffix", "type_match")

    if c2 == "id" and t2 in c1:
        reason = f"Table reference: {left.name} -> {right_table}"
        return 0.75, reason, ("table_reference", "type_match")
    if c1 == "id" and t1 in c2:
        reason = f"Table reference: {right.name} -> {left_table}"
        return 0.75, reason, ("table_reference", "type_match")

    for pattern in _IDENTIFIER_PATTERNS:
        if c1 == pattern and c2 == pattern:
            return 0.70, f"Common identifier pattern: {pattern}", ("common_pattern", "type_match")
        if c1 == f"{t2}_{pattern}" and c2 == pattern:
            return 0.70, f"Identifier reference: {left.name}", ("common_pattern", "type_match")
        if c2 == f"{t1}_{pattern}" and c1 == pattern:
            return 0.70, f"Identifier reference: {right.name}", ("common_pattern", "type_match")

    return 0.0, "No pattern match", ()


def _is_referenced_side(col: ColumnSchema) -> bool:
    return col.is_pk or col.name.lower() == "id"


def best_column_match(
    left: TableSchema, right: TableSchema, min_confidence: float = MIN_CONFIDENCE
) -> JoinCandidate | None:
    """Return the highest-scoring column pair between two tables, if any."""
    best: JoinCandidate | None = None
    for c1 in left.columns:
        for c2 in right.columns:
            score, reason, patterns = evaluate_column_match(c1, c2, left.name, right.name)
            if score < min_confidence or (best is not None and score <= best.confidence):
                continue
            # Orient from the referencing column to the referenced one.
            if _is_referenced_side(c1) and not _is_referenced_side(c2):
                best = JoinCandidate(
                    left_table=right.qualified_name,
                    left_column=c2.name,
                    left_type=c2.type,
                    right_table=left.qualified_name,
                    right_column=c1.name,
                    right_type=c1.type,
                    confidence=score,
                    reason=reason,
                    patterns=patterns,
                )
            else:
                best = JoinCandidate(
                    left_table=left.qualified_name,
                    left_column=c1.name,
                    left_type=c1.type,
                    right_table=right.qualified_name,
                    right_column=c2.name,
                    right_type=c2.type,
                    confidence=score,
                    reason=reason,
                    patterns=patterns,
                )
    return best


def foreign_key_candidates(tables: Sequence[TableSchema]) -> list[JoinCandidate]:
    """Turn declared foreign keys into full-confidence candidates."""
    by_name = {t.qualified_name.lower(): t for t in tables}
    out: list[JoinCandidate] = []
    for table in tables:
        for fk in table.foreign_keys:
            local = table.column(fk.column)
            target = by_name.get(fk.referenced_table.lower())
            remote = target.column(fk.referenced_column) if target is not None else None
            out.append(
                JoinCandidate(
                    left_table=table.qualified_name,
                    left_column=fk.column,
                    left_type=local.type if local is not None else "",
                    right_table=fk.referenced_table,
                    right_column=fk.referenced_column,
                    right_type=remote.type if remote is not None else "",
                    confidence=1.0,
                    reason=f"Foreign key constraint: {table.name}.{fk.column}",
                    origin="foreign_key",
                    patterns=("foreign_key",),
                )
            )
    return out


def infer_table_joins(
    tables: Sequence[TableSchema], min_confidence: float = MIN_CONFIDENCE
) -> list[JoinCandidate]:
    """Infer at most one join per table pair not already linked by a foreign key."""
    linked: set[frozenset[str]] = set()
    for table in tables:
        for fk in table.foreign_keys:
            linked.add(frozenset({table.qualified_name.lower(), fk.referenced_table.lower()}))

    out: list[JoinCandidate] = []
    for i, left in enumerate(tables):
        for right in tables[i + 1 :]:
            pair = frozenset({left.qualified_name.lower(), right.qualified_name.lower()})
            if pair in linked:
                continue
            candidate = best_column_match(left, right, min_confidence)
            if candidate is not None:
                out.append(candidate)
    return out


def rank_candidates(candidates: Iterable[JoinCandidate]) -> list[JoinCandidate]:
    """De-duplicate by column pair (keeping the strongest) and sort by confidence."""
    best: dict[frozenset[tuple[str | None, str, str]], JoinCandidate] = {}
    for cand in candidates:
        key = cand.pair_key()
        current = best.get(key)
        if current is None or cand.confidence > current.confidence:
            best[key] = cand
    return sorted(
        best.values(),
        key=lambda c: (
            -c.confidence,
            c.left_source or "",
            c.left_table,
            c.left_column,
            c.right_table,
            c.right_column,
        ),
    )


def suggest_joins(source: SourceSchema, limit: int | None = None) -> list[JoinCandidate]:
    """Ranked join candidates for one source: foreign keys first, then inferred joins."""
    tables = list(source.tables)
    ranked = rank_candidates([*foreign_key_candidates(tables), *infer_table_joins(tables)])
    return ranked if limit is None else ranked[:limit]


def with_inferred_relationships(tables: Sequence[TableSchema]) -> list[TableSchema]:
    """Attach inferred joins to the referencing table of each candidate."""
    extra: dict[str, list[Relationship]] = {}
    for cand in infer_table_joins(tables):
        extra.setdefault(cand.left_table.lower(), []).append(
            Relationship(
                column=cand.left_column,
                referenced_table=cand.right_table,
                referenced_column=cand.right_column,
                origin="inferred",
                confidence=cand.confidence,
            )
        )
    out: list[TableSchema] = []
    for table in tables:
        added = extra.get(table.qualified_name.lower())
        if added:
            table = replace(table, relationships=(*table.relationships, *added))  # noqa: PLW2901
        out.append(table)
    return out


# ---- cross-source ----------------------------------------------------------


def normalize_column_name(name: str) -> str:
    """Lowercase, drop a trailing ``_id``/``_key``/``_code`` and remove underscores."""
    return _KEY_SUFFIX.sub("", name.lower()).replace("_", "")


def name_similarity(left: str, right: str) -> float:
    """Similarity (0-1) between two column names after normalization."""
    a = normalize_column_name(left)
    b = normalize_column_name(right)
    if not a or not b:
        return 0.0
    if a == b:
        return 0.95
    return SequenceMatcher(None, a, b).ratio()


def suggest_cross_source_joins(
    left: SourceSchema,
    right: SourceSchema,
    *,
    limit: int = CROSS_SOURCE_LIMIT,
    min_confidence: float = MIN_CONFIDENCE,
) -> list[JoinCandidate]:
    """Rank column pairs across two sources by normalized name similarity.

    Only key-like columns (primary keys or names ending in ``_id``, ``_key``
    or ``_code``) are considered, and both types must be compatible.
    """
    def keyish(col: ColumnSchema) -> bool:
        return col.is_pk or bool(_KEY_SUFFIX.search(col.name.lower()))

    out: list[JoinCandidate] = []
    for lt in left.tables:
        for rt in right.tables:
            for lc in lt.columns:
                if not keyish(lc):
                    continue
                for rc in rt.columns:
                    if not keyish(rc) or not types_compatible(lc.type, rc.type):
                        continue
                    score = name_similarity(lc.name, rc.name)
                    if score < min_confidence:
                        continue
                    out.append(
                        JoinCandidate(
                            left_table=lt.qualified_name,
                            left_column=lc.name,
                            left_type=lc.type,
                            right_table=rt.qualified_name,
                            right_column=rc.name,
                            right_type=rc.type,
                            confidence=score,
                            reason=f"Similar key columns: {lc.name} ~ {rc.name}",
                            patterns=("cross_source_name_match",),
                            left_source=left.source_label,
                            right_source=right.source_label,
                        )
                    )
    return rank_candidates(out)[:limit]
