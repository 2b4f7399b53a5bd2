"""SQL type family classification.

Rendered column types differ per dialect (``INTEGER``, ``BIGINT``, ``int4``,
``NUMBER(10, 0)``...). Join inference and federated join checks only care
about whether two columns can be compared, so types are reduced to a family.
"""

from __future__ import annotations

import re
from typing import Final

_FAMILY_MEMBERS: Final[dict[str, tuple[str, ...]]] = {
    "boolean": ("bool", "boolean", "bit"),
    "integer": (
        "int",
        "integer",
        "smallint",
        "bigint",
        "tinyint",
        "mediumint",
        "int2",
        "int4",
        "int8",
        "serial",
        "smallserial",
        "bigserial",
    ),
    "numeric": (
        "numeric",
        "decimal",
        "number",
        "real",
        "float",
        "float4",
        "float8",
        "double",
        "double precision",
        "money",
        "smallmoney",
    ),
    "string": (
        "char",
        "character",
        "character varying",
        "varchar",
        "varchar2",
        "nchar",
        "nvarchar",
        "nvarchar2",
        "text",
        "ntext",
        "tinytext",
        "mediumtext",
        "longtext",
        "citext",
        "clob",
        "string",
        "enum",
    ),
    "date": (
        "date",
        "time",
        "timetz",
        "datetime",
        "datetime2",
        "smalldatetime",
        "datetimeoffset",
        "timestamp",
        "timestamptz",
    ),
    "uuid": ("uuid", "uniqueidentifier"),
}

_LOOKUP: Final[dict[str, str]] = {
    member: family for family, members in _FAMILY_MEMBERS.items() for member in members
}

# Integers join cleanly against exact numerics (ids stored as NUMERIC/NUMBER).
_COMPATIBLE_FAMILIES: Final[set[frozenset[str]]] = {frozenset({"integer", "numeric"})}

_PARENS = re.compile(r"\(.*?\)")
_NOISE = re.compile(r"\b(unsigned|signed|zerofill|with(out)? time zone|collate \S+)\b")


def base_type(type_text: str) -> str:
    """Return the lowercase base type name without precision or modifiers."""
    lowered = _PARENS.sub("", type_text.lower())
    lowered = _NOISE.sub("", lowered)
    return " ".join(lowered.replace("[]", " array").split())


def type_family(type_text: str) -> str | None:
    """Classify a rendered SQL type into a family, or None when unknown."""
    base = base_type(type_text)
    if not base or "array" in base.split(" "):
        return None
    if base in _LOOKUP:
        return _LOOKUP[base]
    return _LOOKUP.get(base.split(" ")[0])


def types_compatible(left: str, right: str) -> bool:
    """Return True when two column types may be compared in a join condition."""
    left_family = type_family(left)
    right_family = type_family(right)
    if left_family is None or right_family is None:
        return base_type(left) == base_type(right) != ""
    if left_family == right_family:
        return True
    return frozenset({left_family, right_family}) in _COMPATIBLE_FAMILIES
