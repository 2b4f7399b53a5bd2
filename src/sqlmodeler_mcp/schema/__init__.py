"""Schema collection, formatting and join inference.

Main Components:
- SchemaCollector: reflects data sources under a bounded deadline
- format_schema: deterministic markdown rendering for the AI engine
- suggest_joins: ranked foreign-key and inferred join candidates
- Data models: ColumnSchema, TableSchema, SourceSchema, SchemaSnapshot
"""

from .collector import CollectionResult, CollectionWarning, SchemaCollector
from .formatter import SchemaSummary, format_schema, summarize
from .join_inference import JoinCandidate, suggest_cross_source_joins, suggest_joins
from .models import ColumnSchema, Relationship, SchemaSnapshot, SourceSchema, TableSchema

__all__ = [
    "CollectionResult",
    "CollectionWarning",
    "ColumnSchema",
    "JoinCandidate",
    "Relationship",
    "SchemaCollector",
    "SchemaSnapshot",
    "SchemaSummary",
    "SourceSchema",
    "TableSchema",
    "format_schema",
    "suggest_cross_source_joins",
    "suggest_joins",
    "summarize",
]
