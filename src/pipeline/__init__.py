"""
Schema-driven extraction-and-merge pipeline.

This package turns a user-supplied field schema into a crawl plan, per-field
extraction requests and one merged, validated record per entity.
"""

from .config import PipelineConfig
from .crawler import EntityCrawler, aggregate_field
from .errors import (
    ExtractionError,
    FetchError,
    SchemaParseError,
    ScraperError,
    SearchError,
    ValidationError,
    WorkspaceError,
)
from .merge import canonical_path, dedupe_records, merge_entity
from .planner import is_avoided, plan_field_urls
from .run_manager import Run, RunManager, entity_key, start_run
from .schema import AttrType, FieldKind, FieldSpec, Schema, load_schema

__all__ = [
    # Configuration
    "PipelineConfig",
    # Schema
    "AttrType",
    "FieldKind",
    "FieldSpec",
    "Schema",
    "load_schema",
    # Planning and crawling
    "is_avoided",
    "plan_field_urls",
    "EntityCrawler",
    "aggregate_field",
    # Merge
    "canonical_path",
    "dedupe_records",
    "merge_entity",
    # Runs
    "Run",
    "RunManager",
    "entity_key",
    "start_run",
    # Errors
    "ScraperError",
    "SchemaParseError",
    "SearchError",
    "FetchError",
    "ExtractionError",
    "ValidationError",
    "WorkspaceError",
]
