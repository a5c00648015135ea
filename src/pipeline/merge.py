"""
Merge & validation of partial records into one canonical record per entity.

Partial files for an entity are named `<entity_key>-<suffix>.json` inside the
run workspace and are folded in filename order:

- text fields are concatenated (each value followed by a space, trimmed at the
  end). Values from several sources are kept side by side, none is chosen
  over another.
- list fields are concatenated, then deduplicated by the declared `dedupeBy`
  key (case-insensitive, first occurrence wins). Without a declared key the
  concatenated list is kept as is.
- identity fields (id, name, website, scrapedAt) keep the first non-empty value.

The result is validated against the schema's Pydantic model, written as
`<entity_key>-<run dir name>.json` and the partial files are deleted. On a
validation failure nothing is written and the partials stay in place.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .schema import IDENTITY_FIELDS, FieldKind, Schema

logger = logging.getLogger(__name__)

_KEY_SEPARATOR = "\x1f"


def canonical_path(entity_key: str, workspace: Path) -> Path:
    return workspace / f"{entity_key}-{workspace.name}.json"


def discover_partials(entity_key: str, workspace: Path) -> List[Path]:
    """Partial files for one entity in deterministic (filename) order."""
    canonical_name = canonical_path(entity_key, workspace).name
    prefix = f"{entity_key}-"
    return sorted(
        path for path in workspace.iterdir()
        if path.is_file()
        and path.name.startswith(prefix)
        and path.name.endswith(".json")
        and path.name != canonical_name
    )


def record_key(item: Any, attrs: Sequence[str]) -> str:
    values = [item.get(attr) if isinstance(item, dict) else None for attr in attrs]
    return _KEY_SEPARATOR.join(str(value or "").lower() for value in values)


def dedupe_records(items: Iterable[Any], attrs: Sequence[str]) -> List[Any]:
    """Drop later items whose key was already seen; order of survivors is kept.

    The key is the case-insensitive value of `attrs` (missing attributes count
    as empty). With no `attrs` nothing is dropped.
    """
    if not attrs:
        return list(items)
    seen = set()
    kept = []
    for item in items:
        key = record_key(item, attrs)
        if key in seen:
            continue
        seen.add(key)
        kept.append(item)
    return kept


def fold_documents(documents: Iterable[Tuple[str, Dict[str, Any]]], schema: Schema) -> Dict[str, Any]:
    merged: Dict[str, Any] = {}
    for source, document in documents:
        if not isinstance(document, dict):
            raise ValidationError(f"{source} does not contain a JSON object")

        for key, value in document.items():
            if value is None:
                continue

            if key in IDENTITY_FIELDS:
                if not merged.get(key) and value != "":
                    merged[key] = value
                continue

            spec = schema.fields.get(key)
            if spec is None:
                logger.debug(f"Ignoring undeclared field '{key}' in {source}")
                continue

            if spec.kind is FieldKind.TEXT:
                if not isinstance(value, str):
                    raise ValidationError(f"Field '{key}' in {source} must be text, got {type(value).__name__}")
                if not value.strip():
                    continue
                merged[key] = merged.get(key, "") + value + " "
            elif spec.kind is FieldKind.RECORDS:
                if not isinstance(value, list):
                    raise ValidationError(f"Field '{key}' in {source} must be a list, got {type(value).__name__}")
                merged[key] = merged.get(key, []) + value
            else:
                raise ValidationError(f"Unsupported kind {spec.kind!r} for field '{key}'")
    return merged


def normalize_merged(merged: Dict[str, Any], schema: Schema) -> Dict[str, Any]:
    """Dedupe list fields and trim text fields in place."""
    for name, value in merged.items():
        spec = schema.fields.get(name)
        if spec is None:
            continue
        if spec.kind is FieldKind.RECORDS:
            if not spec.dedupe_attrs:
                continue
            before = len(value)
            merged[name] = dedupe_records(value, spec.dedupe_attrs)
            if len(merged[name]) != before:
                logger.debug(f"  🧹 {name}: {before} -> {len(merged[name])} after dedupe")
        elif spec.kind is FieldKind.TEXT:
            merged[name] = value.strip()
    return merged


def validate_record(merged: Dict[str, Any], schema: Schema, entity_key: str) -> Dict[str, Any]:
    """Validate and return the canonical document in stable key order."""
    model = schema.record_model()
    try:
        validated = model.model_validate(merged)
    except PydanticValidationError as e:
        raise ValidationError(f"Merged record for '{entity_key}' violates schema: {e}") from e

    dumped = validated.model_dump(exclude_none=True)
    order = ["id", "name", "website"]
    order += [name for name in schema.fields if name not in IDENTITY_FIELDS]
    order.append("scrapedAt")
    return {key: dumped[key] for key in order if key in dumped}


def _write_json(path: Path, document: Dict[str, Any]) -> None:
    tmp_path = path.with_name(f".{path.name}.tmp")
    tmp_path.write_text(json.dumps(document, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    os.replace(tmp_path, path)


def merge_entity(entity_key: str, workspace: Path, schema: Schema) -> Dict[str, Any]:
    """Merge every partial record of `entity_key` in `workspace` into the canonical record.

    Raises:
        ValidationError: no partials, unreadable partials, or schema violation
    """
    workspace = Path(workspace)
    files = discover_partials(entity_key, workspace)
    logger.info(f"📦 Merging {len(files)} partial files for {entity_key}")
    if not files:
        raise ValidationError(f"No partial records for '{entity_key}' in {workspace}")

    documents = []
    for path in files:
        try:
            documents.append((path.name, json.loads(path.read_text(encoding="utf-8"))))
        except (OSError, json.JSONDecodeError) as e:
            raise ValidationError(f"Cannot read partial record {path.name}: {e}") from e

    merged = normalize_merged(fold_documents(documents, schema), schema)
    canonical = validate_record(merged, schema, entity_key)

    output_path = canonical_path(entity_key, workspace)
    _write_json(output_path, canonical)
    logger.info(f"✅ Merged into {output_path}")

    for path in files:
        path.unlink()
    logger.info(f"🧹 Deleted {len(files)} partial files.")
    return canonical
