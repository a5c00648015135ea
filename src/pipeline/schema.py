"""
Schema model for schema-driven profile extraction.

A schema document maps each output field name to its declared shape:

    {
      "professors": {
        "type": "array",
        "optional": true,
        "search": "professors",
        "dedupeBy": "name",
        "avoid": ["ratemyprofessors.com"],
        "items": {"name": "string", "department": "string?"}
      }
    }

The document is parsed once into an immutable `Schema`. Field kinds and item
attribute types are closed enums, so merge and extraction code branches on the
declared kind instead of inspecting values. Global avoid-domains are resolved
at load time with a fixed precedence (explicit override > env > sidecar file).
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Type

from pydantic import BaseModel, create_model

from .errors import SchemaParseError

logger = logging.getLogger(__name__)

AVOID_ENV_VAR = "GLOBAL_AVOID_DOMAINS"
AVOID_SIDECAR_FILE = "permanently_banned.json"

# Always present on partial and canonical records, merged first-wins
IDENTITY_FIELDS = ("id", "name", "website", "scrapedAt")

_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")
_SUPPORTED_KEYS = {"type", "optional", "search", "dedupeBy", "avoid", "items", "prompt"}


def is_reserved_name(name: str) -> bool:
    """Names pydantic refuses or that would shadow a BaseModel attribute."""
    return name.startswith("model_") or hasattr(BaseModel, name)


class FieldKind(str, Enum):
    TEXT = "string"
    RECORDS = "array"


class AttrType(str, Enum):
    TEXT = "string"
    OPTIONAL_TEXT = "string?"


class RecordIdentity(BaseModel):
    """Identity attributes every record carries."""
    id: str
    name: str
    website: str
    scrapedAt: str


@dataclass(frozen=True)
class FieldSpec:
    name: str
    kind: FieldKind
    optional: bool = False
    search_keyword: Optional[str] = None
    dedupe_key: Optional[str] = None
    avoid_domains: FrozenSet[str] = frozenset()
    item_shape: Tuple[Tuple[str, AttrType], ...] = ()
    prompt: Optional[str] = None

    @property
    def is_crawled(self) -> bool:
        return bool(self.search_keyword)

    @property
    def dedupe_attrs(self) -> Tuple[str, ...]:
        """Attributes forming the dedupe key; `title+date` declares a composite key."""
        if not self.dedupe_key:
            return ()
        return tuple(part.strip() for part in self.dedupe_key.split("+") if part.strip())

    def item_model(self) -> Type[BaseModel]:
        if self.kind is not FieldKind.RECORDS:
            raise TypeError(f"Field '{self.name}' has no item shape")
        return _build_item_model(self)


@dataclass(frozen=True)
class Schema:
    fields: Mapping[str, FieldSpec]
    global_avoid_domains: FrozenSet[str] = field(default_factory=frozenset)

    def __getitem__(self, name: str) -> FieldSpec:
        return self.fields[name]

    def __contains__(self, name: object) -> bool:
        return name in self.fields

    def crawled_fields(self) -> List[FieldSpec]:
        return [spec for spec in self.fields.values() if spec.is_crawled]

    def avoid_for(self, name: str) -> FrozenSet[str]:
        """Union of global and field-level avoid domains."""
        return self.global_avoid_domains | self.fields[name].avoid_domains

    def record_model(self) -> Type[BaseModel]:
        """Pydantic model validating a canonical record against this schema."""
        definitions: Dict[str, Any] = {}
        for spec in self.fields.values():
            if spec.name in IDENTITY_FIELDS:
                continue
            if spec.kind is FieldKind.TEXT:
                annotation: Any = str
            elif spec.kind is FieldKind.RECORDS:
                annotation = List[spec.item_model()]
            else:
                raise SchemaParseError(f"Unsupported field kind {spec.kind!r}")
            if spec.optional:
                definitions[spec.name] = (Optional[annotation], None)
            else:
                definitions[spec.name] = (annotation, ...)
        return create_model("ProfileRecord", __base__=RecordIdentity, **definitions)


@lru_cache(maxsize=None)
def _build_item_model(spec: FieldSpec) -> Type[BaseModel]:
    attrs: Dict[str, Any] = {}
    for attr, attr_type in spec.item_shape:
        if attr_type is AttrType.TEXT:
            attrs[attr] = (str, ...)
        elif attr_type is AttrType.OPTIONAL_TEXT:
            attrs[attr] = (Optional[str], None)
        else:
            raise SchemaParseError(f"Unsupported item type {attr_type!r} for key '{attr}'")
    model_name = spec.name[:1].upper() + spec.name[1:] + "Item"
    return create_model(model_name, **attrs)


# ============================================================================
# LOADING
# ============================================================================

def normalize_domains(domains: Iterable[Any]) -> FrozenSet[str]:
    """Lower-case hostnames, dropping blanks and leading dots."""
    normalized = set()
    for domain in domains:
        if not isinstance(domain, str):
            raise ValueError(f"domain must be a string, got {domain!r}")
        cleaned = domain.strip().lower().lstrip(".")
        if cleaned:
            normalized.add(cleaned)
    return frozenset(normalized)


def _parse_domain_array(raw: str) -> FrozenSet[str]:
    value = json.loads(raw)
    if not isinstance(value, list):
        raise ValueError("expected a JSON array of domains")
    return normalize_domains(value)


def resolve_global_avoid(schema_path: Optional[Path], from_file: bool) -> FrozenSet[str]:
    """Resolve the global avoid list: env variable, else sidecar file, else empty.

    Parse failures degrade to an empty set with a warning.
    """
    env_value = os.getenv(AVOID_ENV_VAR)
    if env_value:
        try:
            return _parse_domain_array(env_value)
        except ValueError:
            logger.warning(f"⚠️  Failed to parse {AVOID_ENV_VAR}. Must be a JSON array of domains.")
            return frozenset()

    if not from_file or schema_path is None:
        return frozenset()

    avoid_path = schema_path.parent / AVOID_SIDECAR_FILE
    if not avoid_path.exists():
        logger.debug(f"No global avoid list at {avoid_path}")
        return frozenset()
    try:
        return _parse_domain_array(avoid_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"⚠️  Could not load global avoid list at {avoid_path}: {e}")
        return frozenset()


def _parse_item_shape(field_name: str, items: Any) -> Tuple[Tuple[str, AttrType], ...]:
    if not isinstance(items, dict) or not items:
        raise SchemaParseError(f"Field '{field_name}' of type 'array' needs a non-empty 'items' mapping")
    shape = []
    for attr, declared in items.items():
        if not isinstance(attr, str) or not _NAME_RE.match(attr):
            raise SchemaParseError(f"Invalid item key {attr!r} in field '{field_name}'")
        if is_reserved_name(attr):
            raise SchemaParseError(f"Item key '{attr}' in field '{field_name}' is a reserved name")
        try:
            shape.append((attr, AttrType(declared)))
        except ValueError:
            raise SchemaParseError(
                f"Unsupported item type \"{declared}\" for key \"{attr}\" in field '{field_name}'"
            ) from None
    return tuple(shape)


def parse_field(name: str, config: Any) -> FieldSpec:
    """Parse one field declaration."""
    if not isinstance(name, str) or not _NAME_RE.match(name):
        raise SchemaParseError(f"Invalid field name {name!r}")
    if is_reserved_name(name):
        raise SchemaParseError(f"Field name '{name}' is reserved")
    if not isinstance(config, dict):
        raise SchemaParseError(f"Field '{name}' must be declared as an object")

    unknown = set(config) - _SUPPORTED_KEYS
    if unknown:
        raise SchemaParseError(f"Unknown keys for field '{name}': {', '.join(sorted(unknown))}")

    try:
        kind = FieldKind(config.get("type"))
    except ValueError:
        raise SchemaParseError(f"Unsupported field type \"{config.get('type')}\" for field \"{name}\"") from None

    if kind is FieldKind.RECORDS:
        item_shape = _parse_item_shape(name, config.get("items"))
    elif "items" in config:
        raise SchemaParseError(f"Field '{name}' of type 'string' cannot declare 'items'")
    else:
        item_shape = ()

    if name in IDENTITY_FIELDS and (kind is not FieldKind.TEXT or config.get("search")):
        raise SchemaParseError(f"Identity field '{name}' must be a plain 'string' field without 'search'")

    optional = config.get("optional", False)
    if not isinstance(optional, bool):
        raise SchemaParseError(f"'optional' for field '{name}' must be a boolean")

    for key in ("search", "dedupeBy", "prompt"):
        if key in config and not isinstance(config[key], str):
            raise SchemaParseError(f"'{key}' for field '{name}' must be a string")

    dedupe_key = config.get("dedupeBy") or None
    if dedupe_key:
        if kind is not FieldKind.RECORDS:
            raise SchemaParseError(f"'dedupeBy' is only valid for array fields (field '{name}')")
        declared_attrs = {attr for attr, _ in item_shape}
        for part in dedupe_key.split("+"):
            if part.strip() not in declared_attrs:
                raise SchemaParseError(f"dedupeBy '{dedupe_key}' references unknown item key in field '{name}'")

    avoid = config.get("avoid", [])
    if not isinstance(avoid, list):
        raise SchemaParseError(f"'avoid' for field '{name}' must be an array of domains")
    try:
        avoid_domains = normalize_domains(avoid)
    except ValueError as e:
        raise SchemaParseError(f"Invalid 'avoid' entry for field '{name}': {e}") from e

    search = (config.get("search") or "").strip() or None

    return FieldSpec(
        name=name,
        kind=kind,
        optional=optional,
        search_keyword=search,
        dedupe_key=dedupe_key,
        avoid_domains=avoid_domains,
        item_shape=item_shape,
        prompt=config.get("prompt") or None,
    )


def load_schema(
    schema_path: Optional[Path] = None,
    schema_text: Optional[str] = None,
    avoid_override: Optional[Iterable[str]] = None,
) -> Schema:
    """Load a schema from inline JSON text or a file path.

    If `schema_text` is provided it takes priority over `schema_path`. The
    sidecar avoid list is only consulted for file-based schemas.
    """
    path = Path(schema_path) if schema_path else None

    if schema_text:
        raw_text = schema_text
        from_file = False
    elif path is not None:
        try:
            raw_text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise SchemaParseError(f"Cannot read schema file {path}: {e}") from e
        from_file = True
    else:
        raise SchemaParseError("You must provide either a schema path or schema text.")

    try:
        document = json.loads(raw_text)
    except json.JSONDecodeError as e:
        raise SchemaParseError(f"Schema is not valid JSON: {e}") from e

    if not isinstance(document, dict) or not document:
        raise SchemaParseError("Schema must be a non-empty JSON object of field declarations")

    fields = {name: parse_field(name, config) for name, config in document.items()}

    if avoid_override is not None:
        global_avoid = normalize_domains(avoid_override)
    else:
        global_avoid = resolve_global_avoid(path, from_file)

    schema = Schema(fields=MappingProxyType(fields), global_avoid_domains=global_avoid)
    logger.info(
        f"📐 Loaded schema: {len(fields)} fields, {len(schema.crawled_fields())} crawled, "
        f"{len(global_avoid)} globally avoided domains"
    )
    return schema
