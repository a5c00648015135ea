"""
Unit tests for schema loading.

Tests cover:
- Field kinds, item shapes, search keywords, dedupe keys and avoid lists
- Inline text priority over file paths
- Global avoid-list precedence (override > env > sidecar file > empty)
- SchemaParseError for malformed or unsupported declarations
"""

import json
import logging

import pytest
from pydantic import ValidationError as PydanticValidationError

from src.pipeline.errors import SchemaParseError
from src.pipeline.schema import AttrType, FieldKind, load_schema

from .fakes import UNIVERSITY_SCHEMA


def write_schema(directory, document, banned=None):
    path = directory / "schema.json"
    path.write_text(json.dumps(document), encoding="utf-8")
    if banned is not None:
        (directory / "permanently_banned.json").write_text(banned, encoding="utf-8")
    return path


class TestFieldSpecs:
    def test_kinds_and_item_shape(self, schema):
        assert schema["characterSummary"].kind is FieldKind.TEXT
        assert schema["characterSummary"].item_shape == ()
        professors = schema["professors"]
        assert professors.kind is FieldKind.RECORDS
        assert professors.item_shape == (
            ("name", AttrType.TEXT),
            ("department", AttrType.OPTIONAL_TEXT),
            ("bioSnippet", AttrType.OPTIONAL_TEXT),
        )

    def test_search_keywords_and_crawled_fields(self, schema):
        assert schema["admissionsFocus"].search_keyword == "admissions"
        assert schema["characterSummary"].search_keyword is None
        assert [s.name for s in schema.crawled_fields()] == ["admissionsFocus", "professors", "events"]

    def test_dedupe_keys(self, schema):
        assert schema["professors"].dedupe_attrs == ("name",)
        assert schema["events"].dedupe_attrs == ("title", "date")
        assert schema["admissionsFocus"].dedupe_attrs == ()

    def test_avoid_union(self, schema):
        assert schema.avoid_for("professors") == {"usnews.com", "ratemyprofessors.com"}
        assert schema.avoid_for("events") == {"usnews.com"}

    def test_item_model_optional_attributes(self, schema):
        model = schema["professors"].item_model()
        item = model(name="Ada Lovelace")
        assert item.department is None
        with pytest.raises(PydanticValidationError):
            model(department="Math")

    def test_record_model_requires_non_optional_fields(self):
        schema = load_schema(schema_text=json.dumps({"motto": {"type": "string"}}))
        model = schema.record_model()
        identity = {"id": "1", "name": "Acme U", "website": "https://acme.edu", "scrapedAt": "now"}
        assert model.model_validate({**identity, "motto": "Lux"}).motto == "Lux"
        with pytest.raises(PydanticValidationError):
            model.model_validate(identity)


class TestSources:
    def test_load_from_file(self, tmp_path):
        path = write_schema(tmp_path, UNIVERSITY_SCHEMA)
        schema = load_schema(schema_path=path)
        assert list(schema.fields) == list(UNIVERSITY_SCHEMA)

    def test_inline_text_takes_priority(self, tmp_path):
        path = write_schema(tmp_path, UNIVERSITY_SCHEMA, banned='["usnews.com"]')
        schema = load_schema(schema_path=path, schema_text=json.dumps({"motto": {"type": "string"}}))
        assert list(schema.fields) == ["motto"]
        # the sidecar file only applies to file-based schemas
        assert schema.global_avoid_domains == frozenset()

    def test_neither_source(self):
        with pytest.raises(SchemaParseError):
            load_schema()

    def test_missing_file(self, tmp_path):
        with pytest.raises(SchemaParseError):
            load_schema(schema_path=tmp_path / "missing.json")


class TestGlobalAvoidList:
    def test_sidecar_file(self, tmp_path):
        path = write_schema(tmp_path, UNIVERSITY_SCHEMA, banned='["USNews.com", "niche.com"]')
        schema = load_schema(schema_path=path)
        assert schema.global_avoid_domains == {"usnews.com", "niche.com"}

    def test_env_beats_sidecar(self, tmp_path, monkeypatch):
        path = write_schema(tmp_path, UNIVERSITY_SCHEMA, banned='["niche.com"]')
        monkeypatch.setenv("GLOBAL_AVOID_DOMAINS", '["usnews.com"]')
        schema = load_schema(schema_path=path)
        assert schema.global_avoid_domains == {"usnews.com"}

    def test_override_beats_env(self, monkeypatch):
        monkeypatch.setenv("GLOBAL_AVOID_DOMAINS", '["usnews.com"]')
        schema = load_schema(schema_text=json.dumps(UNIVERSITY_SCHEMA), avoid_override=["niche.com"])
        assert schema.global_avoid_domains == {"niche.com"}

    def test_env_applies_to_inline_schema(self, monkeypatch):
        monkeypatch.setenv("GLOBAL_AVOID_DOMAINS", '["usnews.com"]')
        schema = load_schema(schema_text=json.dumps(UNIVERSITY_SCHEMA))
        assert schema.global_avoid_domains == {"usnews.com"}

    def test_invalid_env_degrades_to_empty(self, tmp_path, monkeypatch, caplog):
        path = write_schema(tmp_path, UNIVERSITY_SCHEMA, banned='["niche.com"]')
        monkeypatch.setenv("GLOBAL_AVOID_DOMAINS", "usnews.com")
        with caplog.at_level(logging.WARNING):
            schema = load_schema(schema_path=path)
        assert schema.global_avoid_domains == frozenset()
        assert "GLOBAL_AVOID_DOMAINS" in caplog.text

    def test_invalid_sidecar_degrades_to_empty(self, tmp_path, caplog):
        path = write_schema(tmp_path, UNIVERSITY_SCHEMA, banned="{not json")
        with caplog.at_level(logging.WARNING):
            schema = load_schema(schema_path=path)
        assert schema.global_avoid_domains == frozenset()
        assert "permanently_banned.json" in caplog.text

    def test_missing_sidecar_is_empty(self, tmp_path):
        path = write_schema(tmp_path, UNIVERSITY_SCHEMA)
        assert load_schema(schema_path=path).global_avoid_domains == frozenset()


class TestParseErrors:
    @pytest.mark.parametrize(
        "document",
        [
            {"score": {"type": "number"}},
            {"tags": {"type": "array", "items": {"label": "number"}}},
            {"tags": {"type": "array"}},
            {"tags": {"type": "array", "items": {}}},
            {"motto": {"type": "string", "items": {"a": "string"}}},
            {"motto": {"type": "string", "optional": "yes"}},
            {"motto": {"type": "string", "avoid": "usnews.com"}},
            {"motto": {"type": "string", "dedupeBy": "motto"}},
            {"tags": {"type": "array", "dedupeBy": "slug", "items": {"label": "string"}}},
            {"motto": {"type": "string", "colour": "blue"}},
            {"name": {"type": "array", "items": {"a": "string"}}},
            {"website": {"type": "string", "search": "homepage"}},
            {"bad-name": {"type": "string"}},
            {"motto": "string"},
            {},
        ],
    )
    def test_rejected_declarations(self, document):
        with pytest.raises(SchemaParseError):
            load_schema(schema_text=json.dumps(document))

    def test_malformed_json(self):
        with pytest.raises(SchemaParseError):
            load_schema(schema_text="{\"motto\": ")

    def test_non_object_document(self):
        with pytest.raises(SchemaParseError):
            load_schema(schema_text="[1, 2]")

    @pytest.mark.parametrize("name", ["model_config", "model_dump", "json", "copy"])
    def test_reserved_field_names(self, name):
        with pytest.raises(SchemaParseError):
            load_schema(schema_text=json.dumps({name: {"type": "string", "optional": True}}))

    def test_reserved_item_keys(self):
        document = {"tags": {"type": "array", "items": {"model_config": "string"}}}
        with pytest.raises(SchemaParseError):
            load_schema(schema_text=json.dumps(document))


def test_fields_are_read_only(schema):
    with pytest.raises(TypeError):
        schema.fields["motto"] = schema["characterSummary"]
    assert "motto" not in schema
