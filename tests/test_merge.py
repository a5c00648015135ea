"""
Unit tests for merge & validation.

Tests cover:
- Dedupe by single and composite keys (case-insensitive, first wins)
- Text concatenation order and trimming
- Identity fields kept first-wins
- Validation failures leaving partials untouched
- Byte-identical output for identical input
"""

import json

import pytest

from src.pipeline.errors import ValidationError
from src.pipeline.merge import canonical_path, dedupe_records, discover_partials, merge_entity
from src.pipeline.schema import load_schema


def identity(**overrides):
    document = {
        "id": "0001",
        "name": "Acme University",
        "website": "https://acme.edu",
        "scrapedAt": "2024-10-01T12:00:00+00:00",
    }
    document.update(overrides)
    return document


def write_partials(workspace, key, documents):
    workspace.mkdir(parents=True, exist_ok=True)
    paths = []
    for seq, document in enumerate(documents, start=1):
        path = workspace / f"{key}-{workspace.name}-{seq:03d}.json"
        path.write_text(json.dumps(document), encoding="utf-8")
        paths.append(path)
    return paths


class TestDedupe:
    def test_case_insensitive_first_wins(self):
        items = [
            {"name": "Ada Lovelace", "department": "Math"},
            {"name": "ada lovelace", "department": "CS"},
            {"name": "Alan Turing"},
        ]
        assert dedupe_records(items, ("name",)) == [items[0], items[2]]

    def test_idempotent(self):
        items = [{"name": "A"}, {"name": "a"}, {"name": "B"}, {"name": "b"}]
        once = dedupe_records(items, ("name",))
        assert dedupe_records(once, ("name",)) == once

    def test_composite_key(self):
        events = [
            {"title": "Gala", "date": "2024-10-01"},
            {"title": "Gala", "date": "2024-11-01"},
            {"title": "GALA", "date": "2024-10-01", "description": "later copy"},
        ]
        assert dedupe_records(events, ("title", "date")) == events[:2]

    def test_missing_attribute_counts_as_empty(self):
        events = [{"title": "Gala"}, {"title": "gala", "date": None}, {"title": "Gala", "date": "2024"}]
        assert dedupe_records(events, ("title", "date")) == [events[0], events[2]]

    def test_no_key_keeps_everything(self):
        items = [{"a": "1", "b": "2"}, {"b": "2", "a": "1"}, {"a": "1"}]
        assert dedupe_records(items, ()) == items


class TestMergeEntity:
    def test_events_dedupe_scenario(self, schema, tmp_path):
        workspace = tmp_path / "run1"
        write_partials(workspace, "acme", [
            identity(events=[{"title": "Gala", "date": "2024-10-01"}]),
            identity(id="0002", events=[
                {"title": "gala", "date": "2024-10-01"},
                {"title": "Gala", "date": "2024-11-01"},
            ]),
        ])

        merged = merge_entity("acme", workspace, schema)

        assert merged["events"] == [
            {"title": "Gala", "date": "2024-10-01"},
            {"title": "Gala", "date": "2024-11-01"},
        ]
        assert merged["id"] == "0001"

    def test_duplicate_events_across_two_sources(self, schema, tmp_path):
        workspace = tmp_path / "run1"
        write_partials(workspace, "acme_u", [
            identity(events=[{"title": "Open House", "date": "2024-10-01"}]),
            identity(id="0002", events=[
                {"title": "Open House", "date": "2024-10-01", "description": "from B"},
                {"title": "Career Fair"},
            ]),
        ])

        merged = merge_entity("acme_u", workspace, schema)

        assert merged["events"] == [
            {"title": "Open House", "date": "2024-10-01"},
            {"title": "Career Fair"},
        ]

    def test_text_concatenated_in_file_order_and_trimmed(self, schema, tmp_path):
        workspace = tmp_path / "run1"
        write_partials(workspace, "acme", [
            identity(characterSummary="Coastal college."),
            identity(characterSummary="   "),
            identity(characterSummary="Founded 1900."),
        ])

        merged = merge_entity("acme", workspace, schema)

        assert merged["characterSummary"] == "Coastal college. Founded 1900."

    def test_identity_first_non_empty_wins(self, schema, tmp_path):
        workspace = tmp_path / "run1"
        write_partials(workspace, "acme", [
            identity(name="", website="https://acme.edu"),
            identity(id="0002", name="Acme U", website="https://other.edu"),
        ])

        merged = merge_entity("acme", workspace, schema)

        assert merged["name"] == "Acme U"
        assert merged["website"] == "https://acme.edu"
        assert merged["id"] == "0001"

    def test_output_layout_and_cleanup(self, schema, tmp_path):
        workspace = tmp_path / "run1"
        paths = write_partials(workspace, "acme", [
            identity(professors=[{"name": "Ada"}], extraField="ignored"),
        ])
        write_partials(tmp_path / "run1", "acme_two", [identity(name="Other")])

        merged = merge_entity("acme", workspace, schema)

        output = canonical_path("acme", workspace)
        assert output.name == "acme-run1.json"
        assert json.loads(output.read_text(encoding="utf-8")) == merged
        assert list(merged) == ["id", "name", "website", "professors", "scrapedAt"]
        assert "extraField" not in merged
        assert not any(p.exists() for p in paths)
        # other entities' partials are untouched
        assert discover_partials("acme_two", workspace)

    def test_optional_fields_absent_from_output(self, schema, tmp_path):
        workspace = tmp_path / "run1"
        write_partials(workspace, "acme", [identity()])
        merged = merge_entity("acme", workspace, schema)
        assert set(merged) == {"id", "name", "website", "scrapedAt"}

    def test_required_field_missing_keeps_partials(self, tmp_path):
        schema = load_schema(schema_text=json.dumps({"motto": {"type": "string"}}))
        workspace = tmp_path / "run1"
        paths = write_partials(workspace, "acme", [identity(), identity(id="0002")])

        with pytest.raises(ValidationError):
            merge_entity("acme", workspace, schema)

        assert all(p.exists() for p in paths)
        assert not canonical_path("acme", workspace).exists()

    def test_wrong_kind_rejected(self, schema, tmp_path):
        workspace = tmp_path / "run1"
        write_partials(workspace, "acme", [identity(events="Gala on Friday")])
        with pytest.raises(ValidationError):
            merge_entity("acme", workspace, schema)

    def test_item_missing_required_attribute_rejected(self, schema, tmp_path):
        workspace = tmp_path / "run1"
        write_partials(workspace, "acme", [identity(professors=[{"department": "Math"}])])
        with pytest.raises(ValidationError):
            merge_entity("acme", workspace, schema)

    def test_list_without_dedupe_key_keeps_exact_duplicates(self, tmp_path):
        schema = load_schema(schema_text=json.dumps({
            "tags": {"type": "array", "items": {"t": "string"}},
        }))
        workspace = tmp_path / "run1"
        write_partials(workspace, "acme", [
            identity(tags=[{"t": "x"}]),
            identity(id="0002", tags=[{"t": "x"}]),
        ])

        merged = merge_entity("acme", workspace, schema)

        assert merged["tags"] == [{"t": "x"}, {"t": "x"}]

    def test_no_partials(self, schema, tmp_path):
        workspace = tmp_path / "run1"
        workspace.mkdir()
        with pytest.raises(ValidationError):
            merge_entity("acme", workspace, schema)

    def test_unreadable_partial(self, schema, tmp_path):
        workspace = tmp_path / "run1"
        workspace.mkdir()
        (workspace / "acme-run1-001.json").write_text("{broken", encoding="utf-8")
        with pytest.raises(ValidationError):
            merge_entity("acme", workspace, schema)

    def test_identical_input_gives_identical_bytes(self, schema, tmp_path):
        documents = [
            identity(
                characterSummary="Coastal college.",
                professors=[{"name": "Ada", "department": "Math"}, {"name": "ADA"}],
            ),
            identity(
                id="0002",
                professors=[{"name": "Alan"}],
                events=[{"title": "Gala", "date": "2024-10-01"}],
            ),
        ]
        first = tmp_path / "a" / "run1"
        second = tmp_path / "b" / "run1"
        write_partials(first, "acme", documents)
        write_partials(second, "acme", documents)

        merge_entity("acme", first, schema)
        merge_entity("acme", second, schema)

        assert canonical_path("acme", first).read_bytes() == canonical_path("acme", second).read_bytes()
