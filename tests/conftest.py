"""Shared fixtures for the pipeline tests."""

import json

import pytest

from src.pipeline.config import PipelineConfig
from src.pipeline.schema import load_schema

from .fakes import UNIVERSITY_SCHEMA


@pytest.fixture(autouse=True)
def no_global_avoid_env(monkeypatch):
    """Keep a developer's GLOBAL_AVOID_DOMAINS out of the tests."""
    monkeypatch.delenv("GLOBAL_AVOID_DOMAINS", raising=False)


@pytest.fixture
def schema():
    return load_schema(schema_text=json.dumps(UNIVERSITY_SCHEMA), avoid_override=["usnews.com"])


@pytest.fixture
def config():
    return PipelineConfig(url_concurrency=2, entity_concurrency=2, navigation_timeout_ms=1000)
