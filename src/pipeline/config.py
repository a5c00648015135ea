"""
Pipeline configuration.

Values come from environment variables (a `.env` file is loaded by the CLI)
and can be overridden per invocation with `dataclasses.replace`.
"""

import os
from dataclasses import dataclass
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


@dataclass(frozen=True)
class PipelineConfig:
    data_dir: Path = Path("data")
    urls_per_field: int = 3
    url_concurrency: int = 3  # field-URL fetches in flight per entity
    entity_concurrency: int = 3  # entities in flight per run
    entity_pacing_seconds: float = 0.0  # minimum gap between entity starts
    navigation_timeout_ms: int = 60000
    max_text_chars: int = 20000
    summary_field: str = "characterSummary"
    openai_model: str = "gpt-4o"

    def __post_init__(self):
        for name in ("urls_per_field", "url_concurrency", "entity_concurrency", "navigation_timeout_ms", "max_text_chars"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1")
        if self.entity_pacing_seconds < 0:
            raise ValueError("entity_pacing_seconds must be >= 0")

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        return cls(
            data_dir=Path(os.getenv("DATA_DIR", "data")),
            urls_per_field=_env_int("URLS_PER_FIELD", 3),
            url_concurrency=_env_int("URL_CONCURRENCY", 3),
            entity_concurrency=_env_int("ENTITY_CONCURRENCY", 3),
            entity_pacing_seconds=_env_float("ENTITY_PACING_SECONDS", 0.0),
            navigation_timeout_ms=_env_int("NAVIGATION_TIMEOUT_MS", 60000),
            max_text_chars=_env_int("MAX_TEXT_CHARS", 20000),
            summary_field=os.getenv("SUMMARY_FIELD", "characterSummary"),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o"),
        )
