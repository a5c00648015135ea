from pydantic import BaseModel, Field, field_validator # pyright: ignore[reportMissingImports]
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from pathlib import Path
import uuid

class Entity(BaseModel):
    name: str
    url: str

    @field_validator("name", "url")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @property
    def homepage_url(self) -> str:
        return self.url

class PageContent(BaseModel):
    url: str
    title: str = ""
    description: Optional[str] = None
    text: str = ""

class PartialRecord(BaseModel):
    """Raw output of one crawl pass over one entity; written once, never mutated."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    website: str
    scraped_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    fields: Dict[str, Any] = {}

    def to_document(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "website": self.website,
        }
        document.update(self.fields)
        document["scrapedAt"] = self.scraped_at
        return document

class EntityOutcome(BaseModel):
    entity: Entity
    succeeded: bool
    canonical_path: Optional[Path] = None
    error: Optional[str] = None

class RunSummary(BaseModel):
    run_id: str
    workspace: Path
    outcomes: List[EntityOutcome] = []

    @property
    def succeeded(self) -> List[str]:
        return [o.entity.name for o in self.outcomes if o.succeeded]

    @property
    def failed(self) -> List[str]:
        return [o.entity.name for o in self.outcomes if not o.succeeded]
