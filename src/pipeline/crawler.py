"""
Crawl orchestrator for one entity.

Order of work:
1. Fetch the homepage once (identity: name, website, id, summary). A failure
   here propagates; the record has no identity without it.
2. Plan candidate URLs per crawled field (see planner).
3. Fetch + extract every (field, URL) pair as an independent task, at most
   `url_concurrency` in flight. A failing pair yields None and is logged;
   sibling tasks are never cancelled.
4. Aggregate per field: list fields are concatenated, text fields are joined
   with a single space. Results are combined in URL submission order.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ..models import Entity, PageContent, PartialRecord
from .config import PipelineConfig
from .errors import ExtractionError, FetchError
from .planner import plan_field_urls
from .schema import FieldKind, FieldSpec, Schema

logger = logging.getLogger(__name__)

UNKNOWN_NAME = "Unknown Organization"


def name_from_title(title: Optional[str]) -> str:
    cleaned = (title or "").replace("\n", "").replace("\t", "").strip()
    return cleaned or UNKNOWN_NAME


def aggregate_field(spec: FieldSpec, values: List[Any]) -> Optional[Any]:
    """Combine per-URL results for one field; None when nothing succeeded."""
    present = [value for value in values if value is not None]
    if not present:
        return None

    if spec.kind is FieldKind.TEXT:
        parts = [value.strip() for value in present if value.strip()]
        return " ".join(parts) if parts else None

    if spec.kind is FieldKind.RECORDS:
        items: List[Any] = []
        for value in present:
            items.extend(value)
        return items

    raise TypeError(f"Unsupported field kind {spec.kind!r}")


class EntityCrawler:
    """Produces one PartialRecord per entity from the homepage and planned field URLs.

    Collaborators (duck typed):
        fetcher:   async fetch(url, timeout_ms) -> PageContent
        extractor: extract(spec, text) -> value   (blocking, run in executor)
        search:    search(query) -> List[str]      (blocking, run in executor)
    """

    def __init__(self, schema: Schema, fetcher, extractor, search, config: Optional[PipelineConfig] = None):
        self.schema = schema
        self.fetcher = fetcher
        self.extractor = extractor
        self.search = search
        self.config = config or PipelineConfig()

    def _summary_spec(self) -> Optional[FieldSpec]:
        spec = self.schema.fields.get(self.config.summary_field)
        if spec is not None and spec.kind is FieldKind.TEXT:
            return spec
        return None

    async def fetch_homepage(self, entity: Entity) -> PageContent:
        logger.info(f"🌐 Scraping homepage for {entity.name}: {entity.homepage_url}")
        try:
            return await self.fetcher.fetch(entity.homepage_url, self.config.navigation_timeout_ms)
        except FetchError:
            logger.error(f"❌ Failed to scrape homepage at {entity.homepage_url}")
            raise

    async def crawl_url(self, entity: Entity, spec: FieldSpec, url: str, semaphore: asyncio.Semaphore) -> Optional[Any]:
        """Fetch one URL and extract one field from it; None on any failure."""
        async with semaphore:
            logger.info(f"  🔍 [{entity.name}] scraping field '{spec.name}' from {url}")
            try:
                page = await self.fetcher.fetch(url, self.config.navigation_timeout_ms)
                text = page.text[: self.config.max_text_chars]
                if not text.strip():
                    logger.warning(f"  ⚠️  [{entity.name}] no text found at {url} (field '{spec.name}')")
                    return None
                loop = asyncio.get_running_loop()
                value = await loop.run_in_executor(None, self.extractor.extract, spec, text)
            except FetchError as e:
                logger.warning(f"  ⚠️  [{entity.name}] fetch failed for field '{spec.name}': {e}")
                return None
            except ExtractionError as e:
                logger.warning(f"  ⚠️  [{entity.name}] extraction failed for field '{spec.name}' at {url}: {e}")
                return None
            except Exception as e:
                logger.error(f"  ❌ [{entity.name}] error at {url} (field '{spec.name}'): {e}")
                return None

        if spec.kind is FieldKind.RECORDS and not isinstance(value, list):
            logger.warning(f"  ⚠️  [{entity.name}] '{spec.name}' from {url} is not a list, dropped")
            return None
        if spec.kind is FieldKind.TEXT and not isinstance(value, str):
            logger.warning(f"  ⚠️  [{entity.name}] '{spec.name}' from {url} is not text, dropped")
            return None

        logger.info(f"  📄 [{entity.name}] extracted '{spec.name}' from {url}")
        return value

    async def crawl_fields(self, entity: Entity, field_urls: Dict[str, List[str]]) -> Dict[str, Any]:
        semaphore = asyncio.Semaphore(self.config.url_concurrency)
        jobs: List[Tuple[FieldSpec, str]] = [
            (self.schema[name], url)
            for name, urls in field_urls.items()
            for url in urls
        ]
        results = await asyncio.gather(
            *(self.crawl_url(entity, spec, url, semaphore) for spec, url in jobs)
        )

        per_field: Dict[str, List[Any]] = {name: [] for name in field_urls}
        for (spec, _), value in zip(jobs, results):
            per_field[spec.name].append(value)

        return {name: aggregate_field(self.schema[name], values) for name, values in per_field.items()}

    async def crawl(self, entity: Entity) -> PartialRecord:
        """Crawl one entity into a raw partial record.

        Raises:
            FetchError: the homepage could not be fetched
        """
        homepage = await self.fetch_homepage(entity)

        fields: Dict[str, Any] = {}
        summary_spec = self._summary_spec()
        if summary_spec is not None and homepage.description:
            fields[summary_spec.name] = homepage.description

        field_urls = await plan_field_urls(
            entity.name, self.schema, self.search, limit=self.config.urls_per_field
        )
        crawled = await self.crawl_fields(entity, field_urls)

        for name, value in crawled.items():
            if value is None:
                continue
            spec = self.schema[name]
            if spec.kind is FieldKind.TEXT and name in fields:
                # homepage description first, crawled text after
                fields[name] = f"{fields[name]} {value}"
            else:
                fields[name] = value

        record = PartialRecord(
            name=name_from_title(homepage.title),
            website=entity.homepage_url,
            scraped_at=datetime.now(timezone.utc).isoformat(),
            fields=fields,
        )
        logger.info(f"✅ [{entity.name}] crawled {len(fields)} fields")
        return record
