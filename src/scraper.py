#!/usr/bin/env python3
"""
Organization Profile Scraper - schema-driven crawl, extraction and merge

For every entity (name + homepage URL) in the entity list:
- Scrapes the homepage once for identity and a summary
- Searches for each schema field that declares a search keyword
- Extracts each field from the top candidate pages with an LLM
- Merges partial records into one validated record per entity

Output goes to a fresh run workspace: data/<run id>/

Usage:
    python -m src.scraper --entities data/universities.json --schema schemas/university.json
"""

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

import dotenv
from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from src.models import Entity, RunSummary
from src.pipeline import EntityCrawler, PipelineConfig, RunManager, ScraperError, SchemaParseError, load_schema, start_run
from src.services.extraction import FieldExtractor
from src.services.fetcher import PageFetcher
from src.services.search import BraveSearchClient

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def load_entities(path: Path) -> List[Entity]:
    """Load the ordered entity list: [{"name": ..., "url": ...}, ...]"""
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise SchemaParseError(f"Cannot read entity list {path}: {e}") from e
    try:
        return TypeAdapter(List[Entity]).validate_python(raw)
    except PydanticValidationError as e:
        raise SchemaParseError(f"Invalid entity list {path}: {e}") from e


def build_config(args) -> PipelineConfig:
    config = PipelineConfig.from_env()
    overrides = {
        "data_dir": args.data_dir,
        "urls_per_field": args.urls_per_field,
        "url_concurrency": args.url_concurrency,
        "entity_concurrency": args.entity_concurrency,
        "entity_pacing_seconds": args.pacing,
    }
    return dataclasses.replace(config, **{k: v for k, v in overrides.items() if v is not None})


async def main_async(args) -> RunSummary:
    """Async main"""
    config = build_config(args)
    schema = load_schema(schema_path=args.schema, schema_text=args.schema_text)
    entities = load_entities(args.entities)
    logger.info(f"✅ Loaded {len(entities)} entities\n")

    search = BraveSearchClient()
    extractor = FieldExtractor(model=config.openai_model)

    run = start_run(config.data_dir)
    logger.info(f"📁 Run workspace: {run.workspace}")

    async with PageFetcher() as fetcher:
        crawler = EntityCrawler(schema, fetcher, extractor, search, config)
        manager = RunManager(run, schema, crawler, config)
        return await manager.run_entities(entities)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Schema-driven organization profile scraper")
    parser.add_argument('--entities', type=Path, default=PROJECT_ROOT / "data/universities.json",
                        help='JSON array of {"name", "url"} entries')
    parser.add_argument('--schema', type=Path, default=PROJECT_ROOT / "schemas/university.json",
                        help='Field schema file')
    parser.add_argument('--schema-text', type=str, help='Inline schema JSON (takes priority over --schema)')
    parser.add_argument('--data-dir', type=Path, help='Directory holding run workspaces (default: $DATA_DIR or data)')
    parser.add_argument('--urls-per-field', type=int, help='Search results kept per field (default 3)')
    parser.add_argument('--url-concurrency', type=int, help='Field-URL fetches in flight per entity (default 3)')
    parser.add_argument('--entity-concurrency', type=int, help='Entities in flight per run (default 3)')
    parser.add_argument('--pacing', type=float, help='Minimum seconds between entity starts (default 0)')
    parser.add_argument('--verbose', action='store_true', help='Enable verbose logging')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry"""
    dotenv.load_dotenv()
    args = build_parser().parse_args(argv)

    logging.basicConfig(level=logging.INFO, format='%(asctime)s | %(levelname)s | %(message)s')
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    start = time.time()
    try:
        summary = asyncio.run(main_async(args))
    except (ScraperError, ValueError) as e:
        logger.error(f"❌ Run aborted: {e}")
        return 1
    elapsed = time.time() - start

    logger.info("\n" + "=" * 80)
    logger.info("🎯 SCRAPE COMPLETE")
    logger.info("=" * 80)
    logger.info(f"✅ Merged: {len(summary.succeeded)}/{len(summary.outcomes)}")
    for name in summary.failed:
        logger.info(f"   ❌ {name}")
    logger.info(f"⏱️  Time: {elapsed/60:.1f} min")
    logger.info(f"📁 Output directory: {summary.workspace}")
    logger.info("=" * 80)
    return 0


if __name__ == "__main__":
    sys.exit(main())
