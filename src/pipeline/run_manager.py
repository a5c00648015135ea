"""
Run manager: one workspace per invocation, entity scheduling, persistence.

Workspace layout (data/<run_id>/):
    <entity_key>-<run_id>-<seq>.json   partial records (deleted after merge)
    <entity_key>-<run_id>.json         canonical merged record
    scrape-log.txt                     append-only event log
"""

import asyncio
import json
import logging
import re
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ..models import Entity, EntityOutcome, PartialRecord, RunSummary
from .config import PipelineConfig
from .crawler import EntityCrawler
from .errors import FetchError, ValidationError, WorkspaceError
from .merge import canonical_path, merge_entity
from .schema import Schema

logger = logging.getLogger(__name__)

RUN_LOG_NAME = "scrape-log.txt"

_KEY_RE = re.compile(r"[^a-z0-9]+")


def entity_key(name: str) -> str:
    """Filesystem-safe key for an entity name; never contains '-'."""
    key = _KEY_RE.sub("_", name.lower()).strip("_")
    return key or "entity"


def new_run_id(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")


@dataclass(frozen=True)
class Run:
    run_id: str
    workspace: Path

    @property
    def log_path(self) -> Path:
        return self.workspace / RUN_LOG_NAME


def start_run(data_dir: Path, now: Optional[datetime] = None) -> Run:
    """Allocate a new run workspace under `data_dir`.

    Raises:
        WorkspaceError: the directory could not be created
    """
    run_id = new_run_id(now)
    workspace = Path(data_dir) / run_id
    try:
        workspace.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise WorkspaceError(f"Cannot create run workspace {workspace}: {e}") from e
    return Run(run_id=run_id, workspace=workspace)


class RunManager:
    """Drives all entities of one run through crawl -> persist -> merge."""

    def __init__(self, run: Run, schema: Schema, crawler: EntityCrawler, config: Optional[PipelineConfig] = None):
        self.run = run
        self.schema = schema
        self.crawler = crawler
        self.config = config or PipelineConfig()
        self._log_lock = threading.Lock()
        self._seq_lock = threading.Lock()
        self._pacing_lock: Optional[asyncio.Lock] = None
        self._last_start: Optional[float] = None

    # ------------------------------------------------------------------
    # workspace I/O
    # ------------------------------------------------------------------

    def record_event(self, message: str) -> None:
        """Append one line to the run log."""
        timestamp = datetime.now(timezone.utc).isoformat()
        line = f"[{timestamp}] {' '.join(message.splitlines())}\n"
        with self._log_lock:
            with open(self.run.log_path, "a", encoding="utf-8") as f:
                f.write(line)

    def _next_partial_path(self, key: str) -> Path:
        prefix = f"{key}-{self.run.run_id}-"
        existing = [p for p in self.run.workspace.glob(f"{prefix}*.json")]
        return self.run.workspace / f"{prefix}{len(existing) + 1:03d}.json"

    def _write_partial(self, key: str, record: PartialRecord) -> Path:
        with self._seq_lock:
            path = self._next_partial_path(key)
            path.write_text(json.dumps(record.to_document(), indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        return path

    async def persist_partial(self, key: str, record: PartialRecord) -> Path:
        loop = asyncio.get_running_loop()
        path = await loop.run_in_executor(None, self._write_partial, key, record)
        logger.info(f"💾 Saved {key} raw data to {path}")
        return path

    async def log_event(self, message: str) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.record_event, message)

    async def merge(self, key: str) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, merge_entity, key, self.run.workspace, self.schema)

    # ------------------------------------------------------------------
    # scheduling
    # ------------------------------------------------------------------

    async def _wait_for_pacing(self) -> None:
        if self.config.entity_pacing_seconds <= 0:
            return
        if self._pacing_lock is None:
            self._pacing_lock = asyncio.Lock()
        async with self._pacing_lock:
            if self._last_start is not None:
                wait = self.config.entity_pacing_seconds - (time.monotonic() - self._last_start)
                if wait > 0:
                    await asyncio.sleep(wait)
            self._last_start = time.monotonic()

    async def process_entity(self, entity: Entity) -> EntityOutcome:
        """Crawl, persist and merge one entity; failures stay inside this entity."""
        key = entity_key(entity.name)
        logger.info(f"\n🎓 Starting scrape for {entity.name}...")
        await self.log_event(f"START {entity.name} ({entity.homepage_url})")

        try:
            record = await self.crawler.crawl(entity)
            await self.persist_partial(key, record)
            await self.merge(key)
        except FetchError as e:
            message = f"FAILED {entity.name}: homepage unavailable: {e}"
        except ValidationError as e:
            message = f"FAILED {entity.name}: merge rejected: {e}"
        except Exception as e:
            logger.exception(f"❌ Unexpected error for {entity.name}")
            message = f"FAILED {entity.name}: {type(e).__name__}: {e}"
        else:
            path = canonical_path(key, self.run.workspace)
            await self.log_event(f"DONE {entity.name} -> {path.name}")
            return EntityOutcome(entity=entity, succeeded=True, canonical_path=path)

        logger.error(f"❌ {message}")
        await self.log_event(message)
        return EntityOutcome(entity=entity, succeeded=False, error=message)

    async def run_entities(self, entities: Iterable[Entity]) -> RunSummary:
        """Process all entities, at most `entity_concurrency` at once."""
        entities = list(entities)
        semaphore = asyncio.Semaphore(self.config.entity_concurrency)
        await self.log_event(f"RUN {self.run.run_id}: {len(entities)} entities")

        async def bounded(entity: Entity) -> EntityOutcome:
            async with semaphore:
                await self._wait_for_pacing()
                return await self.process_entity(entity)

        outcomes: List[EntityOutcome] = await asyncio.gather(*(bounded(e) for e in entities))
        summary = RunSummary(run_id=self.run.run_id, workspace=self.run.workspace, outcomes=outcomes)
        await self.log_event(
            f"RUN COMPLETE: {len(summary.succeeded)} merged, {len(summary.failed)} failed"
        )
        return summary
