"""
Query planner: per-field URL discovery for one entity.

Each crawled field turns "<entity name> <keyword>" into one search. Searches
for different fields run concurrently. Results are filtered against the union
of global and field avoid-lists and truncated to the first K survivors.
"""

import asyncio
import logging
from typing import Dict, FrozenSet, Iterable, List, Tuple
from urllib.parse import urlparse

from .errors import SearchError
from .schema import FieldSpec, Schema

logger = logging.getLogger(__name__)

DEFAULT_URLS_PER_FIELD = 3


def hostname_of(url: str) -> str:
    try:
        return (urlparse(url).hostname or "").lower().rstrip(".")
    except ValueError:
        return ""


def is_avoided(url: str, domains: Iterable[str]) -> bool:
    """True if the URL's host equals a listed domain or is a subdomain of one.

    `sub.banned.edu` matches `banned.edu`; `notbanned.edu.evil.com` does not.
    """
    host = hostname_of(url)
    if not host:
        return True
    return any(host == domain or host.endswith("." + domain) for domain in domains)


def filter_urls(urls: Iterable[str], avoid: FrozenSet[str], limit: int) -> List[str]:
    kept: List[str] = []
    for url in urls:
        if len(kept) >= limit:
            break
        if is_avoided(url, avoid):
            logger.debug(f"  🚫 Avoided: {url}")
            continue
        kept.append(url)
    return kept


def build_query(entity_name: str, keyword: str) -> str:
    return f"{entity_name} {keyword}".strip()


async def _plan_field(
    entity_name: str,
    spec: FieldSpec,
    schema: Schema,
    search,
    limit: int,
) -> Tuple[str, List[str]]:
    query = build_query(entity_name, spec.search_keyword or "")
    loop = asyncio.get_running_loop()
    try:
        raw_urls = await loop.run_in_executor(None, search.search, query)
    except SearchError as e:
        logger.warning(f"⚠️  [{entity_name}] search failed for field '{spec.name}': {e}")
        return spec.name, []
    except Exception as e:
        logger.error(f"❌ [{entity_name}] unexpected search error for field '{spec.name}': {e}")
        return spec.name, []

    urls = filter_urls(raw_urls, schema.avoid_for(spec.name), limit)
    logger.info(f"  🔗 [{entity_name}] {spec.name}: {len(urls)}/{len(raw_urls)} URLs kept")
    return spec.name, urls


async def plan_field_urls(
    entity_name: str,
    schema: Schema,
    search,
    limit: int = DEFAULT_URLS_PER_FIELD,
) -> Dict[str, List[str]]:
    """Map every field with a search keyword to its candidate URLs.

    `search` is any object with a blocking `search(query) -> List[str]`.
    A field whose search fails or yields nothing maps to an empty list.
    """
    tasks = [
        _plan_field(entity_name, spec, schema, search, limit)
        for spec in schema.crawled_fields()
    ]
    results = await asyncio.gather(*tasks)
    return dict(results)
