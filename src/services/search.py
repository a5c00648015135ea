"""
Brave Search API client used for per-field URL discovery.

Returns result URLs in provider rank order. Filtering and truncation are the
query planner's job, so the full result page is returned.
"""

import logging
import os
from typing import List, Optional

import requests

from ..pipeline.errors import SearchError

logger = logging.getLogger(__name__)

BRAVE_SEARCH_ENDPOINT = "https://api.search.brave.com/res/v1/web/search"
SEARCH_TIMEOUT = 15


class BraveSearchClient:
    """Thin wrapper over the Brave web search endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        count: int = 20,
        timeout: float = SEARCH_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key or os.getenv("BRAVE_API_KEY")
        if not self.api_key:
            raise ValueError("BRAVE_API_KEY not provided")
        self.count = count
        self.timeout = timeout
        self.session = session or requests.Session()

    def search(self, query: str) -> List[str]:
        if not query or not query.strip():
            raise SearchError("Cannot search with empty query")

        try:
            response = self.session.get(
                BRAVE_SEARCH_ENDPOINT,
                headers={
                    "Accept": "application/json",
                    "X-Subscription-Token": self.api_key,
                },
                params={"q": query, "count": self.count},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise SearchError(f"Brave search failed for '{query}': {e}") from e

        if response.status_code != 200:
            raise SearchError(f"Brave search failed for '{query}': HTTP {response.status_code} {response.reason}")

        try:
            data = response.json()
        except ValueError as e:
            raise SearchError(f"Brave search returned invalid JSON for '{query}'") from e

        web = data.get("web") if isinstance(data, dict) else None
        if not isinstance(web, dict):
            return []
        results = web.get("results") or []
        urls = [r["url"] for r in results if isinstance(r, dict) and isinstance(r.get("url"), str)]
        logger.debug(f"🔎 '{query}' -> {len(urls)} results")
        return urls
