"""
Error taxonomy for the profile scraping pipeline.

- SchemaParseError: schema or entity document is malformed (aborts the run)
- SearchError: discovery search failed (field degrades to no URLs)
- FetchError: page navigation failed (URL degrades to null, homepage is fatal for the entity)
- ExtractionError: LLM extraction failed (field/URL pair degrades to null)
- ValidationError: merged record violates the schema (entity merge fails, partials kept)
- WorkspaceError: run workspace could not be created (aborts the run)
"""


class ScraperError(Exception):
    """Base class for all pipeline errors."""


class SchemaParseError(ScraperError):
    pass


class SearchError(ScraperError):
    pass


class FetchError(ScraperError):
    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"{reason} ({url})")


class ExtractionError(ScraperError):
    pass


class ValidationError(ScraperError):
    pass


class WorkspaceError(ScraperError):
    pass
