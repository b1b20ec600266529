"""Shared data models for search modules."""

import hashlib
import json
import math
import re
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator

from recordfinder.agents.models import AnalysisResult

SearchStrategyName = Literal["historical", "regional", "both"]


class LiteratureItem(BaseModel):
    """A single literature record returned by a search source."""

    id: str = Field(description="Source-qualified id, e.g. openalex_W2741809807")
    source: str
    title: str
    authors: list[str] = Field(default_factory=list)
    year: Optional[int] = None
    journal: Optional[str] = None
    volume: Optional[str] = None
    pages: Optional[str] = None
    doi: Optional[str] = None
    url: str = ""
    pdf_url: Optional[str] = None
    searched_name: str = ""
    snippet: Optional[str] = None
    relevance_score: float = 0.0

    pdf_downloaded: bool = False
    pdf_path: Optional[str] = None
    analysis: Optional[AnalysisResult] = None
    analysis_error: Optional[str] = None

    def dedup_key(self) -> tuple[str, Optional[int]]:
        return (self.title.lower(), self.year)


class SearchOptions(BaseModel):
    """Per-call options passed to a SourceClient."""

    year_from: Optional[int] = None
    year_to: Optional[int] = None
    max_results: int = Field(default=20, ge=1)
    include_regional_keyword: bool = True
    regional_keyword: str = ""


class SearchRequest(BaseModel):
    """A species name plus synonyms to search across sources."""

    term: str
    synonyms: list[str] = Field(default_factory=list)
    sources: list[str] = Field(
        default_factory=list, description="Subset of enabled sources; empty = all"
    )
    year_from: Optional[int] = None
    year_to: Optional[int] = None
    strategy: SearchStrategyName = "both"
    max_results: int = Field(default=20, ge=1)
    max_results_per_bucket: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="after")
    def valid_years(self) -> "SearchRequest":
        if self.year_from and self.year_to and self.year_from > self.year_to:
            raise ValueError(
                f"year_from ({self.year_from}) must be <= year_to ({self.year_to})"
            )
        return self

    def search_terms(self) -> list[str]:
        """Accepted name first, then synonyms, without repeats."""
        terms: list[str] = []
        for t in [self.term, *self.synonyms]:
            t = t.strip()
            if t and t not in terms:
                terms.append(t)
        return terms

    def strategies(self) -> list[str]:
        if self.strategy == "both":
            return ["historical", "regional"]
        return [self.strategy]

    def bucket_size(self) -> int:
        """Results requested per (source, strategy, term) call."""
        if self.max_results_per_bucket:
            return self.max_results_per_bucket
        buckets = len(self.search_terms()) * len(self.strategies())
        return max(1, math.ceil(self.max_results / buckets))

    def signature(self) -> str:
        """Filesystem-safe key identifying this request.

        Readable prefix from the term, plus a short hash of every field that
        changes the result set.
        """
        parts = {
            "term": self.term,
            "synonyms": sorted(s.strip() for s in self.synonyms),
            "sources": sorted(self.sources),
            "years": [self.year_from, self.year_to],
            "strategy": self.strategy,
            "max_results": self.max_results,
            "bucket": self.max_results_per_bucket,
        }
        digest = hashlib.sha256(json.dumps(parts, sort_keys=True).encode()).hexdigest()
        return f"{sanitize_filename(self.term, 60)}_{digest[:12]}"


class SourceError(BaseModel):
    """A non-fatal failure of one source call."""

    source: str
    message: str
    term: Optional[str] = None
    strategy: Optional[str] = None


class SearchResult(BaseModel):
    """Deduplicated, year-ordered items from all sources."""

    term: str
    total_found: int
    items: list[LiteratureItem] = Field(default_factory=list)
    source_errors: list[SourceError] = Field(default_factory=list)
    searched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PdfDownloadResult(BaseModel):
    """Outcome of a PDF download attempt."""

    item_id: str
    success: bool
    path: Optional[str] = None
    error: Optional[str] = None
    size_bytes: Optional[int] = None


# ── Helpers ──────────────────────────────────────────────────────────


_UNSAFE_RE = re.compile(r'[<>:"/\\|?*]')
_SPACE_RE = re.compile(r"\s+")


def sanitize_filename(name: str, max_length: int = 100) -> str:
    """Replace path-hostile characters and whitespace with underscores."""
    name = _UNSAFE_RE.sub("_", name)
    name = _SPACE_RE.sub("_", name)
    return name[:max_length]
