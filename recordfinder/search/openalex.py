"""OpenAlex source client using the pyalex library."""

import logging
import os
import time

import pyalex
from pyalex import Works, invert_abstract

from recordfinder.core.errors import SourceSearchError
from recordfinder.search.base import SourceClient
from recordfinder.search.models import LiteratureItem, SearchOptions

logger = logging.getLogger(__name__)

_MAX_PER_PAGE = 100
_MAX_RETRIES = 3
_SNIPPET_LENGTH = 300


class OpenAlexClient(SourceClient):
    """Modern literature (primary source for post-1950 papers)."""

    source = "openalex"

    def __init__(self, email: str | None = None):
        email = email or os.environ.get("OPENALEX_EMAIL")
        if email:
            pyalex.config.email = email

    def search(self, term: str, options: SearchOptions) -> list[LiteratureItem]:
        query_text = term
        if options.include_regional_keyword and options.regional_keyword:
            query_text = f"{term} {options.regional_keyword}"

        query = Works().search(query_text)
        year_filter = _year_filter(options.year_from, options.year_to)
        if year_filter:
            query = query.filter(publication_year=year_filter)

        per_page = min(options.max_results, _MAX_PER_PAGE)
        logger.info("OpenAlex query: %s (%s)", query_text, year_filter or "any year")
        works = _get_with_retry(query, per_page)

        items = []
        for work in works:
            item = _parse_work(work, term)
            if item is None or not _in_window(item.year, options):
                continue
            items.append(item)

        items.sort(key=lambda it: it.relevance_score, reverse=True)
        logger.info("OpenAlex returned %d items for %s", len(items), query_text)
        return items


# ── Request with Retry ───────────────────────────────────────────────


def _get_with_retry(query, per_page: int) -> list[dict]:
    """Fetch one page of results, retrying on HTTP errors."""
    for attempt in range(1, _MAX_RETRIES + 1):
        try:
            return list(query.get(per_page=per_page))
        except Exception as exc:
            if attempt == _MAX_RETRIES:
                raise SourceSearchError("openalex", str(exc)) from exc
            wait = 2**attempt
            logger.warning(
                "OpenAlex request failed (attempt %d/%d): %s; retrying in %ds",
                attempt,
                _MAX_RETRIES,
                exc,
                wait,
            )
            time.sleep(wait)
    return []  # pragma: no cover


def _year_filter(year_from: int | None, year_to: int | None) -> str | None:
    if year_from and year_to:
        return f"{year_from}-{year_to}"
    if year_from:
        return f">{year_from - 1}"
    if year_to:
        return f"<{year_to + 1}"
    return None


def _in_window(year: int | None, options: SearchOptions) -> bool:
    if year is None:
        return True
    if options.year_from and year < options.year_from:
        return False
    if options.year_to and year > options.year_to:
        return False
    return True


# ── Abstract Reconstruction ──────────────────────────────────────────


def reconstruct_abstract(inverted_index: dict | None) -> str | None:
    """Reassemble full abstract text from an OpenAlex inverted index.

    Returns None if the inverted index is empty or None.
    """
    if not inverted_index:
        return None
    return invert_abstract(inverted_index)


# ── Work → LiteratureItem ────────────────────────────────────────────


def _parse_work(work: dict, searched_name: str) -> LiteratureItem | None:
    """Convert an OpenAlex Work dict into a LiteratureItem."""
    title = work.get("display_name") or work.get("title")
    if not title:
        return None

    openalex_id = (work.get("id") or "").replace("https://openalex.org/", "")

    doi = work.get("doi")
    if doi and doi.startswith("https://doi.org/"):
        doi = doi[len("https://doi.org/"):]

    authors = []
    for authorship in work.get("authorships") or []:
        author = authorship.get("author") or {}
        name = author.get("display_name") or authorship.get("raw_author_name")
        if name:
            authors.append(name)

    primary = work.get("primary_location") or {}
    best_oa = work.get("best_oa_location") or {}
    open_access = work.get("open_access") or {}
    source = primary.get("source") or {}

    pdf_url = best_oa.get("pdf_url") or primary.get("pdf_url") or open_access.get("oa_url")
    url = (
        primary.get("landing_page_url")
        or (f"https://doi.org/{doi}" if doi else None)
        or f"https://openalex.org/{openalex_id}"
    )

    biblio = work.get("biblio") or {}
    pages = biblio.get("first_page")
    if pages and biblio.get("last_page"):
        pages = f"{pages}-{biblio['last_page']}"

    abstract = reconstruct_abstract(work.get("abstract_inverted_index"))

    return LiteratureItem(
        id=f"openalex_{openalex_id}",
        source="openalex",
        title=title,
        authors=authors,
        year=work.get("publication_year"),
        journal=source.get("display_name"),
        volume=biblio.get("volume"),
        pages=pages,
        doi=doi,
        url=url,
        pdf_url=pdf_url,
        searched_name=searched_name,
        snippet=abstract[:_SNIPPET_LENGTH] if abstract else None,
        relevance_score=relevance_score(work),
    )


def relevance_score(work: dict) -> float:
    """Open access, citations, and a DOI each raise the base score of 0.5."""
    score = 0.5
    if work.get("is_oa") or (work.get("open_access") or {}).get("is_oa"):
        score += 0.2
    cited = work.get("cited_by_count") or 0
    score += min(cited / 100, 0.2)
    if work.get("doi"):
        score += 0.1
    return min(score, 1.0)
