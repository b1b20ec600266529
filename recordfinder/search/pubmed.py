"""PubMed source client using Biopython's Entrez module."""

import logging
import os
import time

from Bio import Entrez, Medline

from recordfinder.core.errors import SourceSearchError
from recordfinder.search.base import SourceClient
from recordfinder.search.models import LiteratureItem, SearchOptions

logger = logging.getLogger(__name__)

_RATE_LIMIT_DELAY = 0.34  # seconds between requests (NCBI < 3 req/s)
_MAX_RETRIES = 3
_SNIPPET_LENGTH = 300
_MAX_YEAR = 3000


class PubMedClient(SourceClient):
    """Biomedical and life-science literature indexed by NCBI."""

    source = "pubmed"

    def __init__(self, email: str | None = None, api_key: str | None = None):
        Entrez.email = email or os.environ.get("NCBI_EMAIL") or "first-record-finder@example.org"
        api_key = api_key or os.environ.get("NCBI_API_KEY")
        if api_key:
            Entrez.api_key = api_key

    def search(self, term: str, options: SearchOptions) -> list[LiteratureItem]:
        query = build_query(term, options)
        logger.info("PubMed query: %s", query)

        pmids = _esearch(query, options.max_results)
        if not pmids:
            logger.info("PubMed returned 0 results")
            return []

        items = []
        for rec in _efetch(pmids):
            item = _parse_record(rec, term)
            if item:
                items.append(item)
        logger.info("Fetched %d/%d records from PubMed", len(items), len(pmids))
        return items


# ── Query Builder ────────────────────────────────────────────────────


def build_query(term: str, options: SearchOptions) -> str:
    """Quote the species name, add the regional keyword and date range."""
    query = f'"{term}"'
    if options.include_regional_keyword and options.regional_keyword:
        query += f" AND {options.regional_keyword}"
    if options.year_from or options.year_to:
        start = options.year_from or 1000
        end = options.year_to or _MAX_YEAR
        query = f"({query}) AND {start}:{end}[dp]"
    return query


# ── Entrez Wrappers with Retry ───────────────────────────────────────


def _entrez_call(func, **kwargs):
    """Call an Entrez function with retries and rate limiting."""
    for attempt in range(1, _MAX_RETRIES + 1):
        try:
            time.sleep(_RATE_LIMIT_DELAY)
            return func(**kwargs)
        except Exception as exc:
            if attempt == _MAX_RETRIES:
                raise SourceSearchError("pubmed", str(exc)) from exc
            wait = 2**attempt
            logger.warning(
                "Entrez call failed (attempt %d/%d): %s; retrying in %ds",
                attempt,
                _MAX_RETRIES,
                exc,
                wait,
            )
            time.sleep(wait)


def _esearch(query: str, retmax: int) -> list[str]:
    """Run ESearch and return the ``retmax`` oldest PMIDs, oldest first."""
    handle = _entrez_call(Entrez.esearch, db="pubmed", term=query, retmax=0)
    result = Entrez.read(handle)
    handle.close()

    total = int(result["Count"])
    if total == 0:
        return []

    # pub_date sorts newest first, so the oldest hits are the tail of the list
    handle = _entrez_call(
        Entrez.esearch,
        db="pubmed",
        term=query,
        retmax=retmax,
        retstart=max(0, total - retmax),
        sort="pub_date",
    )
    result = Entrez.read(handle)
    handle.close()
    logger.info("PubMed: %d hits, taking the oldest %d", total, min(total, retmax))
    return list(reversed(result["IdList"]))


def _efetch(pmids: list[str]) -> list[dict]:
    """Fetch MEDLINE records for a batch of PMIDs."""
    handle = _entrez_call(
        Entrez.efetch,
        db="pubmed",
        id=",".join(pmids),
        rettype="medline",
        retmode="text",
    )
    records = list(Medline.parse(handle))
    handle.close()
    return records


# ── Record Parser ────────────────────────────────────────────────────


def _parse_record(rec: dict, searched_name: str) -> LiteratureItem | None:
    """Convert a MEDLINE record dict into a LiteratureItem."""
    title = rec.get("TI")
    pmid = rec.get("PMID")
    if not title or not pmid:
        return None

    # Year from Date of Publication (DP), e.g. "1923 Jan"
    year = None
    dp = rec.get("DP", "")
    if dp:
        try:
            year = int(dp[:4])
        except (ValueError, IndexError):
            pass

    # DOI is in Article Identifier (AID) field, tagged with [doi]
    doi = None
    for aid in rec.get("AID", []):
        if aid.endswith("[doi]"):
            doi = aid.replace(" [doi]", "")
            break

    # PubMed Central copies carry a free PDF
    pdf_url = None
    pmc = rec.get("PMC")
    if pmc:
        pdf_url = f"https://www.ncbi.nlm.nih.gov/pmc/articles/{pmc}/pdf/"

    abstract = rec.get("AB")
    return LiteratureItem(
        id=f"pubmed_{pmid}",
        source="pubmed",
        title=title,
        authors=rec.get("AU", []),
        year=year,
        journal=rec.get("JT"),
        volume=rec.get("VI"),
        pages=rec.get("PG"),
        doi=doi,
        url=f"https://pubmed.ncbi.nlm.nih.gov/{pmid}/",
        pdf_url=pdf_url,
        searched_name=searched_name,
        snippet=abstract[:_SNIPPET_LENGTH] if abstract else None,
        relevance_score=0.6 if abstract else 0.5,
    )
