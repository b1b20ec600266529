"""Multi-source search: sources × strategies × terms, merged and year-ordered."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from recordfinder.core.config import FinderConfig
from recordfinder.core.store import FinderStore
from recordfinder.search.base import SourceClient
from recordfinder.search.dedup import deduplicate, sort_by_year
from recordfinder.search.models import (
    LiteratureItem,
    SearchOptions,
    SearchRequest,
    SearchResult,
    SourceError,
    sanitize_filename,
)
from recordfinder.search.openalex import OpenAlexClient
from recordfinder.search.pubmed import PubMedClient

logger = logging.getLogger(__name__)

DEFAULT_HISTORICAL_WINDOW = (1700, 1970)

CLIENT_REGISTRY: dict[str, type[SourceClient]] = {
    "openalex": OpenAlexClient,
    "pubmed": PubMedClient,
}


class SearchProgress(BaseModel):
    """Snapshot passed to progress callbacks after every source call."""

    source: str
    strategy: str
    term: str
    searched: int
    total: int
    items_collected: int
    errors: int


class _Strategy(BaseModel):
    name: str
    include_regional_keyword: bool
    year_from: Optional[int] = None
    year_to: Optional[int] = None


# ── Aggregator ───────────────────────────────────────────────────────


class SearchAggregator:
    """Runs every configured search and merges the results."""

    def __init__(
        self,
        clients: dict[str, SourceClient],
        regional_keyword: str,
        store: FinderStore | None = None,
        historical_window: tuple[int, int] = DEFAULT_HISTORICAL_WINDOW,
    ):
        self.clients = clients
        self.regional_keyword = regional_keyword
        self.store = store
        self.historical_window = historical_window

    @classmethod
    def from_config(cls, config: FinderConfig, store: FinderStore | None = None) -> "SearchAggregator":
        """Build clients for every enabled source known to the registry."""
        clients: dict[str, SourceClient] = {}
        for name in config.search.sources:
            client_cls = CLIENT_REGISTRY.get(name)
            if client_cls is None:
                logger.warning("No client registered for source: %s", name)
                continue
            clients[name] = client_cls(email=config.search.contact_email)
        start, end = config.search.historical_window
        return cls(
            clients,
            regional_keyword=config.region.search_keyword,
            store=store,
            historical_window=(start, end),
        )

    # ── Search ───────────────────────────────────────────────

    def search(
        self,
        request: SearchRequest,
        on_progress: Callable[[SearchProgress], None] | None = None,
    ) -> SearchResult:
        """Search every source for every term under every strategy.

        A failing call is recorded in ``source_errors`` and never aborts the
        remaining calls.
        """
        sources = request.sources or list(self.clients)
        terms = request.search_terms()
        strategies = self._strategies(request)
        bucket = request.bucket_size()

        collected: list[LiteratureItem] = []
        errors: list[SourceError] = []
        searched = 0
        total = len(sources) * len(strategies) * len(terms)

        logger.info(
            "Searching %d source(s) × %d strategy(ies) × %d term(s) = %d calls",
            len(sources),
            len(strategies),
            len(terms),
            total,
        )

        for source in sources:
            client = self.clients.get(source)
            for strategy in strategies:
                for term in terms:
                    if client is None:
                        errors.append(SourceError(
                            source=source,
                            message="Source is not configured",
                            term=term,
                            strategy=strategy.name,
                        ))
                    else:
                        options = SearchOptions(
                            year_from=strategy.year_from,
                            year_to=strategy.year_to,
                            max_results=bucket,
                            include_regional_keyword=strategy.include_regional_keyword,
                            regional_keyword=self.regional_keyword,
                        )
                        try:
                            items = client.search(term, options)
                            collected.extend(items)
                        except Exception as exc:
                            logger.error(
                                "Error searching %s for %r (%s): %s",
                                source, term, strategy.name, exc,
                            )
                            errors.append(SourceError(
                                source=source,
                                message=str(exc) or type(exc).__name__,
                                term=term,
                                strategy=strategy.name,
                            ))

                    searched += 1
                    if on_progress:
                        on_progress(SearchProgress(
                            source=source,
                            strategy=strategy.name,
                            term=term,
                            searched=searched,
                            total=total,
                            items_collected=len(collected),
                            errors=len(errors),
                        ))

        dedup = deduplicate(collected)
        items = sort_by_year(dedup.unique_items)[: request.max_results]

        result = SearchResult(
            term=request.term,
            total_found=len(items),
            items=items,
            source_errors=errors,
        )
        logger.info(
            "Search complete: %d unique items kept (%d source errors)",
            result.total_found,
            len(errors),
        )

        if self.store is not None:
            self.store.save_search_result(request, result)
        return result

    def load_cached(self, request: SearchRequest) -> SearchResult | None:
        """Previously persisted result for an identical request."""
        if self.store is None:
            return None
        return self.store.load_search_result(request.signature())

    def _strategies(self, request: SearchRequest) -> list[_Strategy]:
        strategies = []
        for name in request.strategies():
            if name == "historical":
                strategies.append(_Strategy(
                    name="historical",
                    include_regional_keyword=False,
                    year_from=request.year_from or self.historical_window[0],
                    year_to=request.year_to or self.historical_window[1],
                ))
            else:
                strategies.append(_Strategy(
                    name="regional",
                    include_regional_keyword=True,
                    year_from=request.year_from,
                    year_to=request.year_to,
                ))
        return strategies

    # ── PDF Download ─────────────────────────────────────────

    def download_pdfs(
        self, items: list[LiteratureItem], pdf_dir: Path | str | None = None
    ) -> list[LiteratureItem]:
        """Download open-access PDFs; returns updated copies of the items."""
        if pdf_dir is None:
            if self.store is None:
                raise ValueError("pdf_dir is required when no store is configured")
            pdf_dir = self.store.pdf_dir
        pdf_dir = Path(pdf_dir)

        updated: list[LiteratureItem] = []
        downloaded = 0
        for item in items:
            if item.pdf_downloaded and item.pdf_path and Path(item.pdf_path).exists():
                updated.append(item)
                downloaded += 1
                continue

            client = self.clients.get(item.source)
            if not item.pdf_url or client is None:
                updated.append(item)
                continue

            filename = f"{item.source}_{item.year or 'unknown'}_{sanitize_filename(item.title)}.pdf"
            result = client.download_pdf(item, pdf_dir / filename)
            if result.success and result.path:
                item = item.model_copy(update={"pdf_downloaded": True, "pdf_path": result.path})
                downloaded += 1
            updated.append(item)

        logger.info("PDFs available for %d/%d items", downloaded, len(items))
        return updated
