"""Sequential batch analysis: evidence -> LLM -> earliest-record tracking.

Items are processed in search order (year ascending), one at a time. After
each full batch the pipeline may stop early once a record has been found,
since later batches can only hold later years.
"""

import logging
import threading
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from recordfinder.agents.gateway import LLMGateway
from recordfinder.core.config import FinderConfig, PipelineConfig
from recordfinder.core.errors import RateLimitExceededError
from recordfinder.core.store import FinderStore
from recordfinder.parsers.evidence import EvidenceExtractor
from recordfinder.search.aggregator import SearchAggregator
from recordfinder.search.models import LiteratureItem, SearchResult

logger = logging.getLogger(__name__)


class PipelineOptions(BaseModel):
    batch_size: int = Field(default=3, ge=1)
    max_batches: int = Field(default=5, ge=1)
    stop_on_first_record: bool = True
    download_pdfs: bool = True

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "PipelineOptions":
        return cls.model_validate(config.model_dump())


class PipelineError(BaseModel):
    item_id: str
    message: str


class PipelineResult(BaseModel):
    """Outcome of one analysis run. Partial when cancelled or quota-limited."""

    term: str
    total_searched: int
    total_analyzed: int = 0
    analyzed_items: list[LiteratureItem] = Field(default_factory=list)
    earliest_record: Optional[LiteratureItem] = None
    manual_review_items: list[LiteratureItem] = Field(default_factory=list)
    errors: list[PipelineError] = Field(default_factory=list)
    stopped_early: bool = False
    cancelled: bool = False
    quota_exhausted: bool = False

    @property
    def status(self) -> str:
        if self.quota_exhausted:
            return "quota_exhausted"
        if self.cancelled:
            return "cancelled"
        if self.stopped_early:
            return "stopped_early"
        return "completed"


def is_earlier_record(candidate: LiteratureItem, current: LiteratureItem | None) -> bool:
    """A new record replaces the current one only with a strictly smaller known year."""
    if current is None:
        return True
    return (
        candidate.year is not None
        and current.year is not None
        and candidate.year < current.year
    )


# ── Pipeline ─────────────────────────────────────────────────────────


class AnalysisPipeline:
    """Runs evidence extraction and analysis over search results."""

    def __init__(
        self,
        evidence_extractor: EvidenceExtractor,
        gateway: LLMGateway,
        aggregator: SearchAggregator | None = None,
        store: FinderStore | None = None,
        config_hash: str | None = None,
        pdf_dir: Path | str | None = None,
    ):
        self.evidence_extractor = evidence_extractor
        self.gateway = gateway
        self.aggregator = aggregator
        self.store = store
        self.config_hash = config_hash
        self.pdf_dir = _resolve_pdf_dir(pdf_dir, aggregator, store)
        if aggregator is not None and self.pdf_dir is None:
            logger.warning("No PDF directory or store configured: PDF downloads are disabled")

    @classmethod
    def from_config(
        cls,
        config: FinderConfig,
        evidence_extractor: EvidenceExtractor,
        gateway: LLMGateway,
        aggregator: SearchAggregator | None = None,
        store: FinderStore | None = None,
    ) -> "AnalysisPipeline":
        return cls(evidence_extractor, gateway, aggregator, store, config.config_hash())

    def run(
        self,
        search_result: SearchResult,
        options: PipelineOptions | None = None,
        cancel_event: threading.Event | None = None,
        synonyms: list[str] | None = None,
    ) -> PipelineResult:
        options = options or PipelineOptions()
        items = search_result.items
        result = PipelineResult(term=search_result.term, total_searched=len(items))
        run_id = self.store.start_run(search_result.term, self.config_hash) if self.store else None

        logger.info(
            "Analyzing %d items for %s (batch size %d, max %d batches)",
            len(items),
            search_result.term,
            options.batch_size,
            options.max_batches,
        )

        try:
            self._run_batches(result, items, options, cancel_event, synonyms)
        except Exception:
            if run_id is not None:
                self.store.finish_run(run_id, "failed", len(result.analyzed_items))
            raise

        result.total_analyzed = len(result.analyzed_items)
        earliest = result.earliest_record
        if earliest:
            logger.info("Earliest record: %s (%s) %s", earliest.year or "????", earliest.id, earliest.title[:80])
        else:
            logger.info("No record found for %s", search_result.term)
        if result.manual_review_items:
            logger.info("%d item(s) need manual review", len(result.manual_review_items))

        if run_id is not None:
            self.store.finish_run(
                run_id,
                result.status,
                result.total_analyzed,
                earliest.id if earliest else None,
                earliest.year if earliest else None,
            )
        return result

    def _run_batches(
        self,
        result: PipelineResult,
        items: list[LiteratureItem],
        options: PipelineOptions,
        cancel_event: threading.Event | None,
        synonyms: list[str] | None,
    ) -> None:
        for batch_num in range(options.max_batches):
            start = batch_num * options.batch_size
            if start >= len(items):
                logger.info("No items left to analyze")
                return
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Run cancelled before batch %d", batch_num + 1)
                result.cancelled = True
                return

            batch = items[start : start + options.batch_size]
            logger.info(
                "Batch %d/%d (items %d-%d)",
                batch_num + 1,
                options.max_batches,
                start + 1,
                start + len(batch),
            )
            if options.download_pdfs and self.aggregator is not None and self.pdf_dir is not None:
                batch = self.aggregator.download_pdfs(batch, self.pdf_dir)

            found_in_batch = 0
            for item in batch:
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("Run cancelled before %s", item.id)
                    result.cancelled = True
                    return

                item = self._analyze_item(item, result, synonyms)
                result.analyzed_items.append(item)
                if result.quota_exhausted:
                    return

                analysis = item.analysis
                if analysis is None:
                    continue
                if analysis.needs_manual_review:
                    result.manual_review_items.append(item)
                if analysis.has_record is True:
                    found_in_batch += 1
                    if is_earlier_record(item, result.earliest_record):
                        logger.info("Record found: %s (%s)", item.id, item.year or "????")
                        result.earliest_record = item

            if found_in_batch and options.stop_on_first_record and result.earliest_record:
                logger.info("Stopping after batch %d: %d record(s) found", batch_num + 1, found_in_batch)
                result.stopped_early = True
                return

    def _analyze_item(
        self,
        item: LiteratureItem,
        result: PipelineResult,
        synonyms: list[str] | None,
    ) -> LiteratureItem:
        """Analyze one item; failures are recorded on the item, never raised."""
        logger.info("Analyzing %s: %s %s", item.id, item.year or "????", item.title[:60])
        try:
            evidence = self.evidence_extractor.extract(item)
            analysis = self.gateway.analyze(
                evidence.text,
                result.term,
                synonyms,
                tier=evidence.tier,
                ocr_quality=evidence.ocr_quality,
            )
        except RateLimitExceededError as exc:
            logger.error("Quota exhausted at %s: %s", item.id, exc)
            result.quota_exhausted = True
            result.errors.append(PipelineError(item_id=item.id, message=str(exc)))
            return item.model_copy(update={"analysis_error": str(exc)})
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.error("Analysis failed for %s: %s", item.id, message)
            result.errors.append(PipelineError(item_id=item.id, message=message))
            return item.model_copy(update={"analysis_error": message})

        logger.info(
            "%s: record=%s confidence=%.0f%% tier=%s",
            item.id,
            analysis.has_record,
            analysis.confidence * 100,
            analysis.analysis_tier,
        )
        return item.model_copy(update={"analysis": analysis})


def _resolve_pdf_dir(
    pdf_dir: Path | str | None,
    aggregator: SearchAggregator | None,
    store: FinderStore | None,
) -> Path | None:
    """Explicit directory, else the aggregator's store, else the pipeline's store."""
    if pdf_dir is not None:
        return Path(pdf_dir)
    if aggregator is not None and aggregator.store is not None:
        return aggregator.store.pdf_dir
    if store is not None:
        return store.pdf_dir
    return None
