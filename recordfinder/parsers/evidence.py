"""Resolve the best available text for a literature item.

Fulltext from a downloaded PDF is preferred; otherwise a synthetic document
is built from the abstract, and as a last resort from bibliographic metadata.
"""

import logging
from pathlib import Path
from typing import Protocol

from recordfinder.core.config import OCRConfig
from recordfinder.core.store import FinderStore
from recordfinder.parsers.models import Evidence, ExtractedText
from recordfinder.parsers.ocr_quality import assess_ocr_quality
from recordfinder.search.models import LiteratureItem

logger = logging.getLogger(__name__)

MIN_FULLTEXT_CHARS = 100
MIN_SNIPPET_CHARS = 50


class TextExtractor(Protocol):
    def process_file(
        self, path: str | Path, enable_ocr: bool = True, languages: list[str] | None = None
    ) -> ExtractedText: ...


# ── Synthetic Documents ──────────────────────────────────────────────


def _header_lines(item: LiteratureItem) -> list[str]:
    return [
        f"Title: {item.title}",
        f"Authors: {', '.join(item.authors) if item.authors else 'Unknown'}",
        f"Year: {item.year or 'Unknown'}",
        f"Journal: {item.journal or 'Unknown'}",
    ]


def abstract_text(item: LiteratureItem) -> str:
    return "\n".join([*_header_lines(item), "", "Abstract:", item.snippet or ""])


def metadata_text(item: LiteratureItem) -> str:
    return "\n".join([*_header_lines(item), f"Source: {item.source}"])


# ── Extractor ────────────────────────────────────────────────────────


class EvidenceExtractor:
    """Picks fulltext, abstract, or metadata for each item."""

    def __init__(
        self,
        extractor: TextExtractor,
        store: FinderStore | None = None,
        ocr: OCRConfig | None = None,
    ):
        self.extractor = extractor
        self.store = store
        self.ocr = ocr or OCRConfig()

    def extract(self, item: LiteratureItem) -> Evidence:
        text = self._fulltext(item)
        if text and len(text) > MIN_FULLTEXT_CHARS:
            assessment = assess_ocr_quality(text)
            if assessment.quality in ("poor", "manual_needed"):
                logger.warning(
                    "%s: low OCR quality (%s, score %d)",
                    item.id,
                    assessment.quality,
                    assessment.score,
                )
            return Evidence(item_id=item.id, text=text, tier="fulltext", ocr_quality=assessment)

        if item.snippet and len(item.snippet) > MIN_SNIPPET_CHARS:
            return Evidence(item_id=item.id, text=abstract_text(item), tier="abstract")

        return Evidence(item_id=item.id, text=metadata_text(item), tier="metadata")

    def _fulltext(self, item: LiteratureItem) -> str | None:
        """Cached text, else freshly extracted text. None when unavailable."""
        if not item.pdf_downloaded or not item.pdf_path:
            return None

        if self.store is not None:
            cached = self.store.get_cached_text(item.id)
            if cached is not None:
                logger.debug("%s: using cached text", item.id)
                return cached

        try:
            extracted = self.extractor.process_file(
                item.pdf_path,
                enable_ocr=self.ocr.enable_ocr,
                languages=self.ocr.languages,
            )
        except Exception as exc:
            logger.warning("%s: text extraction failed, falling back: %s", item.id, exc)
            return None

        text = extracted.text
        if self.store is not None and text.strip():
            assessment = assess_ocr_quality(text)
            self.store.cache_text(
                item.id,
                text,
                parser_used=extracted.parser_used,
                ocr_score=assessment.score,
                ocr_quality=assessment.quality,
            )
        logger.info("%s: extracted %d chars via %s", item.id, len(text), extracted.parser_used)
        return text
