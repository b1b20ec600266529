"""Abstract source client plus the shared PDF download helper."""

import logging
from abc import ABC, abstractmethod
from pathlib import Path

import httpx

from recordfinder.search.models import LiteratureItem, PdfDownloadResult, SearchOptions

logger = logging.getLogger(__name__)

USER_AGENT = "FirstRecordFinder/0.1 (academic research)"
_DOWNLOAD_TIMEOUT = 60.0


class SourceClient(ABC):
    """One bibliographic source.

    ``search`` raises on transport failure; the aggregator isolates it.
    ``download_pdf`` never raises and reports failure in its result.
    """

    source: str = ""

    @abstractmethod
    def search(self, term: str, options: SearchOptions) -> list[LiteratureItem]:
        """Search the source for a single term."""
        ...

    def download_pdf(self, item: LiteratureItem, dest_path: str | Path) -> PdfDownloadResult:
        """Fetch ``item.pdf_url`` to ``dest_path``."""
        if not item.pdf_url:
            return PdfDownloadResult(
                item_id=item.id, success=False, error="No PDF URL available"
            )
        return download_file(item.id, item.pdf_url, dest_path)


def download_file(item_id: str, url: str, dest_path: str | Path) -> PdfDownloadResult:
    """Stream a PDF to disk, rejecting non-PDF responses."""
    dest = Path(dest_path)
    try:
        with httpx.stream(
            "GET",
            url,
            headers={"User-Agent": USER_AGENT},
            timeout=_DOWNLOAD_TIMEOUT,
            follow_redirects=True,
        ) as response:
            response.raise_for_status()
            content_type = response.headers.get("content-type", "")
            if content_type and "pdf" not in content_type.lower():
                raise ValueError(f"Not a PDF: {content_type}")
            dest.parent.mkdir(parents=True, exist_ok=True)
            size = 0
            with open(dest, "wb") as f:
                for chunk in response.iter_bytes():
                    f.write(chunk)
                    size += len(chunk)
    except (httpx.HTTPError, ValueError, OSError) as exc:
        logger.warning("PDF download failed for %s: %s", item_id, exc)
        dest.unlink(missing_ok=True)
        return PdfDownloadResult(item_id=item_id, success=False, error=str(exc))

    logger.info("Downloaded PDF for %s (%d bytes)", item_id, size)
    return PdfDownloadResult(item_id=item_id, success=True, path=str(dest), size_bytes=size)
