"""PDF-to-text extraction: Docling for digital PDFs, a vision model for scanned."""

import base64
import hashlib
import logging
import time
from pathlib import Path

import fitz  # PyMuPDF
import ollama
from docling.datamodel.base_models import InputFormat
from docling.datamodel.pipeline_options import PdfPipelineOptions
from docling.document_converter import DocumentConverter, PdfFormatOption

from recordfinder.parsers.models import ExtractedText

logger = logging.getLogger(__name__)

_SCANNED_THRESHOLD = 100  # chars per page; below this, assume scanned
_DEFAULT_VISION_MODEL = "minicpm-v"
_LANGUAGE_NAMES = {"eng": "English", "jpn": "Japanese", "kor": "Korean", "chi": "Chinese"}


# ── Helpers ──────────────────────────────────────────────────────────


def compute_pdf_hash(pdf_path: str) -> str:
    """SHA-256 hash of the PDF file contents."""
    h = hashlib.sha256()
    with open(pdf_path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()


def is_scanned_pdf(pdf_path: str) -> bool:
    """Heuristic: if extractable text is sparse relative to page count, it's scanned."""
    doc = fitz.open(pdf_path)
    try:
        num_pages = len(doc)
        if num_pages == 0:
            return True
        total_chars = sum(len(page.get_text()) for page in doc)
        return total_chars / num_pages < _SCANNED_THRESHOLD
    finally:
        doc.close()


def page_count(pdf_path: str) -> int:
    doc = fitz.open(pdf_path)
    try:
        return len(doc)
    finally:
        doc.close()


# ── Parsers ──────────────────────────────────────────────────────────


def parse_with_docling(pdf_path: str, enable_ocr: bool = True) -> str:
    """Parse a digital PDF to Markdown using Docling."""
    options = PdfPipelineOptions()
    options.do_ocr = enable_ocr
    converter = DocumentConverter(
        format_options={InputFormat.PDF: PdfFormatOption(pipeline_options=options)}
    )
    result = converter.convert(pdf_path)
    return result.document.export_to_markdown()


def parse_with_vision(
    pdf_path: str,
    languages: list[str] | None = None,
    model: str = _DEFAULT_VISION_MODEL,
) -> str:
    """OCR a scanned PDF by sending page images to a vision model via Ollama."""
    language_hint = ", ".join(_LANGUAGE_NAMES.get(code, code) for code in languages or [])
    instruction = (
        "Extract all text from this page exactly as printed. Preserve tables "
        "and headings. Output plain Markdown."
    )
    if language_hint:
        instruction += f" The page may contain {language_hint} text."

    doc = fitz.open(pdf_path)
    pages: list[str] = []
    try:
        for page_num in range(len(doc)):
            # Render page to PNG at 200 DPI
            pix = doc[page_num].get_pixmap(dpi=200)
            img_b64 = base64.b64encode(pix.tobytes("png")).decode()

            response = ollama.chat(
                model=model,
                messages=[{"role": "user", "content": instruction, "images": [img_b64]}],
                options={"temperature": 0},
            )
            pages.append(response.message.content or "")
            logger.info("Vision OCR parsed page %d/%d", page_num + 1, len(doc))
    finally:
        doc.close()

    return "\n\n".join(pages)


# ── Extractor ────────────────────────────────────────────────────────


class PdfTextExtractor:
    """Routes a PDF to the right parser and returns its text."""

    def __init__(self, vision_model: str = _DEFAULT_VISION_MODEL):
        self.vision_model = vision_model

    def process_file(
        self,
        path: str | Path,
        enable_ocr: bool = True,
        languages: list[str] | None = None,
    ) -> ExtractedText:
        pdf_path = str(path)
        if not Path(pdf_path).exists():
            raise FileNotFoundError(f"File not found: {pdf_path}")

        started = time.monotonic()
        pages = page_count(pdf_path)
        metadata = {"pdf_hash": compute_pdf_hash(pdf_path)}

        if is_scanned_pdf(pdf_path):
            if not enable_ocr:
                logger.info("%s: scanned PDF and OCR disabled", Path(pdf_path).name)
                return ExtractedText(text="", metadata=metadata, parser_used="pymupdf", pages=pages)
            logger.info("%s: scanned PDF detected, using vision OCR", Path(pdf_path).name)
            text = parse_with_vision(pdf_path, languages, self.vision_model)
            parser_used, ocr_used = "vision", True
        else:
            logger.info("%s: digital PDF, using Docling", Path(pdf_path).name)
            text = parse_with_docling(pdf_path, enable_ocr)
            parser_used, ocr_used = "docling", False

            # Docling output suspiciously sparse: retry with the vision model
            if enable_ocr and len(text.strip()) < _SCANNED_THRESHOLD:
                logger.warning(
                    "%s: Docling output sparse (%d chars), falling back to vision OCR",
                    Path(pdf_path).name,
                    len(text.strip()),
                )
                text = parse_with_vision(pdf_path, languages, self.vision_model)
                parser_used, ocr_used = "vision", True

        metadata["elapsed_s"] = round(time.monotonic() - started, 2)
        return ExtractedText(
            text=text,
            metadata=metadata,
            parser_used=parser_used,
            ocr_used=ocr_used,
            pages=pages,
        )
