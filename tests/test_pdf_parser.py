"""Tests for the PDF text extractor with Docling and vision OCR routing."""

from pathlib import Path
from unittest.mock import patch, MagicMock

import pytest
from fpdf import FPDF

from recordfinder.parsers.pdf_parser import (
    PdfTextExtractor,
    compute_pdf_hash,
    is_scanned_pdf,
    page_count,
    parse_with_docling,
)


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture()
def digital_pdf(tmp_path) -> Path:
    """Create a minimal digital PDF with extractable text."""
    pdf = FPDF()
    pdf.add_page()
    pdf.set_font("Helvetica", size=12)
    pdf.multi_cell(w=0, text=(
        "Report on a collection of Brachyura from Fusan, Corea. "
        "The specimens were obtained in the harbour during the summer "
        "and include several portunid crabs new to the fauna of the "
        "peninsula, with notes on locality and collector. " * 5
    ))
    path = tmp_path / "digital.pdf"
    pdf.output(str(path))
    return path


@pytest.fixture()
def scanned_pdf(tmp_path) -> Path:
    """Create a PDF with no extractable text (simulating a scanned document)."""
    pdf = FPDF()
    pdf.add_page()
    path = tmp_path / "scanned.pdf"
    pdf.output(str(path))
    return path


def _vision_reply(text: str) -> MagicMock:
    response = MagicMock()
    response.message.content = text
    return response


# ── Helpers ──────────────────────────────────────────────────────────


def test_compute_pdf_hash_consistent(digital_pdf):
    h1 = compute_pdf_hash(str(digital_pdf))
    assert h1 == compute_pdf_hash(str(digital_pdf))
    assert len(h1) == 64  # SHA-256 hex


def test_compute_pdf_hash_different_files(digital_pdf, scanned_pdf):
    assert compute_pdf_hash(str(digital_pdf)) != compute_pdf_hash(str(scanned_pdf))


def test_digital_pdf_not_scanned(digital_pdf):
    assert is_scanned_pdf(str(digital_pdf)) is False


def test_blank_pdf_detected_as_scanned(scanned_pdf):
    assert is_scanned_pdf(str(scanned_pdf)) is True


def test_page_count(digital_pdf):
    assert page_count(str(digital_pdf)) == 1


# ── Routing ──────────────────────────────────────────────────────────


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        PdfTextExtractor().process_file(tmp_path / "missing.pdf")


def test_scanned_routes_to_vision(scanned_pdf):
    reply = _vision_reply("# Page\n\nCharybdis japonica, Fusan, 1903.")
    with patch("recordfinder.parsers.pdf_parser.ollama.chat", return_value=reply) as chat:
        result = PdfTextExtractor().process_file(scanned_pdf, languages=["eng", "kor"])

    assert result.parser_used == "vision"
    assert result.ocr_used
    assert "Fusan" in result.text
    assert result.pages == 1
    prompt = chat.call_args.kwargs["messages"][0]["content"]
    assert "Korean" in prompt
    assert chat.call_args.kwargs["model"] == "minicpm-v"


def test_scanned_with_ocr_disabled_returns_empty(scanned_pdf):
    with patch("recordfinder.parsers.pdf_parser.ollama.chat") as chat:
        result = PdfTextExtractor().process_file(scanned_pdf, enable_ocr=False)
    chat.assert_not_called()
    assert result.text == ""


def test_digital_routes_to_docling(digital_pdf):
    docling_text = "Report on a collection of Brachyura from Fusan. " * 5
    with patch("recordfinder.parsers.pdf_parser.parse_with_docling", return_value=docling_text), \
         patch("recordfinder.parsers.pdf_parser.ollama.chat") as chat:
        result = PdfTextExtractor().process_file(digital_pdf)
    chat.assert_not_called()
    assert result.parser_used == "docling"
    assert result.metadata["pdf_hash"] == compute_pdf_hash(str(digital_pdf))


def test_sparse_docling_output_falls_back_to_vision(digital_pdf):
    with patch("recordfinder.parsers.pdf_parser.parse_with_docling", return_value="  "), \
         patch("recordfinder.parsers.pdf_parser.ollama.chat", return_value=_vision_reply("vision text")):
        result = PdfTextExtractor().process_file(digital_pdf)
    assert result.parser_used == "vision"
    assert result.text == "vision text"


# ── Docling Integration ──────────────────────────────────────────────


@pytest.mark.integration
def test_parse_with_docling(digital_pdf):
    md = parse_with_docling(str(digital_pdf))
    assert len(md) > 50
    assert "brachyura" in md.lower() or "fusan" in md.lower()


@pytest.mark.ollama
def test_live_vision_ocr(scanned_pdf):
    result = PdfTextExtractor().process_file(scanned_pdf)
    assert result.parser_used == "vision"
