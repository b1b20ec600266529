"""Tests for the multi-source search aggregator."""

from unittest.mock import patch

import pytest

from recordfinder.core.store import FinderStore
from recordfinder.search.aggregator import SearchAggregator, SearchProgress
from recordfinder.search.base import SourceClient
from recordfinder.search.models import (
    LiteratureItem,
    PdfDownloadResult,
    SearchOptions,
    SearchRequest,
)


# ── Fakes ────────────────────────────────────────────────────────────


class FakeClient(SourceClient):
    """Returns canned items and records every call."""

    def __init__(self, source, items=(), error=None):
        self.source = source
        self.items = list(items)
        self.error = error
        self.calls: list[tuple[str, SearchOptions]] = []

    def search(self, term, options):
        self.calls.append((term, options))
        if self.error:
            raise self.error
        return [it.model_copy(update={"searched_name": term}) for it in self.items]


def _item(id, title, year, source="openalex", **kw):
    return LiteratureItem(id=id, source=source, title=title, year=year, **kw)


@pytest.fixture()
def store(tmp_path):
    s = FinderStore("test_agg", data_root=tmp_path)
    yield s
    s.close()


# ── Search Loop ──────────────────────────────────────────────────────


def test_calls_every_source_strategy_and_term():
    oa = FakeClient("openalex")
    pm = FakeClient("pubmed")
    agg = SearchAggregator({"openalex": oa, "pubmed": pm}, regional_keyword="Korea")
    agg.search(SearchRequest(term="Charybdis japonica", synonyms=["Goniosoma japonica"]))
    assert len(oa.calls) == 4
    assert len(pm.calls) == 4


def test_strategy_options():
    oa = FakeClient("openalex")
    agg = SearchAggregator({"openalex": oa}, regional_keyword="Korea", historical_window=(1750, 1960))
    agg.search(SearchRequest(term="X", strategy="both"))
    historical, regional = oa.calls[0][1], oa.calls[1][1]
    assert not historical.include_regional_keyword
    assert (historical.year_from, historical.year_to) == (1750, 1960)
    assert regional.include_regional_keyword
    assert regional.regional_keyword == "Korea"
    assert (regional.year_from, regional.year_to) == (None, None)


def test_request_years_override_historical_window():
    oa = FakeClient("openalex")
    agg = SearchAggregator({"openalex": oa}, regional_keyword="Korea")
    agg.search(SearchRequest(term="X", strategy="historical", year_from=1800, year_to=1850))
    assert (oa.calls[0][1].year_from, oa.calls[0][1].year_to) == (1800, 1850)


def test_bucket_size_passed_to_clients():
    oa = FakeClient("openalex")
    agg = SearchAggregator({"openalex": oa}, regional_keyword="Korea")
    agg.search(SearchRequest(term="X", synonyms=["Y"], max_results=20))
    assert all(opts.max_results == 5 for _, opts in oa.calls)


def test_results_deduped_sorted_and_truncated():
    oa = FakeClient("openalex", [
        _item("openalex_1", "Later paper", 1950),
        _item("openalex_2", "Undated paper", None),
        _item("openalex_3", "Early paper", 1890),
    ])
    pm = FakeClient("pubmed", [_item("pubmed_1", "EARLY PAPER", 1890, source="pubmed")])
    agg = SearchAggregator({"openalex": oa, "pubmed": pm}, regional_keyword="Korea")
    result = agg.search(SearchRequest(term="X", strategy="historical", max_results=2))
    assert [it.id for it in result.items] == ["openalex_3", "openalex_1"]
    assert result.total_found == 2


def test_unknown_year_sorted_last():
    oa = FakeClient("openalex", [_item("a", "Undated", None), _item("b", "Dated", 1999)])
    agg = SearchAggregator({"openalex": oa}, regional_keyword="Korea")
    result = agg.search(SearchRequest(term="X", strategy="regional"))
    assert [it.id for it in result.items] == ["b", "a"]


# ── Error Isolation ──────────────────────────────────────────────────


def test_failing_source_is_recorded_and_others_continue():
    oa = FakeClient("openalex", error=RuntimeError("boom"))
    pm = FakeClient("pubmed", [_item("pubmed_1", "Paper", 1900, source="pubmed")])
    agg = SearchAggregator({"openalex": oa, "pubmed": pm}, regional_keyword="Korea")
    result = agg.search(SearchRequest(term="X"))
    assert [it.id for it in result.items] == ["pubmed_1"]
    assert len(result.source_errors) == 2  # one per strategy
    assert {e.source for e in result.source_errors} == {"openalex"}
    assert result.source_errors[0].message == "boom"
    assert {e.strategy for e in result.source_errors} == {"historical", "regional"}


def test_unknown_source_is_recorded():
    agg = SearchAggregator({"openalex": FakeClient("openalex")}, regional_keyword="Korea")
    result = agg.search(SearchRequest(term="X", sources=["cinii"], strategy="regional"))
    assert len(result.source_errors) == 1
    assert result.source_errors[0].source == "cinii"


# ── Progress ─────────────────────────────────────────────────────────


def test_progress_after_every_call():
    events: list[SearchProgress] = []
    agg = SearchAggregator(
        {"openalex": FakeClient("openalex"), "pubmed": FakeClient("pubmed", error=ValueError("x"))},
        regional_keyword="Korea",
    )
    agg.search(SearchRequest(term="X"), on_progress=events.append)
    assert [e.searched for e in events] == [1, 2, 3, 4]
    assert all(e.total == 4 for e in events)
    assert events[-1].errors == 2


# ── Persistence ──────────────────────────────────────────────────────


def test_result_persisted_and_loaded(store):
    oa = FakeClient("openalex", [_item("openalex_1", "Paper", 1900)])
    agg = SearchAggregator({"openalex": oa}, regional_keyword="Korea", store=store)
    request = SearchRequest(term="Charybdis japonica")
    agg.search(request)
    cached = agg.load_cached(request)
    assert cached is not None
    assert [it.id for it in cached.items] == ["openalex_1"]
    assert agg.load_cached(SearchRequest(term="Charybdis japonica", max_results=3)) is None


def test_load_cached_without_store():
    agg = SearchAggregator({}, regional_keyword="Korea")
    assert agg.load_cached(SearchRequest(term="X")) is None


# ── PDF Download ─────────────────────────────────────────────────────


def test_download_pdfs_marks_items(tmp_path):
    oa = FakeClient("openalex")
    items = [
        _item("openalex_1", "With PDF", 1900, pdf_url="https://example.org/a.pdf"),
        _item("openalex_2", "No PDF", 1901),
    ]
    success = PdfDownloadResult(item_id="openalex_1", success=True, path=str(tmp_path / "a.pdf"))
    with patch.object(FakeClient, "download_pdf", return_value=success) as download:
        updated = SearchAggregator({"openalex": oa}, "Korea").download_pdfs(items, tmp_path)
    assert download.call_count == 1
    assert updated[0].pdf_downloaded
    assert updated[0].pdf_path == str(tmp_path / "a.pdf")
    assert not updated[1].pdf_downloaded
    assert not items[0].pdf_downloaded


def test_download_failure_leaves_item_unchanged(tmp_path):
    oa = FakeClient("openalex")
    items = [_item("openalex_1", "With PDF", 1900, pdf_url="https://example.org/a.pdf")]
    failure = PdfDownloadResult(item_id="openalex_1", success=False, error="404")
    with patch.object(FakeClient, "download_pdf", return_value=failure):
        updated = SearchAggregator({"openalex": oa}, "Korea").download_pdfs(items, tmp_path)
    assert not updated[0].pdf_downloaded


def test_download_without_url_reports_failure():
    result = FakeClient("openalex").download_pdf(_item("a", "T", 1900), "/tmp/never.pdf")
    assert not result.success
    assert result.error == "No PDF URL available"
