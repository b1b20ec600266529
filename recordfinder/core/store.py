"""SQLite state store: search results, extracted text, LLM usage, runs."""

import hashlib
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path

from recordfinder.search.models import SearchRequest, SearchResult, sanitize_filename

logger = logging.getLogger(__name__)

DATA_ROOT = Path("data")

RUN_STATUSES = ("running", "completed", "stopped_early", "cancelled", "quota_exhausted", "failed")

# ── Schema DDL ───────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS search_results (
    signature       TEXT PRIMARY KEY,
    term            TEXT NOT NULL,
    request         TEXT NOT NULL,  -- JSON
    result          TEXT NOT NULL,  -- JSON
    total_found     INTEGER NOT NULL,
    searched_at     TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_search_term ON search_results(term);

CREATE TABLE IF NOT EXISTS extracted_texts (
    item_id         TEXT PRIMARY KEY,
    text_path       TEXT NOT NULL,
    text_length     INTEGER NOT NULL,
    parser_used     TEXT,
    ocr_score       INTEGER,
    ocr_quality     TEXT,
    extracted_at    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS llm_usage (
    scope           TEXT NOT NULL,
    date            TEXT NOT NULL,  -- YYYY-MM-DD (UTC)
    count           INTEGER NOT NULL DEFAULT 0 CHECK (count >= 0),
    last_updated    TEXT NOT NULL,
    PRIMARY KEY (scope, date)
);

CREATE TABLE IF NOT EXISTS analysis_runs (
    id                  INTEGER PRIMARY KEY,
    term                TEXT NOT NULL,
    config_hash         TEXT,
    started_at          TEXT NOT NULL,
    completed_at        TEXT,
    status              TEXT NOT NULL DEFAULT 'running',
    total_analyzed      INTEGER NOT NULL DEFAULT 0,
    earliest_item_id    TEXT,
    earliest_year       INTEGER
);
"""


# ── FinderStore ──────────────────────────────────────────────────────


class FinderStore:
    """Persisted state for one finder workspace."""

    def __init__(self, name: str = "default", data_root: Path | str | None = None):
        root = Path(data_root or DATA_ROOT) / name
        root.mkdir(parents=True, exist_ok=True)
        (root / "pdfs").mkdir(exist_ok=True)
        (root / "text_cache").mkdir(exist_ok=True)

        self.root = root
        self.pdf_dir = root / "pdfs"
        self.text_dir = root / "text_cache"
        self.db_path = root / "finder.db"
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    # ── Search Results ───────────────────────────────────────

    def save_search_result(self, request: SearchRequest, result: SearchResult) -> str:
        """Store (or replace) the result for this request. Returns the signature."""
        signature = request.signature()
        with self._lock:
            self._conn.execute(
                """INSERT OR REPLACE INTO search_results
                   (signature, term, request, result, total_found, searched_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    signature,
                    request.term,
                    request.model_dump_json(),
                    result.model_dump_json(),
                    result.total_found,
                    result.searched_at.isoformat(),
                ),
            )
            self._conn.commit()
        logger.info("Saved search result %s (%d items)", signature, result.total_found)
        return signature

    def load_search_result(self, signature: str) -> SearchResult | None:
        row = self._conn.execute(
            "SELECT result FROM search_results WHERE signature = ?", (signature,)
        ).fetchone()
        if row is None:
            return None
        return SearchResult.model_validate_json(row["result"])

    def latest_search_result(self, term: str) -> SearchResult | None:
        """Most recent stored result for a term, regardless of options."""
        row = self._conn.execute(
            "SELECT result FROM search_results WHERE term = ? "
            "ORDER BY searched_at DESC LIMIT 1",
            (term,),
        ).fetchone()
        if row is None:
            return None
        return SearchResult.model_validate_json(row["result"])

    # ── Extracted Text Cache ─────────────────────────────────

    def text_path(self, item_id: str) -> Path:
        """Readable name plus a short hash of the raw id, so sanitized ids never collide."""
        digest = hashlib.sha256(item_id.encode()).hexdigest()[:10]
        return self.text_dir / f"{sanitize_filename(item_id, 150)}_{digest}.txt"

    def get_cached_text(self, item_id: str) -> str | None:
        path = self.text_path(item_id)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def cache_text(
        self,
        item_id: str,
        text: str,
        parser_used: str | None = None,
        ocr_score: int | None = None,
        ocr_quality: str | None = None,
    ) -> Path:
        """Write extracted text to disk and record it."""
        path = self.text_path(item_id)
        path.write_text(text, encoding="utf-8")
        with self._lock:
            self._conn.execute(
                """INSERT OR REPLACE INTO extracted_texts
                   (item_id, text_path, text_length, parser_used,
                    ocr_score, ocr_quality, extracted_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (item_id, str(path), len(text), parser_used, ocr_score, ocr_quality, _now()),
            )
            self._conn.commit()
        return path

    def get_text_record(self, item_id: str) -> dict | None:
        row = self._conn.execute(
            "SELECT * FROM extracted_texts WHERE item_id = ?", (item_id,)
        ).fetchone()
        return dict(row) if row else None

    # ── LLM Usage ────────────────────────────────────────────

    def get_usage(self, scope: str, date: str) -> dict | None:
        row = self._conn.execute(
            "SELECT date, count, last_updated FROM llm_usage WHERE scope = ? AND date = ?",
            (scope, date),
        ).fetchone()
        return dict(row) if row else None

    def try_increment_usage(self, scope: str, date: str, limit: int) -> bool:
        """Atomically add one to today's count unless it has reached ``limit``."""
        now = _now()
        with self._lock:
            self._conn.execute(
                "INSERT OR IGNORE INTO llm_usage (scope, date, count, last_updated) "
                "VALUES (?, ?, 0, ?)",
                (scope, date, now),
            )
            cur = self._conn.execute(
                "UPDATE llm_usage SET count = count + 1, last_updated = ? "
                "WHERE scope = ? AND date = ? AND count < ?",
                (now, scope, date, limit),
            )
            self._conn.commit()
        return cur.rowcount == 1

    def reset_usage(self, scope: str, date: str) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO llm_usage (scope, date, count, last_updated) "
                "VALUES (?, ?, 0, ?)",
                (scope, date, _now()),
            )
            self._conn.commit()

    # ── Analysis Runs ────────────────────────────────────────

    def start_run(self, term: str, config_hash: str | None = None) -> int:
        with self._lock:
            cur = self._conn.execute(
                "INSERT INTO analysis_runs (term, config_hash, started_at, status) "
                "VALUES (?, ?, ?, 'running')",
                (term, config_hash, _now()),
            )
            self._conn.commit()
        return cur.lastrowid

    def finish_run(
        self,
        run_id: int,
        status: str,
        total_analyzed: int,
        earliest_item_id: str | None = None,
        earliest_year: int | None = None,
    ) -> None:
        if status not in RUN_STATUSES:
            raise ValueError(f"Invalid run status: {status}")
        with self._lock:
            self._conn.execute(
                """UPDATE analysis_runs
                   SET status = ?, completed_at = ?, total_analyzed = ?,
                       earliest_item_id = ?, earliest_year = ?
                   WHERE id = ?""",
                (status, _now(), total_analyzed, earliest_item_id, earliest_year, run_id),
            )
            self._conn.commit()

    def get_run(self, run_id: int) -> dict | None:
        row = self._conn.execute(
            "SELECT * FROM analysis_runs WHERE id = ?", (run_id,)
        ).fetchone()
        return dict(row) if row else None

    # ── Cleanup ──────────────────────────────────────────────

    def close(self) -> None:
        self._conn.close()


# ── Helpers ──────────────────────────────────────────────────────────


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
