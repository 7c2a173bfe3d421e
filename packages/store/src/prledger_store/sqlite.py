"""SQLiteStore: local file-based review history.

Schema:
  reviews  one row per completed review run. Findings are kept as a JSON
           column; they are always read together with their run, so a
           sub-table would only add JOINs to the read path.
"""

from __future__ import annotations

import json
import logging
import sqlite3

from prledger_store.base import BaseStore
from prledger_store.models import ReviewRecord, record_from_dict, record_to_dict

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS reviews (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    repo              TEXT NOT NULL,
    pr_number         INTEGER NOT NULL,
    pr_title          TEXT,
    reviewer_model    TEXT,
    head_sha          TEXT,
    base_sha          TEXT,
    reviewed_at       TEXT,
    event             TEXT,
    files_reviewed    INTEGER DEFAULT 0,
    dropped_findings  INTEGER DEFAULT 0,
    resolved          INTEGER DEFAULT 0,
    partial           INTEGER DEFAULT 0,
    not_resolved      INTEGER DEFAULT 0,
    open              INTEGER DEFAULT 0,
    new               INTEGER DEFAULT 0,
    new_high          INTEGER DEFAULT 0,
    findings_json     TEXT DEFAULT '[]'
);
CREATE INDEX IF NOT EXISTS idx_reviews_repo ON reviews (repo);
CREATE INDEX IF NOT EXISTS idx_reviews_pr   ON reviews (repo, pr_number);
"""

_COLUMNS = (
    "repo",
    "pr_number",
    "pr_title",
    "reviewer_model",
    "head_sha",
    "base_sha",
    "reviewed_at",
    "event",
    "files_reviewed",
    "dropped_findings",
    "resolved",
    "partial",
    "not_resolved",
    "open",
    "new",
    "new_high",
)


class SQLiteStore(BaseStore):
    """Stores review history in a local SQLite database file.

    The database file path defaults to `.prledger.db` in the current working
    directory. Configure via .prledger.yml: `store_path: /path/to/prledger.db`.
    """

    def __init__(self, db_path: str = ".prledger.db"):
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    def save(self, record: ReviewRecord) -> None:
        data = record_to_dict(record)
        findings_json = json.dumps(data.pop("findings"))
        columns = ", ".join(_COLUMNS)
        placeholders = ", ".join("?" for _ in range(len(_COLUMNS) + 1))
        # One INSERT in one transaction: a run is stored whole or not at all.
        with self._conn:
            self._conn.execute(
                f"INSERT INTO reviews ({columns}, findings_json) VALUES ({placeholders})",
                (*(data[c] for c in _COLUMNS), findings_json),
            )
        logger.debug("Saved review of %s#%s at %s", record.repo, record.pr_number, record.head_sha[:7])

    def list_reviews(self, repo: str, pr_number: int | None = None) -> list[ReviewRecord]:
        if pr_number is not None:
            rows = self._conn.execute(
                "SELECT * FROM reviews WHERE repo=? AND pr_number=? ORDER BY reviewed_at, id",
                (repo, pr_number),
            ).fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM reviews WHERE repo=? ORDER BY reviewed_at, id",
                (repo,),
            ).fetchall()

        return [self._row_to_record(r) for r in rows]

    def close(self) -> None:
        self._conn.close()

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> ReviewRecord:
        data = {c: row[c] for c in _COLUMNS}
        data["findings"] = json.loads(row["findings_json"] or "[]")
        return record_from_dict(data)
