"""No-op store, the default when no store is configured.

Reviews are rendered (and optionally posted) but not persisted, so every run
is a first run. Using a NoOpStore rather than None lets the CLI always call
store.save() without conditional checks.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prledger_store.base import BaseStore

if TYPE_CHECKING:
    from prledger_store.models import ReviewRecord


class NoOpStore(BaseStore):
    """Silently discards all records.

    Switch to SQLiteStore (``store: sqlite``) or GistStore (``store: gist``)
    to get follow-up reconciliation, history and stats.
    """

    def save(self, record: ReviewRecord) -> None:
        pass

    def list_reviews(self, repo: str, pr_number: int | None = None) -> list[ReviewRecord]:
        return []
