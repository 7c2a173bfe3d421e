"""GistStore: shared review history in a GitHub Gist.

No database to provision, and the Gist's access control is the team's GitHub
account. Each run appends one record; anyone with access can read it back
with `prledger history --repo owner/repo`.

Data format: a single JSON file named `prledger_history.json` inside the Gist,
holding a JSON array of review records, oldest first.
"""

from __future__ import annotations

import json
import logging
import os

from github import Github

from prledger_store.base import BaseStore
from prledger_store.models import ReviewRecord, record_from_dict, record_to_dict

logger = logging.getLogger(__name__)

_GIST_FILENAME = "prledger_history.json"


class GistStore(BaseStore):
    """Stores review history in a GitHub Gist as an append-only JSON array.

    list_reviews() reads the full array and filters in memory, which suits
    hundreds or low thousands of runs. Beyond that, switch to SQLiteStore.

    The Gist ID is stored in .prledger.yml under `gist_id`; `prledger init`
    creates the Gist and writes the ID automatically.
    """

    def __init__(self, gist_id: str, token: str):
        self._gist_id = gist_id
        self._gh = Github(token)

    def _get_gist(self):
        return self._gh.get_gist(self._gist_id)

    def save(self, record: ReviewRecord) -> None:
        """Append a review record to the Gist JSON file."""
        try:
            gist = self._get_gist()
            existing = self._read_records(gist)
            existing.append(record_to_dict(record))
            gist.edit(files={_GIST_FILENAME: {"content": json.dumps(existing, indent=2)}})
        except Exception as e:
            # The report is already written; losing history must not fail the run.
            logger.warning("GistStore.save() failed (%s): %s", type(e).__name__, e)
            msg = f"Warning: could not persist review history to Gist ({type(e).__name__}: {e})"
            if os.environ.get("GITHUB_ACTIONS") == "true":
                msg += (
                    "\nThe built-in GITHUB_TOKEN does not have Gist permissions. "
                    "Use a PAT with 'gist' scope stored as a repository secret."
                )
            print(msg)

    def list_reviews(self, repo: str, pr_number: int | None = None) -> list[ReviewRecord]:
        """Return review records for a repo, optionally filtered by PR."""
        try:
            gist = self._get_gist()
            records = self._read_records(gist)
        except Exception as e:
            logger.warning("GistStore.list_reviews() failed: %s", e)
            return []

        results = [record_from_dict(r) for r in records if isinstance(r, dict) and r.get("repo") == repo]
        if pr_number is not None:
            results = [r for r in results if r.pr_number == pr_number]
        # Stable: runs saved with the same timestamp keep their append order.
        return sorted(results, key=lambda r: r.reviewed_at)

    def _read_records(self, gist) -> list[dict]:
        """Read the current JSON array from the Gist file, or return []."""
        file_obj = gist.files.get(_GIST_FILENAME)
        if file_obj is None:
            return []
        try:
            data = json.loads(file_obj.content) or []
        except (json.JSONDecodeError, AttributeError, TypeError):
            return []
        return data if isinstance(data, list) else []
