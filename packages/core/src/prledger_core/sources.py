"""Diff sources — where the raw diff and file contents of a review come from.

The pipeline only needs unified diff text, the two revisions it spans, and
(optionally) file contents at the head revision and the inter-diff between an
earlier head and the current one. Everything version-control specific stays
behind this interface.
"""

from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod

from github import GithubException

from prledger_core.errors import DiffSourceError
from prledger_core.gh.pull_request import get_diff, get_incremental_files

logger = logging.getLogger(__name__)


class DiffSource(ABC):
    base_sha: str = ""
    head_sha: str = ""
    description: str = ""

    @abstractmethod
    def get_diff_text(self) -> str:
        """Return the unified diff under review."""

    def get_file_content(self, path: str) -> str | None:
        """Return the file's content at head, or None when unavailable."""
        return None

    def get_interdiff_text(self, since_sha: str) -> str | None:
        """Return the diff from an earlier head to the current head, or None when unavailable."""
        return None


def assemble_diff(files) -> str:
    """Build a ``git diff`` style document from GitHub file objects.

    GitHub hands out one hunk-only patch per file; the headers it leaves out
    are rebuilt from the file's status and previous name. Files without a
    patch (binary, or too large for the API) become binary blocks so they are
    listed but never reviewed.
    """
    blocks: list[str] = []
    for f in files:
        new_path = f.filename
        old_path = getattr(f, "previous_filename", None) or new_path
        lines = [f"diff --git a/{old_path} b/{new_path}"]
        if f.status == "renamed" and old_path != new_path:
            lines += [f"rename from {old_path}", f"rename to {new_path}"]
        if not f.patch:
            lines.append(f"Binary files a/{old_path} and b/{new_path} differ")
            blocks.append("\n".join(lines))
            continue
        lines.append("--- /dev/null" if f.status == "added" else f"--- a/{old_path}")
        lines.append("+++ /dev/null" if f.status == "removed" else f"+++ b/{new_path}")
        lines.append(f.patch.rstrip("\n"))
        blocks.append("\n".join(lines))
    return "\n".join(blocks) + ("\n" if blocks else "")


class GitHubPullRequestSource(DiffSource):
    """A pull request on GitHub, pinned to its current head SHA."""

    def __init__(self, repo, pr):
        self._repo = repo
        self._pr = pr
        self.base_sha = pr.base.sha
        self.head_sha = pr.head.sha
        self.description = pr.body or ""

    def get_diff_text(self) -> str:
        try:
            files = sorted(get_diff(self._pr), key=lambda f: f.filename)
        except GithubException as e:
            raise DiffSourceError(f"could not fetch the files of PR #{self._pr.number}: {e}") from e
        return assemble_diff(files)

    def get_file_content(self, path: str) -> str | None:
        try:
            blob = self._repo.get_contents(path, ref=self.head_sha)
        except GithubException as e:
            logger.warning("Could not fetch %s at %s: %s", path, self.head_sha[:7], e)
            return None
        # Reviewer-supplied paths can name a directory (a list), a symlink or a submodule.
        if isinstance(blob, list) or blob.type != "file":
            logger.warning("Not a file at %s: %s", self.head_sha[:7], path)
            return None
        return blob.decoded_content.decode("utf-8", errors="replace")

    def get_interdiff_text(self, since_sha: str) -> str | None:
        try:
            files = sorted(get_incremental_files(self._repo, since_sha, self.head_sha), key=lambda f: f.filename)
        except GithubException as e:
            # Typically a force-push: the old head no longer exists.
            logger.warning("Could not compare %s...%s: %s", since_sha[:7], self.head_sha[:7], e)
            return None
        return assemble_diff(files)


class LocalGitSource(DiffSource):
    """Two revisions of a local git checkout, diffed the way a pull request is (base...head)."""

    def __init__(self, base: str, head: str = "HEAD", cwd: str = ".", description: str = ""):
        self._cwd = cwd
        self.base_sha = self._git("rev-parse", "--verify", f"{base}^{{commit}}").strip()
        self.head_sha = self._git("rev-parse", "--verify", f"{head}^{{commit}}").strip()
        self.description = description

    def _git(self, *args: str) -> str:
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=self._cwd,
                capture_output=True,
                text=True,
                check=True,
            )
        except FileNotFoundError as e:
            raise DiffSourceError("git is not installed or not on PATH") from e
        except subprocess.CalledProcessError as e:
            raise DiffSourceError(f"git {' '.join(args)} failed: {e.stderr.strip()}") from e
        return result.stdout

    def get_diff_text(self) -> str:
        return self._git("diff", "--no-color", "--no-ext-diff", "-M", f"{self.base_sha}...{self.head_sha}")

    def get_file_content(self, path: str) -> str | None:
        try:
            return self._git("show", f"{self.head_sha}:{path}")
        except DiffSourceError as e:
            logger.warning("Could not read %s at %s: %s", path, self.head_sha[:7], e)
            return None

    def get_interdiff_text(self, since_sha: str) -> str | None:
        try:
            return self._git("diff", "--no-color", "--no-ext-diff", "-M", since_sha, self.head_sha)
        except DiffSourceError as e:
            logger.warning("Could not diff %s..%s: %s", since_sha[:7], self.head_sha[:7], e)
            return None


class StaticDiffSource(DiffSource):
    """A diff supplied as text (a file or stdin); no file contents, no inter-diff."""

    def __init__(self, text: str, base_sha: str = "", head_sha: str = "", description: str = ""):
        self._text = text
        self.base_sha = base_sha
        self.head_sha = head_sha
        self.description = description

    def get_diff_text(self) -> str:
        return self._text
