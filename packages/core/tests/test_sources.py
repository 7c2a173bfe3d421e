"""Tests for the diff sources."""

import subprocess
import types
from unittest.mock import MagicMock, patch

import pytest
from github import GithubException

from prledger_core.diff import parse_unified_diff
from prledger_core.errors import DiffSourceError
from prledger_core.sources import GitHubPullRequestSource, LocalGitSource, StaticDiffSource, assemble_diff

PATCH = "@@ -1,2 +1,3 @@\n line1\n+new line\n line2"


def make_file(filename, status="modified", patch=PATCH, previous_filename=None):
    return types.SimpleNamespace(filename=filename, status=status, patch=patch, previous_filename=previous_filename)


def make_pr(files=(), body="Fixes the cart"):
    pr = MagicMock()
    pr.number = 7
    pr.base.sha = "b" * 40
    pr.head.sha = "h" * 40
    pr.body = body
    pr.get_files.return_value = list(files)
    return pr


class TestAssembleDiff:
    def test_empty(self):
        assert assemble_diff([]) == ""

    def test_modified_file_round_trips_through_parser(self):
        (file_diff,) = parse_unified_diff(assemble_diff([make_file("src/app.py")]))
        assert file_diff.path == "src/app.py"
        assert file_diff.status == "modified"
        assert len(file_diff.hunks) == 1

    def test_added_and_removed(self):
        text = assemble_diff(
            [
                make_file("new.py", status="added", patch="@@ -0,0 +1,1 @@\n+x = 1"),
                make_file("old.py", status="removed", patch="@@ -1,1 +0,0 @@\n-x = 1"),
            ]
        )
        assert "--- /dev/null\n+++ b/new.py" in text
        assert "--- a/old.py\n+++ /dev/null" in text
        statuses = {f.path: f.status for f in parse_unified_diff(text)}
        assert statuses == {"new.py": "added", "old.py": "removed"}

    def test_renamed_file_keeps_old_path(self):
        text = assemble_diff([make_file("src/b.py", status="renamed", previous_filename="src/a.py")])
        assert "rename from src/a.py\nrename to src/b.py" in text
        (file_diff,) = parse_unified_diff(text)
        assert file_diff.status == "renamed"
        assert file_diff.old_path == "src/a.py"

    def test_file_without_patch_is_binary(self):
        (file_diff,) = parse_unified_diff(assemble_diff([make_file("logo.png", patch=None)]))
        assert file_diff.binary is True
        assert file_diff.hunks == ()


class TestGitHubPullRequestSource:
    def test_pins_revisions_and_description(self):
        source = GitHubPullRequestSource(MagicMock(), make_pr())
        assert source.base_sha == "b" * 40
        assert source.head_sha == "h" * 40
        assert source.description == "Fixes the cart"

    def test_none_body_becomes_empty_description(self):
        assert GitHubPullRequestSource(MagicMock(), make_pr(body=None)).description == ""

    def test_diff_text_sorted_by_path(self):
        pr = make_pr([make_file("z.py"), make_file("a.py")])
        text = GitHubPullRequestSource(MagicMock(), pr).get_diff_text()
        assert text.index("a/a.py") < text.index("a/z.py")

    def test_diff_fetch_failure_raises(self):
        pr = make_pr()
        pr.get_files.side_effect = GithubException(502, "Bad Gateway", None)
        with pytest.raises(DiffSourceError, match="PR #7"):
            GitHubPullRequestSource(MagicMock(), pr).get_diff_text()

    def test_file_content_decoded_at_head(self):
        repo = MagicMock()
        repo.get_contents.return_value.type = "file"
        repo.get_contents.return_value.decoded_content = b"print('hi')\n"
        source = GitHubPullRequestSource(repo, make_pr())
        assert source.get_file_content("app.py") == "print('hi')\n"
        repo.get_contents.assert_called_once_with("app.py", ref="h" * 40)

    def test_file_content_failure_returns_none(self):
        repo = MagicMock()
        repo.get_contents.side_effect = GithubException(404, "Not Found", None)
        assert GitHubPullRequestSource(repo, make_pr()).get_file_content("gone.py") is None

    def test_directory_path_returns_none(self):
        repo = MagicMock()
        repo.get_contents.return_value = [MagicMock(), MagicMock()]
        assert GitHubPullRequestSource(repo, make_pr()).get_file_content("src") is None

    def test_symlink_returns_none(self):
        repo = MagicMock()
        repo.get_contents.return_value.type = "symlink"
        assert GitHubPullRequestSource(repo, make_pr()).get_file_content("current") is None
        repo.get_contents.return_value.decoded_content.decode.assert_not_called()

    def test_interdiff_from_compare(self):
        repo = MagicMock()
        repo.compare.return_value.files = [make_file("a.py")]
        text = GitHubPullRequestSource(repo, make_pr()).get_interdiff_text("o" * 40)
        repo.compare.assert_called_once_with("o" * 40, "h" * 40)
        assert "+++ b/a.py" in text

    def test_interdiff_after_force_push_returns_none(self):
        repo = MagicMock()
        repo.compare.side_effect = GithubException(404, "Not Found", None)
        assert GitHubPullRequestSource(repo, make_pr()).get_interdiff_text("o" * 40) is None


def _completed(stdout):
    return subprocess.CompletedProcess(args=[], returncode=0, stdout=stdout, stderr="")


class TestLocalGitSource:
    @patch("prledger_core.sources.subprocess.run")
    def test_resolves_revisions(self, mock_run):
        mock_run.side_effect = [_completed("1" * 40 + "\n"), _completed("2" * 40 + "\n")]
        source = LocalGitSource("main", "feature", cwd="/repo")
        assert source.base_sha == "1" * 40
        assert source.head_sha == "2" * 40
        assert mock_run.call_args_list[0].args[0] == ["git", "rev-parse", "--verify", "main^{commit}"]
        assert mock_run.call_args_list[0].kwargs["cwd"] == "/repo"

    @patch("prledger_core.sources.subprocess.run")
    def test_diff_uses_merge_base_range(self, mock_run):
        mock_run.side_effect = [_completed("1" * 40), _completed("2" * 40), _completed("diff text")]
        source = LocalGitSource("main")
        assert source.get_diff_text() == "diff text"
        args = mock_run.call_args.args[0]
        assert args[:2] == ["git", "diff"]
        assert args[-1] == f"{'1' * 40}...{'2' * 40}"

    @patch("prledger_core.sources.subprocess.run")
    def test_unknown_revision_raises(self, mock_run):
        mock_run.side_effect = subprocess.CalledProcessError(128, ["git"], stderr="fatal: bad revision\n")
        with pytest.raises(DiffSourceError, match="bad revision"):
            LocalGitSource("nope")

    @patch("prledger_core.sources.subprocess.run", side_effect=FileNotFoundError)
    def test_git_missing_raises(self, _mock_run):
        with pytest.raises(DiffSourceError, match="not installed"):
            LocalGitSource("main")

    @patch("prledger_core.sources.subprocess.run")
    def test_missing_file_content_returns_none(self, mock_run):
        mock_run.side_effect = [
            _completed("1" * 40),
            _completed("2" * 40),
            subprocess.CalledProcessError(128, ["git"], stderr="fatal: path does not exist"),
        ]
        assert LocalGitSource("main").get_file_content("gone.py") is None


class TestStaticDiffSource:
    def test_returns_text_and_nothing_else(self):
        source = StaticDiffSource("diff text", base_sha="b", head_sha="h", description="desc")
        assert source.get_diff_text() == "diff text"
        assert source.get_file_content("a.py") is None
        assert source.get_interdiff_text("x") is None
        assert (source.base_sha, source.head_sha, source.description) == ("b", "h", "desc")
