"""Core review pipeline.

    diff source → Diff Normalizer → reviewer collaborator (one call per file)
      → finding adapter → Severity Policy Engine
      → Reconciliation Engine (against the previous run) → Report Renderer

run_review() persists nothing and returns a ReviewOutcome; the caller decides
whether to save it. A fatal error (MalformedDiffError, CollaboratorTimeoutError,
DiffSourceError) propagates out before any outcome exists, so the previous run
remains the latest committed state and no partial findings survive.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from rich.console import Console

from prledger_core.config import load_guidelines
from prledger_core.diff import (
    FileDiff,
    LineMapper,
    build_line_mapper,
    context_window,
    parse_unified_diff,
    post_image_lines,
    render_patch,
    split_lines,
)
from prledger_core.errors import InvalidFindingError, MalformedDiffError
from prledger_core.findings import Finding, ReviewRun, finding_sort_key, findings_from_raw
from prledger_core.providers.anthropic import AnthropicReviewer
from prledger_core.providers.base import BaseReviewer
from prledger_core.providers.openai import OpenAIReviewer
from prledger_core.reconcile import Reconciler, ReconciliationResult
from prledger_core.report import render_markdown
from prledger_core.severity import TestFileClassifier, enforce_severity_policy
from prledger_core.sources import DiffSource
from prledger_core.utils.paths import is_code_file, matches_any

console = Console(stderr=True)
logger = logging.getLogger(__name__)


@dataclass
class ReviewOutcome:
    """Everything one successful run produced; the CLI persists ``run``."""

    run: ReviewRun
    result: ReconciliationResult
    report: str
    dropped: int = 0
    reviewed_files: list[str] = field(default_factory=list)
    skipped_files: list[str] = field(default_factory=list)


def get_reviewer(config: dict) -> BaseReviewer:
    model = config["model"]
    timeout = float(config.get("collaborator_timeout", 120))
    if model == "anthropic":
        return AnthropicReviewer(api_key=config["anthropic_api_key"], timeout=timeout)
    if model == "openai":
        return OpenAIReviewer(api_key=config["openai_api_key"], timeout=timeout)
    raise ValueError(f"Unknown model provider: {model!r}. Choose 'anthropic' or 'openai'.")


class ContextIndex:
    """Supplies the context window around a finding location.

    Prefers the full file at head; falls back to the lines the diff shows.
    File contents are fetched at most once per path.
    """

    def __init__(self, file_diffs: list[FileDiff], source: DiffSource | None = None, radius: int = 3):
        self._diffs = {f.path: f for f in file_diffs}
        self._source = source
        self._radius = radius
        self._lines: dict[str, dict[int, str]] = {}

    def set_content(self, path: str, content: str | None) -> None:
        if content is not None:
            self._lines[path] = dict(enumerate(split_lines(content), start=1))

    def lines_for(self, path: str) -> dict[int, str]:
        if path not in self._lines:
            content = self._source.get_file_content(path) if self._source is not None else None
            if content is not None:
                self.set_content(path, content)
            elif path in self._diffs:
                self._lines[path] = post_image_lines(self._diffs[path])
            else:
                self._lines[path] = {}
        return self._lines[path]

    def __call__(self, path: str, start: int, end: int) -> tuple[str, ...]:
        return context_window(self.lines_for(path), start, end, self._radius)


def _truncate(text: str, limit: int, label: str) -> str:
    if len(text) > limit:
        return text[:limit] + f"\n... [{label} truncated]"
    return text


def collect_findings(
    reviewer: BaseReviewer,
    file_diff: FileDiff,
    guidelines: str,
    description: str = "",
    file_content: str | None = None,
    context: ContextIndex | None = None,
    max_chars: int = 20000,
) -> tuple[list[Finding], int]:
    """Ask the reviewer about one file; return (valid findings, number dropped).

    CollaboratorTimeoutError from the reviewer is not caught: it aborts the run.
    """
    patch = _truncate(render_patch(file_diff), max_chars, "diff")
    content = _truncate(file_content or "", max_chars, "file")

    raw_findings = reviewer.review(
        description=description,
        file_name=file_diff.path,
        diff_patch=patch,
        file_content=content,
        guidelines=guidelines,
    )

    findings: list[Finding] = []
    dropped = 0
    for raw in raw_findings:
        try:
            findings.extend(findings_from_raw(raw, default_path=file_diff.path, context_for=context))
        except InvalidFindingError as e:
            dropped += 1
            logger.warning("Dropping malformed finding for %s (%s): %s", file_diff.path, e.field or "record", e)
    return findings, dropped


def _build_line_mapper(source: DiffSource, previous: ReviewRun | None) -> LineMapper | None:
    if previous is None or not previous.head_sha or not source.head_sha or previous.head_sha == source.head_sha:
        return None
    text = source.get_interdiff_text(previous.head_sha)
    if text is None:
        return None
    try:
        return build_line_mapper(parse_unified_diff(text))
    except MalformedDiffError as e:
        # The inter-diff only sharpens matching; without it lines are compared as-is.
        logger.warning("Ignoring unparseable inter-diff %s..%s: %s", previous.head_sha[:7], source.head_sha[:7], e)
        return None


def run_review(
    source: DiffSource,
    reviewer: BaseReviewer,
    config: dict,
    repo: str,
    pr_number: int,
    previous: ReviewRun | None = None,
    pr_title: str = "",
    force: bool = False,
) -> ReviewOutcome | None:
    """Run the full review pipeline for one pull request.

    Returns None only when ``previous`` already covers the current head and
    ``force`` is not set. Raises MalformedDiffError, DiffSourceError or
    CollaboratorTimeoutError when the run cannot complete.
    """
    head_sha = source.head_sha
    if previous is not None and not force and previous.head_sha and previous.head_sha == head_sha:
        console.print("[yellow]No new commits since the last review. Nothing to do.[/yellow]")
        return None

    file_diffs = parse_unified_diff(source.get_diff_text())

    guidelines = load_guidelines(config)
    exclude_patterns = config.get("exclude", [])
    max_chars = config.get("max_chars_per_file", 20000)
    classifier = TestFileClassifier(config.get("test_paths", []))
    context = ContextIndex(file_diffs, source, radius=config.get("context_radius", 3))

    all_findings: list[Finding] = []
    dropped = 0
    reviewed: list[str] = []
    skipped: list[str] = []
    total = len(file_diffs)

    for i, file_diff in enumerate(file_diffs, 1):
        path = file_diff.path
        if (
            file_diff.status == "removed"
            or file_diff.binary
            or not file_diff.hunks
            or matches_any(path, exclude_patterns)
            or not is_code_file(path)
        ):
            console.print(f"  Skipping: {path}")
            skipped.append(path)
            continue

        console.print(f"\n[[{i}/{total}]] Reviewing: {path}")
        file_content = source.get_file_content(path)
        context.set_content(path, file_content)

        findings, dropped_here = collect_findings(
            reviewer,
            file_diff,
            guidelines,
            description=source.description,
            file_content=file_content,
            context=context,
            max_chars=max_chars,
        )
        all_findings.extend(findings)
        dropped += dropped_here
        reviewed.append(path)
        console.print(f"  {len(findings)} finding(s)" + (f", {dropped_here} dropped" if dropped_here else "") + ".")

    # The same cross-file issue can come back from the review of each file it touches.
    unique = list(dict.fromkeys(enforce_severity_policy(all_findings, classifier)))

    reconciler = Reconciler(
        match_threshold=config.get("match_threshold", 0.8),
        line_mapper=_build_line_mapper(source, previous),
    )
    result = reconciler.reconcile(previous.findings if previous is not None else None, unique)

    run = ReviewRun(
        repo=repo,
        pr_number=pr_number,
        head_sha=head_sha,
        base_sha=source.base_sha,
        findings=tuple(sorted(unique, key=finding_sort_key)),
        reviewer_model=config.get("model", ""),
        pr_title=pr_title,
        dropped_findings=dropped,
    )

    title = f"{'Follow-up review' if previous is not None else 'Review'}: {repo}#{pr_number}"
    revision = (source.base_sha, head_sha) if source.base_sha and head_sha else None
    report = render_markdown(result, dropped=dropped, title=title, revision=revision)

    return ReviewOutcome(
        run=run,
        result=result,
        report=report,
        dropped=dropped,
        reviewed_files=reviewed,
        skipped_files=skipped,
    )
