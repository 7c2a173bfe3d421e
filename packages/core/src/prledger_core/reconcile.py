"""Reconcile the current review's findings against the previous run of the same PR.

Every previous finding ends up with exactly one PreviousStatus and every
current finding with exactly one CurrentStatus:

    previous                               current
    --------                               -------
    OPEN          matched, same issue   ←→ MATCHED
    PARTIAL       matched, code moved   ←→ MATCHED
    NOT_RESOLVED  fingerprint still reported but no partner left
    RESOLVED      fingerprint no longer reported
                                            NEW    no partner

Matching is 1:1. Within one fingerprint, candidate pairs are taken greedily in
order of line distance, so when the reviewer reports the same issue twice the
copy nearest the old location wins and the other copy is NEW.

RESOLVED rests on an assumption: the reviewer no longer reports the issue, so
it was fixed. A reviewer that simply missed it this time produces exactly the
same signal, which is why the report states that caveat next to every
resolved finding instead of presenting resolution as verified.
"""

from __future__ import annotations

import difflib
import logging
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum

from prledger_core.findings import Finding, Severity, finding_sort_key

logger = logging.getLogger(__name__)

DEFAULT_MATCH_THRESHOLD = 0.8


class PreviousStatus(str, Enum):
    """How a previous-run finding fared. OPEN is the matched/open outcome: still reported at the same or an equivalent location."""

    RESOLVED = "resolved"
    PARTIAL = "partial"
    NOT_RESOLVED = "not_resolved"
    OPEN = "open"


class CurrentStatus(str, Enum):
    MATCHED = "matched"
    NEW = "new"


@dataclass(frozen=True)
class PreviousOutcome:
    finding: Finding
    status: PreviousStatus
    match: Finding | None = None
    overlap: float | None = None


@dataclass(frozen=True)
class CurrentOutcome:
    finding: Finding
    status: CurrentStatus
    previous: Finding | None = None
    previous_status: PreviousStatus | None = None


@dataclass(frozen=True)
class Tally:
    resolved: int = 0
    partial: int = 0
    not_resolved: int = 0
    open: int = 0
    new: int = 0
    new_high: int = 0


@dataclass(frozen=True)
class ReconciliationResult:
    previous: tuple[PreviousOutcome, ...]
    current: tuple[CurrentOutcome, ...]
    tally: Tally
    first_run: bool = False

    def current_findings(self) -> list[Finding]:
        return [outcome.finding for outcome in self.current]

    def previous_with_status(self, status: PreviousStatus) -> list[PreviousOutcome]:
        return [outcome for outcome in self.previous if outcome.status is status]


def _normalize_context(lines: Iterable[str]) -> list[str]:
    return [" ".join(line.split()) for line in lines if line.strip()]


def context_overlap(a: Iterable[str], b: Iterable[str]) -> float:
    """Similarity in [0, 1] of two context windows, ignoring indentation and blank lines."""
    left, right = _normalize_context(a), _normalize_context(b)
    if not left and not right:
        return 1.0
    if not left or not right:
        return 0.0
    return difflib.SequenceMatcher(None, left, right, autojunk=False).ratio()


class Reconciler:
    """Match current findings to previous ones.

    ``line_mapper`` translates a previous (path, line) into the current
    revision's coordinates, typically built from the inter-diff between the
    two reviewed heads. When it also exposes ``path_for`` (renames), previous
    findings are fingerprinted at their new path so a renamed file does not
    turn every open issue into a resolved/new pair.
    """

    def __init__(
        self,
        match_threshold: float = DEFAULT_MATCH_THRESHOLD,
        line_mapper: Callable[[str, int], int | None] | None = None,
    ):
        if not 0.0 <= match_threshold <= 1.0:
            raise ValueError(f"match_threshold must be within [0, 1], got {match_threshold}")
        self.match_threshold = match_threshold
        self.line_mapper = line_mapper

    def reconcile(self, previous: Iterable[Finding] | None, current: Iterable[Finding]) -> ReconciliationResult:
        current_list = sorted(current, key=finding_sort_key)

        if previous is None:
            outcomes = tuple(CurrentOutcome(f, CurrentStatus.NEW) for f in current_list)
            return ReconciliationResult(previous=(), current=outcomes, tally=_tally((), outcomes), first_run=True)

        previous_list = sorted(previous, key=finding_sort_key)

        previous_groups: dict[str, list[int]] = defaultdict(list)
        for i, finding in enumerate(previous_list):
            previous_groups[self._previous_fingerprint(finding)].append(i)
        current_groups: dict[str, list[int]] = defaultdict(list)
        for j, finding in enumerate(current_list):
            current_groups[finding.fingerprint].append(j)

        previous_outcomes: dict[int, PreviousOutcome] = {}
        current_outcomes: dict[int, CurrentOutcome] = {}

        for fingerprint, previous_idx in previous_groups.items():
            current_idx = current_groups.get(fingerprint)
            if not current_idx:
                for i in previous_idx:
                    previous_outcomes[i] = PreviousOutcome(previous_list[i], PreviousStatus.RESOLVED)
                continue

            # Indices make the order total, so equal distances always pair the same way.
            candidates = sorted(
                (self._distance(previous_list[i], current_list[j]), i, j) for i in previous_idx for j in current_idx
            )
            for _, i, j in candidates:
                if i in previous_outcomes or j in current_outcomes:
                    continue
                status, overlap = self._classify_pair(previous_list[i], current_list[j])
                previous_outcomes[i] = PreviousOutcome(previous_list[i], status, match=current_list[j], overlap=overlap)
                current_outcomes[j] = CurrentOutcome(
                    current_list[j], CurrentStatus.MATCHED, previous=previous_list[i], previous_status=status
                )

            for i in previous_idx:
                if i not in previous_outcomes:
                    previous_outcomes[i] = PreviousOutcome(previous_list[i], PreviousStatus.NOT_RESOLVED)

        for j, finding in enumerate(current_list):
            if j not in current_outcomes:
                current_outcomes[j] = CurrentOutcome(finding, CurrentStatus.NEW)

        prev_tuple = tuple(previous_outcomes[i] for i in range(len(previous_list)))
        cur_tuple = tuple(current_outcomes[j] for j in range(len(current_list)))
        tally = _tally(prev_tuple, cur_tuple)
        logger.debug(
            "Reconciled %d previous / %d current findings: %s",
            len(previous_list),
            len(current_list),
            tally,
        )
        return ReconciliationResult(previous=prev_tuple, current=cur_tuple, tally=tally)

    def _previous_fingerprint(self, finding: Finding) -> str:
        path_for = getattr(self.line_mapper, "path_for", None)
        if path_for is None:
            return finding.fingerprint
        return finding.fingerprint_at(path_for(finding.path))

    def _translated_start(self, finding: Finding) -> int:
        if self.line_mapper is None:
            return finding.location.start_line
        mapped = self.line_mapper(finding.path, finding.location.start_line)
        # A removed anchor line leaves nothing to translate; fall back to the raw number.
        return mapped if mapped is not None else finding.location.start_line

    def _distance(self, previous: Finding, current: Finding) -> int:
        return abs(self._translated_start(previous) - current.location.start_line)

    def _classify_pair(self, previous: Finding, current: Finding) -> tuple[PreviousStatus, float | None]:
        start = self._translated_start(previous)
        previous_span = previous.location.end_line - previous.location.start_line
        current_span = current.location.end_line - current.location.start_line
        if start == current.location.start_line and previous_span == current_span:
            return PreviousStatus.OPEN, None

        # No recorded context on one side: the fingerprint is the only evidence, and it agrees.
        if not previous.context or not current.context:
            return PreviousStatus.OPEN, None

        overlap = context_overlap(previous.context, current.context)
        if overlap >= self.match_threshold:
            return PreviousStatus.OPEN, overlap
        return PreviousStatus.PARTIAL, overlap


def _tally(previous: Iterable[PreviousOutcome], current: Iterable[CurrentOutcome]) -> Tally:
    counts = {status: 0 for status in PreviousStatus}
    for outcome in previous:
        counts[outcome.status] += 1
    new = [outcome for outcome in current if outcome.status is CurrentStatus.NEW]
    return Tally(
        resolved=counts[PreviousStatus.RESOLVED],
        partial=counts[PreviousStatus.PARTIAL],
        not_resolved=counts[PreviousStatus.NOT_RESOLVED],
        open=counts[PreviousStatus.OPEN],
        new=len(new),
        new_high=sum(1 for outcome in new if outcome.finding.severity is Severity.HIGH),
    )


def reconcile(
    previous: Iterable[Finding] | None,
    current: Iterable[Finding],
    match_threshold: float = DEFAULT_MATCH_THRESHOLD,
    line_mapper: Callable[[str, int], int | None] | None = None,
) -> ReconciliationResult:
    return Reconciler(match_threshold=match_threshold, line_mapper=line_mapper).reconcile(previous, current)
