"""Review history data models.

Decoupled from prledger_core so the store layer can be used independently
and prledger_core has no knowledge of persistence concerns.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields


@dataclass
class FindingRecord:
    """A single finding persisted to the store, flattened to plain values."""

    fingerprint: str
    category: str
    severity: str
    title: str
    explanation: str
    path: str
    start_line: int
    end_line: int
    symbol: str | None = None
    suggestion: str = ""
    fix_patch: str | None = None
    context: list[str] = field(default_factory=list)


@dataclass
class ReviewRecord:
    """A completed review run persisted to the store.

    Created by the CLI layer after run_review() returns a ReviewOutcome.
    The CLI maps ReviewRun → ReviewRecord before calling store.save(), and
    back again when the record becomes the previous run of a follow-up.
    """

    repo: str
    pr_number: int
    pr_title: str
    reviewer_model: str
    head_sha: str
    base_sha: str
    reviewed_at: str  # ISO-8601 UTC timestamp
    event: str  # "APPROVE" | "COMMENT" | "REQUEST_CHANGES"
    files_reviewed: int = 0
    dropped_findings: int = 0
    # Tallies against the run's predecessor
    resolved: int = 0
    partial: int = 0
    not_resolved: int = 0
    open: int = 0
    new: int = 0
    new_high: int = 0
    findings: list[FindingRecord] = field(default_factory=list)

    @property
    def total_findings(self) -> int:
        return len(self.findings)


_FINDING_KEYS = {f.name for f in fields(FindingRecord)}
_REVIEW_DEFAULTS = {
    "repo": "",
    "pr_number": 0,
    "pr_title": "",
    "reviewer_model": "",
    "head_sha": "",
    "base_sha": "",
    "reviewed_at": "",
    "event": "",
}


def record_to_dict(record: ReviewRecord) -> dict:
    return asdict(record)


def record_from_dict(d: dict) -> ReviewRecord:
    """Rebuild a ReviewRecord, tolerating missing keys and ignoring unknown ones."""
    values = {key: d.get(key) or default for key, default in _REVIEW_DEFAULTS.items()}
    for key in ("files_reviewed", "dropped_findings", "resolved", "partial", "not_resolved", "open", "new", "new_high"):
        values[key] = int(d.get(key) or 0)
    findings = []
    for f in d.get("findings") or []:
        item = {k: v for k, v in f.items() if k in _FINDING_KEYS}
        item.setdefault("fingerprint", "")
        item.setdefault("category", "")
        item.setdefault("severity", "low")
        item.setdefault("title", "")
        item.setdefault("explanation", "")
        item.setdefault("path", "")
        item.setdefault("start_line", 0)
        item.setdefault("end_line", item["start_line"])
        item["context"] = list(item.get("context") or [])
        findings.append(FindingRecord(**item))
    return ReviewRecord(findings=findings, **values)
