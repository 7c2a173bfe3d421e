"""Finding record model and the collaborator output adapter.

A Finding is immutable once created. Severity clamping, re-location and
every other change produce a new instance; a review run's findings are never
edited after the run completes, only superseded by the next run.

The fingerprint is the identity used to recognise the same logical issue
across runs. It covers category, normalized title, file path and enclosing
symbol, and deliberately excludes line numbers so it survives line drift.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum

from prledger_core.errors import InvalidFindingError


class Category(str, Enum):
    ARCHITECTURE = "architecture"
    SECURITY = "security"
    CORRECTNESS = "correctness"
    MAINTAINABILITY = "maintainability"
    PERFORMANCE = "performance"
    STYLE = "style"


class Severity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.HIGH: 3, Severity.MEDIUM: 2, Severity.LOW: 1}

# Vocabulary reviewers commonly drift into; anything else is rejected.
_SEVERITY_ALIASES = {
    "critical": Severity.HIGH,
    "blocker": Severity.HIGH,
    "major": Severity.MEDIUM,
    "minor": Severity.LOW,
    "nitpick": Severity.LOW,
}
_CATEGORY_ALIASES = {
    "bug": Category.CORRECTNESS,
    "logic": Category.CORRECTNESS,
    "perf": Category.PERFORMANCE,
    "readability": Category.MAINTAINABILITY,
    "design": Category.ARCHITECTURE,
    "formatting": Category.STYLE,
}


@dataclass(frozen=True)
class Location:
    path: str
    start_line: int
    end_line: int
    symbol: str | None = None


@dataclass(frozen=True)
class Finding:
    """One issue reported by the reviewer collaborator at one location."""

    category: Category
    severity: Severity
    title: str
    explanation: str
    location: Location
    suggestion: str = ""
    fix_patch: str | None = None
    # Source lines around the location at review time; the structural anchor
    # used when the finding's line range moves between runs.
    context: tuple[str, ...] = ()

    @property
    def path(self) -> str:
        return self.location.path

    @property
    def fingerprint(self) -> str:
        return self.fingerprint_at(self.location.path)

    def fingerprint_at(self, path: str) -> str:
        """The fingerprint this finding would have if its file lived at ``path``."""
        return compute_fingerprint(self.category, self.title, path, self.location.symbol)

    def with_severity(self, severity: Severity) -> Finding:
        return replace(self, severity=severity)


@dataclass(frozen=True)
class ReviewRun:
    """Immutable record of every finding produced by one review pass of a PR."""

    repo: str
    pr_number: int
    head_sha: str
    base_sha: str
    findings: tuple[Finding, ...] = ()
    reviewed_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    reviewer_model: str = ""
    pr_title: str = ""
    dropped_findings: int = 0


# ---------------------------------------------------------------------- #
# Fingerprinting                                                          #
# ---------------------------------------------------------------------- #


def normalize_title(title: str) -> str:
    """Lower-case, digit runs to '#', punctuation dropped, whitespace collapsed.

    "Unchecked `null` at line 42!" and "unchecked null at line 57" normalize
    to the same string.
    """
    text = title.lower()
    text = re.sub(r"\d+", "#", text)
    text = re.sub(r"[^\w#]+", " ", text)
    return " ".join(text.split())


def normalize_path(path: str) -> str:
    path = path.strip().replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path.lstrip("/")


def normalize_symbol(symbol: str | None) -> str:
    if not symbol:
        return ""
    return re.sub(r"\s+|\(\)", "", symbol).lower()


def compute_fingerprint(category: Category | str, title: str, path: str, symbol: str | None = None) -> str:
    parts = (
        Category(category).value,
        normalize_title(title),
        normalize_path(path),
        normalize_symbol(symbol),
    )
    return hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()[:16]


def finding_sort_key(finding: Finding) -> tuple:
    """Severity descending, then diff reading order; remaining keys only break ties."""
    return (
        -finding.severity.rank,
        finding.location.path,
        finding.location.start_line,
        finding.location.end_line,
        normalize_title(finding.title),
        finding.fingerprint,
    )


# ---------------------------------------------------------------------- #
# Collaborator output adapter                                             #
# ---------------------------------------------------------------------- #


def parse_category(value) -> Category:
    if not isinstance(value, str) or not value.strip():
        raise InvalidFindingError("finding has no category", field="category")
    key = value.strip().lower()
    try:
        return Category(key)
    except ValueError:
        if key in _CATEGORY_ALIASES:
            return _CATEGORY_ALIASES[key]
        raise InvalidFindingError(f"unknown category {value!r}", field="category") from None


def parse_severity(value) -> Severity:
    if not isinstance(value, str) or not value.strip():
        raise InvalidFindingError("finding has no severity", field="severity")
    key = value.strip().lower()
    try:
        return Severity(key)
    except ValueError:
        if key in _SEVERITY_ALIASES:
            return _SEVERITY_ALIASES[key]
        raise InvalidFindingError(f"unknown severity {value!r}", field="severity") from None


def _require_text(raw: dict, *names: str) -> str:
    for name in names:
        value = raw.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    raise InvalidFindingError(f"finding has no {names[0]}", field=names[0])


def _optional_text(raw: dict, name: str) -> str:
    value = raw.get(name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise InvalidFindingError(f"{name} must be a string", field=name)
    return value.strip()


def _parse_line(value, name: str) -> int:
    if isinstance(value, bool):
        raise InvalidFindingError(f"{name} must be an integer", field=name)
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int):
        raise InvalidFindingError(f"{name} must be an integer", field=name)
    if value < 1:
        raise InvalidFindingError(f"{name} must be positive", field=name)
    return value


def _parse_location(raw: dict, default_path: str | None, default_symbol: str | None) -> Location:
    path = raw.get("file") or raw.get("path") or default_path
    if not isinstance(path, str) or not path.strip():
        raise InvalidFindingError("finding has no file path", field="file")

    start_raw = raw.get("start_line", raw.get("line"))
    if start_raw is None:
        raise InvalidFindingError("finding has no line", field="line")
    start = _parse_line(start_raw, "line")
    end = _parse_line(raw["end_line"], "end_line") if raw.get("end_line") is not None else start
    if end < start:
        raise InvalidFindingError(f"end_line {end} precedes start line {start}", field="end_line")

    symbol = raw.get("symbol", default_symbol)
    if symbol is not None and not isinstance(symbol, str):
        raise InvalidFindingError("symbol must be a string", field="symbol")
    return Location(path=normalize_path(path), start_line=start, end_line=end, symbol=(symbol or "").strip() or None)


def findings_from_raw(
    raw,
    default_path: str | None = None,
    context_for: Callable[[str, int, int], tuple[str, ...]] | None = None,
) -> list[Finding]:
    """Validate one raw collaborator record and turn it into Findings.

    A record that lists several ``locations`` is split into one independent
    single-file Finding per distinct location, so an issue spanning a
    production file and its test file reaches the severity policy as two
    findings that are clamped independently.

    Raises InvalidFindingError when a required field is missing or malformed.
    """
    if not isinstance(raw, dict):
        raise InvalidFindingError(f"finding must be an object, got {type(raw).__name__}")

    category = parse_category(raw.get("category"))
    severity = parse_severity(raw.get("severity"))
    title = _require_text(raw, "title")
    explanation = _require_text(raw, "explanation", "comment")
    suggestion = _optional_text(raw, "suggestion")
    fix_patch = _optional_text(raw, "fix_patch") or None
    default_symbol = raw.get("symbol") if isinstance(raw.get("symbol"), str) else None

    if "locations" in raw:
        entries = raw["locations"]
        if not isinstance(entries, list) or not entries:
            raise InvalidFindingError("locations must be a non-empty list", field="locations")
        if not all(isinstance(entry, dict) for entry in entries):
            raise InvalidFindingError("every location must be an object", field="locations")
        locations = [_parse_location(entry, default_path, default_symbol) for entry in entries]
    else:
        locations = [_parse_location(raw, default_path, default_symbol)]

    findings: list[Finding] = []
    seen: set[Location] = set()
    for location in locations:
        if location in seen:
            continue
        seen.add(location)
        context = context_for(location.path, location.start_line, location.end_line) if context_for else ()
        findings.append(
            Finding(
                category=category,
                severity=severity,
                title=title,
                explanation=explanation,
                location=location,
                suggestion=suggestion,
                fix_patch=fix_patch,
                context=tuple(context),
            )
        )
    return findings
