"""Report rendering.

render_markdown() and report_to_dict() are pure functions of their input: the
same ReconciliationResult always renders to byte-identical output. Nothing
time-dependent is rendered, so reports can be compared as snapshots.

Findings are listed by severity (high, medium, low), then file path, then
starting line, which is the order a reader walks the diff in.
"""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape

from prledger_core.findings import Finding, Location, Severity, finding_sort_key
from prledger_core.reconcile import CurrentOutcome, CurrentStatus, PreviousStatus, ReconciliationResult

console = Console()

RESOLVED_CAVEAT = (
    "These findings were not reported again. That usually means they were fixed, "
    "but the reviewer may also have missed them on this pass; verify before closing them."
)

_SEVERITY_HEADINGS = ((Severity.HIGH, "High"), (Severity.MEDIUM, "Medium"), (Severity.LOW, "Low"))
_SEVERITY_COLOR = {Severity.HIGH: "red", Severity.MEDIUM: "yellow", Severity.LOW: "blue"}


def ordered_outcomes(result: ReconciliationResult) -> list[CurrentOutcome]:
    return sorted(result.current, key=lambda outcome: finding_sort_key(outcome.finding))


def badge(outcome: CurrentOutcome) -> str:
    if outcome.status is CurrentStatus.NEW:
        return "NEW"
    if outcome.previous_status is PreviousStatus.PARTIAL:
        return "PARTIAL"
    return "OPEN"


def format_location(location: Location) -> str:
    lines = str(location.start_line)
    if location.end_line != location.start_line:
        lines = f"{location.start_line}-{location.end_line}"
    text = f"`{location.path}:{lines}`"
    if location.symbol:
        text += f" in `{location.symbol}`"
    return text


def _indent(text: str, prefix: str = "  ") -> str:
    return "\n".join(prefix + line if line.strip() else "" for line in text.splitlines())


def _verdict(result: ReconciliationResult) -> str:
    tally = result.tally
    if not result.current:
        if result.first_run or not result.previous:
            return "No issues found."
        return "No issues reported on this pass."
    parts = [f"{tally.new} new" + (f" ({tally.new_high} high)" if tally.new_high else "")]
    if not result.first_run:
        still_open = tally.open + tally.partial
        if still_open:
            parts.append(f"{still_open} still open")
        if tally.resolved:
            parts.append(f"{tally.resolved} resolved")
    return ", ".join(parts) + "."


def tally_line(result: ReconciliationResult) -> str:
    tally = result.tally
    return (
        f"**Resolved:** {tally.resolved} · **Partial:** {tally.partial} · "
        f"**Not resolved:** {tally.not_resolved} · **New (high):** {tally.new_high}"
    )


def _render_finding(outcome: CurrentOutcome) -> list[str]:
    finding = outcome.finding
    lines = [
        f"- **[{badge(outcome)}]** {format_location(finding.location)} · {finding.category.value} · "
        f"**{finding.title}**",
        _indent(finding.explanation),
    ]
    if finding.suggestion:
        lines.append("")
        lines.append(_indent(f"_Suggestion:_ {finding.suggestion}"))
    if finding.fix_patch:
        lines.append("")
        lines.append(_indent("```diff\n" + finding.fix_patch.rstrip("\n") + "\n```"))
    return lines


def _render_previous(finding: Finding) -> str:
    return f"- {format_location(finding.location)} · {finding.category.value} · **{finding.title}**"


def render_markdown(
    result: ReconciliationResult,
    dropped: int = 0,
    title: str | None = None,
    revision: tuple[str, str] | None = None,
) -> str:
    """Render the reconciled findings as a Markdown document."""
    lines = [f"## {title}" if title else "## Review findings", ""]

    if revision:
        base, head = revision
        lines.append(f"_Revision: `{base[:7]}` → `{head[:7]}`_")
        lines.append("")
    if result.first_run:
        lines.append("_First review of this pull request: every finding is new._")
        lines.append("")

    lines.append(f"> {_verdict(result)}")

    outcomes = ordered_outcomes(result)
    for severity, heading in _SEVERITY_HEADINGS:
        group = [o for o in outcomes if o.finding.severity is severity]
        if not group:
            continue
        lines.append("")
        lines.append(f"### {heading}")
        for outcome in group:
            lines.append("")
            lines.extend(_render_finding(outcome))

    resolved = sorted(
        (o.finding for o in result.previous_with_status(PreviousStatus.RESOLVED)),
        key=finding_sort_key,
    )
    if resolved:
        lines.append("")
        lines.append("### Resolved since last review")
        lines.append("")
        lines.extend(_render_previous(f) for f in resolved)
        lines.append("")
        lines.append(f"> {RESOLVED_CAVEAT}")

    not_resolved = sorted(
        (o.finding for o in result.previous_with_status(PreviousStatus.NOT_RESOLVED)),
        key=finding_sort_key,
    )
    if not_resolved:
        lines.append("")
        lines.append("### Not resolved")
        lines.append("")
        lines.append("_Still reported, but no finding on this pass could be paired with these:_")
        lines.append("")
        lines.extend(_render_previous(f) for f in not_resolved)

    lines.append("")
    lines.append("---")
    if dropped:
        noun = "finding" if dropped == 1 else "findings"
        lines.append(f"_{dropped} {noun} dropped due to malformed data._")
        lines.append("")
    lines.append(tally_line(result))
    return "\n".join(lines) + "\n"


def _finding_dict(finding: Finding) -> dict:
    return {
        "fingerprint": finding.fingerprint,
        "severity": finding.severity.value,
        "category": finding.category.value,
        "title": finding.title,
        "path": finding.location.path,
        "start_line": finding.location.start_line,
        "end_line": finding.location.end_line,
        "symbol": finding.location.symbol,
        "explanation": finding.explanation,
        "suggestion": finding.suggestion,
        "fix_patch": finding.fix_patch,
    }


def report_to_dict(result: ReconciliationResult, dropped: int = 0) -> dict:
    """The report as plain data, for JSON output and pipeline gates."""
    findings = []
    for outcome in ordered_outcomes(result):
        entry = _finding_dict(outcome.finding)
        entry["status"] = badge(outcome).lower()
        entry["previous_fingerprint"] = outcome.previous.fingerprint if outcome.previous else None
        findings.append(entry)

    def previous_entries(status: PreviousStatus) -> list[dict]:
        chosen = sorted((o.finding for o in result.previous_with_status(status)), key=finding_sort_key)
        return [_finding_dict(f) for f in chosen]

    tally = result.tally
    return {
        "first_run": result.first_run,
        "findings": findings,
        "resolved": previous_entries(PreviousStatus.RESOLVED),
        "not_resolved": previous_entries(PreviousStatus.NOT_RESOLVED),
        "dropped_findings": dropped,
        "tally": {
            "resolved": tally.resolved,
            "partial": tally.partial,
            "not_resolved": tally.not_resolved,
            "open": tally.open,
            "new": tally.new,
            "new_high": tally.new_high,
        },
    }


def determine_event(result: ReconciliationResult) -> str:
    """Pick the GitHub review event from the findings still standing."""
    if not result.current:
        return "APPROVE"
    if any(o.finding.severity is Severity.HIGH for o in result.current):
        return "REQUEST_CHANGES"
    return "COMMENT"


def print_report(result: ReconciliationResult, dropped: int = 0) -> None:
    """Print the reconciled findings to the terminal."""
    outcomes = ordered_outcomes(result)
    if not outcomes:
        console.print(f"[green]{_verdict(result)}[/green]")
    else:
        console.print(f"\n[bold]{len(outcomes)} finding(s)[/bold] — {escape(_verdict(result))}\n")
    for outcome in outcomes:
        finding = outcome.finding
        color = _SEVERITY_COLOR[finding.severity]
        loc = finding.location
        console.print(
            f"[bold cyan]{escape(loc.path)}[/bold cyan]  line [bold]{loc.start_line}[/bold]  "
            f"[{color}]{finding.severity.value.upper()}[/{color}]  [dim]{badge(outcome)}[/dim]"
        )
        console.print(f"  [bold]{escape(finding.title)}[/bold]")
        console.print(f"  {escape(finding.explanation)}")
        if finding.suggestion:
            console.print(f"  [dim]Suggestion:[/dim] {escape(finding.suggestion)}")
        console.print()

    for outcome in result.previous_with_status(PreviousStatus.RESOLVED):
        loc = outcome.finding.location
        console.print(f"[green]resolved[/green]  {escape(loc.path)}:{loc.start_line}  {escape(outcome.finding.title)}")
    if result.previous_with_status(PreviousStatus.RESOLVED):
        console.print(f"[dim]{escape(RESOLVED_CAVEAT)}[/dim]")
    if dropped:
        console.print(f"[yellow]{dropped} finding(s) dropped due to malformed data.[/yellow]")
    tally = result.tally
    console.print(
        f"\nResolved: {tally.resolved} · Partial: {tally.partial} · "
        f"Not resolved: {tally.not_resolved} · New (high): {tally.new_high}"
    )
