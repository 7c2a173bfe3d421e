"""stats command — aggregate finding patterns across review history."""

from __future__ import annotations

from collections import Counter

import click
from rich.console import Console
from rich.table import Table

console = Console()

_SEVERITIES = ("high", "medium", "low")
_SEV_STYLE = {"high": "red", "medium": "yellow", "low": "blue"}


@click.command("stats")
@click.option("--repo", required=True, help="GitHub repository (owner/name).")
@click.option("--top", default=10, show_default=True, help="Number of top entries to show per table.")
@click.pass_context
def stats_cmd(ctx, repo: str, top: int):
    """Show aggregated review statistics for a repository.

    Only the latest run of each PR counts towards the severity, category and
    file tables, so a finding that survives several follow-ups is counted
    once. Resolution totals add up every run.
    """
    from prledger_store.noop import NoOpStore

    store = ctx.obj.get("store") if ctx.obj else None
    if store is None or isinstance(store, NoOpStore):
        raise click.UsageError(
            "No store configured. Add 'store: sqlite' or 'store: gist' to .prledger.yml, "
            "or run `prledger init` to set one up."
        )

    records = store.list_reviews(repo)
    if not records:
        console.print("[yellow]No review records found for this repository.[/yellow]")
        return

    latest_by_pr = {}
    for record in records:
        latest_by_pr[record.pr_number] = record

    severity_counter: Counter[str] = Counter()
    category_counter: Counter[str] = Counter()
    file_counter: Counter[str] = Counter()
    for record in latest_by_pr.values():
        for finding in record.findings:
            severity_counter[finding.severity] += 1
            category_counter[finding.category] += 1
            file_counter[finding.path] += 1
    open_findings = sum(severity_counter.values())

    # --- Summary ---
    console.print(f"\n[bold]Review stats for [cyan]{repo}[/cyan][/bold]")
    console.print(f"  Reviews:             {len(records)} across {len(latest_by_pr)} PR(s)")
    console.print(f"  Standing findings:   {open_findings}")
    console.print(f"  Resolved:            {sum(r.resolved for r in records)}")
    console.print(f"  Partially addressed: {sum(r.partial for r in records)}")
    console.print(f"  New high severity:   {sum(r.new_high for r in records)}")
    console.print(f"  Dropped (malformed): {sum(r.dropped_findings for r in records)}")

    # --- Severity breakdown ---
    if severity_counter:
        sev_table = Table(title="Severity Breakdown", show_header=True)
        sev_table.add_column("Severity", style="bold")
        sev_table.add_column("Count", justify="right")
        sev_table.add_column("% of total", justify="right")
        for sev in _SEVERITIES:
            count = severity_counter.get(sev, 0)
            pct = f"{count / open_findings * 100:.1f}%" if open_findings else "0%"
            style = _SEV_STYLE[sev]
            sev_table.add_row(f"[{style}]{sev}[/{style}]", str(count), pct)
        console.print(sev_table)

    # --- Category breakdown ---
    if category_counter:
        cat_table = Table(title="Category Breakdown", show_header=True)
        cat_table.add_column("Category")
        cat_table.add_column("Count", justify="right")
        for category, count in category_counter.most_common(top):
            cat_table.add_row(category, str(count))
        console.print(cat_table)

    # --- Most flagged files ---
    if file_counter:
        file_table = Table(title=f"Top {top} Most Flagged Files", show_header=True)
        file_table.add_column("File")
        file_table.add_column("Findings", justify="right")
        for file_path, count in file_counter.most_common(top):
            file_table.add_row(file_path, str(count))
        console.print(file_table)
