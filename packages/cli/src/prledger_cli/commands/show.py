"""show command — re-render a stored review run."""

from __future__ import annotations

import click
from rich.console import Console

from prledger_cli.commands.review import record_to_run
from prledger_core.reconcile import Reconciler
from prledger_core.report import render_markdown

console = Console()


@click.command("show")
@click.option("--repo", required=True, help="GitHub repository (owner/name), or 'local'.")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
@click.option("--sha", default=None, help="Head SHA (or prefix) of the run to show. Defaults to the latest run.")
@click.pass_context
def show_cmd(ctx, repo: str, pr_number: int, sha: str | None):
    """Print the Markdown report of a stored run, reconciled against the run before it.

    Line translation between the two heads needs the repository, so moved
    findings are matched on their recorded context alone.
    """
    from prledger_store.noop import NoOpStore

    store = ctx.obj.get("store") if ctx.obj else None
    if store is None or isinstance(store, NoOpStore):
        raise click.UsageError(
            "No store configured. Add 'store: sqlite' or 'store: gist' to .prledger.yml, "
            "or run `prledger init` to set one up."
        )
    config = ctx.obj.get("config") or {}

    records = store.list_reviews(repo, pr_number=pr_number)
    if not records:
        console.print("[yellow]No review records found.[/yellow]")
        return

    if sha is None:
        index = len(records) - 1
    else:
        matches = [i for i, r in enumerate(records) if r.head_sha.startswith(sha)]
        if not matches:
            raise click.UsageError(f"No stored run of {repo}#{pr_number} has head {sha}.")
        index = matches[-1]

    current = record_to_run(records[index])
    previous = record_to_run(records[index - 1]) if index > 0 else None

    result = Reconciler(match_threshold=config.get("match_threshold", 0.8)).reconcile(
        previous.findings if previous is not None else None, current.findings
    )
    title = f"{'Follow-up review' if previous is not None else 'Review'}: {repo}#{pr_number}"
    revision = (current.base_sha, current.head_sha) if current.base_sha and current.head_sha else None
    click.echo(render_markdown(result, dropped=current.dropped_findings, title=title, revision=revision), nl=False)
