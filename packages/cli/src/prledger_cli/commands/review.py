"""review command — review a pull request and reconcile it against the previous run."""

from __future__ import annotations

import json
import logging

import click
from github import GithubException
from rich.console import Console

from prledger_core.errors import CollaboratorTimeoutError, DiffSourceError, InvalidFindingError, MalformedDiffError
from prledger_core.findings import Finding, Location, ReviewRun, parse_category, parse_severity
from prledger_core.gh.pull_request import get_last_reviewed_sha, get_pull, get_pull_requests, get_repo, post_report
from prledger_core.pipeline import ReviewOutcome, get_reviewer, run_review
from prledger_core.reconcile import ReconciliationResult
from prledger_core.report import determine_event, print_report, report_to_dict
from prledger_core.sources import GitHubPullRequestSource, LocalGitSource, StaticDiffSource
from prledger_store.lock import ReviewInProgressError, pr_lock
from prledger_store.models import FindingRecord, ReviewRecord

console = Console(stderr=True)
logger = logging.getLogger(__name__)

_LOCAL_REPO = "local"


def run_to_record(run: ReviewRun, result: ReconciliationResult, event: str, files_reviewed: int = 0) -> ReviewRecord:
    """Map a ReviewRun returned by run_review() to a ReviewRecord for the store.

    The CLI layer owns this mapping: prledger_core has no store knowledge and
    prledger_store has no core knowledge. The CLI bridges the two.
    """
    tally = result.tally
    return ReviewRecord(
        repo=run.repo,
        pr_number=run.pr_number,
        pr_title=run.pr_title,
        reviewer_model=run.reviewer_model,
        head_sha=run.head_sha,
        base_sha=run.base_sha,
        reviewed_at=run.reviewed_at,
        event=event,
        files_reviewed=files_reviewed,
        dropped_findings=run.dropped_findings,
        resolved=tally.resolved,
        partial=tally.partial,
        not_resolved=tally.not_resolved,
        open=tally.open,
        new=tally.new,
        new_high=tally.new_high,
        findings=[
            FindingRecord(
                fingerprint=f.fingerprint,
                category=f.category.value,
                severity=f.severity.value,
                title=f.title,
                explanation=f.explanation,
                path=f.location.path,
                start_line=f.location.start_line,
                end_line=f.location.end_line,
                symbol=f.location.symbol,
                suggestion=f.suggestion,
                fix_patch=f.fix_patch,
                context=list(f.context),
            )
            for f in run.findings
        ],
    )


def record_to_run(record: ReviewRecord) -> ReviewRun:
    """Rebuild the ReviewRun a stored record describes, so it can be reconciled against."""
    findings: list[Finding] = []
    for fr in record.findings:
        try:
            category = parse_category(fr.category)
            severity = parse_severity(fr.severity)
        except InvalidFindingError as e:
            logger.warning(
                "Ignoring unreadable stored finding %s in %s#%s: %s", fr.fingerprint, record.repo, record.pr_number, e
            )
            continue
        findings.append(
            Finding(
                category=category,
                severity=severity,
                title=fr.title,
                explanation=fr.explanation,
                location=Location(fr.path, fr.start_line, fr.end_line, fr.symbol),
                suggestion=fr.suggestion,
                fix_patch=fr.fix_patch,
                context=tuple(fr.context),
            )
        )
    return ReviewRun(
        repo=record.repo,
        pr_number=record.pr_number,
        head_sha=record.head_sha,
        base_sha=record.base_sha,
        findings=tuple(findings),
        reviewed_at=record.reviewed_at,
        reviewer_model=record.reviewer_model,
        pr_title=record.pr_title,
        dropped_findings=record.dropped_findings,
    )


def render_output(outcome: ReviewOutcome, fmt: str) -> str:
    if fmt == "json":
        data = report_to_dict(outcome.result, dropped=outcome.dropped)
        data.update(
            repo=outcome.run.repo,
            pr_number=outcome.run.pr_number,
            base_sha=outcome.run.base_sha,
            head_sha=outcome.run.head_sha,
            reviewed_at=outcome.run.reviewed_at,
        )
        return json.dumps(data, indent=2) + "\n"
    return outcome.report


def _write_output(text: str, output: str) -> None:
    if output == "-":
        click.echo(text, nl=False)
        return
    with open(output, "w") as f:
        f.write(text)
    console.print(f"[green]Report written to {output}[/green]")


def _pick_pull_request(this_repo) -> int | None:
    prs = list(get_pull_requests(this_repo))
    if not prs:
        console.print("[yellow]No open pull requests found.[/yellow]")
        return None
    console.print("\nOpen pull requests:")
    for pr in prs:
        console.print(f"  [bold]#{pr.number}[/bold]  {pr.title}")
    return click.prompt("\nEnter the pull request number", type=int, err=True)


@click.command("review")
@click.option("--repo", default=None, help="GitHub repository in owner/name format.")
@click.option(
    "--pr",
    "pr_number",
    type=int,
    default=None,
    help="Pull request number. Omit to list open PRs interactively.",
)
@click.option(
    "--diff-file",
    type=click.Path(dir_okay=False, allow_dash=True),
    default=None,
    help="Review a unified diff from a file ('-' for stdin) instead of GitHub.",
)
@click.option("--base", default=None, help="Review a local git checkout: diff base...head.")
@click.option("--head", default="HEAD", show_default=True, help="Head revision for --base.")
@click.option(
    "--model",
    type=click.Choice(["anthropic", "openai"]),
    default=None,
    help="AI model provider. Overrides config file.",
)
@click.option(
    "--guidelines",
    "guidelines_path",
    default=None,
    help="Path to a Markdown ruleset file. Overrides config file.",
)
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["markdown", "json"]),
    default="markdown",
    show_default=True,
    help="Report format.",
)
@click.option("--output", "-o", default="-", show_default=True, help="Where to write the report ('-' for stdout).")
@click.option("--post", is_flag=True, help="Post the report to the pull request as a review.")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompts.")
@click.option(
    "--full-review",
    "full_review",
    is_flag=True,
    help="Review again even if the head commit was already reviewed.",
)
@click.pass_context
def review_cmd(
    ctx,
    repo: str | None,
    pr_number: int | None,
    diff_file: str | None,
    base: str | None,
    head: str,
    model: str | None,
    guidelines_path: str | None,
    fmt: str,
    output: str,
    post: bool,
    yes: bool,
    full_review: bool,
):
    """Review a pull request and reconcile the findings with the previous review.

    The first review of a PR reports every finding as new. Later reviews
    report each finding as NEW, PARTIAL or OPEN and list the findings that
    were resolved since the last run.

    \b
    Sources (pick one):
      --repo/--pr          a GitHub pull request
      --diff-file PATH     a unified diff on disk or stdin
      --base REV [--head]  two revisions of the local git checkout

    \b
    Environment variables:
      GITHUB_TOKEN         GitHub token for --repo/--pr (or use gh CLI)
      ANTHROPIC_API_KEY    Required when using --model anthropic
      OPENAI_API_KEY       Required when using --model openai
    """
    from prledger_cli.auth import require_github_token
    from prledger_store.noop import NoOpStore

    obj = ctx.obj or {}
    config = dict(obj.get("config") or {})
    if not config:
        from prledger_core.config import load_config

        config = load_config()
    if model:
        config["model"] = model
    if guidelines_path:
        config["guidelines"] = guidelines_path
    store = obj.get("store") or NoOpStore()

    if diff_file and base:
        raise click.UsageError("--diff-file and --base are mutually exclusive.")
    local = bool(diff_file or base)
    if not local and not repo:
        raise click.UsageError("Give --repo (with --pr) for a GitHub review, or --diff-file / --base for a local one.")
    if post and local:
        raise click.UsageError("--post needs a GitHub pull request (--repo/--pr).")

    if config["model"] == "anthropic" and not config.get("anthropic_api_key"):
        raise click.UsageError("ANTHROPIC_API_KEY environment variable is not set.")
    if config["model"] == "openai" and not config.get("openai_api_key"):
        raise click.UsageError("OPENAI_API_KEY environment variable is not set.")

    pr_obj = None
    try:
        if diff_file:
            with click.open_file(diff_file) as f:
                source = StaticDiffSource(f.read())
        elif base:
            source = LocalGitSource(base, head)
        else:
            this_repo = get_repo(repo, token=require_github_token(config))
            if pr_number is None:
                pr_number = _pick_pull_request(this_repo)
                if pr_number is None:
                    return
            try:
                pr_obj = get_pull(this_repo, pr_number)
            except GithubException:
                raise click.UsageError(f"PR #{pr_number} not found in {repo}.")
            if pr_obj.draft and not config.get("review_draft_prs", False):
                console.print(
                    "[yellow]Skipping draft PR. Set review_draft_prs: true in .prledger.yml to review drafts.[/yellow]"
                )
                return
            source = GitHubPullRequestSource(this_repo, pr_obj)
    except DiffSourceError as e:
        raise click.ClickException(str(e))

    repo = repo or _LOCAL_REPO
    pr_number = pr_number if pr_number is not None else 0
    pr_title = (pr_obj.title or "") if pr_obj is not None else ""

    reviewer = get_reviewer(config)

    try:
        with pr_lock(config.get("lock_dir", ".prledger-locks"), repo, pr_number, config.get("lock_timeout", 30)):
            latest = store.latest(repo, pr_number)
            previous = record_to_run(latest) if latest is not None else None

            if previous is None and post and not full_review and pr_obj is not None:
                # Without stored history, the marker on the last posted report still says what was reviewed.
                if get_last_reviewed_sha(pr_obj) == source.head_sha:
                    console.print(
                        "[yellow]This head commit was already reviewed. Use --full-review to review again.[/yellow]"
                    )
                    return

            outcome = run_review(
                source,
                reviewer,
                config,
                repo=repo,
                pr_number=pr_number,
                previous=previous,
                pr_title=pr_title,
                force=full_review,
            )
            if outcome is None:
                return

            event = determine_event(outcome.result)
            store.save(run_to_record(outcome.run, outcome.result, event, len(outcome.reviewed_files)))
    except (MalformedDiffError, CollaboratorTimeoutError, DiffSourceError) as e:
        logger.error("Review of %s#%s aborted: %s", repo, pr_number, e)
        raise click.ClickException(f"Review aborted, nothing was saved: {e}")
    except ReviewInProgressError as e:
        raise click.ClickException(str(e))

    _write_output(render_output(outcome, fmt), output)
    if output != "-":
        print_report(outcome.result, dropped=outcome.dropped)

    if post and pr_obj is not None:
        if not yes and not click.confirm(f"Post the report to PR #{pr_number} as {event}?", err=True):
            return
        post_report(pr_obj, outcome.report, event, source.head_sha)
        console.print(f"\n[green]Review posted: {event}[/green]")
