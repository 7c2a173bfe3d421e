"""init command — interactive setup wizard.

Writes .prledger.yml once so every later run picks the same provider, store
and test markers. For the Gist store it also creates the shared Gist, so
nobody has to touch the GitHub API by hand.
"""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
from pathlib import Path

import click
import yaml
from rich.console import Console

console = Console()
logger = logging.getLogger(__name__)

_HISTORY_FILENAME = "prledger_history.json"


@click.command("init")
@click.option("--repo", default=None, help="GitHub repository (owner/name). Auto-detected from git remote.")
@click.pass_context
def init_cmd(ctx, repo: str | None):
    """Set up prledger for your repository.

    Creates .prledger.yml and, for team history, a private GitHub Gist.
    """
    config_path = Path((ctx.obj or {}).get("config_path") or ".prledger.yml")
    console.print("\n[bold cyan]prledger init[/bold cyan] — setup wizard\n")

    # --- Detect repo from git remote ---
    if repo is None:
        repo = _detect_repo_from_git()
        if repo:
            console.print(f"[dim]Detected repository: {repo}[/dim]")
        else:
            repo = click.prompt("GitHub repository (owner/name)")

    # --- Choose provider ---
    provider = click.prompt(
        "AI provider",
        type=click.Choice(["anthropic", "openai"]),
        default="anthropic",
    )

    # --- Choose store backend ---
    console.print("\nReview history store (needed for follow-up reconciliation):")
    console.print("  [bold]none[/bold]    — no persistence; every review is a first review")
    console.print("  [bold]sqlite[/bold]  — local SQLite file (good for solo use)")
    console.print("  [bold]gist[/bold]    — shared GitHub Gist, zero infrastructure (recommended for teams)")
    store_type = click.prompt(
        "Store backend",
        type=click.Choice(["none", "sqlite", "gist"]),
        default="sqlite",
    )

    config: dict = {"model": provider}

    if store_type == "sqlite":
        db_path = click.prompt("SQLite database path", default=".prledger.db")
        config["store"] = "sqlite"
        if db_path != ".prledger.db":
            config["store_path"] = db_path
        console.print(f"[green]SQLite store configured at {db_path}[/green]")

    elif store_type == "gist":
        console.print(
            "\n[yellow]Note:[/yellow] Gist store requires a token with [bold]gist[/bold] scope. "
            "The built-in GITHUB_TOKEN in Actions does not cover Gists; "
            "use a PAT stored as a repository secret."
        )
        gist_id = _create_history_gist(repo)
        if gist_id:
            console.print(f"[green]Created history Gist: {gist_id}[/green]")
            config["store"] = "gist"
            config["gist_id"] = gist_id
        else:
            console.print(f"[yellow]Gist creation failed; add gist_id manually to {config_path}[/yellow]")

    # --- Test markers ---
    console.print(
        "\nFindings in test files are always reported as low severity. Common test layouts "
        "(tests/, test_*.py, *Tests.cs, *.spec.ts, ...) are recognised already."
    )
    extra = click.prompt(
        "Extra test paths or patterns, comma separated (blank for none)",
        default="",
        show_default=False,
    )
    test_paths = [p.strip() for p in extra.split(",") if p.strip()]
    if test_paths:
        config["test_paths"] = test_paths

    _write_config(config, config_path)
    console.print(f"[green]Wrote {config_path}[/green]")

    console.print("\n[bold green]Setup complete![/bold green]")
    console.print(f"Run a review with: [bold]prledger review --repo {repo} --pr <number>[/bold]")


def _detect_repo_from_git() -> str | None:
    """Try to detect the GitHub repo slug from the git remote URL."""
    try:
        result = subprocess.run(
            ["git", "remote", "get-url", "origin"],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    url = result.stdout.strip()
    # https://github.com/owner/repo.git  →  owner/repo
    # git@github.com:owner/repo.git      →  owner/repo
    if "github.com" not in url:
        return None
    slug = url.split("github.com")[-1].lstrip("/:").removesuffix(".git")
    return slug if "/" in slug else None


def _create_history_gist(repo: str) -> str | None:
    """Create a private Gist holding an empty history file and return its ID."""
    # gh names gist files after their path, so the file must carry the final name.
    with tempfile.TemporaryDirectory() as tmp_dir:
        named_path = os.path.join(tmp_dir, _HISTORY_FILENAME)
        with open(named_path, "w") as f:
            f.write("[]")
        try:
            result = subprocess.run(
                ["gh", "gist", "create", "--public=false", "--desc", f"prledger review history for {repo}", named_path],
                capture_output=True,
                text=True,
                timeout=15,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            logger.warning("gh gist create unavailable: %s", e)
            return None

    if result.returncode == 0:
        gist_url = result.stdout.strip()
        return gist_url.rstrip("/").split("/")[-1]
    logger.warning("gh gist create failed: %s", result.stderr.strip())
    return None


def _write_config(config: dict, path: Path) -> None:
    """Write or update the config file, preserving any existing keys."""
    existing: dict = {}
    if path.exists():
        existing = yaml.safe_load(path.read_text()) or {}
    existing.update(config)
    path.write_text(yaml.dump(existing, default_flow_style=False, sort_keys=False))
