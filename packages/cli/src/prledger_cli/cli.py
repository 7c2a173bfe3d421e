"""CLI entry point for prledger.

Commands:
  review   run a review (first or follow-up) and reconcile it against history
  show     re-render a stored review run
  history  list stored review runs with their tallies
  stats    aggregate finding patterns across review history
  init     interactive setup wizard
"""

from __future__ import annotations

import importlib.metadata

import click
from rich.console import Console

from prledger_cli.commands.history import history_cmd
from prledger_cli.commands.init import init_cmd
from prledger_cli.commands.review import review_cmd
from prledger_cli.commands.show import show_cmd
from prledger_cli.commands.stats import stats_cmd
from prledger_cli.logging_config import configure_logging

console = Console()


def _build_store(config: dict):
    """Instantiate the configured store from .prledger.yml settings.

    Store selection:
      store: gist   → GistStore  (requires gist_id and github_token)
      store: sqlite → SQLiteStore (store_path, default .prledger.db)
      (default)     → NoOpStore  (no persistence; every review is a first run)

    This factory lives in cli.py so neither prledger_core nor prledger_store
    know about the CLI config format.
    """
    from prledger_store.noop import NoOpStore

    store_type = config.get("store", "noop")

    if store_type == "gist":
        from prledger_store.gist import GistStore

        gist_id = config.get("gist_id")
        token = config.get("github_token")
        if not gist_id or not token:
            console.print("[yellow]GistStore requires gist_id and a GitHub token. Falling back to no store.[/yellow]")
            return NoOpStore()
        return GistStore(gist_id=gist_id, token=token)

    if store_type == "sqlite":
        from prledger_store.sqlite import SQLiteStore

        db_path = config.get("store_path", ".prledger.db")
        return SQLiteStore(db_path=db_path)

    return NoOpStore()


@click.group()
@click.version_option(
    version=importlib.metadata.version("prledger"),
    prog_name="prledger",
)
@click.option(
    "--config",
    "config_path",
    default=".prledger.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PRLEDGER_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging on stderr.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Reconciling AI code reviewer for pull requests.

    Every review is matched against the previous one, so follow-up reviews
    report what was resolved, what is still open and what is new.
    """
    from prledger_cli.auth import resolve_github_token
    from prledger_core.config import load_config

    configure_logging(verbose)
    ctx.ensure_object(dict)

    try:
        config = load_config(config_path)
    except ValueError as e:
        raise click.UsageError(str(e))

    # Resolve token early so all subcommands share the same resolution.
    token = resolve_github_token()
    if token:
        config["github_token"] = token

    store = _build_store(config)
    ctx.obj["store"] = store
    ctx.obj["config"] = config
    ctx.obj["config_path"] = config_path
    ctx.call_on_close(store.close)


main.add_command(review_cmd)
main.add_command(show_cmd)
main.add_command(history_cmd)
main.add_command(stats_cmd)
main.add_command(init_cmd)
