from __future__ import annotations

import os
from typing import Optional

from rich import print
from rich.markup import escape
import typer

from .commands import (
    cmd_delete,
    cmd_generate,
    cmd_mine,
    cmd_ping,
    cmd_popular,
    cmd_reprocess,
    cmd_search,
    cmd_show,
    cmd_versions,
    cmd_visibility,
)
from .config import setup_logging
from .errors import GenerationError, OwnershipError, PersistenceConflictError, TimelineError
from .models import Visibility

app = typer.Typer(add_completion=False, help="Topic timelines: history, present value and forecasts.")


@app.callback()
def _setup(
    log_level: str = typer.Option(os.getenv("LOG_LEVEL", "INFO"), "--log-level", help="DEBUG, INFO, WARNING, ..."),
) -> None:
    setup_logging(log_level.upper())


def _run(fn, *args) -> None:
    try:
        fn(*args)
    except ValueError as e:
        print(f"[red]invalid input:[/red] {escape(str(e))}")
        raise typer.Exit(code=2)
    except LookupError as e:
        print(f"[red]not found:[/red] {escape(str(e))}")
        raise typer.Exit(code=1)
    except OwnershipError as e:
        print(f"[red]access denied:[/red] {escape(str(e))}")
        raise typer.Exit(code=1)
    except GenerationError as e:
        print(f"[red]generation failed[/red]{': ' + escape(e.detail) if e.detail else ''}")
        raise typer.Exit(code=1)
    except PersistenceConflictError as e:
        print(f"[red]conflict, try again:[/red] {escape(str(e))}")
        raise typer.Exit(code=1)
    except TimelineError as e:
        print(f"[red]error:[/red] {escape(str(e))}")
        raise typer.Exit(code=1)


@app.command()
def ping() -> None:
    """
    Sanity check: config files, env wiring, and the database.
    """
    cmd_ping()


@app.command()
def generate(
    topic: str = typer.Argument(..., help='e.g. "Bitcoin"'),
    user: Optional[str] = typer.Option(None, "--user", help="Owner id (omit for anonymous)"),
    visibility: Visibility = typer.Option(Visibility.PRIVATE, "--visibility"),
) -> None:
    """Research a topic and store the timeline as version 1."""
    _run(cmd_generate, topic, user, visibility)


@app.command()
def show(
    slug: str,
    version: Optional[int] = typer.Option(None, "--version", "-v"),
    user: Optional[str] = typer.Option(None, "--user"),
    as_json: bool = typer.Option(False, "--json"),
) -> None:
    """Print a timeline (latest version unless --version). Counts as a view."""
    _run(cmd_show, slug, version, user, as_json)


@app.command()
def versions(slug: str) -> None:
    _run(cmd_versions, slug)


@app.command()
def reprocess(
    slug: str,
    user: str = typer.Option(..., "--user"),
    save: bool = typer.Option(False, "--save", help="Store the result as a new version"),
) -> None:
    """Re-observe the present value and revise the forecasts. Owner only."""
    _run(cmd_reprocess, slug, user, save)


@app.command()
def search(
    query: str,
    limit: int = typer.Option(20, "--limit"),
    offset: int = typer.Option(0, "--offset"),
) -> None:
    _run(cmd_search, query, limit, offset)


@app.command()
def popular(limit: int = typer.Option(20, "--limit")) -> None:
    _run(cmd_popular, limit)


@app.command()
def mine(user: str = typer.Option(..., "--user")) -> None:
    _run(cmd_mine, user)


@app.command()
def visibility(
    slug: str,
    value: Visibility,
    user: str = typer.Option(..., "--user"),
) -> None:
    """Set visibility on every version of a timeline. Owner only."""
    _run(cmd_visibility, slug, user, value)


@app.command()
def delete(slug: str, user: str = typer.Option(..., "--user")) -> None:
    """Delete every version. Owner only, and only while private."""
    _run(cmd_delete, slug, user)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
