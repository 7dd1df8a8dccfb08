"""Command line interface for inspecting and editing journeys."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer
import yaml

from journeygraph import (
    JourneyDB,
    JourneyParams,
    JourneyRepository,
    NotFoundError,
    SearchParams,
    StepMapValidationError,
    get_journey_db,
)
from journeygraph.config import configure_logging, load_config

T = TypeVar("T")

app = typer.Typer(help="CLI for journeygraph journeys")

journey_app = typer.Typer(help="Commands for managing journeys")

app.add_typer(journey_app, name="journey")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, help="Logging level override"),
) -> None:
    """journeygraph CLI entry point."""
    configure_logging(log_level or load_config().log_level)


def _run(action: Callable[[JourneyRepository], Awaitable[T]]) -> T:
    """Run ``action`` against the configured database on a fresh event loop."""

    async def runner() -> T:
        db: JourneyDB = get_journey_db()
        try:
            await db.init_db()
            repo = JourneyRepository(db, paging=load_config().paging)
            return await action(repo)
        finally:
            await db.dispose()

    return asyncio.run(runner())


@app.command("init-db")
def init_db() -> None:
    """Create the journey tables if they do not exist yet."""

    async def action(repo: JourneyRepository) -> None:
        return None

    _run(action)
    typer.echo("Database initialized")


@journey_app.command("list")
def journey_list(
    project_id: int,
    search: Optional[str] = typer.Option(None, help="Filter by journey name"),
    limit: Optional[int] = typer.Option(None, help="Page size"),
    offset: int = typer.Option(0, help="Number of journeys to skip"),
) -> None:
    """
    List the journeys of a project.

    Example:
        journeygraph journey list 1 --search welcome
        # Output: 3    Welcome series
        #         1    Onboarding
    """
    params = SearchParams(q=search, limit=limit, offset=offset)
    page = _run(lambda repo: repo.paged_journeys(project_id, params))
    if not page.results:
        typer.echo("No journeys found")
        return
    for journey in page.results:
        typer.echo(f"{journey.id}\t{journey.name}")
    typer.echo(f"{len(page.results)} of {page.total} journeys")


@journey_app.command("create")
def journey_create(project_id: int, name: str) -> None:
    """Create a journey with its entrance step."""
    journey = _run(
        lambda repo: repo.create_journey(project_id, JourneyParams(name=name))
    )
    typer.echo(f"Created journey {journey.id}: {journey.name}")


@journey_app.command("show")
def journey_show(journey_id: int, project_id: int) -> None:
    """
    Show a journey and its step graph.

    Example:
        journeygraph journey show 3 1
        # Output: Journey 3: Welcome series
        #         - 5f0c... [entrance] -> send-welcome
        #         - send-welcome [action]
    """

    async def action(repo: JourneyRepository) -> tuple[Any, Any]:
        journey = await repo.get_journey(journey_id, project_id)
        return journey, await repo.get_journey_step_map(journey_id)

    try:
        journey, step_map = _run(action)
    except NotFoundError:
        typer.echo("Journey not found")
        raise typer.Exit(code=1)

    status = " (deleted)" if journey.deleted_at else ""
    typer.echo(f"Journey {journey.id}: {journey.name}{status}")
    for external_id, entry in step_map.items():
        children = ", ".join(child.external_id for child in entry.children)
        typer.echo(
            f"- {external_id} [{entry.type}]" + (f" -> {children}" if children else "")
        )


@journey_app.command("apply")
def journey_apply(journey_id: int, step_map_path: Path) -> None:
    """
    Replace a journey's step graph with the step map in a YAML or JSON file.

    Only the differences are written, all in one transaction.

    Example:
        journeygraph journey apply 3 ./welcome.yaml
        # Output: Applied step map to journey 3: steps +1 ~0 -0, children +1 ~0 -0
    """
    if not step_map_path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    raw = yaml.safe_load(step_map_path.read_text()) or {}

    try:
        result = _run(lambda repo: repo.reconcile_journey_step_map(journey_id, raw))
    except StepMapValidationError as exc:
        typer.secho(f"Invalid step map: {exc.message}", fg=typer.colors.RED)
        for error in exc.errors:
            location = ".".join(str(part) for part in error.get("loc", ()))
            typer.echo(f"  {location}: {error.get('msg')}")
        raise typer.Exit(code=1)
    except NotFoundError:
        typer.echo("Journey not found")
        raise typer.Exit(code=1)

    typer.echo(f"Applied step map to journey {journey_id}: {result.summary()}")


@journey_app.command("stats")
def journey_stats(journey_id: int) -> None:
    """Print how many users currently sit at each step."""
    stats = _run(lambda repo: repo.get_journey_step_stats(journey_id))
    if not stats:
        typer.echo("No steps found")
        return
    for external_id, step_stats in stats.items():
        typer.echo(f"{external_id}\t{step_stats.users}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
