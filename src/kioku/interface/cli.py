"""Kioku CLI: review sessions, enrollment and catalog import."""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Annotated, Any

import typer

from kioku.application.config import AppConfig, resolve_config
from kioku.domain.errors import KiokuError

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="kioku: spaced-repetition kanji reviews in your terminal.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

config_app = typer.Typer(help="Manage kioku configuration.")
app.add_typer(config_app, name="config")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _resolve_with_overrides(**overrides: Any) -> AppConfig:
    try:
        config = resolve_config(overrides)
    except (KiokuError, ValueError) as e:
        typer.secho(f"Configuration error: {e}", fg="red")
        raise typer.Exit(2) from None

    if config.verbose > 1:
        logging.getLogger().setLevel(logging.DEBUG)
    return config


def format_interval(days: int) -> str:
    return "<1m" if days <= 0 else f"{days}d"


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose", "-v", count=True, help="Increase verbosity. Repeat for more detail."
        ),
    ] = 1,
):
    """Global settings for kioku."""
    ctx.ensure_object(dict)
    ctx.obj["verbose_bonus"] = verbose


# ---------------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------------


@app.command()
def review(
    ctx: typer.Context,
    user: Annotated[str | None, typer.Option(help="Learner id. Defaults to config.")] = None,
    limit: Annotated[int | None, typer.Option(help="Maximum cards this session.")] = None,
):
    """[bold green]Review[/bold green] the cards that are due now."""
    config = _resolve_with_overrides(
        user_id=user, session_limit=limit, verbose=ctx.obj.get("verbose_bonus", 1)
    )
    asyncio.run(_run_review(config))


async def _run_review(config: AppConfig) -> None:
    from kioku.application.factory import get_backend

    backend = get_backend(config)
    try:
        await _review_loop(config, backend)
    finally:
        await backend.aclose()


async def _review_loop(config: AppConfig, backend) -> None:
    from kioku.application.review_session import ReviewSession
    from kioku.application.scheduler import Scheduler
    from kioku.application.write_queue import BackgroundWriter
    from kioku.domain.errors import SessionLoadError
    from kioku.domain.models import Rating, WriteStatus, utcnow

    scheduler = Scheduler(config.scheduler_params())
    session = ReviewSession(
        config.user_id,
        cards=backend.cards,
        catalog=backend.catalog,
        progress=backend.progress,
        scheduler=scheduler,
        writer=BackgroundWriter(config.retry_policy()),
        limit=config.session_limit,
    )

    try:
        entry = await session.open()
    except SessionLoadError as e:
        typer.secho(f"Could not load reviews: {e}", fg="red")
        raise typer.Exit(1) from None

    if session.nothing_due:
        if session.enrolled_count == 0:
            typer.secho(
                "No cards enrolled yet. Run 'kioku enroll N5' to add a level.", fg="yellow"
            )
        else:
            typer.secho("All caught up! Nothing is due right now.", fg="green")
        return

    while entry is not None:
        item = entry.item
        typer.echo("")
        typer.secho(f"[{item.level or '-'}]  {session.remaining} due", dim=True)
        typer.secho(f"    {item.text}", bold=True)

        answer = await asyncio.to_thread(
            typer.prompt, "Enter to reveal, q to quit", default="", show_default=False
        )
        if answer.strip().lower() == "q":
            session.close()
            break

        typer.secho(f"    {item.meaning or '-'}", fg="bright_white")
        typer.echo(f"    On: {item.onyomi or '-'}   Kun: {item.kunyomi or '-'}")

        preview = scheduler.preview(entry.card, utcnow())
        typer.echo(
            "  ".join(
                f"[{r.value}] {r.name.title()} {format_interval(preview[r])}" for r in Rating
            )
        )

        rating = None
        while rating is None:
            raw = await asyncio.to_thread(typer.prompt, "Rating")
            try:
                rating = Rating.parse(raw)
            except ValueError:
                typer.secho("Enter 1-4 or again/hard/good/easy.", fg="yellow")

        session.grade(rating, item_id=entry.item_id)
        entry = session.current

    # Process exit would cancel in-flight writes, so wait for them here.
    await session.flush()

    failed = [
        e
        for e in session.graded
        if WriteStatus.FAILED in (e.persist_status, e.progress_status)
    ]
    typer.echo("")
    typer.secho(
        f"Reviewed {len(session.graded)}: {session.correct_count} correct, "
        f"{session.wrong_count} again.",
        fg="green",
    )
    if failed:
        typer.secho(f"WARNING: {len(failed)} review(s) could not be saved.", fg="yellow")


# ---------------------------------------------------------------------------
# Due / enroll / import
# ---------------------------------------------------------------------------


@app.command()
def due(
    ctx: typer.Context,
    user: Annotated[str | None, typer.Option(help="Learner id. Defaults to config.")] = None,
    limit: Annotated[int | None, typer.Option(help="Maximum cards to list.")] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """List the cards that are due now, in review order."""
    from kioku.application.factory import get_backend
    from kioku.application.queue_builder import build_due_queue
    from kioku.domain.models import ItemFilter, utcnow

    config = _resolve_with_overrides(
        user_id=user, session_limit=limit, verbose=ctx.obj.get("verbose_bonus", 1)
    )
    backend = get_backend(config)

    async def run():
        try:
            cards = await backend.cards.get_cards_for_user(config.user_id)
            queue = build_due_queue(cards, utcnow(), config.session_limit)
            items = []
            if queue:
                items = await backend.catalog.get_items_by_filter(
                    ItemFilter(item_ids=tuple(card.item_id for card in queue))
                )
            return queue, {item.item_id: item for item in items}
        finally:
            await backend.aclose()

    try:
        queue, items = asyncio.run(run())
    except KiokuError as e:
        typer.secho(f"Failed to load cards: {e}", fg="red")
        raise typer.Exit(1) from None

    if json_output:
        typer.echo(
            json.dumps(
                [
                    {
                        "item_id": card.item_id,
                        "meaning": items[card.item_id].meaning if card.item_id in items else None,
                        "due_at": card.due_at.isoformat(),
                        "interval_days": card.interval_days,
                        "ease": card.ease,
                        "lapses": card.lapses,
                    }
                    for card in queue
                ],
                indent=2,
                ensure_ascii=False,
            )
        )
        return

    if not queue:
        typer.secho("Nothing due.", fg="green")
        return

    typer.echo(f"Due: {len(queue)}")
    for card in queue:
        meaning = items[card.item_id].meaning if card.item_id in items else "(not in catalog)"
        typer.echo(
            f"  {card.item_id}  {meaning}  due {card.due_at:%Y-%m-%d %H:%M}  "
            f"ivl={card.interval_days}d ease={card.ease:.2f} lapses={card.lapses}"
        )


@app.command()
def enroll(
    ctx: typer.Context,
    level: Annotated[str, typer.Argument(help="Catalog level to enroll, e.g. N5.")],
    user: Annotated[str | None, typer.Option(help="Learner id. Defaults to config.")] = None,
):
    """Enroll every item of a level. Existing cards keep their progress."""
    from kioku.application.enrollment import enroll_level
    from kioku.application.factory import get_backend
    from kioku.domain.models import utcnow

    config = _resolve_with_overrides(user_id=user, verbose=ctx.obj.get("verbose_bonus", 1))
    backend = get_backend(config)

    async def run():
        try:
            return await enroll_level(
                backend.catalog,
                backend.enroller,
                config.user_id,
                level,
                utcnow(),
                config.scheduler_params(),
            )
        finally:
            await backend.aclose()

    try:
        created = asyncio.run(run())
    except KiokuError as e:
        typer.secho(f"Enrollment failed: {e}", fg="red")
        raise typer.Exit(1) from None

    if created:
        typer.secho(f"Added {created} {level} card(s) to the review queue.", fg="green")
    else:
        typer.secho(f"No new {level} cards to add.", fg="yellow")


@app.command("import-catalog")
def import_catalog(
    path: Annotated[Path, typer.Argument(help="YAML catalog file to import.")],
):
    """Load a YAML catalog into the local SQLite database."""
    from kioku.infrastructure.adapters.sqlite_store import SqliteBackend
    from kioku.infrastructure.adapters.yaml_catalog import YamlCatalog

    config = _resolve_with_overrides()
    if config.backend != "sqlite":
        typer.secho("import-catalog only applies to the sqlite backend.", fg="red")
        raise typer.Exit(2)

    try:
        items = YamlCatalog(path).load()
        count = asyncio.run(SqliteBackend(config.db_path).import_items(items))
    except KiokuError as e:
        typer.secho(f"Import failed: {e}", fg="red")
        raise typer.Exit(1) from None

    typer.secho(f"Imported {count} item(s) into {config.db_path}.", fg="green")


# ---------------------------------------------------------------------------
# Serve
# ---------------------------------------------------------------------------


@app.command()
def serve(
    port: Annotated[int, typer.Option(help="Port to bind the server to.")] = 8778,
    host: Annotated[str, typer.Option(help="Host to bind the server to.")] = "127.0.0.1",
    reload: Annotated[bool, typer.Option(help="Enable auto-reload.")] = False,
):
    """Run the HTTP review server."""
    import uvicorn

    uvicorn.run("kioku.server:app", host=host, port=port, reload=reload)


# ---------------------------------------------------------------------------
# Config subgroup
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show():
    """Display final resolved configuration."""
    config = _resolve_with_overrides()
    d = {k: str(v) if isinstance(v, Path) else v for k, v in config.model_dump().items()}
    if d.get("rest_api_key"):
        d["rest_api_key"] = "***"
    typer.echo(json.dumps(d, indent=2))
