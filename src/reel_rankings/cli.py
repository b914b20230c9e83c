from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Dict, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from .config import Settings, load_settings
from .db.session import create_schema, get_session, init_engine
from .errors import TransientPersistenceError
from .ranking.domain import ContentType, RankedItem
from .ranking.repository import HttpRankingRepository, LocalRankingRepository
from .ranking.store import RankingStore
from .services import rankings as ranking_service
from .services import telemetry as telemetry_service

console = Console()

app = typer.Typer(
    help="Personal movie and TV rankings.",
    no_args_is_help=True,
    rich_markup_mode="markdown",
)
db_app = typer.Typer(help="Database maintenance.", no_args_is_help=True)
user_app = typer.Typer(help="Manage users and API keys.", no_args_is_help=True)
rank_app = typer.Typer(help="View and edit a ranked list.", no_args_is_help=True)

app.add_typer(db_app, name="db")
app.add_typer(user_app, name="user")
app.add_typer(rank_app, name="rank")


def get_state(ctx: typer.Context) -> Dict[str, object]:
    return ctx.ensure_object(dict)  # type: ignore[return-value]


def _settings(ctx: typer.Context) -> Settings:
    return get_state(ctx)["settings"]  # type: ignore[return-value]


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to TOML config file."),
    remote: bool = typer.Option(
        False, "--remote/--local", help="Go through the HTTP API instead of the database."
    ),
) -> None:
    """Application entry point: load configuration."""
    settings = load_settings(config_path=config)
    telemetry_service.configure_logging(settings.logging.level, console=console)
    state = get_state(ctx)
    state["settings"] = settings
    state["remote"] = remote
    if not remote:
        init_engine(settings)


def _repository(ctx: typer.Context):
    settings = _settings(ctx)
    if get_state(ctx).get("remote"):
        return HttpRankingRepository(settings)
    return LocalRankingRepository(settings)


def _resolve_user_id(ctx: typer.Context, username: str) -> int:
    settings = _settings(ctx)
    if get_state(ctx).get("remote"):
        return _resolve_remote_user_id(settings, username)
    with get_session(settings) as session:
        return ranking_service.get_or_create_user(session, username).id


def _resolve_remote_user_id(settings: Settings, username: str) -> int:
    async def run() -> Dict[str, object]:
        repository = HttpRankingRepository(settings)
        try:
            return await repository.whoami()
        finally:
            await repository.aclose()

    try:
        me = asyncio.run(run())
    except TransientPersistenceError as exc:
        console.print(f"[red]API unavailable:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    if me.get("username") != username:
        console.print(f"[red]API key belongs to {me.get('username')!r}, not {username!r}.[/red]")
        raise typer.Exit(code=1)
    return int(me["id"])  # type: ignore[arg-type]


def _parse_content_type(value: str) -> ContentType:
    try:
        return ContentType.parse(value)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _render(items: List[RankedItem], content_type: ContentType, *, highlight: Optional[str] = None) -> None:
    table = Table(title=f"{content_type.value.upper()} rankings")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Title")
    table.add_column("Stars", justify="right")
    table.add_column("ID", style="dim")
    for item in items:
        style = "bold green" if item.item_id == highlight else None
        stars = item.metadata.get("star_rating")
        table.add_row(
            str(item.position),
            f"{item.display_score:.1f}",
            str(item.metadata.get("title") or item.item_id),
            str(stars) if stars else "",
            item.item_id,
            style=style,
        )
    console.print(table)


async def _open_store(ctx: typer.Context, user_id: int, content_type: ContentType):
    repository = _repository(ctx)
    store = RankingStore(repository, user_id, settings=_settings(ctx))
    task = store.select(content_type)
    if task is not None:
        await task
    if not store.is_loaded(content_type):
        console.print("[red]Could not load rankings.[/red]")
        await _close(repository)
        raise typer.Exit(code=1)
    return store, repository


async def _close(repository) -> None:
    if isinstance(repository, HttpRankingRepository):
        await repository.aclose()


@db_app.command("init")
def db_init(ctx: typer.Context) -> None:
    """Create database tables."""
    settings = _settings(ctx)
    create_schema(settings)
    console.print(f"[green]Initialized[/green] schema at {settings.database.url.split('@')[-1]}")


@user_app.command("create")
def user_create(
    ctx: typer.Context,
    username: str = typer.Argument(..., help="Username."),
    display_name: Optional[str] = typer.Option(None, "--display-name", help="Name shown to friends."),
) -> None:
    """Create a user (or rotate their key) and print a fresh API key."""
    settings = _settings(ctx)
    with get_session(settings) as session:
        user, api_key = ranking_service.create_api_user(session, username, display_name)
        user_id = user.id
    console.print(f"[green]User[/green] {username} (id={user_id})")
    console.print(f"API key (shown once): [bold]{api_key}[/bold]")


@rank_app.command("list")
def rank_list(
    ctx: typer.Context,
    username: str = typer.Option(..., "--user", "-u", help="Owner of the list."),
    content_type: str = typer.Option("movie", "--type", "-t", help="movie or tv."),
) -> None:
    """Show a ranked list."""
    kind = _parse_content_type(content_type)
    user_id = _resolve_user_id(ctx, username)

    async def run() -> None:
        store, repository = await _open_store(ctx, user_id, kind)
        try:
            items = store.get_list(kind)
        finally:
            await _close(repository)
        if not items:
            console.print("[yellow]No ranked titles yet.[/yellow]")
            return
        _render(items, kind)

    asyncio.run(run())


@rank_app.command("add")
def rank_add(
    ctx: typer.Context,
    external_id: str = typer.Argument(..., help="Content identifier (e.g. TMDB id)."),
    title: str = typer.Option(..., "--title", help="Display title."),
    username: str = typer.Option(..., "--user", "-u", help="Owner of the list."),
    content_type: str = typer.Option("movie", "--type", "-t", help="movie or tv."),
    year: Optional[int] = typer.Option(None, "--year", help="Release year."),
    stars: Optional[int] = typer.Option(None, "--stars", min=1, max=5, help="Star rating 1-5."),
) -> None:
    """Rank a new title at the bottom of the list."""
    kind = _parse_content_type(content_type)
    user_id = _resolve_user_id(ctx, username)
    payload = ranking_service.TitlePayload(external_id=external_id, title=title, release_year=year)

    async def run() -> Optional[RankedItem]:
        store, repository = await _open_store(ctx, user_id, kind)
        try:
            token = store.offer_title(payload)
            return await store.add_title(kind, token, star_rating=stars)
        finally:
            await _close(repository)

    with telemetry_service.timed_operation(f"rank_add[{kind.value}:{external_id}]"):
        try:
            item = asyncio.run(run())
        except TransientPersistenceError as exc:
            console.print(f"[red]Could not rank {external_id}:[/red] {exc}")
            raise typer.Exit(code=1) from exc
    if item is None:
        console.print(f"[red]Could not rank {external_id}:[/red] the list is busy, try again.")
        raise typer.Exit(code=1)
    console.print(
        f"[green]Ranked[/green] {title} at #{item.position} with score {item.display_score:.1f}."
    )


@rank_app.command("move")
def rank_move(
    ctx: typer.Context,
    from_position: int = typer.Argument(..., help="Current 1-based position."),
    to_position: int = typer.Argument(..., help="Target 1-based position."),
    username: str = typer.Option(..., "--user", "-u", help="Owner of the list."),
    content_type: str = typer.Option("movie", "--type", "-t", help="movie or tv."),
) -> None:
    """Move a title to a new position."""
    kind = _parse_content_type(content_type)
    user_id = _resolve_user_id(ctx, username)

    async def run() -> None:
        store, repository = await _open_store(ctx, user_id, kind)
        errors: List[str] = []
        store.add_error_listener(lambda _ct, message, _exc: errors.append(message))
        try:
            before = store.get_list(kind)
            task = store.request_reorder(kind, from_position - 1, to_position - 1)
            if task is None:
                console.print(
                    f"[yellow]Nothing to do:[/yellow] positions must be between 1 and {len(before)}"
                    " and differ."
                )
                return
            moved_id = before[from_position - 1].item_id
            await task
        finally:
            await _close(repository)
        if errors:
            console.print(f"[red]{errors[0]}[/red]")
            raise typer.Exit(code=1)
        _render(store.get_list(kind), kind, highlight=moved_id)

    with telemetry_service.timed_operation(f"rank_move[{kind.value}:{from_position}->{to_position}]"):
        asyncio.run(run())


@rank_app.command("remove")
def rank_remove(
    ctx: typer.Context,
    external_id: str = typer.Argument(..., help="Content identifier to remove."),
    username: str = typer.Option(..., "--user", "-u", help="Owner of the list."),
    content_type: str = typer.Option("movie", "--type", "-t", help="movie or tv."),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Skip confirmation prompt and remove immediately.",
    ),
) -> None:
    """Remove a title from the list, together with its review."""
    kind = _parse_content_type(content_type)
    user_id = _resolve_user_id(ctx, username)
    if not yes:
        confirm = typer.confirm(
            f"Remove {external_id} from your {kind.value} rankings? Its review is deleted too.",
            default=False,
        )
        if not confirm:
            typer.echo("Removal cancelled.")
            raise typer.Exit()

    async def run() -> None:
        store, repository = await _open_store(ctx, user_id, kind)
        errors: List[str] = []
        store.add_error_listener(lambda _ct, message, _exc: errors.append(message))
        try:
            task = store.request_delete(kind, external_id)
            if task is None:
                console.print(f"[yellow]{external_id} is not in your {kind.value} rankings.[/yellow]")
                raise typer.Exit(code=1)
            await task
        finally:
            await _close(repository)
        if errors:
            console.print(f"[red]{errors[0]}[/red]")
            raise typer.Exit(code=1)
        console.print(f"[green]Removed[/green] {external_id}.")
        _render(store.get_list(kind), kind)

    asyncio.run(run())


@rank_app.command("rescore")
def rank_rescore(
    ctx: typer.Context,
    username: str = typer.Option(..., "--user", "-u", help="Owner of the list."),
    content_type: str = typer.Option("movie", "--type", "-t", help="movie or tv."),
) -> None:
    """Reset every display score to a linear 10 -> 1 spread by position."""
    kind = _parse_content_type(content_type)
    settings = _settings(ctx)
    with get_session(settings) as session:
        user = ranking_service.get_or_create_user(session, username)
        count = ranking_service.rescore_rankings(session, user.id, kind)
    console.print(f"[green]Rescored[/green] {count} {kind.value} rankings for {username}.")


if __name__ == "__main__":  # pragma: no cover
    app()
