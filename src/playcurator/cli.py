"""CLI interface for playcurator."""

from __future__ import annotations

import asyncio
import contextlib
import os
import signal
from collections import deque
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path

import typer
from pydantic import SecretStr
from rich.console import Console
from rich.table import Table

from playcurator.config import (
    AppConfig,
    PlaylistConfig,
    ensure_dirs,
    get_base_dir,
    load_config,
    load_playlist_config,
    load_playlists,
    save_config,
)
from playcurator.curation.estimator import CurationEstimator
from playcurator.curation.gemini import GeminiClient
from playcurator.curation.models import CurationDiff, CurationEstimate
from playcurator.curation.orchestrator import PlaylistOrchestrator
from playcurator.curation.ports import PlaylistService
from playcurator.curation.scheduler import CurationScheduler
from playcurator.curation.spotify import SpotifyClient
from playcurator.curation.suggestions import SuggestionEngine
from playcurator.errors import CuratorError, describe_failure
from playcurator.logging import CURATION_LOG, CURATOR_LOG, setup_logging
from playcurator.storage import Database

app = typer.Typer(
    name="playcurator",
    help="Rule-based Spotify playlist curation with AI-suggested fills.",
    add_completion=False,
)
console = Console()


def main() -> None:
    """Entry point that wraps ``app()`` with a clean KeyboardInterrupt handler."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("Interrupted.")
        raise SystemExit(130) from None


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


@dataclass
class Services:
    config: AppConfig
    db: Database
    remote: PlaylistService
    orchestrator: PlaylistOrchestrator
    estimator: CurationEstimator


@contextlib.asynccontextmanager
async def open_services(cfg: AppConfig) -> AsyncIterator[Services]:
    """Connect the database and API clients for the duration of one command."""
    async with contextlib.AsyncExitStack() as stack:
        db = await stack.enter_async_context(Database(cfg.db_path, plan_ttl_minutes=cfg.plans.ttl_minutes))
        remote = await stack.enter_async_context(SpotifyClient(cfg.spotify))

        suggestions = None
        if cfg.is_ai_configured():
            provider = await stack.enter_async_context(GeminiClient(cfg.ai))
            suggestions = SuggestionEngine(provider)

        orchestrator = PlaylistOrchestrator(suggestions, db)
        yield Services(
            config=cfg,
            db=db,
            remote=remote,
            orchestrator=orchestrator,
            estimator=CurationEstimator(orchestrator, db),
        )


def _load_ready_config() -> AppConfig:
    """Load settings, set up logging and refuse to continue without Spotify credentials."""
    ensure_dirs()
    try:
        cfg = load_config()
    except CuratorError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc

    setup_logging(cfg.logging.log_level, cfg.log_dir)
    if not cfg.is_spotify_configured():
        console.print(
            "[red]Spotify credentials are not configured.[/red]  "
            "Run [bold]playcurator config set spotify.client_id <id>[/bold] "
            "(and client_secret, refresh_token)."
        )
        raise typer.Exit(1)
    return cfg


def _load_playlist(path: Path) -> PlaylistConfig:
    try:
        return load_playlist_config(path)
    except FileNotFoundError:
        console.print(f"[red]Playlist file not found:[/red] {path}")
        raise typer.Exit(1) from None
    except CuratorError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc


def _run(coro) -> object:
    """Run *coro*, turning curation failures into a message and exit code 1."""
    try:
        return asyncio.run(coro)
    except CuratorError as exc:
        console.print(f"[red]{describe_failure(exc)}[/red]")
        raise typer.Exit(1) from exc


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def _print_diff(diff: CurationDiff, *, title: str) -> None:
    console.print()
    console.print(f"[bold]{title}[/bold]")
    console.print(
        f"  tracks: {diff.current_tracks} → {diff.predicted_final}"
        f"   [green]+{len(diff.added)}[/green] [red]-{len(diff.removed)}[/red]"
    )
    console.print(
        f"  [dim]duplicates {diff.duplicates_to_remove}, expired {diff.aged_out_tracks}, "
        f"artist limit {diff.artist_limit_removed}, size limit {diff.size_limit_removed}, "
        f"mandatory {diff.mandatory_to_add}, ai {diff.ai_tracks_to_add}[/dim]"
    )

    if diff.added:
        table = Table(title="Added", title_justify="left")
        table.add_column("Artist")
        table.add_column("Track")
        table.add_column("Source", style="cyan")
        for track in diff.added:
            table.add_row(track.artist, track.name, track.source)
        console.print(table)

    if diff.removed:
        table = Table(title="Removed", title_justify="left")
        table.add_column("Artist")
        table.add_column("Track")
        table.add_column("Reason", style="yellow")
        for track in diff.removed:
            table.add_row(track.artist, track.name, track.reason)
        console.print(table)
    console.print()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def curate(
    playlist_file: Path = typer.Argument(help="Playlist config TOML file"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Compute the diff without changing the playlist"),
    triggered_by: str = typer.Option("manual", "--triggered-by", help="Recorded in the run log"),
) -> None:
    """Curate one playlist now."""
    cfg = _load_ready_config()
    playlist = _load_playlist(playlist_file)

    async def _curate() -> CurationDiff:
        async with open_services(cfg) as services:
            return await services.orchestrator.curate_playlist(
                playlist,
                services.remote,
                dry_run=dry_run,
                triggered_by=triggered_by,
            )

    diff = _run(_curate())
    _print_diff(diff, title=f"{playlist.display_name}{' (dry run)' if dry_run else ''}")
    if not dry_run:
        console.print("[green]Playlist updated.[/green]")


@app.command()
def estimate(
    playlist_file: Path = typer.Argument(help="Playlist config TOML file"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Executing the plan only records a log entry"),
) -> None:
    """Preview a curation run and save it as a plan for ``execute``."""
    cfg = _load_ready_config()
    playlist = _load_playlist(playlist_file)

    async def _estimate() -> CurationEstimate:
        async with open_services(cfg) as services:
            await services.db.purge_expired_plans()
            return await services.estimator.estimate(playlist, services.remote, playlist.owner_id, dry_run=dry_run)

    result = _run(_estimate())
    _print_diff(result, title=f"Estimate for {playlist.display_name}")
    console.print(f"Plan [bold]{result.plan_id}[/bold] expires in {cfg.plans.ttl_minutes} min.")
    console.print(f"Apply it with [bold]playcurator execute {result.plan_id}[/bold]")


@app.command()
def execute(
    plan_id: str = typer.Argument(help="Plan id printed by ``estimate``"),
    triggered_by: str = typer.Option("manual", "--triggered-by", help="Recorded in the run log"),
) -> None:
    """Apply a previously estimated plan exactly as it was previewed."""
    cfg = _load_ready_config()

    async def _execute() -> CurationDiff:
        async with open_services(cfg) as services:
            return await services.estimator.execute(plan_id, services.remote, triggered_by=triggered_by)

    diff = _run(_execute())
    _print_diff(diff, title=f"Plan {plan_id}")
    console.print("[green]Plan executed.[/green]")


@app.command()
def history(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of runs to show"),
    playlist: str = typer.Option("", "--playlist", "-p", help="Only runs for this playlist id"),
    diff_id: int | None = typer.Option(None, "--diff", help="Show the added and removed tracks of one run"),
) -> None:
    """Show recent curation runs, or the diff of a single run with --diff."""
    ensure_dirs()
    cfg = load_config()
    if not cfg.db_path.exists():
        console.print("[dim]No runs recorded yet.[/dim]")
        return

    if diff_id is not None:
        _show_run_diff(cfg, diff_id)
        return

    async def _history():
        async with Database(cfg.db_path) as db:
            return await db.list_logs(playlist_id=playlist or None, limit=limit)

    entries = asyncio.run(_history())
    if not entries:
        console.print("[dim]No runs recorded yet.[/dim]")
        return

    state_colors = {"success": "green", "failed": "red", "cancelled": "yellow"}
    table = Table()
    table.add_column("#", justify="right")
    table.add_column("Started")
    table.add_column("Playlist")
    table.add_column("State")
    table.add_column("By")
    table.add_column("+/-", justify="right")
    table.add_column("Final", justify="right")
    table.add_column("Error")
    for entry in entries:
        color = state_colors.get(entry.state, "white")
        state = f"[{color}]{entry.state}[/{color}]" + (" [dim](dry)[/dim]" if entry.dry_run else "")
        table.add_row(
            str(entry.id),
            entry.started_at.strftime("%Y-%m-%d %H:%M"),
            entry.playlist_id,
            state,
            entry.triggered_by,
            f"+{entry.added}/-{entry.removed}",
            "—" if entry.predicted_final is None else str(entry.predicted_final),
            entry.error_message or "",
        )
    console.print(table)


def _show_run_diff(cfg: AppConfig, log_id: int) -> None:
    async def _diff() -> CurationDiff | None:
        async with Database(cfg.db_path) as db:
            return await db.get_log_diff(log_id)

    diff = asyncio.run(_diff())
    if diff is None:
        console.print(f"[yellow]No diff recorded for run {log_id}.[/yellow]")
        raise typer.Exit(1)
    _print_diff(diff, title=f"Run {log_id}")


@app.command()
def run(
    once: bool = typer.Option(False, "--once", help="Curate every enabled playlist once and exit"),
) -> None:
    """Run the scheduler in the foreground, curating enabled playlists periodically."""
    cfg = _load_ready_config()
    setup_logging(cfg.logging.log_level, cfg.log_dir, console=not once)

    def _playlists() -> list[PlaylistConfig]:
        return load_playlists(cfg.playlists_dir)

    async def _run_scheduler() -> dict:
        async with open_services(cfg) as services:
            scheduler = CurationScheduler(
                services.orchestrator,
                services.remote,
                _playlists,
                interval_minutes=cfg.scheduler.interval_minutes,
                run_timeout_minutes=cfg.scheduler.run_timeout_minutes,
            )
            if once:
                await scheduler.run_once()
                return scheduler.get_status()

            loop = asyncio.get_running_loop()
            loop.add_signal_handler(signal.SIGUSR1, scheduler.trigger_now)
            await scheduler.start()
            try:
                await scheduler.wait()
            finally:
                loop.remove_signal_handler(signal.SIGUSR1)
                await scheduler.stop()
            return scheduler.get_status()

    try:
        playlists = _playlists()
    except CuratorError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc
    if not any(p.enabled for p in playlists):
        console.print(f"[yellow]No enabled playlists in[/yellow] {cfg.playlists_dir}")
        raise typer.Exit(1)

    if not once:
        console.print(
            f"[green]Curating {len(playlists)} playlist(s) every {cfg.scheduler.interval_minutes} min.[/green]"
        )
        console.print(f"[dim]Send SIGUSR1 to pid {os.getpid()} to curate right away.[/dim]")
    status = _run(_run_scheduler())
    results = status["last_results"]

    for playlist_id, outcome in results.items():
        color = "green" if outcome == "success" else "red"
        console.print(f"  {playlist_id}  [{color}]{outcome}[/{color}]")
    if status["credentials_invalid"]:
        console.print(
            "[red]Spotify rejected the stored credentials; curation stopped.[/red]  "
            "Update them with [bold]playcurator config set spotify.refresh_token <token>[/bold] and restart."
        )
        raise typer.Exit(1)
    if any(outcome != "success" for outcome in results.values()):
        raise typer.Exit(1)


@app.command()
def logs(
    tail_lines: int = typer.Option(50, "--lines", "-n", help="Number of lines to show"),
    curation: bool = typer.Option(False, "--curation", help="Show curation.log (JSON) instead of curator.log"),
    follow: bool = typer.Option(False, "--follow", "-f", help="Follow log output (like tail -f)"),
) -> None:
    """Show recent log output (supports --curation for the JSON curation log, --follow for live tail)."""
    filename = CURATION_LOG if curation else CURATOR_LOG
    log_file = get_base_dir() / "logs" / filename
    if not log_file.exists():
        console.print(f"[yellow]Log file not found:[/yellow] {log_file}")
        raise typer.Exit(1)

    if follow:
        _follow_log(log_file, tail_lines)
        return

    with open(log_file, encoding="utf-8") as fh:
        last_lines = deque(fh, maxlen=tail_lines)

    if not last_lines:
        console.print("[dim]Log file is empty.[/dim]")
        return

    for line in last_lines:
        _print_log_line(line)


def _log_line_style(line: str) -> str | None:
    """Return a Rich style string based on the log level found in *line*.

    Matches structlog formats only:
    - ConsoleRenderer: ``[error    ]``
    - JSONRenderer: ``"level": "error"``
    """
    lower = line.lower()
    if "[error" in lower or "[critical" in lower or '"level": "error"' in lower or '"level": "critical"' in lower:
        return "red"
    if "[warning" in lower or '"level": "warning"' in lower:
        return "yellow"
    if "[debug" in lower or '"level": "debug"' in lower:
        return "dim"
    return None


def _print_log_line(line: str) -> None:
    line = line.rstrip("\n")
    if not line:
        return
    console.print(line, style=_log_line_style(line), highlight=False, markup=False)


def _follow_log(log_file: Path, initial_lines: int = 10) -> None:
    """Follow a log file, printing new lines as they appear (like ``tail -f``)."""
    import time

    with open(log_file, encoding="utf-8") as fh:
        last = deque(fh, maxlen=initial_lines)
    for line in last:
        _print_log_line(line)

    with open(log_file, encoding="utf-8") as fh:
        fh.seek(0, 2)  # seek to end
        try:
            while True:
                line = fh.readline()
                if line:
                    _print_log_line(line)
                else:
                    time.sleep(0.5)
        except KeyboardInterrupt:
            pass


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


def _mask(secret: SecretStr) -> str:
    """Return '***' if the secret is non-empty, else '(not set)'."""
    return "[bold]***[/bold]" if secret.get_secret_value() else "[dim](not set)[/dim]"


config_app = typer.Typer(name="config", help="View and modify configuration.", add_completion=False)
app.add_typer(config_app)


@config_app.command(name="show")
def config_show() -> None:
    """Show current configuration (secrets are masked)."""
    cfg = load_config()

    console.print("\n[bold]Current Configuration[/bold]\n")

    console.print("[bold cyan]\\[logging][/bold cyan]")
    console.print(f"  log_level = {cfg.logging.log_level}")

    console.print("\n[bold cyan]\\[scheduler][/bold cyan]")
    console.print(f"  interval_minutes    = {cfg.scheduler.interval_minutes}")
    console.print(f"  run_timeout_minutes = {cfg.scheduler.run_timeout_minutes}")

    console.print("\n[bold cyan]\\[plans][/bold cyan]")
    console.print(f"  ttl_minutes = {cfg.plans.ttl_minutes}")

    console.print("\n[bold cyan]\\[spotify][/bold cyan]")
    console.print(f"  client_id      = {cfg.spotify.client_id or '[dim](not set)[/dim]'}")
    console.print(f"  client_secret  = {_mask(cfg.spotify.client_secret)}")
    console.print(f"  refresh_token  = {_mask(cfg.spotify.refresh_token)}")

    console.print("\n[bold cyan]\\[ai][/bold cyan]")
    console.print(f"  api_key       = {_mask(cfg.ai.api_key)}")
    console.print(f"  default_model = {cfg.ai.default_model}")
    console.print(f"\n[dim]Playlists: {cfg.playlists_dir}[/dim]\n")


@config_app.command(name="set")
def config_set(
    key: str = typer.Argument(help="Dotted key, e.g. scheduler.interval_minutes"),
    value: str = typer.Argument(help="New value"),
) -> None:
    """Set a configuration value (e.g. playcurator config set scheduler.interval_minutes 120)."""

    parts = key.split(".", maxsplit=1)
    if len(parts) != 2:
        console.print("[red]Key must be in section.field format (e.g. plans.ttl_minutes).[/red]")
        raise typer.Exit(1)

    section_name, field_name = parts

    cfg = load_config()
    section_map = {name: getattr(cfg, name) for name in AppConfig.model_fields}

    if section_name not in section_map:
        console.print(f"[red]Unknown section:[/red] {section_name}")
        console.print(f"[dim]Valid sections: {', '.join(section_map)}[/dim]")
        raise typer.Exit(1)

    section_model = section_map[section_name]
    fields = type(section_model).model_fields
    if field_name not in fields:
        console.print(f"[red]Unknown field:[/red] {section_name}.{field_name}")
        console.print(f"[dim]Valid fields: {', '.join(fields)}[/dim]")
        raise typer.Exit(1)

    field_type = fields[field_name].annotation

    try:
        coerced = _coerce_value(value, field_type)
        section_data = section_model.model_dump(mode="python")
        section_data[field_name] = coerced
        new_section = type(section_model)(**section_data)
    except ValueError as exc:
        # pydantic's ValidationError is a ValueError too (e.g. ge=1 violations)
        console.print(f"[red]Invalid value:[/red] {exc}")
        raise typer.Exit(1) from exc

    setattr(cfg, section_name, new_section)
    save_config(cfg)

    display_val = "***" if isinstance(coerced, SecretStr) else coerced
    console.print(f"[green]Set[/green] {key} = {display_val}")


def _coerce_value(raw: str, field_type: type) -> object:
    """Coerce a string value to the expected field type."""
    if field_type is SecretStr:
        return SecretStr(raw)

    if field_type is bool:
        if raw.lower() in ("true", "1", "yes"):
            return True
        if raw.lower() in ("false", "0", "no"):
            return False
        msg = f"Cannot convert '{raw}' to bool (use true/false)"
        raise ValueError(msg)

    if field_type is int:
        return int(raw)

    return raw
