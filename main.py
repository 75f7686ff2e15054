"""Command line entry point for the NisseKomm progression engine.

Usage:
    python main.py create --session family-42
    python main.py submit BREVFUGL --session family-42
    python main.py status --access-code KID123
    python main.py decrypt frosne-koder heart-green sun-red moon-blue --session family-42
    python main.py reminders --verbose
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any, Awaitable, Callable

import click

from catalog import get_catalog, load_catalog
from progression.clock import Clock
from progression.config import load_config
from progression.core import ProgressionEngine
from progression.errors import ValidationError
from progression.reminders import send_mission_reminders
from sessionstore import StorageError, create_session_store
from sessionstore.credentials import CalendarEvent, Credential, CredentialDirectory


def _setup_logging(verbose: bool = False, log_file: str | None = None) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(level=level, format=fmt, handlers=handlers)

    # Quiet down noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _credentials_path(cfg: dict) -> str:
    return cfg.get("storage", {}).get("credentials_db") or "data/credentials.db"


def _run(ctx: click.Context, work: Callable[[ProgressionEngine], Awaitable[Any]]) -> Any:
    """Build an engine for one command, run ``work`` and close the store."""
    cfg = ctx.obj["cfg"]

    async def _go() -> Any:
        async with create_session_store(cfg) as store:
            engine = ProgressionEngine(store, catalog=ctx.obj["catalog"], clock=Clock.from_config(cfg))
            engine.notifier.subscribe(
                lambda award: click.echo(f"  New badge: {award.badge.name} ({award.badge.icon})")
            )
            result = await work(engine)
            await engine.notifier.drain()
            return result

    try:
        return asyncio.run(_go())
    except ValidationError as e:
        raise click.ClickException(str(e)) from e
    except StorageError as e:
        hint = " (try again)" if e.retryable else ""
        raise click.ClickException(f"{e}{hint}") from e


def _session_id(ctx: click.Context, session: str | None, access_code: str | None) -> str:
    if session:
        return session
    if not access_code:
        raise click.UsageError("Give --session or --access-code")

    async def _lookup() -> str | None:
        async with CredentialDirectory(_credentials_path(ctx.obj["cfg"])) as directory:
            return await directory.find_session_id_by_access_code(access_code)

    found = asyncio.run(_lookup())
    if found is None:
        raise click.ClickException("No family uses that access code")
    return found


_session_options = [
    click.option("--session", "session", default=None, help="Session id"),
    click.option("--access-code", default=None, help="Kid or parent access code"),
]


def session_options(f: Callable) -> Callable:
    for option in reversed(_session_options):
        f = option(f)
    return f


@click.group()
@click.option("--verbose", is_flag=True, help="Enable debug logging")
@click.option("--config-dir", type=click.Path(), default=None, help="Config directory")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_dir: str | None) -> None:
    """NisseKomm advent calendar progression engine."""
    cfg = load_config(config_dir)
    _setup_logging(verbose=verbose, log_file=cfg.get("storage", {}).get("log_file"))

    catalog_dir = cfg.get("catalog", {}).get("data_dir")
    ctx.obj = {
        "cfg": cfg,
        "catalog": load_catalog(catalog_dir) if catalog_dir else get_catalog(),
    }


@cli.command()
@session_options
@click.pass_context
def create(ctx: click.Context, session: str | None, access_code: str | None) -> None:
    """Create an empty session."""
    session_id = _session_id(ctx, session, access_code)
    created = _run(ctx, lambda engine: engine.create_session(session_id))
    click.echo(f"Session {created.session_id} ready.")


@cli.command()
@session_options
@click.pass_context
def status(ctx: click.Context, session: str | None, access_code: str | None) -> None:
    """Show progress for a session."""
    session_id = _session_id(ctx, session, access_code)

    async def _status(engine: ProgressionEngine) -> tuple:
        return (
            await engine.get_summary(session_id),
            await engine.get_visible_content(session_id),
            await engine.accessible_days(session_id),
        )

    summary, content, open_days = _run(ctx, _status)
    click.echo(
        f"Main quests: {summary.main_quests_completed}/{summary.main_quests_total} "
        f"({summary.main_quests_percent}%)"
    )
    click.echo(f"Bonus quests: {summary.bonus_quests_completed}/{summary.bonus_quests_available}")
    click.echo(f"Badges: {summary.badges_earned}/{summary.badges_total}")
    click.echo(f"Modules: {', '.join(sorted(content.modules)) or '-'}")
    click.echo(f"Topics: {', '.join(sorted(content.topics)) or '-'}")
    click.echo(f"Open days: {', '.join(str(d) for d in open_days) or '-'}")


@cli.command()
@click.argument("code")
@click.option("--day", type=int, default=None, help="Day the code is meant for")
@session_options
@click.pass_context
def submit(ctx: click.Context, code: str, day: int | None, session: str | None, access_code: str | None) -> None:
    """Submit a mission or bonus code."""
    session_id = _session_id(ctx, session, access_code)
    result = _run(ctx, lambda engine: engine.submit_code(session_id, code, day=day))
    if result.accepted and result.already_submitted:
        click.echo(f"Day {result.day} was already solved.")
    elif result.accepted:
        kind = "Bonus quest" if result.is_bonus else "Day"
        click.echo(f"{kind} {result.day} solved!")
    elif result.reason == "locked":
        click.echo(f"Day {result.day} is not open yet.")
    else:
        click.echo("Wrong code.")
        sys.exit(1)


@cli.command()
@click.argument("code")
@session_options
@click.pass_context
def collect(ctx: click.Context, code: str, session: str | None, access_code: str | None) -> None:
    """Collect a symbol by the code on its card."""
    session_id = _session_id(ctx, session, access_code)
    result = _run(ctx, lambda engine: engine.collect_symbol_by_code(session_id, code))
    if result.already_collected:
        click.echo(f"Symbol {result.symbol_id} already collected.")
    else:
        click.echo(f"Collected {result.symbol_id}.")


@cli.command()
@click.argument("challenge_id")
@click.argument("sequence", nargs=-1, required=True)
@session_options
@click.pass_context
def decrypt(
    ctx: click.Context,
    challenge_id: str,
    sequence: tuple[str, ...],
    session: str | None,
    access_code: str | None,
) -> None:
    """Try a symbol sequence against a decryption challenge."""
    session_id = _session_id(ctx, session, access_code)
    result = _run(ctx, lambda engine: engine.attempt_decryption(session_id, challenge_id, list(sequence)))
    if result.solved:
        click.echo(result.message or "Solved!")
    else:
        click.echo(f"{result.correct_count} in the right place (attempt {result.attempts}).")


@cli.command("resolve-crisis")
@click.argument("crisis_key")
@session_options
@click.pass_context
def resolve_crisis(ctx: click.Context, crisis_key: str, session: str | None, access_code: str | None) -> None:
    """Mark a crisis as resolved."""
    session_id = _session_id(ctx, session, access_code)
    result = _run(ctx, lambda engine: engine.resolve_crisis(session_id, crisis_key))
    state = "was already resolved" if result.already_resolved else "resolved"
    click.echo(f"Crisis {crisis_key} {state}.")


@cli.command()
@click.option("--session", "session_id", required=True, help="Session id")
@click.option("--kid-code", required=True)
@click.option("--parent-code", required=True)
@click.option("--kid-name", "kid_names", multiple=True, required=True)
@click.option("--family-name", default="")
@click.option("--email", default="")
@click.option("--subscribe", is_flag=True, help="Send daily mission reminders")
@click.option("--event", "events", multiple=True, help="Calendar note as DAY:TEXT")
@click.pass_context
def register(
    ctx: click.Context,
    session_id: str,
    kid_code: str,
    parent_code: str,
    kid_names: tuple[str, ...],
    family_name: str,
    email: str,
    subscribe: bool,
    events: tuple[str, ...],
) -> None:
    """Register a family's access codes and create its session."""
    calendar_events = []
    for raw in events:
        day, _, text = raw.partition(":")
        if not day.strip().isdigit():
            raise click.BadParameter(f"Expected DAY:TEXT, got {raw!r}", param_hint="--event")
        calendar_events.append(CalendarEvent(day=int(day), event=text.strip()))

    credential = Credential(
        session_id=session_id,
        kid_code=kid_code,
        parent_code=parent_code,
        family_name=family_name,
        kid_names=list(kid_names),
        parent_email=email,
        email_subscription=subscribe,
        calendar_events=calendar_events,
    )

    async def _register(engine: ProgressionEngine) -> Credential:
        async with CredentialDirectory(_credentials_path(ctx.obj["cfg"])) as directory:
            saved = await directory.register(credential)
        await engine.create_session(session_id)
        return saved

    saved = _run(ctx, _register)
    click.echo(f"Registered {saved.family_name or saved.session_id}.")


@cli.command()
@click.option("--day", type=int, default=None, help="Send for this day instead of tomorrow")
@click.pass_context
def reminders(ctx: click.Context, day: int | None) -> None:
    """Print tomorrow's mission reminder for every subscribed family."""

    def _echo_sink(credential: Credential, mission: Any, completed: set[int]) -> None:
        click.echo(
            f"  {credential.parent_email}: day {mission.day} '{mission.title}' opens tomorrow "
            f"({len(completed)} days solved so far)"
        )

    async def _send(engine: ProgressionEngine) -> Any:
        async with CredentialDirectory(_credentials_path(ctx.obj["cfg"])) as directory:
            return await send_mission_reminders(engine, directory, _echo_sink, day=day)

    report = _run(ctx, _send)
    if report.skipped:
        click.echo("No mission opens tomorrow.")
    else:
        click.echo(f"Day {report.day}: {report.sent} sent, {report.failed} failed.")


if __name__ == "__main__":
    cli()
