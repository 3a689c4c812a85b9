"""genswap command-line interface."""

import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from genswap import __version__
from genswap.errors import ConfigError, FetchError, SwitchError

console = Console()

_OUTCOME_STYLE = {"success": "green", "rolled_back": "yellow", "aborted": "red"}
_STATUS_STYLE = {
    "active": "green",
    "pending": "dim",
    "superseded": "",
    "rolled_back": "red",
}


def _load(ctx: click.Context):
    from genswap.config import load_config

    try:
        return load_config(ctx.obj["config_path"])
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/] {e}")
        ctx.exit(2)


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", "config_path", default=None, help="Path to genswap.yaml")
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging verbosity",
)
@click.pass_context
def main(ctx: click.Context, config_path: str | None, log_level: str):
    """genswap: automated generation updates with rollback.

    Fetches the latest configuration revision for a target, checks it
    against known issues, builds it (remediating known build failures),
    then atomically activates it or rolls back.
    """
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


# ── Update ───────────────────────────────────────────────────────────


@main.command()
@click.argument("targets", nargs=-1, required=True)
@click.option("--max-attempts", type=int, default=None, help="Maximum remediation attempts")
@click.option(
    "--auto-proceed/--no-auto-proceed",
    default=None,
    help="Build even when a critical issue recommends abort",
)
@click.option("--timeout", type=float, default=None, help="Session timeout in seconds")
@click.option("--parallel", "-j", default=1, help="Targets to update concurrently")
@click.pass_context
def update(
    ctx: click.Context,
    targets: tuple,
    max_attempts: int | None,
    auto_proceed: bool | None,
    timeout: float | None,
    parallel: int,
):
    """Update one or more targets to their latest configuration revision."""
    from genswap.runner import run_updates

    config = _load(ctx)
    try:
        policy = config.policy.merged(
            max_remediation_attempts=max_attempts,
            auto_proceed_on_critical=auto_proceed,
            timeout_seconds=timeout,
        )
    except ValueError as e:
        raise click.BadParameter(str(e))

    console.print(f"\n[bold blue]genswap[/] updating: {', '.join(targets)}\n")
    try:
        sessions = run_updates(list(targets), policy, config=config, max_workers=parallel)
    except (ConfigError, ValueError) as e:
        console.print(f"[red]Error:[/] {e}")
        ctx.exit(2)

    table = Table(title="Update Results")
    table.add_column("Target", style="cyan")
    table.add_column("Outcome")
    table.add_column("Revision")
    table.add_column("Generation", justify="right")
    table.add_column("Fixes", justify="right")

    failed = False
    for target, session in sessions.items():
        outcome = session.outcome.value
        failed = failed or outcome != "success"
        style = _OUTCOME_STYLE.get(outcome, "")
        generation = session.activated_generation_id or session.baseline_generation_id
        table.add_row(
            target,
            f"[{style}]{outcome}[/]",
            session.revision.id[:12] if session.revision else "-",
            str(generation) if generation is not None else "-",
            str(session.remediation_attempts),
        )
        if session.manual_action_required:
            console.print(f"[bold red]MANUAL ACTION REQUIRED[/] on {target}")

    console.print(table)
    if failed:
        ctx.exit(1)


# ── Status ───────────────────────────────────────────────────────────


@main.command()
@click.argument("target")
@click.pass_context
def status(ctx: click.Context, target: str):
    """Show the active generation and the last session of a target."""
    config = _load(ctx)
    store = config.generation_store(target)
    current = store.current()

    if current is None:
        console.print(f"[yellow]{target}: no active generation.[/]")
    else:
        console.print(f"[bold]{target}[/] generation [green]{current.id}[/]")
        console.print(f"  Revision: {current.revision.id}")
        console.print(f"  Artifact: {current.artifact_ref}")
        console.print(f"  Created:  {current.created_at}")

    recent = config.session_archive(target).list_recent(limit=1)
    if recent:
        last = recent[0]
        style = _OUTCOME_STYLE.get(last.outcome.value, "")
        console.print(
            f"  Last session: {last.session_id} [{style}]{last.outcome.value}[/] "
            f"({last.finished_at})"
        )


# ── Generations ──────────────────────────────────────────────────────


@main.command()
@click.argument("target")
@click.pass_context
def generations(ctx: click.Context, target: str):
    """List all generations of a target."""
    config = _load(ctx)
    entries = config.generation_store(target).list_generations()

    if not entries:
        console.print("[yellow]No generations recorded.[/]")
        return

    table = Table(title=f"{target} ({len(entries)} generations)")
    table.add_column("ID", justify="right", style="dim")
    table.add_column("Status")
    table.add_column("Revision", style="cyan")
    table.add_column("Patches")
    table.add_column("Created")

    for gen in entries:
        style = _STATUS_STYLE.get(gen.status.value, "")
        status_text = f"[{style}]{gen.status.value}[/]" if style else gen.status.value
        table.add_row(
            str(gen.id),
            status_text,
            gen.revision.id[:12],
            ", ".join(gen.revision.patches),
            gen.created_at,
        )

    console.print(table)


# ── Sessions ─────────────────────────────────────────────────────────


@main.command()
@click.argument("target")
@click.option("--limit", "-n", default=10, help="Number of sessions to show")
@click.option("--show", "session_id", default=None, help="Print the full report of one session")
@click.pass_context
def sessions(ctx: click.Context, target: str, limit: int, session_id: str | None):
    """List recent update sessions and their outcomes."""
    from genswap.update.reporter import format_report

    config = _load(ctx)
    archive = config.session_archive(target)

    if session_id:
        session = archive.get(session_id)
        if session is None:
            console.print(f"[red]No session {session_id} for {target}.[/]")
            ctx.exit(1)
        console.print(format_report(session), markup=False, highlight=False)
        return

    recent = archive.list_recent(limit=limit)
    if not recent:
        console.print("[yellow]No sessions recorded.[/]")
        return

    table = Table(title=f"{target}: last {len(recent)} sessions")
    table.add_column("Session", style="dim")
    table.add_column("Started")
    table.add_column("Outcome")
    table.add_column("Failure")
    table.add_column("Fixes", justify="right")

    for s in recent:
        style = _OUTCOME_STYLE.get(s.outcome.value, "")
        table.add_row(
            s.session_id,
            s.started_at,
            f"[{style}]{s.outcome.value}[/]",
            s.failure_class.value if s.failure_class else "",
            str(s.remediation_attempts),
        )

    console.print(table)


# ── Rollback ─────────────────────────────────────────────────────────


@main.command()
@click.argument("target")
@click.pass_context
def rollback(ctx: click.Context, target: str):
    """Restore the previously active generation of a target."""
    config = _load(ctx)
    store = config.generation_store(target)

    try:
        restored = store.rollback()
    except SwitchError as e:
        console.print(f"[red]Rollback failed:[/] {e}")
        console.print("[bold red]MANUAL ACTION REQUIRED[/]")
        ctx.exit(1)

    if restored is None:
        console.print(f"[yellow]{target}: no generation is active.[/]")
        return
    console.print(f"  [green]v[/] {target}: generation {restored.id} is active")


# ── Bootstrap ────────────────────────────────────────────────────────


@main.command()
@click.argument("target")
@click.option("--artifact", "-a", required=True, help="Artifact reference of the running system")
@click.pass_context
def bootstrap(ctx: click.Context, target: str, artifact: str):
    """Adopt the running system as the first generation of a target.

    The latest revision from the target's configuration source is recorded
    against the given artifact without building it.
    """
    config = _load(ctx)
    orchestrator = config.build_orchestrator(target, console=console)

    try:
        revision = orchestrator.source.fetch_latest()
        generation = orchestrator.store.bootstrap(revision, artifact)
    except (FetchError, SwitchError) as e:
        console.print(f"[red]Bootstrap failed:[/] {e}")
        ctx.exit(1)

    console.print(
        f"  [green]v[/] {target}: generation {generation.id} active "
        f"(revision {revision.id[:12]})"
    )


if __name__ == "__main__":
    main()
