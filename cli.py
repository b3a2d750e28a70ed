"""Ignis deploy dispatcher — operator CLI.

Commands:
    plan PATHS...                  Show which components a change would deploy.
    deploy --branch B PATHS...     Resolve and run the deploy locally, with
                                   live per-component panels.
    check                          Diagnose configuration, deploy script and
                                   run lock before starting the server.
    serve                          Start the webhook server (same as main.py).

Usage:
    python cli.py plan backend/src/index.ts shared/types.ts
    python cli.py deploy --branch dev frontend/admin/app.tsx
"""

import asyncio
import os
import shutil
import sys

import click
from rich.console import Console
from rich.table import Table

from audit.logger import configure_logging
from core.config import Settings
from core.errors import ConfigurationError, RunInProgress
from core.lock import RunLock, pid_alive
from core.registry import ComponentRegistry
from core.runtime import DispatchRuntime
from display.live import LiveDisplay
from main import serve as serve_server
from schemas.event import CommitChanges, InboundEvent
from schemas.plan import DeploymentPlan
from schemas.result import DispatchOutcome, DispatchStatus

console = Console()


def _event_for(branch: str, paths: tuple[str, ...]) -> InboundEvent:
    """Wrap local paths in the same event shape a push webhook produces."""
    return InboundEvent(
        ref=f"refs/heads/{branch}",
        commits=[CommitChanges(modified=list(paths))],
        pusher=os.environ.get("USER"),
    )


# ── Tables ────────────────────────────────────────────────────────────────────

def _print_plan(plan: DeploymentPlan) -> None:
    if plan.is_empty:
        console.print("\n[yellow]No deployment needed — no component matches these paths.[/yellow]\n")
        return

    table = Table(title="Deployment Plan", show_lines=True, border_style="bright_black")
    table.add_column("#",           style="dim",  width=3, justify="right")
    table.add_column("Component",   style="bold", min_width=18)
    table.add_column("Priority",    width=9,      justify="center")
    table.add_column("Halts",       width=6,      justify="center")
    table.add_column("Triggered by", style="dim", min_width=24)

    for i, c in enumerate(plan.components, 1):
        table.add_row(
            str(i),
            c.name,
            str(c.priority),
            "[red]yes[/red]" if c.halts_on_failure else "",
            "\n".join(c.triggered_by) or "(dependency)",
        )

    console.print()
    console.print(table)


def _print_outcome(outcome: DispatchOutcome) -> None:
    """Render the per-component result table and the overall verdict."""
    run = outcome.run
    if run is not None:
        table = Table(title="Results", show_lines=True, border_style="bright_black")
        table.add_column("Component", style="bold", min_width=18)
        table.add_column("Outcome",   width=11, justify="center")
        table.add_column("Time",      width=8,  justify="right")
        table.add_column("Message",   style="dim", max_width=60)

        for r in run.results:
            color = "green" if r.success else "red"
            last_line = r.message.splitlines()[-1] if r.message else ""
            table.add_row(
                r.component,
                f"[{color}]{r.outcome.value}[/{color}]",
                f"{r.duration_seconds:.1f}s",
                last_line,
            )
        for name in run.skipped:
            table.add_row(name, "[dim]skipped[/dim]", "", f"halted by {run.halted_by}")

        console.print()
        console.print(table)

    verdict = {
        DispatchStatus.SUCCEEDED:  "[bold green]✓  {}[/bold green]",
        DispatchStatus.FAILED:     "[bold red]✗  {}[/bold red]",
        DispatchStatus.IGNORED:    "[yellow]–  {}[/yellow]",
        DispatchStatus.NO_CHANGES: "[yellow]–  {}[/yellow]",
    }[outcome.status]
    console.print(f"\n{verdict.format(outcome.message)}")
    if run is not None:
        console.print(f"[dim]run: {run.run_id}[/dim]\n")


# ── Commands ──────────────────────────────────────────────────────────────────

@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Ignis deploy dispatcher."""
    try:
        ctx.obj = Settings.from_env()
    except ConfigurationError as exc:
        raise click.ClickException(str(exc))


@cli.command()
@click.argument("paths", nargs=-1, required=True)
@click.option("--branch", "-b", default="main", show_default=True, help="Branch the change targets.")
@click.pass_obj
def plan(settings: Settings, paths: tuple[str, ...], branch: str) -> None:
    """Show the deployment plan for a set of changed PATHS."""
    runtime = DispatchRuntime(settings)
    branch, environment, resolved = runtime.plan(_event_for(branch, paths))

    console.rule("[bold]Ignis dispatcher[/bold]")
    console.print(f"  branch       [cyan]{branch}[/cyan]")
    console.print(f"  environment  [cyan]{environment or 'ignored (not in allow-list)'}[/cyan]")
    _print_plan(resolved)


@cli.command()
@click.argument("paths", nargs=-1, required=True)
@click.option("--branch", "-b", required=True, help="Branch to deploy; must be in BRANCH_ENVIRONMENTS.")
@click.pass_obj
def deploy(settings: Settings, paths: tuple[str, ...], branch: str) -> None:
    """Resolve PATHS and run the deployment locally."""
    runtime = DispatchRuntime(settings)
    event = _event_for(branch, paths)
    _, environment, resolved = runtime.plan(event)

    console.rule("[bold]Ignis dispatcher[/bold]")
    console.print(f"  branch       [cyan]{branch}[/cyan]")
    console.print(f"  environment  [cyan]{environment or 'ignored'}[/cyan]")
    console.print(f"  components   [cyan]{len(resolved)} planned[/cyan]")
    console.print()

    # Runs started by hand are audited like webhook runs, without console noise.
    configure_logging(settings.log_dir, console=False)

    lock = RunLock(settings.lock_file)
    if not lock.acquire():
        raise click.ClickException(
            f"Another dispatcher instance is running (pid {lock.owner_pid()})."
        )
    try:
        outcome = asyncio.run(_run_with_display(runtime, event, resolved.names))
    except RunInProgress as exc:
        raise click.ClickException(str(exc))
    finally:
        lock.release()

    _print_outcome(outcome)
    if outcome.status == DispatchStatus.FAILED:
        sys.exit(1)


async def _run_with_display(
    runtime: DispatchRuntime, event: InboundEvent, components: list[str],
) -> DispatchOutcome:
    display = LiveDisplay(components)
    event_queue: asyncio.Queue = asyncio.Queue()

    with display.make_live() as live:
        pipeline = asyncio.create_task(runtime.dispatch(event, event_queue=event_queue))
        consumer = asyncio.create_task(display.consume(event_queue, live))
        try:
            return await pipeline
        finally:
            await event_queue.put(None)   # sentinel: tell consumer to stop
            await consumer


@cli.command()
@click.pass_obj
def check(settings: Settings) -> None:
    """Diagnose configuration, deploy command, log directory and run lock."""
    problems = 0

    def report(ok: bool, message: str) -> None:
        nonlocal problems
        if ok:
            console.print(f"[green]✓[/green] {message}")
        else:
            problems += 1
            console.print(f"[red]✗[/red] {message}")

    console.rule("[bold]Ignis dispatcher — diagnostics[/bold]")
    report(bool(settings.webhook_secret), "WEBHOOK_SECRET is set")

    executable = settings.deploy_command[0]
    report(shutil.which(executable) is not None, f"Deploy command '{executable}' is on PATH")
    for arg in settings.deploy_command[1:]:
        if arg.endswith(".sh"):
            report(os.path.isfile(arg), f"Deploy script {arg} exists")

    if settings.deploy_workdir is not None:
        report(settings.deploy_workdir.is_dir(), f"Deploy workdir {settings.deploy_workdir} exists")

    log_parent = settings.log_dir if settings.log_dir.exists() else settings.log_dir.parent
    report(os.access(log_parent, os.W_OK), f"Log directory {settings.log_dir} is writable")

    owner = RunLock(settings.lock_file).owner_pid()
    if owner is None:
        report(True, f"No run lock at {settings.lock_file}")
    elif pid_alive(owner):
        console.print(f"[yellow]●[/yellow] Dispatcher running (pid {owner}, lock {settings.lock_file})")
    else:
        report(False, f"Stale run lock {settings.lock_file} (pid {owner} not running; reclaimed on start)")

    branches = ", ".join(f"{b}→{e}" for b, e in settings.branch_environments.items())
    console.print(f"[dim]branches: {branches}[/dim]")
    console.print(f"[dim]components: {', '.join(ComponentRegistry.default().components())}[/dim]")
    console.print(f"[dim]listen: {settings.host}:{settings.port}, timeout {settings.deployment_timeout:g}s[/dim]")

    if problems:
        console.print(f"\n[bold red]{problems} problem(s) found.[/bold red]")
        sys.exit(1)
    console.print("\n[bold green]All checks passed.[/bold green]")


@cli.command()
@click.pass_obj
def serve(settings: Settings) -> None:
    """Start the webhook server."""
    sys.exit(serve_server(settings))


if __name__ == "__main__":
    cli()
