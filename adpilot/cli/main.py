"""adpilot CLI — run cycles, review the approval queue, inspect what was learned.

`adpilot run` runs one pipeline cycle, `adpilot pending` lists actions
waiting for a human, `adpilot approve/reject` is the approval front
door, `adpilot daemon` runs every schedule in the foreground.
"""

from __future__ import annotations

import asyncio
import logging

import typer
from rich.console import Console
from rich.table import Table

from adpilot import __version__
from adpilot.config import settings
from adpilot.exceptions import AdpilotError

console = Console()

app = typer.Typer(
    name="adpilot",
    help="adpilot -- adaptive ad-campaign operations pipeline.",
    no_args_is_help=True,
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("version")
def version():
    """Show the installed version."""
    console.print(f"adpilot {__version__}")


@app.command("run")
def run():
    """Run one pipeline cycle now."""
    from adpilot.cli.context import PilotContext, run_async

    ctx = PilotContext.get()
    result = run_async(ctx.run_cycle())
    snap = result.snapshot

    if not result.ok:
        console.print(f"[red]Cycle {snap.id} failed[/red]: {'; '.join(snap.errors)}")
        raise typer.Exit(code=1)

    console.print(f"[green]Cycle {snap.id} completed[/green] ({snap.decision_strategy or 'no decisions'})")
    counts = ", ".join(f"{k}={v}" for k, v in snap.counts.items())
    console.print(f"[dim]{counts}[/dim]")

    if result.actions:
        table = Table(title="Actions")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Entity")
        table.add_column("Action")
        table.add_column("Status")
        table.add_column("Reason", style="dim")
        for a in result.actions:
            table.add_row(a.id, a.entity_name or a.entity_id, a.describe(), _status(a.status.value), a.reason[:80])
        console.print(table)
    for alert in snap.alerts:
        console.print(f"[yellow]alert[/yellow] {alert}")
    for err in snap.errors:
        console.print(f"[red]error[/red] {err}")


@app.command("pending")
def pending(
    failed: bool = typer.Option(False, "--failed", help="Show failed executions instead"),
):
    """List actions waiting for approval."""
    from adpilot.cli.context import PilotContext, run_async

    ctx = PilotContext.get()

    async def _list():
        await ctx.ensure_workspace()
        return await (ctx.desk.failed() if failed else ctx.desk.pending())

    actions = run_async(_list())
    if not actions:
        console.print("[dim]Nothing waiting.[/dim]")
        return

    table = Table(title="Failed executions" if failed else "Pending approval")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Created", style="dim", no_wrap=True)
    table.add_column("Entity")
    table.add_column("Label")
    table.add_column("Action")
    table.add_column("Reason" if not failed else "Error")
    for a in actions:
        table.add_row(
            a.id,
            a.created_at.strftime("%Y-%m-%d %H:%M"),
            a.entity_name or a.entity_id,
            a.label.value if a.label else "-",
            a.describe(),
            (a.last_error if failed else a.reason)[:100],
        )
    console.print(table)


@app.command("approve")
def approve(
    action_id: str = typer.Argument(help="Action ID"),
    reviewer: str = typer.Option("cli", "--reviewer", "-r"),
    note: str = typer.Option("", "--note", "-m"),
    execute: bool = typer.Option(True, "--execute/--no-execute", help="Execute right away"),
):
    """Approve a pending action."""
    from adpilot.cli.context import PilotContext, run_async

    ctx = PilotContext.get()

    async def _approve():
        await ctx.ensure_workspace()
        return await ctx.desk.approve(
            action_id, reviewer=reviewer, note=note,
            execute=execute and ctx.executor.configured,
        )

    try:
        action = run_async(_approve())
    except AdpilotError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    console.print(f"Action [cyan]{action.id}[/cyan] is now {_status(action.status.value)}")
    if action.last_error:
        console.print(f"[red]{action.last_error}[/red]")


@app.command("reject")
def reject(
    action_id: str = typer.Argument(help="Action ID"),
    reviewer: str = typer.Option("cli", "--reviewer", "-r"),
    note: str = typer.Option("", "--note", "-m", help="Why; reviewers' reasons are learned"),
):
    """Reject a pending action."""
    from adpilot.cli.context import PilotContext, run_async

    ctx = PilotContext.get()

    async def _reject():
        await ctx.ensure_workspace()
        return await ctx.desk.reject(action_id, reviewer=reviewer, note=note)

    try:
        action = run_async(_reject())
    except AdpilotError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    console.print(f"Action [cyan]{action.id}[/cyan] is now {_status(action.status.value)}")


@app.command("audit")
def audit():
    """Run the auditor once."""
    from adpilot.cli.context import PilotContext, run_async

    report = run_async(PilotContext.get().run_audit())

    table = Table(title=f"Audit {report.id}")
    table.add_column("Category", style="cyan")
    table.add_column("Checked", justify="right")
    table.add_column("Issues", justify="right")
    table.add_column("Accuracy", justify="right")
    for name, totals in (("screener", report.screener), ("decision", report.decision),
                         ("execution", report.execution)):
        acc = totals.accuracy
        table.add_row(name, str(totals.checked), str(totals.issues), f"{acc:.0%}" if acc is not None else "-")
    console.print(table)
    for f in report.findings:
        suggested = f" -> {f.suggested.value}" if f.suggested else ""
        console.print(f"  [yellow]{f.type.value}[/yellow] {f.entity_id}: {f.message}{suggested}")


@app.command("evolve")
def evolve(
    days: int = typer.Option(0, "--days", "-d", help="Lookback window (default from settings)"),
):
    """Review skill performance and apply evolution."""
    from adpilot.cli.context import PilotContext, run_async

    report = run_async(PilotContext.get().run_evolution(days=days or None))
    console.print(
        f"Reviewed {report.skills_reviewed} skills: "
        f"{len(report.disabled)} disabled, {len(report.demoted)} demoted, {len(report.proposals)} proposals"
    )
    for name in report.disabled:
        console.print(f"  [red]disabled[/red] {name}")
    for name in report.demoted:
        console.print(f"  [yellow]demoted[/yellow] {name}")
    for key in report.proposals:
        console.print(f"  [dim]proposal[/dim] {key}")


@app.command("decay")
def decay():
    """Decay stale knowledge."""
    from adpilot.cli.context import PilotContext, run_async

    report = run_async(PilotContext.get().run_decay())
    console.print(f"{report.examined} stale entries: {report.decayed} decayed, {report.archived} archived")


@app.command("skills")
def skills(
    all_: bool = typer.Option(False, "--all", "-a", help="Include disabled and archived"),
):
    """Show skills and how they are performing."""
    from adpilot.cli.context import PilotContext, run_async

    ctx = PilotContext.get()

    async def _report():
        ws = await ctx.ensure_workspace()
        return await ws.librarian.skill_report()

    rows = run_async(_report())
    if not all_:
        rows = [r for r in rows if r["enabled"] and not r["archived"]]

    table = Table(title="Skills")
    table.add_column("Name", style="cyan")
    table.add_column("Kind")
    table.add_column("v", justify="right")
    table.add_column("State")
    table.add_column("Triggered", justify="right")
    table.add_column("Correct/Wrong", justify="right")
    table.add_column("Accuracy", justify="right")
    for r in rows:
        state = "archived" if r["archived"] else ("on" if r["enabled"] else "[red]off[/red]")
        acc = r["accuracy"]
        table.add_row(
            r["name"], r["kind"], str(r["version"]), state, str(r["triggered"]),
            f"{r['correct']}/{r['wrong']}", f"{acc:.0%}" if acc is not None else "-",
        )
    console.print(table)


@app.command("knowledge")
def knowledge(
    limit: int = typer.Option(20, "--limit", "-n", help="Max entries"),
    priority: bool = typer.Option(False, "--priority", "-p", help="High-priority entries only"),
):
    """Show the knowledge base."""
    from adpilot.cli.context import PilotContext, run_async

    ctx = PilotContext.get()

    async def _list():
        ws = await ctx.ensure_workspace()
        return await ws.knowledge.list_entries(high_priority_only=priority, limit=limit)

    entries = run_async(_list())
    if not entries:
        console.print("[dim]No knowledge yet.[/dim]")
        return

    table = Table(title="Knowledge")
    table.add_column("Category", style="cyan", max_width=12)
    table.add_column("Conf", justify="right")
    table.add_column("Val", justify="right")
    table.add_column("Content")
    for e in entries:
        content = e.content[:120] + ("..." if len(e.content) > 120 else "")
        if e.high_priority:
            content = f"[bold]{content}[/bold]"
        table.add_row(e.category.value, f"{e.confidence:.2f}", str(e.validations), content)
    console.print(table)


@app.command("snapshots")
def snapshots(
    limit: int = typer.Option(10, "--limit", "-n", help="Max cycles"),
):
    """Show recent cycle snapshots."""
    from adpilot.cli.context import PilotContext, run_async

    ctx = PilotContext.get()

    async def _list():
        ws = await ctx.ensure_workspace()
        return await ws.snapshots.recent(limit=limit)

    rows = run_async(_list())
    if not rows:
        console.print("[dim]No cycles yet.[/dim]")
        return

    table = Table(title="Cycles")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Started", style="dim", no_wrap=True)
    table.add_column("Status")
    table.add_column("Phase")
    table.add_column("Entities", justify="right")
    table.add_column("Actions", justify="right")
    table.add_column("Decision")
    for s in rows:
        table.add_row(
            s.id,
            s.started_at.strftime("%Y-%m-%d %H:%M"),
            _status(s.status.value),
            s.last_phase.value if s.last_phase else "-",
            str(s.counts.get("entities", 0)),
            str(len(s.actions)),
            s.decision_strategy or "-",
        )
    console.print(table)


@app.command("daemon")
def daemon():
    """Run the cycle, audit, evolution and decay schedules until interrupted."""
    from adpilot.cli.context import PilotContext, run_async

    ctx = PilotContext.get()

    async def _serve():
        await ctx.ensure_workspace()
        scheduler = ctx.scheduler()
        await scheduler.start()
        console.print(f"[green]Running {len(scheduler.daemons)} schedules[/green] (Ctrl+C to stop)")
        try:
            await asyncio.Event().wait()
        finally:
            await scheduler.stop()

    try:
        run_async(_serve())
    except KeyboardInterrupt:
        console.print("[dim]Stopped.[/dim]")


def _status(value: str) -> str:
    colour = {
        "executed": "green", "completed": "green", "approved": "cyan",
        "pending": "yellow", "running": "yellow", "executing": "yellow",
        "failed": "red", "rejected": "red", "expired": "dim",
    }.get(value, "white")
    return f"[{colour}]{value}[/{colour}]"


if __name__ == "__main__":
    app()
