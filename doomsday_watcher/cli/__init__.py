"""
Command Line Interface for Doomsday Watcher.
"""

import asyncio
import logging
from typing import Optional

import typer
import uvicorn
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import get_settings
from ..core.enums import LifecycleAction
from ..db.base import DatabaseBootstrap, get_session_local
from ..db.services import WatcherService
from ..errors import WatcherError
from ..lifecycle import CandidateLifecycleController
from ..workflow import ExecutionStreamTranslator, SubscriptionTracker, WorkflowClient

app = typer.Typer(help="Doomsday Watcher - dead-code observation and removal")
console = Console()

STATE_STYLE = {
    "SUCCESS": "green",
    "FAILED": "red",
    "KILLED": "red",
    "RUNNING": "yellow",
}


def _fail(exc: WatcherError) -> None:
    console.print(f"[red]{exc.code}[/red] {exc.message}")
    raise typer.Exit(code=1)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Host to bind the server to"),
    port: Optional[int] = typer.Option(None, help="Port to run the API server on"),
    reload: bool = typer.Option(False, help="Reload on code changes"),
):
    """Run the HTTP API."""
    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    rprint(Panel.fit(f"Starting Doomsday Watcher on http://{host}:{port}", style="bold blue"))
    uvicorn.run(
        "doomsday_watcher.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


@app.command("init-db")
def init_db():
    """Create the database schema if it does not exist."""
    bootstrap = DatabaseBootstrap()
    if not bootstrap.ensure_initialized():
        console.print("❌ Database is not reachable")
        raise typer.Exit(code=1)
    console.print("✅ Database initialized")


@app.command()
def watchers(user: str = typer.Option(..., "--user", help="Owner user id")):
    """List a user's watchers."""
    db = get_session_local()()
    try:
        rows = WatcherService(db).list_for_user(user)
    finally:
        db.close()

    if not rows:
        console.print("No watchers")
        return

    table = Table(title="Watchers", show_header=True, header_style="bold magenta")
    table.add_column("Watcher", style="cyan")
    table.add_column("Repository")
    table.add_column("Status", style="green")
    table.add_column("Candidates", justify="right")
    table.add_column("Active", justify="right")
    table.add_column("Confidence", justify="right")
    for row in rows:
        table.add_row(
            row["watcher_name"],
            row["repo_name"],
            row["status"],
            str(row["total_candidates"]),
            str(row["active_candidates"]),
            f"{row['confidence']}%",
        )
    console.print(table)


@app.command()
def schedule(
    candidate_id: int = typer.Argument(..., help="Candidate id"),
    user: str = typer.Option(..., "--user", help="Caller user id"),
    action: LifecycleAction = typer.Option(LifecycleAction.SCHEDULE, help="Lifecycle action"),
    frequency: Optional[float] = typer.Option(None, help="Scan frequency in minutes"),
    period: Optional[float] = typer.Option(None, help="Analysis period in minutes"),
    reason: Optional[str] = typer.Option(None, help="Pause or opt-out reason"),
):
    """Schedule, pause, resume or opt out one candidate."""
    db = get_session_local()()
    try:
        candidate = CandidateLifecycleController(db).apply(
            action,
            candidate_id,
            user,
            scan_frequency_minutes=frequency,
            analysis_period_minutes=period,
            reason=reason,
        )
        console.print(f"✅ Candidate {candidate_id} is now [bold]{candidate.status}[/bold]")
        if candidate.next_observation_at:
            console.print(f"   next observation: {candidate.next_observation_at.isoformat()}")
        if candidate.observation_end_at:
            console.print(f"   window ends:      {candidate.observation_end_at.isoformat()}")
    except WatcherError as exc:
        _fail(exc)
    finally:
        db.close()


@app.command()
def watch(execution_id: str = typer.Argument(..., help="Workflow execution id")):
    """Follow a workflow execution until it finishes."""
    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    async def follow() -> str:
        tracker = SubscriptionTracker()
        async with WorkflowClient() as client:
            translator = ExecutionStreamTranslator(client.fetch_execution)
            async for update in translator.stream(execution_id):
                if tracker.terminal is not None:
                    # Terminal updates are sent twice
                    continue
                tracker.record(update)
                style = STATE_STYLE.get(update.state, "white")
                line = (
                    f"[{style}]{update.state:<8}[/{style}] "
                    f"step {update.step_index}/{update.total_steps} {update.step or '-'}"
                )
                if update.candidates_found is not None:
                    line += f" ({update.candidates_found} candidates)"
                console.print(line)
                if update.error:
                    console.print(f"[red]{update.error}[/red]")
        return tracker.outcome()

    try:
        outcome = asyncio.run(follow())
    except WatcherError as exc:
        _fail(exc)
    except KeyboardInterrupt:
        console.print("\n🛑 Stopped watching")
        raise typer.Exit(code=130)

    if outcome != SubscriptionTracker.SUCCESS:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
