# inflight/cli.py
"""
CLI interface for inflight.

Thin presentation layer over the tools/ service layer.
Read commands open the shared SQLite database directly; `serve` runs the
HTTP API with the job executor, `mcp` runs the MCP stdio server.
"""

import asyncio

import typer

from inflight.config.loader import get_db_path, load_config

app = typer.Typer(
    name="inflight",
    help="Background AI jobs with resumable streams and busy-state tracking.",
    no_args_is_help=True,
)


def _run(coro):
    """Run async function from sync CLI context."""
    return asyncio.run(coro)


async def _open_stores():
    """Open the stores directly (no lifecycle needed for read-only ops)."""
    from inflight.models.sqlite_store import SQLiteJobStore
    from inflight.operations.active_operations import ActiveOperationIndex
    from inflight.streams.active_stream import ActiveStreamStore

    config = load_config()
    db_path = str(get_db_path())
    job_store = SQLiteJobStore(db_path)
    await job_store.initialize()
    stream_store = ActiveStreamStore(db_path, ttl_seconds=config.streams.ttl_seconds)
    operations = ActiveOperationIndex(db_path, ttl_seconds=config.operations.ttl_seconds)
    return config, job_store, stream_store, operations


def _state_color(state: str) -> str:
    """Return ANSI color for job state."""
    colors = {
        "completed": typer.colors.GREEN,
        "running": typer.colors.YELLOW,
        "queued": typer.colors.CYAN,
        "failed": typer.colors.RED,
    }
    return colors.get(state, typer.colors.WHITE)


@app.command()
def serve(
    host: str = typer.Option(None, "--host", help="Bind address (default from config)"),
    port: int = typer.Option(None, "--port", help="Bind port (default from config)"),
    log_level: str = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING or ERROR"),
    plain: bool = typer.Option(False, "--plain", help="Plain-text logs instead of JSON"),
):
    """Run the HTTP API and job executor. Ctrl+C to stop."""
    import uvicorn

    from inflight.api.app import create_app
    from inflight.background.lifecycle import ServerLifecycle
    from inflight.logging_config import configure_logging

    try:
        configure_logging(log_level, json_format=not plain)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    config = load_config()
    lifecycle = ServerLifecycle(str(get_db_path()), config=config)
    uvicorn.run(
        create_app(lifecycle),
        host=host or config.server.host,
        port=port or config.server.port,
        log_config=None,
    )


@app.command()
def mcp():
    """Start the MCP server on stdio."""
    from inflight.__main__ import main

    _run(main())


@app.command("list")
def list_jobs(
    job_type: str = typer.Option(None, "--type", "-t", help="Filter by job type"),
    status: str = typer.Option(None, "--status", "-s", help="Filter by status"),
):
    """List jobs, newest first."""
    from inflight.tools.list_jobs import list_jobs as _list_jobs

    async def _list():
        config, job_store, _, _ = await _open_stores()
        try:
            return await _list_jobs(
                job_store,
                job_type=job_type,
                status=status,
                max_running_seconds=config.jobs.max_running_seconds,
            )
        finally:
            await job_store.close()

    try:
        result = _run(_list())
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    jobs = result["jobs"]
    if not jobs:
        typer.echo("No jobs found.")
        return

    typer.echo(f"{'JOB ID':<14} {'STATUS':<11} {'TYPE':<24} {'TARGET':<20} CREATED")
    typer.echo("-" * 90)
    for j in jobs:
        state = j["status"]
        label = f"{state} (stale)" if j["stale"] else state
        typer.echo(
            typer.style(f"{j['job_id']:<14} {label:<11} ", fg=_state_color(state))
            + f"{j['type']:<24} {j['target_id'] or '-':<20} {j['created_at']}"
        )


@app.command()
def status(job_id: str = typer.Argument(..., help="Job ID to check")):
    """Show a job's status, result or error."""
    import json

    from inflight.tools.get_job import get_job

    async def _status():
        config, job_store, _, _ = await _open_stores()
        try:
            return await get_job(
                job_id, store=job_store, max_running_seconds=config.jobs.max_running_seconds
            )
        finally:
            await job_store.close()

    try:
        result = _run(_status())
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    state = result["status"]
    typer.echo(f"Job:      {result['job_id']}")
    typer.echo(f"Type:     {result['type']}")
    typer.echo(typer.style(f"Status:   {state}", fg=_state_color(state)))
    if result["stale"]:
        typer.echo(typer.style("Stale:    exceeded maximum running time", fg=typer.colors.RED))
    if result.get("target_id"):
        typer.echo(f"Target:   {result['target_id']}")
    if result.get("error"):
        typer.echo(typer.style(f"Error:    {result['error']}", fg=typer.colors.RED))
    if result.get("result") is not None:
        typer.echo("Result:")
        typer.echo(json.dumps(result["result"], indent=2))


@app.command()
def delete(job_id: str = typer.Argument(..., help="Job ID to delete")):
    """Delete (dismiss) a finished job."""
    from inflight.tools.delete_job import delete_job

    async def _delete():
        _, job_store, _, _ = await _open_stores()
        try:
            return await delete_job(job_id, store=job_store)
        finally:
            await job_store.close()

    try:
        result = _run(_delete())
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(f"Deleted job {result['job_id']}.")


@app.command()
def active(
    item_type: str = typer.Option(None, "--item-type", "-i", help="topic, challenge, goal or chat"),
):
    """List items that currently have a job running on them."""
    from rich.console import Console
    from rich.table import Table

    from inflight.tools.active_operations import list_active_operations

    async def _active():
        _, job_store, _, operations = await _open_stores()
        try:
            return await list_active_operations(operations, item_type=item_type)
        finally:
            await job_store.close()

    try:
        result = _run(_active())
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    if not result["operations"]:
        typer.echo("No active operations.")
        return

    table = Table("ITEM TYPE", "ITEM ID", "JOB ID", "STARTED")
    for op in result["operations"]:
        table.add_row(op["item_type"], op["item_id"], op["job_id"], op["started_at"])
    Console().print(table)


@app.command()
def watch(
    job_id: str = typer.Argument(..., help="Job ID to follow"),
    poll: float = typer.Option(None, "--poll", help="Poll interval in seconds"),
):
    """Follow a job's output until it finishes (safe to interrupt and re-run)."""
    from rich.console import Console

    from inflight.streaming.protocol import DeltaEvent, DoneEvent, ErrorEvent, resume_events
    from inflight.validation.sanitize import sanitize_job_id

    console = Console(stderr=True)

    async def _watch() -> int:
        config, job_store, stream_store, _ = await _open_stores()
        try:
            exit_code = 0
            async for event in resume_events(
                stream_store,
                job_store,
                sanitize_job_id(job_id),
                poll_interval=poll or config.streams.poll_interval,
                max_idle=config.jobs.max_running_seconds,
            ):
                if isinstance(event, DeltaEvent):
                    typer.echo(event.content, nl=False)
                elif isinstance(event, DoneEvent):
                    typer.echo("")
                    console.print(f"[green]Job {job_id} completed[/green]")
                elif isinstance(event, ErrorEvent):
                    typer.echo("")
                    console.print(f"[red]Job {job_id} failed: {event.message}[/red]")
                    exit_code = 1
            return exit_code
        finally:
            await job_store.close()

    try:
        code = _run(_watch())
    except KeyboardInterrupt:
        typer.echo("\nStopped watching (the job keeps running).", err=True)
        raise typer.Exit(130)
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    if code:
        raise typer.Exit(code)


if __name__ == "__main__":
    app()
