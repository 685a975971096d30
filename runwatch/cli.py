"""Runwatch CLI - register test cases, run them, and serve the dashboard.

The ``run`` command drives a test through the same supervisor the dashboard
uses, printing live events to the terminal instead of a WebSocket.
"""

import asyncio
import json
import sys
from pathlib import Path
from types import ModuleType

import click

from runwatch.archive import LocalBlobStore, ScreenshotArchiver
from runwatch.broadcast import ConsoleBroadcaster
from runwatch.errors import RunwatchError
from runwatch.models import RunStatus, TestRun
from runwatch.notifications import NotificationService
from runwatch.store import RunStore
from runwatch.supervisor import Supervisor
from runwatch.tracker import initial_steps
from runwatch.version import __version__


def _config() -> ModuleType:
    # Imported lazily so `runwatch --help` does not configure the dashboard
    from dashboard import config

    return config


@click.group()
@click.version_option(version=__version__, prog_name="runwatch")
@click.option(
    "--db",
    "db_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Document store path (default: RUNWATCH_DB_PATH).",
)
@click.pass_context
def cli(ctx: click.Context, db_path: Path | None) -> None:
    """Runwatch - supervise browser-automation test runs.

    Test scripts report progress as framed JSON events on stdout; Runwatch
    records step results and failure screenshots for each test case.
    """
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db_path or _config().DB_PATH


def _open_store(ctx: click.Context) -> RunStore:
    try:
        return RunStore(ctx.obj["db_path"])
    except RunwatchError as e:
        raise click.ClickException(f"{e.message}: {e.detail}") from e


@cli.command()
@click.argument("test_id")
@click.option("--script", "script_path", required=True, help="Script path relative to the scripts directory.")
@click.option("--step", "steps", multiple=True, help="Step name, in order. Repeat for each step.")
@click.option("--url", "test_url", default=None, help="Target URL passed to the test as TARGET_URL.")
@click.option("--name", default="", help="Display name of the test case.")
@click.pass_context
def register(
    ctx: click.Context,
    test_id: str,
    script_path: str,
    steps: tuple[str, ...],
    test_url: str | None,
    name: str,
) -> None:
    """Create or replace the test case TEST_ID."""
    store = _open_store(ctx)
    run = TestRun(
        id=test_id,
        name=name or test_id,
        status=RunStatus.PENDING,
        steps=initial_steps(list(steps)),
        script_path=script_path,
        template_steps=list(steps) or None,
        test_url=test_url,
    )
    store.upsert_test_case(run)
    click.echo(f"Registered {test_id} with {len(steps)} steps")


@cli.command()
@click.argument("test_id")
@click.pass_context
def show(ctx: click.Context, test_id: str) -> None:
    """Print the stored state of TEST_ID as JSON."""
    store = _open_store(ctx)
    try:
        run = store.get_test_case(test_id)
    except RunwatchError as e:
        raise click.ClickException(e.message) from e
    click.echo(json.dumps(run.to_dict(), indent=2, ensure_ascii=False))


@cli.command()
@click.argument("test_id")
@click.option("--verbose", "-v", is_flag=True, help="Print every raw event.")
@click.option(
    "--scripts-dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Directory containing test scripts (default: RUNWATCH_SCRIPTS_DIR).",
)
@click.pass_context
def run(ctx: click.Context, test_id: str, verbose: bool, scripts_dir: Path | None) -> None:
    """Run TEST_ID in the foreground and print its final state."""
    config = _config()
    config.setup_logging(log_file=None)
    store = _open_store(ctx)
    blob_store = LocalBlobStore(config.BLOB_DIR, config.BLOB_PUBLIC_URL, store=store)
    if not blob_store.check():
        raise click.ClickException(f"Blob directory not writable: {config.BLOB_DIR}")

    supervisor = Supervisor(
        store=store,
        archiver=ScreenshotArchiver(blob_store),
        scripts_dir=scripts_dir or config.SCRIPTS_DIR,
        broadcaster=ConsoleBroadcaster(verbose=verbose),
        notifier=NotificationService(store),
        runner_command=config.RUNNER_COMMAND,
    )

    async def _run() -> int | None:
        await supervisor.start(test_id)
        return await supervisor.wait(test_id)

    try:
        code = asyncio.run(_run())
        final = store.get_test_case(test_id)
    except RunwatchError as e:
        raise click.ClickException(e.message) from e

    click.echo(json.dumps(final.to_dict(), indent=2, ensure_ascii=False))
    click.echo(f"Exit code: {code}", err=True)
    if final.status != RunStatus.COMPLETED:
        sys.exit(1)


@cli.command()
@click.option("--host", default=None, help="Bind address (default: RUNWATCH_HOST).")
@click.option("--port", type=int, default=None, help="Port (default: RUNWATCH_PORT).")
@click.option("--reload", is_flag=True, help="Reload on code changes.")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Serve the dashboard API and WebSocket channel."""
    import uvicorn

    config = _config()
    uvicorn.run(
        "dashboard.app:app",
        host=host or config.HOST,
        port=port or config.PORT,
        reload=reload,
    )


def main() -> None:
    """Entry point for the runwatch CLI."""
    cli()


if __name__ == "__main__":
    main()
