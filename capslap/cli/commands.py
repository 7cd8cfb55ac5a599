"""CLI commands for capslap.

The CLI is a thin consumer of the sidecar facade: it starts the core worker,
issues calls and renders progress. It never touches the wire format.
"""

import asyncio
import json
from typing import Any

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from capslap import __logo__, __version__
from capslap.cli.shared.logging_utils import configure_cli_logging
from capslap.config.access import get_config
from capslap.config.schema import SidecarConfig
from capslap.sidecar import ProcessSupervisor, ProgressEvent, Sidecar
from capslap.sidecar.core.retry import RetryPolicy, with_retry
from capslap.sidecar.core.types import (
    SidecarApplicationError,
    SidecarError,
    SidecarTerminatedError,
    SidecarTimeoutError,
)

app = typer.Typer(
    name="capslap",
    help=f"{__logo__} capslap - drive the core worker from the command line",
    no_args_is_help=True,
)

console = Console()


def _sidecar_config(
    binary: str | None,
    worker_args: list[str] | None,
    *,
    capture_stderr: bool = True,
) -> SidecarConfig:
    config = get_config().sidecar.model_copy(deep=True)
    if not capture_stderr:
        # capslap logs are off, so let the worker write to the terminal directly
        config.stderr = "inherit"
    if binary:
        config.binary_path = binary
    if worker_args:
        config.args = list(worker_args)
    return config


def _parse_params(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"--params is not valid JSON: {e.msg}", param_hint="--params") from e


async def _run_call(
    config: SidecarConfig,
    method: str,
    params: Any,
    *,
    timeout: float | None,
    retries: int,
    show_progress: bool,
) -> Any:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
        disable=not show_progress,
    ) as progress:
        task_id = progress.add_task(method, total=1.0)

        def on_progress(event: ProgressEvent) -> None:
            progress.update(task_id, completed=event.fraction, description=event.status or method)

        async with Sidecar(config) as core:

            async def revive(exc: BaseException) -> None:
                if not core.running:
                    progress.update(task_id, completed=0, description=f"{method} (restarting worker)")
                    await core.start()

            policy = RetryPolicy(
                max_attempts=retries + 1,
                retry_on=(SidecarApplicationError, SidecarTimeoutError, SidecarTerminatedError),
            )
            return await with_retry(
                lambda: core.call(method, params, on_progress, timeout=timeout),
                policy,
                before_retry=revive,
            )


@app.command("call")
def call_command(
    method: str = typer.Argument(..., help="Worker method, e.g. transcribe"),
    params: str = typer.Option("{}", "--params", "-p", help="JSON params for the method"),
    binary: str | None = typer.Option(None, "--binary", "-b", help="Worker executable (overrides config)"),
    worker_args: list[str] | None = typer.Option(None, "--arg", help="Argument passed to the worker (repeatable)"),
    timeout: float | None = typer.Option(None, "--timeout", help="Give up after this many seconds"),
    retries: int = typer.Option(0, "--retries", min=0, help="Retry on worker errors, timeouts or a crashed worker"),
    progress: bool = typer.Option(True, "--progress/--no-progress", help="Show a progress bar"),
    logs: bool = typer.Option(False, "--logs/--no-logs", help="Show capslap runtime logs"),
    debug: bool = typer.Option(False, "--debug", "-d", help="Debug logging"),
):
    """Start the worker, call one method and print its result as JSON."""
    payload = _parse_params(params)
    cfg = get_config()
    configure_cli_logging(
        "call",
        logs=logs,
        debug=debug,
        level=cfg.logging.level,
        to_file=cfg.logging.file,
    )
    config = _sidecar_config(binary, worker_args, capture_stderr=logs or debug)
    try:
        result = asyncio.run(
            _run_call(
                config,
                method,
                payload,
                timeout=timeout,
                retries=retries,
                show_progress=progress,
            )
        )
    except SidecarError as e:
        console.print(f"[red]Error:[/red] {e.message} [dim]({e.code})[/dim]")
        raise typer.Exit(1)
    console.print_json(data=result)


@app.command("doctor")
def doctor_command(
    binary: str | None = typer.Option(None, "--binary", "-b", help="Worker executable (overrides config)"),
):
    """Show where the worker is looked for and whether it can be started."""
    report = ProcessSupervisor(_sidecar_config(binary, None)).requirements_report()
    table = Table(title="Sidecar Requirements")
    table.add_column("Check", style="cyan")
    table.add_column("Value")
    table.add_column("Status")
    paths = report["paths"]
    checks = report["checks"]
    table.add_row("binary", paths["binary"] or "(none)", "ok" if checks["binaryFound"] else "missing")
    table.add_row("executable", paths["binary"], "ok" if checks["binaryExecutable"] else "no")
    table.add_row("cwd", paths["cwd"] or "(inherit)", "ok" if checks["cwdExists"] else "missing")
    console.print(table)
    for candidate in paths["candidates"]:
        console.print(f"[dim]searched {candidate}[/dim]")
    for tip in report["suggestions"]:
        console.print(f"[yellow]•[/yellow] {tip}")
    if not checks["binaryFound"]:
        raise typer.Exit(1)


@app.command("version")
def version_command():
    """Show version."""
    console.print(f"{__logo__} capslap v{__version__}")


if __name__ == "__main__":
    app()
