"""Typer CLI for pdd."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from pdd.config.arguments import check_inputs_exist, parse_operations
from pdd.config.loader import load_job_config, load_settings
from pdd.config.models import EngineSettings, OperationConfig, OverflowPolicy
from pdd.engine.result import OperationStatus
from pdd.observability.logs import configure_logging
from pdd.pipeline.sequencer import SequenceResult, Sequencer

console = Console(stderr=True)
app = typer.Typer(
    name="pdd",
    help="Copy an input block by block to many files, sockets and HTTP endpoints.",
    no_args_is_help=True,
)

_STATUS_STYLE = {
    OperationStatus.COMPLETED: "green",
    OperationStatus.DEGRADED: "yellow",
    OperationStatus.FAILED: "red",
    OperationStatus.CANCELLED: "magenta",
    OperationStatus.SKIPPED: "dim",
}


def _with_overrides(settings: EngineSettings, **overrides: Any) -> EngineSettings:
    updates = {k: v for k, v in overrides.items() if v is not None}
    if not updates:
        return settings
    try:
        return EngineSettings.model_validate({**settings.model_dump(), **updates})
    except ValidationError as exc:
        console.print(f"[red]Invalid option:[/red] {exc}")
        raise typer.Exit(1) from exc


def _print_operations(operations: list[OperationConfig]) -> None:
    for i, op in enumerate(operations):
        count = op.block_count or "all"
        redirected = " [dim](redirected)[/dim]" if op.is_redirected else ""
        console.print(
            f"  [cyan]#{i}[/cyan] {op.input_path}{redirected}  bs={op.block_size} "
            f"count={count}"
        )
        for s in op.sinks:
            console.print(f"      → {s.sink_id}: {s.describe()}")


def _render(outcome: SequenceResult) -> None:
    table = Table(title="pdd summary")
    table.add_column("#", style="cyan")
    table.add_column("Input")
    table.add_column("Status")
    table.add_column("Blocks", justify="right")
    table.add_column("Bytes", justify="right")
    table.add_column("Sinks ok", justify="right")

    for r in outcome.operations:
        style = _STATUS_STYLE[r.status]
        table.add_row(
            str(r.index),
            r.input_path,
            f"[{style}]{r.status}[/{style}]",
            str(r.blocks_delivered),
            str(r.bytes_read),
            f"{r.sinks_ok}/{len(r.sinks)}",
        )
    console.print(table)

    for r in outcome.operations:
        if r.error:
            console.print(f"[red]#{r.index} {r.input_path}:[/red] {r.error}")
        for s in r.sinks:
            # Sinks of an operation that never reached them add nothing here.
            if s.ok or not (s.opened or s.failed_at_open):
                continue
            detail = s.error or ""
            if s.failed_at_open:
                detail = f"failed to open — {detail}"
            if s.dropped_blocks:
                detail = f"{detail} {s.dropped_blocks} block(s) dropped".strip()
            console.print(
                f"  [yellow]#{r.index} {s.sink_id}[/yellow] ({s.description}): "
                f"{s.blocks_written} blocks written, {detail}"
            )


def _execute(
    operations: list[OperationConfig], settings: EngineSettings, strict: bool
) -> None:
    configure_logging(settings.log_level, settings.log_format)
    outcome = Sequencer(operations, settings).run()
    _render(outcome)
    code = outcome.exit_code(strict=strict)
    if code:
        raise typer.Exit(code)


@app.command(context_settings={"ignore_unknown_options": True})
def copy(
    tokens: list[str] = typer.Argument(
        ...,
        help="if=PATH of=PATH os=HOST:PORT ohttp=METHOD;URL bs=N count=N redir=1, "
        "operations separated by '--'",
    ),
    settings_path: str | None = typer.Option(
        None, "--settings", help="Settings YAML"
    ),
    concurrent: bool | None = typer.Option(
        None, "--concurrent/--sequential", help="Run operations concurrently"
    ),
    drop: bool = typer.Option(
        False, "--drop", help="Drop blocks for lagging sinks instead of waiting"
    ),
    queue_depth: int | None = typer.Option(
        None, "--queue-depth", min=1, help="Blocks buffered per sink"
    ),
    strict: bool = typer.Option(
        False, "--strict", help="Exit non-zero unless every sink got every block"
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Log level"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Log as JSON"),
) -> None:
    """Copy inputs to outputs using dd-style key=value arguments.

    Put '--' before the first token so options are not parsed from it:

        pdd copy -- if=disk.img of=a.img os=backup:9000 -- if=b.log of=b.copy
    """
    try:
        operations = parse_operations(tokens)
        check_inputs_exist(operations)
        settings = load_settings(settings_path)
    except (ValueError, FileNotFoundError, TypeError) as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1) from exc

    settings = _with_overrides(
        settings,
        concurrent_operations=concurrent,
        overflow_policy=OverflowPolicy.DROP if drop else None,
        max_buffered_blocks=queue_depth,
        log_level=log_level,
        log_format="json" if json_logs else None,
    )
    _execute(operations, settings, strict)


@app.command()
def run(
    config_path: str = typer.Argument(..., help="Path to job YAML"),
    strict: bool = typer.Option(
        False, "--strict", help="Exit non-zero unless every sink got every block"
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Log level"),
) -> None:
    """Run every operation of a job file."""
    path = Path(config_path)
    if not path.exists():
        console.print(f"[red]Config file not found: {path}[/red]")
        raise typer.Exit(1)
    try:
        job = load_job_config(path)
    except (ValueError, TypeError) as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1) from exc

    console.print(f"[yellow]Running {len(job.operations)} operation(s)[/yellow]")
    _print_operations(job.operations)
    settings = _with_overrides(job.settings, log_level=log_level)
    _execute(job.operations, settings, strict)


@app.command()
def validate(
    config_path: str = typer.Argument(..., help="Path to job YAML"),
) -> None:
    """Validate a job file without running it."""
    try:
        job = load_job_config(config_path)
    except Exception as exc:
        console.print(f"[red]Validation error:[/red] {exc}")
        raise typer.Exit(1) from exc

    console.print(f"[green]Valid[/green] — {len(job.operations)} operation(s)")
    _print_operations(job.operations)
    s = job.settings
    console.print(
        f"  settings: queue={s.max_buffered_blocks} overflow={s.overflow_policy} "
        f"concurrent={s.concurrent_operations}"
    )


if __name__ == "__main__":
    app()
