# === NAVMAP v1 ===
# {
#   "module": "BlobFaultRepro.cli",
#   "purpose": "Typer entry point for the blob fault-injection harness.",
#   "sections": [
#     {
#       "id": "build-clients",
#       "name": "build_clients",
#       "anchor": "function-build-clients",
#       "kind": "function"
#     },
#     {
#       "id": "run",
#       "name": "run",
#       "anchor": "function-run",
#       "kind": "function"
#     },
#     {
#       "id": "strategies",
#       "name": "strategies",
#       "anchor": "function-strategies",
#       "kind": "function"
#     },
#     {
#       "id": "print-config",
#       "name": "print_config",
#       "anchor": "function-print-config",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Command line interface for the blob fault-injection harness.

Examples:
    $ blob-fault-repro run file 100
    $ blob-fault-repro run openRead --parallelism 4 --verbose
    $ blob-fault-repro strategies
    $ blob-fault-repro print-config
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from azure.storage.blob import BlobClient, ContainerClient
import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from BlobFaultRepro.errors import ConfigurationError
from BlobFaultRepro.logging_config import setup_logging
from BlobFaultRepro.settings import ReproSettings, load_settings, require
from BlobFaultRepro.strategies import (
    STRATEGY_DESCRIPTIONS,
    STRATEGY_RUNNERS,
    DownloadStrategy,
    client_options,
    resolve_strategy,
)
from BlobFaultRepro.transport import build_fault_injecting_transport
from BlobFaultRepro.verification import (
    DEFAULT_ITERATIONS,
    AttemptOutcome,
    VerificationSummary,
    ensure_container,
    prepare_work_dir,
    publish_reference,
    run_verification,
)

LOGGER = logging.getLogger(__name__)

app = typer.Typer(
    name="blob-fault-repro",
    help="Download a blob repeatedly through an HTTP fault injector and verify every byte.",
    no_args_is_help=True,
    add_completion=False,
)

console = Console()


def build_clients(
    settings: ReproSettings, strategy: DownloadStrategy
) -> Tuple[ContainerClient, BlobClient]:
    """Build the setup container client and the fault-injected download client.

    The container client talks to the service directly; it creates the
    container and uploads the reference blob. The returned blob client routes
    every request through the fault injector and is sized for ``strategy``.
    """
    http_trace = settings.log_level == "DEBUG"
    container = ContainerClient.from_connection_string(
        settings.connection_string,
        settings.container_name,
        logging_enable=http_trace,
    )
    transport = build_fault_injecting_transport(
        settings.fault_injector_endpoint(),
        connection_timeout=settings.connect_timeout_s,
        read_timeout=settings.read_timeout_s,
    )
    download_client = BlobClient.from_connection_string(
        settings.connection_string,
        settings.container_name,
        settings.blob_name,
        transport=transport,
        logging_enable=http_trace,
        **client_options(strategy),
    )
    return container, download_client


def _summary_table(strategy: DownloadStrategy, summary: VerificationSummary) -> Table:
    table = Table(title=f"Strategy: {strategy.value}")
    table.add_column("Outcome")
    table.add_column("Attempts", justify="right")
    counts = summary.counts
    for outcome in AttemptOutcome:
        table.add_row(outcome.value, str(counts.get(outcome, 0)))
    table.add_row("total", str(summary.total), style="bold")
    return table


@app.command()
def run(
    strategy_name: str = typer.Argument(
        DownloadStrategy.FILE.value,
        metavar="STRATEGY",
        help="Download strategy: file, stream, openRead, eagerRead or singleShot",
    ),
    iterations: int = typer.Argument(
        DEFAULT_ITERATIONS,
        metavar="ITERATIONS",
        help="Download attempts; values below 100 are raised to 100",
    ),
    parallelism: Optional[int] = typer.Option(
        None, "--parallelism", "-p", min=1, help="Concurrent attempts (default: CPU count)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log HTTP traffic at DEBUG"),
    log_json: Optional[bool] = typer.Option(
        None, "--log-json/--no-log-json", help="Write JSONL logs into the work directory"
    ),
) -> None:
    """Run the verification loop for one download strategy."""
    try:
        strategy = resolve_strategy(strategy_name)
        settings = require(
            load_settings(
                iterations=max(DEFAULT_ITERATIONS, iterations),
                parallelism=parallelism,
                log_level="DEBUG" if verbose else None,
                log_json=log_json,
            )
        )
    except ConfigurationError as exc:
        console.print(f"[bold red]Configuration error:[/] {escape(str(exc))}")
        raise typer.Exit(code=2) from exc

    work_dir = prepare_work_dir(settings.data_root, settings.work_dir_name)
    setup_logging(
        settings.log_level,
        log_file=work_dir / "blob-fault-repro.jsonl" if settings.log_json else None,
        http_trace=verbose,
    )
    LOGGER.info(
        "Running %s iterations of '%s' against %s/%s",
        settings.iterations,
        strategy.value,
        settings.container_name,
        settings.blob_name,
    )

    container, download_client = build_clients(settings, strategy)
    with container, download_client:
        ensure_container(container)
        reference = publish_reference(
            container.get_blob_client(settings.blob_name),
            work_dir,
            settings.reference_size,
        )
        console.print(Panel.fit(f"Real data is in file: {reference.path}", title="Reference"))
        summary = run_verification(
            download_client,
            STRATEGY_RUNNERS[strategy],
            reference,
            work_dir,
            iterations=settings.iterations,
            parallelism=settings.parallelism,
        )

    console.print(_summary_table(strategy, summary))
    for failure in summary.failures:
        console.print(
            f"[yellow]iteration {failure.iteration}[/]: {failure.outcome.value} "
            f"({escape(str(failure.error or failure.path))})"
        )


@app.command()
def strategies() -> None:
    """List the available download strategies."""
    table = Table(title="Download strategies")
    table.add_column("Name")
    table.add_column("Description")
    for strategy in DownloadStrategy:
        table.add_row(strategy.value, STRATEGY_DESCRIPTIONS[strategy])
    console.print(table)


@app.command("print-config")
def print_config() -> None:
    """Print the effective settings as JSON with secrets masked."""
    try:
        settings = load_settings()
    except ConfigurationError as exc:
        console.print(f"[bold red]Configuration error:[/] {escape(str(exc))}")
        raise typer.Exit(code=2) from exc
    typer.echo(settings.masked_dump())


def main() -> None:
    app()


if __name__ == "__main__":
    main()
