"""CLI entry point for realtime-bench."""

from __future__ import annotations

import asyncio
import logging
import sys

import click

from . import __version__
from .exceptions import BenchError

logger = logging.getLogger("realtime-bench")


# ── Helpers ──────────────────────────────────────────────


def _configure_logging(verbose: bool) -> None:
    """Diagnostics go to stderr; stdout is reserved for summary lines."""
    log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter(log_format, datefmt=date_format))

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, handlers=[console], force=True)
    for noisy in ("aiohttp", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


# ── CLI ──────────────────────────────────────────────────


@click.command()
@click.version_option(version=__version__, prog_name="realtime-bench")
@click.argument("endpoint", required=False)
@click.argument("api_key", required=False)
@click.argument("client_count", required=False)
@click.option("--config", "config_path", default=None, help="Config file path")
@click.option(
    "--backend",
    "backend_type",
    type=click.Choice(["supabase", "memory"]),
    default=None,
    help="Backend to drive (memory = in-process simulation)",
)
@click.option("--interval", type=float, default=None, help="Seconds between write ticks")
@click.option(
    "--report-interval", type=float, default=None, help="Seconds between summaries"
)
@click.option("--table", default=None, help="Table the clients upsert into")
@click.option("--schema", "schema_name", default=None, help="Database schema")
@click.option(
    "--per-client-connections/--shared-connection",
    default=None,
    help="Give every client its own connection and subscription",
)
@click.option(
    "--duration", type=float, default=None, help="Stop after N seconds (0 = never)"
)
@click.option(
    "--max-samples",
    type=int,
    default=None,
    help="Keep a random reservoir of N latency samples (0 = keep all)",
)
@click.option(
    "--echo-delay", type=float, default=None, help="Simulated echo delay in ms"
)
@click.option("-v", "--verbose", is_flag=True, help="Debug logging on stderr")
def main(
    endpoint: str | None,
    api_key: str | None,
    client_count: str | None,
    config_path: str | None,
    backend_type: str | None,
    interval: float | None,
    report_interval: float | None,
    table: str | None,
    schema_name: str | None,
    per_client_connections: bool | None,
    duration: float | None,
    max_samples: int | None,
    echo_delay: float | None,
    verbose: bool,
) -> None:
    """Measure write-to-notification round trips for N simulated clients.

    \b
    Example:
      realtime-bench http://192.168.0.50:8000 your_anon_key 1000
    """
    from .config import load_config, parse_client_count
    from .harness import run_bench

    _configure_logging(verbose)
    try:
        config = load_config(config_path)
    except BenchError as e:
        click.echo(f"Invalid configuration: {e}", err=True)
        sys.exit(1)

    if endpoint:
        config.backend.url = endpoint
    if api_key:
        config.backend.api_key = api_key
    if client_count is not None:
        config.run.client_count = parse_client_count(client_count)
    if backend_type:
        config.backend.type = backend_type
    if interval is not None:
        config.run.write_interval = interval
    if report_interval is not None:
        config.run.report_interval = report_interval
    if table:
        config.backend.table = table
    if schema_name:
        config.backend.schema_name = schema_name
    if per_client_connections is not None:
        config.run.per_client_connections = per_client_connections
    if duration is not None:
        config.run.duration = duration
    if max_samples is not None:
        config.run.max_samples = max_samples
    if echo_delay is not None:
        config.backend.echo_delay = echo_delay / 1000

    if config.backend.type == "supabase" and not (
        config.backend.url and config.backend.api_key
    ):
        raise click.UsageError("ENDPOINT and API_KEY are required")

    try:
        asyncio.run(run_bench(config))
    except BenchError as e:
        click.echo(f"Benchmark failed to start: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
