#!/usr/bin/env python3
"""
Check connectivity to log collectors.

Reads LOGRELAY_* settings from the environment (and .env), optionally adds
destinations given on the command line, and sends one test record to each.
Circuit breakers and health counters are not affected.

Usage:
    python tools/check_destinations.py
    python tools/check_destinations.py --destination backup=https://logs2.example.com/ingest
"""

import argparse
import asyncio
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

sys.path.insert(0, str(Path(__file__).parent.parent))

from logrelay import Destination, RemoteLogPipeline, from_env  # noqa: E402

load_dotenv()

console = Console()


def parse_destination(value: str) -> Destination:
    """Parse NAME=URL into a Destination."""
    name, sep, endpoint = value.partition("=")
    if not sep:
        raise argparse.ArgumentTypeError(f"Expected NAME=URL, got {value!r}")
    return Destination(name=name, endpoint=endpoint, credential=os.getenv("LOGRELAY_TOKEN") or None)


def build_pipeline(extra: list[Destination]) -> RemoteLogPipeline:
    destinations = list(extra)
    if os.getenv("LOGRELAY_ENDPOINT"):
        config = from_env(flush_interval=None)
        destinations = list(config.destinations) + destinations
    return RemoteLogPipeline(destinations=destinations, flush_interval=None)


def display_results(pipeline: RemoteLogPipeline, results: dict[str, bool]):
    """Display probe results in a formatted table"""
    table = Table(title="Destination Connectivity", show_header=True)
    table.add_column("Destination", style="cyan")
    table.add_column("Endpoint", style="blue")
    table.add_column("Status", style="magenta")

    for destination in pipeline.get_destinations():
        status = "✅ OK" if results.get(destination.name) else "❌ Failed"
        table.add_row(destination.name, destination.endpoint, status)

    console.print(table)


async def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Probe logrelay destinations")
    parser.add_argument(
        "--destination",
        action="append",
        type=parse_destination,
        default=[],
        help="Extra destination as NAME=URL (repeatable)",
    )
    args = parser.parse_args(argv)

    pipeline = build_pipeline(args.destination)
    if not pipeline.get_destinations():
        await pipeline.shutdown()
        console.print("[red]No destinations configured. Set LOGRELAY_ENDPOINT or pass --destination.[/red]")
        return 2

    console.print(f"[bold]Testing {len(pipeline.get_destinations())} destinations...[/bold]")
    try:
        results = await pipeline.test_all_connections()
    finally:
        await pipeline.shutdown()

    display_results(pipeline, results)

    failed = [name for name, ok in results.items() if not ok]
    if failed:
        console.print(f"[red]❌ {len(failed)}/{len(results)} destinations unreachable: {', '.join(failed)}[/red]")
        return 1
    console.print(f"[green]✅ All {len(results)} destinations are responding[/green]")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        console.print("\n[yellow]Check interrupted by user[/yellow]")
        sys.exit(130)
