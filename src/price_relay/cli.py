"""Click-based CLI for price-relay.

Thin wrapper around the feed layer: every command builds a PriceAdapter
from config and delegates to it.
"""

from __future__ import annotations

import asyncio
import csv
import io
import json
import logging
import os
import time
from datetime import datetime
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

console = Console(stderr=True)

_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_async(coro):
    """Run an async coroutine from synchronous Click code."""
    return asyncio.run(coro)


def _load_config(ctx: click.Context):
    """Load config lazily, caching on first call."""
    if "config" not in ctx.obj:
        from price_relay.core import load_config

        ctx.obj["config"] = load_config(config_path=ctx.obj.get("config_path"))
    return ctx.obj["config"]


def _create_adapter(config):
    """Build the price adapter from config."""
    from price_relay.feed import create_price_adapter

    return create_price_adapter(config)


def _check_symbol(symbol: str) -> str:
    from price_relay.core import is_valid_symbol, normalize_symbol

    if not is_valid_symbol(symbol):
        raise click.BadParameter(
            f"{symbol!r} is not a ticker (expected 1-5 letters)", param_hint="SYMBOL"
        )
    return normalize_symbol(symbol)


def _signed(value: float) -> str:
    return f"{'+' if value >= 0 else ''}{value:.2f}"


def _write_or_echo(text: str, output: str | None) -> None:
    if output:
        Path(output).write_text(text)
        console.print(f"[green]✓[/green] Written to {output}")
    else:
        click.echo(text)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    envvar="PRICE_RELAY_CONFIG",
    default=None,
    help="Path to price-relay.yml config file.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable debug logging.",
)
@click.version_option(package_name="price-relay")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """price-relay: market quotes with multi-provider failover."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, format=_LOG_FORMAT)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["console"] = console


# ---------------------------------------------------------------------------
# quote
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("symbol")
@click.option("--provider", "-p", default=None, help="Only ask this provider (alpha|finnhub|yahoo).")
@click.option(
    "--period",
    type=click.Choice(["1W", "1M", "3M", "6M", "1Y"], case_sensitive=False),
    default=None,
    help="Sparkline history window.",
)
@click.option("--skip-cache", is_flag=True, default=False, help="Fetch fresh data.")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    help="Output format.",
)
@click.option("--output", "-o", type=click.Path(), default=None, help="Write JSON to a file.")
@click.pass_context
def quote(
    ctx: click.Context,
    symbol: str,
    provider: str | None,
    period: str | None,
    skip_cache: bool,
    output_format: str,
    output: str | None,
) -> None:
    """Show the current quote for SYMBOL."""
    from price_relay.core import PriceRelayError

    symbol = _check_symbol(symbol)

    async def _run():
        config = _load_config(ctx)
        async with _create_adapter(config) as adapter:
            return await adapter.get_price_data(
                symbol,
                period=period.upper() if period else None,
                force_provider=provider,
                skip_cache=skip_cache,
            )

    try:
        snapshot = _run_async(_run())
    except PriceRelayError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise SystemExit(1)

    if output_format == "json" or output:
        _write_or_echo(json.dumps(snapshot.model_dump(mode="json"), indent=2), output)
    else:
        _output_quote_table(snapshot)


def _output_quote_table(snapshot) -> None:
    table = Table(title=f"{snapshot.symbol} via {snapshot.provider}")
    table.add_column("Field", style="bold")
    table.add_column("Value", justify="right")

    colour = "green" if snapshot.change >= 0 else "red"
    table.add_row("Price", f"${snapshot.current:,.2f}")
    table.add_row(
        "Change",
        f"[{colour}]{_signed(snapshot.change)} ({_signed(snapshot.change_percent)}%)[/{colour}]",
    )
    table.add_row("Open", f"${snapshot.open:,.2f}")
    table.add_row("High", f"${snapshot.high:,.2f}")
    table.add_row("Low", f"${snapshot.low:,.2f}")
    table.add_row("Previous close", f"${snapshot.previous_close:,.2f}")
    table.add_row("Volume", f"{snapshot.volume:,}")
    if snapshot.market_cap:
        table.add_row("Market cap", f"${snapshot.market_cap:,.0f}")
    table.add_row("Updated", snapshot.last_updated.isoformat())
    console.print(table)

    if snapshot.fallback_used:
        console.print(f"[yellow]Fallback used: {snapshot.primary_error}[/yellow]")


# ---------------------------------------------------------------------------
# search
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("query")
@click.option("--limit", "-n", type=click.IntRange(min=1), default=None, help="Maximum results.")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    help="Output format.",
)
@click.pass_context
def search(ctx: click.Context, query: str, limit: int | None, output_format: str) -> None:
    """Search for symbols matching QUERY."""

    async def _run():
        config = _load_config(ctx)
        async with _create_adapter(config) as adapter:
            return await adapter.search(query, limit=limit)

    results = _run_async(_run())

    if output_format == "json":
        click.echo(json.dumps([r.model_dump() for r in results], indent=2))
        return

    if not results:
        console.print(f"[yellow]No matches for {query!r}.[/yellow]")
        return

    table = Table(title=f"Matches for {query!r}")
    table.add_column("Symbol", style="bold")
    table.add_column("Name")
    table.add_column("Provider")
    for r in results:
        table.add_row(r.symbol, r.name, r.provider)
    console.print(table)


# ---------------------------------------------------------------------------
# batch
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("symbols", nargs=-1, required=True)
@click.option("--provider", "-p", default=None, help="Only ask this provider.")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json", "csv"], case_sensitive=False),
    default="table",
    help="Output format.",
)
@click.option("--output", "-o", type=click.Path(), default=None, help="Write results to a file.")
@click.option(
    "--delay",
    type=float,
    default=0.2,
    show_default=True,
    help="Seconds to pause between symbols.",
)
@click.pass_context
def batch(
    ctx: click.Context,
    symbols: tuple[str, ...],
    provider: str | None,
    output_format: str,
    output: str | None,
    delay: float,
) -> None:
    """Fetch quotes for several SYMBOLS."""
    from price_relay.core import is_valid_symbol, normalize_symbol
    from price_relay.core.exceptions import PriceRelayError

    async def _run() -> list[dict]:
        config = _load_config(ctx)
        rows: list[dict] = []
        async with _create_adapter(config) as adapter:
            for i, raw in enumerate(symbols):
                symbol = normalize_symbol(raw)
                if i and delay > 0:
                    await asyncio.sleep(delay)
                if not is_valid_symbol(symbol):
                    rows.append({"symbol": symbol, "error": "invalid symbol"})
                    console.print(f"[red]✗[/red] {symbol}: invalid symbol")
                    continue
                try:
                    snapshot = await adapter.get_price_data(symbol, force_provider=provider)
                except PriceRelayError as exc:
                    rows.append({"symbol": symbol, "error": str(exc)})
                    console.print(f"[red]✗[/red] {symbol}: {exc}")
                    continue
                rows.append(snapshot.model_dump(mode="json"))
                console.print(
                    f"[green]✓[/green] {symbol}: ${snapshot.current:.2f} "
                    f"({_signed(snapshot.change_percent)}%)"
                )
        return rows

    console.print(f"Fetching quotes for {len(symbols)} symbols...")
    rows = _run_async(_run())

    if output_format == "csv":
        _write_or_echo(_rows_to_csv(rows), output)
    elif output_format == "json" or output:
        _write_or_echo(json.dumps(rows, indent=2), output)
    else:
        _output_batch_table(rows)

    failed = sum(1 for r in rows if "error" in r)
    if failed == len(rows):
        raise SystemExit(1)


_CSV_FIELDS = ["symbol", "current", "change", "change_percent", "volume", "provider", "error"]


def _rows_to_csv(rows: list[dict]) -> str:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=_CSV_FIELDS, extrasaction="ignore")
    writer.writeheader()
    for row in rows:
        writer.writerow(row)
    return buf.getvalue()


def _output_batch_table(rows: list[dict]) -> None:
    table = Table(title="Batch Quotes")
    table.add_column("Symbol", style="bold")
    table.add_column("Price", justify="right")
    table.add_column("Change %", justify="right")
    table.add_column("Provider")
    for row in rows:
        if "error" in row:
            table.add_row(row["symbol"], "-", "-", f"[red]{row['error']}[/red]")
        else:
            table.add_row(
                row["symbol"],
                f"${row['current']:,.2f}",
                f"{_signed(row['change_percent'])}%",
                row["provider"],
            )
    console.print(table)


# ---------------------------------------------------------------------------
# health
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def health(ctx: click.Context) -> None:
    """Show provider health status."""

    async def _run():
        config = _load_config(ctx)
        async with _create_adapter(config) as adapter:
            return adapter.config.primary_provider, adapter.get_health_status()

    primary, statuses = _run_async(_run())

    table = Table(title="Price Provider Health")
    table.add_column("Provider", style="bold")
    table.add_column("Healthy")
    table.add_column("Errors", justify="right")
    table.add_column("Last check")
    for pid, status in statuses.items():
        label = f"{pid} (primary)" if pid == primary else pid
        healthy = "[green]yes[/green]" if status.is_healthy else "[red]no[/red]"
        table.add_row(label, healthy, str(status.error_count), status.last_checked.isoformat())
    console.print(table)

    healthy_count = sum(1 for s in statuses.values() if s.is_healthy)
    console.print(f"Overall: {healthy_count}/{len(statuses)} providers healthy")


# ---------------------------------------------------------------------------
# failover
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("symbol")
@click.pass_context
def failover(ctx: click.Context, symbol: str) -> None:
    """Try SYMBOL against each provider, then through automatic failover."""
    from price_relay.core.exceptions import PriceRelayError

    symbol = _check_symbol(symbol)

    async def _run() -> bool:
        config = _load_config(ctx)
        async with _create_adapter(config) as adapter:
            console.print(f"Testing failover for [bold]{symbol}[/bold]...")
            for pid in adapter.provider_ids:
                start = time.perf_counter()
                try:
                    snapshot = await adapter.get_price_data(
                        symbol, force_provider=pid, skip_cache=True
                    )
                except PriceRelayError as exc:
                    console.print(f"[red]✗[/red] {pid}: {exc}")
                    continue
                elapsed_ms = (time.perf_counter() - start) * 1000
                console.print(
                    f"[green]✓[/green] {pid}: ${snapshot.current:.2f} ({elapsed_ms:.0f}ms)"
                )

            console.print("Testing automatic failover...")
            try:
                snapshot = await adapter.get_price_data(symbol, skip_cache=True)
            except PriceRelayError as exc:
                console.print(f"[red]✗ Failover failed:[/red] {exc}")
                return False
            console.print(
                f"[green]✓ Failover successful:[/green] ${snapshot.current:.2f} "
                f"(provider: {snapshot.provider})"
            )
            if snapshot.fallback_used:
                console.print(f"  Fallback used: {snapshot.primary_error}")
            return True

    if not _run_async(_run()):
        raise SystemExit(1)


# ---------------------------------------------------------------------------
# monitor
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("symbol")
@click.option("--interval", "-i", type=float, default=30.0, show_default=True,
              help="Seconds between polls.")
@click.option("--threshold", type=float, default=2.0, show_default=True,
              help="Alert when the price moves this many percent between polls.")
@click.option("--count", "-n", type=int, default=0,
              help="Stop after this many polls (0 = until interrupted).")
@click.pass_context
def monitor(ctx: click.Context, symbol: str, interval: float, threshold: float, count: int) -> None:
    """Poll SYMBOL and flag large moves between polls."""
    from price_relay.core.exceptions import PriceRelayError

    symbol = _check_symbol(symbol)

    async def _run() -> None:
        config = _load_config(ctx)
        previous: float | None = None
        polls = 0
        async with _create_adapter(config) as adapter:
            while True:
                stamp = datetime.now().strftime("%H:%M:%S")
                try:
                    snapshot = await adapter.get_price_data(symbol, skip_cache=True)
                except PriceRelayError as exc:
                    console.print(f"[{stamp}] [red]Error:[/red] {exc}")
                else:
                    alert = ""
                    if previous:
                        moved = (snapshot.current - previous) / previous * 100
                        if abs(moved) >= threshold:
                            alert = f" [bold red]ALERT {_signed(moved)}%[/bold red]"
                    console.print(
                        f"[{stamp}] {symbol}: ${snapshot.current:.2f} "
                        f"({_signed(snapshot.change_percent)}%){alert}"
                    )
                    previous = snapshot.current

                polls += 1
                if count and polls >= count:
                    break
                await asyncio.sleep(interval)

    console.print(
        f"Monitoring {symbol} ({interval:g}s intervals, {threshold:g}% threshold). "
        "Press Ctrl+C to stop."
    )
    try:
        _run_async(_run())
    except KeyboardInterrupt:
        console.print("Monitoring stopped.")


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", type=str, default=None, help="Bind address (default from config).")
@click.option("--port", "-p", type=int, default=None, help="Port number (default from config).")
@click.option("--reload", is_flag=True, default=False, help="Auto-reload on code changes.")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None, reload: bool) -> None:
    """Start the REST API server."""
    try:
        import uvicorn
    except ImportError:
        console.print(
            "[red]uvicorn not installed. Install with: "
            "pip install price-relay[api][/red]"
        )
        raise SystemExit(1)

    config = _load_config(ctx)
    host = host or config.api.host
    port = port or config.api.port

    console.print(f"Starting price-relay API on [bold]{host}:{port}[/bold]")
    console.print(f"API docs: http://{host}:{port}/docs")

    if reload:
        # The reloader re-imports the factory, which loads config itself
        if ctx.obj.get("config_path"):
            os.environ["PRICE_RELAY_CONFIG"] = ctx.obj["config_path"]
        uvicorn.run(
            "price_relay.api.app:create_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
        )
        return

    from price_relay.api.app import create_app

    uvicorn.run(create_app(config), host=host, port=port)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
