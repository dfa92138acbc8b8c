# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Command-line interface for the report delivery engine.

Usage:
    wells list                      # stored reports and their age
    wells sweep --max-age 172800    # expire orphaned reports older than 2 days
    wells submit crash.log --url https://collector.example.com/reports

Every command accepts ``--root`` to point at a store directory and
``--config`` to read a ``[wells]`` INI section (see ``config_loader``).
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from .config_loader import EngineConfig, load_engine_config
from .engine import DeliveryEngine
from .errors import WellsError
from .models import UploadRequest
from .store import IdentifierExtensionLocationProvider, ReportStore
from .transport import AiohttpTransport

console = Console()
err_console = Console(stderr=True)


def run_async(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    err_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_json(data: Any) -> None:
    """Print data as formatted JSON."""
    console.print_json(json.dumps(data, indent=2, default=str))


def _format_age(seconds: float) -> str:
    seconds = max(0, int(seconds))
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        return f"{seconds // 3600}h"
    return f"{seconds // 86400}d"


def _parse_headers(values: tuple[str, ...]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for item in values:
        name, sep, value = item.partition(":")
        if not sep or not name.strip():
            raise click.BadParameter(f"expected NAME:VALUE, got {item!r}", param_hint="--header")
        headers[name.strip()] = value.strip()
    return headers


def _load_config(ctx: click.Context) -> EngineConfig:
    obj = ctx.ensure_object(dict)
    config = load_engine_config(obj.get("config_path"))
    if obj.get("root"):
        config.store_root = Path(obj["root"])
    return config


def _build_store(config: EngineConfig) -> ReportStore:
    provider = IdentifierExtensionLocationProvider(config.store_root, config.file_extension)
    return ReportStore(config.store_root, provider)


@click.group()
@click.version_option(package_name="wells")
@click.option("--root", "-r", type=click.Path(file_okay=False, path_type=Path), default=None,
              help="Report store directory.")
@click.option("--config", "-c", "config_path", type=click.Path(dir_okay=False), default=None,
              envvar="WELLS_CONFIG", help="INI file with a [wells] section.")
@click.option("--log-level", default=lambda: os.getenv("WELLS_LOG_LEVEL", "WARNING"),
              show_default="WARNING", help="Logging level.")
@click.pass_context
def main(ctx: click.Context, root: Path | None, config_path: str | None, log_level: str) -> None:
    """Deliver stored diagnostic reports to a collection endpoint."""
    logging.basicConfig(
        level=getattr(logging, str(log_level).upper(), logging.WARNING),
        format="[%(asctime)s] [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )
    ctx.ensure_object(dict)
    ctx.obj["root"] = root
    ctx.obj["config_path"] = config_path


@main.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def list_reports(ctx: click.Context, as_json: bool) -> None:
    """List stored reports awaiting delivery."""
    config = _load_config(ctx)
    store = _build_store(config)
    now = datetime.now(timezone.utc)
    reports = [
        {
            "identifier": report.identifier,
            "path": str(report.location),
            "created_at": report.created_at.isoformat(),
            "age_seconds": int((now - report.created_at).total_seconds()),
            "size": report.location.stat().st_size if report.location.exists() else 0,
        }
        for report in store.list_existing()
    ]

    if as_json:
        print_json(reports)
        return

    if not reports:
        console.print(f"[dim]No stored reports in {config.store_root}[/dim]")
        return

    table = Table(title=f"Stored reports ({config.store_root})")
    table.add_column("Identifier", style="cyan")
    table.add_column("Created")
    table.add_column("Age", justify="right")
    table.add_column("Size", justify="right")
    for item in reports:
        table.add_row(
            item["identifier"],
            item["created_at"],
            _format_age(item["age_seconds"]),
            str(item["size"]),
        )
    console.print(table)


@main.command("sweep")
@click.option("--max-age", type=float, default=None,
              help="Expire reports older than this many seconds (default from config).")
@click.pass_context
def sweep_reports(ctx: click.Context, max_age: float | None) -> None:
    """Expire orphaned reports older than the maximum age."""
    config = _load_config(ctx)
    if max_age is not None:
        config.max_report_age = max_age
    store = _build_store(config)
    before = sum(1 for _ in store.list_existing())

    async def _sweep() -> int:
        transport = AiohttpTransport(timeout=config.request_timeout)
        engine = DeliveryEngine.from_config(config, transport=transport, store=store, startup_delay=None)
        try:
            return await engine.sweep()
        finally:
            await engine.stop()
            await transport.close()

    handled = run_async(_sweep())
    after = sum(1 for _ in store.list_existing())
    print_success(f"Examined {handled} report(s), expired {before - after}")


@main.command("submit")
@click.argument("payload_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--url", required=True, help="Collection endpoint URL.")
@click.option("--method", default="POST", show_default=True, help="HTTP method.")
@click.option("--header", "-H", "headers", multiple=True, help="Extra header as NAME:VALUE (repeatable).")
@click.pass_context
def submit_report(ctx: click.Context, payload_file: Path, url: str, method: str, headers: tuple[str, ...]) -> None:
    """Queue PAYLOAD_FILE and attempt to deliver it once."""
    config = _load_config(ctx)
    try:
        request = UploadRequest(url=url, method=method, headers=_parse_headers(headers))
    except ValidationError as exc:
        print_error(f"Invalid request: {exc}")
        raise SystemExit(1)

    payload = payload_file.read_bytes()

    async def _submit() -> tuple[str, bool, int]:
        transport = AiohttpTransport(timeout=config.request_timeout)
        engine = DeliveryEngine.from_config(config, transport=transport, startup_delay=None)
        try:
            identifier = await engine.submit(payload, request)
            while await transport.list_in_flight():
                await asyncio.sleep(0.1)
            await engine.join()
            location = engine.store.locate(identifier)
            still_stored = location is not None and location.exists()
            return identifier, still_stored, len(engine.pending_retries())
        finally:
            await engine.stop()
            await transport.close()

    try:
        identifier, still_stored, retries = run_async(_submit())
    except WellsError as exc:
        print_error(str(exc))
        raise SystemExit(1)

    if retries:
        console.print(f"[yellow]Report {identifier} deferred; kept in {config.store_root} for a later run[/yellow]")
    elif still_stored:
        console.print(f"[yellow]Report {identifier} not delivered; kept in {config.store_root}[/yellow]")
    else:
        print_success(f"Report {identifier} processed")


if __name__ == "__main__":
    main()
