from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Coroutine
from pathlib import Path
from typing import Any

import httpx
import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from chanwatch.config import ChanwatchConfig, load_config
from chanwatch.errors import ChanwatchError, ConfigValidationError
from chanwatch.kernel.scheduler import CycleScheduler
from chanwatch.models.channel import ChannelResult, CycleReport
from chanwatch.runtime.discovery.discoverer import ModelDiscoverer
from chanwatch.runtime.logging_config import configure_from_config
from chanwatch.runtime.orchestrator import ChannelCycleOrchestrator
from chanwatch.runtime.prober import Prober
from chanwatch.substrate.channel_store import ChannelStore

load_dotenv()

log = logging.getLogger(__name__)

app = typer.Typer(help="Channel model liveness prober")
channels_app = typer.Typer(help="Channel store commands")
db_app = typer.Typer(help="Database management commands")
app.add_typer(channels_app, name="channels")
app.add_typer(db_app, name="db")

console = Console()

_CONFIG_OPTION = typer.Option(
    Path("config.toml"), "--config", "-c", envvar="CHANWATCH_CONFIG"
)
_VERBOSE_OPTION = typer.Option(False, "--verbose", "-v")


def _load(config_path: Path, verbose: bool = False) -> ChanwatchConfig:
    """Load config.toml and configure logging, exiting on invalid config."""
    try:
        cfg = load_config(config_path)
    except ConfigValidationError as exc:
        console.print(f"[red]Config validation failed:[/red] {exc.message}")
        for err in exc.context.get("errors", []):
            console.print(f"  {err['loc']}: {err['msg']}")
        raise typer.Exit(code=1) from exc

    configure_from_config(cfg.model_dump(), verbose=verbose)
    return cfg


@contextlib.asynccontextmanager
async def _orchestrator(
    cfg: ChanwatchConfig,
    store: ChannelStore,
) -> AsyncIterator[ChannelCycleOrchestrator]:
    """Wire the store, shared HTTP client, discoverer and prober together."""
    await store.ping()
    async with httpx.AsyncClient(follow_redirects=True) as client:
        discoverer = ModelDiscoverer(
            client,
            cfg.probe.fallback_models,
            timeout=cfg.probe.discovery_timeout_seconds,
        )
        prober = Prober(client, timeout=cfg.probe.probe_timeout_seconds)
        yield ChannelCycleOrchestrator(
            store, discoverer, prober, cfg.probe.exclude_channels
        )


def _run_async(coro: Coroutine[Any, Any, None]) -> None:
    """Run a coroutine, turning fatal chanwatch errors into exit code 1."""
    try:
        asyncio.run(coro)
    except ChanwatchError as exc:
        log.error("chanwatch.fatal code=%s error=%s", exc.code, exc.message)
        console.print(f"[red]{exc.message}[/red]")
        raise typer.Exit(code=1) from exc


def _outcome_table(result: ChannelResult) -> Table:
    table = Table(title=f"{result.channel_name} (ID:{result.channel_id})")
    table.add_column("Model")
    table.add_column("Result")
    table.add_column("Status", justify="right")
    table.add_column("Latency", justify="right")
    table.add_column("Detail", overflow="fold")
    for o in result.outcomes:
        verdict = "[green]ok[/green]" if o.success else "[red]failed[/red]"
        status = str(o.status_code) if o.status_code is not None else "-"
        table.add_row(o.model, verdict, status, f"{o.elapsed_ms:.0f}ms", o.error or o.body)
    return table


def _report_table(report: CycleReport) -> Table:
    table = Table(title=f"Cycle {report.cycle_id}")
    table.add_column("ID", justify="right")
    table.add_column("Channel")
    table.add_column("Source")
    table.add_column("Working", justify="right")
    table.add_column("Saved")
    table.add_column("Error", overflow="fold")
    for r in report.channels:
        working = f"{len(r.working_models)}/{len(r.outcomes)}"
        saved = "[green]yes[/green]" if r.persisted else "[red]no[/red]"
        table.add_row(str(r.channel_id), r.channel_name, r.source or "-", working, saved, r.error)
    return table


@app.command()
def run(
    config_path: Path = _CONFIG_OPTION,  # noqa: B008
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Probe all channels now and then on every interval tick."""
    cfg = _load(config_path, verbose)

    async def _run() -> None:
        async with _orchestrator(cfg, ChannelStore(cfg.store.db_path)) as orchestrator:
            scheduler = CycleScheduler(orchestrator, cfg.probe.interval)
            await scheduler.run()

    try:
        _run_async(_run())
    except KeyboardInterrupt:
        console.print("Stopped.")


@app.command()
def once(
    config_path: Path = _CONFIG_OPTION,  # noqa: B008
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Run a single probe cycle and print a summary."""
    cfg = _load(config_path, verbose)

    async def _run() -> None:
        async with _orchestrator(cfg, ChannelStore(cfg.store.db_path)) as orchestrator:
            report = await orchestrator.run_cycle()
        if report.aborted:
            console.print(f"[red]Cycle aborted:[/red] {report.error}")
            raise typer.Exit(code=1)
        console.print(_report_table(report))
        console.print(
            f"Fetched {report.fetched}, excluded {report.excluded},"
            f" probed {report.probed} models, {report.working} working."
        )

    _run_async(_run())


@app.command()
def probe(
    channel_id: int,
    save: bool = typer.Option(False, "--save", help="Persist the working models"),
    config_path: Path = _CONFIG_OPTION,  # noqa: B008
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Probe one channel, ignoring the exclusion list."""
    cfg = _load(config_path, verbose)

    async def _run() -> None:
        store = ChannelStore(cfg.store.db_path)
        async with _orchestrator(cfg, store) as orchestrator:
            channel = await store.get_channel(channel_id)
            if channel is None:
                console.print(f"[red]No channel with ID {channel_id}.[/red]")
                raise typer.Exit(code=1)
            if save:
                result = await orchestrator.run_channel(channel)
            else:
                result = await orchestrator.probe_channel(channel)

        if result.skipped:
            console.print(f"[red]Discovery failed:[/red] {result.error}")
            raise typer.Exit(code=1)
        console.print(f"Source: {result.source}  URL: {result.chat_url}")
        console.print(_outcome_table(result))
        console.print(f"Working: {','.join(result.working_models) or '(none)'}")
        if save and not result.persisted:
            console.print(f"[red]Not saved:[/red] {result.error}")
            raise typer.Exit(code=1)

    _run_async(_run())


@channels_app.command("list")
def channels_list(
    config_path: Path = _CONFIG_OPTION,  # noqa: B008
) -> None:
    """List stored channels and their available models."""
    cfg = _load(config_path)

    async def _run() -> None:
        store = ChannelStore(cfg.store.db_path)
        await store.ping()
        channels = await store.fetch_channels()

        table = Table(title="Channels")
        table.add_column("ID", justify="right")
        table.add_column("Name")
        table.add_column("Base URL")
        table.add_column("Status", justify="right")
        table.add_column("Excluded")
        table.add_column("Available models", overflow="fold")
        for c in channels:
            excluded = "yes" if c.id in cfg.probe.exclude_channels else ""
            table.add_row(str(c.id), c.name, c.base_url, str(c.status), excluded, c.models)
        console.print(table)

    _run_async(_run())


@channels_app.command("add")
def channels_add(
    name: str,
    base_url: str,
    key: str,
    status: int = typer.Option(1, "--status"),
    channel_id: int | None = typer.Option(None, "--id", help="Explicit channel ID"),
    config_path: Path = _CONFIG_OPTION,  # noqa: B008
) -> None:
    """Register a new channel."""
    cfg = _load(config_path)

    async def _run() -> None:
        store = ChannelStore(cfg.store.db_path)
        await store.ping()
        new_id = await store.add_channel(
            name, base_url, key, status=status, channel_id=channel_id
        )
        console.print(f"Added channel {name} with ID {new_id}")

    _run_async(_run())


@db_app.command("init")
def db_init(
    config_path: Path = _CONFIG_OPTION,  # noqa: B008
) -> None:
    """Create the channels table if it doesn't exist."""
    cfg = _load(config_path)
    _run_async(ChannelStore(cfg.store.db_path).initialize())
    console.print(f"[green]Channel store ready at {cfg.store.db_path}[/green]")


@app.command("config-validate")
def config_validate(
    config_path: Path = _CONFIG_OPTION,  # noqa: B008
) -> None:
    """Validate config.toml without starting the prober."""
    cfg = _load(config_path)
    console.print("[green]Config valid.[/green]")
    console.print(f"  Interval: {cfg.probe.interval:.0f}s")
    console.print(f"  Fallback models: {', '.join(cfg.probe.fallback_models) or '(none)'}")
    excluded = ", ".join(str(i) for i in sorted(cfg.probe.exclude_channels))
    console.print(f"  Excluded channels: {excluded or '(none)'}")
    console.print(f"  Probe timeout: {cfg.probe.probe_timeout_seconds:.0f}s")
    console.print(f"  Store: {cfg.store.db_path}")
    console.print(f"  Log level: {cfg.runtime.log_level}")


if __name__ == "__main__":
    app()
