"""regbridge CLI: run the adapter or the gateway, and inspect sync state."""

import asyncio

import click
from rich.console import Console
from rich.table import Table

from regbridge import __version__
from regbridge.config import get_settings
from regbridge.logging_setup import configure_logging

console = Console()


@click.group()
@click.version_option(version=__version__)
@click.option("--log-level", default=None, help="Override LOG_LEVEL")
@click.pass_context
def main(ctx: click.Context, log_level: str | None):
    """regbridge: registry protocol bridge for package ecosystems.

    Serves NuGet through the read-only registry protocol and fronts
    several such adapters behind one gateway.
    """
    settings = get_settings()
    configure_logging(log_level or settings.log_level, settings.log_format)
    ctx.obj = settings


# ── Servers ──────────────────────────────────────────────────────────


@main.command()
@click.option("--host", default=None, help="Bind address (default: HOST)")
@click.option("--port", default=None, type=int, help="Port (default: PORT)")
@click.pass_obj
def serve(settings, host: str | None, port: int | None):
    """Run the NuGet adapter."""
    import uvicorn

    console.print(f"\n[bold blue]regbridge[/]: NuGet adapter on {host or settings.host}:{port or settings.port}\n")
    uvicorn.run(
        "web.backend.app.main:create_app",
        factory=True,
        host=host or settings.host,
        port=port or settings.port,
        log_config=None,
    )


@main.command()
@click.option("--host", default=None, help="Bind address (default: HOST)")
@click.option("--port", default=None, type=int, help="Port (default: PORT)")
@click.pass_obj
def gateway(settings, host: str | None, port: int | None):
    """Run the gateway in front of the configured adapters."""
    import uvicorn

    console.print(f"\n[bold blue]regbridge[/]: gateway on {host or settings.host}:{port or settings.port}\n")
    uvicorn.run(
        "web.backend.app.gateway:create_gateway_app",
        factory=True,
        host=host or settings.host,
        port=port or settings.port,
        log_config=None,
    )


# ── Sync ─────────────────────────────────────────────────────────────


@main.command()
@click.option("--since", default=None, help="Start from this ISO timestamp when no cursor is stored")
@click.pass_obj
def sync(settings, since: str | None):
    """Run one catalog synchronization and persist the cursor."""
    from regbridge.nuget.adapter import NuGetAdapter

    async def run():
        adapter = NuGetAdapter(settings, start_from=since)
        try:
            return await adapter.synchronizer.run()
        finally:
            await adapter.stop()

    console.print("\n[bold blue]regbridge[/]: synchronizing the NuGet catalog\n")
    report = asyncio.run(run())

    table = Table(title="Catalog Sync")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Cursor before", report.cursor_before)
    table.add_row("Cursor after", report.cursor_after)
    table.add_row("Pages seen", str(report.pages_seen))
    table.add_row("Pages processed", str(report.pages_processed))
    table.add_row("Pages failed", str(report.pages_failed))
    table.add_row("Names added", str(report.names_added))
    console.print(table)

    if report.error:
        console.print(f"[red]Sync failed:[/] {report.error}")
        raise SystemExit(1)
    if report.pages_failed:
        console.print("[yellow]Some pages failed; the cursor was held back.[/]")


# ── Resolve ──────────────────────────────────────────────────────────


@main.command()
@click.argument("name")
@click.argument("version")
@click.pass_obj
def resolve(settings, name: str, version: str):
    """Resolve the dependencies of NAME at VERSION."""
    from regbridge.errors import RegistryError
    from regbridge.nuget.adapter import NuGetAdapter

    async def run():
        adapter = NuGetAdapter(settings)
        try:
            entity = await adapter.service.load_version(name, version)
            return await adapter.resolver.resolve_all(entity.dependencies)
        finally:
            await adapter.stop()

    try:
        dependencies = asyncio.run(run())
    except RegistryError as e:
        console.print(f"[red]{e.title}:[/] {e.detail}")
        raise SystemExit(1)

    if not dependencies:
        console.print(f"[yellow]{name} {version} declares no dependencies.[/]")
        return

    table = Table(title=f"Dependencies of {name} {version} ({len(dependencies)})")
    table.add_column("Name", style="cyan")
    table.add_column("Range")
    table.add_column("Resolved", style="green")
    table.add_column("Framework", style="dim")
    table.add_column("Link")
    for dep in dependencies:
        table.add_row(dep.name, dep.range, dep.resolved_version or "-", dep.target_framework or "", dep.package or "")
    console.print(table)


# ── Cache ────────────────────────────────────────────────────────────


@main.command("cache-info")
@click.pass_obj
def cache_info(settings):
    """Show the stored sync cursor and cache size."""
    from regbridge.cache.store import open_store
    from regbridge.sync.catalog import CURSOR_KEY, CatalogCursor

    store = open_store(settings.cache_dir, settings.cache_backend)
    stored = store.get(CURSOR_KEY)

    table = Table(title=f"Cache ({settings.cache_dir or 'in-memory'})")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Backend", settings.cache_backend if settings.cache_dir else "memory")
    table.add_row("Entries", str(len(store)))
    if stored:
        cursor = CatalogCursor.from_dict(stored)
        table.add_row("Cursor", cursor.timestamp)
        table.add_row("Last run", cursor.last_run or "-")
        table.add_row("Known names", str(len(cursor.names)))
    else:
        table.add_row("Cursor", "[yellow]none[/]")
    console.print(table)


if __name__ == "__main__":
    main()
