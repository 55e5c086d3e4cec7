import asyncio
import logging
from pathlib import Path
from typing import Optional
from urllib.parse import unquote

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.tree import Tree

from ..config import CONFIG_FILE, FailurePolicy, Settings, load_settings, read_config, set_config_value
from ..domain.errors import (
    CycleDetected,
    DeptreeError,
    PackageNotFound,
    RegistryUnavailable,
    ResolutionTimeout,
    VersionNotFound,
)
from ..domain.models import ResolvedPackage, UnresolvedDependency
from ..registry import CachedRegistry, FixtureRegistry, MetadataCache, NpmRegistry, RegistryClient
from ..resolution.resolver import Resolver
from ..ui.progress import ProgressManager
from ..versioning.selector import max_version, select_version, sort_versions

app = typer.Typer()
config_app = typer.Typer()
cache_app = typer.Typer()
app.add_typer(config_app, name="config", help="Show or change settings")
app.add_typer(cache_app, name="cache", help="Manage the on-disk metadata cache")

console = Console()
err_console = Console(stderr=True)

EXIT_CODES = [
    (PackageNotFound, 2),
    (VersionNotFound, 3),
    (CycleDetected, 4),
    (RegistryUnavailable, 5),
    (ResolutionTimeout, 5),
]


def exit_code_for(error: Exception) -> int:
    for error_type, code in EXIT_CODES:
        if isinstance(error, error_type):
            return code
    return 1


def build_registry(settings: Settings, registry_file: Optional[Path] = None) -> RegistryClient:
    """registry client for the configured source; a registry file always bypasses the cache."""
    if registry_file is not None:
        return FixtureRegistry.from_file(registry_file)
    registry: RegistryClient = NpmRegistry(settings.registry_url, timeout=settings.request_timeout)
    if settings.cache_enabled:
        registry = CachedRegistry(registry, MetadataCache(settings.cache_dir, settings.cache_max_age))
    return registry


def render_tree(root: ResolvedPackage) -> Tree:
    tree = Tree(f"[bold]{root.name}[/bold]@[cyan]{root.version}[/cyan]")
    stack = [(root, tree)]
    while stack:
        node, branch = stack.pop()
        for name in sorted(node.dependencies):
            child = node.dependencies[name]
            if isinstance(child, UnresolvedDependency):
                branch.add(f"[red]{name}@{child.requested} ✗ {child.reason}: {child.message}[/red]")
            else:
                stack.append((child, branch.add(f"{name}@[cyan]{child.version}[/cyan]")))
    return tree


def _config_file(ctx: typer.Context) -> Path:
    return (ctx.obj or {}).get("config_file", CONFIG_FILE)


def _load_settings(ctx: typer.Context, **overrides) -> Settings:
    try:
        return load_settings(_config_file(ctx), **overrides)
    except ValueError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log registry traffic and retries"),
    config: Optional[Path] = typer.Option(None, "--config", help="Config file to use instead of ~/.deptree/config"),
):
    """resolve npm dependency trees."""
    ctx.obj = {"config_file": config or CONFIG_FILE}
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=err_console, show_path=False)],
        )


@app.command()
def resolve(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Package name; percent-encoded names such as %40types%2Freact are decoded"),
    version: str = typer.Argument(..., help="Exact version or dist-tag of the root package"),
    registry: Optional[str] = typer.Option(None, "--registry", help="Registry base URL"),
    registry_file: Optional[Path] = typer.Option(None, "--registry-file", help="Resolve against a JSON snapshot instead of a live registry"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", "-j", min=1, help="Maximum concurrent registry requests"),
    policy: Optional[FailurePolicy] = typer.Option(None, "--policy", help="abort on the first unresolved dependency, or annotate it and continue"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Give up after this many seconds"),
    cache: Optional[bool] = typer.Option(None, "--cache/--no-cache", help="Use the on-disk metadata cache"),
    as_json: bool = typer.Option(False, "--json", help="Print the tree as JSON"),
):
    """resolve the full dependency tree of NAME at VERSION."""
    settings = _load_settings(
        ctx,
        registry_url=registry,
        concurrency=concurrency,
        failure_policy=policy,
        resolve_timeout=timeout,
        cache_enabled=cache,
    )
    name = unquote(name)
    progress_manager = ProgressManager(err_console)

    async def run() -> ResolvedPackage:
        client = build_registry(settings, registry_file)
        try:
            with progress_manager.resolution(name, version) as reporter:
                return await Resolver(client, settings, reporter).resolve_async(name, version)
        finally:
            await client.aclose()

    try:
        result = asyncio.run(run())
    except DeptreeError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(exit_code_for(e))

    if as_json:
        typer.echo(result.to_json())
    else:
        console.print(render_tree(result))

    unresolved = result.iter_unresolved()
    if unresolved:
        err_console.print(f"[yellow]{len(unresolved)} dependencies could not be resolved.[/yellow]")


@app.command()
def versions(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Package name"),
    range_expr: Optional[str] = typer.Argument(None, metavar="RANGE", help="Range to select a version for"),
    registry: Optional[str] = typer.Option(None, "--registry", help="Registry base URL"),
    registry_file: Optional[Path] = typer.Option(None, "--registry-file", help="Read from a JSON snapshot instead of a live registry"),
    limit: int = typer.Option(20, "--limit", help="Number of versions to list"),
):
    """list published versions of NAME and the one RANGE selects."""
    settings = _load_settings(ctx, registry_url=registry)
    name = unquote(name)

    async def fetch():
        client = build_registry(settings, registry_file)
        try:
            return await client.fetch(name)
        finally:
            await client.aclose()

    try:
        metadata = asyncio.run(fetch())
    except DeptreeError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(exit_code_for(e))

    table = Table(title=f"{metadata.name} ({len(metadata.versions)} versions)")
    table.add_column("Version", style="cyan")
    table.add_column("Tags")
    tags_by_version = {}
    for tag, tagged in metadata.dist_tags.items():
        tags_by_version.setdefault(tagged, []).append(tag)
    for v in sort_versions(metadata.versions, reverse=True)[:limit]:
        table.add_row(v, ", ".join(sorted(tags_by_version.get(v, []))))
    console.print(table)

    if range_expr is None:
        highest = max_version(metadata.versions)
        if highest is not None:
            console.print(f"highest: [bold cyan]{highest}[/bold cyan]")
    else:
        selected = select_version(metadata.versions, range_expr)
        if selected is None:
            err_console.print(f"[red]No version of {metadata.name} satisfies '{range_expr}'[/red]")
            raise typer.Exit(3)
        console.print(f"{range_expr} -> [bold cyan]{selected}[/bold cyan]")


@config_app.command("show")
def config_show(ctx: typer.Context):
    """print the effective settings."""
    settings = _load_settings(ctx)
    table = Table(show_header=False)
    table.add_column(style="bold cyan", justify="right")
    table.add_column()
    stored = read_config(_config_file(ctx))
    for key, value in settings.model_dump(mode="json").items():
        source = "" if key not in stored else " [dim](config file)[/dim]"
        table.add_row(key, f"{value}{source}")
    console.print(table)


@config_app.command("set")
def config_set(ctx: typer.Context, key: str, value: str):
    """store a setting in the config file."""
    try:
        set_config_value(key, value, _config_file(ctx))
    except (ValueError, RuntimeError) as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] {key.lower()} = {value}")


@cache_app.command("clear")
def cache_clear(ctx: typer.Context):
    """delete all cached package metadata."""
    settings = _load_settings(ctx)
    MetadataCache(settings.cache_dir, settings.cache_max_age).clear()
    console.print(f"[green]✓[/green] cleared {settings.cache_dir}")


def main():
    app()


if __name__ == "__main__":
    main()
