"""nargo-registry: add and remove Noir registry packages in Nargo.toml."""

import asyncio
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape

from noir_registry.cli.config import resolve_registry_url
from noir_registry.cli.registry_client import RegistryClient
from noir_registry.cli.synchronizer import ManifestSynchronizer
from noir_registry.config import configure_logging
from noir_registry.domain.exceptions import RegistryException, RegistryUnavailableError

console = Console()


@click.group()
@click.version_option(package_name="noir-registry")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
def main(verbose: bool):
    """Manage Noir registry dependencies in Nargo.toml."""
    configure_logging("DEBUG" if verbose else "WARNING", stream=sys.stderr)


# ── Add ──────────────────────────────────────────────────────────────


@main.command()
@click.argument("package_name")
@click.option("--registry", default=None, help="Registry API URL (default: NOIR_REGISTRY_URL, config file, or http://localhost:8080/api)")
@click.option("--manifest-path", type=click.Path(path_type=Path), default=None, help="Path to Nargo.toml (default: search upward from the current directory)")
def add(package_name: str, registry: str | None, manifest_path: Path | None):
    """Add PACKAGE_NAME from the registry to the [dependencies] of Nargo.toml."""
    registry_url = resolve_registry_url(registry)
    synchronizer = ManifestSynchronizer(RegistryClient(registry_url))

    console.print(f"Fetching package '[cyan]{escape(package_name)}[/]' from registry...")
    console.print(f"  Registry: {registry_url}")

    try:
        result = asyncio.run(synchronizer.add(package_name, manifest_path))
    except RegistryUnavailableError as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        console.print("\n[bold]Troubleshooting:[/]")
        console.print("  - Check that the registry server is running")
        console.print("  - Verify the package name is correct")
        console.print(f"  - Try: curl {e.url}")
        sys.exit(1)
    except (RegistryException, OSError) as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(1)

    console.print(f"  Repository: {result.git_url}")
    if result.tag:
        console.print(f"  Version: {result.tag}")
    else:
        console.print("  [yellow]![/] No version published - dependency added without a tag.")
    console.print(f"[green]Added[/] '{result.key}' to {result.manifest_path}")


# ── Remove ───────────────────────────────────────────────────────────


@main.command()
@click.argument("package_names", nargs=-1, required=True)
@click.option("--manifest-path", type=click.Path(path_type=Path), default=None, help="Path to Nargo.toml (default: search upward from the current directory)")
@click.option("--clean", is_flag=True, help="Also delete the cached checkout under ~/nargo")
def remove(package_names: tuple[str, ...], manifest_path: Path | None, clean: bool):
    """Remove one or more dependencies from Nargo.toml."""
    synchronizer = ManifestSynchronizer(registry_client=None)

    try:
        report = synchronizer.remove(package_names, manifest_path, purge_cache=clean)
    except (RegistryException, OSError) as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(1)

    for name in report.removed:
        console.print(f"[green]Removed[/] '{escape(name)}' from {report.manifest_path}")
    for name in report.missing:
        console.print(f"[red]x[/] Dependency '{escape(name)}' not found in {report.manifest_path}")
    for path in report.cache_removed:
        console.print(f"  Cleaned cache {path}")
    for warning in report.cache_warnings:
        console.print(f"  [yellow]![/] {escape(warning)}")

    if len(package_names) > 1:
        console.print(
            f"\nSummary: {len(report.removed)} removed, {len(report.missing)} not found"
        )

    if not report.removed:
        console.print(f"[red]Error:[/] No matching dependencies found in {report.manifest_path}")
        sys.exit(1)


if __name__ == "__main__":
    main()
