"""
nakes command line interface.

Every command opens the configured lockfile, runs one async operation and
closes it again. Any NakesError is reported as ``Error: <message>`` with exit
code 1.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, List, Optional, TypeVar

import click

from nakes import __version__
from nakes.core.config import NakesConfig, load_config
from nakes.core.errors import NakesError
from nakes.domain.models import Package, PackageRow, PackageTree
from nakes.services.registry import RegistryClient
from nakes.services.resolver import Resolver
from nakes.storage.sqlite_lockfile import SqliteLockfile

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _setup_logging(verbose: int) -> None:
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )


def _run(coro: Awaitable[T]) -> T:
    try:
        return asyncio.run(coro)
    except NakesError as e:
        raise click.ClickException(e.message) from e


def _registry(config: NakesConfig) -> RegistryClient:
    return RegistryClient(
        base_url=config.registry_url,
        timeout=config.request_timeout,
        retries=config.retries,
    )


def _echo_tree(node: PackageTree, depth: int = 0) -> None:
    if node.cyclic:
        suffix = " (cycle)"
    elif node.repeated:
        suffix = " (*)"
    else:
        suffix = ""
    click.echo(f"{'  ' * depth}{node.name}=={node.version}{suffix}")
    for child in node.dependencies:
        _echo_tree(child, depth + 1)


@click.group()
@click.version_option(version=__version__)
@click.option("--lockfile", default=None, help="Lockfile path, or a sqlite:/// or file: URI.")
@click.option("--registry", "registry_url", default=None, help="Registry base URL.")
@click.option("--fan-out", type=click.IntRange(min=1), default=None, help="Sibling dependencies resolved concurrently.")
@click.option("-v", "--verbose", count=True, help="Increase log output (-v info, -vv debug).")
@click.pass_context
def main(ctx: click.Context, lockfile: Optional[str], registry_url: Optional[str], fan_out: Optional[int], verbose: int) -> None:
    """nakes - resolve packages into a local lockfile"""
    _setup_logging(verbose)
    try:
        ctx.obj = load_config({"lockfile": lockfile, "registry_url": registry_url, "fan_out": fan_out})
    except NakesError as e:
        raise click.ClickException(e.message) from e


@main.command()
@click.pass_obj
def init(config: NakesConfig) -> None:
    """Create a fresh, empty lockfile."""

    async def create() -> None:
        lockfile = await SqliteLockfile.create(config.lockfile)
        await lockfile.close()

    _run(create())
    click.echo(f"Created lockfile {config.lockfile}")


@main.command()
@click.argument("name")
@click.argument("version", required=False)
@click.option("--tree", is_flag=True, help="Print the full dependency tree.")
@click.pass_obj
def install(config: NakesConfig, name: str, version: Optional[str], tree: bool) -> None:
    """Resolve NAME (at VERSION, or the latest release) into the lockfile."""

    async def resolve():
        async with SqliteLockfile(config.lockfile) as lockfile, _registry(config) as registry:
            pinned = version or await registry.latest_version(name)
            resolver = Resolver(lockfile, registry, fan_out=config.fan_out)
            if tree:
                return await resolver.resolve_tree(name, pinned)
            return await resolver.resolve(name, pinned)

    result = _run(resolve())
    if isinstance(result, PackageTree):
        _echo_tree(result)
        return
    package: Package = result
    click.echo(
        f"Installed {package.name}=={package.version} "
        f"(id {package.id}, {len(package.depends_on)} dependencies)"
    )


@main.command()
@click.argument("name")
@click.option("--version", "version", default=None, help="Only remove this version.")
@click.pass_obj
def uninstall(config: NakesConfig, name: str, version: Optional[str]) -> None:
    """Remove NAME from the lockfile."""

    async def remove() -> List[PackageRow]:
        async with SqliteLockfile(config.lockfile) as lockfile:
            rows = [
                row for row in await lockfile.list_packages()
                if row.name == name and (version is None or row.version == version)
            ]
            await lockfile.delete_packages([row.id for row in rows])
            return rows

    removed = _run(remove())
    if not removed:
        raise click.ClickException(f"{name} is not installed")
    for row in removed:
        click.echo(f"Removed {row.name}=={row.version}")


@main.command(name="list")
@click.pass_obj
def list_packages(config: NakesConfig) -> None:
    """List every package recorded in the lockfile."""

    async def load() -> List[PackageRow]:
        async with SqliteLockfile(config.lockfile) as lockfile:
            return await lockfile.list_packages()

    rows = _run(load())
    if not rows:
        click.echo("Lockfile is empty.")
        return
    for row in rows:
        marker = "" if row.resolved else "  [incomplete]"
        click.echo(f"{row.id:>5}  {row.name}=={row.version}{marker}")


@main.command()
@click.argument("name")
@click.argument("version")
@click.pass_obj
def show(config: NakesConfig, name: str, version: str) -> None:
    """Show a recorded package and its direct dependencies."""

    async def load():
        async with SqliteLockfile(config.lockfile) as lockfile:
            row = await lockfile.lookup_by_namever(name, version)
            if row is None:
                return None, []
            package = await lockfile.load_package(row)
            deps = [await lockfile.lookup_by_id(target_id) for target_id in package.depends_on]
            return package, deps

    package, deps = _run(load())
    if package is None:
        raise click.ClickException(f"{name}=={version} is not in the lockfile")
    click.echo(f"{package.name}=={package.version}")
    click.echo(f"  id:   {package.id}")
    click.echo(f"  hash: {package.hash}")
    click.echo(f"  dependencies: {len(deps)}")
    for dep in deps:
        if dep is not None:
            click.echo(f"    {dep.name}=={dep.version}")


@main.command()
@click.option("--host", default="127.0.0.1", help="Interface to bind.")
@click.option("--port", default=8000, type=int, help="Port to listen on.")
@click.pass_obj
def serve(config: NakesConfig, host: str, port: int) -> None:
    """Serve the lockfile over HTTP."""
    import uvicorn

    from nakes.core.dependencies import configure
    from nakes.main import app

    configure(config)
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
