"""
Resolve a (name, version) request into a persisted dependency graph.

Resolution of one package:
1. Validate the name and version.
2. Look it up in the lockfile. A row carrying the resolution-complete marker is
   a cache hit and is returned without touching the network.
3. Otherwise fetch its metadata from the registry and validate the hash.
4. Insert the row. Losing an insert race to a concurrent resolution is not an
   error: the stored row wins and the fetched data is only used if that row is
   still missing its dependencies.
5. Resolve every dependency, at most ``fan_out`` siblings at a time. A
   dependency that is already being resolved further up the same chain is not
   entered again; its id is recorded directly, which keeps cyclic registry data
   finite. A dependency being resolved by another branch of this resolver is
   awaited rather than fetched again, unless that branch is itself waiting on
   this package, in which case it is recorded as a back-edge too.
6. Record all edges in one batch, which also sets the completion marker.

A row left without the marker (failed or cancelled edge batch) is picked up by
the next resolution of the same package and completed under the same id.
"""
from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Awaitable, Callable, Dict, FrozenSet, List, Optional, Sequence, Set, Tuple, TypeVar

from nakes.core.errors import DuplicateDatabaseItem
from nakes.domain.models import Dependency, Package, PackageId, PackageRow, PackageTree
from nakes.domain.validation import validate_hash, validate_name, validate_version
from nakes.services.registry import PackageSource
from nakes.storage.lockfile_store import LockfileStore

logger = logging.getLogger(__name__)

DEFAULT_FAN_OUT = 8

T = TypeVar("T")
R = TypeVar("R")

Key = Tuple[str, str]

# (name, version) -> id of every package entered on the current path from the root
Chain = Dict[Key, PackageId]


async def gather_bounded(items: Sequence[T], func: Callable[[T], Awaitable[R]], limit: int) -> List[R]:
    """
    Run ``func`` over every item with at most ``limit`` calls in flight.

    Results keep the order of ``items``. If one call fails, the others are
    cancelled and the first failure is raised.
    """
    if limit < 1:
        raise ValueError("limit must be at least 1")
    if not items:
        return []

    semaphore = asyncio.Semaphore(limit)

    async def run(item: T) -> R:
        async with semaphore:
            return await func(item)

    tasks = [asyncio.ensure_future(run(item)) for item in items]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class _InFlight:
    """A resolution currently running in this resolver, joined by later requests for the same key."""

    def __init__(self, future: asyncio.Future):
        self.future = future
        # Set once the row exists; dependencies are only resolved after that.
        self.row_id: Optional[PackageId] = None


class Resolver:
    """
    Resolution-and-persistence engine over a lockfile and a registry.
    """

    def __init__(self, lockfile: LockfileStore, registry: PackageSource, fan_out: int = DEFAULT_FAN_OUT):
        if fan_out < 1:
            raise ValueError("fan_out must be at least 1")
        self.lockfile = lockfile
        self.registry = registry
        self.fan_out = fan_out
        self._in_flight: Dict[Key, _InFlight] = {}
        # package -> dependencies it is currently waiting on
        self._waits: Dict[Key, Counter] = {}

    async def resolve(self, name: str, version: str) -> Package:
        """
        Resolve ``name==version`` and its transitive dependencies.

        Returns:
            The package with ``depends_on`` holding its direct dependency ids.
        """
        return await self._resolve(name, version, {})

    async def resolve_tree(self, name: str, version: str) -> PackageTree:
        """
        Resolve ``name==version`` and return it with nested dependency packages.
        """
        package = await self.resolve(name, version)
        return await self.build_tree(package.id)

    async def build_tree(self, package_id: PackageId) -> PackageTree:
        """
        Expand a stored package into a PackageTree.

        Back-edges to an ancestor become ``cyclic`` leaves and packages already
        expanded elsewhere in the tree become ``repeated`` leaves, so every
        package is expanded once.
        """
        return await self._build_tree(package_id, frozenset(), set())

    async def _build_tree(
        self,
        package_id: PackageId,
        ancestors: FrozenSet[PackageId],
        expanded: Set[PackageId],
    ) -> PackageTree:
        row = await self.lockfile.lookup_by_id(package_id)
        if row is None:
            raise LookupError(f"Package {package_id} is not in the lockfile")

        if package_id in ancestors:
            return PackageTree(id=row.id, name=row.name, version=row.version, hash=row.hash, cyclic=True)
        if package_id in expanded:
            return PackageTree(id=row.id, name=row.name, version=row.version, hash=row.hash, repeated=True)

        expanded.add(package_id)
        path = ancestors | {package_id}
        children = []
        for target_id in await self.lockfile.load_edges(package_id):
            children.append(await self._build_tree(target_id, path, expanded))
        return PackageTree(id=row.id, name=row.name, version=row.version, hash=row.hash, dependencies=children)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _resolve(self, name: str, version: str, chain: Chain) -> Package:
        validate_name(name)
        validate_version(version)

        key = (name, version)
        entry = self._in_flight.get(key)
        if entry is not None:
            return await self._join(key, entry, chain)

        # Registered before the first await so concurrent branches find it.
        entry = _InFlight(asyncio.get_running_loop().create_future())
        self._in_flight[key] = entry
        try:
            package = await self._resolve_owned(name, version, chain, entry)
        except Exception as e:
            entry.future.set_exception(e)
            # Joiners still receive the exception; this only keeps asyncio from
            # reporting it as never retrieved when nobody joined.
            entry.future.exception()
            raise
        else:
            entry.future.set_result(package)
            return package
        finally:
            if not entry.future.done():
                entry.future.cancel()
            if self._in_flight.get(key) is entry:
                del self._in_flight[key]

    async def _join(self, key: Key, entry: _InFlight, chain: Chain) -> Package:
        logger.debug(f"Waiting for in-flight resolution of {key[0]}=={key[1]}")
        try:
            return await asyncio.shield(entry.future)
        except asyncio.CancelledError:
            if not entry.future.cancelled():
                raise
        # The owning branch was cancelled before finishing; take the work over.
        return await self._resolve(key[0], key[1], chain)

    async def _resolve_owned(self, name: str, version: str, chain: Chain, entry: _InFlight) -> Package:
        key = (name, version)
        row = await self.lockfile.lookup_by_namever(name, version)
        if row is not None and row.resolved:
            logger.debug(f"Lockfile hit: {name}=={version} (id {row.id})")
            return await self.lockfile.load_package(row)

        if row is None:
            logger.debug(f"Lockfile miss: {name}=={version}")
        else:
            logger.info(f"Completing partially recorded package {name}=={version} (id {row.id})")

        metadata = await self.registry.fetch(name, version)
        validate_hash(metadata.hash)

        if row is None:
            await self._warn_shared_hash(name, version, metadata.hash)
            row = await self._insert(name, version, metadata.hash)
            if row.resolved:
                return await self.lockfile.load_package(row)

        entry.row_id = row.id
        inner_chain = dict(chain)
        inner_chain[key] = row.id

        async def resolve_dependency(dependency: Dependency) -> PackageId:
            target = dependency.key
            known = inner_chain.get(target)
            if known is None:
                known = self._cycle_through_waits(key, target)
            if known is not None:
                logger.debug(f"Cycle: {name}=={version} -> {dependency.name}=={dependency.version}")
                return known

            self._add_wait(key, target)
            try:
                child = await self._resolve(dependency.name, dependency.version, inner_chain)
            finally:
                self._drop_wait(key, target)
            return child.id

        target_ids = await gather_bounded(metadata.dependencies, resolve_dependency, self.fan_out)

        try:
            await self.lockfile.insert_edges(row.id, target_ids)
        except DuplicateDatabaseItem:
            logger.debug(f"Dependencies of {name}=={version} were recorded concurrently")
            return await self.lockfile.load_package(row)

        logger.info(f"Resolved {name}=={version} (id {row.id}, {len(target_ids)} dependencies)")
        return Package(
            id=row.id,
            name=row.name,
            version=row.version,
            hash=row.hash,
            depends_on=target_ids,
        )

    def _add_wait(self, waiter: Key, target: Key) -> None:
        self._waits.setdefault(waiter, Counter())[target] += 1

    def _drop_wait(self, waiter: Key, target: Key) -> None:
        waits = self._waits.get(waiter)
        if waits is None:
            return
        waits[target] -= 1
        if waits[target] <= 0:
            del waits[target]
        if not waits:
            del self._waits[waiter]

    def _cycle_through_waits(self, waiter: Key, target: Key) -> Optional[PackageId]:
        """
        Get the row id of ``target`` if it is in flight and already waiting,
        directly or through other in-flight packages, on ``waiter``.

        Waiting on it would then never finish, so the dependency is recorded as
        a back-edge instead. Runs without awaiting, so the check and the wait
        that follows it cannot interleave with other branches.
        """
        entry = self._in_flight.get(target)
        if entry is None or entry.row_id is None:
            return None

        seen: Set[Key] = set()
        stack = [target]
        while stack:
            current = stack.pop()
            if current == waiter:
                return entry.row_id
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._waits.get(current, ()))
        return None

    async def _insert(self, name: str, version: str, hash_value: str) -> PackageRow:
        try:
            return await self.lockfile.insert_package(name, version, hash_value)
        except DuplicateDatabaseItem:
            logger.debug(f"{name}=={version} was inserted concurrently, using the stored row")
            existing = await self.lockfile.lookup_by_namever(name, version)
            if existing is None:
                # Removed again between the failed insert and this read.
                raise
            return existing

    async def _warn_shared_hash(self, name: str, version: str, hash_value: str) -> None:
        existing = await self.lockfile.lookup_by_hash(hash_value)
        if existing is not None and (existing.name, existing.version) != (name, version):
            logger.warning(
                f"{name}=={version} has the same content hash as "
                f"{existing.name}=={existing.version} (id {existing.id})"
            )
