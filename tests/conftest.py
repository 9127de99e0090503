"""
Shared fixtures: a temporary lockfile and an in-memory registry.
"""

import asyncio
from typing import Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from nakes.core.errors import InvalidPackageSchema
from nakes.domain.models import Dependency, PackageMetadata
from nakes.storage.sqlite_lockfile import SqliteLockfile


def make_hash(name: str, version: str) -> str:
    """A 32 character hash, unique per (name, version)."""
    return f"{name}-{version}".ljust(32, "0")[:32]


class FakeRegistry:
    """
    Registry stand-in serving metadata from a dict.

    Counts fetches per package and records how many fetches were in flight at
    once. ``delay`` makes every fetch yield to the event loop so concurrent
    resolutions actually interleave.
    """

    def __init__(self, delay: float = 0.001):
        self.packages: Dict[Tuple[str, str], PackageMetadata] = {}
        self.latest: Dict[str, str] = {}
        self.fetches: List[Tuple[str, str]] = []
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self.failures: Dict[Tuple[str, str], Exception] = {}

    def add(self, name: str, version: str, deps: Optional[List[Tuple[str, str]]] = None, hash_value: Optional[str] = None) -> PackageMetadata:
        metadata = PackageMetadata(
            name=name,
            version=version,
            hash=hash_value or make_hash(name, version),
            dependencies=[Dependency(name=n, version=v) for n, v in (deps or [])],
        )
        self.packages[(name, version)] = metadata
        self.latest[name] = version
        return metadata

    def fetch_count(self, name: str, version: str) -> int:
        return self.fetches.count((name, version))

    async def fetch(self, name: str, version: str) -> PackageMetadata:
        self.fetches.append((name, version))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if (name, version) in self.failures:
                raise self.failures[(name, version)]
            if (name, version) not in self.packages:
                raise InvalidPackageSchema(f"{name} has no release {version!r}")
            return self.packages[(name, version)]
        finally:
            self.in_flight -= 1

    async def latest_version(self, name: str) -> str:
        if name not in self.latest:
            raise InvalidPackageSchema(f"{name} has no 'info.version'")
        return self.latest[name]

    async def aclose(self) -> None:
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        pass


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def lockfile_path(tmp_path):
    return tmp_path / "nakes.lock"


@pytest_asyncio.fixture
async def lockfile(lockfile_path):
    store = SqliteLockfile(str(lockfile_path))
    await store.open()
    yield store
    await store.close()
