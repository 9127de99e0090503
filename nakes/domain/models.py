"""
Pydantic models for nakes.

This module defines the data passed between the lockfile store, the registry
client and the resolver:
- Storage rows (flat, exactly what the lockfile holds)
- Resolved graph nodes (shallow with ids, or deep with nested packages)
- Registry metadata consumed by the resolver
- API request models
"""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field


# Type alias for a package's store-assigned identifier
PackageId = int


# ---------------------------------------------------------------------------
# Lockfile Models
# ---------------------------------------------------------------------------


class PackageRow(BaseModel):
    """
    A single row of the ``package`` table.

    Rows never own their dependencies. ``resolved`` is the resolution-complete
    marker: it is set in the same transaction that records the row's edges, so a
    row with ``resolved=False`` is known to be missing its dependency set rather
    than having none.
    """

    id: PackageId
    name: str
    version: str
    hash: str
    resolved: bool = False


class Package(BaseModel):
    """
    A resolved node of the dependency graph.
    """

    id: PackageId
    name: str
    version: str
    hash: str
    depends_on: List[PackageId] = Field(
        default_factory=list,
        description="Ids of the packages this one directly requires, in declaration order.",
    )


class PackageTree(BaseModel):
    """
    Deep form of a resolved package with its dependencies nested.

    A dependency pointing back to one of its ancestors is emitted as a leaf with
    ``cyclic=True`` so that cyclic registry data still produces a finite tree.
    A package shared by several parents is expanded at its first occurrence
    only; later occurrences are leaves with ``repeated=True``, keeping the tree
    linear in the size of the graph.
    """

    id: PackageId
    name: str
    version: str
    hash: str
    dependencies: List[PackageTree] = Field(default_factory=list)
    cyclic: bool = Field(
        default=False,
        description="True when this node repeats an ancestor and was not expanded.",
    )
    repeated: bool = Field(
        default=False,
        description="True when this package was already expanded earlier in the tree.",
    )


# ---------------------------------------------------------------------------
# Registry Models
# ---------------------------------------------------------------------------


class Dependency(BaseModel):
    """An exact (name, version) requirement declared by the registry."""

    name: str
    version: str

    @property
    def key(self) -> tuple:
        return (self.name, self.version)


class PackageMetadata(BaseModel):
    """
    Everything the resolver needs from the registry for one (name, version).
    """

    name: str
    version: str
    hash: str
    dependencies: List[Dependency] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# API Models
# ---------------------------------------------------------------------------


class ResolveRequest(BaseModel):
    """Body of ``POST /resolve``."""

    name: str = Field(description="Registry package name.")
    version: str = Field(description="Exact version to resolve.")
    deep: bool = Field(
        default=False,
        description="Return nested dependency packages instead of ids.",
    )


PackageTree.model_rebuild()
