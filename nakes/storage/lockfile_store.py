from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from nakes.domain.models import Package, PackageId, PackageRow


class LockfileStore(ABC):
    """
    Abstract base class for the lockfile: package rows plus dependency edges.
    """

    @abstractmethod
    async def open(self) -> None:
        """Open the store, creating an empty one if it does not exist yet."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying connection."""
        pass

    @abstractmethod
    async def lookup_by_id(self, package_id: PackageId) -> Optional[PackageRow]:
        """Get a package row by id, or None."""
        pass

    @abstractmethod
    async def lookup_by_namever(self, name: str, version: str) -> Optional[PackageRow]:
        """Get a package row by exact name and version, or None."""
        pass

    @abstractmethod
    async def lookup_by_hash(self, hash_value: str) -> Optional[PackageRow]:
        """Get the oldest package row carrying this content hash, or None."""
        pass

    @abstractmethod
    async def insert_package(self, name: str, version: str, hash_value: str) -> PackageRow:
        """
        Insert a new package row and return it with its assigned id.
        Raises DuplicateDatabaseItem if (name, version) is already stored.
        """
        pass

    @abstractmethod
    async def insert_edges(self, source_id: PackageId, target_ids: List[PackageId]) -> None:
        """
        Record every dependency of a package and mark it resolved, all or nothing.
        Raises DuplicateDatabaseItem if the package already has recorded edges.
        """
        pass

    @abstractmethod
    async def load_edges(self, source_id: PackageId) -> List[PackageId]:
        """Get the recorded dependency ids of a package, in declaration order."""
        pass

    @abstractmethod
    async def list_packages(self) -> List[PackageRow]:
        """Get all package rows ordered by id."""
        pass

    @abstractmethod
    async def incomplete_packages(self) -> List[PackageRow]:
        """Get rows whose edge batch was never recorded."""
        pass

    @abstractmethod
    async def dependents(self, package_id: PackageId) -> List[PackageRow]:
        """Get the packages that depend directly on the given one."""
        pass

    @abstractmethod
    async def delete_packages(self, package_ids: Iterable[PackageId]) -> None:
        """
        Delete a set of packages and their outgoing edges in one transaction.
        Raises PackageInUse, deleting nothing, if a package outside the set
        still depends on one of them.
        """
        pass

    async def delete_package(self, package_id: PackageId) -> None:
        await self.delete_packages([package_id])

    async def load_package(self, row: PackageRow) -> Package:
        """Turn a storage row into a graph node by loading its edges."""
        return Package(
            id=row.id,
            name=row.name,
            version=row.version,
            hash=row.hash,
            depends_on=await self.load_edges(row.id),
        )

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
