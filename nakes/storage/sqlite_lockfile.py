"""
SQLite-backed lockfile.

The lockfile holds two tables:
* ``package``: one row per resolved (name, version), unique on that pair.
* ``depends``: ordered dependency edges, referencing ``package.id`` on both ends.

All access goes through a single aiosqlite connection guarded by an asyncio
lock, so a transaction is never interleaved with another coroutine's
statements and readers never see half of an edge batch.
"""
from __future__ import annotations

import asyncio
import logging
import sqlite3
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

import aiosqlite

from nakes.core.errors import (
    DatabaseError,
    DuplicateDatabaseItem,
    LockfileCreationError,
    PackageInUse,
)
from nakes.domain.models import PackageId, PackageRow
from nakes.storage.lockfile_store import LockfileStore

logger = logging.getLogger(__name__)

SQLITE_URL_PREFIX = "sqlite:///"

SCHEMA = """
CREATE TABLE IF NOT EXISTS package (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    version TEXT NOT NULL,
    hash TEXT NOT NULL,
    resolved INTEGER NOT NULL DEFAULT 0,
    UNIQUE (name, version)
);

CREATE INDEX IF NOT EXISTS package_hash ON package (hash);

CREATE TABLE IF NOT EXISTS depends (
    id INTEGER NOT NULL REFERENCES package (id) ON DELETE CASCADE,
    position INTEGER NOT NULL,
    target_id INTEGER NOT NULL REFERENCES package (id),
    PRIMARY KEY (id, position)
);

CREATE INDEX IF NOT EXISTS depends_target ON depends (target_id);
"""

_PACKAGE_COLUMNS = "id, name, version, hash, resolved"

_DEPENDENTS_SQL = """
SELECT DISTINCT p.id, p.name, p.version, p.hash, p.resolved
FROM package p
JOIN depends d ON d.id = p.id
WHERE d.target_id = ? AND p.id != ?
ORDER BY p.id
"""


def parse_location(location: str) -> Tuple[str, bool, Optional[Path]]:
    """
    Split a lockfile location into what aiosqlite.connect needs.

    Returns:
        (database, uri, path) where ``path`` is the on-disk file when one can be
        determined, or None for in-memory databases and ``file:`` URIs.
    """
    if location.startswith(SQLITE_URL_PREFIX):
        location = location[len(SQLITE_URL_PREFIX):]
    if location.startswith("file:"):
        return location, True, None
    if location == ":memory:":
        return location, False, None
    path = Path(location).expanduser()
    return str(path), False, path


def _to_row(row: aiosqlite.Row) -> PackageRow:
    return PackageRow(
        id=row["id"],
        name=row["name"],
        version=row["version"],
        hash=row["hash"],
        resolved=bool(row["resolved"]),
    )


class SqliteLockfile(LockfileStore):
    def __init__(self, location: str):
        self.location = location
        self._database, self._uri, self.path = parse_location(location)
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    @classmethod
    async def create(cls, location: str) -> "SqliteLockfile":
        """
        Initialize a brand new lockfile, refusing to touch an existing one.
        """
        lockfile = cls(location)
        if lockfile.path is not None and lockfile.path.exists():
            raise LockfileCreationError(f"{lockfile.path} already exists")
        await lockfile.open()
        return lockfile

    async def open(self) -> None:
        if self._conn is not None:
            return

        creating = self.path is None or not self.path.exists()
        if self.path is not None and creating:
            logger.info(f"Generating lockfile at {self.path}")
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise LockfileCreationError(str(e)) from e

        conn: Optional[aiosqlite.Connection] = None
        try:
            conn = await aiosqlite.connect(self._database, uri=self._uri)
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA foreign_keys = ON")
            await conn.executescript(SCHEMA)
            await conn.commit()
        except sqlite3.Error as e:
            if conn is not None:
                await conn.close()
            if creating:
                raise LockfileCreationError(str(e)) from e
            raise DatabaseError(f"failed to open {self.location}: {e}") from e

        self._conn = conn
        logger.debug(f"Opened lockfile {self.location}")

    async def close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        await conn.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise DatabaseError(f"lockfile {self.location} is not open")
        return self._conn

    async def _rollback(self, conn: aiosqlite.Connection) -> None:
        try:
            await conn.rollback()
        except sqlite3.Error as e:
            logger.warning(f"Rollback failed on {self.location}: {e}")

    async def _fetchall(self, sql: str, params: Iterable = ()) -> List[aiosqlite.Row]:
        conn = self._connection()
        async with self._lock:
            try:
                return list(await conn.execute_fetchall(sql, tuple(params)))
            except sqlite3.Error as e:
                raise DatabaseError(str(e)) from e

    async def _fetch_package(self, where: str, params: Iterable) -> Optional[PackageRow]:
        rows = await self._fetchall(
            f"SELECT {_PACKAGE_COLUMNS} FROM package WHERE {where} ORDER BY id LIMIT 1",
            params,
        )
        if not rows:
            return None
        return _to_row(rows[0])

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def lookup_by_id(self, package_id: PackageId) -> Optional[PackageRow]:
        return await self._fetch_package("id = ?", (package_id,))

    async def lookup_by_namever(self, name: str, version: str) -> Optional[PackageRow]:
        return await self._fetch_package("name = ? AND version = ?", (name, version))

    async def lookup_by_hash(self, hash_value: str) -> Optional[PackageRow]:
        return await self._fetch_package("hash = ?", (hash_value,))

    async def load_edges(self, source_id: PackageId) -> List[PackageId]:
        rows = await self._fetchall(
            "SELECT target_id FROM depends WHERE id = ? ORDER BY position",
            (source_id,),
        )
        return [row["target_id"] for row in rows]

    async def list_packages(self) -> List[PackageRow]:
        rows = await self._fetchall(f"SELECT {_PACKAGE_COLUMNS} FROM package ORDER BY id")
        return [_to_row(row) for row in rows]

    async def incomplete_packages(self) -> List[PackageRow]:
        rows = await self._fetchall(
            f"SELECT {_PACKAGE_COLUMNS} FROM package WHERE resolved = 0 ORDER BY id"
        )
        return [_to_row(row) for row in rows]

    async def dependents(self, package_id: PackageId) -> List[PackageRow]:
        rows = await self._fetchall(_DEPENDENTS_SQL, (package_id, package_id))
        return [_to_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert_package(self, name: str, version: str, hash_value: str) -> PackageRow:
        conn = self._connection()
        async with self._lock:
            try:
                cursor = await conn.execute(
                    "INSERT INTO package (name, version, hash) VALUES (?, ?, ?)",
                    (name, version, hash_value),
                )
                await conn.commit()
            except sqlite3.IntegrityError as e:
                await self._rollback(conn)
                raise DuplicateDatabaseItem(
                    f"Package {name}=={version} already exists in the lockfile"
                ) from e
            except sqlite3.Error as e:
                await self._rollback(conn)
                raise DatabaseError(str(e)) from e

        logger.debug(f"Inserted package {name}=={version} as id {cursor.lastrowid}")
        return PackageRow(id=cursor.lastrowid, name=name, version=version, hash=hash_value)

    async def insert_edges(self, source_id: PackageId, target_ids: List[PackageId]) -> None:
        conn = self._connection()
        edges = [(source_id, position, target_id) for position, target_id in enumerate(target_ids)]

        async with self._lock:
            try:
                if edges:
                    await conn.executemany(
                        "INSERT INTO depends (id, position, target_id) VALUES (?, ?, ?)",
                        edges,
                    )
                cursor = await conn.execute(
                    "UPDATE package SET resolved = 1 WHERE id = ?", (source_id,)
                )
                if cursor.rowcount == 0:
                    await self._rollback(conn)
                    raise DatabaseError(f"package {source_id} does not exist")
                await conn.commit()
            except sqlite3.IntegrityError as e:
                await self._rollback(conn)
                if "UNIQUE" in str(e):
                    raise DuplicateDatabaseItem(
                        f"Dependencies of package {source_id} are already recorded"
                    ) from e
                raise DatabaseError(f"dangling dependency edge for package {source_id}: {e}") from e
            except sqlite3.Error as e:
                await self._rollback(conn)
                raise DatabaseError(str(e)) from e

        logger.debug(f"Recorded {len(edges)} dependencies for package {source_id}")

    async def delete_packages(self, package_ids: Iterable[PackageId]) -> None:
        ids = sorted(set(package_ids))
        if not ids:
            return
        marks = ", ".join("?" for _ in ids)
        users_sql = (
            f"SELECT DISTINCT p.id, p.name, p.version, p.hash, p.resolved, d.target_id "
            f"FROM package p JOIN depends d ON d.id = p.id "
            f"WHERE d.target_id IN ({marks}) AND p.id NOT IN ({marks}) "
            f"ORDER BY d.target_id, p.id"
        )

        conn = self._connection()
        async with self._lock:
            try:
                users = list(await conn.execute_fetchall(users_sql, (*ids, *ids)))
                if users:
                    first = users[0]["target_id"]
                    names = ", ".join(
                        f"{row['name']}=={row['version']}" for row in users if row["target_id"] == first
                    )
                    raise PackageInUse(f"Package {first} is required by {names}")
                # Outgoing edges, self references included, go with the rows (ON DELETE CASCADE).
                await conn.execute(f"DELETE FROM package WHERE id IN ({marks})", tuple(ids))
                await conn.commit()
            except sqlite3.Error as e:
                await self._rollback(conn)
                raise DatabaseError(str(e)) from e

        logger.info(f"Removed package(s) {', '.join(str(i) for i in ids)} from the lockfile")
