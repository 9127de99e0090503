"""
Tests for the SQLite lockfile store.
"""

import asyncio

import pytest

from nakes.core.errors import (
    DatabaseError,
    DuplicateDatabaseItem,
    LockfileCreationError,
    PackageInUse,
)
from nakes.storage.sqlite_lockfile import SqliteLockfile, parse_location

HASH_A = "a" * 32
HASH_B = "b" * 32
HASH_C = "c" * 32


class TestParseLocation:
    def test_plain_path(self, tmp_path):
        database, uri, path = parse_location(str(tmp_path / "x.lock"))
        assert database == str(tmp_path / "x.lock")
        assert uri is False
        assert path == tmp_path / "x.lock"

    def test_sqlite_url(self, tmp_path):
        database, uri, path = parse_location(f"sqlite:///{tmp_path}/x.lock")
        assert path == tmp_path / "x.lock"
        assert uri is False

    def test_file_uri(self):
        database, uri, path = parse_location("file:memdb?mode=memory&cache=shared")
        assert uri is True
        assert path is None

    def test_memory(self):
        assert parse_location(":memory:") == (":memory:", False, None)


class TestOpen:
    @pytest.mark.asyncio
    async def test_creates_missing_file(self, lockfile_path):
        assert not lockfile_path.exists()
        async with SqliteLockfile(str(lockfile_path)) as store:
            assert await store.list_packages() == []
        assert lockfile_path.exists()

    @pytest.mark.asyncio
    async def test_create_refuses_existing_lockfile(self, lockfile_path):
        lockfile_path.write_bytes(b"")
        with pytest.raises(LockfileCreationError):
            await SqliteLockfile.create(str(lockfile_path))

    @pytest.mark.asyncio
    async def test_corrupt_file_is_database_error(self, lockfile_path):
        lockfile_path.write_bytes(b"this is not a sqlite database, just some text" * 20)
        with pytest.raises(DatabaseError):
            await SqliteLockfile(str(lockfile_path)).open()

    @pytest.mark.asyncio
    async def test_closed_store_raises_database_error(self, lockfile_path):
        store = SqliteLockfile(str(lockfile_path))
        with pytest.raises(DatabaseError):
            await store.lookup_by_id(1)

    @pytest.mark.asyncio
    async def test_data_survives_reopen(self, lockfile_path):
        async with SqliteLockfile(str(lockfile_path)) as store:
            row = await store.insert_package("requests", "2.31.0", HASH_A)
        async with SqliteLockfile(str(lockfile_path)) as store:
            again = await store.lookup_by_namever("requests", "2.31.0")
        assert again is not None
        assert again.id == row.id


class TestPackages:
    @pytest.mark.asyncio
    async def test_insert_assigns_ids(self, lockfile):
        first = await lockfile.insert_package("alpha", "1.0", HASH_A)
        second = await lockfile.insert_package("beta", "1.0", HASH_B)
        assert first.id != second.id
        assert first.resolved is False

    @pytest.mark.asyncio
    async def test_lookups(self, lockfile):
        row = await lockfile.insert_package("alpha", "1.0", HASH_A)

        assert await lockfile.lookup_by_id(row.id) == row
        assert await lockfile.lookup_by_namever("alpha", "1.0") == row
        assert await lockfile.lookup_by_hash(HASH_A) == row

    @pytest.mark.asyncio
    async def test_lookup_absent_returns_none(self, lockfile):
        assert await lockfile.lookup_by_id(42) is None
        assert await lockfile.lookup_by_namever("alpha", "1.0") is None
        assert await lockfile.lookup_by_hash(HASH_A) is None

    @pytest.mark.asyncio
    async def test_lookup_by_namever_needs_both_fields(self, lockfile):
        await lockfile.insert_package("alpha", "1.0", HASH_A)
        assert await lockfile.lookup_by_namever("alpha", "2.0") is None

    @pytest.mark.asyncio
    async def test_duplicate_namever_is_rejected(self, lockfile):
        await lockfile.insert_package("alpha", "1.0", HASH_A)
        with pytest.raises(DuplicateDatabaseItem):
            await lockfile.insert_package("alpha", "1.0", HASH_B)
        assert len(await lockfile.list_packages()) == 1

    @pytest.mark.asyncio
    async def test_same_hash_under_other_name_is_allowed(self, lockfile):
        first = await lockfile.insert_package("alpha", "1.0", HASH_A)
        await lockfile.insert_package("alpha-fork", "1.0", HASH_A)
        assert (await lockfile.lookup_by_hash(HASH_A)).id == first.id

    @pytest.mark.asyncio
    async def test_concurrent_inserts_store_one_row(self, lockfile):
        results = await asyncio.gather(
            *[lockfile.insert_package("alpha", "1.0", HASH_A) for _ in range(5)],
            return_exceptions=True,
        )
        inserted = [r for r in results if not isinstance(r, Exception)]
        assert len(inserted) == 1
        assert all(isinstance(r, DuplicateDatabaseItem) for r in results if isinstance(r, Exception))


class TestEdges:
    @pytest.mark.asyncio
    async def test_edges_keep_order_and_mark_resolved(self, lockfile):
        a = await lockfile.insert_package("alpha", "1.0", HASH_A)
        b = await lockfile.insert_package("beta", "1.0", HASH_B)
        c = await lockfile.insert_package("gamma", "1.0", HASH_C)

        await lockfile.insert_edges(a.id, [c.id, b.id])

        assert await lockfile.load_edges(a.id) == [c.id, b.id]
        assert (await lockfile.lookup_by_id(a.id)).resolved is True

    @pytest.mark.asyncio
    async def test_no_edges_is_empty_list(self, lockfile):
        a = await lockfile.insert_package("alpha", "1.0", HASH_A)
        assert await lockfile.load_edges(a.id) == []

    @pytest.mark.asyncio
    async def test_zero_dependencies_still_marks_resolved(self, lockfile):
        a = await lockfile.insert_package("alpha", "1.0", HASH_A)
        await lockfile.insert_edges(a.id, [])
        assert (await lockfile.lookup_by_id(a.id)).resolved is True
        assert await lockfile.incomplete_packages() == []

    @pytest.mark.asyncio
    async def test_dangling_target_writes_nothing(self, lockfile):
        a = await lockfile.insert_package("alpha", "1.0", HASH_A)
        b = await lockfile.insert_package("beta", "1.0", HASH_B)

        with pytest.raises(DatabaseError):
            await lockfile.insert_edges(a.id, [b.id, 999])

        assert await lockfile.load_edges(a.id) == []
        assert (await lockfile.lookup_by_id(a.id)).resolved is False

    @pytest.mark.asyncio
    async def test_second_batch_is_duplicate(self, lockfile):
        a = await lockfile.insert_package("alpha", "1.0", HASH_A)
        b = await lockfile.insert_package("beta", "1.0", HASH_B)
        await lockfile.insert_edges(a.id, [b.id])

        with pytest.raises(DuplicateDatabaseItem):
            await lockfile.insert_edges(a.id, [b.id])
        assert await lockfile.load_edges(a.id) == [b.id]

    @pytest.mark.asyncio
    async def test_unknown_source_is_database_error(self, lockfile):
        with pytest.raises(DatabaseError):
            await lockfile.insert_edges(999, [])

    @pytest.mark.asyncio
    async def test_large_batch_is_not_truncated(self, lockfile):
        root = await lockfile.insert_package("root", "1.0", HASH_A)
        targets = []
        for i in range(10):
            row = await lockfile.insert_package(f"dep{i:02d}", "1.0", f"{i:02d}".ljust(32, "x"))
            targets.append(row.id)

        await lockfile.insert_edges(root.id, targets)
        assert await lockfile.load_edges(root.id) == targets

    @pytest.mark.asyncio
    async def test_load_package_includes_edges(self, lockfile):
        a = await lockfile.insert_package("alpha", "1.0", HASH_A)
        b = await lockfile.insert_package("beta", "1.0", HASH_B)
        await lockfile.insert_edges(a.id, [b.id])

        package = await lockfile.load_package(a)
        assert package.id == a.id
        assert package.depends_on == [b.id]


class TestIncompleteAndDelete:
    @pytest.mark.asyncio
    async def test_incomplete_packages(self, lockfile):
        a = await lockfile.insert_package("alpha", "1.0", HASH_A)
        b = await lockfile.insert_package("beta", "1.0", HASH_B)
        await lockfile.insert_edges(b.id, [])

        assert [row.id for row in await lockfile.incomplete_packages()] == [a.id]

    @pytest.mark.asyncio
    async def test_dependents(self, lockfile):
        a = await lockfile.insert_package("alpha", "1.0", HASH_A)
        b = await lockfile.insert_package("beta", "1.0", HASH_B)
        await lockfile.insert_edges(a.id, [b.id])

        assert [row.id for row in await lockfile.dependents(b.id)] == [a.id]
        assert await lockfile.dependents(a.id) == []

    @pytest.mark.asyncio
    async def test_delete_removes_row_and_outgoing_edges(self, lockfile):
        a = await lockfile.insert_package("alpha", "1.0", HASH_A)
        b = await lockfile.insert_package("beta", "1.0", HASH_B)
        await lockfile.insert_edges(a.id, [b.id])

        await lockfile.delete_package(a.id)

        assert await lockfile.lookup_by_id(a.id) is None
        assert await lockfile.load_edges(a.id) == []
        assert await lockfile.lookup_by_id(b.id) is not None

    @pytest.mark.asyncio
    async def test_delete_refuses_required_package(self, lockfile):
        a = await lockfile.insert_package("alpha", "1.0", HASH_A)
        b = await lockfile.insert_package("beta", "1.0", HASH_B)
        await lockfile.insert_edges(a.id, [b.id])

        with pytest.raises(PackageInUse):
            await lockfile.delete_package(b.id)
        assert await lockfile.lookup_by_id(b.id) is not None

    @pytest.mark.asyncio
    async def test_delete_self_dependent_package(self, lockfile):
        a = await lockfile.insert_package("alpha", "1.0", HASH_A)
        await lockfile.insert_edges(a.id, [a.id])

        await lockfile.delete_package(a.id)
        assert await lockfile.lookup_by_id(a.id) is None

    @pytest.mark.asyncio
    async def test_delete_set_is_all_or_nothing(self, lockfile):
        old = await lockfile.insert_package("alpha", "1.0", HASH_A)
        new = await lockfile.insert_package("alpha", "2.0", HASH_B)
        user = await lockfile.insert_package("beta", "1.0", HASH_C)
        await lockfile.insert_edges(user.id, [new.id])

        with pytest.raises(PackageInUse, match="beta==1.0"):
            await lockfile.delete_packages([old.id, new.id])

        assert await lockfile.lookup_by_id(old.id) is not None
        assert await lockfile.lookup_by_id(new.id) is not None

    @pytest.mark.asyncio
    async def test_delete_set_ignores_references_inside_the_set(self, lockfile):
        a = await lockfile.insert_package("alpha", "1.0", HASH_A)
        b = await lockfile.insert_package("beta", "1.0", HASH_B)
        await lockfile.insert_edges(a.id, [b.id])
        await lockfile.insert_edges(b.id, [a.id])

        await lockfile.delete_packages([a.id, b.id])

        assert await lockfile.list_packages() == []
