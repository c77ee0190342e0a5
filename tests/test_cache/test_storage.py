"""Tests for the storage backends."""

from __future__ import annotations

import os
import sqlite3
import stat
import sys
import time
from pathlib import Path

import diskcache
import pytest

from compassone_cache.cache.storage import (
    DiskcacheBackend,
    FileSystemBackend,
    MemoryBackend,
    StorageBackend,
    entry_id,
)
from compassone_cache.exceptions import EntryNotFoundError


@pytest.fixture(params=["file", "memory", "diskcache"])
def backend(request, tmp_path: Path) -> StorageBackend:
    """Each backend implementation, sharing one contract."""
    if request.param == "file":
        b: StorageBackend = FileSystemBackend(tmp_path)
    elif request.param == "memory":
        b = MemoryBackend()
    else:
        b = DiskcacheBackend(tmp_path / "dc")
    yield b
    b.close()


class TestEntryId:
    def test_deterministic(self) -> None:
        assert entry_id("GET|/assets") == entry_id("GET|/assets")

    def test_distinct_keys_distinct_ids(self) -> None:
        assert entry_id("a") != entry_id("b")

    @pytest.mark.parametrize(
        "key", ["", "with/slash", "..\\..\\etc", "colon:star*?", "ü" * 500, "x" * 10_000]
    )
    def test_filesystem_safe(self, key: str) -> None:
        eid = entry_id(key)
        assert len(eid) == 64
        assert all(c in "0123456789abcdef" for c in eid)


# ------------------------------------------------------------------ #
# Shared contract
# ------------------------------------------------------------------ #


class TestBackendContract:
    def test_write_then_read(self, backend: StorageBackend) -> None:
        eid = entry_id("k1")
        backend.write(eid, b"hello")
        assert backend.read(eid) == b"hello"

    def test_overwrite_replaces(self, backend: StorageBackend) -> None:
        eid = entry_id("k1")
        backend.write(eid, b"old")
        backend.write(eid, b"new value")
        assert backend.read(eid) == b"new value"

    def test_read_missing_raises_not_found(self, backend: StorageBackend) -> None:
        with pytest.raises(EntryNotFoundError):
            backend.read(entry_id("missing"))

    def test_read_head(self, backend: StorageBackend) -> None:
        eid = entry_id("k1")
        backend.write(eid, b"0123456789")
        assert backend.read_head(eid, 4) == b"0123"

    def test_delete_is_idempotent(self, backend: StorageBackend) -> None:
        eid = entry_id("k1")
        backend.write(eid, b"x")
        assert backend.delete(eid) is True
        assert backend.delete(eid) is False
        with pytest.raises(EntryNotFoundError):
            backend.read(eid)

    def test_list_keys(self, backend: StorageBackend) -> None:
        ids = {entry_id(f"k{i}") for i in range(5)}
        for eid in ids:
            backend.write(eid, b"x")
        assert set(backend.list_keys()) == ids

    def test_list_keys_tolerates_deletion_mid_iteration(self, backend: StorageBackend) -> None:
        ids = [entry_id(f"k{i}") for i in range(10)]
        for eid in ids:
            backend.write(eid, b"x")
        seen = []
        for eid in backend.list_keys():
            seen.append(eid)
            backend.delete(ids[-1])
        assert set(seen) <= set(ids)

    def test_clear(self, backend: StorageBackend) -> None:
        for i in range(3):
            backend.write(entry_id(f"k{i}"), b"x")
        assert backend.clear() == 3
        assert list(backend.list_keys()) == []


# ------------------------------------------------------------------ #
# File system specifics
# ------------------------------------------------------------------ #


class TestFileSystemBackend:
    def test_one_file_per_entry(self, tmp_path: Path) -> None:
        backend = FileSystemBackend(tmp_path)
        eid = entry_id("k1")
        backend.write(eid, b"abc")
        assert (tmp_path / f"{eid}.entry").read_bytes() == b"abc"
        assert [p.name for p in tmp_path.iterdir()] == [f"{eid}.entry"]

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_entry_permissions_owner_only(self, tmp_path: Path) -> None:
        backend = FileSystemBackend(tmp_path)
        eid = entry_id("k1")
        backend.write(eid, b"abc")
        mode = stat.S_IMODE((tmp_path / f"{eid}.entry").stat().st_mode)
        assert mode == 0o600

    def test_rejects_raw_keys(self, tmp_path: Path) -> None:
        backend = FileSystemBackend(tmp_path)
        with pytest.raises(ValueError):
            backend.write("../escape", b"x")

    def test_list_keys_ignores_foreign_files(self, tmp_path: Path) -> None:
        backend = FileSystemBackend(tmp_path)
        eid = entry_id("k1")
        backend.write(eid, b"x")
        (tmp_path / "notes.txt").write_text("hi")
        (tmp_path / f".{eid}.entry.abc123.tmp").write_bytes(b"partial")
        assert list(backend.list_keys()) == [eid]

    def test_list_keys_missing_directory(self, tmp_path: Path) -> None:
        backend = FileSystemBackend(tmp_path / "nope")
        assert list(backend.list_keys()) == []

    def test_failed_write_leaves_previous_value(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        backend = FileSystemBackend(tmp_path)
        eid = entry_id("k1")
        backend.write(eid, b"original")

        def _fail(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", _fail)
        with pytest.raises(OSError):
            backend.write(eid, b"replacement")
        monkeypatch.undo()

        assert backend.read(eid) == b"original"
        # The temp file was cleaned up
        assert sorted(p.name for p in tmp_path.iterdir()) == [f"{eid}.entry"]

    def test_purge_temp_files_respects_grace(self, tmp_path: Path) -> None:
        backend = FileSystemBackend(tmp_path)
        old = tmp_path / ".deadbeef.entry.old.tmp"
        fresh = tmp_path / ".deadbeef.entry.new.tmp"
        old.write_bytes(b"x")
        fresh.write_bytes(b"x")
        past = time.time() - 3600
        os.utime(old, (past, past))

        assert backend.purge_temp_files(older_than=60) == 1
        assert not old.exists()
        assert fresh.exists()


class TestMemoryBackend:
    def test_len(self) -> None:
        backend = MemoryBackend()
        backend.write(entry_id("a"), b"1")
        backend.write(entry_id("b"), b"2")
        assert len(backend) == 2

    def test_stores_copy_of_bytearray(self) -> None:
        backend = MemoryBackend()
        data = bytearray(b"abc")
        backend.write(entry_id("a"), data)
        data[0] = ord("z")
        assert backend.read(entry_id("a")) == b"abc"


class TestDiskcacheBackend:
    def test_persists_across_instances(self, tmp_path: Path) -> None:
        first = DiskcacheBackend(tmp_path / "dc")
        first.write(entry_id("k"), b"kept")
        first.close()

        second = DiskcacheBackend(tmp_path / "dc")
        try:
            assert second.read(entry_id("k")) == b"kept"
        finally:
            second.close()

    @pytest.mark.parametrize("method", ["iterkeys", "clear"])
    @pytest.mark.parametrize(
        "error",
        [sqlite3.OperationalError("database is locked"), diskcache.Timeout("busy")],
    )
    def test_store_errors_surface_as_oserror(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, method: str, error: Exception
    ) -> None:
        b = DiskcacheBackend(tmp_path / "dc")
        b.write(entry_id("k"), b"v")

        def _fail(*args, **kwargs):
            raise error

        monkeypatch.setattr(diskcache.Cache, method, _fail)
        try:
            with pytest.raises(OSError):
                if method == "iterkeys":
                    list(b.list_keys())
                else:
                    b.clear()
        finally:
            monkeypatch.undo()
            b.close()
