"""Tests for per-key reader/writer locking."""

from __future__ import annotations

import threading
import time

import pytest

from compassone_cache.cache.locks import KeyLockTable, ReadWriteLock
from compassone_cache.exceptions import CacheReadError, LockTimeoutError


class TestReadWriteLock:
    def test_readers_share(self) -> None:
        lock = ReadWriteLock()
        assert lock.acquire_read(timeout=0.1)
        assert lock.acquire_read(timeout=0.1)
        lock.release_read()
        lock.release_read()

    def test_writer_excludes_readers(self) -> None:
        lock = ReadWriteLock()
        assert lock.acquire_write(timeout=0.1)
        assert lock.acquire_read(timeout=0.05) is False
        lock.release_write()
        assert lock.acquire_read(timeout=0.1)
        lock.release_read()

    def test_reader_excludes_writer(self) -> None:
        lock = ReadWriteLock()
        assert lock.acquire_read(timeout=0.1)
        assert lock.acquire_write(timeout=0.05) is False
        lock.release_read()
        assert lock.acquire_write(timeout=0.1)
        lock.release_write()

    def test_failed_writer_does_not_block_readers(self) -> None:
        lock = ReadWriteLock()
        assert lock.acquire_read(timeout=0.1)
        assert lock.acquire_write(timeout=0.05) is False
        # No writer is waiting any more, so new readers get in.
        assert lock.acquire_read(timeout=0.1)
        lock.release_read()
        lock.release_read()


class TestKeyLockTable:
    def test_released_on_exception(self) -> None:
        locks = KeyLockTable(timeout=0.1)
        with pytest.raises(RuntimeError):
            with locks.write_lock("k"):
                raise RuntimeError("boom")
        with locks.write_lock("k"):
            pass

    def test_table_entries_dropped_when_unused(self) -> None:
        locks = KeyLockTable(timeout=0.1)
        with locks.read_lock("a"), locks.write_lock("b"):
            assert len(locks) == 2
        assert len(locks) == 0

    def test_timeout_raises(self) -> None:
        locks = KeyLockTable(timeout=0.05)
        held = threading.Event()
        release = threading.Event()

        def _holder() -> None:
            with locks.write_lock("k"):
                held.set()
                release.wait(2)

        t = threading.Thread(target=_holder)
        t.start()
        try:
            held.wait(2)
            with pytest.raises(LockTimeoutError):
                with locks.read_lock("k"):
                    pass
        finally:
            release.set()
            t.join()
        assert len(locks) == 0

    def test_timeout_is_a_read_error(self) -> None:
        assert issubclass(LockTimeoutError, CacheReadError)

    def test_unrelated_keys_do_not_contend(self) -> None:
        locks = KeyLockTable(timeout=0.05)
        with locks.write_lock("a"):
            with locks.write_lock("b"):
                pass

    def test_same_key_writers_serialised(self) -> None:
        locks = KeyLockTable(timeout=5)
        inside = 0
        max_inside = 0
        guard = threading.Lock()

        def _worker() -> None:
            nonlocal inside, max_inside
            for _ in range(20):
                with locks.write_lock("k"):
                    with guard:
                        inside += 1
                        max_inside = max(max_inside, inside)
                    time.sleep(0.001)
                    with guard:
                        inside -= 1

        threads = [threading.Thread(target=_worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert max_inside == 1
        assert len(locks) == 0
