"""TTL expiry and size-budget enforcement.

A sweep walks the storage backend's listing and moves through four states::

    IDLE -> SCANNING -> EXPIRING -> SIZE_CHECKING -> IDLE

* **SCANNING** -- read the header of every listed entry. Entries that vanish
  mid-sweep are skipped; entries whose header cannot be decoded are deleted
  so the cache heals itself.
* **EXPIRING** -- delete every entry whose ``expires_at`` has passed.
* **SIZE_CHECKING** -- if the remaining footprint exceeds ``max_size``,
  delete entries soonest-expiring first until it fits. Ties are broken
  arbitrarily. Expiry time stands in for recency; true LRU is not tracked.

Deletions re-read the entry under its per-key write lock first, so a value
written concurrently by another thread is judged on its own header rather
than the one seen during the scan. Failures on individual keys are logged
and counted; the sweep carries on with the next key.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Iterator, Optional

from compassone_cache.cache.codec import HEADER_SIZE, EntryHeader, decode_header
from compassone_cache.cache.locks import KeyLockTable
from compassone_cache.cache.storage import StorageBackend
from compassone_cache.exceptions import CacheError, CorruptEntryError, EntryNotFoundError

logger = logging.getLogger(__name__)


class SweepState(str, enum.Enum):
    """Phase of the eviction sweep currently in progress."""

    IDLE = "idle"
    SCANNING = "scanning"
    EXPIRING = "expiring"
    SIZE_CHECKING = "size_checking"


@dataclass
class SweepReport:
    """Outcome of a single eviction sweep."""

    scanned: int = 0
    expired: int = 0
    evicted: int = 0
    corrupt: int = 0
    errors: int = 0
    temp_files_removed: int = 0
    bytes_before: int = 0
    bytes_after: int = 0
    duration: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class EvictionManager:
    """Runs expiry and size-budget sweeps over a storage backend.

    Args:
        backend: Storage to sweep.
        locks: The same lock table the cache facade uses, so sweeps and
            ``set``/``get`` on one key never interleave.
        max_size: Byte budget for the summed entry footprints.
        clock: Returns the current time in epoch seconds.
        temp_file_grace: Age in seconds after which stray temp files from
            interrupted writes are removed.
        lock_timeout: Maximum wait for a per-key lock during deletion.
        low_water: Fraction of *max_size* to evict down to once the budget
            is exceeded, so that the next few writes do not trigger another
            sweep straight away.
    """

    def __init__(
        self,
        backend: StorageBackend,
        locks: KeyLockTable,
        max_size: int,
        clock: Callable[[], float] = time.time,
        temp_file_grace: float = 60.0,
        lock_timeout: Optional[float] = None,
        low_water: float = 1.0,
    ) -> None:
        if not 0 < low_water <= 1:
            raise ValueError(f"low_water must be in (0, 1], got {low_water}")
        self._backend = backend
        self._locks = locks
        self._max_size = max_size
        self._target_size = int(max_size * low_water)
        self._clock = clock
        self._temp_file_grace = temp_file_grace
        self._lock_timeout = lock_timeout
        self._sweep_lock = threading.Lock()
        self._state = SweepState.IDLE

    @property
    def state(self) -> SweepState:
        return self._state

    @property
    def max_size(self) -> int:
        return self._max_size

    # ------------------------------------------------------------------ #
    # Sweep
    # ------------------------------------------------------------------ #

    def sweep(self) -> SweepReport:
        """Run one full sweep and return what it did.

        Only one sweep runs at a time; concurrent callers wait their turn.
        """
        with self._sweep_lock:
            started = time.monotonic()
            report = SweepReport()
            try:
                live = self._scan(report)
                live = self._expire(live, report)
                report.bytes_after = self._enforce_budget(live, report)
                try:
                    report.temp_files_removed = self._backend.purge_temp_files(
                        self._temp_file_grace
                    )
                except OSError as exc:
                    report.errors += 1
                    logger.warning("Could not purge temp files: %s", exc)
            finally:
                self._state = SweepState.IDLE
            report.duration = time.monotonic() - started
            logger.debug(
                "Sweep done: scanned=%d expired=%d evicted=%d corrupt=%d errors=%d "
                "bytes=%d->%d",
                report.scanned,
                report.expired,
                report.evicted,
                report.corrupt,
                report.errors,
                report.bytes_before,
                report.bytes_after,
            )
            return report

    def measure(self) -> tuple[int, int]:
        """Return ``(entries, bytes)`` for live entries without modifying anything."""
        now = self._clock()
        entries = 0
        total = 0
        for eid in self._iter_keys():
            try:
                header = self._read_header(eid)
            except (EntryNotFoundError, CorruptEntryError, OSError):
                continue
            if header.is_expired(now):
                continue
            entries += 1
            total += header.footprint
        return entries, total

    # ------------------------------------------------------------------ #
    # Phases
    # ------------------------------------------------------------------ #

    def _scan(self, report: SweepReport) -> list[tuple[str, EntryHeader]]:
        self._state = SweepState.SCANNING
        live: list[tuple[str, EntryHeader]] = []
        for eid in self._iter_keys(report):
            report.scanned += 1
            try:
                header = self._read_header(eid)
            except EntryNotFoundError:
                continue
            except CorruptEntryError as exc:
                logger.warning("Removing corrupt cache entry %s: %s", eid, exc)
                try:
                    # Keeps the entry only if a valid one replaced it meanwhile.
                    deleted, survivor = self._delete_if(eid, lambda h: False)
                except (OSError, CacheError) as del_exc:
                    report.errors += 1
                    logger.warning("Could not remove corrupt entry %s: %s", eid, del_exc)
                    continue
                if deleted:
                    report.corrupt += 1
                if survivor is not None:
                    live.append((eid, survivor))
                continue
            except OSError as exc:
                report.errors += 1
                logger.warning("Skipping unreadable cache entry %s: %s", eid, exc)
                continue
            live.append((eid, header))
        report.bytes_before = sum(header.footprint for _, header in live)
        return live

    def _expire(
        self, live: list[tuple[str, EntryHeader]], report: SweepReport
    ) -> list[tuple[str, EntryHeader]]:
        self._state = SweepState.EXPIRING
        now = self._clock()
        remaining: list[tuple[str, EntryHeader]] = []
        for eid, header in live:
            if not header.is_expired(now):
                remaining.append((eid, header))
                continue
            try:
                deleted, survivor = self._delete_if(eid, lambda h: h.is_expired(now))
            except (OSError, CacheError) as exc:
                report.errors += 1
                logger.warning("Could not expire cache entry %s: %s", eid, exc)
                continue
            if deleted:
                report.expired += 1
            if survivor is not None:
                remaining.append((eid, survivor))
        return remaining

    def _enforce_budget(
        self, live: list[tuple[str, EntryHeader]], report: SweepReport
    ) -> int:
        self._state = SweepState.SIZE_CHECKING
        total = sum(header.footprint for _, header in live)
        if total <= self._max_size:
            return total

        for eid, header in sorted(live, key=lambda item: item[1].expires_at):
            if total <= self._target_size:
                break
            try:
                deleted, _ = self._delete_if(eid, lambda h: True)
            except (OSError, CacheError) as exc:
                report.errors += 1
                logger.warning("Could not evict cache entry %s: %s", eid, exc)
                continue
            if deleted:
                report.evicted += 1
            total -= header.footprint
        return total

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _iter_keys(self, report: Optional[SweepReport] = None) -> Iterator[str]:
        """Yield entry ids, stopping quietly if the listing itself fails."""
        try:
            yield from self._backend.list_keys()
        except OSError as exc:
            if report is not None:
                report.errors += 1
            logger.warning("Listing cache entries failed: %s", exc)

    def _read_header(self, eid: str) -> EntryHeader:
        return decode_header(self._backend.read_head(eid, HEADER_SIZE))

    def _delete_if(
        self, eid: str, should_delete: Callable[[EntryHeader], bool]
    ) -> tuple[bool, Optional[EntryHeader]]:
        """Delete *eid* under its write lock if its current header qualifies.

        Returns:
            ``(deleted, survivor)`` where *survivor* is the header of an entry
            that was kept, or ``None`` if no entry remains.
        """
        with self._locks.write_lock(eid, self._lock_timeout):
            try:
                current = self._read_header(eid)
            except EntryNotFoundError:
                return False, None
            except CorruptEntryError:
                return self._backend.delete(eid), None
            if not should_delete(current):
                return False, current
            return self._backend.delete(eid), None
