"""Binary encoding of cache entries.

Every entry is stored as a fixed, versioned header followed by the payload::

    offset  size  field
    0       4     magic (b"CCE1")
    4       1     format version
    5       1     flags (bit 0: payload is zlib-compressed)
    6       2     header length in bytes
    8       8     created_at (float, epoch seconds)
    16      8     expires_at (float, epoch seconds)
    24      8     size_bytes (stored payload length)
    32      8     original_size (decoded payload length)
    40      4     CRC32 of the stored payload

All integers are big-endian. The header length is written explicitly so a
later format version can append fields: readers decode the fields they know
and skip to ``header length`` to find the payload.

Payloads at or above the compression threshold are deflated with
:mod:`zlib`. Compression is an optimisation only; any failure (or a result
that is not smaller than the input) falls back to storing the raw bytes.
"""

from __future__ import annotations

import logging
import struct
import zlib
from dataclasses import dataclass

from compassone_cache.exceptions import CorruptEntryError

logger = logging.getLogger(__name__)

MAGIC = b"CCE1"
FORMAT_VERSION = 1
FLAG_COMPRESSED = 0x01

_HEADER = struct.Struct(">4sBBHddQQI")
HEADER_SIZE = _HEADER.size
"""Length of the version 1 header in bytes."""

_COMPRESSION_LEVEL = 6


@dataclass(frozen=True)
class EntryHeader:
    """Metadata stored at the start of every entry."""

    created_at: float
    expires_at: float
    size_bytes: int
    original_size: int
    compressed: bool
    checksum: int
    version: int = FORMAT_VERSION
    header_size: int = HEADER_SIZE

    @property
    def footprint(self) -> int:
        """Bytes the entry occupies in storage, header included."""
        return self.header_size + self.size_bytes

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


@dataclass(frozen=True)
class CacheEntry:
    """A fully decoded entry: header metadata plus the original value."""

    header: EntryHeader
    value: bytes

    @property
    def created_at(self) -> float:
        return self.header.created_at

    @property
    def expires_at(self) -> float:
        return self.header.expires_at

    @property
    def size_bytes(self) -> int:
        return self.header.size_bytes

    @property
    def compressed(self) -> bool:
        return self.header.compressed

    def is_expired(self, now: float) -> bool:
        return self.header.is_expired(now)


# --- Payload compression ---


def encode_payload(value: bytes, threshold: int) -> tuple[bytes, bool]:
    """Compress *value* when it is at least *threshold* bytes long.

    Returns:
        ``(stored_bytes, compressed)``. Never raises for bytes input.
    """
    if len(value) < threshold:
        return value, False
    try:
        packed = zlib.compress(value, _COMPRESSION_LEVEL)
    except (zlib.error, MemoryError, OverflowError) as exc:
        logger.warning("Compression failed, storing %d bytes raw: %s", len(value), exc)
        return value, False
    if len(packed) >= len(value):
        return value, False
    return packed, True


def decode_payload(stored: bytes, compressed: bool) -> bytes:
    """Inverse of :func:`encode_payload`.

    Raises:
        CorruptEntryError: If *compressed* is set but the data cannot be inflated.
    """
    if not compressed:
        return stored
    try:
        return zlib.decompress(stored)
    except zlib.error as exc:
        raise CorruptEntryError(f"Cannot inflate compressed payload: {exc}") from exc


# --- Entry encoding ---


def encode_entry(
    value: bytes,
    created_at: float,
    expires_at: float,
    threshold: int,
) -> bytes:
    """Encode *value* and its timestamps into a single storable blob.

    Raises:
        ValueError: If ``expires_at`` is not after ``created_at``.
    """
    if expires_at <= created_at:
        raise ValueError(
            f"expires_at ({expires_at}) must be after created_at ({created_at})"
        )
    stored, compressed = encode_payload(value, threshold)
    header = _HEADER.pack(
        MAGIC,
        FORMAT_VERSION,
        FLAG_COMPRESSED if compressed else 0,
        HEADER_SIZE,
        created_at,
        expires_at,
        len(stored),
        len(value),
        zlib.crc32(stored),
    )
    return header + stored


def decode_header(data: bytes) -> EntryHeader:
    """Decode only the header of an encoded entry.

    *data* may be the full entry or just its leading bytes.

    Raises:
        CorruptEntryError: On bad magic, unsupported version, or truncation.
    """
    if len(data) < HEADER_SIZE:
        raise CorruptEntryError(
            f"Entry truncated: {len(data)} bytes, header needs {HEADER_SIZE}"
        )
    (
        magic,
        version,
        flags,
        header_size,
        created_at,
        expires_at,
        size_bytes,
        original_size,
        checksum,
    ) = _HEADER.unpack_from(data)
    if magic != MAGIC:
        raise CorruptEntryError(f"Bad entry magic {magic!r}")
    if version < FORMAT_VERSION or header_size < HEADER_SIZE:
        raise CorruptEntryError(
            f"Unsupported entry format version {version} (header {header_size} bytes)"
        )
    if expires_at <= created_at:
        raise CorruptEntryError("Entry expires before it was created")
    return EntryHeader(
        created_at=created_at,
        expires_at=expires_at,
        size_bytes=size_bytes,
        original_size=original_size,
        compressed=bool(flags & FLAG_COMPRESSED),
        checksum=checksum,
        version=version,
        header_size=header_size,
    )


def decode_entry(data: bytes) -> CacheEntry:
    """Decode a blob produced by :func:`encode_entry`.

    Raises:
        CorruptEntryError: If the header is invalid, the payload length or
            checksum does not match, or decompression fails.
    """
    header = decode_header(data)
    stored = data[header.header_size:]
    if len(stored) != header.size_bytes:
        raise CorruptEntryError(
            f"Payload length {len(stored)} does not match header ({header.size_bytes})"
        )
    if zlib.crc32(stored) != header.checksum:
        raise CorruptEntryError("Payload checksum mismatch")
    value = decode_payload(stored, header.compressed)
    if len(value) != header.original_size:
        raise CorruptEntryError(
            f"Decoded length {len(value)} does not match header ({header.original_size})"
        )
    return CacheEntry(header=header, value=value)
