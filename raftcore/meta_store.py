"""Durable storage for the Raft term and vote."""

from __future__ import annotations

import os
import struct
import threading
import zlib
from dataclasses import dataclass
from typing import Optional, Protocol

from raftcore.state import RaftError

_META_VERSION = 1
_VOTED_FOR_SIZE = 255
_HEADER_SIZE = 1 + 8 + 1 + _VOTED_FOR_SIZE
_CHECKSUM_SIZE = 4
META_RECORD_SIZE = _HEADER_SIZE + _CHECKSUM_SIZE

_HEAD = struct.Struct("<BqB")
_CRC = struct.Struct("<I")


class MetaStoreError(RaftError):
    """Raised when persistent metadata cannot be read or written."""


@dataclass(frozen=True)
class RaftMeta:
    """Persistent Raft state: current term and the vote cast in it."""

    term: int = 0
    voted_for: str = ""


class MetaStore(Protocol):
    def load(self) -> RaftMeta: ...

    def save(self, meta: RaftMeta) -> None: ...

    def close(self) -> None: ...


class FileMetaStore:
    """Metadata kept as one fixed-size, CRC-protected record at offset 0."""

    def __init__(self, path) -> None:
        self._path = os.fspath(path)
        try:
            fd = os.open(self._path, os.O_RDWR | os.O_CREAT, 0o600)
        except OSError as exc:
            raise MetaStoreError(f"raft meta: open {self._path}: {exc}") from exc
        self._file = os.fdopen(fd, "r+b", buffering=0)

    def load(self) -> RaftMeta:
        """Read the stored record; an empty file yields the zero state."""
        try:
            self._file.seek(0)
            buf = self._file.read(META_RECORD_SIZE)
        except OSError as exc:
            raise MetaStoreError(f"raft meta: read: {exc}") from exc
        if not buf:
            return RaftMeta()
        if len(buf) != META_RECORD_SIZE:
            raise MetaStoreError(
                f"raft meta: short read ({len(buf)} of {META_RECORD_SIZE} bytes)"
            )

        (stored,) = _CRC.unpack_from(buf, _HEADER_SIZE)
        computed = zlib.crc32(buf[:_HEADER_SIZE])
        if stored != computed:
            raise MetaStoreError(
                f"raft meta: CRC mismatch (stored=0x{stored:x} computed=0x{computed:x})"
                " — file may be corrupt"
            )

        version, term, vote_len = _HEAD.unpack_from(buf, 0)
        if version != _META_VERSION:
            raise MetaStoreError(f"raft meta: unsupported version {version}")
        voted_for = buf[10 : 10 + vote_len].decode("utf-8", errors="replace")
        return RaftMeta(term=term, voted_for=voted_for)

    def save(self, meta: RaftMeta) -> None:
        """Overwrite the record with meta and fsync before returning."""
        vote = meta.voted_for.encode("utf-8")
        if len(vote) > _VOTED_FOR_SIZE:
            raise MetaStoreError(
                f"raft meta: votedFor too long ({len(vote)} bytes, max {_VOTED_FOR_SIZE})"
            )
        header = _HEAD.pack(_META_VERSION, meta.term, len(vote)) + vote.ljust(
            _VOTED_FOR_SIZE, b"\x00"
        )
        record = header + _CRC.pack(zlib.crc32(header))
        try:
            self._file.seek(0)
            self._file.write(record)
        except OSError as exc:
            raise MetaStoreError(f"raft meta: write: {exc}") from exc
        try:
            os.fsync(self._file.fileno())
        except OSError as exc:
            raise MetaStoreError(f"raft meta: sync: {exc}") from exc

    def close(self) -> None:
        self._file.close()

    def __enter__(self) -> "FileMetaStore":
        return self

    def __exit__(self, *args) -> None:
        self.close()


class MemMetaStore:
    """In-memory metadata store with optional save-failure injection."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data = RaftMeta()
        self._save_error: Optional[BaseException] = None

    def inject_save_error(self, error: Optional[BaseException]) -> None:
        """Make every later save raise error; None clears it."""
        with self._lock:
            self._save_error = error

    def load(self) -> RaftMeta:
        with self._lock:
            return self._data

    def save(self, meta: RaftMeta) -> None:
        with self._lock:
            if self._save_error is not None:
                raise self._save_error
            self._data = meta

    def close(self) -> None:
        pass