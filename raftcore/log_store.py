"""Durable Raft log storage: an append-only WAL and an in-memory variant."""

from __future__ import annotations

import itertools
import os
import struct
import threading
import time
import zlib
from typing import BinaryIO, Iterable, Iterator, Optional, Protocol

from raftcore.state import EntryType, LogEntry, RaftError

# Payload record types.
RECORD_TYPE_ENTRY = 0x01
RECORD_TYPE_TRUNCATE = 0x02

# Two-byte sentinel that marks the current entry encoding. Neither byte can
# start valid UTF-8, so it never collides with legacy JSON command payloads.
_ENTRY_MAGIC = b"\xff\xc0"

_V1_HEADER = 20  # index + term + data length
_V2_HEADER = 21  # index + term + entry type + data length
_V3_HEADER = 23  # magic + index + term + entry type + data length

_INDEX_TERM = struct.Struct("<qq")
_U32 = struct.Struct("<I")
_I64 = struct.Struct("<q")

# Framing of every WAL record: magic, timestamp (ns), payload length, CRC32.
_FRAME_MAGIC = 0x57414C31
_FRAME = struct.Struct("<IqII")


class LogStoreError(RaftError):
    """Raised when log records cannot be encoded, decoded, read or written."""


class LogStore(Protocol):
    """Durable persistence for Raft log entries."""

    def append(self, entry: LogEntry) -> None: ...

    def truncate_suffix(self, from_index: int) -> None: ...

    def load_all(self) -> list[LogEntry]: ...

    def compact_prefix(self, up_to_index: int) -> None: ...

    def close(self) -> None: ...


# --- Encoding ---------------------------------------------------------------


def encode_log_entry(entry: LogEntry) -> bytes:
    """Serialise entry as a WAL payload, including its record-type byte."""
    data = bytes(entry.data or b"")
    return b"".join(
        (
            bytes((RECORD_TYPE_ENTRY,)),
            _ENTRY_MAGIC,
            _INDEX_TERM.pack(entry.index, entry.term),
            bytes((int(entry.entry_type),)),
            _U32.pack(len(data)),
            data,
        )
    )


def _entry_type(value: int) -> EntryType:
    try:
        return EntryType(value)
    except ValueError as exc:
        raise LogStoreError(f"unknown entry type {value}") from exc


def decode_log_entry(data: bytes) -> LogEntry:
    """Decode the payload that follows the record-type byte.

    The current format starts with a magic sentinel; two older formats
    without it are still understood, the one carrying a type byte being
    recognised by its exact length.
    """
    data = bytes(data)
    if not data:
        raise LogStoreError("entry payload too short: 0 bytes")

    if data[:2] == _ENTRY_MAGIC:
        if len(data) < _V3_HEADER:
            raise LogStoreError(f"v3 entry payload too short: {len(data)} bytes")
        index, term = _INDEX_TERM.unpack_from(data, 2)
        entry_type = _entry_type(data[18])
        (data_len,) = _U32.unpack_from(data, 19)
        if len(data) != _V3_HEADER + data_len:
            raise LogStoreError(
                f"v3 entry length mismatch: header says {_V3_HEADER + data_len} bytes,"
                f" got {len(data)}"
            )
        return LogEntry(index, term, entry_type, data[_V3_HEADER:])

    if len(data) < _V1_HEADER:
        raise LogStoreError(f"entry payload too short: {len(data)} bytes")
    index, term = _INDEX_TERM.unpack_from(data, 0)

    if len(data) >= _V2_HEADER:
        (data_len,) = _U32.unpack_from(data, 17)
        if len(data) == _V2_HEADER + data_len:
            return LogEntry(index, term, _entry_type(data[16]), data[_V2_HEADER:])

    (data_len,) = _U32.unpack_from(data, 16)
    if len(data) < _V1_HEADER + data_len:
        raise LogStoreError(
            f"entry data too short: need {_V1_HEADER + data_len} got {len(data)}"
        )
    return LogEntry(
        index, term, EntryType.COMMAND, data[_V1_HEADER : _V1_HEADER + data_len]
    )


def encode_truncate(from_index: int) -> bytes:
    """Serialise a truncation marker, including its record-type byte."""
    return bytes((RECORD_TYPE_TRUNCATE,)) + _I64.pack(from_index)


def decode_truncate(data: bytes) -> int:
    """Decode the payload that follows the truncation record-type byte."""
    if len(data) < 8:
        raise LogStoreError(f"truncate payload too short: {len(data)} bytes")
    return _I64.unpack_from(bytes(data), 0)[0]


# --- WAL framing --------------------------------------------------------------


def _frame(payload: bytes) -> bytes:
    return _FRAME.pack(_FRAME_MAGIC, time.time_ns(), len(payload), zlib.crc32(payload)) + payload


def _iter_payloads(raw: bytes) -> Iterator[bytes]:
    """Yield record payloads; a partial record at the tail ends the scan."""
    pos = 0
    while pos < len(raw):
        if len(raw) - pos < _FRAME.size:
            return
        magic, _, length, crc = _FRAME.unpack_from(raw, pos)
        if magic != _FRAME_MAGIC:
            raise LogStoreError(f"bad record magic 0x{magic:08x} at offset {pos}")
        start = pos + _FRAME.size
        end = start + length
        if end > len(raw):
            return
        payload = raw[start:end]
        if zlib.crc32(payload) != crc:
            raise LogStoreError(f"record checksum mismatch at offset {pos}")
        yield payload
        pos = end


def _cut_from(entries: list[LogEntry], from_index: int) -> list[LogEntry]:
    return list(itertools.takewhile(lambda e: e.index < from_index, entries))


def _replay(payloads: Iterable[bytes], strict: bool) -> list[LogEntry]:
    entries: list[LogEntry] = []
    for data in payloads:
        if not data:
            continue
        kind = data[0]
        if kind == RECORD_TYPE_ENTRY:
            try:
                entries.append(decode_log_entry(data[1:]))
            except LogStoreError as exc:
                raise LogStoreError(f"decode entry: {exc}") from exc
        elif kind == RECORD_TYPE_TRUNCATE:
            try:
                from_index = decode_truncate(data[1:])
            except LogStoreError as exc:
                raise LogStoreError(f"decode truncate: {exc}") from exc
            entries = _cut_from(entries, from_index)
        elif strict:
            raise LogStoreError(f"unknown record type 0x{kind:x}")
    return entries


def _read_file(path: str) -> Optional[bytes]:
    try:
        with open(path, "rb") as f:
            return f.read()
    except FileNotFoundError:
        return None


def _open_append(path: str) -> BinaryIO:
    fd = os.open(path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o600)
    return os.fdopen(fd, "ab")


class WALLogStore:
    """Raft log kept in an append-only file; every write is fsync'd.

    Truncation is recorded as a tombstone record and replayed on load,
    so the file is never rewritten except by prefix compaction.
    """

    def __init__(self, path) -> None:
        self._path = os.fspath(path)
        self._lock = threading.Lock()
        try:
            self._file: Optional[BinaryIO] = _open_append(self._path)
        except OSError as exc:
            raise LogStoreError(f"raft log store: open {self._path}: {exc}") from exc

    def _write(self, payload: bytes) -> None:
        with self._lock:
            if self._file is None:
                raise LogStoreError("store is closed")
            try:
                self._file.write(_frame(payload))
                self._file.flush()
                os.fsync(self._file.fileno())
            except OSError as exc:
                raise LogStoreError(str(exc)) from exc

    def append(self, entry: LogEntry) -> None:
        """Durably write entry."""
        try:
            self._write(encode_log_entry(entry))
        except LogStoreError as exc:
            raise LogStoreError(
                f"raft log store: append index={entry.index}: {exc}"
            ) from exc

    def truncate_suffix(self, from_index: int) -> None:
        """Durably mark entries with index >= from_index as discarded."""
        try:
            self._write(encode_truncate(from_index))
        except LogStoreError as exc:
            raise LogStoreError(
                f"raft log store: truncate from={from_index}: {exc}"
            ) from exc

    def load_all(self) -> list[LogEntry]:
        """Replay the file and return the effective log in index order."""
        try:
            raw = _read_file(self._path)
        except OSError as exc:
            raise LogStoreError(f"raft log store: open for recovery: {exc}") from exc
        if raw is None:
            return []
        try:
            return _replay(_iter_payloads(raw), strict=True)
        except LogStoreError as exc:
            raise LogStoreError(f"raft log store: {exc}") from exc

    def _rewrite_excluding(self, tmp_path: str, up_to_index: int) -> None:
        try:
            os.remove(tmp_path)
        except FileNotFoundError:
            pass
        raw = _read_file(self._path)
        kept: list[LogEntry] = []
        if raw is not None:
            entries = _replay(_iter_payloads(raw), strict=False)
            kept = [e for e in entries if e.index > up_to_index]
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as out:
            for entry in kept:
                out.write(_frame(encode_log_entry(entry)))
            out.flush()
            os.fsync(out.fileno())

    def compact_prefix(self, up_to_index: int) -> None:
        """Rewrite the file keeping only entries with index > up_to_index."""
        tmp_path = self._path + ".compact.tmp"
        with self._lock:
            if self._file is None:
                raise LogStoreError("raft log store: compact prefix: store is closed")
            try:
                self._rewrite_excluding(tmp_path, up_to_index)
            except (OSError, LogStoreError) as exc:
                _remove_quietly(tmp_path)
                raise LogStoreError(
                    f"raft log store: compact prefix up_to={up_to_index}: {exc}"
                ) from exc

            self._file.close()
            self._file = None
            rename_error: Optional[OSError] = None
            try:
                os.replace(tmp_path, self._path)
            except OSError as exc:
                rename_error = exc
                _remove_quietly(tmp_path)
            try:
                self._file = _open_append(self._path)
            except OSError as exc:
                raise LogStoreError(
                    f"raft log store: compact prefix reopen: {exc}"
                ) from exc
            if rename_error is not None:
                raise LogStoreError(
                    f"raft log store: compact prefix rename: {rename_error}"
                ) from rename_error

    def close(self) -> None:
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None

    def __enter__(self) -> "WALLogStore":
        return self

    def __exit__(self, *args) -> None:
        self.close()


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except OSError:
        pass


class MemLogStore:
    """In-memory log store; truncation is applied in place."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: list[LogEntry] = []

    def append(self, entry: LogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def truncate_suffix(self, from_index: int) -> None:
        with self._lock:
            self._entries = _cut_from(self._entries, from_index)

    def load_all(self) -> list[LogEntry]:
        with self._lock:
            return list(self._entries)

    def compact_prefix(self, up_to_index: int) -> None:
        with self._lock:
            self._entries = list(
                itertools.dropwhile(lambda e: e.index <= up_to_index, self._entries)
            )

    def close(self) -> None:
        pass