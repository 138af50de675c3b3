"""Snapshot files on the local filesystem.

A snapshot is stored as ``snapshot-{index}-{term}.snap``::

    header  magic "RAFT" (4) | version (2) | index (8) | term (8) | kv count (8)
    body    per record: key length (2) | key | value length (4) | value
    footer  CRC32 (IEEE) over header and body (4)

All integers are big-endian. The cluster configuration travels inside the
body as JSON under a reserved key, so the binary layout needs no version
change to carry it.
"""

from __future__ import annotations

import glob
import logging
import os
import re
import struct
import zlib
from dataclasses import replace
from typing import List, Tuple

from raftcore.snapshot import (
    SNAPSHOT_CONFIG_KEY,
    ClusterConfig,
    CorruptedSnapshotError,
    SnapshotData,
    SnapshotError,
    SnapshotMeta,
    SnapshotNotFoundError,
)

logger = logging.getLogger(__name__)

SNAPSHOT_MAGIC = 0x52414654  # "RAFT"
SNAPSHOT_VERSION = 0x0001

_HEADER = struct.Struct(">IHqqq")
_FOOTER = struct.Struct(">I")
_KEY_LEN = struct.Struct(">H")
_VAL_LEN = struct.Struct(">I")

HEADER_SIZE = _HEADER.size  # 30
FOOTER_SIZE = _FOOTER.size  # 4

_MAX_KEY_LEN = 0xFFFF
_MAX_VALUE_LEN = 0xFFFFFFFF
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1
_DECIMAL = re.compile(r"[+-]?[0-9]+")

_CORRUPTED = "raft: snapshot checksum mismatch"


def _to_bytes(text: str) -> bytes:
    return text.encode("utf-8", errors="surrogateescape")


def _to_str(raw: bytes) -> str:
    return raw.decode("utf-8", errors="surrogateescape")


def encode_snapshot(index: int, term: int, data: SnapshotData) -> Tuple[bytes, int]:
    """Serialise a snapshot; returns the bytes and the CRC32 of header and body."""
    records = dict(data.kv)
    records[SNAPSHOT_CONFIG_KEY] = data.config.to_json()

    body = bytearray()
    for key, value in records.items():
        key_bytes = _to_bytes(key)
        value_bytes = _to_bytes(value)
        if len(key_bytes) > _MAX_KEY_LEN:
            raise SnapshotError(
                f"raft: snapshot encode: key too long ({len(key_bytes)} bytes)"
            )
        if len(value_bytes) > _MAX_VALUE_LEN:
            raise SnapshotError(
                f"raft: snapshot encode: value too long ({len(value_bytes)} bytes)"
            )
        body += _KEY_LEN.pack(len(key_bytes))
        body += key_bytes
        body += _VAL_LEN.pack(len(value_bytes))
        body += value_bytes

    try:
        header = _HEADER.pack(SNAPSHOT_MAGIC, SNAPSHOT_VERSION, index, term, len(records))
    except struct.error as exc:
        raise SnapshotError(f"raft: snapshot encode: header: {exc}") from exc
    content = header + bytes(body)
    checksum = zlib.crc32(content)
    return content + _FOOTER.pack(checksum), checksum


def _corrupted(detail: str) -> CorruptedSnapshotError:
    return CorruptedSnapshotError(f"{_CORRUPTED}: {detail}")


def decode_snapshot(raw: bytes) -> Tuple[SnapshotMeta, SnapshotData]:
    """Parse and validate snapshot bytes.

    Raises CorruptedSnapshotError on a checksum mismatch or malformed data.
    A missing or unreadable embedded configuration yields the zero config.
    """
    raw = bytes(raw)
    if len(raw) < HEADER_SIZE + FOOTER_SIZE:
        raise _corrupted(f"file too short ({len(raw)} bytes)")

    body_end = len(raw) - FOOTER_SIZE
    (stored,) = _FOOTER.unpack_from(raw, body_end)
    if zlib.crc32(raw[:body_end]) != stored:
        raise CorruptedSnapshotError()

    magic, _version, index, term, kv_count = _HEADER.unpack_from(raw, 0)
    if magic != SNAPSHOT_MAGIC:
        raise _corrupted(f"bad magic 0x{magic:08X}")

    meta = SnapshotMeta(index=index, term=term, crc32=stored)

    kv: dict[str, str] = {}
    pos = HEADER_SIZE
    for record in range(max(kv_count, 0)):
        if pos + _KEY_LEN.size > body_end:
            raise _corrupted(f"truncated key length at record {record}")
        (key_len,) = _KEY_LEN.unpack_from(raw, pos)
        pos += _KEY_LEN.size
        if pos + key_len > body_end:
            raise _corrupted(f"truncated key at record {record}")
        key = _to_str(raw[pos : pos + key_len])
        pos += key_len

        if pos + _VAL_LEN.size > body_end:
            raise _corrupted(f"truncated value length at record {record}")
        (value_len,) = _VAL_LEN.unpack_from(raw, pos)
        pos += _VAL_LEN.size
        if pos + value_len > body_end:
            raise _corrupted(f"truncated value at record {record}")
        kv[key] = _to_str(raw[pos : pos + value_len])
        pos += value_len

    config = ClusterConfig()
    config_json = kv.pop(SNAPSHOT_CONFIG_KEY, None)
    if config_json is not None:
        try:
            config = ClusterConfig.from_json(config_json)
        except ValueError as exc:
            logger.warning(
                "raft: snapshot decode: cluster config missing or malformed;"
                " using zero config (index=%d): %s",
                index,
                exc,
            )

    return meta, SnapshotData(kv=kv, config=config)


def marshal_snapshot_data(index: int, term: int, data: SnapshotData) -> bytes:
    """Serialise a snapshot for disk or network transfer."""
    raw, _ = encode_snapshot(index, term, data)
    return raw


def unmarshal_snapshot_data(raw: bytes) -> Tuple[SnapshotMeta, SnapshotData]:
    """Parse bytes produced by marshal_snapshot_data."""
    return decode_snapshot(raw)


def _parse_int64(text: str, what: str) -> int:
    if not _DECIMAL.fullmatch(text):
        raise ValueError(f"raft: snapshot: parse {what} {text!r}: invalid syntax")
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f"raft: snapshot: parse {what} {text!r}: value out of range")
    return value


def parse_snapshot_filename(name: str) -> Tuple[int, int]:
    """Extract (index, term) from ``snapshot-{index}-{term}.snap``."""
    stem = name[: -len(".snap")] if name.endswith(".snap") else name
    if stem.startswith("snapshot-"):
        stem = stem[len("snapshot-") :]
    parts = stem.split("-", 1)
    if len(parts) != 2:
        raise ValueError(f"raft: snapshot: bad filename format: {stem!r}")
    return _parse_int64(parts[0], "index"), _parse_int64(parts[1], "term")


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except OSError:
        pass


class FileSnapshotStore:
    """Snapshots kept as binary files in one directory."""

    def __init__(self, directory) -> None:
        self._dir = os.fspath(directory)
        try:
            os.makedirs(self._dir, mode=0o700, exist_ok=True)
        except OSError as exc:
            raise SnapshotError(
                f"raft: snapshot store: create dir {self._dir}: {exc}"
            ) from exc

        for leftover in glob.glob(os.path.join(glob.escape(self._dir), "*.tmp")):
            try:
                os.remove(leftover)
            except OSError as exc:
                logger.warning(
                    "raft: snapshot store: failed to remove leftover tmp file %s: %s",
                    leftover,
                    exc,
                )

    @property
    def directory(self) -> str:
        return self._dir

    def _path(self, index: int, term: int) -> str:
        return os.path.join(self._dir, f"snapshot-{index}-{term}.snap")

    def save(self, meta: SnapshotMeta, data: SnapshotData) -> SnapshotMeta:
        """Durably write a snapshot via a temporary file and atomic rename.

        Returns a copy of meta with size and crc32 set to what was written.
        """
        final_path = self._path(meta.index, meta.term)
        tmp_path = final_path + ".tmp"
        _remove_quietly(tmp_path)

        try:
            raw, checksum = encode_snapshot(meta.index, meta.term, data)
        except SnapshotError as exc:
            raise SnapshotError(f"raft: snapshot store: encode: {exc}") from exc

        try:
            fd = os.open(tmp_path, os.O_CREAT | os.O_WRONLY | os.O_TRUNC, 0o600)
        except OSError as exc:
            raise SnapshotError(
                f"raft: snapshot store: create tmp {tmp_path}: {exc}"
            ) from exc
        try:
            with os.fdopen(fd, "wb") as out:
                out.write(raw)
                out.flush()
                os.fsync(out.fileno())
                size = os.fstat(out.fileno()).st_size
        except OSError as exc:
            _remove_quietly(tmp_path)
            raise SnapshotError(f"raft: snapshot store: write tmp: {exc}") from exc

        try:
            os.replace(tmp_path, final_path)
        except OSError as exc:
            _remove_quietly(tmp_path)
            raise SnapshotError(
                f"raft: snapshot store: rename to {final_path}: {exc}"
            ) from exc

        logger.debug(
            "raft: snapshot saved index=%d term=%d size=%d path=%s",
            meta.index,
            meta.term,
            size,
            final_path,
        )
        return replace(meta, size=size, crc32=checksum)

    def load(self, index: int) -> Tuple[SnapshotMeta, SnapshotData]:
        """Read and validate the snapshot at index."""
        target = next((m for m in self.list() if m.index == index), None)
        if target is None:
            raise SnapshotNotFoundError()

        path = self._path(target.index, target.term)
        try:
            with open(path, "rb") as f:
                raw = f.read()
        except FileNotFoundError as exc:
            raise SnapshotNotFoundError() from exc
        except OSError as exc:
            raise SnapshotError(f"raft: snapshot store: read {path}: {exc}") from exc

        meta, data = decode_snapshot(raw)
        try:
            meta.size = os.stat(path).st_size
        except OSError:
            pass
        meta.created_at = None
        return meta, data

    def latest(self) -> SnapshotMeta:
        """Metadata of the snapshot with the highest index."""
        metas = self.list()
        if not metas:
            raise SnapshotNotFoundError()
        return metas[0]

    def list(self) -> List[SnapshotMeta]:
        """All snapshot metadata, highest index first."""
        pattern = os.path.join(glob.escape(self._dir), "snapshot-*.snap")
        metas: List[SnapshotMeta] = []
        for path in glob.glob(pattern):
            try:
                index, term = parse_snapshot_filename(os.path.basename(path))
            except ValueError as exc:
                logger.warning(
                    "raft: snapshot store: skip unparseable file %s: %s", path, exc
                )
                continue
            try:
                size = os.stat(path).st_size
            except OSError:
                size = 0
            metas.append(SnapshotMeta(index=index, term=term, size=size))
        metas.sort(key=lambda m: m.index, reverse=True)
        return metas

    def prune(self, retain_count: int) -> None:
        """Delete all but the retain_count newest snapshots (at least one kept)."""
        retain_count = max(retain_count, 1)
        for meta in self.list()[retain_count:]:
            path = self._path(meta.index, meta.term)
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
            except OSError as exc:
                logger.warning(
                    "raft: snapshot store: failed to prune old snapshot %s: %s",
                    path,
                    exc,
                )
                continue
            logger.debug("raft: snapshot pruned index=%d term=%d", meta.index, meta.term)