import struct

import pytest

from raftcore.log_store import (
    LogStoreError,
    MemLogStore,
    WALLogStore,
    decode_log_entry,
    decode_truncate,
    encode_log_entry,
    encode_truncate,
)
from raftcore.state import EntryType, LogEntry


@pytest.fixture
def wal_path(tmp_path):
    return tmp_path / "raft_log.wal"


def test_append_and_load_all_after_reopen(wal_path):
    entries = [
        LogEntry(1, 1, data=b"cmd-a"),
        LogEntry(2, 1, data=b"cmd-b"),
        LogEntry(3, 2, data=b"cmd-c"),
    ]
    with WALLogStore(wal_path) as store:
        for e in entries:
            store.append(e)

    with WALLogStore(wal_path) as store:
        got = store.load_all()
    assert [(e.index, e.term, e.data) for e in got] == [
        (e.index, e.term, e.data) for e in entries
    ]


def test_truncate_suffix(wal_path):
    with WALLogStore(wal_path) as store:
        for idx, term in [(1, 1), (2, 1), (3, 2), (4, 2)]:
            store.append(LogEntry(idx, term))
        store.truncate_suffix(3)

    with WALLogStore(wal_path) as store:
        got = store.load_all()
    assert [e.index for e in got] == [1, 2]


def test_truncate_and_reappend(wal_path):
    with WALLogStore(wal_path) as store:
        for idx in (1, 2, 3):
            store.append(LogEntry(idx, 1))
        store.truncate_suffix(2)
        store.append(LogEntry(2, 3, data=b"new"))
        store.append(LogEntry(3, 3, data=b"new2"))

    with WALLogStore(wal_path) as store:
        got = store.load_all()
    assert [e.term for e in got] == [1, 3, 3]
    assert got[1].data == b"new"


def test_load_all_on_missing_file_is_empty(wal_path):
    WALLogStore(wal_path).close()
    wal_path.unlink()
    with WALLogStore(wal_path) as store:
        assert store.load_all() == []


def test_empty_data_round_trips(wal_path):
    with WALLogStore(wal_path) as store:
        store.append(LogEntry(1, 1, data=b""))
        store.append(LogEntry(2, 1))
        got = store.load_all()
    assert len(got) == 2
    assert all(e.data == b"" for e in got)


def test_entry_type_round_trips(wal_path):
    with WALLogStore(wal_path) as store:
        store.append(LogEntry(1, 4, EntryType.CONFIG, b'{"phase":"joint"}'))
        got = store.load_all()
    assert got == [LogEntry(1, 4, EntryType.CONFIG, b'{"phase":"joint"}')]


def test_partial_tail_record_is_ignored(wal_path):
    with WALLogStore(wal_path) as store:
        store.append(LogEntry(1, 1, data=b"a"))
    with open(wal_path, "ab") as f:
        f.write(b"\x01\x02\x03")
    with WALLogStore(wal_path) as store:
        got = store.load_all()
    assert [e.index for e in got] == [1]


def test_corrupted_record_raises(wal_path):
    with WALLogStore(wal_path) as store:
        store.append(LogEntry(1, 1, data=b"abc"))
    raw = bytearray(wal_path.read_bytes())
    raw[-1] ^= 0xFF
    wal_path.write_bytes(bytes(raw))
    with WALLogStore(wal_path) as store:
        with pytest.raises(LogStoreError):
            store.load_all()


def test_compact_prefix(tmp_path):
    path = tmp_path / "raft.wal"
    with WALLogStore(path) as store:
        for i in range(1, 6):
            store.append(LogEntry(i, 1, data=b"data"))

        store.compact_prefix(3)
        entries = store.load_all()
        assert [e.index for e in entries] == [4, 5]

        store.append(LogEntry(6, 1, data=b"new"))
        entries2 = store.load_all()
        assert [e.index for e in entries2] == [4, 5, 6]
    assert not (tmp_path / "raft.wal.compact.tmp").exists()


def test_compact_prefix_applies_truncation_markers(tmp_path):
    path = tmp_path / "raft.wal"
    with WALLogStore(path) as store:
        for i in range(1, 5):
            store.append(LogEntry(i, 1))
        store.truncate_suffix(4)
        store.compact_prefix(1)
        assert [e.index for e in store.load_all()] == [2, 3]


def test_append_after_close_raises(wal_path):
    store = WALLogStore(wal_path)
    store.close()
    with pytest.raises(LogStoreError):
        store.append(LogEntry(1, 1))


def test_mem_log_store_compact_prefix():
    store = MemLogStore()
    for i in range(1, 6):
        store.append(LogEntry(i, 1))
    store.compact_prefix(3)
    entries = store.load_all()
    assert [e.index for e in entries] == [4, 5]


def test_mem_log_store_truncate_suffix():
    store = MemLogStore()
    for i in range(1, 5):
        store.append(LogEntry(i, 1))
    store.truncate_suffix(2)
    assert [e.index for e in store.load_all()] == [1]


def test_mem_log_store_load_all_returns_copy():
    store = MemLogStore()
    store.append(LogEntry(1, 1))
    got = store.load_all()
    got.append(LogEntry(2, 1))
    assert len(store.load_all()) == 1


def test_encode_log_entry_layout():
    encoded = encode_log_entry(LogEntry(1, 2, EntryType.CONFIG, b"x"))
    expected = (
        b"\x01\xff\xc0"
        + (1).to_bytes(8, "little")
        + (2).to_bytes(8, "little")
        + b"\x01"
        + (1).to_bytes(4, "little")
        + b"x"
    )
    assert encoded == expected


def test_encode_decode_round_trip():
    entry = LogEntry(42, 7, EntryType.COMMAND, b"payload")
    assert decode_log_entry(encode_log_entry(entry)[1:]) == entry


def test_decode_v1_legacy_entry():
    data = struct.pack("<qqI", 7, 2, 3) + b"abc"
    assert decode_log_entry(data) == LogEntry(7, 2, EntryType.COMMAND, b"abc")


def test_decode_v2_legacy_entry():
    data = struct.pack("<qqBI", 7, 2, 1, 3) + b"abc"
    assert decode_log_entry(data) == LogEntry(7, 2, EntryType.CONFIG, b"abc")


def test_decode_empty_payload_raises():
    with pytest.raises(LogStoreError):
        decode_log_entry(b"")


def test_decode_short_v3_raises():
    with pytest.raises(LogStoreError):
        decode_log_entry(b"\xff\xc0" + b"\x00" * 5)


def test_decode_v3_length_mismatch_raises():
    data = encode_log_entry(LogEntry(1, 1, data=b"abc"))[1:] + b"extra"
    with pytest.raises(LogStoreError):
        decode_log_entry(data)


def test_decode_v1_short_data_raises():
    data = struct.pack("<qqI", 1, 1, 100) + b"ab"
    with pytest.raises(LogStoreError):
        decode_log_entry(data)


def test_decode_short_legacy_header_raises():
    with pytest.raises(LogStoreError):
        decode_log_entry(b"\x01" * 10)


def test_truncate_encoding():
    assert encode_truncate(5) == b"\x02" + (5).to_bytes(8, "little")
    assert decode_truncate(encode_truncate(123)[1:]) == 123


def test_decode_truncate_short_raises():
    with pytest.raises(LogStoreError):
        decode_truncate(b"\x00" * 7)