# raftcore

Durable storage and RPC plumbing for a Raft consensus node.

The package holds the persistent state a Raft node needs in order to survive crashes, and a thin server layer that passes incoming RPCs on to a handler of your own. The metadata store and the log store each have an in-memory counterpart for tests.

- **`raftcore.state`**: node roles (`RaftRole`, whose `str()` is `"follower"`, `"candidate"` or `"leader"`), log entries (`LogEntry`, `EntryType`), the errors `RaftError`, `NotLeaderError`, `ReadIndexTimeoutError` and `ConfigChangeInProgressError`, and timing constants in seconds (`ELECTION_TIMEOUT_MIN`, `ELECTION_TIMEOUT_MAX`, `HEARTBEAT_INTERVAL`, `APPLY_POLL_INTERVAL`, `LEASE_DURATION`).
- **`raftcore.meta_store`**: `FileMetaStore` keeps the current term and vote as one fixed-size record protected by a CRC32. `MemMetaStore` keeps them in memory, and `inject_save_error()` makes its saves fail.
- **`raftcore.log_store`**: `WALLogStore` is an append-only write-ahead log of entries and truncation markers, and it supports prefix compaction. `MemLogStore` does the same in memory. The functions `encode_log_entry`, `decode_log_entry`, `encode_truncate` and `decode_truncate` handle the record payloads.
- **`raftcore.snapshot`**: snapshot data and metadata (`SnapshotData`, `SnapshotMeta`, `SnapshotConfig`), cluster membership (`ClusterConfig`, `ConfigPhase`), the `Snapshotable` and `SnapshotStore` protocols, and the errors `SnapshotError`, `SnapshotNotFoundError` and `CorruptedSnapshotError`.
- **`raftcore.snapshot_store`**: `FileSnapshotStore` writes checksummed snapshot files atomically, and it can list, load and prune them. The functions `encode_snapshot`, `decode_snapshot`, `marshal_snapshot_data`, `unmarshal_snapshot_data` and `parse_snapshot_filename` handle the file format.
- **`raftcore.server`**: `RaftServer` turns AppendEntries, RequestVote and InstallSnapshot messages into calls on a `RaftHandler`.

## Installing

```
pip install raftcore
```

Python 3.10 or later is required. The package has no third-party dependencies. The tests use pytest, which is available through the `test` extra.

## Persisting term and vote

```python
from raftcore.meta_store import FileMetaStore, RaftMeta

with FileMetaStore("raft_meta.bin") as store:
    store.save(RaftMeta(term=42, voted_for="node-7"))
    assert store.load() == RaftMeta(term=42, voted_for="node-7")
```

`save` fsyncs the file before it returns. An empty file loads as `RaftMeta()`, which has term 0 and no vote. A corrupted record, a short record or an unknown version raises `MetaStoreError`. The same error is raised for a vote longer than 255 bytes.

## The log

```python
from raftcore.log_store import WALLogStore
from raftcore.state import LogEntry

with WALLogStore("raft_log.wal") as log:
    log.append(LogEntry(index=1, term=1, data=b"cmd-a"))
    log.append(LogEntry(index=2, term=1, data=b"cmd-b"))
    log.append(LogEntry(index=3, term=2, data=b"cmd-c"))
    log.truncate_suffix(3)      # discard index >= 3
    log.compact_prefix(1)       # discard index <= 1
    print([e.index for e in log.load_all()])   # [2]
```

Each write is fsync'd. Truncation appends a marker to the file instead of rewriting it, and `load_all` replays the markers. A record left half-written at the tail of the file by a crash is ignored. `compact_prefix` rewrites the file through a temporary `.compact.tmp` file and then swaps it into place. Calling `load_all` on a missing file returns an empty list.

`decode_log_entry` reads the current entry encoding, which begins with a two-byte magic. It also reads two older layouts without the magic. The failures of this module raise `LogStoreError`.

## Snapshots

```python
from raftcore.snapshot import ClusterConfig, ConfigPhase, SnapshotData, SnapshotMeta
from raftcore.snapshot_store import FileSnapshotStore

store = FileSnapshotStore("snapshots")
saved = store.save(
    SnapshotMeta(index=42, term=3),
    SnapshotData(kv={"foo": "bar"}, config=ClusterConfig(ConfigPhase.STABLE, ["node-a"])),
)
print(saved.size, saved.crc32)
meta, data = store.load(42)
print(store.latest().index)   # 42
store.prune(2)                # keep the two newest
```

Snapshot files are named `snapshot-<index>-<term>.snap`. Each file holds a big-endian header, the key/value records and a CRC32 footer. The cluster configuration is stored as JSON under a reserved key, and `load` removes that key from the returned map. `list` returns snapshots with the highest index first. When a store is opened, it deletes any leftover `*.tmp` files. A checksum mismatch raises `CorruptedSnapshotError`. A missing snapshot raises `SnapshotNotFoundError`.

## Serving RPCs

```python
from raftcore.server import (
    AppendEntriesRequest, AppendEntriesResult, InstallSnapshotResult, RaftServer,
)

class Handler:
    def handle_append_entries(self, args):
        return AppendEntriesResult(term=args.term, success=True)

    def handle_request_vote(self, term, candidate_id, last_log_index, last_log_term):
        return term, True

    def handle_install_snapshot(self, args):
        return InstallSnapshotResult(term=args.term)

server = RaftServer(Handler())
response = server.append_entries(AppendEntriesRequest(term=1, leader_id="node-1"))
```

`install_snapshot` takes an iterable of `InstallSnapshotChunk` and passes each chunk to the handler, stopping at the chunk marked `done`. It returns the handler's reply to that chunk. If the stream ends before a `done` chunk arrives, it raises `RaftError`.

## What the package does not do

There is no Raft node in this package. Leader election, log replication, commit tracking, lease or read-index reads, membership changes and snapshot scheduling are not implemented. The package also has no network transport: `RaftServer` works with plain Python message objects and does not listen on a socket. There is no key/value state machine either, so you supply your own object that follows the `RaftHandler` and `Snapshotable` protocols.