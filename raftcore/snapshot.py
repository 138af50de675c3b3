"""Snapshot types, cluster configuration and store interfaces."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol

from raftcore.state import RaftError

# Reserved key under which the cluster configuration is embedded in a
# snapshot body. The NUL prefix keeps it apart from user keys.
SNAPSHOT_CONFIG_KEY = "\x00__raft_cluster_config__"


class SnapshotError(RaftError):
    """Base class for snapshot errors."""


class SnapshotNotFoundError(SnapshotError):
    """No snapshot exists for the requested index, or none at all."""

    def __init__(self, message: str = "raft: snapshot not found") -> None:
        super().__init__(message)


class CorruptedSnapshotError(SnapshotError):
    """A snapshot failed its checksum or is malformed."""

    def __init__(self, message: str = "raft: snapshot checksum mismatch") -> None:
        super().__init__(message)


class ConfigPhase(enum.IntEnum):
    """Membership phase: a single voter set, or joint old and new sets."""

    STABLE = 0
    JOINT = 1


def _string_list(value, name: str) -> Optional[list[str]]:
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"cluster config: {name} must be a list of strings")
    return list(value)


@dataclass
class ClusterConfig:
    """Active cluster membership; self is never listed among the voters."""

    phase: ConfigPhase = ConfigPhase.STABLE
    voters: Optional[list[str]] = None
    new_voters: Optional[list[str]] = None

    def is_joint(self) -> bool:
        return self.phase == ConfigPhase.JOINT

    def to_json(self) -> str:
        return json.dumps(
            {
                "phase": int(self.phase),
                "voters": self.voters,
                "new_voters": self.new_voters,
            }
        )

    @classmethod
    def from_json(cls, text) -> "ClusterConfig":
        """Parse JSON produced by to_json; raises ValueError when malformed."""
        raw = json.loads(text)
        if not isinstance(raw, dict):
            raise ValueError("cluster config: expected a JSON object")
        phase = raw.get("phase", 0)
        if not isinstance(phase, int) or isinstance(phase, bool):
            raise ValueError("cluster config: phase must be an integer")
        return cls(
            phase=ConfigPhase(phase),
            voters=_string_list(raw.get("voters"), "voters"),
            new_voters=_string_list(raw.get("new_voters"), "new_voters"),
        )


@dataclass
class SnapshotData:
    """Serialisable state-machine contents plus the membership at capture."""

    kv: dict[str, str] = field(default_factory=dict)
    config: ClusterConfig = field(default_factory=ClusterConfig)


@dataclass
class SnapshotMeta:
    """Identifies a snapshot: its last included index and term."""

    index: int
    term: int
    created_at: Optional[datetime] = None
    size: int = 0
    crc32: int = 0
    cluster_config: ClusterConfig = field(default_factory=ClusterConfig)


@dataclass
class SnapshotConfig:
    """When and where snapshots are taken; threshold 0 disables them."""

    threshold: int = 0
    check_interval: float = 0.0
    directory: str = ""
    retain_count: int = 0


class Snapshotable(Protocol):
    """A state machine that can capture and restore its whole state."""

    def take_snapshot(self) -> tuple[SnapshotData, int]: ...

    def restore_snapshot(self, data: SnapshotData, last_applied: int) -> None: ...


class SnapshotStore(Protocol):
    """Persists and retrieves snapshots."""

    def save(self, meta: SnapshotMeta, data: SnapshotData) -> None: ...

    def load(self, index: int) -> tuple[SnapshotMeta, SnapshotData]: ...

    def latest(self) -> SnapshotMeta: ...

    def list(self) -> list[SnapshotMeta]: ...

    def prune(self, retain_count: int) -> None: ...