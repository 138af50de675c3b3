"""Core Raft types: roles, log entries, errors and timing constants."""

from __future__ import annotations

import enum
from dataclasses import dataclass


class RaftError(Exception):
    """Base class for Raft errors."""


class NotLeaderError(RaftError):
    """Raised when an operation requires the current leader."""

    def __init__(self, message: str = "raft: not leader") -> None:
        super().__init__(message)


class ReadIndexTimeoutError(RaftError):
    """Raised when a read-index quorum round does not finish in time."""

    def __init__(self, message: str = "raft: read index confirmation timed out") -> None:
        super().__init__(message)


class ConfigChangeInProgressError(RaftError):
    """Raised when a membership change is already underway."""

    def __init__(self, message: str = "raft: config change already in progress") -> None:
        super().__init__(message)


class RaftRole(enum.IntEnum):
    """The role a Raft node currently plays."""

    FOLLOWER = 0
    CANDIDATE = 1
    LEADER = 2

    def __str__(self) -> str:
        return self.name.lower()


class EntryType(enum.IntEnum):
    """Distinguishes regular commands from membership-change entries."""

    COMMAND = 0
    CONFIG = 1


@dataclass(frozen=True)
class LogEntry:
    """A Raft log record held in memory."""

    index: int
    term: int
    entry_type: EntryType = EntryType.COMMAND
    data: bytes = b""


# Timing, in seconds. The lease must stay shorter than the minimum election
# timeout so a stale leader's lease expires before a new leader can win.
ELECTION_TIMEOUT_MIN = 0.150
ELECTION_TIMEOUT_MAX = 0.300
HEARTBEAT_INTERVAL = 0.050
APPLY_POLL_INTERVAL = 0.005
LEASE_DURATION = 0.130