import dataclasses

import pytest

from raftcore.state import (
    ConfigChangeInProgressError,
    EntryType,
    LogEntry,
    NotLeaderError,
    RaftError,
    RaftRole,
    ReadIndexTimeoutError,
)


@pytest.mark.parametrize(
    "role, expected",
    [
        (RaftRole.FOLLOWER, "follower"),
        (RaftRole.CANDIDATE, "candidate"),
        (RaftRole.LEADER, "leader"),
    ],
)
def test_role_string(role, expected):
    assert str(role) == expected


def test_role_formats_in_fstring():
    role = RaftRole(2)
    assert f"{role}" == "leader"


def test_follower_is_zero_value():
    assert RaftRole(0) is RaftRole.FOLLOWER


def test_entry_type_zero_is_command():
    assert EntryType(0) is EntryType.COMMAND
    assert EntryType(1) is EntryType.CONFIG


def test_log_entry_defaults():
    entry = LogEntry(index=1, term=2)
    assert entry.entry_type is EntryType.COMMAND
    assert entry.data == b""


def test_log_entry_equality():
    assert LogEntry(3, 1, EntryType.CONFIG, b"x") == LogEntry(3, 1, EntryType.CONFIG, b"x")
    assert LogEntry(3, 1) != LogEntry(3, 2)


def test_log_entry_is_immutable():
    entry = LogEntry(1, 1)
    with pytest.raises(dataclasses.FrozenInstanceError):
        entry.index = 5
    assert entry.index == 1


@pytest.mark.parametrize(
    "error_cls, message",
    [
        (NotLeaderError, "raft: not leader"),
        (ReadIndexTimeoutError, "raft: read index confirmation timed out"),
        (ConfigChangeInProgressError, "raft: config change already in progress"),
    ],
)
def test_error_messages_and_hierarchy(error_cls, message):
    error = error_cls()
    assert str(error) == message
    assert isinstance(error, RaftError)