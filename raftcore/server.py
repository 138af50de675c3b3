"""RPC entry points that decode requests and delegate to a Raft handler."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Protocol

from raftcore.state import EntryType, RaftError


@dataclass(frozen=True)
class WireLogEntry:
    """A log entry as it travels inside an AppendEntries request."""

    index: int
    term: int
    entry_type: EntryType = EntryType.COMMAND
    data: bytes = b""


@dataclass
class AppendEntriesArgs:
    """Decoded fields of an AppendEntries request."""

    term: int
    leader_id: str = ""
    prev_log_index: int = 0
    prev_log_term: int = 0
    entries: list[WireLogEntry] = field(default_factory=list)
    leader_commit: int = 0


@dataclass
class AppendEntriesResult:
    """Outcome of handling AppendEntries, with fast-backup hints on failure."""

    term: int
    success: bool
    conflict_index: int = 0
    conflict_term: int = 0


@dataclass
class AppendEntriesRequest:
    """AppendEntries message as received from the leader."""

    term: int
    leader_id: str = ""
    prev_log_index: int = 0
    prev_log_term: int = 0
    entries: list[WireLogEntry] = field(default_factory=list)
    leader_commit: int = 0


@dataclass
class AppendEntriesResponse:
    """AppendEntries reply sent back to the leader."""

    term: int
    success: bool
    conflict_index: int = 0
    conflict_term: int = 0


@dataclass
class RequestVoteRequest:
    """RequestVote message as received from a candidate."""

    term: int
    candidate_id: str = ""
    last_log_index: int = 0
    last_log_term: int = 0


@dataclass
class RequestVoteResponse:
    """RequestVote reply sent back to the candidate."""

    term: int
    vote_granted: bool


@dataclass
class InstallSnapshotChunk:
    """One chunk of a streamed snapshot transfer."""

    term: int
    leader_id: str = ""
    last_included_index: int = 0
    last_included_term: int = 0
    offset: int = 0
    data: bytes = b""
    done: bool = False


@dataclass
class InstallSnapshotArgs:
    """Decoded fields of a single InstallSnapshot chunk."""

    term: int
    leader_id: str = ""
    last_included_index: int = 0
    last_included_term: int = 0
    offset: int = 0
    data: bytes = b""
    done: bool = False


@dataclass
class InstallSnapshotResult:
    """The follower's reply to a snapshot chunk."""

    term: int


class RaftHandler(Protocol):
    """What the server calls into for every incoming RPC."""

    def handle_append_entries(self, args: AppendEntriesArgs) -> AppendEntriesResult: ...

    def handle_request_vote(
        self, term: int, candidate_id: str, last_log_index: int, last_log_term: int
    ) -> tuple[int, bool]: ...

    def handle_install_snapshot(self, args: InstallSnapshotArgs) -> InstallSnapshotResult: ...


class RaftServer:
    """Translates RPC messages into handler calls; holds no Raft state itself."""

    def __init__(self, node: RaftHandler) -> None:
        self._node = node

    def append_entries(self, request: AppendEntriesRequest) -> AppendEntriesResponse:
        """Handle a heartbeat or log-replication request from the leader."""
        result = self._node.handle_append_entries(
            AppendEntriesArgs(
                term=request.term,
                leader_id=request.leader_id,
                prev_log_index=request.prev_log_index,
                prev_log_term=request.prev_log_term,
                entries=list(request.entries),
                leader_commit=request.leader_commit,
            )
        )
        return AppendEntriesResponse(
            term=result.term,
            success=result.success,
            conflict_index=result.conflict_index,
            conflict_term=result.conflict_term,
        )

    def request_vote(self, request: RequestVoteRequest) -> RequestVoteResponse:
        """Handle a vote request from a candidate."""
        term, granted = self._node.handle_request_vote(
            request.term,
            request.candidate_id,
            request.last_log_index,
            request.last_log_term,
        )
        return RequestVoteResponse(term=term, vote_granted=granted)

    def install_snapshot(self, chunks: Iterable[InstallSnapshotChunk]) -> InstallSnapshotResult:
        """Feed streamed chunks to the handler in order until the final one.

        Returns the handler's reply to the final chunk. Raises RaftError if the
        stream ends before a chunk marked done arrives.
        """
        for chunk in chunks:
            result = self._node.handle_install_snapshot(
                InstallSnapshotArgs(
                    term=chunk.term,
                    leader_id=chunk.leader_id,
                    last_included_index=chunk.last_included_index,
                    last_included_term=chunk.last_included_term,
                    offset=chunk.offset,
                    data=chunk.data,
                    done=chunk.done,
                )
            )
            if chunk.done:
                return InstallSnapshotResult(term=result.term)
        raise RaftError("raft: install snapshot: stream ended before final chunk")