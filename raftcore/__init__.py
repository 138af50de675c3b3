"""Durable storage and RPC dispatch for Raft nodes: term and vote, log, snapshots."""

__version__ = "0.1.0"

__all__ = ["log_store", "meta_store", "server", "snapshot", "snapshot_store", "state"]