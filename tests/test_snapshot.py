import pytest

from raftcore.snapshot import (
    SNAPSHOT_CONFIG_KEY,
    ClusterConfig,
    ConfigPhase,
    CorruptedSnapshotError,
    SnapshotData,
    SnapshotError,
    SnapshotMeta,
    SnapshotNotFoundError,
)
from raftcore.state import RaftError


def test_default_config_is_stable_with_no_voters():
    cfg = ClusterConfig()
    assert cfg.phase is ConfigPhase.STABLE
    assert cfg.voters is None
    assert cfg.new_voters is None
    assert not cfg.is_joint()


def test_joint_config_reports_joint():
    cfg = ClusterConfig(ConfigPhase.JOINT, ["node-a"], ["node-b"])
    assert cfg.is_joint()


def test_config_json_round_trip():
    cfg = ClusterConfig(
        phase=ConfigPhase.JOINT,
        voters=["node-a", "node-b"],
        new_voters=["node-c", "node-d"],
    )
    assert ClusterConfig.from_json(cfg.to_json()) == cfg


def test_zero_config_json_round_trip_keeps_none():
    restored = ClusterConfig.from_json(ClusterConfig().to_json())
    assert restored.voters is None
    assert restored.phase is ConfigPhase.STABLE


def test_config_from_json_missing_fields():
    restored = ClusterConfig.from_json("{}")
    assert restored == ClusterConfig()


@pytest.mark.parametrize(
    "text",
    ["not json", "[1, 2]", '{"phase": 7}', '{"voters": "node-a"}', '{"phase": "joint"}'],
)
def test_config_from_json_malformed(text):
    with pytest.raises(ValueError):
        ClusterConfig.from_json(text)


def test_snapshot_data_defaults_are_independent():
    first = SnapshotData()
    second = SnapshotData()
    first.kv["k"] = "v"
    assert second.kv == {}
    assert first.config == ClusterConfig()


def test_snapshot_meta_defaults():
    meta = SnapshotMeta(index=42, term=3)
    assert (meta.size, meta.crc32, meta.created_at) == (0, 0, None)
    assert meta.cluster_config.voters is None


def test_config_key_is_nul_prefixed():
    assert SNAPSHOT_CONFIG_KEY.startswith("\x00")


def test_snapshot_error_messages():
    not_found = SnapshotNotFoundError()
    assert str(not_found) == "raft: snapshot not found"
    assert isinstance(not_found, SnapshotError)
    corrupted = CorruptedSnapshotError()
    assert str(corrupted) == "raft: snapshot checksum mismatch"
    assert isinstance(corrupted, RaftError)