"""
Configuration Tests
"""

import pytest

from chronicle.config import (
    ChronicleConfig,
    SnapshotLogConfig,
    StorageConfig,
)


class TestDefaults:

    def test_defaults_filled(self):
        config = ChronicleConfig()
        assert config.snapshot_log.keyframe_interval == 10
        assert config.snapshot_log.keyframe_on_major_change is False
        assert config.storage.backend_type == "memory"
        assert config.consistency.default_resolution_note == "手动解决"
        assert config.observability.enable_metrics

    def test_invalid_interval(self):
        with pytest.raises(ValueError):
            SnapshotLogConfig(keyframe_interval=0)

    def test_file_backend_needs_dir(self):
        with pytest.raises(ValueError):
            StorageConfig(backend_type="file")

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            StorageConfig(backend_type="postgres")


class TestFromEnv:

    def test_empty_environment(self):
        config = ChronicleConfig.from_env({})
        assert config.storage.backend_type == "memory"
        assert config.snapshot_log.max_write_retries == 3

    def test_overrides(self, tmp_path):
        config = ChronicleConfig.from_env({
            "CHRONICLE_STORAGE_DIR": str(tmp_path),
            "CHRONICLE_KEYFRAME_INTERVAL": "4",
            "CHRONICLE_KEYFRAME_ON_MAJOR_CHANGE": "true",
            "CHRONICLE_MAX_WRITE_RETRIES": "0",
            "CHRONICLE_RETENTION_DAYS": "7",
        })
        assert config.storage.backend_type == "file"
        assert config.storage.storage_dir == str(tmp_path)
        assert config.snapshot_log.keyframe_interval == 4
        assert config.snapshot_log.keyframe_on_major_change is True
        assert config.snapshot_log.max_write_retries == 0
        assert config.consistency.retention_days == 7

    def test_reads_process_environment(self, monkeypatch):
        monkeypatch.setenv("CHRONICLE_KEYFRAME_INTERVAL", "25")
        assert ChronicleConfig.from_env().snapshot_log.keyframe_interval == 25

    def test_observability_caps(self):
        config = ChronicleConfig.from_env({
            "CHRONICLE_MAX_AUDIT_ENTRIES": "50",
            "CHRONICLE_MAX_METRIC_POINTS": "20",
        })
        assert config.observability.max_audit_entries == 50
        assert config.observability.max_metric_points == 20
        assert ChronicleConfig().observability.max_audit_entries == 10000
