"""
Tests for configuration loading and the reconnect policy.
"""

import json

from warelay.config.loader import (
    camel_to_snake,
    convert_keys,
    load_config,
    save_config,
    snake_to_camel,
)
from warelay.config.schema import Config, ReconnectConfig


class TestLoader:

    def test_defaults_when_missing(self, tmp_path):
        config = load_config(tmp_path / "config.json")

        assert config.server.port == 3030
        assert config.server.cors_origins == ["http://localhost:3000"]
        assert config.storage.flush_interval_s == 10.0

    def test_camel_case_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "server": {"port": 4000, "corsOrigins": ["https://app.example.com"]},
            "relay": {"authTimeoutS": 30, "reconnect": {"maxAttempts": 5, "initialDelayMs": 500}},
        }))

        config = load_config(path)

        assert config.server.port == 4000
        assert config.server.cors_origins == ["https://app.example.com"]
        assert config.relay.auth_timeout_s == 30
        assert config.relay.reconnect.max_attempts == 5
        assert config.relay.reconnect.initial_delay_ms == 500

    def test_legacy_top_level_keys_migrated(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"port": 3100, "bridgeUrl": "ws://bridge:3001", "bridgeToken": "t"}))

        config = load_config(path)

        assert config.server.port == 3100
        assert config.bridge.url == "ws://bridge:3001"
        assert config.bridge.token == "t"

    def test_corrupt_file_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{broken")

        assert load_config(path).server.port == 3030

    def test_save_round_trip(self, tmp_path):
        path = tmp_path / "config.json"
        config = Config()
        config.storage.data_dir = str(tmp_path / "data")

        save_config(config, path)

        raw = json.loads(path.read_text())
        assert "dataDir" in raw["storage"]
        assert load_config(path).data_path == tmp_path / "data"

    def test_env_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("WARELAY_SERVER__PORT", "5050")

        assert load_config(tmp_path / "missing.json").server.port == 5050

    def test_key_conversion(self):
        assert camel_to_snake("flushIntervalS") == "flush_interval_s"
        assert snake_to_camel("auth_timeout_s") == "authTimeoutS"
        assert convert_keys({"relay": {"authTimeoutS": 1}}) == {"relay": {"auth_timeout_s": 1}}


class TestPaths:

    def test_data_layout(self, tmp_path):
        config = Config()
        config.storage.data_dir = str(tmp_path)

        assert config.auth_path == tmp_path / "auth"
        assert config.stores_path == tmp_path / "stores"


class TestReconnectConfig:

    def test_default_is_immediate_and_unbounded(self):
        policy = ReconnectConfig()

        assert policy.delay_for(1) == 0.0
        assert policy.delay_for(10) == 0.0
        assert not policy.exhausted(1000)

    def test_exponential_backoff_is_capped(self):
        policy = ReconnectConfig(initial_delay_ms=1000, backoff_factor=2, max_delay_ms=5000)

        assert policy.delay_for(1) == 1.0
        assert policy.delay_for(2) == 2.0
        assert policy.delay_for(3) == 4.0
        assert policy.delay_for(4) == 5.0

    def test_max_attempts(self):
        policy = ReconnectConfig(max_attempts=3)

        assert not policy.exhausted(3)
        assert policy.exhausted(4)
