"""
Tests for configuration loader.

This module tests the ConfigLoader class including file loading,
environment variable processing, and configuration merging.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict

import pytest
import yaml

from nebula_forward.infrastructure.config.loader import ConfigLoader
from nebula_forward.infrastructure.config.models import ApplicationConfig


class TestConfigLoader:
    """Test cases for ConfigLoader class."""

    @pytest.fixture
    def config_loader(self) -> ConfigLoader:
        """Create a ConfigLoader instance."""
        return ConfigLoader()

    @pytest.fixture
    def sample_config_dict(self) -> Dict[str, Any]:
        """Sample configuration dictionary."""
        return {
            "name": "Test Application",
            "debug": True,
            "environment": "testing",
            "ssh": {"connect_timeout": 12.0, "known_hosts": "/tmp/known_hosts"},
            "forwarding": {
                "buffer_size": 32768,
                "tunnels": [{
                    "tunnelId": "db",
                    "type": "local",
                    "localPort": 15432,
                    "remoteHost": "db.internal",
                    "remotePort": 5432,
                    "hostname": "bastion.example",
                }],
            },
            "api": {"host": "0.0.0.0", "port": 9000},
            "logging": {"level": "DEBUG", "file_enabled": False},
        }

    @pytest.fixture(autouse=True)
    def clean_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for key in list(os.environ):
            if key.startswith("NEBULA_"):
                monkeypatch.delenv(key)

    def test_load_defaults_without_file(self, config_loader: ConfigLoader) -> None:
        config = config_loader.load_config()

        assert isinstance(config, ApplicationConfig)
        assert config.config_file_path is None
        assert config.api.port == 8765

    def test_load_json(self, config_loader: ConfigLoader, sample_config_dict: Dict[str, Any],
                       tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text(json.dumps(sample_config_dict))

        config = config_loader.load_config(str(path))

        assert config.name == "Test Application"
        assert config.ssh.connect_timeout == 12.0
        assert config.forwarding.buffer_size == 32768
        assert config.forwarding.tunnels[0]["remotePort"] == 5432
        assert config.config_file_path == str(path)

    def test_load_yaml(self, config_loader: ConfigLoader, sample_config_dict: Dict[str, Any],
                       tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(sample_config_dict))

        config = config_loader.load_config(str(path))

        assert config.api.host == "0.0.0.0"
        assert config.logging.level == "DEBUG"

    def test_empty_yaml_gives_defaults(self, config_loader: ConfigLoader, tmp_path: Path) -> None:
        path = tmp_path / "empty.yml"
        path.write_text("")

        assert config_loader.load_config(str(path)).api.port == 8765

    def test_missing_file(self, config_loader: ConfigLoader) -> None:
        with pytest.raises(FileNotFoundError):
            config_loader.load_config("/nonexistent/config.yaml")

    def test_unsupported_format(self, config_loader: ConfigLoader, tmp_path: Path) -> None:
        path = tmp_path / "config.toml"
        path.write_text("debug = true")

        with pytest.raises(ValueError, match="Unsupported configuration file format"):
            config_loader.load_config(str(path))

    def test_invalid_json(self, config_loader: ConfigLoader, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text("{not json")

        with pytest.raises(ValueError, match="Invalid JSON"):
            config_loader.load_config(str(path))

    def test_invalid_yaml(self, config_loader: ConfigLoader, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("api: [unclosed")

        with pytest.raises(ValueError, match="Invalid YAML"):
            config_loader.load_config(str(path))

    def test_non_mapping_root(self, config_loader: ConfigLoader, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ValueError, match="must be a mapping"):
            config_loader.load_config(str(path))

    def test_unknown_keys_become_value_error(self, config_loader: ConfigLoader, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"ssh": {"nope": True}}))

        with pytest.raises(ValueError, match="Invalid configuration"):
            config_loader.load_config(str(path))

    def test_environment_overrides(self, config_loader: ConfigLoader, sample_config_dict: Dict[str, Any],
                                   tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "config.json"
        path.write_text(json.dumps(sample_config_dict))
        monkeypatch.setenv("NEBULA_API_PORT", "9999")
        monkeypatch.setenv("NEBULA_DEBUG", "off")
        monkeypatch.setenv("NEBULA_BIND_ADDRESS", "0.0.0.0")
        monkeypatch.setenv("NEBULA_LOG_FILE_ENABLED", "yes")

        config = config_loader.load_config(str(path))

        assert config.api.port == 9999
        assert config.api.host == "0.0.0.0"
        assert config.debug is False
        assert config.forwarding.default_bind_address == "0.0.0.0"
        assert config.forwarding.buffer_size == 32768
        assert config.logging.file_enabled is True

    def test_invalid_environment_value(self, config_loader: ConfigLoader,
                                       monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NEBULA_API_PORT", "not-a-port")

        with pytest.raises(ValueError, match="NEBULA_API_PORT"):
            config_loader.load_config()

    def test_custom_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TUNNELS_BUFFER_SIZE", "4096")

        config = ConfigLoader(env_prefix="TUNNELS_").load_config()

        assert config.forwarding.buffer_size == 4096

    @pytest.mark.parametrize("fmt,suffix", [("yaml", ".yaml"), ("json", ".json")])
    def test_save_and_reload(self, config_loader: ConfigLoader, tmp_path: Path,
                             fmt: str, suffix: str) -> None:
        path = tmp_path / f"saved{suffix}"
        config = ApplicationConfig.from_dict({"api": {"port": 9100}, "environment": "staging"})

        config_loader.save_config(config, str(path), fmt)
        reloaded = config_loader.load_config(str(path))

        assert reloaded.api.port == 9100
        assert reloaded.environment == "staging"

    def test_save_does_not_write_file_path(self, config_loader: ConfigLoader, tmp_path: Path) -> None:
        path = tmp_path / "saved.json"
        config = ApplicationConfig(config_file_path="/somewhere/config.yaml")

        config_loader.save_config(config, str(path), "json")

        assert "config_file_path" not in json.loads(path.read_text())

    def test_save_unsupported_format(self, config_loader: ConfigLoader, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="Unsupported format"):
            config_loader.save_config(ApplicationConfig(), str(tmp_path / "x.ini"), "ini")
