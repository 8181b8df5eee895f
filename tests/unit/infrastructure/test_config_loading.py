"""Tests for layered configuration loading.

Precedence: defaults < YAML < ENV < CLI.
"""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from definarr.infrastructure.config import load_config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("DEFINARR_LOG_LEVEL", "DEFINARR_ENVIRONMENT", "DEFINARR_APP_NAME", "DEFINARR_BROWSER_ENABLED"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def yaml_config(tmp_path: Path) -> Path:
    config = {
        "app_name": "definarr-test",
        "environment": "test",
        "definitions": {"dir": str(tmp_path / "definitions")},
        "http": {"timeout_seconds": 15.0, "user_agent": "TestAgent/1.0"},
        "search": {"meaningful_params": ["q", "imdbid"]},
        "logging": {"level": "DEBUG", "format": "console"},
        "cache": {"dir": str(tmp_path / "cache"), "ttl_seconds": 1800},
    }
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump(config), encoding="utf-8")
    return path


class TestDefaultsOnly:
    def test_defaults_produce_valid_config(self) -> None:
        config = load_config()
        assert config.app_name == "definarr"
        assert config.environment == "dev"
        assert config.definitions_dir == Path("definitions")
        assert config.http.timeout_seconds == 30.0
        assert config.http.max_retries == 2
        assert config.browser.enabled is True
        assert config.log_level == "INFO"
        assert config.log_format == "console"
        assert config.cache.backend == "diskcache"

    def test_log_format_derived_from_environment(self) -> None:
        config = load_config(cli_overrides={"environment": "prod"})
        assert config.log_format == "json"


class TestYamlOverrides:
    def test_yaml_overrides_defaults(self, yaml_config: Path, tmp_path: Path) -> None:
        config = load_config(config_path=yaml_config)
        assert config.app_name == "definarr-test"
        assert config.definitions_dir == tmp_path / "definitions"
        assert config.http.timeout_seconds == 15.0
        assert config.http.user_agent == "TestAgent/1.0"
        assert config.search.meaningful_params == ("q", "imdbid")
        assert config.log_level == "DEBUG"
        assert config.cache.directory == tmp_path / "cache"
        assert config.cache.ttl_seconds == 1800

    def test_partial_override_preserves_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "partial.yaml"
        path.write_text(yaml.dump({"http": {"timeout_seconds": 99.0}}), encoding="utf-8")

        config = load_config(config_path=path)
        assert config.http.timeout_seconds == 99.0
        assert config.http.max_retries == 2
        assert config.app_name == "definarr"

    def test_file_not_found(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(config_path=tmp_path / "nonexistent.yaml")

    def test_empty_file_means_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert load_config(config_path=path).app_name == "definarr"

    def test_non_mapping_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError, match="must be a mapping"):
            load_config(config_path=path)


class TestEnvOverrides:
    def test_env_overrides_yaml(self, yaml_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DEFINARR_LOG_LEVEL", "WARNING")
        monkeypatch.setenv("DEFINARR_HTTP_TIMEOUT_SECONDS", "60.0")

        config = load_config(config_path=yaml_config)
        assert config.log_level == "WARNING"
        assert config.http.timeout_seconds == 60.0
        assert config.app_name == "definarr-test"

    def test_env_booleans(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DEFINARR_BROWSER_ENABLED", "false")
        assert load_config().browser.enabled is False

    def test_dotenv_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        # setenv + delenv registers removal of what the .env file sets.
        monkeypatch.setenv("DEFINARR_APP_NAME", "placeholder")
        monkeypatch.delenv("DEFINARR_APP_NAME")
        dotenv = tmp_path / ".env"
        dotenv.write_text("DEFINARR_APP_NAME=from-dotenv\n", encoding="utf-8")

        assert load_config(dotenv_path=dotenv).app_name == "from-dotenv"

    def test_dotenv_missing(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(dotenv_path=tmp_path / ".env")


class TestCliOverrides:
    def test_cli_beats_yaml_and_env(self, yaml_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DEFINARR_LOG_LEVEL", "WARNING")
        config = load_config(config_path=yaml_config, cli_overrides={"log_level": "ERROR"})
        assert config.log_level == "ERROR"

    def test_sectioned_overrides(self, yaml_config: Path) -> None:
        config = load_config(config_path=yaml_config, cli_overrides={"http": {"timeout_seconds": 5.0}})
        assert config.http.timeout_seconds == 5.0
        assert config.http.user_agent == "TestAgent/1.0"

    def test_flat_path_override(self, tmp_path: Path) -> None:
        config = load_config(cli_overrides={"definitions_dir": tmp_path})
        assert config.definitions_dir == tmp_path

    def test_invalid_values_rejected(self) -> None:
        with pytest.raises(ValidationError):
            load_config(cli_overrides={"http": {"max_retries": -1}})
