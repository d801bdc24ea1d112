"""Tests for the config module."""

from __future__ import annotations

import dataclasses
import json
from pathlib import Path

import pytest

from ralphloop.config import DEFAULT_MODEL, Config, ConfigError


class TestConfigDefaults:
    """Tests for Config defaults."""

    def test_defaults(self) -> None:
        """Test default configuration values."""
        config = Config()
        assert config.model == DEFAULT_MODEL
        assert config.max_tokens == 8192
        assert config.max_turns == 50
        assert config.command_timeout == 60_000
        assert config.prd_file is None
        assert config.verbose is False

    def test_config_is_immutable(self) -> None:
        """Test Config cannot be modified after creation."""
        config = Config()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.model = "other"  # type: ignore[misc]

    def test_with_overrides_returns_copy(self) -> None:
        """Test with_overrides leaves the original untouched."""
        config = Config(api_key="a")
        verbose = config.with_overrides(verbose=True)
        assert verbose.verbose is True
        assert config.verbose is False
        assert verbose.api_key == "a"


class TestConfigFromDict:
    """Tests for Config.from_dict."""

    def test_camel_case_keys(self, tmp_path: Path) -> None:
        """Test camelCase keys are accepted."""
        config = Config.from_dict(
            {"apiKey": "k", "maxTokens": 1000, "prdFile": "plans/prd.json", "verbose": "true"},
            base_dir=tmp_path,
        )
        assert config.api_key == "k"
        assert config.max_tokens == 1000
        assert config.prd_file == tmp_path.resolve() / "plans/prd.json"
        assert config.verbose is True

    def test_snake_case_keys(self, tmp_path: Path) -> None:
        """Test snake_case keys are accepted."""
        config = Config.from_dict(
            {"api_key": "k", "max_turns": 7, "test_command": "make test"},
            base_dir=tmp_path,
        )
        assert config.max_turns == 7
        assert config.test_command == "make test"

    def test_relative_paths_resolve_against_working_dir(self, tmp_path: Path) -> None:
        """Test relative file paths resolve against the working directory."""
        (tmp_path / "sub").mkdir()
        config = Config.from_dict({"workingDir": "sub", "progressFile": "log/progress.jsonl"}, base_dir=tmp_path)
        assert config.working_dir == (tmp_path / "sub").resolve()
        assert config.progress_file == (tmp_path / "sub").resolve() / "log/progress.jsonl"


class TestConfigFromEnv:
    """Tests for Config.from_env precedence."""

    def test_reads_config_file_in_working_dir(self, tmp_path: Path) -> None:
        """Test ralph.config.json is read from the working directory."""
        (tmp_path / "ralph.config.json").write_text(json.dumps({"model": "file-model", "maxTokens": 123}))
        config = Config.from_env(working_dir=tmp_path)
        assert config.model == "file-model"
        assert config.max_tokens == 123

    def test_env_overrides_config_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test environment variables take precedence over the config file."""
        (tmp_path / "ralph.config.json").write_text(json.dumps({"model": "file-model"}))
        monkeypatch.setenv("RALPH_MODEL", "env-model")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "env-key")
        monkeypatch.setenv("RALPH_VERBOSE", "1")
        config = Config.from_env(working_dir=tmp_path)
        assert config.model == "env-model"
        assert config.api_key == "env-key"
        assert config.verbose is True

    def test_yaml_config_file(self, tmp_path: Path) -> None:
        """Test YAML config files are supported."""
        config_file = tmp_path / "ralph.yaml"
        config_file.write_text("model: yaml-model\nmaxTurns: 5\n")
        config = Config.from_env(config_file=config_file, working_dir=tmp_path)
        assert config.model == "yaml-model"
        assert config.max_turns == 5

    def test_missing_explicit_config_file(self, tmp_path: Path) -> None:
        """Test an explicit config file that does not exist is an error."""
        with pytest.raises(ConfigError, match="not found"):
            Config.from_env(config_file=tmp_path / "missing.json", working_dir=tmp_path)

    def test_non_mapping_config_file(self, tmp_path: Path) -> None:
        """Test a config file that is not a mapping is an error."""
        config_file = tmp_path / "bad.json"
        config_file.write_text("[1, 2, 3]")
        with pytest.raises(ConfigError):
            Config.from_env(config_file=config_file, working_dir=tmp_path)

    def test_invalid_number(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test a non-numeric limit is an error."""
        monkeypatch.setenv("RALPH_MAX_TOKENS", "lots")
        with pytest.raises(ConfigError, match="Invalid configuration value"):
            Config.from_env(working_dir=tmp_path)


class TestConfigValidate:
    """Tests for Config.validate."""

    def test_missing_api_key(self, tmp_path: Path) -> None:
        """Test validation reports a missing API key."""
        errors = Config(working_dir=tmp_path).validate()
        assert "ANTHROPIC_API_KEY is required" in errors

    def test_valid_config(self, tmp_path: Path) -> None:
        """Test validation passes for a complete config."""
        assert Config(api_key="k", working_dir=tmp_path).validate() == []

    def test_bad_limits(self, tmp_path: Path) -> None:
        """Test validation rejects non-positive limits."""
        errors = Config(api_key="k", working_dir=tmp_path, max_tokens=0, max_turns=-1).validate()
        assert len(errors) == 2

    def test_require_valid_raises(self, tmp_path: Path) -> None:
        """Test require_valid raises ConfigError."""
        with pytest.raises(ConfigError, match="ANTHROPIC_API_KEY"):
            Config(working_dir=tmp_path).require_valid()
