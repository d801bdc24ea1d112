"""Configuration management for ralph."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

DEFAULT_CONFIG_FILE = "ralph.config.json"
DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_MAX_TOKENS = 8192
DEFAULT_PROGRESS_FILE = "progress.jsonl"
DEFAULT_GUIDELINES_FILE = "AGENTS.md"

TRUTHY = ("true", "1", "yes")


class ConfigError(Exception):
    """Exception raised for missing or invalid configuration."""

    pass


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUTHY


@dataclass(frozen=True)
class Config:
    """Configuration settings for a ralph run.

    Loaded once at startup and never mutated afterwards; use
    :meth:`with_overrides` to derive a modified copy.
    """

    # API
    api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    max_tokens: int = DEFAULT_MAX_TOKENS
    request_timeout: int = 600  # seconds, per completion request

    # Paths
    working_dir: Path = Path(".")
    prd_file: Optional[Path] = None
    progress_file: Path = Path(DEFAULT_PROGRESS_FILE)
    guidelines_file: Path = Path(DEFAULT_GUIDELINES_FILE)
    log_dir: Optional[Path] = None

    # Loop settings
    max_turns: int = 50
    command_timeout: int = 60_000  # milliseconds
    test_command: Optional[str] = None
    typecheck_command: Optional[str] = None
    lint_command: Optional[str] = None

    # Runtime
    verbose: bool = False

    @classmethod
    def from_dict(cls, data: dict, base_dir: Optional[Path] = None) -> Config:
        """Create a Config from a config-file dictionary.

        Relative paths are resolved against ``base_dir`` (the working
        directory) so the loaded config never depends on the process CWD.

        Args:
            data: Parsed config file contents (camelCase or snake_case keys).
            base_dir: Directory used to resolve relative paths.

        Returns:
            Config instance.
        """
        def get(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return default

        working_dir = Path(get("workingDir", "working_dir", default=base_dir or Path.cwd()))
        if base_dir is not None and not working_dir.is_absolute():
            working_dir = base_dir / working_dir
        working_dir = working_dir.resolve()

        def path_in(value: Any) -> Optional[Path]:
            if value is None:
                return None
            path = Path(value)
            return path if path.is_absolute() else working_dir / path

        return cls(
            api_key=get("apiKey", "api_key"),
            model=get("model", default=DEFAULT_MODEL),
            max_tokens=int(get("maxTokens", "max_tokens", default=DEFAULT_MAX_TOKENS)),
            request_timeout=int(get("requestTimeout", "request_timeout", default=600)),
            working_dir=working_dir,
            prd_file=path_in(get("prdFile", "prd_file")),
            progress_file=path_in(get("progressFile", "progress_file", default=DEFAULT_PROGRESS_FILE)),
            guidelines_file=path_in(get("guidelinesFile", "guidelines_file", default=DEFAULT_GUIDELINES_FILE)),
            log_dir=path_in(get("logDir", "log_dir")),
            max_turns=int(get("maxTurns", "max_turns", default=50)),
            command_timeout=int(get("commandTimeout", "command_timeout", default=60_000)),
            test_command=get("testCommand", "test_command"),
            typecheck_command=get("typecheckCommand", "typecheck_command"),
            lint_command=get("lintCommand", "lint_command"),
            verbose=_as_bool(get("verbose", default=False)),
        )

    @classmethod
    def load_file(cls, config_file: Path) -> dict:
        """Read a config file (JSON or YAML) into a dictionary.

        Raises:
            ConfigError: If the file is missing or not a mapping.
        """
        if not config_file.exists():
            raise ConfigError(f"Config file not found: {config_file}")
        try:
            with open(config_file, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid config file {config_file}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config file must contain an object: {config_file}")
        return data

    @classmethod
    def from_env(
        cls,
        config_file: Optional[Path] = None,
        working_dir: Optional[Path] = None,
    ) -> Config:
        """Load configuration from env vars, config file, .env and defaults.

        Precedence (highest first): environment variables, config file,
        ``.env`` file, built-in defaults. ``.env`` never overrides variables
        that are already set in the environment.

        Args:
            config_file: Explicit config file. If None, ``ralph.config.json``
                in the working directory is used when present.
            working_dir: Base directory. Defaults to ``RALPH_WORKING_DIR`` or CWD.

        Returns:
            Config instance.

        Raises:
            ConfigError: If an explicit config file is missing or malformed.
        """
        load_dotenv()

        base = Path(working_dir or os.getenv("RALPH_WORKING_DIR") or Path.cwd()).resolve()

        data: dict = {}
        if config_file is not None:
            data = cls.load_file(Path(config_file))
        elif (base / DEFAULT_CONFIG_FILE).exists():
            data = cls.load_file(base / DEFAULT_CONFIG_FILE)

        env_overrides = {
            "apiKey": os.getenv("ANTHROPIC_API_KEY"),
            "model": os.getenv("RALPH_MODEL"),
            "maxTokens": os.getenv("RALPH_MAX_TOKENS"),
            "workingDir": os.getenv("RALPH_WORKING_DIR"),
            "prdFile": os.getenv("RALPH_PRD_FILE"),
            "progressFile": os.getenv("RALPH_PROGRESS_FILE"),
            "verbose": os.getenv("RALPH_VERBOSE"),
            "maxTurns": os.getenv("RALPH_MAX_TURNS"),
            "commandTimeout": os.getenv("RALPH_COMMAND_TIMEOUT"),
            "logDir": os.getenv("RALPH_LOG_DIR"),
        }
        merged = dict(data)
        for key, value in env_overrides.items():
            if value:
                merged[key] = value

        try:
            return cls.from_dict(merged, base_dir=base)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration value: {e}") from e

    def with_overrides(self, **changes: Any) -> Config:
        """Return a copy of this config with the given fields replaced."""
        return replace(self, **changes)

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors.

        Returns:
            List of validation error messages. Empty if valid.
        """
        errors = []

        if not self.api_key:
            errors.append("ANTHROPIC_API_KEY is required")

        if not self.working_dir.exists():
            errors.append(f"Working directory does not exist: {self.working_dir}")

        if self.max_tokens <= 0:
            errors.append(f"max_tokens must be positive, got {self.max_tokens}")

        if self.max_turns <= 0:
            errors.append(f"max_turns must be positive, got {self.max_turns}")

        return errors

    def require_valid(self) -> None:
        """Raise ConfigError if the configuration is not usable."""
        errors = self.validate()
        if errors:
            raise ConfigError("; ".join(errors))
