"""Configuration loading from .env and YAML."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from dotenv import dotenv_values
from pydantic import BaseModel, Field, ValidationError

from fuzzctl.core.exceptions import ConfigError

log = logging.getLogger(__name__)

DEFAULT_CRASH_MARKERS = [
    "SIGSEGV",
    "SIGABRT",
    "SIGFPE",
    "SIGILL",
    "SIGBUS",
    "AddressSanitizer",
    "UndefinedBehaviorSanitizer",
    "MemorySanitizer",
    "ThreadSanitizer",
    "LeakSanitizer",
]


def _find_project_root(start: Path | None = None) -> Path:
    """Find project root by looking for pyproject.toml upward."""
    current = Path(start or Path.cwd()).resolve()
    for _ in range(10):
        if (current / "pyproject.toml").exists():
            return current
        parent = current.parent
        if parent == current:
            break
        current = parent
    return Path.cwd().resolve()


class EngineConfigModel(BaseModel):
    """Engine section of config, shared by all adapters."""

    work_directory: str = "/tmp/fuzzctl/fuzzing"
    max_memory_mb: int = 2048
    default_timeout_seconds: int = 3600
    engine_binary_path: str | None = None
    debug_logging: bool = False
    max_crashes_per_session: int = 100
    enable_coverage: bool = True
    monitor_tick_seconds: float = Field(default=0.25, gt=0)
    timeout_grace_seconds: float = Field(default=5.0, ge=0)
    helper_timeout_seconds: int = 300
    minimize_time_seconds: int = 60
    helper_workers: int = Field(default=4, ge=1)
    session_log: bool = True
    crash_markers: list[str] = Field(default_factory=lambda: list(DEFAULT_CRASH_MARKERS))


class AppConfig(BaseModel):
    """Full application configuration."""

    default_engine: str = "libfuzzer"
    engine: EngineConfigModel = Field(default_factory=EngineConfigModel)
    engine_options: dict[str, dict[str, Any]] = Field(default_factory=dict)


class ConfigManager:
    """Load and merge configuration from .env and YAML."""

    def __init__(
        self,
        project_root: Path | None = None,
        env_path: Path | None = None,
        config_path: Path | None = None,
    ) -> None:
        self._root = Path(project_root or _find_project_root()).resolve()
        self._env_path = Path(env_path) if env_path else self._root / ".env"
        self._config_path = Path(config_path) if config_path else self._root / "config" / "default.yaml"
        self._config: AppConfig | None = None
        self._env: dict[str, str] = {}

    def load_env(self) -> dict[str, str]:
        """Load .env file into a dict (without modifying os.environ)."""
        if not self._env_path.exists():
            self._env = {}
            return self._env
        try:
            self._env = {k: v for k, v in dotenv_values(self._env_path).items() if v is not None}
        except (OSError, PermissionError) as e:
            log.warning("Failed to read .env file %s: %s", self._env_path, e)
            self._env = {}
        return self._env

    def load_yaml(self) -> dict[str, Any]:
        """Load YAML config file if it exists."""
        if not self._config_path.exists():
            return {}
        try:
            with open(self._config_path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, PermissionError) as e:
            log.warning("Failed to read config file %s: %s", self._config_path, e)
            return {}
        except yaml.YAMLError as e:
            log.warning("Malformed YAML in %s: %s", self._config_path, e)
            return {}
        if not isinstance(data, dict):
            log.warning("Ignoring config file %s: top level is not a mapping", self._config_path)
            return {}
        return data

    def load(self) -> AppConfig:
        """Load .env and YAML, merge with defaults, return AppConfig."""
        env = self.load_env()
        yaml_data = self.load_yaml()

        engine_data: dict[str, Any] = dict(yaml_data.get("engine") or {})
        config_dict: dict[str, Any] = {
            "default_engine": yaml_data.get("default_engine", "libfuzzer"),
            "engine_options": yaml_data.get("engine_options") or {},
        }

        # Environment variables override YAML values
        if env.get("FUZZER_ENGINE"):
            config_dict["default_engine"] = env["FUZZER_ENGINE"]
        env_mapping = {
            "FUZZ_WORK_DIR": "work_directory",
            "FUZZ_MAX_MEMORY_MB": "max_memory_mb",
            "FUZZ_DEFAULT_TIMEOUT": "default_timeout_seconds",
        }
        for env_key, config_key in env_mapping.items():
            if env.get(env_key):
                engine_data[config_key] = env[env_key]
        if env.get("AFL_FUZZ_BIN"):
            afl_opts = dict(config_dict["engine_options"].get("afl") or {})
            afl_opts["afl_fuzz_bin"] = env["AFL_FUZZ_BIN"]
            config_dict["engine_options"]["afl"] = afl_opts

        try:
            config_dict["engine"] = EngineConfigModel(**engine_data)
            self._config = AppConfig(**config_dict)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration in {self._config_path}: {e}") from e
        return self._config

    @property
    def config(self) -> AppConfig:
        """Return loaded config; load if not yet loaded."""
        if self._config is None:
            self.load()
        if self._config is None:
            raise RuntimeError("ConfigManager.load() failed to produce a config")
        return self._config

    @property
    def env(self) -> dict[str, str]:
        """Return loaded env dict."""
        if not self._env and self._env_path.exists():
            self.load_env()
        return self._env

    @property
    def project_root(self) -> Path:
        return self._root
