"""
Mitthi - Configuration Management

This module handles loading, merging, and validating configuration from
TOML files and environment variables. Supports default values and
runtime configuration updates.

The PBKDF2 iteration count is part of the room format and is deliberately
not configurable.

Author: orpheus497
Version: 1.0.0
"""

import copy
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

# Python 3.11+ has tomllib built-in, older versions need tomli
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from .constants import (
    CONFIG_FILENAME,
    DEFAULT_DATA_DIR,
    ENV_PREFIX,
    MAX_FILE_SIZE,
    MAX_STREAM_CHUNK_SIZE,
    MAX_TEXT_MESSAGE_SIZE,
    MIN_STREAM_CHUNK_SIZE,
    STREAM_CHUNK_SIZE,
    STREAM_QUEUE_SIZE,
)
from .errors import ConfigError, ErrorCode

# Default configuration dictionary
DEFAULT_CONFIG: Dict[str, Any] = {
    "stream": {
        "chunk_size": STREAM_CHUNK_SIZE,
        "queue_size": STREAM_QUEUE_SIZE,
    },
    "limits": {
        "max_file_size": MAX_FILE_SIZE,
        "max_text_message_size": MAX_TEXT_MESSAGE_SIZE,
    },
    "logging": {
        "level": "INFO",
        "file_logging": False,
        "console_logging": True,
    },
}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Config:
    """Configuration manager for Mitthi.

    Loads configuration from TOML files, merges with defaults,
    and applies environment variable overrides.

    Attributes:
        config_path: Path to the configuration file
        data: Configuration dictionary
    """

    def __init__(self, config_path: Optional[Path] = None, load_env: bool = True):
        """Initialize configuration manager.

        Args:
            config_path: Path to configuration file (optional)
                If not provided, uses default location
            load_env: Apply MITTHI_SECTION_KEY environment overrides

        Raises:
            ConfigError: If the file cannot be parsed or a value is invalid
        """
        if config_path is None:
            data_dir = Path(DEFAULT_DATA_DIR).expanduser()
            config_path = data_dir / CONFIG_FILENAME

        self.config_path = Path(config_path)
        self.load_env = load_env
        self.data = self._load_config()
        self.validate()

    @classmethod
    def defaults(cls) -> "Config":
        """Get a configuration holding only the built-in defaults."""
        config = cls.__new__(cls)
        config.config_path = Path(DEFAULT_DATA_DIR).expanduser() / CONFIG_FILENAME
        config.load_env = False
        config.data = copy.deepcopy(DEFAULT_CONFIG)
        return config

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file and merge with defaults.

        Returns:
            Merged configuration dictionary

        Raises:
            ConfigError: If configuration loading or parsing fails
        """
        config = copy.deepcopy(DEFAULT_CONFIG)

        if self.config_path.exists():
            try:
                with open(self.config_path, "rb") as f:
                    file_config = tomllib.load(f)
            except (OSError, tomllib.TOMLDecodeError) as e:
                raise ConfigError(
                    ErrorCode.E704_CONFIG_PARSE_ERROR,
                    f"Failed to parse configuration file: {e}",
                    {"path": str(self.config_path), "error": str(e)},
                ) from e

            config = self._merge_config(config, file_config)

        if self.load_env:
            config = self._apply_env_overrides(config)

        return config

    def _merge_config(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge override config into base config."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration.

        Environment variables follow the pattern: MITTHI_SECTION_KEY
        For example: MITTHI_STREAM_CHUNK_SIZE=4194304

        Raises:
            ConfigError: If an override cannot be converted to the setting's type
        """
        result = copy.deepcopy(config)

        for section, settings in config.items():
            if not isinstance(settings, dict):
                continue

            for key, current in settings.items():
                env_var = f"{ENV_PREFIX}_{section.upper()}_{key.upper()}"
                env_value = os.environ.get(env_var)
                if env_value is None:
                    continue

                try:
                    if isinstance(current, bool):
                        result[section][key] = env_value.lower() in ("true", "1", "yes")
                    elif isinstance(current, int):
                        result[section][key] = int(env_value)
                    elif isinstance(current, float):
                        result[section][key] = float(env_value)
                    else:
                        result[section][key] = env_value
                except ValueError as e:
                    raise ConfigError(
                        ErrorCode.E703_INVALID_CONFIG,
                        f"Invalid value for {env_var}: {env_value!r}",
                        {"variable": env_var},
                    ) from e

        return result

    def validate(self) -> None:
        """Check value types and ranges.

        Raises:
            ConfigError: If a value is invalid
        """
        chunk_size = self.get("stream", "chunk_size")
        if not _is_int(chunk_size) or not MIN_STREAM_CHUNK_SIZE <= chunk_size <= MAX_STREAM_CHUNK_SIZE:
            raise ConfigError(
                ErrorCode.E703_INVALID_CONFIG,
                f"stream.chunk_size must be an integer between {MIN_STREAM_CHUNK_SIZE} "
                f"and {MAX_STREAM_CHUNK_SIZE}",
                {"value": chunk_size},
            )

        queue_size = self.get("stream", "queue_size")
        if not _is_int(queue_size) or queue_size < 1:
            raise ConfigError(
                ErrorCode.E703_INVALID_CONFIG,
                "stream.queue_size must be a positive integer",
                {"value": queue_size},
            )

        for key in ("max_file_size", "max_text_message_size"):
            value = self.get("limits", key)
            if not _is_int(value) or value <= 0:
                raise ConfigError(
                    ErrorCode.E703_INVALID_CONFIG,
                    f"limits.{key} must be a positive integer",
                    {"value": value},
                )

        level = str(self.get("logging", "level", "INFO")).upper()
        if level not in LOG_LEVELS:
            raise ConfigError(
                ErrorCode.E703_INVALID_CONFIG,
                f"logging.level must be one of {', '.join(LOG_LEVELS)}",
                {"value": level},
            )

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """Get a configuration value."""
        return self.data.get(section, {}).get(key, default)

    def set(self, section: str, key: str, value: Any) -> None:
        """Set a configuration value."""
        if section not in self.data:
            self.data[section] = {}

        self.data[section][key] = value

    def save(self) -> None:
        """Save current configuration to file.

        Raises:
            ConfigError: If saving fails
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

            with open(self.config_path, "w") as f:
                self._write_toml(f, self.data)

        except OSError as e:
            raise ConfigError(
                ErrorCode.E702_CONFIG_SAVE_FAILED,
                f"Failed to save configuration: {e}",
                {"path": str(self.config_path), "error": str(e)},
            ) from e

    def _write_toml(self, file, data: Dict[str, Any]) -> None:
        """Write configuration data as TOML format."""
        for section, settings in data.items():
            if isinstance(settings, dict):
                file.write(f"[{section}]\n")
                for key, value in settings.items():
                    if isinstance(value, bool):
                        file.write(f"{key} = {str(value).lower()}\n")
                    elif isinstance(value, (int, float)):
                        file.write(f"{key} = {value}\n")
                    elif isinstance(value, str):
                        file.write(f'{key} = "{value}"\n')
                file.write("\n")

    def to_dict(self) -> Dict[str, Any]:
        """Get configuration as dictionary."""
        return copy.deepcopy(self.data)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
