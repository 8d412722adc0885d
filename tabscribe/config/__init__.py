"""Simple YAML configuration loader for tabscribe."""

import copy
import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging

logger = logging.getLogger(__name__)


DEFAULTS: Dict[str, Any] = {
    "audio": {
        "sample_rate": 16000,
        "channels": 1,
        "chunk_seconds": 1.0,
    },
    "dashscope": {
        "api_key": "",
        "base_url": "https://dashscope.aliyuncs.com",
        "model": "paraformer-v2",
        "language": "zh",
        "try_sync_endpoint": False,
        "poll_interval_seconds": 2.0,
        "max_poll_attempts": 300,
        "max_empty_statuses": 5,
        "request_timeout_seconds": 60,
    },
    "whisper": {
        "model": "small",
        "device": "auto",
        "compute_type": "int8",
        "language": "zh",
        "chunk_length_seconds": 30,
        "stride_seconds": 5,
        "no_repeat_ngram_size": 6,
        "repetition_penalty": 1.1,
        "preload": False,
    },
    "transcription": {
        "script_conversion": "tw2s",
        "keepalive_interval_seconds": 25,
    },
    "storage": {
        "data_directory": "data",
        "output_directory": "data/transcripts",
        "session_file": "data/session_state.json",
    },
    "logging": {
        "level": "INFO",
        "file_path": "data/logs/tabscribe.log",
        "console_output": True,
    },
}

# Keys holding filesystem paths, resolved relative to the config file
PATH_KEYS = (
    "storage.data_directory",
    "storage.output_directory",
    "storage.session_file",
    "logging.file_path",
)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class TabscribeConfig:
    """tabscribe configuration loader."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file. If None, built-in defaults
                        are used and relative paths resolve against the
                        working directory.
        """
        if config_path is None:
            self.config_file = None
            self.config = copy.deepcopy(DEFAULTS)
            return

        self.config_file = Path(config_path)

        if not self.config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_file}")

        logger.info(f"Loading configuration from: {self.config_file}")
        self.config = self._load_config()

    @classmethod
    def from_dict(cls, overrides: Dict[str, Any]) -> "TabscribeConfig":
        """Build a configuration from a dictionary instead of a file."""
        config = cls()
        config.config = _merge(DEFAULTS, overrides)
        return config

    def _load_config(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file."""
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}") from e

        if not config:
            raise ValueError("Configuration file is empty")
        if not isinstance(config, dict):
            raise ValueError("Configuration file must contain a mapping at the top level")

        config = _merge(DEFAULTS, config)

        # Resolve relative paths
        self._resolve_paths(config)

        logger.info("Configuration loaded successfully")
        return config

    def _resolve_paths(self, config: Dict[str, Any]) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        config_dir = self.config_file.parent

        for key_path in PATH_KEYS:
            section, key = key_path.split('.')
            value = config.get(section, {}).get(key)
            if value and not os.path.isabs(value):
                config[section][key] = str(config_dir / value)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'dashscope.model').

        Args:
            key_path: Dot-separated key path (e.g., 'whisper.compute_type')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split('.')
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation.

        Args:
            key_path: Dot-separated path to config value (e.g., 'dashscope.api_key')
            value: Value to set
        """
        keys = key_path.split('.')
        config_dict = self.config

        # Navigate to the parent dictionary
        for key in keys[:-1]:
            if key not in config_dict:
                config_dict[key] = {}
            config_dict = config_dict[key]

        # Set the final value
        config_dict[keys[-1]] = value
        logger.debug(f"Configuration key '{key_path}' set to: {value}")

    def get_dashscope_api_key(self) -> Optional[str]:
        """DashScope credential from the config file, else from DASHSCOPE_API_KEY."""
        api_key = self.get('dashscope.api_key') or os.environ.get('DASHSCOPE_API_KEY')
        return api_key.strip() if api_key and api_key.strip() else None

    def get_data_directory(self) -> str:
        """Get data directory path."""
        data_dir = self.get('storage.data_directory', 'data')
        return str(Path(data_dir).absolute())

    def get_output_directory(self) -> str:
        """Directory transcripts are delivered to."""
        output_dir = self.get('storage.output_directory', 'data/transcripts')
        return str(Path(output_dir).absolute())

    def get_session_file(self) -> str:
        """Path of the durable session record."""
        session_file = self.get('storage.session_file', 'data/session_state.json')
        return str(Path(session_file).absolute())
