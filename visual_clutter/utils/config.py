"""
Configuration management for the Visual Clutter node.
"""
import json
import os
from pathlib import Path
from typing import Dict, Any, Optional

from visual_clutter.utils.constants import CONFIGS_DIR
from visual_clutter.utils.failures import ConfigError

# Environment variable -> (dotted key, converter)
ENV_OVERRIDES = {
    'VC_CAMERA_INDEX': ('camera.device_candidates', lambda v: [int(v)]),
    'VC_MODEL_PATH': ('model.path', str),
    'VC_LOG_LEVEL': ('logging.level', str),
    'VC_DROP_LATE_FRAMES': ('pipeline.drop_late_frames', str),
}

_TRUE_STRINGS = ('true', '1', 'yes', 'on')


class Config:
    """Configuration manager that merges multiple domain-specific JSON files."""

    def __init__(self, configs_dir: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        """
        Load all JSON files in the configs directory, then apply environment overrides.

        Args:
            configs_dir: Directory containing JSON configs (defaults to visual_clutter/configs).
            environ: Mapping used for overrides (defaults to os.environ).
        """
        self.config: Dict[str, Any] = {}

        configs_path = Path(configs_dir) if configs_dir else CONFIGS_DIR
        if configs_dir and not configs_path.is_dir():
            raise ConfigError(f"Config directory not found: {configs_path}")

        if configs_path.is_dir():
            for config_file in sorted(configs_path.glob("*.json")):
                self.load_from_file(str(config_file))

        self._load_from_env(os.environ if environ is None else environ)

    def _load_from_env(self, environ: Dict[str, str]):
        """Apply VC_* environment variables on top of the file configuration."""
        for var, (key, convert) in ENV_OVERRIDES.items():
            raw = environ.get(var)
            if not raw:
                continue
            try:
                self.set(key, convert(raw))
            except ValueError as e:
                raise ConfigError(f"Invalid value for {var}: {raw!r}") from e

    def load_from_file(self, path: str):
        """Load configuration from a JSON file and merge it in."""
        try:
            with open(path, 'r') as f:
                user_config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Failed to load config from {path}: {e}") from e

        if not isinstance(user_config, dict):
            raise ConfigError(f"Config file {path} must contain a JSON object")
        self._merge_config(user_config)

    def _merge_config(self, user_config: Dict[str, Any]):
        """Merge user config into the current config recursively."""
        def update(d, u):
            for k, v in u.items():
                if isinstance(v, dict):
                    d[k] = update(d.get(k, {}) if isinstance(d.get(k), dict) else {}, v)
                else:
                    d[k] = v
            return d

        update(self.config, user_config)

    def _typed(self, key: str, default, cast):
        try:
            return cast(self.get(key, default))
        except (ValueError, TypeError):
            return default

    def get_int(self, key: str, default: int = 0) -> int:
        return self._typed(key, default, int)

    def get_float(self, key: str, default: float = 0.0) -> float:
        return self._typed(key, default, float)

    def get_bool(self, key: str, default: bool = False) -> bool:
        """Booleans, plus the strings true/1/yes/on (case-insensitive)."""
        value = self.get(key, default)
        if isinstance(value, str):
            return value.strip().lower() in _TRUE_STRINGS
        return bool(value)

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a dotted key such as 'camera.fps'."""
        node: Any = self.config
        for part in key.split('.'):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, key: str, value: Any):
        """Set a configuration value by dotted key, creating sections as needed."""
        keys = key.split('.')
        node = self.config
        for k in keys[:-1]:
            if not isinstance(node.get(k), dict):
                node[k] = {}
            node = node[k]
        node[keys[-1]] = value

    def save_to_file(self, path: str):
        """Save current configuration to file."""
        with open(path, 'w') as f:
            json.dump(self.config, f, indent=2)
