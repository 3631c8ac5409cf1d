"""
Resolution Config Model - which upstream service, music source and quality
tier are used to look up audio URLs.
The configuration is process-wide and persisted to a flat JSON file.
"""

import json
import logging
import os
import tempfile
import threading

logger = logging.getLogger(__name__)

API_SOURCES = ["original", "gdstudio"]
MUSIC_SOURCES = ["netease", "kuwo", "joox", "tencent", "kugou", "migu"]

# Configuration used when nothing has been saved yet
DEFAULT_CONFIG = {
    "api_source": "original",
    "music_source": "netease",
    "music_quality": "999",
}

# Request bodies use camelCase, the stored file uses snake_case
_FIELD_ALIASES = {
    "api_source": ("apiSource", "api_source"),
    "music_source": ("musicSource", "music_source"),
    "music_quality": ("musicQuality", "music_quality"),
}


def _is_valid_quality(value) -> bool:
    if not isinstance(value, str):
        return False
    value = value.strip().lower()
    return value == "flac" or value.isdigit()


class ModelConfig:
    """Model that validates resolution configuration dictionaries."""

    @staticmethod
    def _pick(config_dict, field):
        for key in _FIELD_ALIASES[field]:
            value = config_dict.get(key)
            if value not in (None, ""):
                return value
        return None

    @classmethod
    def validate_config(cls, config_dict, base=None):
        """
        Validates and sanitizes a configuration.

        Args:
            config_dict: Dictionary with camelCase or snake_case keys
            base: Configuration whose values are kept for invalid or missing
                fields (defaults to DEFAULT_CONFIG)

        Returns:
            dict: Validated configuration
        """
        validated = dict(base or DEFAULT_CONFIG)
        if not isinstance(config_dict, dict):
            return validated

        api_source = cls._pick(config_dict, "api_source")
        if api_source in API_SOURCES:
            validated["api_source"] = api_source

        music_source = cls._pick(config_dict, "music_source")
        if music_source in MUSIC_SOURCES:
            validated["music_source"] = music_source

        quality = cls._pick(config_dict, "music_quality")
        if isinstance(quality, int) and not isinstance(quality, bool):
            quality = str(quality)
        if _is_valid_quality(quality):
            validated["music_quality"] = quality.strip().lower()

        return validated


class ConfigStore:
    """Thread-safe holder of the resolution config, backed by a JSON file.

    Readers always receive a copy; writers replace the whole dictionary so a
    concurrent reader never observes a half-applied update.
    """

    def __init__(self, path: str) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._config: dict = DEFAULT_CONFIG.copy()

    @property
    def path(self) -> str:
        return self._path

    def load(self) -> dict:
        """Load the persisted config; keep defaults when missing or corrupt."""
        if not os.path.exists(self._path):
            logger.info(f"No saved config at {self._path}, using defaults")
            return self.get()

        try:
            with open(self._path, "r", encoding="utf-8") as fh:
                saved = json.load(fh)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load config from {self._path}: {e}")
            return self.get()

        if not isinstance(saved, dict):
            logger.error(f"Ignoring config file {self._path}: not a JSON object")
            return self.get()

        loaded = ModelConfig.validate_config(saved, DEFAULT_CONFIG)
        with self._lock:
            self._config = loaded
        logger.info(f"Config loaded: {loaded}")
        return loaded.copy()

    def get(self) -> dict:
        with self._lock:
            return self._config.copy()

    def update(self, data: dict) -> dict:
        """Validate *data* against the current config, store and persist it."""
        with self._lock:
            updated = ModelConfig.validate_config(data, self._config)
            self._config = updated
            self._save(updated)
        return updated.copy()

    def _save(self, data: dict) -> None:
        directory = os.path.dirname(os.path.abspath(self._path))
        tmp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=".config-", suffix=".tmp", dir=directory
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self._path)
            logger.info("Config saved")
        except OSError as e:
            logger.error(f"Failed to save config to {self._path}: {e}")
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)
