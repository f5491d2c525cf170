"""Defaults management for conversion settings"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from models.settings import (
    DEFAULT_JPEG_QUALITY,
    DEFAULT_MAX_IMAGE_DIMENSION,
    DEFAULT_METHOD,
    DEFAULT_QUALITY,
    ConverterSettings,
)

logger = logging.getLogger("WebP_Converter")

# Configuration paths
CONFIG_DIR = Path.home() / ".config" / "webp-converter"
CONFIG_FILE = CONFIG_DIR / "config.json"

NAMESPACE = "conversion"

ENV_VARS = {
    "jpeg_quality": "WEBP_CONVERTER_JPEG_QUALITY",
    "default_quality": "WEBP_CONVERTER_DEFAULT_QUALITY",
    "max_image_dimension": "WEBP_CONVERTER_MAX_IMAGE_DIMENSION",
    "method": "WEBP_CONVERTER_METHOD",
}

# Inclusive bounds per setting; None means unbounded
_LIMITS = {
    "jpeg_quality": (0, 100),
    "default_quality": (0, 100),
    "max_image_dimension": (1, None),
    "method": (0, 6),
}


def validate_setting(key: str, value: Any) -> Optional[str]:
    """Return an error message if ``value`` is not acceptable for ``key``"""
    if key not in _LIMITS:
        return f"Unknown setting '{key}'. Valid settings: {sorted(_LIMITS)}"
    if isinstance(value, bool) or not isinstance(value, int):
        return f"Setting '{key}' must be an integer, got {value!r}"
    low, high = _LIMITS[key]
    if value < low or (high is not None and value > high):
        upper = high if high is not None else "inf"
        return f"Setting '{key}' must be between {low} and {upper}, got {value}"
    return None


class DefaultsManager:
    """Manages conversion settings with precedence: per-call > runtime > config > env > hardcoded"""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = Path(config_file) if config_file else CONFIG_FILE
        self._runtime_defaults: Dict[str, Any] = {}
        self._config_defaults = self._load_config_defaults()
        self._hardcoded_defaults = {
            "jpeg_quality": DEFAULT_JPEG_QUALITY,
            "default_quality": DEFAULT_QUALITY,
            "max_image_dimension": DEFAULT_MAX_IMAGE_DIMENSION,
            "method": DEFAULT_METHOD,
        }

    def _load_config_defaults(self) -> Dict[str, Any]:
        """Load defaults from config file"""
        if not self.config_file.exists():
            return {}
        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                config = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Failed to load config file {self.config_file}: {e}")
            return {}

        defaults = {}
        for key, value in config.get("defaults", {}).get(NAMESPACE, {}).items():
            error = validate_setting(key, value)
            if error:
                logger.warning(f"Ignoring config value in {self.config_file}: {error}")
                continue
            defaults[key] = value
        return defaults

    def _get_env_defaults(self) -> Dict[str, Any]:
        """Load defaults from environment variables"""
        defaults = {}
        for key, env_var in ENV_VARS.items():
            raw = os.getenv(env_var)
            if raw is None or raw.strip() == "":
                continue
            try:
                value = int(raw)
            except ValueError:
                logger.warning(f"Ignoring {env_var}={raw!r}: not an integer")
                continue
            error = validate_setting(key, value)
            if error:
                logger.warning(f"Ignoring {env_var}: {error}")
                continue
            defaults[key] = value
        return defaults

    def get_default(self, key: str, provided_value: Any = None) -> Any:
        """Get default value with precedence: provided > runtime > config > env > hardcoded"""
        if provided_value is not None:
            return provided_value

        if key in self._runtime_defaults:
            return self._runtime_defaults[key]

        if key in self._config_defaults:
            return self._config_defaults[key]

        env_defaults = self._get_env_defaults()
        if key in env_defaults:
            return env_defaults[key]

        return self._hardcoded_defaults.get(key)

    def get_all_defaults(self) -> Dict[str, Any]:
        """Get all effective defaults (merged from all sources)"""
        result = self._hardcoded_defaults.copy()
        result.update(self._get_env_defaults())
        result.update(self._config_defaults)
        result.update(self._runtime_defaults)
        return result

    def get_settings(self, **overrides: Any) -> ConverterSettings:
        """Build the effective ConverterSettings; keyword overrides win over every source"""
        return ConverterSettings(**{
            key: self.get_default(key, overrides.get(key))
            for key in self._hardcoded_defaults
        })

    def set_defaults(self, defaults: Dict[str, Any]) -> Dict[str, Any]:
        """Set runtime defaults. Returns validation errors if any."""
        errors = [
            error for error in (validate_setting(key, value) for key, value in defaults.items())
            if error
        ]
        if errors:
            return {"errors": errors}

        self._runtime_defaults.update(defaults)
        logger.info(f"Updated runtime conversion defaults: {defaults}")
        return {"success": True, "updated": defaults}

    def persist_defaults(self, defaults: Dict[str, Any]) -> Dict[str, Any]:
        """Persist defaults to config file"""
        errors = [
            error for error in (validate_setting(key, value) for key, value in defaults.items())
            if error
        ]
        if errors:
            return {"errors": errors}

        self.config_file.parent.mkdir(parents=True, exist_ok=True)

        config = {}
        if self.config_file.exists():
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    config = json.load(f)
            except (json.JSONDecodeError, IOError):
                config = {}

        config.setdefault("defaults", {}).setdefault(NAMESPACE, {}).update(defaults)

        try:
            with open(self.config_file, "w", encoding="utf-8") as f:
                json.dump(config, f, indent=2)
            self._config_defaults = self._load_config_defaults()
            return {"success": True, "persisted": defaults}
        except IOError as e:
            return {"error": f"Failed to write config file: {e}"}
