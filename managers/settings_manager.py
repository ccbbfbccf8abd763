"""Settings management for the optimizer"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from image_processor import TranscodePolicy
from shopify_client import ShopCredentials

logger = logging.getLogger("ImageOptimizer")

# Configuration paths
CONFIG_DIR = Path.home() / ".config" / "image-optimizer-mcp"
CONFIG_FILE = CONFIG_DIR / "config.json"

# Keys that may be read from the environment, with their converters
ENV_VARS: Dict[str, tuple] = {
    "shop_domain": ("SHOPIFY_SHOP", str),
    "access_token": ("SHOPIFY_ACCESS_TOKEN", str),
    "api_version": ("SHOPIFY_API_VERSION", str),
    "database_url": ("IMAGE_OPTIMIZER_DATABASE_URL", str),
    "max_width": ("IMAGE_OPTIMIZER_MAX_WIDTH", int),
    "size_threshold_kb": ("IMAGE_OPTIMIZER_SIZE_THRESHOLD_KB", int),
    "request_timeout": ("IMAGE_OPTIMIZER_REQUEST_TIMEOUT", float),
}

# Never written to the config file
SECRET_KEYS = ("access_token",)

# Only read at start-up; changing them at runtime would have no effect
RESTART_KEYS = ("database_url",)

# Inclusive (min, max) for numeric settings; None means unbounded
NUMERIC_BOUNDS: Dict[str, tuple] = {
    "max_width": (1, None),
    "size_threshold_kb": (0, None),
    "webp_quality": (1, 100),
    "avif_quality": (0, 100),
    "avif_speed": (0, 10),
    "max_scan_results": (1, None),
    "page_size": (1, 250),
    "images_per_product": (1, 250),
    "request_timeout": (1, None),
}


@dataclass(frozen=True)
class OptimizerSettings:
    shop_domain: Optional[str]
    access_token: Optional[str]
    api_version: str
    database_url: str
    max_width: int
    size_threshold_kb: int
    webp_quality: int
    avif_quality: int
    avif_speed: int
    max_scan_results: int
    page_size: int
    images_per_product: int
    request_timeout: float

    @property
    def credentials(self) -> ShopCredentials:
        return ShopCredentials(shop=self.shop_domain, access_token=self.access_token)

    @property
    def transcode_policy(self) -> TranscodePolicy:
        return TranscodePolicy(
            max_width=self.max_width,
            size_threshold_kb=self.size_threshold_kb,
            webp_quality=self.webp_quality,
            avif_quality=self.avif_quality,
            avif_speed=self.avif_speed,
        )


class SettingsManager:
    """Resolves settings with precedence: runtime > config > env > hardcoded"""

    def __init__(self, config_file: Path = CONFIG_FILE):
        self.config_file = config_file
        self._runtime: Dict[str, Any] = {}
        self._config = self._load_config()
        self._hardcoded: Dict[str, Any] = {
            "shop_domain": None,
            "access_token": None,
            "api_version": "2024-10",
            "database_url": f"sqlite:///{config_file.parent / 'records.db'}",
            "max_width": 2048,
            "size_threshold_kb": 200,
            "webp_quality": 80,
            "avif_quality": 60,
            "avif_speed": 5,
            "max_scan_results": 2500,
            "page_size": 50,
            "images_per_product": 20,
            "request_timeout": 30.0,
        }

    def _load_config(self) -> Dict[str, Any]:
        """Load settings from config file"""
        if not self.config_file.exists():
            return {}
        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                config = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Failed to load config file {self.config_file}: {e}")
            return {}
        settings = config.get("settings", {}) if isinstance(config, dict) else {}
        return {k: v for k, v in settings.items() if k not in SECRET_KEYS}

    def _get_env(self) -> Dict[str, Any]:
        """Load settings from environment variables"""
        values = {}
        for key, (env_name, convert) in ENV_VARS.items():
            raw = os.getenv(env_name)
            if raw in (None, ""):
                continue
            try:
                values[key] = convert(raw)
            except ValueError:
                logger.warning(f"Ignoring invalid value for {env_name}: {raw!r}")
        return values

    def get(self, key: str) -> Any:
        if key in self._runtime:
            return self._runtime[key]
        if key in self._config:
            return self._config[key]
        env = self._get_env()
        if key in env:
            return env[key]
        return self._hardcoded.get(key)

    def get_all(self) -> Dict[str, Any]:
        """Effective settings merged from all sources"""
        result = dict(self._hardcoded)
        result.update(self._get_env())
        result.update(self._config)
        result.update(self._runtime)
        return result

    def settings(self) -> OptimizerSettings:
        return OptimizerSettings(**self.get_all())

    def public_settings(self) -> Dict[str, Any]:
        """Effective settings with secrets masked"""
        values = self.get_all()
        for key in SECRET_KEYS:
            if values.get(key):
                values[key] = "***"
        return values

    def set(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Set runtime settings. Returns validation errors if any."""
        errors = []
        coerced = {}
        for key, value in updates.items():
            if key not in self._hardcoded:
                errors.append(f"Unknown setting: {key}")
                continue
            if key in RESTART_KEYS:
                errors.append(f"{key} can only be set in the config file or environment (read at start-up)")
                continue
            if value is None and key in NUMERIC_BOUNDS:
                errors.append(f"Invalid value for {key}: None")
                continue
            converter = self._converter_for(key)
            try:
                converted = converter(value) if value is not None else None
            except (TypeError, ValueError):
                errors.append(f"Invalid value for {key}: {value!r}")
                continue
            bound_error = self._check_bounds(key, converted)
            if bound_error:
                errors.append(bound_error)
                continue
            coerced[key] = converted
        if errors:
            return {"errors": errors}

        self._runtime.update(coerced)
        return {"success": True, "updated": {k: v for k, v in coerced.items() if k not in SECRET_KEYS}}

    def persist(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Persist settings to config file"""
        secret = [key for key in updates if key in SECRET_KEYS]
        if secret:
            return {"error": f"Refusing to persist secrets: {', '.join(secret)}"}

        self.config_file.parent.mkdir(parents=True, exist_ok=True)
        config: Dict[str, Any] = {}
        if self.config_file.exists():
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    config = json.load(f)
            except (json.JSONDecodeError, IOError):
                config = {}
        config.setdefault("settings", {}).update(updates)

        temp_path = self.config_file.with_suffix(".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(config, f, indent=2)
            temp_path.replace(self.config_file)
        except IOError as e:
            return {"error": f"Failed to write config file: {e}"}
        self._config = self._load_config()
        return {"success": True, "persisted": updates}

    def _check_bounds(self, key: str, value: Any) -> Optional[str]:
        if key not in NUMERIC_BOUNDS:
            return None
        low, high = NUMERIC_BOUNDS[key]
        if value < low or (high is not None and value > high):
            limit = f">= {low}" if high is None else f"between {low} and {high}"
            return f"Invalid value for {key}: {value!r} (must be {limit})"
        return None

    def _converter_for(self, key: str) -> Callable[[Any], Any]:
        default = self._hardcoded.get(key)
        if isinstance(default, bool) or default is None:
            return str
        return type(default)
