# =============================================================================
# Context Camera - Centralized Configuration
# =============================================================================
# Provides a single Config dataclass containing all tunable parameters for
# the capture loop, the image codec and the Moondream API client. Parameters
# are overridable via environment variables with the CONTEXT_CAMERA_ prefix
# (e.g., CONTEXT_CAMERA_CAPTURE_INTERVAL_SECONDS=2.0).
#
# The API key follows its own lookup order: the MOONDREAM_API_KEY environment
# variable first, then the bundled settings file, then empty (unconfigured).
# =============================================================================

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Project root directory (where this file lives)
_PROJECT_ROOT = str(Path(__file__).parent.resolve())

API_KEY_ENV = "MOONDREAM_API_KEY"
ENV_PREFIX = "CONTEXT_CAMERA_"


def _parse_bool(value: str) -> bool:
    """Interpret common truthy strings ("1", "true", "yes", "on")."""
    return value.strip().lower() in ("1", "true", "yes", "on")


def _read_settings_key(settings_path: str, key: str) -> str:
    """
    Look up a single string value in the bundled JSON settings file.

    Args:
        settings_path: Path to a JSON object file.
        key:           Top-level key to read.

    Returns:
        The value, or "" if the file or key is absent or unreadable.
    """
    if not settings_path or not os.path.isfile(settings_path):
        return ""
    try:
        with open(settings_path, "r", encoding="utf-8") as fh:
            settings = json.load(fh)
    except (OSError, ValueError):
        logger.warning("Could not read settings file %s", settings_path, exc_info=True)
        return ""
    if not isinstance(settings, dict):
        return ""
    value = settings.get(key, "")
    return value if isinstance(value, str) else ""


@dataclass
class Config:
    """
    Centralized configuration for the Context Camera client.

    All fields except ``api_key`` can be overridden via environment variables
    prefixed with CONTEXT_CAMERA_.
    """

    # -- Moondream API --
    api_base_url: str = "https://api.moondream.ai/v1"
    api_key: Optional[str] = None
    settings_path: str = field(
        default_factory=lambda: os.path.join(_PROJECT_ROOT, "settings.json")
    )
    request_timeout_seconds: float = 30.0
    caption_length: str = "short"
    query_suffix: str = " respond with one sentence"

    # -- Image Processing --
    max_image_dimension: int = 320
    compression_quality: int = 50  # JPEG quality, 1-100
    log_image_metrics: bool = True

    # -- Capture Loop --
    capture_interval_seconds: float = 1.5
    camera_index: int = 0
    capture_monitor: int = 1

    # -- Contexts --
    contexts_path: Optional[str] = None
    keyword_rules_enabled: bool = False  # caption keyword fallback, off by default

    # -- Presentation --
    action_display_seconds: float = 2.0

    def __post_init__(self):
        """Apply environment variable overrides and resolve the API key."""
        self._apply_env_overrides()
        if self.api_key is None:
            self.api_key = self._resolve_api_key()

    @property
    def is_configured(self) -> bool:
        """True when an API key is available."""
        return bool(self.api_key)

    def _resolve_api_key(self) -> str:
        """Environment variable first, then the bundled settings file."""
        env_key = os.environ.get(API_KEY_ENV)
        if env_key:
            return env_key
        return _read_settings_key(self.settings_path, API_KEY_ENV)

    def _apply_env_overrides(self):
        """
        Override config fields from environment variables.

        Looks for CONTEXT_CAMERA_<FIELD_NAME_UPPERCASE> environment variables
        and applies them with appropriate type conversion.
        """
        field_types = {
            "api_base_url": str,
            "settings_path": str,
            "request_timeout_seconds": float,
            "caption_length": str,
            "query_suffix": str,
            "max_image_dimension": int,
            "compression_quality": int,
            "log_image_metrics": _parse_bool,
            "capture_interval_seconds": float,
            "camera_index": int,
            "capture_monitor": int,
            "contexts_path": str,
            "keyword_rules_enabled": _parse_bool,
            "action_display_seconds": float,
        }
        for field_name, field_type in field_types.items():
            env_key = f"{ENV_PREFIX}{field_name.upper()}"
            env_value = os.environ.get(env_key)
            if env_value is not None:
                setattr(self, field_name, field_type(env_value))


# ---------------------------------------------------------------------------
# Singleton accessor
# ---------------------------------------------------------------------------
_config_instance: Optional[Config] = None


def get_config() -> Config:
    """
    Return the singleton Config instance, creating it on first call.

    Returns:
        Config: The global configuration object.
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = Config()
    return _config_instance
