"""
Configuration for the layer records system.
"""

from dataclasses import dataclass
from typing import Optional
from decouple import config as env_config


@dataclass
class LayerRecordSettings:
    """Runtime settings shared by all layer records."""

    # Pixel tolerance used when building identify requests
    click_tolerance: int = 5

    # REST request settings
    request_timeout_seconds: float = 60.0
    max_concurrency: int = 10
    api_key: str = ""

    @classmethod
    def from_env(cls) -> "LayerRecordSettings":
        """Load settings from environment variables."""
        return cls(
            click_tolerance=env_config("LAYER_CLICK_TOLERANCE", default=5, cast=int),
            request_timeout_seconds=env_config("LAYER_REQUEST_TIMEOUT", default=60.0, cast=float),
            max_concurrency=env_config("LAYER_MAX_CONCURRENCY", default=10, cast=int),
            api_key=env_config("ARCGIS_API_KEY", default=""),
        )


# Global settings instance
_settings: Optional[LayerRecordSettings] = None


def get_settings() -> LayerRecordSettings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = LayerRecordSettings.from_env()
    return _settings


def set_settings(settings: Optional[LayerRecordSettings]):
    """Set (or reset, with None) the global settings instance."""
    global _settings
    _settings = settings
