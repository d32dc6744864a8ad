"""Runtime settings and their loader."""

from timebox.config.loader import ConfigLoadError, load_settings
from timebox.config.settings import ConfigValidationError, TimeboxSettings

__all__ = [
    "ConfigLoadError",
    "ConfigValidationError",
    "TimeboxSettings",
    "load_settings",
]
