"""Configuration management: TOML file, environment and config models.

Usage:
    >>> from dbsnap.config import load_config, CaptureConfig, ConfigError
"""

from dbsnap.config.loader import ConfigError, load_config
from dbsnap.config.models import DEFAULT_REGISTRY_URL, CaptureConfig

__all__ = ["load_config", "CaptureConfig", "ConfigError", "DEFAULT_REGISTRY_URL"]
