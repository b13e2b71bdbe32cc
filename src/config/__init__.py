"""Configuration loading for the Mixpanel export client.

Configuration is read from ``config/config.yaml`` (or an explicit path) and
the MIXPANEL_* environment variables.

Main Functions
--------------

    - load_config(): Load ExportConfig from YAML + environment
    - get_config(): Get or load singleton config instance
    - set_config(): Replace singleton config instance (tests)
    - reset_config(): Reset singleton config instance

Usage Examples
--------------

    >>> from config import load_config
    >>> config = load_config()
    >>> config.product
    'my-app'

    >>> from pathlib import Path
    >>> config = load_config(config_path=Path("/custom/path/config.yaml"))

Configuration Priority
----------------------

1. MIXPANEL_* environment variables
2. Overrides passed to load_config()
3. YAML configuration file
4. Dataclass defaults
"""

from config.config import (
    DEFAULT_BASE_URL,
    ExportConfig,
    get_config,
    load_config,
    reset_config,
    set_config,
)

__all__ = [
    "load_config",
    "get_config",
    "set_config",
    "reset_config",
    "ExportConfig",
    "DEFAULT_BASE_URL",
]
