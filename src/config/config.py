"""Export client configuration from YAML file.

Loads from config/config.yaml with all settings in one place:
- Mixpanel credentials (product, API key, API secret)
- Endpoint base URL
- Transport timeouts and read chunk size
- Pipeline tuning (per-event queue size, distinct_id policy)

Environment variables ARE supported using ${VAR_NAME} syntax in YAML files.
Credentials may also come straight from MIXPANEL_* environment variables,
which take precedence over the file.
"""

import json
import logging
import os
import re
import sys
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from core.errors.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://mixpanel.com/api"

# Default config file: config.yaml next to this module
DEFAULT_CONFIG_FILE = Path(__file__).parent / "config.yaml"

# Environment variable -> ExportConfig field
ENV_OVERRIDES = {
    "MIXPANEL_PRODUCT": "product",
    "MIXPANEL_API_KEY": "api_key",
    "MIXPANEL_API_SECRET": "api_secret",
    "MIXPANEL_BASE_URL": "base_url",
}


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


def _parse_bool(value: Any) -> bool:
    """Interpret a config flag that may arrive as a string after ${VAR} expansion."""
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


@dataclass
class ExportConfig:
    """Mixpanel export client configuration.

    Configuration structure:
        mixpanel:
          product: my-app
          api_key: ${MIXPANEL_API_KEY}
          api_secret: ${MIXPANEL_API_SECRET}
          base_url: https://mixpanel.com/api
          expire_seconds: 10000
          transport:
            connect_timeout_seconds: 30
            read_timeout_seconds: 300
            export_timeout_seconds: null
            chunk_size: 65536
          pipeline:
            queue_maxsize: 1000
            require_distinct_id: false
    """

    # =========================================================================
    # CREDENTIALS
    # =========================================================================
    product: str = ""
    api_key: str = ""
    api_secret: str = ""
    base_url: str = DEFAULT_BASE_URL

    # Seconds a signed query stays valid server-side
    expire_seconds: int = 10000

    # =========================================================================
    # TRANSPORT
    # =========================================================================
    connect_timeout_seconds: float = 30.0
    read_timeout_seconds: float = 300.0
    export_timeout_seconds: Optional[float] = None  # whole call; None = no deadline
    chunk_size: int = 64 * 1024

    # =========================================================================
    # PIPELINE
    # =========================================================================
    queue_maxsize: int = 1000  # per event type; 0 = unbounded
    require_distinct_id: bool = False

    def validate(self) -> None:
        """Validate configuration for correctness and constraints."""
        for name in ("product", "api_key", "api_secret"):
            if not getattr(self, name):
                raise ConfigurationError(
                    f"mixpanel.{name} is required "
                    f"(or set {_env_name_for(name)} in the environment)"
                )

        if not self.base_url.startswith(("http://", "https://")):
            raise ConfigurationError(
                f"mixpanel.base_url must start with http:// or https://, got: {self.base_url!r}"
            )

        self._validate_positive("expire_seconds", self.expire_seconds)
        self._validate_positive("connect_timeout_seconds", self.connect_timeout_seconds)
        self._validate_positive("read_timeout_seconds", self.read_timeout_seconds)
        self._validate_positive("chunk_size", self.chunk_size)
        if self.export_timeout_seconds is not None:
            self._validate_positive("export_timeout_seconds", self.export_timeout_seconds)

        if self.queue_maxsize < 0:
            raise ConfigurationError(
                f"mixpanel.pipeline.queue_maxsize must be >= 0, got {self.queue_maxsize}"
            )

    @staticmethod
    def _validate_positive(key: str, value: float) -> None:
        if value <= 0:
            raise ConfigurationError(f"mixpanel: {key} must be > 0, got {value}")

    def redacted(self) -> Dict[str, Any]:
        """Config as a dict with credentials masked, for display and logs."""
        data = asdict(self)
        for key in ("api_key", "api_secret"):
            if data[key]:
                data[key] = "***"
        return data


def _env_name_for(field_name: str) -> str:
    for env_name, name in ENV_OVERRIDES.items():
        if name == field_name:
            return env_name
    return field_name.upper()


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> ExportConfig:
    """Load export configuration from config.yaml and the environment.

    Priority (highest to lowest):
        1. MIXPANEL_* environment variables
        2. overrides (deep-merged into the mixpanel section)
        3. YAML file (with ${VAR} expansion)
        4. ExportConfig defaults

    A missing default file is fine when credentials come from the
    environment; an explicitly requested file must exist.
    """
    explicit_path = config_path is not None
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    if explicit_path and not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    section: Dict[str, Any] = {}
    if config_path.exists():
        logger.info(f"Loading configuration from file: {config_path}")
        yaml_data = _expand_env_vars(load_yaml(config_path))
        if yaml_data and "mixpanel" not in yaml_data:
            raise ConfigurationError(
                f"Invalid config file {config_path}: missing 'mixpanel:' section"
            )
        section = yaml_data.get("mixpanel") or {}
    else:
        logger.debug(f"No configuration file at {config_path}, using environment only")

    if overrides:
        logger.debug(f"Applying overrides: {list(overrides.keys())}")
        section = _deep_merge(section, overrides)

    transport = section.get("transport", {}) or {}
    pipeline = section.get("pipeline", {}) or {}

    try:
        config = ExportConfig(
            product=str(section.get("product", "") or ""),
            api_key=str(section.get("api_key", "") or ""),
            api_secret=str(section.get("api_secret", "") or ""),
            base_url=str(section.get("base_url") or DEFAULT_BASE_URL).rstrip("/"),
            expire_seconds=int(section.get("expire_seconds", 10000)),
            connect_timeout_seconds=float(transport.get("connect_timeout_seconds", 30)),
            read_timeout_seconds=float(transport.get("read_timeout_seconds", 300)),
            export_timeout_seconds=(
                float(transport["export_timeout_seconds"])
                if transport.get("export_timeout_seconds") is not None
                else None
            ),
            chunk_size=int(transport.get("chunk_size", 64 * 1024)),
            queue_maxsize=int(pipeline.get("queue_maxsize", 1000)),
            require_distinct_id=_parse_bool(pipeline.get("require_distinct_id", False)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value in mixpanel configuration: {e}", cause=e) from e

    for env_name, field_name in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            setattr(config, field_name, value.rstrip("/") if field_name == "base_url" else value)

    logger.debug("Configuration loaded", extra={"state": json.dumps(config.redacted())})

    config.validate()
    return config


_export_config: Optional[ExportConfig] = None


def get_config() -> ExportConfig:
    """Get or load the singleton export config instance."""
    global _export_config
    if _export_config is None:
        _export_config = load_config()
    return _export_config


def set_config(config: ExportConfig) -> None:
    """Set the singleton export config instance (useful for testing)."""
    global _export_config
    _export_config = config


def reset_config() -> None:
    """Reset the singleton config instance (forces reload on next get_config() call)."""
    global _export_config
    _export_config = None


def _cli_main() -> int:
    """CLI entry point for config validation and debugging."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Mixpanel export configuration tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate configuration
  python -m config.config --validate

  # Show effective configuration (credentials masked)
  python -m config.config --show

  # Use a custom config file, JSON output
  python -m config.config --config /path/to/config.yaml --show --json
        """,
    )
    parser.add_argument("--validate", action="store_true", help="Validate configuration")
    parser.add_argument("--show", action="store_true", help="Display effective configuration")
    parser.add_argument("--config", type=Path, help="Path to config.yaml file")
    parser.add_argument("--json", action="store_true", help="Output in JSON format")

    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    if not args.validate and not args.show:
        parser.print_help()
        return 0

    try:
        config = load_config(config_path=args.config)
    except ConfigurationError as e:
        if args.json:
            print(json.dumps({"error": str(e)}))
        else:
            print(f"✗ Configuration error: {e}", file=sys.stderr)
        return 1

    output: Dict[str, Any] = {}
    if args.validate:
        if args.json:
            output["validation"] = {"passed": True}
        else:
            print("✓ Configuration validation passed")
    if args.show:
        if args.json:
            output["config"] = config.redacted()
        else:
            print(yaml.dump({"mixpanel": config.redacted()}, default_flow_style=False, sort_keys=False))
    if args.json:
        print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(_cli_main())
