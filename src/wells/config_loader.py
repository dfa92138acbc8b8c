# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Configuration loader for the delivery engine.

Settings come from defaults, overridden by ``WELLS_*`` environment
variables, overridden by the ``[wells]`` section of an INI file.

Example:
    Configuration file format (config.ini)::

        [wells]
        store_root = /var/cache/myapp/reports
        file_extension = wellsdata
        max_attempts = 5
        default_retry_delay = 300
        minimum_retry_delay = 60
        retry_transport_errors = false
        startup_delay = 10
        max_report_age = 172800
        request_timeout = 60

    Loading it::

        config = load_engine_config("/etc/myapp/config.ini")
        engine = DeliveryEngine.from_config(config, transport=AiohttpTransport())
"""

from __future__ import annotations

import configparser
import os
from dataclasses import dataclass, field
from pathlib import Path

from .logger import get_logger
from .retry import DEFAULT_MAX_ATTEMPTS, DEFAULT_RETRY_DELAY, MINIMUM_RETRY_DELAY
from .store import DEFAULT_FILE_EXTENSION

logger = get_logger("Wells.Config")

DEFAULT_STARTUP_DELAY = 10.0
DEFAULT_MAX_REPORT_AGE = 2 * 24 * 3600.0
DEFAULT_REQUEST_TIMEOUT = 60.0

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def default_store_root() -> Path:
    """Return the default store root: ``$XDG_CACHE_HOME/wells`` or ``~/.cache/wells``."""
    cache_home = os.environ.get("XDG_CACHE_HOME")
    base = Path(cache_home) if cache_home else Path.home() / ".cache"
    return base / "wells"


def _parse_bool(value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in _TRUE:
        return True
    if normalized in _FALSE:
        return False
    raise ValueError(f"not a boolean: {value!r}")


@dataclass
class EngineConfig:
    """Delivery engine settings.

    Attributes:
        store_root: Directory holding stored report payloads.
        file_extension: Extension of payload files.
        max_attempts: Retries allowed before a report expires.
        default_retry_delay: Seconds to wait when no Retry-After is given.
        minimum_retry_delay: Floor in seconds for every retry delay.
        retry_transport_errors: Retry pre-response transport errors.
        startup_delay: Seconds to wait before the startup sweep.
        max_report_age: Age in seconds after which orphaned reports expire.
        request_timeout: Total timeout in seconds for one upload.
    """

    store_root: Path = field(default_factory=default_store_root)
    file_extension: str = DEFAULT_FILE_EXTENSION
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    default_retry_delay: float = DEFAULT_RETRY_DELAY
    minimum_retry_delay: float = MINIMUM_RETRY_DELAY
    retry_transport_errors: bool = False
    startup_delay: float = DEFAULT_STARTUP_DELAY
    max_report_age: float = DEFAULT_MAX_REPORT_AGE
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT


_FIELDS = {
    "store_root": ("WELLS_STORE_ROOT", Path),
    "file_extension": ("WELLS_FILE_EXTENSION", str),
    "max_attempts": ("WELLS_MAX_ATTEMPTS", int),
    "default_retry_delay": ("WELLS_DEFAULT_RETRY_DELAY", float),
    "minimum_retry_delay": ("WELLS_MINIMUM_RETRY_DELAY", float),
    "retry_transport_errors": ("WELLS_RETRY_TRANSPORT_ERRORS", _parse_bool),
    "startup_delay": ("WELLS_STARTUP_DELAY", float),
    "max_report_age": ("WELLS_MAX_REPORT_AGE", float),
    "request_timeout": ("WELLS_REQUEST_TIMEOUT", float),
}


def load_engine_config(config_path: str | Path | None = None) -> EngineConfig:
    """Load engine configuration from environment and an optional INI file.

    Priority: config file > environment variables > defaults. Invalid
    values are logged and ignored.

    Args:
        config_path: Optional path to an INI file with a ``[wells]`` section.

    Returns:
        EngineConfig with parsed settings.
    """
    config = EngineConfig()
    values: dict[str, object] = {}

    for key, (env_var, type_fn) in _FIELDS.items():
        env_value = os.environ.get(env_var)
        if env_value is None:
            continue
        try:
            values[key] = type_fn(env_value)
        except (ValueError, TypeError):
            logger.warning("Invalid value for %s, using default", env_var)

    if config_path and Path(config_path).exists():
        parser = configparser.ConfigParser()
        parser.read(config_path)
        if parser.has_section("wells"):
            for key, (_, type_fn) in _FIELDS.items():
                raw = parser.get("wells", key, fallback=None)
                if raw is None or not raw.strip():
                    continue
                try:
                    values[key] = type_fn(raw.strip())
                except (ValueError, TypeError):
                    logger.warning("Invalid value for [wells] %s, using default", key)
        else:
            logger.info("No [wells] section in %s, using defaults", config_path)

    for key, value in values.items():
        setattr(config, key, value)
    return config
