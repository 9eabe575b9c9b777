"""Configuration loading for the content pipeline.

Configuration is loaded from a single ``config/config.yaml`` with a
``content:`` root section.

Main Functions
--------------

    - load_config(): Load configuration from YAML, apply overrides, validate
    - get_config(): Get or load the process-level config instance
    - set_config() / reset_config(): Replace or clear it (tests)

Usage Examples
--------------

    >>> from config import load_config
    >>> config = load_config()
    >>> config.get_topic("changes")
    'content.changes'
    >>> config.get_consumer_group("upsert_consumer")
    'content-upsert_consumer'

Configuration Priority
----------------------

1. ``overrides`` passed to load_config()
2. Environment variables referenced from YAML (${VAR:-default})
3. YAML values
4. Dataclass defaults
"""

from config.config import (
    BackfillConfig,
    CacheConfig,
    ContentConfig,
    HttpServerConfig,
    SourceConfig,
    StoreConfig,
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
    "ContentConfig",
    "SourceConfig",
    "StoreConfig",
    "CacheConfig",
    "HttpServerConfig",
    "BackfillConfig",
]
