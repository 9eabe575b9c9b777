"""Content pipeline configuration from YAML file.

Loads from config/config.yaml with all settings in one place:
- Shared Kafka connection settings and defaults
- Topics and per-worker consumer/producer/processing settings
- Webhook sources and their shared secrets
- Canonical store, read cache, gateway, ingress and backfill settings

Environment variables ARE supported using ${VAR_NAME} and
${VAR_NAME:-default} syntax in YAML files.
"""

import json
import logging
import os
import re
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from core.security.webhook_signature import SCHEME_SANITY, SUPPORTED_SCHEMES

logger = logging.getLogger(__name__)

DOMAIN = "content"

# Public read cache TTL must stay within this window (seconds)
CACHE_TTL_MIN_SECONDS = 30
CACHE_TTL_MAX_SECONDS = 60

WORKER_NAMES = ("webhook_ingress", "upsert_consumer", "read_gateway", "wordpress_backfill")


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


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


# Default config file: config/config.yaml next to this module
DEFAULT_CONFIG_FILE = Path(__file__).parent / "config.yaml"


@dataclass
class SourceConfig:
    """Webhook source settings: which signature scheme and which secret."""

    name: str
    secret: str = ""
    signature_scheme: str = SCHEME_SANITY
    signature_header: str = "sanity-webhook-signature"
    # Max age of a signed timestamp in seconds (sanity scheme only, 0 disables)
    timestamp_tolerance_seconds: int = 0
    enabled: bool = True


@dataclass
class StoreConfig:
    backend: str = "memory"  # "memory" or "postgres"
    primary_dsn: str = ""
    replica_dsn: str = ""
    pool_min_size: int = 1
    pool_max_size: int = 10
    connect_timeout_seconds: float = 10.0


@dataclass
class CacheConfig:
    ttl_seconds: int = 45
    max_entries: int = 10000


@dataclass
class HttpServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080
    # Required X-Preview-Token for preview reads (gateway only, empty disables)
    preview_token: str = ""


@dataclass
class BackfillConfig:
    graphql_endpoint: str = ""
    graphql_token: str = ""
    page_size: int = 50
    interval_seconds: int = 300
    cursor_path: str = "state/wordpress_cursor.json"
    request_timeout_seconds: float = 30.0


@dataclass
class ContentConfig:
    """Content pipeline configuration.

    Configuration structure:
        content:
          connection: {...}           # Kafka connection settings
          consumer_defaults: {...}    # Default consumer settings
          producer_defaults: {...}    # Default producer settings
          topics: {changes, dlq}
          consumer_group_prefix: content
          workers:
            upsert_consumer:
              consumer: {...}
              producer: {...}
              processing: {...}
            webhook_ingress: {...}
          sources:
            sanity: {secret, signature_scheme, signature_header}
          store: {...}
          cache: {...}
          gateway: {...}
          ingress: {...}
          backfill: {...}

    All Kafka timing values in milliseconds unless otherwise noted.
    """

    # =========================================================================
    # CONNECTION SETTINGS (shared across all consumers/producers)
    # =========================================================================
    bootstrap_servers: str = ""
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str = "PLAIN"
    sasl_plain_username: str = ""
    sasl_plain_password: str = ""
    request_timeout_ms: int = 120000
    metadata_max_age_ms: int = 300000
    connections_max_idle_ms: int = 540000

    # =========================================================================
    # DEFAULT SETTINGS (applied to all consumers/producers unless overridden)
    # =========================================================================
    consumer_defaults: Dict[str, Any] = field(default_factory=dict)
    producer_defaults: Dict[str, Any] = field(default_factory=dict)

    # =========================================================================
    # TOPICS AND WORKERS
    # =========================================================================
    topics: Dict[str, str] = field(default_factory=lambda: {"changes": "content.changes"})
    consumer_group_prefix: str = DOMAIN
    workers: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    # =========================================================================
    # SOURCES, STORE, READ PATH
    # =========================================================================
    sources: Dict[str, SourceConfig] = field(default_factory=dict)
    store: StoreConfig = field(default_factory=StoreConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    gateway: HttpServerConfig = field(default_factory=lambda: HttpServerConfig(port=8080))
    ingress: HttpServerConfig = field(default_factory=lambda: HttpServerConfig(port=8090))
    backfill: BackfillConfig = field(default_factory=BackfillConfig)

    def get_worker_config(
        self,
        worker_name: str,
        component: str,  # "consumer", "producer", or "processing"
    ) -> Dict[str, Any]:
        """Get merged configuration for a specific worker's component.

        Merge priority (highest to lowest):
        1. Worker-specific config (e.g., workers.upsert_consumer.consumer)
        2. Default config (consumer_defaults or producer_defaults)
        """
        if component == "consumer":
            result = self.consumer_defaults.copy()
        elif component == "producer":
            result = self.producer_defaults.copy()
        elif component == "processing":
            result = {}
        else:
            raise ValueError(
                f"Invalid component: {component}. Must be 'consumer', 'producer', or 'processing'"
            )

        worker_config = self.workers.get(worker_name, {})
        result.update(worker_config.get(component, {}))
        return result

    def get_topic(self, topic_key: str = "changes") -> str:
        if topic_key not in self.topics:
            raise ValueError(
                f"Topic '{topic_key}' not configured. "
                f"Available topics: {list(self.topics.keys())}"
            )
        return self.topics[topic_key]

    def get_dlq_topic(self, topic: str | None = None) -> str:
        """Dead-letter topic for ``topic`` (defaults to the change topic)."""
        if "dlq" in self.topics and topic in (None, self.get_topic("changes")):
            return self.topics["dlq"]
        return f"{topic or self.get_topic('changes')}.dlq"

    def get_consumer_group(self, worker_name: str) -> str:
        """Get consumer group name for a worker.

        Uses a custom group_id from the worker config, otherwise prefix-worker.
        """
        worker_config = self.get_worker_config(worker_name, "consumer")
        if "group_id" in worker_config:
            return worker_config["group_id"]
        return f"{self.consumer_group_prefix}-{worker_name}"

    def get_source(self, name: str) -> Optional[SourceConfig]:
        source = self.sources.get(name)
        if source is None or not source.enabled:
            return None
        return source

    def validate(self) -> None:
        """Validate configuration for correctness and constraints.

        Checks required fields, Kafka timeout constraints, and numeric ranges.
        """
        if not self.bootstrap_servers:
            raise ValueError("bootstrap_servers is required in content.connection section")

        if "changes" not in self.topics or not self.topics["changes"]:
            raise ValueError("topics.changes is required")

        self._validate_consumer_settings(self.consumer_defaults, "consumer_defaults")
        self._validate_producer_settings(self.producer_defaults, "producer_defaults")

        for worker_name, worker_config in self.workers.items():
            if worker_name not in WORKER_NAMES:
                raise ValueError(
                    f"workers.{worker_name}: unknown worker, expected one of {list(WORKER_NAMES)}"
                )
            if "consumer" in worker_config:
                self._validate_consumer_settings(
                    worker_config["consumer"], f"workers.{worker_name}.consumer"
                )
            if "producer" in worker_config:
                self._validate_producer_settings(
                    worker_config["producer"], f"workers.{worker_name}.producer"
                )
            if "processing" in worker_config:
                self._validate_processing_settings(
                    worker_config["processing"], f"workers.{worker_name}.processing"
                )

        for name, source in self.sources.items():
            if source.signature_scheme not in SUPPORTED_SCHEMES:
                raise ValueError(
                    f"sources.{name}: signature_scheme must be one of {list(SUPPORTED_SCHEMES)}, "
                    f"got '{source.signature_scheme}'"
                )
            if source.enabled and not source.secret:
                logger.warning(
                    "Webhook source has no secret configured; all requests will be rejected",
                    extra={"source": name},
                )

        if self.store.backend not in ("memory", "postgres"):
            raise ValueError(
                f"store: backend must be one of ['memory', 'postgres'], got '{self.store.backend}'"
            )
        if self.store.backend == "postgres" and not self.store.primary_dsn:
            raise ValueError("store: primary_dsn is required for the postgres backend")
        if self.store.pool_min_size < 1 or self.store.pool_max_size < self.store.pool_min_size:
            raise ValueError(
                f"store: need 1 <= pool_min_size <= pool_max_size, got "
                f"{self.store.pool_min_size}/{self.store.pool_max_size}"
            )

        ttl = self.cache.ttl_seconds
        if not (CACHE_TTL_MIN_SECONDS <= ttl <= CACHE_TTL_MAX_SECONDS):
            raise ValueError(
                f"cache: ttl_seconds must be between {CACHE_TTL_MIN_SECONDS} and "
                f"{CACHE_TTL_MAX_SECONDS}, got {ttl}"
            )

        for name, server in (("gateway", self.gateway), ("ingress", self.ingress)):
            if not (0 <= server.port <= 65535):
                raise ValueError(f"{name}: port must be between 0 and 65535, got {server.port}")

        if self.backfill.page_size < 1:
            raise ValueError(f"backfill: page_size must be >= 1, got {self.backfill.page_size}")
        if self.backfill.interval_seconds <= 0:
            raise ValueError(
                f"backfill: interval_seconds must be > 0, got {self.backfill.interval_seconds}"
            )

    @staticmethod
    def _validate_enum(
        settings: Dict[str, Any],
        key: str,
        valid_values: List[Any],
        context: str
    ) -> None:
        """Validate that a setting's value is in a list of valid values."""
        if key in settings and settings[key] not in valid_values:
            raise ValueError(
                f"{context}: {key} must be one of {valid_values}, "
                f"got '{settings[key]}'"
            )

    @staticmethod
    def _validate_min(
        settings: Dict[str, Any],
        key: str,
        min_value: float,
        inclusive: bool,
        context: str
    ) -> None:
        """Validate that a setting's value meets a minimum threshold."""
        if key in settings:
            value = settings[key]
            if inclusive and value < min_value:
                raise ValueError(f"{context}: {key} must be >= {min_value}, got {value}")
            elif not inclusive and value <= min_value:
                raise ValueError(f"{context}: {key} must be > {min_value}, got {value}")

    @staticmethod
    def _validate_range(
        settings: Dict[str, Any],
        key: str,
        min_value: float,
        max_value: float,
        context: str
    ) -> None:
        """Validate that a setting's value is within a range (inclusive)."""
        if key in settings:
            value = settings[key]
            if not (min_value <= value <= max_value):
                raise ValueError(
                    f"{context}: {key} must be between {min_value} and {max_value}, got {value}"
                )

    def _validate_consumer_settings(self, settings: Dict[str, Any], context: str) -> None:
        """Validate consumer settings against Kafka requirements and logical constraints."""
        if "heartbeat_interval_ms" in settings and "session_timeout_ms" in settings:
            heartbeat = settings["heartbeat_interval_ms"]
            session_timeout = settings["session_timeout_ms"]
            if heartbeat >= session_timeout / 3:
                raise ValueError(
                    f"{context}: heartbeat_interval_ms ({heartbeat}) must be < "
                    f"session_timeout_ms/3 ({session_timeout/3:.0f}). "
                    f"Recommended: heartbeat_interval_ms <= {session_timeout // 3}"
                )

        if "session_timeout_ms" in settings and "max_poll_interval_ms" in settings:
            session_timeout = settings["session_timeout_ms"]
            max_poll_interval = settings["max_poll_interval_ms"]
            if session_timeout >= max_poll_interval:
                raise ValueError(
                    f"{context}: session_timeout_ms ({session_timeout}) must be < "
                    f"max_poll_interval_ms ({max_poll_interval})"
                )

        if settings.get("enable_auto_commit") is True:
            raise ValueError(
                f"{context}: enable_auto_commit must be false; offsets are committed "
                f"only after the store write completes"
            )

        self._validate_min(settings, "max_poll_records", 1, inclusive=True, context=context)
        self._validate_enum(settings, "auto_offset_reset", ["earliest", "latest", "none"], context)

    def _validate_producer_settings(self, settings: Dict[str, Any], context: str) -> None:
        self._validate_enum(settings, "acks", ["0", "1", "all", 0, 1], context)
        self._validate_enum(settings, "compression_type", ["none", "gzip", "snappy", "lz4", "zstd"], context)
        self._validate_min(settings, "linger_ms", 0, inclusive=True, context=context)

    def _validate_processing_settings(self, settings: Dict[str, Any], context: str) -> None:
        self._validate_range(settings, "concurrency", 1, 50, context)
        self._validate_min(settings, "batch_size", 1, inclusive=True, context=context)
        self._validate_min(settings, "batch_timeout_ms", 0, inclusive=False, context=context)
        self._validate_min(settings, "max_redeliveries", 0, inclusive=True, context=context)
        self._validate_min(settings, "health_port", 0, inclusive=True, context=context)


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _build_sources(raw: Dict[str, Any]) -> Dict[str, SourceConfig]:
    sources = {}
    for name, settings in (raw or {}).items():
        settings = settings or {}
        sources[name] = SourceConfig(
            name=name,
            secret=str(settings.get("secret", "") or ""),
            signature_scheme=settings.get("signature_scheme", SCHEME_SANITY),
            signature_header=settings.get("signature_header", "sanity-webhook-signature"),
            timestamp_tolerance_seconds=int(settings.get("timestamp_tolerance_seconds", 0)),
            enabled=_as_bool(settings.get("enabled", True)),
        )
    return sources


def _build_server(raw: Dict[str, Any], default_port: int) -> HttpServerConfig:
    raw = raw or {}
    return HttpServerConfig(
        host=raw.get("host", "0.0.0.0"),
        port=int(raw.get("port", default_port)),
        preview_token=str(raw.get("preview_token", "") or ""),
    )


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> ContentConfig:
    """Load content pipeline configuration from config.yaml file.

    Environment variables ARE supported using ${VAR_NAME} syntax in YAML files.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path}\n" f"Expected file: config/config.yaml"
        )

    logger.info(f"Loading configuration from file: {config_path}")
    yaml_data = _expand_env_vars(load_yaml(config_path))

    if DOMAIN not in yaml_data:
        raise ValueError(f"Invalid config file: missing '{DOMAIN}:' section")

    content = yaml_data[DOMAIN] or {}

    if overrides:
        logger.debug(f"Applying overrides: {list(overrides.keys())}")
        content = _deep_merge(content, overrides)

    connection = content.get("connection", {})
    store = content.get("store", {})
    cache = content.get("cache", {})
    backfill = content.get("backfill", {})

    config = ContentConfig(
        bootstrap_servers=connection.get("bootstrap_servers", ""),
        security_protocol=connection.get("security_protocol", "PLAINTEXT"),
        sasl_mechanism=connection.get("sasl_mechanism", "PLAIN"),
        sasl_plain_username=connection.get("sasl_plain_username", ""),
        sasl_plain_password=connection.get("sasl_plain_password", ""),
        request_timeout_ms=int(connection.get("request_timeout_ms", 120000)),
        metadata_max_age_ms=int(connection.get("metadata_max_age_ms", 300000)),
        connections_max_idle_ms=int(connection.get("connections_max_idle_ms", 540000)),
        consumer_defaults=content.get("consumer_defaults", {}),
        producer_defaults=content.get("producer_defaults", {}),
        topics=content.get("topics") or {"changes": "content.changes"},
        consumer_group_prefix=content.get("consumer_group_prefix", DOMAIN),
        workers=content.get("workers", {}),
        sources=_build_sources(content.get("sources", {})),
        store=StoreConfig(
            backend=store.get("backend", "memory"),
            primary_dsn=store.get("primary_dsn", ""),
            replica_dsn=store.get("replica_dsn", ""),
            pool_min_size=int(store.get("pool_min_size", 1)),
            pool_max_size=int(store.get("pool_max_size", 10)),
            connect_timeout_seconds=float(store.get("connect_timeout_seconds", 10.0)),
        ),
        cache=CacheConfig(
            ttl_seconds=int(cache.get("ttl_seconds", 45)),
            max_entries=int(cache.get("max_entries", 10000)),
        ),
        gateway=_build_server(content.get("gateway", {}), 8080),
        ingress=_build_server(content.get("ingress", {}), 8090),
        backfill=BackfillConfig(
            graphql_endpoint=backfill.get("graphql_endpoint", ""),
            graphql_token=backfill.get("graphql_token", ""),
            page_size=int(backfill.get("page_size", 50)),
            interval_seconds=int(backfill.get("interval_seconds", 300)),
            cursor_path=backfill.get("cursor_path", "state/wordpress_cursor.json"),
            request_timeout_seconds=float(backfill.get("request_timeout_seconds", 30.0)),
        ),
    )

    logger.debug("Configuration loaded successfully:")
    logger.debug(f"  - Bootstrap servers: {config.bootstrap_servers}")
    logger.debug(f"  - Sources: {sorted(config.sources)}")
    logger.debug(f"  - Store backend: {config.store.backend}")

    config.validate()
    logger.debug("Configuration validation passed")

    return config


_content_config: Optional[ContentConfig] = None


def get_config() -> ContentConfig:
    """Get or load the process-level config instance (CLI entry points only)."""
    global _content_config
    if _content_config is None:
        _content_config = load_config()
    return _content_config


def set_config(config: ContentConfig) -> None:
    """Set the process-level config instance (useful for testing)."""
    global _content_config
    _content_config = config


def reset_config() -> None:
    """Reset the process-level config instance (forces reload on next get_config() call)."""
    global _content_config
    _content_config = None


def _redacted(config: ContentConfig) -> Dict[str, Any]:
    data = asdict(config)
    data["sasl_plain_password"] = "***" if config.sasl_plain_password else ""
    for source in data["sources"].values():
        source["secret"] = "***" if source["secret"] else ""
    for key in ("primary_dsn", "replica_dsn"):
        if data["store"][key]:
            data["store"][key] = re.sub(r"://([^:@/]+):[^@/]*@", r"://\1:***@", data["store"][key])
    if data["backfill"]["graphql_token"]:
        data["backfill"]["graphql_token"] = "***"
    if data["gateway"]["preview_token"]:
        data["gateway"]["preview_token"] = "***"
    return data


def _cli_main(argv: list[str] | None = None) -> int:
    """CLI entry point for config validation and debugging."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Content Pipeline Configuration Tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate configuration
  python -m config.config --validate

  # Show resolved configuration (secrets redacted)
  python -m config.config --show

  # JSON output for automation
  python -m config.config --validate --json
        """,
    )
    parser.add_argument("--validate", action="store_true", help="Validate configuration")
    parser.add_argument("--show", action="store_true", help="Display resolved configuration")
    parser.add_argument("--config", type=Path, help="Path to config.yaml file")
    parser.add_argument("--json", action="store_true", help="Output in JSON format")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    if not args.validate and not args.show:
        parser.print_help()
        return 0

    try:
        config = load_config(config_path=args.config)
    except (FileNotFoundError, ValueError) as e:
        if args.json:
            print(json.dumps({"error": str(e)}))
        else:
            print(f"✗ Error: {e}", file=sys.stderr)
        return 1

    output: Dict[str, Any] = {}
    if args.validate:
        if args.json:
            output["validation"] = {"passed": True, "errors": []}
        else:
            print("✓ Configuration validation passed")
            print(f"  - Sources: {', '.join(sorted(config.sources)) or 'none'}")
            print(f"  - Store backend: {config.store.backend}")

    if args.show:
        if args.json:
            output["config"] = _redacted(config)
        else:
            print(yaml.dump(_redacted(config), default_flow_style=False, sort_keys=False))

    if args.json:
        print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(_cli_main())
