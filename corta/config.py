"""
Configuration management for corta stores.

The configuration is stored as a TOML file in the store directory.
It specifies which index and generator providers to use and the sync and
cache tunables. Environment variables override the file.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import tomli_w

from .cache import DEFAULT_STALE_PENDING_SECONDS
from .sync import DEFAULT_BATCH_DELAY, DEFAULT_BATCH_SIZE

CONFIG_FILENAME = "corta.toml"
CONFIG_VERSION = 1
DATABASE_FILENAME = "corta.db"


@dataclass
class ProviderConfig:
    """Configuration for a single provider."""
    name: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class SyncConfig:
    batch_size: int = DEFAULT_BATCH_SIZE
    batch_delay: float = DEFAULT_BATCH_DELAY


@dataclass
class CacheConfig:
    stale_pending_seconds: float = DEFAULT_STALE_PENDING_SECONDS


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    sync: SyncConfig = field(default_factory=SyncConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)

    # Provider configurations
    index: ProviderConfig = field(default_factory=lambda: ProviderConfig("local"))
    generator: ProviderConfig | None = None

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def database_path(self) -> Path:
        return self.path / DATABASE_FILENAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def get_store_path(explicit: str | Path | None = None) -> Path:
    """Store directory: explicit path, else CORTA_STORE_PATH, else ~/.corta."""
    if explicit:
        return Path(explicit).expanduser()
    env = os.environ.get("CORTA_STORE_PATH")
    if env:
        return Path(env).expanduser()
    return Path.home() / ".corta"


def detect_default_providers() -> dict[str, ProviderConfig | None]:
    """
    Pick providers from the API keys present in the environment.

    Index: Supermemory when SUPERMEMORY_API_KEY is set, else the local
    SQLite index in the store directory.
    Generator: Anthropic, then OpenAI, else none (summaries disabled).
    """
    providers: dict[str, ProviderConfig | None] = {}

    if os.environ.get("SUPERMEMORY_API_KEY"):
        providers["index"] = ProviderConfig("supermemory")
    else:
        providers["index"] = ProviderConfig("local")

    if os.environ.get("ANTHROPIC_API_KEY"):
        providers["generator"] = ProviderConfig("anthropic")
    elif os.environ.get("CORTA_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY"):
        providers["generator"] = ProviderConfig("openai")
    else:
        providers["generator"] = None

    return providers


def _validate(config: StoreConfig) -> StoreConfig:
    if config.sync.batch_size < 1:
        raise ValueError(f"sync.batch_size must be >= 1 (got {config.sync.batch_size})")
    if config.sync.batch_delay < 0:
        raise ValueError(f"sync.batch_delay must be >= 0 (got {config.sync.batch_delay})")
    if config.cache.stale_pending_seconds < 0:
        raise ValueError(
            f"cache.stale_pending_seconds must be >= 0 (got {config.cache.stale_pending_seconds})"
        )
    return config


def apply_env_overrides(config: StoreConfig) -> StoreConfig:
    """Apply CORTA_SYNC_BATCH_SIZE, CORTA_SYNC_BATCH_DELAY and CORTA_STALE_PENDING_SECONDS."""
    overrides = (
        ("CORTA_SYNC_BATCH_SIZE", config.sync, "batch_size", int),
        ("CORTA_SYNC_BATCH_DELAY", config.sync, "batch_delay", float),
        ("CORTA_STALE_PENDING_SECONDS", config.cache, "stale_pending_seconds", float),
    )
    for env_name, section, attr, convert in overrides:
        raw = os.environ.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            setattr(section, attr, convert(raw))
        except ValueError:
            raise ValueError(f"{env_name} must be a number (got {raw!r})")
    return _validate(config)


def create_default_config(store_path: Path) -> StoreConfig:
    """Create a new config with auto-detected defaults."""
    providers = detect_default_providers()
    return StoreConfig(
        path=store_path,
        index=providers["index"],
        generator=providers["generator"],
    )


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    version = data.get("store", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    def parse_provider(section: dict | None) -> ProviderConfig | None:
        if not section or not section.get("name"):
            return None
        return ProviderConfig(
            name=section["name"],
            params={k: v for k, v in section.items() if k != "name"},
        )

    sync = data.get("sync", {})
    cache = data.get("cache", {})
    try:
        sync_config = SyncConfig(
            batch_size=int(sync.get("batch_size", DEFAULT_BATCH_SIZE)),
            batch_delay=float(sync.get("batch_delay", DEFAULT_BATCH_DELAY)),
        )
        cache_config = CacheConfig(
            stale_pending_seconds=float(
                cache.get("stale_pending_seconds", DEFAULT_STALE_PENDING_SECONDS)
            ),
        )
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid value in {config_path}: {e}") from e

    return _validate(StoreConfig(
        path=store_path,
        version=version,
        created=data.get("store", {}).get("created", ""),
        sync=sync_config,
        cache=cache_config,
        index=parse_provider(data.get("index")) or ProviderConfig("local"),
        generator=parse_provider(data.get("generator")),
    ))


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    def provider_to_dict(p: ProviderConfig) -> dict:
        d = {"name": p.name}
        d.update(p.params)
        return d

    data: dict[str, Any] = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "sync": {
            "batch_size": config.sync.batch_size,
            "batch_delay": config.sync.batch_delay,
        },
        "cache": {
            "stale_pending_seconds": config.cache.stale_pending_seconds,
        },
        "index": provider_to_dict(config.index),
    }
    if config.generator is not None:
        data["generator"] = provider_to_dict(config.generator)

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """
    Load existing config or create a new one with defaults, then apply
    environment overrides.

    This is the main entry point for config management.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        config = load_config(store_path)
    else:
        config = create_default_config(store_path)
        save_config(config)
    return apply_env_overrides(config)
