"""Settings read from the environment, plus logging and store setup."""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from .stores import FileStore, MemoryStore, Store
from .utils import parse_optional_float

STORE_BACKENDS = ("memory", "file", "redis")


@dataclass(frozen=True)
class Settings:
    """Runtime configuration.

    Attributes:
        store: Backend name, one of STORE_BACKENDS
        file_directory: Directory for FileStore records
        redis_url: Connection URL for RedisStore
        redis_prefix: Key prefix for RedisStore
        record_ttl: Seconds a record lives (None = forever)
        api_tokens: Bearer token to owner id
        cors_origins: Origins allowed to call the HTTP API
        log_level: Root logging level name
    """

    store: str = "memory"
    file_directory: str = ".opguard"
    redis_url: str = "redis://localhost:6379/0"
    redis_prefix: str = "opguard:"
    record_ttl: float | None = None
    api_tokens: dict[str, str] = field(default_factory=dict)
    cors_origins: tuple[str, ...] = ("*",)
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.store not in STORE_BACKENDS:
            raise ValueError(
                f"store must be one of {', '.join(STORE_BACKENDS)}, got '{self.store}'"
            )
        if self.record_ttl is not None and self.record_ttl <= 0:
            raise ValueError(f"record_ttl must be positive, got {self.record_ttl}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        origins = env.get("OPGUARD_CORS_ORIGINS", "*")
        return cls(
            store=env.get("OPGUARD_STORE", "memory").strip().lower(),
            file_directory=env.get("OPGUARD_FILE_DIRECTORY", ".opguard"),
            redis_url=env.get("OPGUARD_REDIS_URL", "redis://localhost:6379/0"),
            redis_prefix=env.get("OPGUARD_REDIS_PREFIX", "opguard:"),
            record_ttl=parse_optional_float(
                env.get("OPGUARD_RECORD_TTL"), "OPGUARD_RECORD_TTL"
            ),
            api_tokens=parse_tokens(env.get("OPGUARD_API_TOKENS", "")),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
            log_level=env.get("OPGUARD_LOG_LEVEL", "INFO").upper(),
        )


def parse_tokens(value: str) -> dict[str, str]:
    """Parse ``token:owner,token:owner`` into a dict."""
    tokens: dict[str, str] = {}
    for pair in value.split(","):
        pair = pair.strip()
        if not pair:
            continue
        token, sep, owner = pair.partition(":")
        if not sep or not token.strip() or not owner.strip():
            raise ValueError(f"Invalid token entry {pair!r}, expected token:owner")
        tokens[token.strip()] = owner.strip()
    return tokens


def configure_logging(level: str = "INFO") -> None:
    """Set up root logging once; later calls leave existing handlers alone."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_store(settings: Settings) -> Store:
    """Create the record store named by the settings."""
    if settings.store == "file":
        return FileStore(settings.file_directory)
    if settings.store == "redis":
        from redis import Redis

        from .stores.redis import RedisStore

        return RedisStore(Redis.from_url(settings.redis_url), prefix=settings.redis_prefix)
    return MemoryStore()
