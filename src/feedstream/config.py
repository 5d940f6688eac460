from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv


DEFAULT_USER_AGENT = "FeedStream/1.0"
DEFAULT_LINK_AGGREGATOR_HOSTS = ("reddit.com",)


@dataclass(frozen=True)
class Settings:
    db_url: str
    http_timeout_seconds: int
    max_concurrency: int
    max_per_host: int
    politeness_delay_ms: int
    retention_cap: int
    circuit_fail_threshold: int
    user_agent: str
    link_aggregator_hosts: tuple[str, ...]
    default_owner: str
    log_level: str


def _parse_hosts(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return DEFAULT_LINK_AGGREGATOR_HOSTS

    hosts: list[str] = []
    for item in raw.split(","):
        candidate = item.strip().lower()
        if not candidate:
            continue
        hosts.append(candidate.removeprefix("www."))

    if not hosts:
        return DEFAULT_LINK_AGGREGATOR_HOSTS
    return tuple(hosts)


def _to_int(raw: str | None, default: int) -> int:
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if value <= 0:
        return default
    return value


def _to_non_negative_int(raw: str | None, default: int) -> int:
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if value < 0:
        return default
    return value


def get_default_env_file() -> Path:
    custom_path = os.getenv("FEEDSTREAM_ENV_FILE", "").strip()
    if custom_path:
        return Path(custom_path).expanduser()

    xdg_root = os.getenv("XDG_CONFIG_HOME", "").strip()
    if xdg_root:
        return Path(xdg_root).expanduser() / "feedstream" / ".env"
    return Path.home() / ".config" / "feedstream" / ".env"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Prefer a local .env for development; fill missing values from global config.
    load_dotenv(override=False)
    load_dotenv(dotenv_path=get_default_env_file(), override=False)

    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    if log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        log_level = "INFO"

    return Settings(
        db_url=os.getenv("FEEDSTREAM_DB_URL", "sqlite:///data/feedstream.db"),
        http_timeout_seconds=_to_int(os.getenv("HTTP_TIMEOUT_SECONDS"), 10),
        max_concurrency=_to_int(os.getenv("MAX_CONCURRENCY"), 5),
        max_per_host=_to_int(os.getenv("MAX_PER_HOST"), 1),
        politeness_delay_ms=_to_non_negative_int(os.getenv("POLITENESS_DELAY_MS"), 100),
        retention_cap=_to_int(os.getenv("RETENTION_CAP"), 500),
        circuit_fail_threshold=_to_int(os.getenv("CIRCUIT_FAIL_THRESHOLD"), 5),
        user_agent=os.getenv("USER_AGENT", "").strip() or DEFAULT_USER_AGENT,
        link_aggregator_hosts=_parse_hosts(os.getenv("LINK_AGGREGATOR_HOSTS")),
        default_owner=os.getenv("DEFAULT_OWNER", "").strip() or "local",
        log_level=log_level,
    )
