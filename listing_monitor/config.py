from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
import os
from typing import Optional

from dotenv import load_dotenv

from .util.timeparse import parse_duration_ms

load_dotenv()


def _get_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Invalid integer for {name}: {value}")


def _get_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Invalid float for {name}: {value}")


def _get_decimal(name: str) -> Optional[Decimal]:
    value = os.getenv(name)
    if not value:
        return None
    try:
        return Decimal(value.strip())
    except InvalidOperation:
        raise ValueError(f"Invalid decimal for {name}: {value}")


def _get_duration_ms(name: str, default: str) -> int:
    value = os.getenv(name, default)
    try:
        return parse_duration_ms(value)
    except ValueError:
        raise ValueError(f"Invalid duration for {name}: {value}")


@dataclass(slots=True)
class SourceConfig:
    api_base: str = "https://api-mainnet.magiceden.dev/v2"
    item_url_base: str = "https://magiceden.io/item-details"
    request_timeout_seconds: float = 5.0
    name_min_interval_seconds: float = 0.5
    snapshot_limit: int = 100
    activity_limit: int = 100


@dataclass(slots=True)
class PollerConfig:
    cycle_period_ms: int = 1000
    min_gap_ms: int = 100
    # Upstream burst limit between the snapshot and activity calls
    warmup_settle_seconds: float = 1.0
    metadata_delay_seconds: float = 2.0
    stop_grace_seconds: float = 10.0


@dataclass(slots=True)
class CacheConfig:
    max_age_ms: int = 10 * 60 * 1000
    sweep_interval_seconds: int = 120


@dataclass(slots=True)
class HubConfig:
    history_capacity: int = 1000
    send_timeout_seconds: float = 5.0


@dataclass(slots=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 3000


@dataclass(slots=True)
class TargetConfig:
    collection_id: Optional[str] = None
    price_max: Optional[Decimal] = None


@dataclass(slots=True)
class LoggingConfig:
    level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    timezone: str = field(default_factory=lambda: os.getenv("TZ", "UTC"))


@dataclass(slots=True)
class AppConfig:
    source: SourceConfig
    poller: PollerConfig
    cache: CacheConfig
    hub: HubConfig
    server: ServerConfig
    target: TargetConfig
    logging: LoggingConfig


def load_config() -> AppConfig:
    source = SourceConfig(
        api_base=os.getenv("ME_API_BASE", "https://api-mainnet.magiceden.dev/v2"),
        item_url_base=os.getenv("ME_ITEM_URL_BASE", "https://magiceden.io/item-details"),
        request_timeout_seconds=_get_float("HTTP_TIMEOUT_SECONDS", 5.0),
        name_min_interval_seconds=_get_float("NAME_MIN_INTERVAL_SECONDS", 0.5),
        snapshot_limit=_get_int("SNAPSHOT_LIMIT", 100),
        activity_limit=_get_int("ACTIVITY_LIMIT", 100),
    )
    poller = PollerConfig(
        cycle_period_ms=_get_int("POLL_PERIOD_MS", 1000),
        min_gap_ms=_get_int("POLL_MIN_GAP_MS", 100),
        warmup_settle_seconds=_get_float("WARMUP_SETTLE_SECONDS", 1.0),
        metadata_delay_seconds=_get_float("METADATA_DELAY_SECONDS", 2.0),
        stop_grace_seconds=_get_float("STOP_GRACE_SECONDS", 10.0),
    )
    if poller.min_gap_ms <= 0:
        raise ValueError("POLL_MIN_GAP_MS must be positive")

    cache = CacheConfig(
        max_age_ms=_get_duration_ms("CACHE_MAX_AGE", "10m"),
        sweep_interval_seconds=max(_get_duration_ms("CACHE_SWEEP_INTERVAL", "2m") // 1000, 1),
    )

    return AppConfig(
        source=source,
        poller=poller,
        cache=cache,
        hub=HubConfig(
            history_capacity=max(_get_int("HISTORY_CAPACITY", 1000), 1),
            send_timeout_seconds=_get_float("HUB_SEND_TIMEOUT_SECONDS", 5.0),
        ),
        server=ServerConfig(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=_get_int("HTTP_PORT", 3000),
        ),
        target=TargetConfig(
            collection_id=os.getenv("TARGET_COLLECTION") or None,
            price_max=_get_decimal("TARGET_PRICE_MAX"),
        ),
        logging=LoggingConfig(),
    )
