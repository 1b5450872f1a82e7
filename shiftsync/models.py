from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any


DEFAULT_ALLOWED_SCHEMES = ["https", "webcal"]
DEFAULT_ALLOWED_HOST_SUFFIXES = ["icloud.com"]
DEFAULT_FEED_COLOR = "#3b82f6"
DEFAULT_MAX_RESPONSE_BYTES = 10 * 1024 * 1024
ALL_DAY_START = "00:00"
ALL_DAY_END = "23:59"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_tz(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def parse_iso_datetime(value: str | datetime | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _ensure_tz(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return _ensure_tz(parsed)


def serialize_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return _ensure_tz(value).isoformat()


def _clamped_int(value: Any, default: int, minimum: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        number = default
    return max(minimum, number)


def _clean_list(values: Any, default: list[str]) -> list[str]:
    if not isinstance(values, (list, tuple)):
        return list(default)
    cleaned = [str(x).strip().lower() for x in values if str(x).strip()]
    return cleaned or list(default)


@dataclass
class FetchConfig:
    timeout_seconds: int = 30
    allowed_schemes: list[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_SCHEMES))
    allowed_host_suffixes: list[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_HOST_SUFFIXES))
    user_agent: str = "shiftsync/0.1"
    max_response_bytes: int = DEFAULT_MAX_RESPONSE_BYTES

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "FetchConfig":
        data = data or {}
        return cls(
            timeout_seconds=_clamped_int(data.get("timeout_seconds", 30), 30, 1),
            allowed_schemes=_clean_list(data.get("allowed_schemes"), DEFAULT_ALLOWED_SCHEMES),
            allowed_host_suffixes=[
                suffix.lstrip(".")
                for suffix in _clean_list(data.get("allowed_host_suffixes"), DEFAULT_ALLOWED_HOST_SUFFIXES)
            ],
            user_agent=str(data.get("user_agent", "shiftsync/0.1")).strip() or "shiftsync/0.1",
            max_response_bytes=_clamped_int(
                data.get("max_response_bytes", DEFAULT_MAX_RESPONSE_BYTES), DEFAULT_MAX_RESPONSE_BYTES, 1024
            ),
        )


@dataclass
class SyncConfig:
    timezone: str = "UTC"
    default_interval_minutes: int = 60
    default_color: str = DEFAULT_FEED_COLOR
    untitled_title: str = "Untitled"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SyncConfig":
        data = data or {}
        return cls(
            timezone=str(data.get("timezone", "UTC")).strip() or "UTC",
            default_interval_minutes=_clamped_int(data.get("default_interval_minutes", 60), 60, 0),
            default_color=str(data.get("default_color", DEFAULT_FEED_COLOR)).strip() or DEFAULT_FEED_COLOR,
            untitled_title=str(data.get("untitled_title", "Untitled")).strip() or "Untitled",
        )


@dataclass
class SchedulerConfig:
    enabled: bool = True
    tick_seconds: int = 60
    max_workers: int = 4

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SchedulerConfig":
        data = data or {}
        return cls(
            enabled=bool(data.get("enabled", True)),
            tick_seconds=_clamped_int(data.get("tick_seconds", 60), 60, 5),
            max_workers=_clamped_int(data.get("max_workers", 4), 4, 1),
        )


@dataclass
class StorageConfig:
    busy_timeout_seconds: int = 10

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "StorageConfig":
        data = data or {}
        return cls(busy_timeout_seconds=_clamped_int(data.get("busy_timeout_seconds", 10), 10, 1))


@dataclass
class EventsConfig:
    queue_size: int = 100

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "EventsConfig":
        data = data or {}
        return cls(queue_size=_clamped_int(data.get("queue_size", 100), 100, 1))


@dataclass
class LoggingConfig:
    level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "LoggingConfig":
        data = data or {}
        return cls(level=str(data.get("level", "INFO")).strip().upper() or "INFO")


@dataclass
class AppConfig:
    fetch: FetchConfig = field(default_factory=FetchConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    events: EventsConfig = field(default_factory=EventsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AppConfig":
        data = data or {}
        return cls(
            fetch=FetchConfig.from_dict(data.get("fetch")),
            sync=SyncConfig.from_dict(data.get("sync")),
            scheduler=SchedulerConfig.from_dict(data.get("scheduler")),
            storage=StorageConfig.from_dict(data.get("storage")),
            events=EventsConfig.from_dict(data.get("events")),
            logging=LoggingConfig.from_dict(data.get("logging")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def default_app_config() -> AppConfig:
    return AppConfig()


@dataclass
class ExternalFeed:
    feed_id: str
    calendar_id: str
    name: str
    url: str
    color: str = DEFAULT_FEED_COLOR
    interval_minutes: int = 60
    last_synced_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["last_synced_at"] = serialize_datetime(self.last_synced_at)
        payload["created_at"] = serialize_datetime(self.created_at)
        payload["updated_at"] = serialize_datetime(self.updated_at)
        return payload


@dataclass
class ExternalEvent:
    """One VEVENT normalized for storage as a shift."""

    external_id: str
    date: date
    start_time: str = ALL_DAY_START
    end_time: str = ALL_DAY_END
    all_day: bool = False
    title: str = "Untitled"
    description: str | None = None


@dataclass
class SyncedRecord:
    shift_id: str
    calendar_id: str
    date: date
    start_time: str
    end_time: str
    title: str
    color: str
    all_day: bool = False
    description: str | None = None
    feed_id: str | None = None
    external_id: str | None = None
    synced_from_external: bool = False
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["date"] = self.date.isoformat()
        payload["created_at"] = serialize_datetime(self.created_at)
        payload["updated_at"] = serialize_datetime(self.updated_at)
        return payload


@dataclass
class ReconcilePlan:
    to_insert: list[ExternalEvent] = field(default_factory=list)
    to_update: list[tuple[SyncedRecord, ExternalEvent]] = field(default_factory=list)
    to_delete: list[SyncedRecord] = field(default_factory=list)
    unchanged: list[SyncedRecord] = field(default_factory=list)


@dataclass
class SyncStats:
    created: int = 0
    updated: int = 0
    deleted: int = 0
    total_seen: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)

    def summary(self) -> str:
        return (
            f"created={self.created} updated={self.updated} "
            f"deleted={self.deleted} total={self.total_seen}"
        )


@dataclass
class SyncLogEntry:
    log_id: int
    feed_id: str
    calendar_id: str
    status: str
    message: str
    trigger: str = "manual"
    created: int = 0
    updated: int = 0
    deleted: int = 0
    is_read: bool = False
    synced_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["synced_at"] = serialize_datetime(self.synced_at)
        return payload
