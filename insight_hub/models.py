"""Domain records flowing through the ingestion and enrichment pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class Origin(str, Enum):
    """Which intake produced an item."""

    PUSH = "push"
    POLL = "poll"


class EventKind(str, Enum):
    """Last event observed for an item."""

    NEW_OR_UPDATE = "new_or_update"
    DELETED = "deleted"


class JobStatus(str, Enum):
    """Enrichment job states."""

    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


class SubscriptionStatus(str, Enum):
    """Lease states for a push subscription."""

    SUBSCRIBED = "subscribed"
    UNSUBSCRIBED = "unsubscribed"
    PENDING = "pending"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Normalise a datetime to aware UTC; naive values are taken as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO-8601 strings (including a trailing ``Z``) into aware UTC datetimes."""

    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return to_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return to_utc(value).isoformat(timespec="seconds")


@dataclass(slots=True)
class Channel:
    """A tracked content source."""

    id: str
    name: str
    external_id: str | None = None
    handle: str | None = None
    enabled: bool = True
    listing_id: str | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class ItemCandidate:
    """Canonical ingestion event emitted by either intake."""

    channel_id: str
    origin: Origin
    source_url: str = ""
    item_id: str | None = None
    title: str | None = None
    description: str | None = None
    published_at: datetime | None = None
    event_kind: EventKind = EventKind.NEW_OR_UPDATE
    raw_payload: dict[str, Any] = field(default_factory=dict)
    external_channel_id: str | None = None


@dataclass(slots=True)
class Item:
    """One piece of tracked content."""

    record_id: str
    channel_id: str
    source_url: str
    origin: Origin
    item_id: str | None = None
    title: str = ""
    description: str = ""
    published_at: datetime | None = None
    event_kind: EventKind = EventKind.NEW_OR_UPDATE
    raw_payload: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class MatchResult:
    duplicate: bool
    existing_id: str | None = None
    stage: str | None = None

    @classmethod
    def miss(cls) -> "MatchResult":
        return cls(duplicate=False)


@dataclass(slots=True)
class JobResult:
    """Enrichment output stored on a completed job."""

    summary_text: str
    key_points: list[str] = field(default_factory=list)
    doc_url: str | None = None
    doc_id: str | None = None
    notified_at: datetime | None = None


@dataclass(slots=True)
class Job:
    id: str
    item_id: str
    status: JobStatus
    created_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None
    result: JobResult | None = None
    error: str | None = None


@dataclass(slots=True)
class Subscription:
    channel_id: str
    topic_url: str
    callback_url: str
    status: SubscriptionStatus
    lease_expires_at: datetime | None = None
    last_renewed_at: datetime | None = None

    def expired(self, now: datetime | None = None) -> bool:
        if self.lease_expires_at is None:
            return True
        return self.lease_expires_at <= (now or utcnow())


__all__ = [
    "Channel",
    "EventKind",
    "Item",
    "ItemCandidate",
    "Job",
    "JobResult",
    "JobStatus",
    "MatchResult",
    "Origin",
    "Subscription",
    "SubscriptionStatus",
    "format_timestamp",
    "parse_timestamp",
    "to_utc",
    "utcnow",
]
