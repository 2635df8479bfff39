"""Pydantic models used across insight-hub configuration flow."""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator


class ScheduleType(str, Enum):
    """Scheduler modes."""

    CRON = "cron"
    INTERVAL = "interval"
    ONCE = "once"


class ScheduleConfig(BaseModel):
    """Configuration describing when a periodic task should run."""

    type: ScheduleType = Field(default=ScheduleType.INTERVAL)
    value: Any = Field(
        default=None,
        description="Cron expression, interval seconds or ISO datetime, depending on type.",
    )
    enabled: bool = True

    @model_validator(mode="after")
    def _validate_value(self) -> "ScheduleConfig":
        if self.type is ScheduleType.CRON and not isinstance(self.value, str):
            raise ValueError("Cron schedule requires string expression")
        if self.type is ScheduleType.INTERVAL and not isinstance(self.value, (int, float, dict)):
            raise ValueError("Interval schedule requires seconds (int/float) or kwargs dict")
        if (
            self.type is ScheduleType.ONCE
            and self.value is not None
            and not isinstance(self.value, str)
        ):
            raise ValueError("Once schedule expects ISO datetime string or null")
        return self


class StoreConfig(BaseModel):
    """SQLite store location and lock timeout."""

    path: Path = Field(default=Path("data/insight_hub.db"))
    timeout_seconds: float = 30.0

    @field_validator("path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)


class YouTubeConfig(BaseModel):
    """Catalog API access."""

    api_base_url: str = "https://www.googleapis.com/youtube/v3"
    api_key_env: str = "YOUTUBE_API_KEY"
    timeout_seconds: float = 15.0
    detail_batch_size: int = Field(default=50, ge=1, le=50)


class HubConfig(BaseModel):
    """WebSub hub endpoint and lease policy."""

    hub_url: str = "https://pubsubhubbub.appspot.com/subscribe"
    topic_template: str = "https://www.youtube.com/feeds/videos.xml?channel_id={channel_id}"
    lease_seconds: int = Field(default=432000, gt=0)
    renewal_horizon_seconds: int = Field(default=86400, gt=0)
    secret_env: str = "WEBSUB_SECRET"
    timeout_seconds: float = 10.0


class SummarizerConfig(BaseModel):
    """Enrichment engine settings."""

    provider: Literal["gemini"] = "gemini"
    api_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    model: str = "gemini-2.5-flash"
    api_key_env: str = "GEMINI_API_KEY"
    timeout_seconds: float = 120.0
    temperature: float = 0.2


class ExportConfig(BaseModel):
    """Document export settings; export is best-effort."""

    enabled: bool = True
    format: Literal["json", "markdown", "txt"] = "markdown"
    output_dir: Path = Field(default=Path("data/outputs"))

    @field_validator("output_dir", mode="before")
    @classmethod
    def _coerce_dir(cls, value: Any) -> Path:
        return Path(value)


class NotifierConfig(BaseModel):
    """Chat notification settings; notification is best-effort."""

    enabled: bool = True
    webhook_url_env: str = "CHAT_WEBHOOK_URL"
    timeout_seconds: float = 10.0


class PollConfig(BaseModel):
    """Per-cycle poll limits."""

    max_results: int = Field(default=3, ge=1, le=50)
    max_workers: int = Field(default=4, ge=1)


class JobConfig(BaseModel):
    """Job batch limits and stale-claim recovery threshold."""

    batch_size: int = Field(default=10, ge=1)
    max_workers: int = Field(default=2, ge=1)
    stale_after_seconds: int = Field(default=3600, gt=0)


class DedupConfig(BaseModel):
    """Layered duplicate detection switches."""

    title_prefix_length: int = Field(default=10, ge=1)
    legacy_scan: bool = True


class PushConfig(BaseModel):
    """Inbound notification endpoint settings."""

    max_payload_bytes: int = Field(default=1024 * 1024, gt=0)
    callback_path: str = "/api/youtube/websub/callback"
    callback_token_env: str = "WEBSUB_CALLBACK_TOKEN"

    @field_validator("callback_path")
    @classmethod
    def _normalise_path(cls, value: str) -> str:
        value = "/" + value.strip().strip("/")
        if value == "/":
            raise ValueError("callback_path cannot be empty")
        return value


class ServerConfig(BaseModel):
    """HTTP surface settings."""

    host: str = "127.0.0.1"
    port: int = 8080
    public_base_url: str = "http://localhost:8080"
    api_key_env: str = "INSIGHT_HUB_API_KEY"

    @field_validator("public_base_url")
    @classmethod
    def _strip_slash(cls, value: str) -> str:
        return value.rstrip("/")


class SchedulesConfig(BaseModel):
    """Timers driving the independent pipeline invocations."""

    poll: ScheduleConfig = Field(
        default_factory=lambda: ScheduleConfig(type=ScheduleType.INTERVAL, value=900)
    )
    jobs: ScheduleConfig = Field(
        default_factory=lambda: ScheduleConfig(type=ScheduleType.INTERVAL, value=60)
    )
    renew: ScheduleConfig = Field(
        default_factory=lambda: ScheduleConfig(type=ScheduleType.CRON, value="0 * * * *")
    )
    sweep: ScheduleConfig = Field(
        default_factory=lambda: ScheduleConfig(type=ScheduleType.INTERVAL, value=600)
    )

    def items(self) -> list[tuple[str, ScheduleConfig]]:
        return [("poll", self.poll), ("jobs", self.jobs), ("renew", self.renew), ("sweep", self.sweep)]


class AppConfig(BaseModel):
    """Root configuration for every component."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    youtube: YouTubeConfig = Field(default_factory=YouTubeConfig)
    hub: HubConfig = Field(default_factory=HubConfig)
    summarizer: SummarizerConfig = Field(default_factory=SummarizerConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)
    notifier: NotifierConfig = Field(default_factory=NotifierConfig)
    poll: PollConfig = Field(default_factory=PollConfig)
    jobs: JobConfig = Field(default_factory=JobConfig)
    dedup: DedupConfig = Field(default_factory=DedupConfig)
    push: PushConfig = Field(default_factory=PushConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    schedules: SchedulesConfig = Field(default_factory=SchedulesConfig)

    @staticmethod
    def secret(env_name: str) -> str | None:
        """Read a secret from the environment; empty values count as unset."""

        value = os.environ.get(env_name, "").strip()
        return value or None


__all__ = [
    "AppConfig",
    "DedupConfig",
    "ExportConfig",
    "HubConfig",
    "JobConfig",
    "NotifierConfig",
    "PollConfig",
    "PushConfig",
    "ScheduleConfig",
    "ScheduleType",
    "SchedulesConfig",
    "ServerConfig",
    "StoreConfig",
    "SummarizerConfig",
    "YouTubeConfig",
]
