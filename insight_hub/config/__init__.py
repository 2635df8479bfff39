"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    AppConfig,
    DedupConfig,
    ExportConfig,
    HubConfig,
    JobConfig,
    NotifierConfig,
    PollConfig,
    PushConfig,
    ScheduleConfig,
    ScheduleType,
    SchedulesConfig,
    ServerConfig,
    StoreConfig,
    SummarizerConfig,
    YouTubeConfig,
)

__all__ = [
    "AppConfig",
    "ConfigLocator",
    "ConfigRepository",
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
