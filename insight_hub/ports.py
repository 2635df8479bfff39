"""Capability ports for the external collaborators the pipeline depends on.

Each component declares the ports it needs and receives concrete adapters at
construction time (see ``orchestrator.build_orchestrator``). Tests substitute
in-memory fakes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence

from .models import Item


@dataclass(slots=True)
class ChannelInfo:
    external_id: str
    title: str
    handle: str | None = None
    thumbnail_url: str | None = None


@dataclass(slots=True)
class CatalogEntry:
    """Full detail for one catalog item."""

    item_id: str
    channel_external_id: str
    title: str
    published_at: datetime | None
    description: str = ""
    thumbnail_url: str = ""
    duration: str = ""
    raw: dict[str, Any] = field(default_factory=dict)


class CatalogLookup(ABC):
    """Channel and item metadata lookups against the content catalog."""

    batch_limit: int = 50

    @abstractmethod
    def resolve_channel(self, handle: str) -> ChannelInfo | None:
        """Resolve an ``@handle`` to the channel's catalog id."""

    @abstractmethod
    def uploads_listing(self, external_id: str) -> str | None:
        """Return the content-listing handle (uploads playlist id) for a channel."""

    @abstractmethod
    def recent_item_ids(self, listing_id: str, max_results: int) -> list[str]:
        """Return up to ``max_results`` most recent item ids in a listing."""

    @abstractmethod
    def item_details(self, item_ids: Sequence[str]) -> list[CatalogEntry]:
        """Fetch details for at most ``batch_limit`` ids; unknown ids are omitted."""


class HubClient(ABC):
    """Push hub subscription requests."""

    @abstractmethod
    def subscribe(
        self, topic_url: str, callback_url: str, lease_seconds: int, secret: str | None = None
    ) -> bool:
        """Return True only when the hub explicitly accepted the request."""

    @abstractmethod
    def unsubscribe(self, topic_url: str, callback_url: str) -> bool:
        """Return True only when the hub explicitly accepted the request."""


@dataclass(slots=True)
class Summary:
    text: str
    key_points: list[str] = field(default_factory=list)


class Summarizer(ABC):
    """Black-box enrichment engine."""

    @abstractmethod
    def summarize(self, item: Item) -> Summary:
        """Produce a human-readable summary for an item."""


@dataclass(slots=True)
class ExportReference:
    """Where an exported document ended up."""

    doc_id: str
    doc_url: str


class DocumentExporter(ABC):
    """Uniform exporter contract enabling plug-and-play document targets."""

    @abstractmethod
    def export(self, item: Item, summary: Summary) -> ExportReference:
        """Persist a single summary document and return its reference."""

    def close(self) -> None:
        """Release underlying resources."""


class Notifier(ABC):
    """Chat notification target."""

    @abstractmethod
    def notify(self, item: Item, summary: Summary, export: ExportReference | None) -> None:
        """Announce a completed summary."""


__all__ = [
    "CatalogEntry",
    "CatalogLookup",
    "ChannelInfo",
    "DocumentExporter",
    "ExportReference",
    "HubClient",
    "Notifier",
    "Summarizer",
    "Summary",
]
