"""Pytest configuration providing a temporary store, config and port fakes."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Sequence

import pytest

from insight_hub.config import AppConfig, ConfigLocator, ConfigRepository
from insight_hub.infra.storage import SQLiteManager, Store
from insight_hub.models import Channel
from insight_hub.orchestrator import Orchestrator
from insight_hub.ports import (
    CatalogEntry,
    CatalogLookup,
    ChannelInfo,
    DocumentExporter,
    ExportReference,
    HubClient,
    Notifier,
    Summarizer,
    Summary,
)

START = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now


class FakeCatalog(CatalogLookup):
    """In-memory catalog keyed by external channel id."""

    def __init__(self) -> None:
        self.handles: dict[str, ChannelInfo] = {}
        self.listings: dict[str, str] = {}
        self.listing_items: dict[str, list[str]] = {}
        self.details: dict[str, CatalogEntry] = {}
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple[str, Any]] = []

    def add_channel(self, external_id: str, handle: str | None = None) -> str:
        listing = "UU" + external_id[2:]
        self.listings[external_id] = listing
        self.listing_items.setdefault(listing, [])
        if handle:
            self.handles[handle.lstrip("@")] = ChannelInfo(external_id=external_id, title=handle, handle=handle)
        return listing

    def add_item(
        self,
        external_id: str,
        item_id: str,
        title: str,
        published_at: datetime = START,
        description: str = "",
    ) -> CatalogEntry:
        listing = self.listings[external_id]
        self.listing_items[listing].insert(0, item_id)
        entry = CatalogEntry(
            item_id=item_id,
            channel_external_id=external_id,
            title=title,
            published_at=published_at,
            description=description,
            raw={"id": item_id, "snippet": {"title": title, "channelId": external_id}},
        )
        self.details[item_id] = entry
        return entry

    def resolve_channel(self, handle: str) -> ChannelInfo | None:
        self.calls.append(("resolve_channel", handle))
        return self.handles.get(handle.lstrip("@"))

    def uploads_listing(self, external_id: str) -> str | None:
        self.calls.append(("uploads_listing", external_id))
        if external_id in self.failures:
            raise self.failures[external_id]
        return self.listings.get(external_id)

    def recent_item_ids(self, listing_id: str, max_results: int) -> list[str]:
        self.calls.append(("recent_item_ids", listing_id))
        return list(self.listing_items.get(listing_id, []))[:max_results]

    def item_details(self, item_ids: Sequence[str]) -> list[CatalogEntry]:
        assert len(item_ids) <= self.batch_limit
        self.calls.append(("item_details", tuple(item_ids)))
        return [self.details[i] for i in item_ids if i in self.details]


class FakeHub(HubClient):
    def __init__(self, accept: bool = True) -> None:
        self.accept = accept
        self.rejected_topics: set[str] = set()
        self.calls: list[dict[str, Any]] = []

    def subscribe(self, topic_url, callback_url, lease_seconds, secret=None) -> bool:  # noqa: ANN001
        self.calls.append(
            {"mode": "subscribe", "topic": topic_url, "callback": callback_url, "lease": lease_seconds}
        )
        return self.accept and topic_url not in self.rejected_topics

    def unsubscribe(self, topic_url, callback_url) -> bool:  # noqa: ANN001
        self.calls.append({"mode": "unsubscribe", "topic": topic_url, "callback": callback_url})
        return self.accept


class FakeSummarizer(Summarizer):
    def __init__(self) -> None:
        self.fail_for: set[str] = set()
        self.seen: list[str | None] = []

    def summarize(self, item):  # noqa: ANN001
        self.seen.append(item.item_id)
        if item.item_id in self.fail_for:
            raise RuntimeError("model overloaded")
        return Summary(text=f"Summary of {item.title}", key_points=["one", "two"])


class FakeExporter(DocumentExporter):
    def __init__(self) -> None:
        self.fail = False
        self.exported: list[str | None] = []

    def export(self, item, summary):  # noqa: ANN001
        if self.fail:
            raise OSError("disk full")
        self.exported.append(item.item_id)
        return ExportReference(doc_id=f"doc-{item.item_id}", doc_url=f"file:///docs/{item.item_id}.md")


class FakeNotifier(Notifier):
    def __init__(self) -> None:
        self.fail = False
        self.sent: list[str | None] = []

    def notify(self, item, summary, export) -> None:  # noqa: ANN001
        if self.fail:
            raise ConnectionError("webhook down")
        self.sent.append(item.item_id)


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    home = tmp_path / "home"
    monkeypatch.setenv("INSIGHT_HUB_HOME", str(home))
    for name in (
        "INSIGHT_HUB_API_KEY",
        "WEBSUB_SECRET",
        "WEBSUB_CALLBACK_TOKEN",
        "YOUTUBE_API_KEY",
        "GEMINI_API_KEY",
        "CHAT_WEBHOOK_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    return home


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(tmp_path: Path):
    manager = SQLiteManager(timeout=5)
    instance = Store(manager, tmp_path / "store.db")
    yield instance
    instance.close()


@pytest.fixture()
def make_channel(store: Store, clock: FakeClock) -> Callable[..., Channel]:
    counter = {"n": 0}

    def _make(
        external_id: str | None = "UCalpha000000000000000001",
        name: str | None = None,
        **kwargs: Any,
    ) -> Channel:
        counter["n"] += 1
        channel = Channel(
            id=kwargs.pop("id", f"ch_{counter['n']}"),
            name=name or f"Channel {counter['n']}",
            external_id=external_id,
            created_at=clock(),
            **kwargs,
        )
        return store.add_channel(channel)

    return _make


@pytest.fixture()
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture()
def hub() -> FakeHub:
    return FakeHub()


@pytest.fixture()
def summarizer() -> FakeSummarizer:
    return FakeSummarizer()


@pytest.fixture()
def exporter() -> FakeExporter:
    return FakeExporter()


@pytest.fixture()
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture()
def app_config(tmp_path: Path) -> AppConfig:
    return AppConfig.model_validate(
        {
            "store": {"path": str(tmp_path / "store.db")},
            "export": {"output_dir": str(tmp_path / "outputs")},
            "server": {"public_base_url": "https://hub.example.org/"},
        }
    )


@pytest.fixture()
def config_repository(isolated_home: Path) -> ConfigRepository:
    return ConfigRepository(ConfigLocator())


@pytest.fixture()
def orchestrator(app_config, store, catalog, hub, summarizer, exporter, notifier, clock):  # noqa: ANN001
    instance = Orchestrator(
        app_config,
        store,
        catalog,
        hub,
        summarizer,
        exporter=exporter,
        notifier=notifier,
        clock=clock,
    )
    yield instance
    instance.pools.shutdown(wait=True)
