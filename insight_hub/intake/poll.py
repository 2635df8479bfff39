"""Poll intake: walk each channel's uploads listing for recent items."""

from __future__ import annotations

import uuid
from concurrent.futures import as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable

from ..engine.dedup import DeduplicationEngine
from ..engine.identity import IdentityResolver
from ..engine.jobs import JobStateMachine
from ..engine.thread_pool import ThreadPoolManager
from ..errors import ConflictError, NotFoundError
from ..infra.storage import Store
from ..logging_conf import component_logger
from ..models import Channel, EventKind, Item, ItemCandidate, Origin, utcnow
from ..ports import CatalogEntry, CatalogLookup

MAX_RESULTS_LIMIT = 50


@dataclass(slots=True)
class ChannelPollResult:
    channel_id: str
    new_items: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass(slots=True)
class PollReport:
    processed: int = 0
    new_items: int = 0
    errors: list[str] = field(default_factory=list)
    channels: list[ChannelPollResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"processed": self.processed, "newItems": self.new_items, "errors": list(self.errors)}


class PollIntake:
    """Fetch recent listing entries per channel and route new ones into the store."""

    def __init__(
        self,
        store: Store,
        catalog: CatalogLookup,
        dedup: DeduplicationEngine,
        jobs: JobStateMachine,
        pools: ThreadPoolManager | None = None,
        max_results: int = 3,
        max_workers: int = 4,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.dedup = dedup
        self.jobs = jobs
        self.pools = pools or ThreadPoolManager()
        self.max_results = max_results
        self.max_workers = max_workers
        self.clock = clock
        self.logger = component_logger("poll")

    def poll(
        self, channel_ids: Iterable[str] | None = None, max_results: int | None = None
    ) -> PollReport:
        channels = self.store.list_channels(enabled_only=True, ids=channel_ids)
        report = PollReport()
        if not channels:
            self.logger.info("poll_no_channels")
            return report
        limit = max_results or self.max_results
        executor = self.pools.get("poll", self.max_workers)
        futures = {executor.submit(self.poll_channel, channel, limit): channel for channel in channels}
        for future in as_completed(futures):
            channel = futures[future]
            try:
                result = future.result()
            except Exception as exc:  # noqa: BLE001
                self.logger.error("poll_channel_crashed", channel=channel.id, error=str(exc))
                result = ChannelPollResult(channel.id, errors=[f"{channel.name}: {exc}"])
            report.processed += 1
            report.new_items += result.new_items
            report.errors.extend(result.errors)
            report.channels.append(result)
        self.logger.info(
            "poll_finished",
            processed=report.processed,
            new_items=report.new_items,
            errors=len(report.errors),
        )
        return report

    def poll_channel(self, channel: Channel, max_results: int | None = None) -> ChannelPollResult:
        result = ChannelPollResult(channel.id)
        limit = max(1, min(max_results or self.max_results, MAX_RESULTS_LIMIT))
        log = self.logger.bind(channel=channel.id)
        try:
            channel = self._ensure_listing(channel)
            ids = self.catalog.recent_item_ids(channel.listing_id, limit)
            known = self.store.existing_item_ids(ids)
            fresh = [item_id for item_id in ids if item_id not in known]
            log.debug("poll_listing", listed=len(ids), fresh=len(fresh))
            batch = self.catalog.batch_limit
            for start in range(0, len(fresh), batch):
                for entry in self.catalog.item_details(fresh[start : start + batch]):
                    if self._route(channel, entry):
                        result.new_items += 1
        except Exception as exc:  # noqa: BLE001
            log.warning("poll_channel_failed", error=str(exc))
            result.errors.append(f"{channel.name}: {exc}")
        return result

    def _ensure_listing(self, channel: Channel) -> Channel:
        if not channel.external_id:
            if not channel.handle:
                raise NotFoundError("channel has neither external id nor handle")
            info = self.catalog.resolve_channel(channel.handle)
            if info is None:
                raise NotFoundError(f"could not resolve handle {channel.handle}")
            channel = self.store.update_channel(channel.id, external_id=info.external_id)
        if not channel.listing_id:
            listing_id = self.catalog.uploads_listing(channel.external_id)
            if not listing_id:
                raise NotFoundError("uploads listing not found")
            channel = self.store.update_channel(channel.id, listing_id=listing_id)
        return channel

    def _route(self, channel: Channel, entry: CatalogEntry) -> bool:
        now = self.clock()
        candidate = ItemCandidate(
            channel_id=channel.id,
            origin=Origin.POLL,
            source_url=IdentityResolver.canonical_url(entry.item_id),
            item_id=entry.item_id,
            title=entry.title,
            description=entry.description,
            published_at=entry.published_at,
            raw_payload=entry.raw,
            external_channel_id=entry.channel_external_id,
        )
        match = self.dedup.is_duplicate(candidate)
        if match.duplicate:
            self.logger.debug("poll_duplicate", item_id=entry.item_id, stage=match.stage)
            return False
        item = Item(
            record_id=uuid.uuid4().hex,
            channel_id=channel.id,
            source_url=candidate.source_url,
            origin=Origin.POLL,
            item_id=entry.item_id,
            title=entry.title,
            description=entry.description,
            published_at=entry.published_at or now,
            event_kind=EventKind.NEW_OR_UPDATE,
            raw_payload=entry.raw,
            created_at=now,
            updated_at=now,
        )
        try:
            self.store.insert_item(item)
        except ConflictError:
            # A push for the same item landed between the check and the insert.
            return False
        self.jobs.enqueue(entry.item_id)
        self.logger.info("poll_item_created", item_id=entry.item_id, channel=channel.id)
        return True


__all__ = ["ChannelPollResult", "PollIntake", "PollReport"]
