"""Component wiring and the trigger operations shared by HTTP, CLI and scheduler."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Callable, Iterable

from .config import AppConfig, ConfigRepository
from .engine import (
    BatchReport,
    DeduplicationEngine,
    IdentityResolver,
    JobProcessor,
    JobStateMachine,
    RenewalResult,
    SubscriptionLeaseManager,
    ThreadPoolManager,
)
from .engine.exporter import FileDocumentExporter
from .errors import UpstreamError, ValidationError
from .infra import (
    ChatWebhookNotifier,
    GeminiSummarizer,
    SQLiteManager,
    Store,
    WebSubHubClient,
    YouTubeCatalog,
)
from .intake import PollIntake, PollReport, PushIntake
from .logging_conf import component_logger
from .models import Channel, utcnow
from .ports import CatalogLookup, DocumentExporter, HubClient, Notifier, Summarizer
from .scheduler import APSchedulerAdapter


class Orchestrator:
    """Central coordinator holding every pipeline component for one process."""

    def __init__(
        self,
        config: AppConfig,
        store: Store,
        catalog: CatalogLookup,
        hub: HubClient,
        summarizer: Summarizer,
        exporter: DocumentExporter | None = None,
        notifier: Notifier | None = None,
        pools: ThreadPoolManager | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config
        self.store = store
        self.catalog = catalog
        self.hub = hub
        self.summarizer = summarizer
        self.exporter = exporter
        self.notifier = notifier
        self.pools = pools or ThreadPoolManager()
        self.clock = clock
        self.logger = component_logger("orchestrator")

        self.resolver = IdentityResolver()
        self.dedup = DeduplicationEngine(
            store,
            self.resolver,
            title_prefix_length=config.dedup.title_prefix_length,
            legacy_scan=config.dedup.legacy_scan,
        )
        self.jobs = JobStateMachine(store, clock=clock)
        self.processor = JobProcessor(
            self.jobs,
            summarizer,
            exporter=exporter,
            notifier=notifier,
            pools=self.pools,
            max_workers=config.jobs.max_workers,
        )
        self.leases = SubscriptionLeaseManager(
            store,
            hub,
            config.hub,
            public_base_url=config.server.public_base_url,
            callback_path=config.push.callback_path,
            callback_token=config.secret(config.push.callback_token_env),
            secret=config.secret(config.hub.secret_env),
            clock=clock,
        )
        self.push = PushIntake(
            store,
            self.dedup,
            self.jobs,
            self.leases,
            resolver=self.resolver,
            max_payload_bytes=config.push.max_payload_bytes,
            secret=config.secret(config.hub.secret_env),
            clock=clock,
        )
        self.poller = PollIntake(
            store,
            catalog,
            self.dedup,
            self.jobs,
            pools=self.pools,
            max_results=config.poll.max_results,
            max_workers=config.poll.max_workers,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------
    def poll(self, channel_ids: Iterable[str] | None = None, max_results: int | None = None) -> PollReport:
        return self.poller.poll(channel_ids=channel_ids, max_results=max_results)

    def process_jobs(self, limit: int | None = None) -> BatchReport:
        return self.processor.run_batch(limit or self.config.jobs.batch_size)

    def subscribe(self, channel_ids: Iterable[str] | None = None) -> list[RenewalResult]:
        return self.leases.subscribe_many(channel_ids)

    def resubscribe(
        self, channel_ids: Iterable[str] | None = None, within_seconds: int | None = None
    ) -> list[RenewalResult]:
        return self.leases.renew_expiring(within_seconds, channel_ids)

    def sweep(self) -> int:
        return self.jobs.requeue_stale(timedelta(seconds=self.config.jobs.stale_after_seconds))

    def register_schedules(self, scheduler: APSchedulerAdapter) -> None:
        tasks = {
            "poll": self.poll,
            "jobs": self.process_jobs,
            "renew": self.resubscribe,
            "sweep": self.sweep,
        }
        for name, schedule in self.config.schedules.items():
            scheduler.schedule_task(name, schedule, tasks[name])
        scheduler.start()

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------
    def add_channel(
        self, name: str, external_id: str | None = None, handle: str | None = None
    ) -> Channel:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Channel name is required")
        if not external_id and not handle:
            raise ValidationError("Either an external id or a handle is required")
        if handle and not handle.startswith("@"):
            handle = f"@{handle}"
        if not external_id and handle:
            try:
                info = self.catalog.resolve_channel(handle)
            except UpstreamError as exc:
                # Resolution is retried lazily by the next poll.
                self.logger.warning("channel_resolve_deferred", handle=handle, error=str(exc))
                info = None
            if info is not None:
                external_id = info.external_id
        channel = Channel(
            id=f"ch_{uuid.uuid4().hex[:12]}",
            name=name,
            external_id=external_id,
            handle=handle,
            created_at=self.clock(),
        )
        self.store.add_channel(channel)
        self.logger.info("channel_added", channel=channel.id, external_id=external_id)
        return channel

    def set_channel_enabled(self, channel_id: str, enabled: bool) -> Channel:
        return self.store.update_channel(channel_id, enabled=enabled)

    def close(self) -> None:
        self.pools.shutdown()
        for resource in (self.catalog, self.hub, self.summarizer, self.notifier, self.exporter):
            closer = getattr(resource, "close", None)
            if callable(closer):
                closer()
        self.store.close()


def build_orchestrator(
    repository: ConfigRepository | None = None,
    catalog: CatalogLookup | None = None,
    hub: HubClient | None = None,
    summarizer: Summarizer | None = None,
    exporter: DocumentExporter | None = None,
    notifier: Notifier | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> Orchestrator:
    """Build every component from configuration; explicit adapters win over defaults."""

    repository = repository or ConfigRepository()
    config = repository.load_config()
    store = Store(
        SQLiteManager(timeout=config.store.timeout_seconds),
        repository.resolve(config.store.path),
    )
    if catalog is None:
        catalog = YouTubeCatalog(config.youtube, config.secret(config.youtube.api_key_env))
    if hub is None:
        hub = WebSubHubClient(config.hub)
    if summarizer is None:
        summarizer = GeminiSummarizer(config.summarizer, config.secret(config.summarizer.api_key_env))
    if exporter is None and config.export.enabled:
        exporter = FileDocumentExporter(
            repository.resolve(config.export.output_dir), fmt=config.export.format
        )
    if notifier is None and config.notifier.enabled:
        webhook_url = config.secret(config.notifier.webhook_url_env)
        if webhook_url:
            notifier = ChatWebhookNotifier(config.notifier, webhook_url)
    return Orchestrator(
        config,
        store,
        catalog,
        hub,
        summarizer,
        exporter=exporter,
        notifier=notifier,
        pools=ThreadPoolManager(default_workers=max(config.poll.max_workers, config.jobs.max_workers)),
        clock=clock,
    )


__all__ = ["Orchestrator", "build_orchestrator"]
