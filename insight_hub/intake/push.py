"""Push intake: hub verification handshake and Atom notification routing."""

from __future__ import annotations

import hashlib
import hmac
import re
import uuid
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from ..engine.dedup import DeduplicationEngine
from ..engine.identity import IdentityResolver
from ..engine.jobs import JobStateMachine
from ..engine.leases import SubscriptionLeaseManager
from ..errors import ConflictError, PayloadTooLargeError, ValidationError
from ..infra.storage import Store
from ..logging_conf import component_logger
from ..models import EventKind, Item, ItemCandidate, Origin, parse_timestamp, utcnow

NS = {
    "atom": "http://www.w3.org/2005/Atom",
    "yt": "http://www.youtube.com/xml/schemas/2015",
    "at": "http://purl.org/atompub/tombstones/1.0",
}
VALID_MODES = ("subscribe", "unsubscribe")
SIGNATURE_ALGORITHMS = {"sha1": hashlib.sha1, "sha256": hashlib.sha256}
TOMBSTONE_REF = re.compile(r"^yt:video:(.+)$")
CHANNEL_URI = re.compile(r"/channel/([A-Za-z0-9_-]+)")


@dataclass(slots=True)
class PushReport:
    candidates: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "candidates": self.candidates,
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


class PushIntake:
    """Handle inbound hub traffic for the callback endpoint."""

    def __init__(
        self,
        store: Store,
        dedup: DeduplicationEngine,
        jobs: JobStateMachine,
        leases: SubscriptionLeaseManager,
        resolver: IdentityResolver | None = None,
        max_payload_bytes: int = 1024 * 1024,
        secret: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.dedup = dedup
        self.jobs = jobs
        self.leases = leases
        self.resolver = resolver or dedup.resolver
        self.max_payload_bytes = max_payload_bytes
        self.secret = secret
        self.clock = clock
        self.logger = component_logger("push")

    # ------------------------------------------------------------------
    def verify(
        self,
        mode: str | None,
        topic: str | None,
        challenge: str | None,
        lease_seconds: str | int | None = None,
        callback_url: str | None = None,
    ) -> str:
        if not mode or not topic or not challenge:
            raise ValidationError("hub.mode, hub.topic and hub.challenge are required")
        if mode not in VALID_MODES:
            raise ValidationError(f"Invalid hub.mode: {mode}")
        if mode == "subscribe" and lease_seconds not in (None, ""):
            try:
                lease = int(lease_seconds)
            except (TypeError, ValueError) as exc:
                raise ValidationError(f"Invalid hub.lease_seconds: {lease_seconds}") from exc
            if lease <= 0:
                raise ValidationError(f"hub.lease_seconds must be positive: {lease_seconds}")
            self.leases.confirm(topic, callback_url, lease)
        elif mode == "unsubscribe":
            self.leases.mark_unsubscribed(topic)
        self.logger.info("hub_verified", mode=mode, topic=topic)
        return challenge

    # ------------------------------------------------------------------
    def check_size(self, payload: bytes) -> None:
        if len(payload) > self.max_payload_bytes:
            raise PayloadTooLargeError(len(payload), self.max_payload_bytes)

    def check_signature(self, payload: bytes, signature: str | None) -> None:
        if not self.secret:
            return
        if not signature or "=" not in signature:
            raise ValidationError("Missing X-Hub-Signature")
        algorithm, _, received = signature.partition("=")
        digest = SIGNATURE_ALGORITHMS.get(algorithm.strip().lower())
        if digest is None:
            raise ValidationError(f"Unsupported signature algorithm: {algorithm}")
        expected = hmac.new(self.secret.encode("utf-8"), payload, digest).hexdigest()
        if not hmac.compare_digest(expected, received.strip().lower()):
            raise ValidationError("X-Hub-Signature mismatch")

    def parse(self, payload: bytes | str) -> list[ItemCandidate]:
        data = payload.encode("utf-8") if isinstance(payload, str) else payload
        self.check_size(data)
        try:
            root = ET.fromstring(data)
        except ET.ParseError as exc:
            raise ValidationError(f"Atom XML parse error: {exc}") from exc

        candidates: list[ItemCandidate] = []
        for entry in root.iter(f"{{{NS['atom']}}}entry"):
            candidate = self._entry_candidate(entry)
            if candidate is not None:
                candidates.append(candidate)
        for tombstone in root.iter(f"{{{NS['at']}}}deleted-entry"):
            candidate = self._tombstone_candidate(tombstone)
            if candidate is not None:
                candidates.append(candidate)
        return candidates

    def _entry_candidate(self, entry: ET.Element) -> ItemCandidate | None:
        video_id = _text(entry, "yt:videoId")
        channel_id = _text(entry, "yt:channelId")
        link = _link(entry)
        if not video_id and channel_id:
            video_id = self.resolver.resolve(link)
            self.logger.debug("identifier_from_link", template=self.resolver.template_for(link))
        if not video_id and not channel_id:
            return None
        raw = {
            "videoId": video_id,
            "channelId": channel_id,
            "title": _text(entry, "atom:title"),
            "published": _text(entry, "atom:published"),
            "updated": _text(entry, "atom:updated"),
            "link": link,
            "author": _text(entry, "atom:author/atom:name"),
        }
        deleted = entry.find("yt:deleted", NS) is not None
        return ItemCandidate(
            channel_id="",
            origin=Origin.PUSH,
            source_url=link or (IdentityResolver.canonical_url(video_id) if video_id else ""),
            item_id=video_id,
            title=raw["title"],
            published_at=parse_timestamp(raw["published"]),
            event_kind=EventKind.DELETED if deleted else EventKind.NEW_OR_UPDATE,
            raw_payload=raw,
            external_channel_id=channel_id,
        )

    def _tombstone_candidate(self, tombstone: ET.Element) -> ItemCandidate | None:
        match = TOMBSTONE_REF.match(tombstone.get("ref", ""))
        link = _link(tombstone)
        video_id = match.group(1) if match else self.resolver.resolve(link)
        if not video_id:
            return None
        uri = _text(tombstone, "at:by/atom:uri") or ""
        channel_match = CHANNEL_URI.search(uri)
        raw = {
            "videoId": video_id,
            "channelId": channel_match.group(1) if channel_match else None,
            "deletedAt": tombstone.get("when"),
            "link": link,
            "author": _text(tombstone, "at:by/atom:name"),
        }
        return ItemCandidate(
            channel_id="",
            origin=Origin.PUSH,
            source_url=link or IdentityResolver.canonical_url(video_id),
            item_id=video_id,
            event_kind=EventKind.DELETED,
            raw_payload=raw,
            external_channel_id=raw["channelId"],
        )

    # ------------------------------------------------------------------
    def ingest(self, payload: bytes | str, signature: str | None = None) -> PushReport:
        data = payload.encode("utf-8") if isinstance(payload, str) else payload
        self.check_size(data)
        self.check_signature(data, signature)
        candidates = self.parse(data)
        report = PushReport(candidates=len(candidates))
        for candidate in candidates:
            try:
                self._route(candidate, report)
            except Exception as exc:  # noqa: BLE001
                self.logger.error("push_entry_failed", item_id=candidate.item_id, error=str(exc))
                report.errors.append(f"{candidate.item_id or candidate.source_url}: {exc}")
        self.logger.info("push_ingested", **{k: v for k, v in report.to_dict().items() if k != "errors"})
        return report

    def _route(self, candidate: ItemCandidate, report: PushReport) -> None:
        item_id = self.dedup.candidate_identifier(candidate)
        now = self.clock()

        if candidate.event_kind is EventKind.DELETED:
            existing = self.store.get_item(item_id) if item_id else None
            if existing is None:
                self.logger.debug("delete_for_unknown_item", item_id=item_id)
                report.skipped += 1
                return
            self.store.update_item_event(existing.record_id, EventKind.DELETED, candidate.raw_payload, now)
            report.deleted += 1
            return

        channel = (
            self.store.find_channel_by_external_id(candidate.external_channel_id)
            if candidate.external_channel_id
            else None
        )
        if channel is not None:
            candidate.channel_id = channel.id

        match = self.dedup.is_duplicate(candidate)
        if match.duplicate:
            self.store.update_item_event(
                match.existing_id, candidate.event_kind, candidate.raw_payload, now
            )
            report.updated += 1
            return

        # Known items are refreshed above; creation needs a registered channel.
        if channel is None:
            self.logger.warning(
                "unknown_channel", channel=candidate.external_channel_id, item_id=item_id
            )
            report.skipped += 1
            return

        item = Item(
            record_id=uuid.uuid4().hex,
            channel_id=channel.id,
            source_url=candidate.source_url,
            origin=Origin.PUSH,
            item_id=item_id,
            title=candidate.title or "",
            description=candidate.description or "",
            published_at=candidate.published_at or now,
            event_kind=candidate.event_kind,
            raw_payload=candidate.raw_payload,
            created_at=now,
            updated_at=now,
        )
        try:
            self.store.insert_item(item)
        except ConflictError:
            self.logger.info("item_insert_conflict", item_id=item_id)
            report.skipped += 1
            return
        report.created += 1
        if item_id:
            self.jobs.enqueue(item_id)
        self.logger.info("push_item_created", item_id=item_id, channel=channel.id)


def _text(element: ET.Element, path: str) -> str | None:
    node = element.find(path, NS)
    if node is None or node.text is None:
        return None
    return node.text.strip() or None


def _link(element: ET.Element) -> str | None:
    node = element.find("atom:link", NS)
    if node is None:
        return None
    return node.get("href")


__all__ = ["PushIntake", "PushReport"]
