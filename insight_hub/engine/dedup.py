"""Layered duplicate detection backed by the SQLite store."""

from __future__ import annotations

from ..infra.storage import Store
from ..logging_conf import component_logger
from ..models import ItemCandidate, MatchResult, format_timestamp
from .identity import IdentityResolver

STAGE_IDENTIFIER = "identifier"
STAGE_LEGACY = "legacy"
STAGE_HEURISTIC = "heuristic"


class DeduplicationEngine:
    """Decide whether an ingestion event refers to an already-known item.

    Stages run in order and stop at the first hit:

    1. exact canonical identifier lookup;
    2. linear scan resolving identifiers from every stored source URL;
    3. same channel, same published date and matching title prefix.
    """

    def __init__(
        self,
        store: Store,
        resolver: IdentityResolver | None = None,
        title_prefix_length: int = 10,
        legacy_scan: bool = True,
    ) -> None:
        self.store = store
        self.resolver = resolver or IdentityResolver()
        self.title_prefix_length = title_prefix_length
        self.legacy_scan = legacy_scan
        self.logger = component_logger("dedup")

    def candidate_identifier(self, candidate: ItemCandidate) -> str | None:
        return self.resolver.resolve(candidate.item_id) or self.resolver.resolve(candidate.source_url)

    def is_duplicate(self, candidate: ItemCandidate) -> MatchResult:
        item_id = self.candidate_identifier(candidate)

        if item_id:
            existing = self.store.get_item(item_id)
            if existing is not None:
                return self._hit(STAGE_IDENTIFIER, existing.record_id, item_id)

        if self.legacy_scan:
            record_id = self._legacy_match(item_id, candidate.source_url)
            if record_id is not None:
                return self._hit(STAGE_LEGACY, record_id, item_id)

        if candidate.published_at is not None and candidate.title and candidate.channel_id:
            published_date = format_timestamp(candidate.published_at)[:10]
            prefix = candidate.title[: self.title_prefix_length]
            matches = self.store.find_items_by_date_and_title(
                candidate.channel_id, published_date, prefix
            )
            if matches:
                return self._hit(STAGE_HEURISTIC, matches[0].record_id, item_id)

        return MatchResult.miss()

    def _legacy_match(self, item_id: str | None, source_url: str) -> str | None:
        for record_id, stored_url in self.store.item_sources():
            if item_id:
                if self.resolver.resolve(stored_url) == item_id:
                    return record_id
            elif source_url and stored_url == source_url:
                return record_id
        return None

    def _hit(self, stage: str, record_id: str, item_id: str | None) -> MatchResult:
        self.logger.debug("duplicate_detected", stage=stage, record_id=record_id, item_id=item_id)
        return MatchResult(duplicate=True, existing_id=record_id, stage=stage)


__all__ = ["DeduplicationEngine", "STAGE_HEURISTIC", "STAGE_IDENTIFIER", "STAGE_LEGACY"]
