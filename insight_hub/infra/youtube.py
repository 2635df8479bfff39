"""YouTube Data API v3 catalog adapter."""

from __future__ import annotations

from typing import Any, Sequence

import httpx

from ..config.models import YouTubeConfig
from ..errors import UpstreamAuthError, UpstreamError, raise_for_upstream
from ..logging_conf import component_logger
from ..models import parse_timestamp
from ..ports import CatalogEntry, CatalogLookup, ChannelInfo


class YouTubeCatalog(CatalogLookup):
    """Channel, uploads playlist and video lookups over the Data API."""

    def __init__(
        self,
        config: YouTubeConfig,
        api_key: str | None,
        client: httpx.Client | None = None,
    ) -> None:
        self.config = config
        self.api_key = api_key
        self.base_url = config.api_base_url.rstrip("/")
        self.batch_limit = config.detail_batch_size
        self._client = client or httpx.Client(timeout=config.timeout_seconds, follow_redirects=True)
        self.logger = component_logger("youtube")

    def close(self) -> None:
        self._client.close()

    def resolve_channel(self, handle: str) -> ChannelInfo | None:
        bare = handle.strip().lstrip("@")
        if not bare:
            return None
        data = self._get("channels", {"part": "id,snippet", "forHandle": bare})
        items = data.get("items") or []
        if items:
            first = items[0]
            snippet = first.get("snippet") or {}
            return ChannelInfo(
                external_id=first["id"],
                title=snippet.get("title", ""),
                handle=snippet.get("customUrl") or f"@{bare}",
                thumbnail_url=_thumbnail(snippet),
            )
        # forHandle misses some legacy channels; fall back to search.
        data = self._get(
            "search", {"part": "snippet", "q": f"@{bare}", "type": "channel", "maxResults": 1}
        )
        items = data.get("items") or []
        if not items:
            self.logger.warning("channel_not_found", handle=handle)
            return None
        snippet = items[0].get("snippet") or {}
        channel_id = snippet.get("channelId") or (items[0].get("id") or {}).get("channelId")
        if not channel_id:
            return None
        return ChannelInfo(
            external_id=channel_id,
            title=snippet.get("title", ""),
            handle=f"@{bare}",
            thumbnail_url=_thumbnail(snippet),
        )

    def uploads_listing(self, external_id: str) -> str | None:
        data = self._get("channels", {"part": "contentDetails", "id": external_id})
        items = data.get("items") or []
        if not items:
            return None
        related = (items[0].get("contentDetails") or {}).get("relatedPlaylists") or {}
        return related.get("uploads")

    def recent_item_ids(self, listing_id: str, max_results: int) -> list[str]:
        data = self._get(
            "playlistItems",
            {"part": "contentDetails", "playlistId": listing_id, "maxResults": max_results},
        )
        ids: list[str] = []
        for entry in data.get("items") or []:
            video_id = (entry.get("contentDetails") or {}).get("videoId")
            if video_id:
                ids.append(video_id)
        return ids[:max_results]

    def item_details(self, item_ids: Sequence[str]) -> list[CatalogEntry]:
        if not item_ids:
            return []
        if len(item_ids) > self.batch_limit:
            raise ValueError(f"At most {self.batch_limit} ids per detail request")
        data = self._get("videos", {"part": "snippet,contentDetails", "id": ",".join(item_ids)})
        entries: list[CatalogEntry] = []
        for raw in data.get("items") or []:
            snippet = raw.get("snippet") or {}
            entries.append(
                CatalogEntry(
                    item_id=raw["id"],
                    channel_external_id=snippet.get("channelId", ""),
                    title=snippet.get("title", ""),
                    published_at=parse_timestamp(snippet.get("publishedAt")),
                    description=snippet.get("description", ""),
                    thumbnail_url=_thumbnail(snippet) or "",
                    duration=(raw.get("contentDetails") or {}).get("duration", ""),
                    raw=raw,
                )
            )
        return entries

    def _get(self, resource: str, params: dict[str, Any]) -> dict[str, Any]:
        if not self.api_key:
            raise UpstreamAuthError("YouTube API key is not configured")
        try:
            response = self._client.get(
                f"{self.base_url}/{resource}", params={**params, "key": self.api_key}
            )
        except httpx.HTTPError as exc:
            raise UpstreamError(f"YouTube {resource} request failed: {exc}") from exc
        raise_for_upstream(response, f"YouTube {resource}")
        return response.json()


def _thumbnail(snippet: dict[str, Any]) -> str | None:
    thumbnails = snippet.get("thumbnails") or {}
    for size in ("high", "medium", "default"):
        url = (thumbnails.get(size) or {}).get("url")
        if url:
            return url
    return None


__all__ = ["YouTubeCatalog"]
