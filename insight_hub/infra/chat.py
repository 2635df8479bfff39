"""Chat incoming-webhook notifier (Google Chat / Slack compatible ``{"text": ...}`` body)."""

from __future__ import annotations

import httpx

from ..config.models import NotifierConfig
from ..errors import UpstreamError, ValidationError, raise_for_upstream
from ..logging_conf import component_logger
from ..models import Item
from ..ports import ExportReference, Notifier, Summary


class ChatWebhookNotifier(Notifier):
    """Post a rendered summary message to a single incoming webhook."""

    def __init__(
        self, config: NotifierConfig, webhook_url: str | None, client: httpx.Client | None = None
    ) -> None:
        if not webhook_url:
            raise ValidationError("Chat webhook URL is not configured")
        self.webhook_url = webhook_url
        self._client = client or httpx.Client(timeout=config.timeout_seconds)
        self.logger = component_logger("chat")

    def close(self) -> None:
        self._client.close()

    def notify(self, item: Item, summary: Summary, export: ExportReference | None) -> None:
        try:
            response = self._client.post(self.webhook_url, json={"text": render_message(item, summary, export)})
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Chat webhook request failed: {exc}") from exc
        raise_for_upstream(response, "Chat webhook")
        self.logger.info("chat_notified", item_id=item.item_id)


def render_message(item: Item, summary: Summary, export: ExportReference | None) -> str:
    lines = [f"*{item.title or item.item_id or 'New item'}*", summary.text.strip()]
    lines.extend(f"• {point}" for point in summary.key_points)
    if item.source_url:
        lines.append(item.source_url)
    if export is not None:
        lines.append(f"Document: {export.doc_url}")
    return "\n".join(line for line in lines if line)


__all__ = ["ChatWebhookNotifier", "render_message"]
