"""Gemini ``generateContent`` summarizer producing text and key points for an item."""

from __future__ import annotations

import json
from typing import Any

import httpx

from ..config.models import SummarizerConfig
from ..errors import UpstreamAuthError, UpstreamError, raise_for_upstream
from ..logging_conf import component_logger
from ..models import Item, format_timestamp
from ..ports import Summarizer, Summary


class GeminiSummarizer(Summarizer):
    """Summarize items through the Gemini REST API, tolerating fenced or plain-text replies."""

    def __init__(
        self,
        config: SummarizerConfig,
        api_key: str | None,
        client: httpx.Client | None = None,
    ) -> None:
        self.config = config
        self.api_key = api_key
        self._client = client or httpx.Client(timeout=config.timeout_seconds)
        self.logger = component_logger("gemini")

    def close(self) -> None:
        self._client.close()

    def summarize(self, item: Item) -> Summary:
        if not self.api_key:
            raise UpstreamAuthError("Gemini API key is not configured")
        payload = {
            "contents": [{"role": "user", "parts": [{"text": _summary_prompt(item)}]}],
            "generationConfig": {
                "temperature": self.config.temperature,
                "responseMimeType": "application/json",
            },
        }
        data = self._post(payload)
        content = _extract_text(data)
        if not content.strip():
            raise UpstreamError("Gemini returned an empty response")
        try:
            obj = _parse_json_response(content)
        except json.JSONDecodeError:
            self.logger.warning("summary_parse_fallback", item_id=item.item_id)
            return _fallback_from_text(content)
        points = obj.get("key_points") or []
        return Summary(
            text=str(obj.get("summary") or "").strip() or content.strip(),
            key_points=[str(p).strip() for p in points if str(p).strip()],
        )

    def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.config.api_base_url.rstrip('/')}/models/{self.config.model}:generateContent"
        try:
            resp = self._client.post(url, params={"key": self.api_key}, json=payload)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Gemini request failed: {exc}") from exc
        raise_for_upstream(resp, "Gemini")
        return resp.json()


def _extract_text(data: dict[str, Any]) -> str:
    try:
        parts = data["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        return ""
    return "".join(str(part.get("text", "")) for part in parts if isinstance(part, dict))


def _parse_json_response(content: str) -> dict[str, Any]:
    try:
        obj = json.loads(content)
    except json.JSONDecodeError:
        start = content.find("{")
        end = content.rfind("}")
        if start == -1 or end <= start:
            raise
        obj = json.loads(content[start : end + 1])
    if not isinstance(obj, dict):
        raise json.JSONDecodeError("Expected a JSON object", content, 0)
    return obj


def _fallback_from_text(content: str) -> Summary:
    text = content.strip()
    points = []
    for line in text.splitlines():
        stripped = line.strip()
        if stripped.startswith(("- ", "* ")) and stripped[2:].strip():
            points.append(stripped[2:].strip())
    return Summary(text=text, key_points=points)


def _summary_prompt(item: Item) -> str:
    return (
        "Summarize the following video for a reader who has not watched it. "
        "Output strict JSON with keys: summary (string), key_points (array of 3-5 strings).\n"
        f"Title: {item.title}\n"
        f"Published: {format_timestamp(item.published_at) or 'unknown'}\n"
        f"URL: {item.source_url}\n"
        f"Description:\n{item.description[:4000]}"
    )


__all__ = ["GeminiSummarizer"]
