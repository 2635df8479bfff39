"""File based document exporter supporting JSON/Markdown/TXT."""

from __future__ import annotations

import json
import re
from pathlib import Path
from threading import Lock

from ...models import Item, format_timestamp
from ...ports import DocumentExporter, ExportReference, Summary
from ..identity import IdentityResolver

EXTENSIONS = {"json": "json", "markdown": "md", "txt": "txt"}


class FileDocumentExporter(DocumentExporter):
    """Write one summary document per item to a local directory."""

    def __init__(self, output_dir: Path, fmt: str = "markdown") -> None:
        if fmt not in EXTENSIONS:
            raise ValueError(f"Unsupported export format: {fmt}")
        self.output_dir = output_dir
        self.format = fmt
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()

    def export(self, item: Item, summary: Summary) -> ExportReference:
        key = item.item_id or item.record_id
        slug = re.sub(r"[^0-9A-Za-z_-]+", "_", key.strip()) or "item"
        path = self.output_dir / f"{slug}.{EXTENSIONS[self.format]}"
        body = self._render(item, summary)
        with self._lock:
            path.write_text(body, encoding="utf-8")
        return ExportReference(doc_id=path.stem, doc_url=path.resolve().as_uri())

    def _render(self, item: Item, summary: Summary) -> str:
        url = IdentityResolver.canonical_url(item.item_id) if item.item_id else item.source_url
        published = format_timestamp(item.published_at) or ""
        if self.format == "json":
            payload = {
                "item_id": item.item_id,
                "channel_id": item.channel_id,
                "title": item.title,
                "published_at": published or None,
                "url": url,
                "summary": summary.text,
                "key_points": list(summary.key_points),
            }
            return json.dumps(payload, ensure_ascii=False, indent=2) + "\n"
        if self.format == "markdown":
            lines = [f"# {item.title or '(untitled)'}", ""]
            if published:
                lines.append(f"*Published:* {published}")
            if url:
                lines.append(f"*Link:* <{url}>")
            lines.extend(["", "## Summary", "", summary.text.strip()])
            if summary.key_points:
                lines.extend(["", "## Key points", ""])
                lines.extend(f"- {point}" for point in summary.key_points)
            return "\n".join(lines).strip() + "\n"
        lines = [item.title or "(untitled)"]
        if published:
            lines.append(f"Published: {published}")
        lines.append(summary.text.strip())
        lines.extend(f"* {point}" for point in summary.key_points)
        if url:
            lines.append(f"Link: {url}")
        return "\n".join(lines).strip() + "\n"


__all__ = ["FileDocumentExporter"]
