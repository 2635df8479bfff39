from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from insight_hub.engine.exporter import FileDocumentExporter
from insight_hub.models import Item, Origin
from insight_hub.ports import Summary


@pytest.fixture()
def item() -> Item:
    return Item(
        record_id="rec-1",
        channel_id="ch_1",
        source_url="https://youtu.be/AAAAAAAAAA1",
        origin=Origin.PUSH,
        item_id="AAAAAAAAAA1",
        title="Launch recap",
        published_at=datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc),
    )


SUMMARY = Summary(text="What shipped.", key_points=["API v2", "New dashboard"])


def test_markdown_export(tmp_path: Path, item: Item) -> None:
    exporter = FileDocumentExporter(tmp_path / "docs")
    ref = exporter.export(item, SUMMARY)

    path = tmp_path / "docs" / "AAAAAAAAAA1.md"
    assert ref.doc_id == "AAAAAAAAAA1"
    assert ref.doc_url == path.resolve().as_uri()
    text = path.read_text(encoding="utf-8")
    assert text.startswith("# Launch recap\n")
    assert "*Link:* <https://www.youtube.com/watch?v=AAAAAAAAAA1>" in text
    assert "- API v2" in text


def test_json_export(tmp_path: Path, item: Item) -> None:
    exporter = FileDocumentExporter(tmp_path, fmt="json")
    exporter.export(item, SUMMARY)
    payload = json.loads((tmp_path / "AAAAAAAAAA1.json").read_text(encoding="utf-8"))
    assert payload["published_at"] == "2024-05-01T09:30:00+00:00"
    assert payload["key_points"] == ["API v2", "New dashboard"]


def test_txt_export_without_identifier(tmp_path: Path, item: Item) -> None:
    item.item_id = None
    item.source_url = "https://example.org/post?id=7"
    exporter = FileDocumentExporter(tmp_path, fmt="txt")
    ref = exporter.export(item, SUMMARY)
    text = (tmp_path / "rec-1.txt").read_text(encoding="utf-8")
    assert ref.doc_id == "rec-1"
    assert text.splitlines()[0] == "Launch recap"
    assert text.rstrip().endswith("Link: https://example.org/post?id=7")


def test_unknown_format_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        FileDocumentExporter(tmp_path, fmt="pdf")
