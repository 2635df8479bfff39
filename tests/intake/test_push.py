from __future__ import annotations

import hashlib
import hmac

import pytest

from insight_hub.errors import PayloadTooLargeError, ValidationError
from insight_hub.models import EventKind, JobStatus, Origin, SubscriptionStatus

CHANNEL = "UCpushchannel00000000001"
VIDEO = "VVVVVVVVVV1"


def atom_entry(video_id: str | None = VIDEO, channel_id: str | None = CHANNEL, title: str = "Fresh upload", deleted: bool = False, link: str | None = None) -> str:
    parts = ["<entry>"]
    if video_id:
        parts.append(f"<yt:videoId>{video_id}</yt:videoId>")
    if channel_id:
        parts.append(f"<yt:channelId>{channel_id}</yt:channelId>")
    if deleted:
        parts.append("<yt:deleted/>")
    parts.append(f"<title>{title}</title>")
    href = link or f"https://www.youtube.com/watch?v={video_id}"
    parts.append(f'<link rel="alternate" href="{href}"/>')
    parts.append("<author><name>Push Channel</name><uri>https://www.youtube.com/channel/x</uri></author>")
    parts.append("<published>2024-05-01T09:00:00+00:00</published>")
    parts.append("<updated>2024-05-01T09:05:00.123456+00:00</updated>")
    parts.append("</entry>")
    return "".join(parts)


def atom_feed(*entries: str) -> bytes:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<feed xmlns:yt="http://www.youtube.com/xml/schemas/2015" '
        'xmlns="http://www.w3.org/2005/Atom">' + "".join(entries) + "</feed>"
    ).encode("utf-8")


@pytest.fixture()
def push(orchestrator):  # noqa: ANN001
    return orchestrator.push


def test_verify_echoes_challenge_and_confirms_lease(push, make_channel, store) -> None:  # noqa: ANN001
    channel = make_channel(external_id=CHANNEL)
    topic = f"https://www.youtube.com/feeds/videos.xml?channel_id={CHANNEL}"

    assert push.verify("subscribe", topic, "c-123", lease_seconds="86400") == "c-123"
    subscription = store.get_subscription(channel.id)
    assert subscription.status is SubscriptionStatus.SUBSCRIBED

    assert push.verify("unsubscribe", topic, "c-456") == "c-456"
    assert store.get_subscription(channel.id).status is SubscriptionStatus.UNSUBSCRIBED


@pytest.mark.parametrize(
    ("mode", "topic", "challenge"),
    [
        (None, "t", "c"),
        ("subscribe", "", "c"),
        ("subscribe", "t", None),
        ("denied", "t", "c"),
    ],
)
def test_verify_rejects_bad_handshake(push, mode, topic, challenge) -> None:  # noqa: ANN001
    with pytest.raises(ValidationError):
        push.verify(mode, topic, challenge)


@pytest.mark.parametrize("lease", ["forever", "0", "-86400"])
def test_verify_rejects_invalid_lease(push, make_channel, store, lease) -> None:  # noqa: ANN001
    channel = make_channel(external_id=CHANNEL)
    topic = f"https://www.youtube.com/feeds/videos.xml?channel_id={CHANNEL}"
    with pytest.raises(ValidationError):
        push.verify("subscribe", topic, "c", lease_seconds=lease)
    assert store.get_subscription(channel.id) is None


def test_parse_extracts_entries_and_tombstones(push) -> None:  # noqa: ANN001
    tombstone = (
        '<at:deleted-entry xmlns:at="http://purl.org/atompub/tombstones/1.0" '
        'ref="yt:video:TTTTTTTTTT1" when="2024-05-01T10:00:00+00:00">'
        '<link href="https://www.youtube.com/watch?v=TTTTTTTTTT1"/>'
        f"<at:by><name>Push Channel</name><uri>https://www.youtube.com/channel/{CHANNEL}</uri></at:by>"
        "</at:deleted-entry>"
    )
    payload = atom_feed(
        atom_entry(),
        atom_entry(video_id="DDDDDDDDDD1", deleted=True),
        atom_entry(video_id=None, link="https://youtu.be/LLLLLLLLLL1"),
        atom_entry(video_id=None, channel_id=None),
        tombstone,
    )
    candidates = push.parse(payload)

    assert [c.item_id for c in candidates] == [VIDEO, "DDDDDDDDDD1", "LLLLLLLLLL1", "TTTTTTTTTT1"]
    first = candidates[0]
    assert first.origin is Origin.PUSH
    assert first.external_channel_id == CHANNEL
    assert first.event_kind is EventKind.NEW_OR_UPDATE
    assert first.raw_payload["author"] == "Push Channel"
    assert first.raw_payload["title"] == "Fresh upload"
    assert first.published_at.isoformat() == "2024-05-01T09:00:00+00:00"
    assert candidates[1].event_kind is EventKind.DELETED
    assert candidates[3].event_kind is EventKind.DELETED
    assert candidates[3].external_channel_id == CHANNEL


def test_parse_rejects_malformed_and_oversized(push) -> None:  # noqa: ANN001
    with pytest.raises(ValidationError):
        push.parse(b"<feed><entry>")
    push.max_payload_bytes = 64
    with pytest.raises(PayloadTooLargeError):
        push.parse(atom_feed(atom_entry()))


def test_same_payload_twice_creates_one_item_and_job(push, make_channel, store, orchestrator) -> None:  # noqa: ANN001
    make_channel(external_id=CHANNEL)
    payload = atom_feed(atom_entry())

    first = push.ingest(payload)
    second = push.ingest(payload)

    assert (first.created, first.updated) == (1, 0)
    assert (second.created, second.updated) == (0, 1)
    assert store.count_items() == 1
    jobs = orchestrator.jobs.list_jobs()
    assert len(jobs) == 1
    assert jobs[0].status is JobStatus.PENDING
    assert store.get_item(VIDEO).origin is Origin.PUSH


def test_push_for_polled_item_only_updates_payload(push, make_channel, store, orchestrator, catalog) -> None:  # noqa: ANN001
    make_channel(external_id=CHANNEL)
    catalog.add_channel(CHANNEL)
    catalog.add_item(CHANNEL, VIDEO, "Fresh upload")
    orchestrator.poll()
    polled = store.get_item(VIDEO)

    report = push.ingest(atom_feed(atom_entry(title="Fresh upload (edited)")))

    assert report.updated == 1 and report.created == 0
    item = store.get_item(VIDEO)
    assert item.record_id == polled.record_id
    assert item.origin is Origin.POLL
    assert item.title == "Fresh upload"
    assert item.raw_payload["title"] == "Fresh upload (edited)"
    assert len(orchestrator.jobs.list_jobs()) == 1


def test_deleted_event_updates_existing_only(push, make_channel, store, orchestrator) -> None:  # noqa: ANN001
    make_channel(external_id=CHANNEL)
    push.ingest(atom_feed(atom_entry()))

    report = push.ingest(atom_feed(atom_entry(deleted=True), atom_entry(video_id="NEVERSEEN01", deleted=True)))

    assert report.deleted == 1
    assert report.skipped == 1
    assert store.get_item(VIDEO).event_kind is EventKind.DELETED
    assert store.get_item("NEVERSEEN01") is None
    assert len(orchestrator.jobs.list_jobs()) == 1


def test_unknown_channel_is_skipped(push, store) -> None:  # noqa: ANN001
    report = push.ingest(atom_feed(atom_entry(channel_id="UCstranger")))
    assert report.skipped == 1
    assert report.created == 0
    assert store.count_items() == 0


def test_renotify_without_channel_updates_known_item(push, make_channel, store, orchestrator) -> None:  # noqa: ANN001
    make_channel(external_id=CHANNEL)
    push.ingest(atom_feed(atom_entry()))
    created = store.get_item(VIDEO)

    report = push.ingest(atom_feed(atom_entry(channel_id=None, title="Renamed")))

    assert (report.updated, report.skipped, report.created) == (1, 0, 0)
    item = store.get_item(VIDEO)
    assert item.record_id == created.record_id
    assert item.raw_payload["title"] == "Renamed"
    assert item.raw_payload["channelId"] is None
    assert len(orchestrator.jobs.list_jobs()) == 1


def test_unknown_channel_without_known_item_creates_nothing(push, store) -> None:  # noqa: ANN001
    report = push.ingest(atom_feed(atom_entry(channel_id=None)))
    assert report.skipped == 1
    assert store.count_items() == 0


def test_signature_required_when_secret_configured(push, make_channel, store) -> None:  # noqa: ANN001
    make_channel(external_id=CHANNEL)
    push.secret = "topsecret"
    payload = atom_feed(atom_entry())

    with pytest.raises(ValidationError):
        push.ingest(payload)
    with pytest.raises(ValidationError):
        push.ingest(payload, signature="sha1=deadbeef")
    assert store.count_items() == 0

    digest = hmac.new(b"topsecret", payload, hashlib.sha256).hexdigest()
    report = push.ingest(payload, signature=f"sha256={digest}")
    assert report.created == 1


def test_per_entry_failure_does_not_abort_batch(push, make_channel, store, monkeypatch) -> None:  # noqa: ANN001
    make_channel(external_id=CHANNEL)
    real_check = push.dedup.is_duplicate

    def flaky(candidate):  # noqa: ANN001
        if candidate.item_id == "BROKEN00001":
            raise RuntimeError("store hiccup")
        return real_check(candidate)

    monkeypatch.setattr(push.dedup, "is_duplicate", flaky)
    report = push.ingest(atom_feed(atom_entry(video_id="BROKEN00001"), atom_entry()))

    assert report.created == 1
    assert report.errors == ["BROKEN00001: store hiccup"]
    assert store.get_item(VIDEO) is not None
