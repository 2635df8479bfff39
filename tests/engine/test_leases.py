from __future__ import annotations

from datetime import timedelta

import pytest

from insight_hub.config.models import HubConfig
from insight_hub.engine.leases import SubscriptionLeaseManager
from insight_hub.errors import UpstreamError, ValidationError
from insight_hub.models import SubscriptionStatus

LEASE = 432000


@pytest.fixture()
def leases(store, hub, clock) -> SubscriptionLeaseManager:  # noqa: ANN001
    return SubscriptionLeaseManager(
        store,
        hub,
        HubConfig(),
        public_base_url="https://hub.example.org/",
        callback_path="/api/youtube/websub/callback",
        clock=clock,
    )


def test_topic_and_callback_urls(leases, make_channel, store, hub, clock) -> None:  # noqa: ANN001
    channel = make_channel(external_id="UCxyz")
    assert leases.topic_for(channel) == "https://www.youtube.com/feeds/videos.xml?channel_id=UCxyz"
    assert leases.callback_url() == "https://hub.example.org/api/youtube/websub/callback"

    tokenised = SubscriptionLeaseManager(
        store, hub, HubConfig(), "https://hub.example.org", "/cb", callback_token="s3cr3t", clock=clock
    )
    assert tokenised.callback_url() == "https://hub.example.org/cb/s3cr3t"

    with pytest.raises(ValidationError):
        leases.topic_for(make_channel(external_id=None, handle="@nobody"))


def test_subscribe_persists_only_on_acceptance(leases, make_channel, store, hub, clock) -> None:  # noqa: ANN001
    channel = make_channel(external_id="UCxyz")
    subscription = leases.subscribe(channel)

    assert hub.calls[0]["lease"] == LEASE
    assert subscription.status is SubscriptionStatus.SUBSCRIBED
    assert subscription.lease_expires_at == clock() + timedelta(seconds=LEASE)
    assert store.get_subscription(channel.id).lease_expires_at == subscription.lease_expires_at

    hub.accept = False
    clock.advance(days=1)
    with pytest.raises(UpstreamError):
        leases.subscribe(channel)
    # Rejection leaves the prior row untouched.
    assert store.get_subscription(channel.id).lease_expires_at == subscription.lease_expires_at


def test_renewal_inside_horizon_extends_lease(leases, make_channel, store, clock) -> None:  # noqa: ANN001
    due = make_channel(external_id="UCdue")
    later = make_channel(external_id="UClater")
    leases.subscribe(due, lease_seconds=3600)
    leases.subscribe(later)
    before_due = store.get_subscription(due.id).lease_expires_at
    before_later = store.get_subscription(later.id).lease_expires_at

    clock.advance(minutes=30)
    results = leases.renew_expiring()

    assert [r.channel_id for r in results] == [due.id]
    assert results[0].success
    assert store.get_subscription(due.id).lease_expires_at > before_due
    assert store.get_subscription(later.id).lease_expires_at == before_later


def test_renewal_failure_is_isolated(leases, make_channel, store, hub, clock) -> None:  # noqa: ANN001
    bad = make_channel(external_id="UCbad")
    good = make_channel(external_id="UCgood")
    leases.subscribe(bad, lease_seconds=60)
    leases.subscribe(good, lease_seconds=60)
    before_bad = store.get_subscription(bad.id).lease_expires_at
    hub.rejected_topics.add(leases.topic_for(bad))

    results = {r.channel_id: r for r in leases.renew_expiring(within_seconds=3600)}

    assert not results[bad.id].success
    assert "rejected" in results[bad.id].error
    assert results[good.id].success
    assert store.get_subscription(bad.id).lease_expires_at == before_bad
    assert store.get_subscription(bad.id).status is SubscriptionStatus.SUBSCRIBED


def test_confirm_and_mark_unsubscribed(leases, make_channel, store, clock) -> None:  # noqa: ANN001
    channel = make_channel(external_id="UCxyz")
    topic = "https://www.youtube.com/feeds/videos.xml?channel_id=UCxyz"

    confirmed = leases.confirm(topic, "https://hub.example.org/cb", 1000)
    assert confirmed.channel_id == channel.id
    assert confirmed.lease_expires_at == clock() + timedelta(seconds=1000)
    assert leases.is_push_trusted(channel.id)

    assert leases.confirm("https://www.youtube.com/feeds/videos.xml?channel_id=UCunknown", None, 10) is None

    assert leases.mark_unsubscribed(topic)
    assert store.get_subscription(channel.id).status is SubscriptionStatus.UNSUBSCRIBED
    assert not leases.is_push_trusted(channel.id)


def test_push_trust_lapses_with_lease(leases, make_channel, clock) -> None:  # noqa: ANN001
    channel = make_channel(external_id="UCxyz")
    assert not leases.is_push_trusted(channel.id)
    leases.subscribe(channel, lease_seconds=120)
    assert leases.is_push_trusted(channel.id)
    clock.advance(seconds=121)
    assert not leases.is_push_trusted(channel.id)


def test_subscribe_many_filters_and_skips_disabled(leases, make_channel) -> None:  # noqa: ANN001
    alpha = make_channel(external_id="UCalpha")
    make_channel(external_id="UCbeta", enabled=False)
    gamma = make_channel(external_id=None, handle="@gamma")

    results = leases.subscribe_many()
    by_channel = {r.channel_id: r for r in results}
    assert set(by_channel) == {alpha.id, gamma.id}
    assert by_channel[alpha.id].success
    assert not by_channel[gamma.id].success

    only = leases.subscribe_many(["UCalpha"])
    assert [r.channel_id for r in only] == [alpha.id]
    assert only[0].to_dict()["leaseExpiresAt"].endswith("+00:00")


def test_unsubscribe_marks_pending(leases, make_channel, store, hub) -> None:  # noqa: ANN001
    channel = make_channel(external_id="UCxyz")
    leases.subscribe(channel)
    assert leases.unsubscribe(channel)
    assert hub.calls[-1]["mode"] == "unsubscribe"
    assert store.get_subscription(channel.id).status is SubscriptionStatus.PENDING


@pytest.mark.parametrize("lease_seconds", [0, -60])
def test_confirm_rejects_non_positive_lease(leases, make_channel, store, lease_seconds) -> None:  # noqa: ANN001
    channel = make_channel(external_id="UCxyz")
    topic = "https://www.youtube.com/feeds/videos.xml?channel_id=UCxyz"
    with pytest.raises(ValidationError):
        leases.confirm(topic, None, lease_seconds)
    assert store.get_subscription(channel.id) is None
