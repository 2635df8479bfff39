"""Hub subscription lease lifecycle: subscribe, renew, confirm, trust."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable

from ..config.models import HubConfig
from ..errors import NotFoundError, UpstreamError, ValidationError
from ..infra.storage import Store
from ..logging_conf import component_logger
from ..models import Channel, Subscription, SubscriptionStatus, format_timestamp, utcnow
from ..ports import HubClient

TOPIC_CHANNEL = re.compile(r"channel_id=([^&]+)")


@dataclass(slots=True)
class RenewalResult:
    channel_id: str
    success: bool
    error: str | None = None
    lease_expires_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "channelId": self.channel_id,
            "success": self.success,
            "error": self.error,
            "leaseExpiresAt": format_timestamp(self.lease_expires_at),
        }


class SubscriptionLeaseManager:
    """Keep one hub lease per channel and decide whether push can be trusted."""

    def __init__(
        self,
        store: Store,
        hub: HubClient,
        config: HubConfig,
        public_base_url: str,
        callback_path: str,
        callback_token: str | None = None,
        secret: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.hub = hub
        self.config = config
        self.public_base_url = public_base_url.rstrip("/")
        self.callback_path = callback_path
        self.callback_token = callback_token
        self.secret = secret
        self.clock = clock
        self.logger = component_logger("leases")

    # ------------------------------------------------------------------
    def topic_for(self, channel: Channel) -> str:
        if not channel.external_id:
            raise ValidationError(f"Channel {channel.id} has no external id")
        return self.config.topic_template.format(channel_id=channel.external_id)

    def callback_url(self) -> str:
        url = f"{self.public_base_url}{self.callback_path}"
        if self.callback_token:
            url = f"{url}/{self.callback_token}"
        return url

    def channel_for_topic(self, topic: str) -> Channel | None:
        match = TOPIC_CHANNEL.search(topic or "")
        if not match:
            return None
        return self.store.find_channel_by_external_id(match.group(1))

    # ------------------------------------------------------------------
    def subscribe(self, channel: Channel, lease_seconds: int | None = None) -> Subscription:
        topic = self.topic_for(channel)
        callback = self.callback_url()
        lease = lease_seconds or self.config.lease_seconds
        accepted = self.hub.subscribe(topic, callback, lease, secret=self.secret)
        if not accepted:
            raise UpstreamError(f"Hub rejected subscription for channel {channel.id}")
        now = self.clock()
        subscription = Subscription(
            channel_id=channel.id,
            topic_url=topic,
            callback_url=callback,
            status=SubscriptionStatus.SUBSCRIBED,
            lease_expires_at=now + timedelta(seconds=lease),
            last_renewed_at=now,
        )
        self.store.upsert_subscription(subscription)
        self.logger.info(
            "subscribed",
            channel=channel.id,
            lease_expires_at=format_timestamp(subscription.lease_expires_at),
        )
        return subscription

    def subscribe_many(self, channel_ids: Iterable[str] | None = None) -> list[RenewalResult]:
        channels = self.store.list_channels(enabled_only=True, ids=channel_ids)
        return [self._attempt(channel) for channel in channels]

    def renew_expiring(
        self, within_seconds: int | None = None, channel_ids: Iterable[str] | None = None
    ) -> list[RenewalResult]:
        horizon = within_seconds if within_seconds is not None else self.config.renewal_horizon_seconds
        due = self.store.expiring_subscriptions(self.clock() + timedelta(seconds=horizon))
        if channel_ids is not None:
            wanted = {channel.id for channel in self.store.list_channels(ids=channel_ids)}
            due = [sub for sub in due if sub.channel_id in wanted]
        results: list[RenewalResult] = []
        for subscription in due:
            try:
                channel = self.store.get_channel(subscription.channel_id)
            except NotFoundError as exc:
                results.append(RenewalResult(subscription.channel_id, False, str(exc)))
                continue
            results.append(self._attempt(channel))
        self.logger.info(
            "leases_renewed",
            due=len(due),
            renewed=sum(1 for result in results if result.success),
        )
        return results

    def _attempt(self, channel: Channel) -> RenewalResult:
        try:
            subscription = self.subscribe(channel)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("subscribe_failed", channel=channel.id, error=str(exc))
            return RenewalResult(channel.id, False, str(exc))
        return RenewalResult(channel.id, True, None, subscription.lease_expires_at)

    # ------------------------------------------------------------------
    def confirm(self, topic: str, callback_url: str | None, lease_seconds: int) -> Subscription | None:
        """Record a hub-verified subscribe handshake."""

        if lease_seconds <= 0:
            raise ValidationError(f"Lease must be positive, got {lease_seconds}")
        channel = self.channel_for_topic(topic)
        if channel is None:
            self.logger.warning("confirm_unknown_topic", topic=topic)
            return None
        now = self.clock()
        subscription = Subscription(
            channel_id=channel.id,
            topic_url=topic,
            callback_url=callback_url or self.callback_url(),
            status=SubscriptionStatus.SUBSCRIBED,
            lease_expires_at=now + timedelta(seconds=lease_seconds),
            last_renewed_at=now,
        )
        self.store.upsert_subscription(subscription)
        self.logger.info("subscription_confirmed", channel=channel.id, lease_seconds=lease_seconds)
        return subscription

    def mark_unsubscribed(self, topic: str) -> bool:
        channel = self.channel_for_topic(topic)
        if channel is None or self.store.get_subscription(channel.id) is None:
            return False
        self.store.set_subscription_status(channel.id, SubscriptionStatus.UNSUBSCRIBED)
        self.logger.info("subscription_ended", channel=channel.id)
        return True

    def unsubscribe(self, channel: Channel) -> bool:
        topic = self.topic_for(channel)
        accepted = self.hub.unsubscribe(topic, self.callback_url())
        if accepted and self.store.get_subscription(channel.id) is not None:
            self.store.set_subscription_status(channel.id, SubscriptionStatus.PENDING)
        return accepted

    def is_push_trusted(self, channel_id: str) -> bool:
        subscription = self.store.get_subscription(channel_id)
        if subscription is None or subscription.status is not SubscriptionStatus.SUBSCRIBED:
            return False
        return not subscription.expired(self.clock())

    def list_subscriptions(self, status: SubscriptionStatus | None = None) -> list[Subscription]:
        return self.store.list_subscriptions(status)


__all__ = ["RenewalResult", "SubscriptionLeaseManager", "TOPIC_CHANNEL"]
