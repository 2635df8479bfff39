"""WebSub hub client issuing subscribe/unsubscribe requests."""

from __future__ import annotations

import httpx

from ..config.models import HubConfig
from ..errors import UpstreamError
from ..logging_conf import component_logger
from ..ports import HubClient

ACCEPTED_STATUSES = (202, 204)


class WebSubHubClient(HubClient):
    """Form-encoded requests against a PubSubHubbub hub."""

    def __init__(self, config: HubConfig, client: httpx.Client | None = None) -> None:
        self.hub_url = config.hub_url
        self._client = client or httpx.Client(timeout=config.timeout_seconds)
        self.logger = component_logger("hub")

    def close(self) -> None:
        self._client.close()

    def subscribe(
        self, topic_url: str, callback_url: str, lease_seconds: int, secret: str | None = None
    ) -> bool:
        form = {
            "hub.mode": "subscribe",
            "hub.topic": topic_url,
            "hub.callback": callback_url,
            "hub.lease_seconds": str(lease_seconds),
            "hub.verify": "async",
        }
        if secret:
            form["hub.secret"] = secret
        return self._send(form)

    def unsubscribe(self, topic_url: str, callback_url: str) -> bool:
        return self._send(
            {
                "hub.mode": "unsubscribe",
                "hub.topic": topic_url,
                "hub.callback": callback_url,
                "hub.verify": "async",
            }
        )

    def _send(self, form: dict[str, str]) -> bool:
        try:
            response = self._client.post(self.hub_url, data=form)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Hub request failed: {exc}") from exc
        accepted = response.status_code in ACCEPTED_STATUSES
        log = self.logger.info if accepted else self.logger.warning
        log(
            "hub_response",
            mode=form["hub.mode"],
            topic=form["hub.topic"],
            status=response.status_code,
            body=None if accepted else response.text[:200],
        )
        return accepted


__all__ = ["ACCEPTED_STATUSES", "WebSubHubClient"]
