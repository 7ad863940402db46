"""Slack incoming-webhook channel."""

import logging
from collections.abc import AsyncGenerator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from pipeline_orchestrator.channels.base import NotificationChannel
from pipeline_orchestrator.errors import NotificationDeliveryFailure

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class SlackWebhookChannel(NotificationChannel):
    """Posts JSON payloads to Slack incoming webhooks."""

    session: aiohttp.ClientSession = field(repr=False)

    @classmethod
    @asynccontextmanager
    async def create(
        cls, timeout: float = 10
    ) -> AsyncGenerator["SlackWebhookChannel", None]:
        """Create channel with managed session lifecycle."""
        async with aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=timeout)
        ) as session:
            yield cls(session=session)

    async def send(self, webhook_url: str, payload: Mapping[str, Any]) -> None:
        """Post the payload to the webhook."""
        try:
            async with self.session.post(webhook_url, json=dict(payload)) as response:
                if response.status >= 300:
                    text = await response.text()
                    raise NotificationDeliveryFailure(
                        f"Webhook rejected notification: {response.status} {text}"
                    )
        except aiohttp.ClientError as e:
            raise NotificationDeliveryFailure(f"Webhook unreachable: {e}") from e
