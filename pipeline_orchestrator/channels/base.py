"""Abstract base class for notification channels."""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, kw_only=True)
class NotificationChannel(ABC):
    """Delivery mechanism for notification payloads."""

    @abstractmethod
    async def send(self, webhook_url: str, payload: Mapping[str, Any]) -> None:
        """Deliver a payload.

        Raises:
            NotificationDeliveryFailure: If the receiver rejected the payload

        """
