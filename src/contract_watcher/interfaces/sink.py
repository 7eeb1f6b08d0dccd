"""NotificationSink protocol - receives one notification per processed log."""

from __future__ import annotations

from typing import Protocol

from contract_watcher.models.events import Notification


class NotificationSink(Protocol):
    """Receives EnrichedEvent, DecodeFailure and QueryFailure notifications."""

    async def notify(self, notification: Notification) -> None:
        ...
