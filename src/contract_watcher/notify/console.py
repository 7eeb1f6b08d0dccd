"""Console notification sink - prints each notification as a text block."""

from __future__ import annotations

import logging

import click

from contract_watcher.models.events import (
    DecodeFailure,
    EnrichedEvent,
    Notification,
    QueryFailure,
)

log = logging.getLogger(__name__)


def format_event(notification: EnrichedEvent) -> str:
    """Render an enriched event; replayed events get a plain header."""
    header = (
        "======= Event ======="
        if notification.event.historical
        else "===== Event Detected ====="
    )
    value = notification.value if notification.value is not None else "(unavailable)"
    return "\n".join([
        "",
        header,
        f"Transaction: {notification.tx_hash}",
        f"Block: {notification.block_number}",
        f"Sender: {notification.sender}",
        f"New Value: {value}",
        "==========================",
        "",
    ])


class ConsoleSink:
    """NotificationSink that writes events to stdout and failures to stderr."""

    def __init__(self, echo=click.echo) -> None:
        self._echo = echo

    async def notify(self, notification: Notification) -> None:
        if isinstance(notification, EnrichedEvent):
            self._echo(format_event(notification))
        elif isinstance(notification, DecodeFailure):
            record = notification.record
            self._echo(
                f"Could not decode log in tx {record.tx_hash} "
                f"(block {record.block_number}): {notification.error}",
                err=True,
            )
        elif isinstance(notification, QueryFailure):
            self._echo(
                f"Could not read contract state for tx {notification.event.tx_hash} "
                f"at block {notification.event.block_number}: {notification.error}",
                err=True,
            )
        else:
            log.warning("Unknown notification type: %s", type(notification).__name__)
