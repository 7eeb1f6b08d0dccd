"""Notification sinks."""

from contract_watcher.notify.console import ConsoleSink, format_event

__all__ = ["ConsoleSink", "format_event"]
