"""contract_watcher - resilient listener for a single smart-contract event."""

__version__ = "0.1.0"
