"""Configuration loading: TOML file + environment variables."""

from __future__ import annotations

import os
from pathlib import Path

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:
    import tomli as tomllib  # type: ignore[no-redef]

from contract_watcher.errors import ConfigError
from contract_watcher.models.config import WatcherConfig


def _optional_float(value: object) -> float | None:
    """TOML has no null; 0 or false disables keepalive pings."""
    if value in (0, False):
        return None
    return float(value)  # type: ignore[arg-type]


def load_config(
    config_path: str | Path | None = None,
    env_prefix: str = "",
) -> WatcherConfig:
    """Load watcher configuration from a TOML file and env vars.

    Priority (highest wins):
        1. Environment variables (NODE_URL, CONTRACT_ADDRESS, ...)
        2. TOML config file
        3. Defaults from WatcherConfig

    Only parsing happens here; ``WatcherConfig.endpoint()`` validates.
    """
    raw: dict = {}
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            try:
                with open(p, "rb") as f:
                    raw = tomllib.load(f)
            except tomllib.TOMLDecodeError as exc:
                raise ConfigError(f"cannot parse {p}: {exc}") from exc

    cfg = WatcherConfig()

    try:
        # ── Daemon section ─────────────────────────────────────
        daemon = raw.get("daemon", {})
        if v := daemon.get("log_level"):
            cfg.log_level = str(v)

        # ── Node section ───────────────────────────────────────
        node = raw.get("node", {})
        if v := node.get("url"):
            cfg.node_url = str(v)
        if (v := node.get("retry_delay")) is not None:
            cfg.retry_delay = float(v)
        if v := node.get("open_timeout"):
            cfg.open_timeout = float(v)
        if v := node.get("request_timeout"):
            cfg.request_timeout = float(v)
        if "ping_interval" in node:
            cfg.ping_interval = _optional_float(node["ping_interval"])
        if "ping_timeout" in node:
            cfg.ping_timeout = _optional_float(node["ping_timeout"])

        # ── Contract section ───────────────────────────────────
        contract = raw.get("contract", {})
        if v := contract.get("address"):
            cfg.contract_address = str(v)
        if v := contract.get("event_signature"):
            cfg.event_signature = str(v)

        # ── Storage section ────────────────────────────────────
        storage = raw.get("storage", {})
        if v := storage.get("checkpoint_path"):
            cfg.checkpoint_path = str(v)
        cfg.catch_up = bool(storage.get("catch_up", False))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid value in config file: {exc}") from exc

    # ── Environment variable overrides (highest priority) ──
    if url := os.environ.get(f"{env_prefix}NODE_URL"):
        cfg.node_url = url
    if address := os.environ.get(f"{env_prefix}CONTRACT_ADDRESS"):
        cfg.contract_address = address
    if signature := os.environ.get(f"{env_prefix}EVENT_SIGNATURE"):
        cfg.event_signature = signature
    if path := os.environ.get(f"{env_prefix}CHECKPOINT_PATH"):
        cfg.checkpoint_path = path

    # Expand ~ in paths
    if cfg.checkpoint_path and cfg.checkpoint_path != ":memory:":
        cfg.checkpoint_path = str(Path(cfg.checkpoint_path).expanduser())

    return cfg
