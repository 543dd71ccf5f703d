from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Optional

from vaultsync.core import config as config_module
from vaultsync.core.config import AppConfig
from vaultsync.core.pass_lock import pass_lock
from vaultsync.core.run_history import record_run
from vaultsync.providers.anythingllm import AnythingLLMClient, SyncEngine

RECENT_NOTIFICATIONS: deque[dict[str, str]] = deque(maxlen=100)


def log_func(level: str, module: str, message: str, detail: Optional[str] = None):
    logging.getLogger(module).log(
        getattr(logging, level.upper(), logging.INFO),
        f"{message} {detail or ''}".strip(),
    )


def notify(message: str) -> None:
    """Notification sink: log it and keep it for the web API."""
    RECENT_NOTIFICATIONS.append({"at": datetime.now(timezone.utc).isoformat(), "message": message})
    logging.getLogger("notify").info(message)


def build_client(cfg: AppConfig) -> AnythingLLMClient:
    return AnythingLLMClient(
        base_url=cfg.auth.base_url,
        api_key=cfg.auth.api_key,
        timeout=int(cfg.auth.timeout_sec),
    )


def build_sync_engine(cfg: AppConfig | None = None) -> tuple[AppConfig, SyncEngine]:
    if cfg is None:
        cfg = config_module.load_config()
    engine = SyncEngine(cfg.sync.to_sync_configuration(), build_client(cfg), log_func, notify)
    return cfg, engine


def run_sync_once_and_record(run_type: str, dry_run: bool = False) -> dict:
    """Run one pass against freshly loaded settings and persist the summary.

    Raises ``SyncBusyError`` when another process is mid-pass. Dry runs only
    read, so they skip the lock.
    """
    _cfg, engine = build_sync_engine()
    if dry_run:
        return engine.run_once(run_type=run_type, dry_run=True)
    with pass_lock():
        summary = engine.run_once(run_type=run_type)
    record_run(summary)
    return summary
