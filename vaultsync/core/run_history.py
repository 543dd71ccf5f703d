"""Persist pass summaries for the CLI and the web API."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from vaultsync.core import config as config_module


def record_run(summary: dict[str, Any]) -> None:
    """Store ``summary`` as the latest run and append it to the history log."""
    last_path: Path = config_module.LAST_RUN_ONCE_PATH
    history_path: Path = config_module.RUN_HISTORY_PATH

    last_path.parent.mkdir(parents=True, exist_ok=True)
    last_path.write_text(json.dumps(summary, ensure_ascii=False, indent=2), encoding="utf-8")

    history_path.parent.mkdir(parents=True, exist_ok=True)
    with history_path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(summary, ensure_ascii=False))
        f.write("\n")


def read_run_history(limit: int = 50) -> list[dict]:
    """Newest first."""
    history_path: Path = config_module.RUN_HISTORY_PATH
    if limit <= 0 or not history_path.exists():
        return []

    lines = history_path.read_text(encoding="utf-8", errors="replace").splitlines()
    out: list[dict] = []
    for line in reversed(lines):
        if len(out) >= limit:
            break
        raw = line.strip()
        if not raw:
            continue
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            payload = {"raw": raw, "parse_error": True}
        if isinstance(payload, dict):
            out.append(payload)
    return out


def load_latest_run() -> dict | None:
    last_path: Path = config_module.LAST_RUN_ONCE_PATH
    if last_path.exists():
        try:
            payload = json.loads(last_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            payload = None
        if isinstance(payload, dict):
            return payload

    items = read_run_history(limit=1)
    return items[0] if items else None
