from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from vaultsync.core.config import load_config, save_config
from vaultsync.core.log_tail import build_log_tail_payload
from vaultsync.core.run_history import load_latest_run, read_run_history
from vaultsync.core.scheduler import BUSY_SUMMARY_KEY, SyncScheduler
from vaultsync.core.service import RECENT_NOTIFICATIONS, build_client

router = APIRouter(prefix="/api")
logger = logging.getLogger("api")

CONFIG_SECTIONS = ("auth", "sync", "logging")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _scheduler(request: Request) -> SyncScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="scheduler_not_configured")
    return scheduler


def _masked(cfg) -> dict:
    data = cfg.model_dump()
    data["auth"]["api_key"] = "***" if cfg.auth.api_key else ""
    return data


def _build_readiness_payload(scheduler: SyncScheduler | None) -> dict:
    checks: dict[str, bool] = {
        "config_load": False,
        "api_key_configured": False,
        "vault_root_exists": False,
        "log_parent_ready": False,
        "scheduler_running": False,
        "scheduler_enabled": False,
    }
    warnings: list[str] = []
    errors: list[str] = []
    snapshot = scheduler.snapshot() if scheduler is not None else {}
    checks["scheduler_running"] = bool(snapshot.get("running"))
    checks["scheduler_enabled"] = bool(snapshot.get("enabled"))

    cfg = None
    try:
        cfg = load_config()
        checks["config_load"] = True
    except Exception as e:
        errors.append(f"config_load_failed: {e}")

    if cfg is not None:
        checks["api_key_configured"] = bool(cfg.auth.api_key)
        if not checks["api_key_configured"]:
            warnings.append("api_key_missing")

        checks["vault_root_exists"] = Path(cfg.sync.vault_root).expanduser().is_dir()
        if not checks["vault_root_exists"]:
            errors.append(f"vault_root_missing: {cfg.sync.vault_root}")

        try:
            Path(cfg.logging.file).parent.mkdir(parents=True, exist_ok=True)
            checks["log_parent_ready"] = True
        except OSError as e:
            errors.append(f"log_parent_unavailable: {e}")

    if checks["scheduler_enabled"] and not checks["scheduler_running"]:
        warnings.append("scheduler_enabled_but_not_running")

    ok = checks["config_load"] and checks["vault_root_exists"] and checks["log_parent_ready"]
    return {
        "ok": ok,
        "checked_at": _now_iso(),
        "checks": checks,
        "warnings": warnings,
        "errors": errors,
        "scheduler": snapshot,
    }


@router.get("/healthz")
def healthz():
    return {
        "ok": True,
        "status": "alive",
        "checked_at": _now_iso(),
    }


@router.get("/readyz")
def readyz(request: Request):
    payload = _build_readiness_payload(getattr(request.app.state, "scheduler", None))
    return JSONResponse(status_code=200 if payload["ok"] else 503, content=payload)


@router.get("/config")
def get_config():
    cfg = load_config()
    return {
        **_masked(cfg),
        "_scheduler": {
            "auto_sync_enabled": cfg.sync.auto_sync_enabled,
            "interval_sec": cfg.sync.auto_sync_interval_sec(),
        },
    }


@router.post("/config")
def update_config(payload: dict):
    cfg = load_config()
    merged = cfg.model_dump()

    for key, value in payload.items():
        if key in CONFIG_SECTIONS and isinstance(value, dict):
            if key == "auth" and value.get("api_key") == "***":
                value = {k: v for k, v in value.items() if k != "api_key"}
            merged.setdefault(key, {})
            merged[key].update(value)
        else:
            merged[key] = value

    try:
        cfg2 = cfg.model_validate(merged)
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"invalid_config: {e}")
    save_config(cfg2)
    logger.info("config_updated sections=%s", sorted(payload.keys()))
    return {"ok": True, "config": _masked(cfg2)}


@router.post("/sync/run")
def sync_run(request: Request):
    summary = _scheduler(request).run_pass("manual_api")
    if summary.get(BUSY_SUMMARY_KEY):
        raise HTTPException(status_code=409, detail="sync_busy")
    status = 200 if not summary.get("fatal_error") else 502
    return JSONResponse(status_code=status, content=summary)


@router.get("/sync/status")
def sync_status(request: Request):
    return {
        "checked_at": _now_iso(),
        "scheduler": _scheduler(request).snapshot(),
        "last_run": load_latest_run(),
    }


@router.get("/sync/history")
def sync_history(limit: int = 20):
    limit = min(max(int(limit), 1), 500)
    items = read_run_history(limit=limit)
    return {"count": len(items), "items": items}


@router.get("/notifications")
def notifications(limit: int = 50):
    items = list(RECENT_NOTIFICATIONS)[-limit:] if limit > 0 else []
    return {"count": len(items), "items": list(reversed(items))}


@router.get("/workspaces")
def workspaces():
    cfg = load_config()
    client = build_client(cfg)
    try:
        items = client.list_workspaces()
    except RuntimeError as e:
        raise HTTPException(status_code=502, detail=str(e))
    selected = set(cfg.sync.selected_workspaces)
    return {
        "count": len(items),
        "items": [{**ws, "selected": ws["slug"] in selected} for ws in items],
    }


@router.get("/logs/tail")
def logs_tail(n: int = 200, level: str | None = None, module: str | None = None):
    cfg = load_config()
    return build_log_tail_payload(cfg.logging.file, n=min(max(int(n), 1), 5000), level=level, module=module)
