from pathlib import Path

from fastapi import FastAPI
from fastapi.testclient import TestClient

from vaultsync.core import config as config_module
from vaultsync.core.config import AppConfig
from vaultsync.core.pass_lock import SyncBusyError
from vaultsync.core.scheduler import SyncScheduler
from vaultsync.web import api as api_module


def _summary(run_type: str, **extra) -> dict:
    return {"run_type": run_type, "errors": 0, "created": 1, "updated": 0, "deleted": 0, **extra}


def _build_client(scheduler: SyncScheduler | None = None) -> TestClient:
    app = FastAPI()
    app.state.scheduler = scheduler
    app.include_router(api_module.router)
    return TestClient(app)


def test_healthz_returns_alive():
    client = _build_client()
    resp = client.get("/api/healthz")
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["ok"] is True
    assert payload["status"] == "alive"
    assert "checked_at" in payload


def test_readyz_returns_200_when_checks_pass(monkeypatch, tmp_path: Path):
    cfg = AppConfig()
    cfg.sync.vault_root = str(tmp_path)
    cfg.logging.file = str(tmp_path / "runtime" / "service.log")
    cfg.auth.api_key = "secret"
    monkeypatch.setattr(api_module, "load_config", lambda: cfg)

    client = _build_client(SyncScheduler(_summary, lambda: 0))
    resp = client.get("/api/readyz")
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["ok"] is True
    assert payload["checks"]["config_load"] is True
    assert payload["checks"]["api_key_configured"] is True
    assert payload["checks"]["vault_root_exists"] is True
    assert payload["checks"]["log_parent_ready"] is True
    assert payload["errors"] == []


def test_readyz_returns_503_when_vault_missing(monkeypatch, tmp_path: Path):
    cfg = AppConfig()
    cfg.sync.vault_root = str(tmp_path / "missing")
    cfg.logging.file = str(tmp_path / "runtime" / "service.log")
    monkeypatch.setattr(api_module, "load_config", lambda: cfg)

    resp = _build_client().get("/api/readyz")
    assert resp.status_code == 503
    payload = resp.json()
    assert payload["checks"]["vault_root_exists"] is False
    assert "api_key_missing" in payload["warnings"]
    assert any("vault_root_missing" in err for err in payload["errors"])


def test_readyz_returns_503_when_config_load_fails(monkeypatch):
    def _raise_load_config():
        raise RuntimeError("boom")

    monkeypatch.setattr(api_module, "load_config", _raise_load_config)

    resp = _build_client().get("/api/readyz")
    assert resp.status_code == 503
    payload = resp.json()
    assert payload["ok"] is False
    assert payload["checks"]["config_load"] is False
    assert any("config_load_failed" in err for err in payload["errors"])


def test_get_config_masks_api_key(monkeypatch):
    cfg = AppConfig()
    cfg.auth.api_key = "secret"
    monkeypatch.setattr(api_module, "load_config", lambda: cfg)

    payload = _build_client().get("/api/config").json()

    assert payload["auth"]["api_key"] == "***"
    assert payload["_scheduler"]["auto_sync_enabled"] is False


def test_post_config_keeps_masked_api_key(monkeypatch, tmp_path: Path):
    cfg = AppConfig()
    cfg.auth.api_key = "secret"
    saved: list[AppConfig] = []
    monkeypatch.setattr(api_module, "load_config", lambda: cfg)
    monkeypatch.setattr(api_module, "save_config", lambda new_cfg: saved.append(new_cfg))

    resp = _build_client().post(
        "/api/config",
        json={"auth": {"api_key": "***"}, "sync": {"update_handling": "delete", "selected_workspaces": ["notes"]}},
    )

    assert resp.status_code == 200
    assert saved[0].auth.api_key == "secret"
    assert saved[0].sync.update_handling == "delete"
    assert saved[0].sync.selected_workspaces == ["notes"]


def test_post_config_rejects_invalid_values(monkeypatch):
    monkeypatch.setattr(api_module, "load_config", lambda: AppConfig())
    monkeypatch.setattr(api_module, "save_config", lambda _cfg: None)

    resp = _build_client().post("/api/config", json={"sync": {"update_handling": "shred"}})

    assert resp.status_code == 400


def test_sync_run_returns_summary(monkeypatch, tmp_path: Path):
    monkeypatch.setattr(config_module, "RUN_HISTORY_PATH", tmp_path / "run_history.jsonl")
    monkeypatch.setattr(config_module, "LAST_RUN_ONCE_PATH", tmp_path / "last_run_once.json")
    runs: list[str] = []

    def _run(run_type):
        runs.append(run_type)
        return _summary(run_type)

    client = _build_client(SyncScheduler(_run, lambda: 0))
    resp = client.post("/api/sync/run")

    assert resp.status_code == 200
    assert resp.json()["created"] == 1
    assert runs == ["manual_api"]

    status = client.get("/api/sync/status").json()
    assert status["scheduler"]["last_result"] == "success"
    assert status["scheduler"]["run_count"] == 1


def test_sync_run_returns_409_when_busy():
    scheduler = SyncScheduler(_summary, lambda: 0)
    client = _build_client(scheduler)

    scheduler._run_lock.acquire()
    try:
        resp = client.post("/api/sync/run")
    finally:
        scheduler._run_lock.release()

    assert resp.status_code == 409
    assert resp.json()["detail"] == "sync_busy"


def test_sync_run_returns_502_on_fatal_error():
    scheduler = SyncScheduler(lambda rt: _summary(rt, errors=1, fatal_error="list_folder_failed"), lambda: 0)

    resp = _build_client(scheduler).post("/api/sync/run")

    assert resp.status_code == 502
    assert resp.json()["fatal_error"] == "list_folder_failed"


def test_sync_status_without_scheduler_is_503():
    resp = _build_client().get("/api/sync/status")
    assert resp.status_code == 503


def test_sync_run_returns_409_when_another_process_holds_the_pass_lock():
    def _run(_run_type):
        raise SyncBusyError("/tmp/sync.lock")

    resp = _build_client(SyncScheduler(_run, lambda: 0)).post("/api/sync/run")

    assert resp.status_code == 409
