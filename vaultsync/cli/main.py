from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from vaultsync.core.config import (
    DEFAULT_CONFIG_PATH,
    load_config,
    save_config,
)
from vaultsync.core.log_tail import build_log_tail_payload
from vaultsync.core.logging_setup import setup_logging
from vaultsync.core.pass_lock import SyncBusyError, pass_lock
from vaultsync.core.run_history import load_latest_run, record_run
from vaultsync.core.service import build_client, build_sync_engine

app = typer.Typer(add_completion=False, help="Sync a local note vault into AnythingLLM.")
console = Console()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


@app.callback()
def _main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override the configured log level."),
):
    cfg = load_config()
    setup_logging(log_level or cfg.logging.level, cfg.logging.file)


@app.command("config-show")
def config_show(path: Path = DEFAULT_CONFIG_PATH):
    """Show current config.yaml (API key masked)."""
    cfg = load_config(path)
    data = cfg.model_dump()
    data["auth"]["api_key"] = "***" if cfg.auth.api_key else ""
    _print_json(data)


@app.command("config-set-auth")
def config_set_auth(
    base_url: str = typer.Option(..., "--base-url", help="AnythingLLM API base, e.g. http://localhost:3001/api"),
    api_key: str = typer.Option(..., "--api-key", help="AnythingLLM developer API key"),
    timeout_sec: int = typer.Option(30, "--timeout-sec", min=1),
):
    """Set AnythingLLM connection settings."""
    cfg = load_config()
    cfg.auth.base_url = base_url
    cfg.auth.api_key = api_key
    cfg.auth.timeout_sec = timeout_sec
    save_config(cfg)
    _print_json({"ok": True, "base_url": cfg.auth.base_url, "api_key_set": bool(cfg.auth.api_key)})


@app.command("config-set-sync")
def config_set_sync(
    vault_root: Optional[Path] = typer.Option(None, "--vault-root"),
    remote_base_folder: Optional[str] = typer.Option(None, "--remote-folder"),
    folder: Optional[list[str]] = typer.Option(None, "--folder", help="Synced vault folder; repeat. '.' = whole vault."),
    workspace: Optional[list[str]] = typer.Option(None, "--workspace", help="Workspace slug; repeat."),
    update_handling: Optional[str] = typer.Option(None, "--update-handling", help="keep-in-workspace, archive or delete."),
    auto_delete_archives: Optional[bool] = typer.Option(None, "--auto-delete-archives/--keep-archives"),
    auto_sync: Optional[bool] = typer.Option(None, "--auto-sync/--no-auto-sync"),
    interval_minutes: Optional[int] = typer.Option(None, "--interval-minutes", min=1),
):
    """Update sync settings; omitted options keep their current value."""
    cfg = load_config()
    updates: dict[str, Any] = {}
    if vault_root is not None:
        updates["vault_root"] = str(vault_root.expanduser())
    if remote_base_folder is not None:
        updates["remote_base_folder"] = remote_base_folder
    if folder:
        updates["synced_folders"] = list(folder)
    if workspace is not None:
        updates["selected_workspaces"] = list(workspace)
    if update_handling is not None:
        updates["update_handling"] = update_handling
    if auto_delete_archives is not None:
        updates["auto_delete_archives"] = auto_delete_archives
    if auto_sync is not None:
        updates["auto_sync_enabled"] = auto_sync
    if interval_minutes is not None:
        updates["auto_sync_interval_minutes"] = interval_minutes

    merged = cfg.model_dump()
    merged["sync"].update(updates)
    try:
        cfg2 = cfg.model_validate(merged)
    except ValueError as e:
        _print_json({"ok": False, "error": f"invalid_config: {e}"})
        raise typer.Exit(2)
    save_config(cfg2)
    _print_json({"ok": True, "updated": sorted(updates), "sync": cfg2.sync.model_dump()})


@app.command("config-validate")
def config_validate(
    path: Path = DEFAULT_CONFIG_PATH,
    strict: bool = typer.Option(False, "--strict", help="Return non-zero when validation fails."),
):
    """Validate config and local prerequisites."""
    out: dict[str, Any] = {
        "ok": True,
        "checked_at": _now_iso(),
        "config_path": str(path),
        "checks": {
            "config_exists": path.exists(),
            "api_key_configured": False,
            "vault_root_exists": False,
            "synced_folders_exist": False,
            "workspaces_selected": False,
            "web_port_valid": False,
        },
        "warnings": [],
        "errors": [],
    }

    try:
        cfg = load_config(path)
    except Exception as e:
        out["ok"] = False
        out["errors"].append(f"load_config_failed: {e}")
        _print_json(out)
        if strict:
            raise typer.Exit(2)
        return

    out["checks"]["api_key_configured"] = bool(cfg.auth.api_key)
    if not cfg.auth.api_key:
        out["errors"].append("api_key_missing")

    vault = Path(cfg.sync.vault_root).expanduser()
    out["checks"]["vault_root_exists"] = vault.is_dir()
    if not vault.is_dir():
        out["errors"].append(f"vault_root_missing: {vault}")
    else:
        missing = [f for f in cfg.sync.synced_folders if f.strip() not in (".", "") and not (vault / f).is_dir()]
        out["checks"]["synced_folders_exist"] = not missing
        for f in missing:
            out["warnings"].append(f"synced_folder_missing: {f}")

    out["checks"]["workspaces_selected"] = bool(cfg.sync.selected_workspaces)
    if not cfg.sync.selected_workspaces:
        out["warnings"].append("no_workspaces_selected: documents will be uploaded but not embedded")

    port = int(cfg.web_port)
    out["checks"]["web_port_valid"] = 1 <= port <= 65535
    if not out["checks"]["web_port_valid"]:
        out["errors"].append(f"web_port_out_of_range: {port}")

    out["ok"] = len(out["errors"]) == 0
    _print_json(out)
    if strict and not out["ok"]:
        raise typer.Exit(2)


@app.command()
def status():
    """Show configuration and last run summary."""
    cfg = load_config()
    last = load_latest_run() or {}

    table = Table(title="vaultsync status")
    table.add_column("Key")
    table.add_column("Value")
    table.add_row("config", str(DEFAULT_CONFIG_PATH))
    table.add_row("base_url", cfg.auth.base_url)
    table.add_row("api_key", "set" if cfg.auth.api_key else "(unset)")
    table.add_row("vault_root", cfg.sync.vault_root)
    table.add_row("remote_folder", cfg.sync.remote_base_folder)
    table.add_row("synced_folders", ", ".join(cfg.sync.synced_folders))
    table.add_row("workspaces", ", ".join(cfg.sync.selected_workspaces) or "(none)")
    table.add_row("update_handling", cfg.sync.update_handling)
    table.add_row("auto_delete_archives", "yes" if cfg.sync.auto_delete_archives else "no")
    table.add_row(
        "auto_sync",
        f"every {cfg.sync.auto_sync_interval_minutes} min" if cfg.sync.auto_sync_enabled else "off",
    )
    table.add_row("last_run", str(last.get("finished_at") or "-"))
    table.add_row("last_run_errors", str(last.get("errors", "-")))
    table.add_row("log", cfg.logging.file)
    table.add_row("web", f"http://{cfg.web_bind_host}:{cfg.web_port}")
    console.print(table)


@app.command("auth-test")
def auth_test():
    """Check the configured API key against AnythingLLM."""
    client = build_client(load_config())
    try:
        result = client.test_auth()
    except RuntimeError as e:
        _print_json({"ok": False, "error": str(e)})
        raise typer.Exit(2)
    _print_json({"ok": bool(result.get("authenticated")), **result})
    if not result.get("authenticated"):
        raise typer.Exit(2)


@app.command()
def workspaces():
    """List workspaces and mark the selected ones."""
    cfg = load_config()
    try:
        items = build_client(cfg).list_workspaces()
    except RuntimeError as e:
        _print_json({"ok": False, "error": str(e)})
        raise typer.Exit(2)

    selected = set(cfg.sync.selected_workspaces)
    table = Table(title="AnythingLLM workspaces")
    table.add_column("Slug")
    table.add_column("Name")
    table.add_column("Selected")
    for ws in items:
        table.add_row(ws["slug"], ws["name"], "yes" if ws["slug"] in selected else "")
    console.print(table)


@app.command("run-once")
def run_once(
    dry_run: bool = typer.Option(False, "--dry-run", help="List what would change; no remote writes."),
    run_type: str = typer.Option("manual_cli", "--run-type", help="Label stored with the run summary."),
):
    """Run one sync pass and print its summary JSON."""
    _cfg, engine = build_sync_engine()
    if dry_run:
        summary = engine.run_once(run_type=run_type, dry_run=True)
    else:
        try:
            with pass_lock():
                summary = engine.run_once(run_type=run_type)
        except SyncBusyError as e:
            _print_json({"ok": False, "error": str(e)})
            raise typer.Exit(2)
        record_run(summary)
    _print_json(summary)
    if summary.get("fatal_error") or int(summary.get("errors", 0)) > 0:
        raise typer.Exit(2)


@app.command("purge-archives")
def purge_archives():
    """Remove the archive and trash folders now."""
    _cfg, engine = build_sync_engine()
    summary: dict[str, Any] = {"purged": [], "errors": 0, "failures": []}
    try:
        with pass_lock():
            engine.purge_disposal_namespaces(summary)
    except SyncBusyError as e:
        _print_json({"ok": False, "error": str(e)})
        raise typer.Exit(2)
    _print_json(summary)
    if summary["errors"]:
        raise typer.Exit(2)


@app.command("logs-tail")
def logs_tail(
    n: int = typer.Option(200, "--n", min=1),
    level: Optional[str] = typer.Option(None, "--level", help="Filter by log level (e.g. INFO)."),
    module: Optional[str] = typer.Option(None, "--module", help="Filter by logger name (e.g. sync)."),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON."),
):
    """Tail the service log file."""
    cfg = load_config()
    payload = build_log_tail_payload(cfg.logging.file, n=n, level=level, module=module)
    if json_output:
        _print_json(payload)
        return
    print(payload.get("tail", ""))


@app.command()
def serve():
    """Run the web API with the auto-sync scheduler."""
    from vaultsync.web.main import main as web_main

    web_main()


def main():
    app()


if __name__ == "__main__":
    main()
