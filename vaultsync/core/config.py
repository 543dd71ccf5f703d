from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

UpdateHandling = Literal["keep-in-workspace", "archive", "delete"]

ARCHIVE_FOLDER = "obsidian-archive"
TRASH_FOLDER = "obsidian-trash"

PROJECT_ROOT = Path(os.environ.get("VAULTSYNC_HOME", str(Path.home() / ".vaultsync"))).expanduser()
RUNTIME_DIR = PROJECT_ROOT / "runtime"
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config.yaml"
DEFAULT_CONFIG_TEMPLATE_PATH = PROJECT_ROOT / "config.yaml.example"
LAST_RUN_ONCE_PATH = RUNTIME_DIR / "last_run_once.json"
RUN_HISTORY_PATH = RUNTIME_DIR / "run_history.jsonl"
PASS_LOCK_PATH = RUNTIME_DIR / "sync.lock"


class AuthConfig(BaseModel):
    base_url: str = "http://localhost:3001/api"
    api_key: str = ""
    timeout_sec: int = 30


class SyncConfiguration(BaseModel):
    """Immutable snapshot of the sync settings handed to one pass."""

    vault_root: str
    remote_base_folder: str
    synced_folders: tuple[str, ...]
    update_handling: UpdateHandling
    auto_delete_archives: bool
    selected_workspaces: tuple[str, ...]
    include_extensions: tuple[str, ...] = (".md",)
    exclude_dirs: tuple[str, ...] = ()
    exclude_hidden_dirs: bool = True
    exclude_hidden_files: bool = True
    show_notifications: bool = True
    archive_folder: str = ARCHIVE_FOLDER
    trash_folder: str = TRASH_FOLDER

    model_config = {"frozen": True}


class SyncConfig(BaseModel):
    vault_root: str = str(Path.home() / "Obsidian Vault")
    remote_base_folder: str = "Obsidian Vault"
    # "." syncs the whole vault; any other entry is a vault-relative folder.
    synced_folders: list[str] = Field(default_factory=lambda: ["."])
    # What happens to the previous remote document when a file changes:
    # - keep-in-workspace: old and new versions stay attached side by side
    # - archive: detach the old version and move it to the archive folder
    # - delete: detach the old version and move it to the trash folder
    update_handling: UpdateHandling = "archive"
    # Remove the archive and trash folders at the end of every pass.
    auto_delete_archives: bool = False
    # Workspace slugs, in the order documents get attached.
    selected_workspaces: list[str] = Field(default_factory=list)
    auto_sync_enabled: bool = False
    auto_sync_interval_minutes: int = Field(default=5, ge=1, le=1440)
    # Empty list means every file type is uploaded.
    include_extensions: list[str] = Field(default_factory=lambda: [".md"])
    exclude_dirs: list[str] = Field(default_factory=lambda: [".obsidian", ".trash", ".git"])
    exclude_hidden_dirs: bool = True
    exclude_hidden_files: bool = True
    show_notifications: bool = True

    def to_sync_configuration(self) -> SyncConfiguration:
        return SyncConfiguration(
            vault_root=str(Path(self.vault_root).expanduser()),
            remote_base_folder=self.remote_base_folder,
            synced_folders=tuple(self.synced_folders),
            update_handling=self.update_handling,
            auto_delete_archives=self.auto_delete_archives,
            selected_workspaces=tuple(dict.fromkeys(self.selected_workspaces)),
            include_extensions=tuple(self.include_extensions),
            exclude_dirs=tuple(self.exclude_dirs),
            exclude_hidden_dirs=self.exclude_hidden_dirs,
            exclude_hidden_files=self.exclude_hidden_files,
            show_notifications=self.show_notifications,
        )

    def auto_sync_interval_sec(self) -> int:
        """0 when automatic sync is off."""
        if not self.auto_sync_enabled:
            return 0
        return int(self.auto_sync_interval_minutes) * 60


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: str = str(RUNTIME_DIR / "service.log")


class AppConfig(BaseModel):
    auth: AuthConfig = Field(default_factory=AuthConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # Web API
    web_bind_host: str = "127.0.0.1"
    web_port: int = 8765
    web_allowed_nets: list[str] = Field(default_factory=lambda: ["127.0.0.1/32", "::1/128"])


def ensure_runtime_dirs(cfg: AppConfig):
    Path(cfg.logging.file).parent.mkdir(parents=True, exist_ok=True)
    RUNTIME_DIR.mkdir(parents=True, exist_ok=True)


def _dump(cfg: AppConfig) -> str:
    import yaml

    return yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False)


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> AppConfig:
    import yaml

    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        if DEFAULT_CONFIG_TEMPLATE_PATH.exists():
            try:
                template_text = DEFAULT_CONFIG_TEMPLATE_PATH.read_text(encoding="utf-8")
                data = yaml.safe_load(template_text) or {}
                cfg = AppConfig.model_validate(data)
                path.write_text(template_text, encoding="utf-8")
            except Exception:
                cfg = AppConfig()
                path.write_text(_dump(cfg), encoding="utf-8")
        else:
            cfg = AppConfig()
            path.write_text(_dump(cfg), encoding="utf-8")
        ensure_runtime_dirs(cfg)
        return cfg

    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    cfg = AppConfig.model_validate(data)
    ensure_runtime_dirs(cfg)
    return cfg


def save_config(cfg: AppConfig, path: Path = DEFAULT_CONFIG_PATH):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_dump(cfg), encoding="utf-8")
