import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

from vaultsync.core.config import SyncConfiguration

from .inventory import (
    LocalFileRecord,
    RemoteFileRecord,
    build_local_inventory,
    build_remote_inventory,
)
from .naming import document_path, mangle
from .reconciler import Classification, reconcile

LogFunc = Callable[[str, str, str, Optional[str]], None]
Notifier = Callable[[str], None]


def now_iso():
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _detail(**kwargs) -> str:
    return json.dumps(kwargs, ensure_ascii=False)


class SyncEngine:
    """Run one-way sync passes from a vault into an AnythingLLM folder.

    A pass lists both sides, classifies every key, then walks the create,
    update and delete phases one file at a time. Only a failure to list the
    remote folder (or a missing vault) aborts a pass, and it does so before
    anything is written. Every other failure is recorded against its file and
    the pass moves on.
    """

    def __init__(
        self,
        config: SyncConfiguration,
        client,
        log_func: LogFunc,
        notify: Optional[Notifier] = None,
    ):
        self.config = config
        self.client = client
        self.log_func = log_func
        self.notify = notify
        self.base_folder = config.remote_base_folder
        self.workspaces = list(config.selected_workspaces)
        self._ensured_folders: set[str] = set()

    def _log(self, level: str, module: str, message: str, detail: Optional[str] = None):
        self.log_func(level, module, message, detail)

    def _notify(self, message: str):
        if not self.config.show_notifications or self.notify is None:
            return
        try:
            self.notify(message)
        except Exception as e:
            self._log("WARN", "notify", "notify_failed", _detail(error=str(e)))

    def _fail(self, summary: dict, phase: str, key: str, error: Exception):
        summary["errors"] += 1
        summary["failures"].append({"phase": phase, "key": key, "error": str(error)})
        self._log("ERROR", "sync", f"{phase}_failed", _detail(key=key, error=str(error)))
        self._notify(f"Sync: {phase} failed for {key}: {error}")

    # Bootstrap / cleanup

    def ensure_namespace(self, name: str) -> bool:
        """Create remote folder ``name`` unless it exists. True when created."""
        if name in self._ensured_folders:
            return False
        created = self.client.create_folder(name)
        self._ensured_folders.add(name)
        if created:
            self._log("INFO", "sync", "remote_folder_created", _detail(folder=name))
        return created

    def purge_disposal_namespaces(self, summary: dict) -> None:
        for folder in (self.config.archive_folder, self.config.trash_folder):
            try:
                removed = self.client.remove_folder(folder)
            except Exception as e:
                self._fail(summary, "purge", folder, e)
                continue
            self._ensured_folders.discard(folder)
            if removed:
                summary["purged"].append(folder)
                self._log("INFO", "sync", "disposal_folder_purged", _detail(folder=folder))

    # Per-document steps

    def _attach(self, doc_path: str, attached: List[str]):
        for slug in self.workspaces:
            self.client.update_workspace_embeddings(slug, adds=[doc_path])
            attached.append(slug)

    def _detach(self, doc_paths: List[str]):
        for slug in self.workspaces:
            self.client.update_workspace_embeddings(slug, deletes=list(doc_paths))

    def _upload(self, record: LocalFileRecord) -> str:
        """Upload one local file; return the new document's storage path."""
        content = Path(record.source_path).read_bytes()
        uploaded = self.client.upload_document(self.base_folder, mangle(record.rel_path), content)
        doc = uploaded["documents"][0]
        location = doc.get("location")
        if location:
            return str(location)
        name = doc.get("name")
        if not name:
            raise RuntimeError("upload_no_document_name")
        return document_path(self.base_folder, str(name))

    def _publish(self, key: str, record: LocalFileRecord, phase: str, summary: dict) -> Optional[str]:
        """Upload and attach one file; None when either step failed.

        A document that uploaded but could not be attached everywhere is
        detached again and moved to the trash, so the key still looks stale
        on the next pass and gets retried.
        """
        try:
            doc_path = self._upload(record)
        except Exception as e:
            self._fail(summary, phase, key, e)
            return None

        attached: List[str] = []
        try:
            self._attach(doc_path, attached)
        except Exception as e:
            self._fail(summary, phase, key, e)
            self._discard_upload(key, doc_path, attached, summary)
            return None
        return doc_path

    def _discard_upload(self, key: str, doc_path: str, attached: List[str], summary: dict):
        trash = self.config.trash_folder
        name = doc_path.rsplit("/", 1)[-1]
        try:
            self.ensure_namespace(trash)
            for slug in attached:
                self.client.update_workspace_embeddings(slug, deletes=[doc_path])
            self.client.move_documents([{"from": doc_path, "to": document_path(trash, name)}])
        except Exception as e:
            self._fail(summary, "discard", key, e)
            return
        self._log("WARN", "sync", "partial_upload_discarded", _detail(key=key, document=doc_path, attached=attached))

    def _dispose(self, remote: RemoteFileRecord, target_folder: str):
        """Detach every version of ``remote`` and move them to ``target_folder``."""
        names = [remote.remote_name, *remote.superseded_names]
        self.ensure_namespace(target_folder)
        self._detach([document_path(self.base_folder, n) for n in names])
        self.client.move_documents(
            [
                {"from": document_path(self.base_folder, n), "to": document_path(target_folder, n)}
                for n in names
            ]
        )

    # Phases

    def _create_phase(self, keys: List[str], local: dict, summary: dict):
        if keys:
            self._notify(f"Sync: uploading {len(keys)} new file(s)")
        for key in keys:
            doc_path = self._publish(key, local[key], "create", summary)
            if doc_path is None:
                continue
            summary["created"] += 1
            self._log("INFO", "sync", "document_created", _detail(key=key, document=doc_path))

    def _update_phase(self, keys: List[str], local: dict, remote: dict, summary: dict):
        if keys:
            self._notify(f"Sync: updating {len(keys)} changed file(s)")
        handling = self.config.update_handling
        for key in keys:
            # New version first so no workspace is ever left without the file.
            doc_path = self._publish(key, local[key], "update", summary)
            if doc_path is None:
                continue

            try:
                if handling == "archive":
                    self._dispose(remote[key], self.config.archive_folder)
                    summary["archived"] += 1
                elif handling == "delete":
                    self._dispose(remote[key], self.config.trash_folder)
                    summary["trashed"] += 1
            except Exception as e:
                self._fail(summary, "dispose", key, e)
                continue
            summary["updated"] += 1
            self._log("INFO", "sync", "document_updated", _detail(key=key, document=doc_path, handling=handling))

    def _delete_phase(self, keys: List[str], remote: dict, summary: dict):
        if keys:
            self._notify(f"Sync: removing {len(keys)} deleted file(s)")
        for key in keys:
            try:
                self._dispose(remote[key], self.config.trash_folder)
            except Exception as e:
                self._fail(summary, "delete", key, e)
                continue
            summary["deleted"] += 1
            self._log("INFO", "sync", "document_trashed", _detail(key=key, document=remote[key].remote_name))

    # Pass

    def classify(self) -> tuple[dict, dict, Classification]:
        """Build both inventories and compare them. Read-only."""
        if not Path(self.config.vault_root).is_dir():
            raise RuntimeError(f"vault_root_missing: {self.config.vault_root}")
        local = build_local_inventory(self.config)
        remote = build_remote_inventory(self.client, self.base_folder)
        return local, remote, reconcile(local, remote)

    def run_once(self, run_type: str = "manual", dry_run: bool = False) -> dict:
        self._ensured_folders = set()
        summary = {
            "run_type": run_type,
            "dry_run": dry_run,
            "started_at": now_iso(),
            "finished_at": None,
            "vault_root": self.config.vault_root,
            "remote_base_folder": self.base_folder,
            "update_handling": self.config.update_handling,
            "local_total": 0,
            "remote_total": 0,
            "to_create": 0,
            "to_update": 0,
            "to_delete": 0,
            "unchanged": 0,
            "created": 0,
            "updated": 0,
            "deleted": 0,
            "archived": 0,
            "trashed": 0,
            "purged": [],
            "errors": 0,
            "failures": [],
        }

        try:
            local, remote, plan = self.classify()
        except Exception as e:
            summary["errors"] += 1
            summary["fatal_error"] = str(e)
            summary["finished_at"] = now_iso()
            self._log("ERROR", "sync", "run_aborted", _detail(error=str(e)))
            self._notify(f"Sync aborted: {e}")
            return summary

        summary["local_total"] = len(local)
        summary["remote_total"] = len(remote)
        summary.update(plan.counts())

        if dry_run:
            summary["plan"] = {
                "create": sorted(plan.to_create),
                "update": sorted(plan.to_update),
                "delete": sorted(plan.to_delete),
            }
            summary["finished_at"] = now_iso()
            self._log("INFO", "sync", "dry_run_complete", _detail(**plan.counts()))
            return summary

        try:
            self.ensure_namespace(self.base_folder)
        except Exception as e:
            summary["errors"] += 1
            summary["fatal_error"] = f"bootstrap_failed: {e}"
            summary["finished_at"] = now_iso()
            self._log("ERROR", "sync", "run_aborted", _detail(error=summary["fatal_error"]))
            self._notify(f"Sync aborted: could not prepare folder {self.base_folder}: {e}")
            return summary

        self._create_phase(sorted(plan.to_create), local, summary)
        self._update_phase(sorted(plan.to_update), local, remote, summary)
        self._delete_phase(sorted(plan.to_delete), remote, summary)

        if self.config.auto_delete_archives:
            self.purge_disposal_namespaces(summary)

        summary["finished_at"] = now_iso()
        level = "WARN" if summary["errors"] else "INFO"
        self._log(level, "sync", "run_complete", json.dumps(summary, ensure_ascii=False))
        self._notify(
            "Sync complete: {created} created, {updated} updated, {deleted} deleted, {errors} error(s)".format(**summary)
        )
        return summary
