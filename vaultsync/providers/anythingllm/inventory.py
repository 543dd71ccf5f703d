from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, Iterable, List

from pydantic import BaseModel

from vaultsync.core.config import SyncConfiguration

from .naming import is_mangleable, local_key, normalize_path, parse_timestamp, remote_key

logger = logging.getLogger("inventory")


class LocalFileRecord(BaseModel):
    mangled_key: str
    source_path: str
    rel_path: str
    modified_at: float

    model_config = {"frozen": True}


class RemoteFileRecord(BaseModel):
    mangled_key: str
    remote_name: str
    title: str
    published_at: float
    # Older documents with the same key, kept by the keep-in-workspace policy.
    superseded_names: tuple[str, ...] = ()

    model_config = {"frozen": True}


LocalInventory = Dict[str, LocalFileRecord]
RemoteInventory = Dict[str, RemoteFileRecord]


def is_eligible(rel_path: str, synced_folders: Iterable[str]) -> bool:
    """True when ``rel_path`` lies in one of ``synced_folders``.

    "." matches everything; ``F`` matches ``F`` itself and anything below
    ``F/``, so ``Projects`` does not match ``ProjectsArchive/x.md``.
    """
    path = normalize_path(rel_path)
    for folder in synced_folders:
        raw = (folder or "").strip()
        if raw in (".", "/", "./"):
            return True
        prefix = normalize_path(raw)
        if not prefix:
            continue
        if path == prefix or path.startswith(f"{prefix}/"):
            return True
    return False


def scan_vault_files(
    vault_root: str,
    exclude_dirs: Iterable[str] = (),
    *,
    exclude_hidden_dirs: bool = True,
    exclude_hidden_files: bool = True,
    include_extensions: Iterable[str] = (),
) -> List[str]:
    """Return sorted vault-relative POSIX paths of every candidate file."""
    base = Path(vault_root)
    if not base.exists():
        return []

    excludes = set(exclude_dirs)
    extensions = {ext.lower() for ext in include_extensions if ext}
    found: List[str] = []

    for root, dirnames, filenames in os.walk(base):
        dirnames[:] = [
            d for d in dirnames
            if d not in excludes and not (exclude_hidden_dirs and d.startswith("."))
        ]
        root_path = Path(root)
        for name in filenames:
            if exclude_hidden_files and name.startswith("."):
                continue
            if extensions and Path(name).suffix.lower() not in extensions:
                continue
            full = root_path / name
            if not full.is_file():
                continue
            found.append(full.relative_to(base).as_posix())
    found.sort()
    return found


def build_local_inventory(config: SyncConfiguration) -> LocalInventory:
    base = Path(config.vault_root)
    inventory: LocalInventory = {}
    candidates = scan_vault_files(
        config.vault_root,
        config.exclude_dirs,
        exclude_hidden_dirs=config.exclude_hidden_dirs,
        exclude_hidden_files=config.exclude_hidden_files,
        include_extensions=config.include_extensions,
    )
    for rel in candidates:
        if not is_eligible(rel, config.synced_folders):
            continue
        if not is_mangleable(rel):
            logger.warning("local_file_skipped_unmangleable %s", rel)
            continue
        key = local_key(config.remote_base_folder, rel)
        if key in inventory:
            continue
        full = base / rel
        inventory[key] = LocalFileRecord(
            mangled_key=key,
            source_path=str(full),
            rel_path=rel,
            modified_at=full.stat().st_mtime,
        )
    return inventory


def build_remote_inventory(client, remote_base_folder: str) -> RemoteInventory:
    """List the remote namespace.

    A missing folder is an empty inventory. Any other client error propagates
    so the caller can abort the pass before writing anything.
    """
    documents = client.list_folder(remote_base_folder)
    if documents is None:
        logger.info("remote_folder_missing %s", remote_base_folder)
        return {}

    grouped: Dict[str, List[dict]] = {}
    for doc in documents:
        name = doc.get("name")
        title = doc.get("title")
        if not name or not title:
            continue
        grouped.setdefault(remote_key(remote_base_folder, str(title)), []).append(doc)

    inventory: RemoteInventory = {}
    for key, docs in grouped.items():
        docs_sorted = sorted(docs, key=lambda d: parse_timestamp(d.get("published")), reverse=True)
        newest = docs_sorted[0]
        inventory[key] = RemoteFileRecord(
            mangled_key=key,
            remote_name=str(newest["name"]),
            title=str(newest["title"]),
            published_at=parse_timestamp(newest.get("published")),
            superseded_names=tuple(str(d["name"]) for d in docs_sorted[1:]),
        )
    return inventory
