from __future__ import annotations

from typing import Mapping

from pydantic import BaseModel

from .inventory import LocalFileRecord, RemoteFileRecord


class Classification(BaseModel):
    """Keys sorted into the work each phase has to do.

    Keys present on both sides with the local copy not newer appear in
    ``unchanged``; together the four sets partition the union of both
    inventories.
    """

    to_create: frozenset[str] = frozenset()
    to_update: frozenset[str] = frozenset()
    to_delete: frozenset[str] = frozenset()
    unchanged: frozenset[str] = frozenset()

    model_config = {"frozen": True}

    @property
    def has_writes(self) -> bool:
        return bool(self.to_create or self.to_update or self.to_delete)

    def counts(self) -> dict[str, int]:
        return {
            "to_create": len(self.to_create),
            "to_update": len(self.to_update),
            "to_delete": len(self.to_delete),
            "unchanged": len(self.unchanged),
        }


def reconcile(
    local: Mapping[str, LocalFileRecord],
    remote: Mapping[str, RemoteFileRecord],
) -> Classification:
    to_create: set[str] = set()
    to_update: set[str] = set()
    unchanged: set[str] = set()

    for key, record in local.items():
        other = remote.get(key)
        if other is None:
            to_create.add(key)
        # Strictly newer only: equal timestamps must not re-upload.
        elif record.modified_at > other.published_at:
            to_update.add(key)
        else:
            unchanged.add(key)

    to_delete = {key for key in remote if key not in local}

    return Classification(
        to_create=frozenset(to_create),
        to_update=frozenset(to_update),
        to_delete=frozenset(to_delete),
        unchanged=frozenset(unchanged),
    )
