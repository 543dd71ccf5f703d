"""Map vault paths to flat remote document names and back.

AnythingLLM folders are one level deep, so a vault path such as
``Projects/Sub/note.md`` is flattened by replacing each ``/`` with
``SEPARATOR_TOKEN``. Paths containing ``:`` or ``\\`` are not mangleable,
which keeps the mapping injective: every ``:`` in a mangled name came from a
separator, and no literal backslash can alias a folder boundary.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from pathlib import PurePosixPath

SEPARATOR_TOKEN = "::"
# ":" belongs to the separator token; "\\" is folded into "/" by normalize_path.
FORBIDDEN_PATH_CHARS = frozenset(":\\")

# Formats AnythingLLM has used for a document's `published` field.
_PUBLISHED_FORMATS = (
    "%m/%d/%Y, %I:%M:%S %p",
    "%m/%d/%Y, %H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
)


def normalize_path(value: str) -> str:
    """Vault-relative POSIX path without leading/trailing slashes."""
    text = (value or "").replace("\\", "/").strip()
    parts = [p for p in PurePosixPath(text).parts if p not in ("/", ".")]
    return "/".join(parts)


def is_mangleable(local_path: str) -> bool:
    return not any(ch in FORBIDDEN_PATH_CHARS for ch in local_path)


def mangle(local_path: str) -> str:
    return normalize_path(local_path).replace("/", SEPARATOR_TOKEN)


def unmangle(mangled_name: str) -> str:
    return mangled_name.replace(SEPARATOR_TOKEN, "/")


def remote_key(remote_base_folder: str, mangled_name: str) -> str:
    return f"{remote_base_folder}/{mangled_name}"


def local_key(remote_base_folder: str, local_path: str) -> str:
    return remote_key(remote_base_folder, mangle(local_path))


def document_path(folder: str, remote_name: str) -> str:
    """Storage path AnythingLLM expects in move and embedding requests."""
    return f"{folder}/{remote_name}"


def parse_timestamp(value: object) -> float:
    """Epoch seconds from a remote timestamp; 0.0 when unparseable.

    Accepts epoch seconds/milliseconds, ISO 8601 and the locale strings
    AnythingLLM writes into `published`. Naive values are read as local time.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        num = float(value)
        if not math.isfinite(num):
            return 0.0
        return num / 1000.0 if num > 1e11 else num

    raw = str(value).strip()
    if not raw:
        return 0.0
    try:
        return parse_timestamp(float(raw))
    except ValueError:
        pass

    try:
        dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        dt = None
    if dt is None:
        for fmt in _PUBLISHED_FORMATS:
            try:
                dt = datetime.strptime(raw, fmt)
                break
            except ValueError:
                continue
    if dt is None:
        return 0.0
    if dt.tzinfo is None:
        return dt.timestamp()
    return dt.astimezone(timezone.utc).timestamp()
