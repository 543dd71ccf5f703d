from __future__ import annotations

import re
from collections import deque
from pathlib import Path

LOG_LINE_RE = re.compile(
    r"^(?P<ts>\S+\s+\S+)\s+\[(?P<level>[A-Z]+)\]\s+\[(?P<module>[^\]]+)\]\s*(?P<message>.*)$"
)


def read_last_lines(path: str, n: int = 200) -> list[str]:
    p = Path(path)
    if n <= 0 or not p.exists():
        return []
    with p.open("r", encoding="utf-8", errors="replace") as fp:
        return [line.rstrip("\n") for line in deque(fp, maxlen=n)]


def parse_log_line(line: str) -> dict[str, str]:
    match = LOG_LINE_RE.match(line)
    if not match:
        # Continuation lines (tracebacks) carry no header.
        return {"raw": line, "ts": "", "level": "", "module": "", "message": line}
    return {"raw": line, **match.groupdict()}


def build_log_tail_payload(path: str, n: int = 200, level: str | None = None, module: str | None = None) -> dict:
    level_wanted = (level or "").strip().upper() or None
    module_wanted = (module or "").strip().lower() or None

    items = [parse_log_line(line) for line in read_last_lines(path, n=n)]
    if level_wanted:
        items = [item for item in items if item["level"] == level_wanted]
    if module_wanted:
        items = [item for item in items if item["module"].strip().lower() == module_wanted]

    return {
        "path": path,
        "n": n,
        "level": level_wanted,
        "module": module_wanted,
        "count": len(items),
        "tail": "\n".join(item["raw"] for item in items),
        "items": items,
    }
