"""Structured JSONL audit log of service requests."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path

import aiofiles
import aiofiles.os

_VERBATIM_STRING_KEYS = {"repo_path", "path", "relative_path"}
_VERBATIM_BOOL_KEYS = {
    "force",
    "include_unanalyzed",
    "cleanup_deleted",
    "recover",
    "reset_manifest",
}


@dataclass(slots=True, frozen=True)
class AuditEvent:
    """Sanitized record of a single tool request."""

    timestamp: str
    request_id: str
    tool: str
    ok: bool
    blocked: bool
    error_code: str | None
    metadata: dict[str, object]


def utc_timestamp() -> str:
    """Return an ISO-8601 UTC timestamp."""
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def sanitize_arguments(arguments: dict[str, object]) -> dict[str, object]:
    """Keep paths and flags; reduce free-form values to their shape."""
    sanitized: dict[str, object] = {}
    for key in sorted(arguments.keys()):
        value = arguments[key]
        if key in _VERBATIM_STRING_KEYS and isinstance(value, str):
            sanitized[key] = value
            continue
        if key in _VERBATIM_BOOL_KEYS and isinstance(value, bool):
            sanitized[key] = value
            continue
        if isinstance(value, (int, float, bool)) or value is None:
            sanitized[key] = value
            continue
        if isinstance(value, str):
            sanitized[f"{key}_present"] = True
            sanitized[f"{key}_length"] = len(value)
            continue
        if isinstance(value, list):
            sanitized[f"{key}_type"] = "list"
            sanitized[f"{key}_length"] = len(value)
            continue
        if isinstance(value, dict):
            sanitized[f"{key}_type"] = "dict"
            sanitized[f"{key}_keys"] = sorted(str(k) for k in value.keys())
            continue
        sanitized[f"{key}_type"] = type(value).__name__
    return sanitized


class JsonlAuditLogger:
    """Append-only JSONL audit logger and bounded reader."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    async def append(self, event: AuditEvent) -> None:
        """Append one event as a single JSON line."""
        await aiofiles.os.makedirs(self._path.parent, exist_ok=True)
        async with aiofiles.open(self._path, "a", encoding="utf-8") as handle:
            await handle.write(json.dumps(asdict(event), sort_keys=True) + "\n")

    async def read(self, since: str | None = None, limit: int = 50) -> list[dict[str, object]]:
        """Read the most recent events, optionally bounded below by timestamp."""
        if limit < 1:
            return []
        try:
            async with aiofiles.open(self._path, "r", encoding="utf-8") as handle:
                content = await handle.read()
        except FileNotFoundError:
            return []
        entries: list[dict[str, object]] = []
        for line in content.splitlines():
            stripped = line.strip()
            if not stripped:
                continue
            try:
                record = json.loads(stripped)
            except json.JSONDecodeError:
                continue
            if not isinstance(record, dict):
                continue
            if since is not None:
                ts = record.get("timestamp")
                if not isinstance(ts, str) or ts < since:
                    continue
            entries.append(record)
        return entries[-limit:]
