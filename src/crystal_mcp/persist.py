"""Async JSON state files with write-temp-then-rename replacement."""

from __future__ import annotations

import json
import logging
import os
import uuid
from datetime import UTC, datetime
from pathlib import Path

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)


async def read_json_object(path: Path) -> dict[str, object] | None:
    """Read a JSON object, returning None when missing, unreadable or malformed."""
    try:
        async with aiofiles.open(path, "r", encoding="utf-8") as handle:
            raw = await handle.read()
    except FileNotFoundError:
        return None
    except OSError as error:
        logger.warning("Could not read %s: %s", path, error)
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed state file %s", path)
        return None
    if not isinstance(payload, dict):
        logger.warning("Ignoring state file %s: top level is not an object", path)
        return None
    return payload


async def write_json_atomic(path: Path, payload: dict[str, object]) -> None:
    """Write payload to a sibling temp file and rename it over ``path``.

    The temp name is unique per writer so concurrent processes never share one.
    Raises OSError on failure; callers decide whether that is fatal.
    """
    await aiofiles.os.makedirs(path.parent, exist_ok=True)
    tmp = path.with_name(f"{path.name}.{os.getpid()}.{uuid.uuid4().hex[:8]}.tmp")
    try:
        async with aiofiles.open(tmp, "w", encoding="utf-8") as handle:
            await handle.write(json.dumps(payload, sort_keys=True, indent=2))
            await handle.write("\n")
        await aiofiles.os.replace(tmp, path)
    except OSError:
        await remove_quietly(tmp)
        raise


async def remove_quietly(path: Path) -> bool:
    """Delete a file, returning False when it was already missing or not removable."""
    try:
        await aiofiles.os.remove(path)
    except FileNotFoundError:
        return False
    except OSError as error:
        logger.warning("Could not remove %s: %s", path, error)
        return False
    return True


async def file_mtime(path: Path) -> float | None:
    """Return modification time in epoch seconds, or None if the file is absent."""
    try:
        stat = await aiofiles.os.stat(path)
    except OSError:
        return None
    return stat.st_mtime


def iso_from_epoch(seconds: float) -> str:
    """Format epoch seconds as an ISO-8601 UTC timestamp."""
    moment = datetime.fromtimestamp(seconds, tz=UTC)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def epoch_from_iso(value: object) -> float | None:
    """Parse an ISO-8601 timestamp into epoch seconds; None when invalid."""
    if not isinstance(value, str) or not value:
        return None
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        moment = datetime.fromisoformat(text)
    except ValueError:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.timestamp()
