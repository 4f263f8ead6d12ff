"""Typed models for scanned work items."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

FileCategory = Literal["config", "source", "test", "docs", "other"]

FILE_CATEGORIES: tuple[FileCategory, ...] = ("config", "source", "test", "docs", "other")


@dataclass(slots=True, frozen=True)
class QueueItem:
    """One unit of work handed to an analysis worker."""

    path: str
    relative_path: str
    size: int
    priority: int
    file_type: str
    estimated_tokens: int
    category: FileCategory
    last_modified: float


def queue_item_from_dict(obj: dict[str, object]) -> QueueItem | None:
    """Rebuild a QueueItem from persisted JSON, or None when the shape is wrong."""
    path = obj.get("path")
    relative_path = obj.get("relative_path")
    size = obj.get("size")
    priority = obj.get("priority")
    file_type = obj.get("file_type")
    estimated_tokens = obj.get("estimated_tokens")
    category = obj.get("category")
    last_modified = obj.get("last_modified")
    if not isinstance(path, str) or not isinstance(relative_path, str):
        return None
    if not isinstance(size, int) or not isinstance(priority, int):
        return None
    if not isinstance(file_type, str) or not isinstance(estimated_tokens, int):
        return None
    if category not in FILE_CATEGORIES:
        return None
    if isinstance(last_modified, bool) or not isinstance(last_modified, (int, float)):
        return None
    return QueueItem(
        path=path,
        relative_path=relative_path,
        size=size,
        priority=priority,
        file_type=file_type,
        estimated_tokens=estimated_tokens,
        category=category,
        last_modified=float(last_modified),
    )
