"""Typed models for queue sessions and progress."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field

from crystal_mcp.scan.models import FILE_CATEGORIES, QueueItem, queue_item_from_dict

SNAPSHOT_SCHEMA_VERSION = 1


@dataclass(slots=True, frozen=True)
class QueueSnapshot:
    """Durable state of one processing session."""

    session_id: str
    repo_path: str
    total_files: int
    processed_files: tuple[str, ...]
    remaining_queue: tuple[QueueItem, ...]
    start_time: str
    last_activity: str
    exclude_patterns: tuple[str, ...]
    processed_by_category: dict[str, int] = field(default_factory=dict)
    schema_version: int = SNAPSHOT_SCHEMA_VERSION


@dataclass(slots=True, frozen=True)
class CategoryProgress:
    """Per-category totals."""

    total: int
    processed: int


@dataclass(slots=True, frozen=True)
class QueueProgress:
    """Progress report for the current session."""

    session_id: str
    total_files: int
    processed_files: int
    remaining_files: int
    in_flight_files: int
    completion_percentage: int
    current_file: str | None
    start_time: str
    remaining_estimated_tokens: int
    files_by_category: dict[str, CategoryProgress]
    estimated_seconds_remaining: float | None
    estimated_completion_time: str | None


@dataclass(slots=True, frozen=True)
class SessionInfo:
    """Identity of the active session."""

    session_id: str
    repo_path: str
    start_time: str
    claim_timeout_seconds: int


def snapshot_to_dict(snapshot: QueueSnapshot) -> dict[str, object]:
    return {
        "schema_version": snapshot.schema_version,
        "session_id": snapshot.session_id,
        "repo_path": snapshot.repo_path,
        "total_files": snapshot.total_files,
        "processed_files": list(snapshot.processed_files),
        "remaining_queue": [asdict(item) for item in snapshot.remaining_queue],
        "start_time": snapshot.start_time,
        "last_activity": snapshot.last_activity,
        "exclude_patterns": list(snapshot.exclude_patterns),
        "processed_by_category": dict(sorted(snapshot.processed_by_category.items())),
    }


def snapshot_from_dict(payload: dict[str, object]) -> QueueSnapshot | None:
    """Parse a persisted snapshot; any malformed part invalidates the whole snapshot."""
    schema_version = payload.get("schema_version")
    session_id = payload.get("session_id")
    repo_path = payload.get("repo_path")
    total_files = payload.get("total_files")
    processed_files = payload.get("processed_files")
    remaining_queue = payload.get("remaining_queue")
    start_time = payload.get("start_time")
    last_activity = payload.get("last_activity")
    exclude_patterns = payload.get("exclude_patterns")
    processed_by_category = payload.get("processed_by_category", {})

    if schema_version != SNAPSHOT_SCHEMA_VERSION:
        return None
    if not isinstance(session_id, str) or not isinstance(repo_path, str):
        return None
    if not isinstance(total_files, int):
        return None
    if not isinstance(start_time, str) or not isinstance(last_activity, str):
        return None
    if not _is_string_list(processed_files) or not _is_string_list(exclude_patterns):
        return None
    if not isinstance(remaining_queue, list) or not isinstance(processed_by_category, dict):
        return None

    items: list[QueueItem] = []
    for raw in remaining_queue:
        if not isinstance(raw, dict):
            return None
        item = queue_item_from_dict(raw)
        if item is None:
            return None
        items.append(item)

    by_category: dict[str, int] = {}
    for category, count in processed_by_category.items():
        if category in FILE_CATEGORIES and isinstance(count, int) and count >= 0:
            by_category[category] = count

    return QueueSnapshot(
        session_id=session_id,
        repo_path=repo_path,
        total_files=total_files,
        processed_files=tuple(processed_files),
        remaining_queue=tuple(items),
        start_time=start_time,
        last_activity=last_activity,
        exclude_patterns=tuple(exclude_patterns),
        processed_by_category=by_category,
    )


def _is_string_list(value: object) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)
