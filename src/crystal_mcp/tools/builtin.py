"""Built-in crystal.* tools."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import asdict

from crystal_mcp.changes import ChangeRecord
from crystal_mcp.coordinator import Coordinator
from crystal_mcp.tools.registry import ToolDispatchError, ToolHandler, ToolRegistry

CoordinatorLookup = Callable[[str | None], Awaitable[Coordinator]]


def register_builtin_tools(registry: ToolRegistry, coordinator_for: CoordinatorLookup) -> None:
    """Register the crystal tool set against a per-repository coordinator lookup."""
    registry.register("crystal.initialize", _initialize_handler(coordinator_for))
    registry.register("crystal.next_item", _next_item_handler(coordinator_for))
    registry.register("crystal.mark_processed", _mark_processed_handler(coordinator_for))
    registry.register("crystal.progress", _progress_handler(coordinator_for))
    registry.register("crystal.detect_changes", _detect_changes_handler(coordinator_for))
    registry.register("crystal.cleanup", _cleanup_handler(coordinator_for))
    registry.register("crystal.update", _update_handler(coordinator_for))
    registry.register("crystal.update_status", _update_status_handler(coordinator_for))
    registry.register("crystal.clear_session", _clear_session_handler(coordinator_for))
    registry.register("crystal.freshness", _freshness_handler(coordinator_for))
    registry.register("crystal.status", _status_handler(coordinator_for))


def _repo_path(tool: str, arguments: dict[str, object]) -> str | None:
    value = arguments.get("repo_path")
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ToolDispatchError(
            code="INVALID_PARAMS",
            message=f"{tool} repo_path must be a non-empty string.",
        )
    return value


def _string_list(tool: str, arguments: dict[str, object], key: str) -> list[str]:
    value = arguments.get(key, [])
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ToolDispatchError(
            code="INVALID_PARAMS",
            message=f"{tool} {key} must be a list of strings.",
        )
    return list(value)


def _flag(tool: str, arguments: dict[str, object], key: str) -> bool:
    value = arguments.get(key, False)
    if not isinstance(value, bool):
        raise ToolDispatchError(code="INVALID_PARAMS", message=f"{tool} {key} must be a boolean.")
    return value


def _change_to_dict(change: ChangeRecord) -> dict[str, object]:
    return asdict(change)


def _initialize_handler(coordinator_for: CoordinatorLookup) -> ToolHandler:
    async def handler(arguments: dict[str, object]) -> dict[str, object]:
        tool = "crystal.initialize"
        patterns = _string_list(tool, arguments, "exclude_patterns")
        coordinator = await coordinator_for(_repo_path(tool, arguments))
        result = await coordinator.initialize(patterns)
        return asdict(result)

    return handler


def _next_item_handler(coordinator_for: CoordinatorLookup) -> ToolHandler:
    async def handler(arguments: dict[str, object]) -> dict[str, object]:
        coordinator = await coordinator_for(_repo_path("crystal.next_item", arguments))
        item = await coordinator.next_item()
        if item is None:
            return {"item": None, "done": coordinator.queue.remaining_count() == 0}
        payload = asdict(item)
        payload["content"] = await coordinator.read_item_content(item)
        return {"item": payload, "done": False}

    return handler


def _mark_processed_handler(coordinator_for: CoordinatorLookup) -> ToolHandler:
    async def handler(arguments: dict[str, object]) -> dict[str, object]:
        tool = "crystal.mark_processed"
        path = arguments.get("path")
        if not isinstance(path, str) or not path:
            raise ToolDispatchError(
                code="INVALID_PARAMS",
                message=f"{tool} path must be a non-empty string.",
            )
        coordinator = await coordinator_for(_repo_path(tool, arguments))
        relative_path = await coordinator.mark_processed(path)
        return {"relative_path": relative_path, "processed": True}

    return handler


def _progress_handler(coordinator_for: CoordinatorLookup) -> ToolHandler:
    async def handler(arguments: dict[str, object]) -> dict[str, object]:
        coordinator = await coordinator_for(_repo_path("crystal.progress", arguments))
        return asdict(coordinator.progress())

    return handler


def _detect_changes_handler(coordinator_for: CoordinatorLookup) -> ToolHandler:
    async def handler(arguments: dict[str, object]) -> dict[str, object]:
        coordinator = await coordinator_for(_repo_path("crystal.detect_changes", arguments))
        result = await coordinator.detect_changes()
        return {
            "changes": [_change_to_dict(change) for change in result.changes],
            "stats": asdict(result.stats),
            "tracked_files": len(result.manifest.files),
        }

    return handler


def _cleanup_handler(coordinator_for: CoordinatorLookup) -> ToolHandler:
    async def handler(arguments: dict[str, object]) -> dict[str, object]:
        tool = "crystal.cleanup"
        paths = _string_list(tool, arguments, "paths")
        coordinator = await coordinator_for(_repo_path(tool, arguments))
        removed = await coordinator.cleanup(paths)
        return {"removed": removed}

    return handler


def _update_handler(coordinator_for: CoordinatorLookup) -> ToolHandler:
    async def handler(arguments: dict[str, object]) -> dict[str, object]:
        tool = "crystal.update"
        force = _flag(tool, arguments, "force")
        include_unanalyzed = _flag(tool, arguments, "include_unanalyzed")
        cleanup_deleted = _flag(tool, arguments, "cleanup_deleted")
        coordinator = await coordinator_for(_repo_path(tool, arguments))
        result = await coordinator.update(
            force=force,
            include_unanalyzed=include_unanalyzed,
            cleanup_deleted=cleanup_deleted,
        )
        return {
            "summary": asdict(result.summary),
            "changes": [_change_to_dict(change) for change in result.changes],
            "queued_paths": list(result.queued_paths),
            "outdated_results": list(result.outdated_results),
            "errors": [asdict(error) for error in result.errors],
        }

    return handler


def _update_status_handler(coordinator_for: CoordinatorLookup) -> ToolHandler:
    async def handler(arguments: dict[str, object]) -> dict[str, object]:
        tool = "crystal.update_status"
        report = _flag(tool, arguments, "report")
        coordinator = await coordinator_for(_repo_path(tool, arguments))
        payload = asdict(await coordinator.update_status())
        if report:
            payload["report"] = await coordinator.update_report()
        return payload

    return handler


def _clear_session_handler(coordinator_for: CoordinatorLookup) -> ToolHandler:
    async def handler(arguments: dict[str, object]) -> dict[str, object]:
        tool = "crystal.clear_session"
        reset_manifest = _flag(tool, arguments, "reset_manifest")
        coordinator = await coordinator_for(_repo_path(tool, arguments))
        await coordinator.clear_session(reset_manifest=reset_manifest)
        return {"cleared": True, "manifest_reset": reset_manifest}

    return handler


def _status_handler(coordinator_for: CoordinatorLookup) -> ToolHandler:
    async def handler(arguments: dict[str, object]) -> dict[str, object]:
        coordinator = await coordinator_for(_repo_path("crystal.status", arguments))
        return await coordinator.status()

    return handler


def _freshness_handler(coordinator_for: CoordinatorLookup) -> ToolHandler:
    async def handler(arguments: dict[str, object]) -> dict[str, object]:
        tool = "crystal.freshness"
        path = arguments.get("path")
        if not isinstance(path, str) or not path:
            raise ToolDispatchError(
                code="INVALID_PARAMS",
                message=f"{tool} path must be a non-empty string.",
            )
        coordinator = await coordinator_for(_repo_path(tool, arguments))
        return asdict(await coordinator.freshness(path))

    return handler
