"""File layout and freshness queries for stored analysis results."""

from __future__ import annotations

from pathlib import Path

from crystal_mcp.persist import file_mtime, remove_quietly
from crystal_mcp.scan.models import QueueItem

RESULTS_DIR_NAME = "context"
METADATA_DIR_NAME = "ai-metadata"
RESULT_SUFFIX = ".context.md"
METADATA_SUFFIX = ".json"


def flatten_relative_path(relative_path: str) -> str:
    """Map a repository-relative path to a flat file stem."""
    return relative_path.replace("\\", "/").strip("/").replace("/", "_")


class ResultStore:
    """Locates, inspects and deletes per-file analysis results.

    Results are written by an external collaborator; this class only knows
    where they live and how old they are.
    """

    def __init__(self, data_dir: Path) -> None:
        self._data_dir = data_dir
        self._results_dir = data_dir / RESULTS_DIR_NAME
        self._metadata_dir = data_dir / METADATA_DIR_NAME

    @property
    def results_dir(self) -> Path:
        return self._results_dir

    def result_path(self, relative_path: str) -> Path:
        return self._results_dir / f"{flatten_relative_path(relative_path)}{RESULT_SUFFIX}"

    def metadata_path(self, relative_path: str) -> Path:
        return self._metadata_dir / f"{flatten_relative_path(relative_path)}{METADATA_SUFFIX}"

    async def result_mtime(self, relative_path: str) -> float | None:
        """Modification time of the stored result, or None when there is none."""
        return await file_mtime(self.result_path(relative_path))

    async def has_result(self, relative_path: str) -> bool:
        return await self.result_mtime(relative_path) is not None

    async def is_fresh(self, item: QueueItem) -> bool:
        """A result is fresh when it is not older than its source file."""
        stored = await self.result_mtime(item.relative_path)
        if stored is None:
            return False
        return stored >= item.last_modified

    async def delete(self, relative_path: str) -> bool:
        """Remove result and metadata; returns True when a result file was removed."""
        removed = await remove_quietly(self.result_path(relative_path))
        await remove_quietly(self.metadata_path(relative_path))
        return removed
