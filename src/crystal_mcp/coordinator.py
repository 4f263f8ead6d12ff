"""Per-repository owner of scanning, change detection and the work queue."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

import aiofiles
import aiofiles.os

from crystal_mcp.changes import (
    ChangeDetectionResult,
    ChangeDetector,
    ChangeRecord,
    CoverageSummary,
)
from crystal_mcp.config import CrystalConfig
from crystal_mcp.errors import NotInitializedError
from crystal_mcp.persist import iso_from_epoch
from crystal_mcp.queue import QueueManager, QueueProgress, SessionInfo
from crystal_mcp.results import ResultStore
from crystal_mcp.scan import QueueItem, scan_repository
from crystal_mcp.security import relative_repo_path

logger = logging.getLogger(__name__)

UPDATE_COVERAGE_THRESHOLD = 90


@dataclass(slots=True, frozen=True)
class InitializeResult:
    """Outcome of seeding or resuming a session."""

    session_id: str
    scanned_files: int
    queued_files: int
    recovered: bool
    claim_timeout_seconds: int
    changes_detected: int


@dataclass(slots=True, frozen=True)
class UpdateSummary:
    files_scanned: int
    changes_detected: int
    results_updated: int
    results_added: int
    results_removed: int
    errors: int


@dataclass(slots=True, frozen=True)
class UpdateError:
    path: str
    error: str


@dataclass(slots=True, frozen=True)
class UpdateResult:
    """Outcome of one incremental update cycle."""

    summary: UpdateSummary
    changes: tuple[ChangeRecord, ...]
    queued_paths: tuple[str, ...]
    outdated_results: tuple[str, ...]
    errors: tuple[UpdateError, ...] = field(default_factory=tuple)


@dataclass(slots=True, frozen=True)
class UpdateStatus:
    """Whether an update cycle is recommended, with the numbers behind it."""

    needs_update: bool
    last_scan: str | None
    total_files: int
    files_with_analysis: int
    coverage_percentage: int
    estimated_outdated: int


@dataclass(slots=True, frozen=True)
class FreshnessReport:
    """Freshness of the stored result for one file."""

    relative_path: str
    is_fresh: bool
    reason: str | None
    source_modified: str | None
    result_age_seconds: float | None


class Coordinator:
    """Implements the outward operation surface for one repository."""

    def __init__(
        self,
        config: CrystalConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._repo_root = config.repo_root
        self._clock = clock
        self._results = ResultStore(config.data_dir)
        self._detector = ChangeDetector(
            repo_root=config.repo_root,
            data_dir=config.data_dir,
            results=self._results,
            clock=clock,
        )
        self._queue = QueueManager(
            repo_root=config.repo_root,
            data_dir=config.data_dir,
            results=self._results,
            clock=clock,
            default_claim_timeout_seconds=config.queue.default_claim_timeout_seconds,
            session_freshness_hours=config.queue.session_freshness_hours,
            lock_stale_seconds=config.queue.lock_stale_seconds,
        )
        self._exclude_patterns: tuple[str, ...] = ()

    @property
    def config(self) -> CrystalConfig:
        return self._config

    @property
    def repo_root(self) -> Path:
        return self._repo_root

    @property
    def results(self) -> ResultStore:
        return self._results

    @property
    def queue(self) -> QueueManager:
        return self._queue

    @property
    def detector(self) -> ChangeDetector:
        return self._detector

    @property
    def initialized(self) -> bool:
        return self._queue.initialized

    async def scan(self, exclude_patterns: Iterable[str] | None = None) -> list[QueueItem]:
        patterns = self._exclude_patterns if exclude_patterns is None else tuple(exclude_patterns)
        return await scan_repository(
            self._repo_root,
            exclude_patterns=patterns,
            config=self._config.scan,
            data_dir=self._config.data_dir,
        )

    async def initialize(self, exclude_patterns: Iterable[str] = ()) -> InitializeResult:
        """Scan, seed the manifest and resume or seed the queue session."""
        self._exclude_patterns = tuple(exclude_patterns)
        items = await self.scan()
        detection = await self._detector.detect_changes(items)
        queued = await self._queue.initialize(items, self._exclude_patterns)
        info = self._queue.session_info()
        logger.info(
            "Initialized %s: %d scanned, %d queued (session %s)",
            self._repo_root,
            len(items),
            queued,
            info.session_id,
        )
        return InitializeResult(
            session_id=info.session_id,
            scanned_files=len(items),
            queued_files=queued,
            recovered=self._queue.recovered,
            claim_timeout_seconds=info.claim_timeout_seconds,
            changes_detected=detection.stats.total_changes,
        )

    async def next_item(self) -> QueueItem | None:
        self._require_initialized("next_item")
        return await self._queue.next_item()

    async def read_item_content(self, item: QueueItem) -> str | None:
        """Source text of a dispatched item, or None when it vanished."""
        try:
            async with aiofiles.open(item.path, "r", encoding="utf-8", errors="replace") as handle:
                return await handle.read()
        except OSError as error:
            logger.warning("Could not read %s: %s", item.path, error)
            return None

    async def mark_processed(self, path: str) -> str:
        """Mark ``path`` complete; returns its normalized relative form."""
        self._require_initialized("mark_processed")
        relative_path = relative_repo_path(self._repo_root, path)
        await self._queue.mark_processed(relative_path)
        return relative_path

    def progress(self) -> QueueProgress:
        self._require_initialized("progress")
        return self._queue.progress()

    def session_info(self) -> SessionInfo:
        self._require_initialized("session_info")
        return self._queue.session_info()

    async def detect_changes(self) -> ChangeDetectionResult:
        """Rescan and diff against the stored manifest."""
        items = await self.scan()
        return await self._detector.detect_changes(items)

    async def cleanup(self, relative_paths: Iterable[str]) -> int:
        """Delete stored results for the given paths; returns results removed."""
        normalized = [relative_repo_path(self._repo_root, path) for path in relative_paths]
        return await self._detector.cleanup_obsolete_results(normalized)

    async def update(
        self,
        force: bool = False,
        include_unanalyzed: bool = False,
        cleanup_deleted: bool = False,
    ) -> UpdateResult:
        """Re-scan, diff and re-seed the queue with work that needs (re)analysis.

        Added and modified files are always queued. ``force`` queues every
        scanned file regardless of stored results; ``include_unanalyzed`` adds
        files that never had a result. ``cleanup_deleted`` removes results of
        files deleted since the last scan.
        """
        errors: list[UpdateError] = []
        items = await self.scan()
        detection = await self._detector.detect_changes(items)
        changes = detection.changes
        by_path = {item.path: item for item in items}

        queued: dict[str, QueueItem] = {}
        added_paths = {change.path for change in changes if change.change_type == "added"}
        modified_paths = {change.path for change in changes if change.change_type == "modified"}
        for change in changes:
            item = by_path.get(change.path)
            if item is not None and change.path in added_paths:
                queued[item.relative_path] = item
        if force:
            for item in items:
                queued.setdefault(item.relative_path, item)
        else:
            for change in changes:
                item = by_path.get(change.path)
                if item is not None and change.path in modified_paths:
                    queued.setdefault(item.relative_path, item)
        if include_unanalyzed:
            for item in await self._detector.files_needing_analysis(items):
                queued.setdefault(item.relative_path, item)

        outdated = await self._detector.outdated_results(changes)
        await self._queue.initialize(
            queued.values(),
            self._exclude_patterns,
            recover=False,
            skip_fresh=False,
        )

        removed = 0
        if cleanup_deleted:
            deleted = [change.relative_path for change in changes if change.change_type == "deleted"]
            try:
                removed = await self._detector.cleanup_obsolete_results(deleted)
            except OSError as error:
                errors.append(UpdateError(path="cleanup", error=str(error)))

        queued_items = list(queued.values())
        summary = UpdateSummary(
            files_scanned=len(items),
            changes_detected=detection.stats.total_changes,
            results_updated=sum(1 for item in queued_items if item.path in modified_paths),
            results_added=sum(1 for item in queued_items if item.path in added_paths),
            results_removed=removed,
            errors=len(errors),
        )
        logger.info(
            "Update of %s queued %d files (%d changes)",
            self._repo_root,
            len(queued_items),
            summary.changes_detected,
        )
        return UpdateResult(
            summary=summary,
            changes=changes,
            queued_paths=tuple(item.relative_path for item in queued_items),
            outdated_results=tuple(outdated),
            errors=tuple(errors),
        )

    async def update_status(self) -> UpdateStatus:
        """Recommend an update when the file count moved or coverage is low."""
        coverage = await self._detector.coverage_summary()
        items = await self.scan()
        return _update_status(coverage, len(items))

    async def update_report(self) -> str:
        """Plain-text summary of update status and available update options."""
        status = await self.update_status()
        if status.needs_update:
            recommendation = (
                "Update recommended: coverage is below "
                f"{UPDATE_COVERAGE_THRESHOLD}% or the file count has changed."
            )
        else:
            recommendation = "Analysis results are up to date."
        lines = [
            "# Update Report",
            "",
            "## Current Status",
            f"- Last scan: {status.last_scan or 'never'}",
            f"- Total files: {status.total_files}",
            f"- Files with analysis: {status.files_with_analysis}",
            f"- Coverage: {status.coverage_percentage}%",
            f"- Estimated outdated: {status.estimated_outdated}",
            "",
            "## Recommendation",
            recommendation,
            "",
            "## Update Options",
            "- update() queues added and modified files",
            "- update(force=True) queues every file",
            "- update(include_unanalyzed=True) also queues files without a result",
            "- update(cleanup_deleted=True) removes results of deleted files",
        ]
        return "\n".join(lines) + "\n"

    async def freshness(self, path: str) -> FreshnessReport:
        """Compare a file's modification time with its stored result."""
        relative_path = relative_repo_path(self._repo_root, path)
        stored = await self._results.result_mtime(relative_path)
        if stored is None:
            return FreshnessReport(
                relative_path=relative_path,
                is_fresh=False,
                reason="No analysis result exists for this file.",
                source_modified=None,
                result_age_seconds=None,
            )
        try:
            info = await aiofiles.os.stat(self._repo_root / relative_path)
        except OSError:
            return FreshnessReport(
                relative_path=relative_path,
                is_fresh=False,
                reason="Source file could not be read.",
                source_modified=None,
                result_age_seconds=round(self._clock() - stored, 3),
            )
        fresh = stored >= info.st_mtime
        return FreshnessReport(
            relative_path=relative_path,
            is_fresh=fresh,
            reason=None if fresh else "File was modified after its result was written.",
            source_modified=iso_from_epoch(info.st_mtime),
            result_age_seconds=round(self._clock() - stored, 3),
        )

    async def clear_session(self, *, reset_manifest: bool = False) -> None:
        await self._queue.clear_session()
        if reset_manifest:
            await self._detector.reset_manifest()

    async def status(self) -> dict[str, object]:
        """Repository, session and coverage snapshot for tool responses."""
        coverage = await self._detector.coverage_summary()
        payload: dict[str, object] = {
            "repo_root": str(self._repo_root),
            "initialized": self.initialized,
            "exclude_patterns": list(self._exclude_patterns),
            "coverage": {
                "last_scan": coverage.last_scan,
                "total_tracked_files": coverage.total_tracked_files,
                "files_with_analysis": coverage.files_with_analysis,
                "coverage_percentage": coverage.coverage_percentage,
            },
            "effective_config": self._config.to_public_dict(),
        }
        if self.initialized:
            info = self._queue.session_info()
            payload["session"] = {
                "session_id": info.session_id,
                "start_time": info.start_time,
                "claim_timeout_seconds": info.claim_timeout_seconds,
            }
        return payload

    def _require_initialized(self, operation: str) -> None:
        if not self._queue.initialized:
            raise NotInitializedError(operation=operation)


def _update_status(coverage: CoverageSummary, current_files: int) -> UpdateStatus:
    needs_update = (
        coverage.total_tracked_files != current_files
        or coverage.coverage_percentage < UPDATE_COVERAGE_THRESHOLD
    )
    return UpdateStatus(
        needs_update=needs_update,
        last_scan=coverage.last_scan,
        total_files=current_files,
        files_with_analysis=coverage.files_with_analysis,
        coverage_percentage=coverage.coverage_percentage,
        estimated_outdated=max(0, current_files - coverage.files_with_analysis),
    )
