"""Content-hash change detection against the persisted manifest."""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Callable, Iterable
from pathlib import Path

import aiofiles

from crystal_mcp.changes.models import (
    MANIFEST_VERSION,
    ChangeDetectionResult,
    ChangeRecord,
    ChangeStats,
    CoverageSummary,
    HashManifest,
    ManifestEntry,
    manifest_from_dict,
    manifest_to_dict,
)
from crystal_mcp.persist import (
    iso_from_epoch,
    read_json_object,
    remove_quietly,
    write_json_atomic,
)
from crystal_mcp.results import ResultStore
from crystal_mcp.scan.models import QueueItem

logger = logging.getLogger(__name__)

MANIFEST_FILE_NAME = "file-hash-manifest.json"
_HASH_CHUNK_BYTES = 1024 * 128


async def sha256_file(path: Path) -> str:
    """Compute SHA-256 hash in chunked reads."""
    digest = hashlib.sha256()
    async with aiofiles.open(path, "rb") as handle:
        while True:
            chunk = await handle.read(_HASH_CHUNK_BYTES)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


class ChangeDetector:
    """Diffs fresh scans against the last manifest and tracks stale results."""

    def __init__(
        self,
        repo_root: Path,
        data_dir: Path,
        results: ResultStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._repo_root = repo_root.resolve()
        self._data_dir = data_dir
        self._manifest_path = data_dir / MANIFEST_FILE_NAME
        self._results = results
        self._clock = clock

    @property
    def manifest_path(self) -> Path:
        return self._manifest_path

    async def load_manifest(self) -> HashManifest | None:
        payload = await read_json_object(self._manifest_path)
        if payload is None:
            return None
        manifest = manifest_from_dict(payload)
        if manifest is None:
            logger.warning("Ignoring malformed hash manifest at %s", self._manifest_path)
        return manifest

    async def detect_changes(self, current_items: Iterable[QueueItem]) -> ChangeDetectionResult:
        """Classify added/modified/deleted files and replace the manifest.

        The manifest is rewritten even when nothing changed so timestamps and
        analysis flags stay current.
        """
        previous = await self.load_manifest()
        previous_files = previous.files if previous is not None else {}
        entries: dict[str, ManifestEntry] = {}
        changes: list[ChangeRecord] = []

        for item in current_items:
            prior = previous_files.get(item.path)
            try:
                digest = await sha256_file(Path(item.path))
            except OSError as error:
                # still present: keep the last known entry and report nothing
                logger.debug("Could not hash %s: %s", item.path, error)
                if prior is not None:
                    entries[item.path] = prior
                continue
            last_modified = iso_from_epoch(item.last_modified)
            entries[item.path] = ManifestEntry(
                hash=digest,
                size=item.size,
                last_modified=last_modified,
                has_analysis=await self._results.has_result(item.relative_path),
            )
            if prior is None:
                changes.append(
                    ChangeRecord(
                        path=item.path,
                        relative_path=item.relative_path,
                        change_type="added",
                        old_hash=None,
                        new_hash=digest,
                        last_modified=last_modified,
                        size=item.size,
                    )
                )
            elif prior.hash != digest:
                changes.append(
                    ChangeRecord(
                        path=item.path,
                        relative_path=item.relative_path,
                        change_type="modified",
                        old_hash=prior.hash,
                        new_hash=digest,
                        last_modified=last_modified,
                        size=item.size,
                    )
                )

        for path, prior in previous_files.items():
            if path in entries or not prior.has_analysis:
                continue
            changes.append(
                ChangeRecord(
                    path=path,
                    relative_path=self._relative_to_root(path),
                    change_type="deleted",
                    old_hash=prior.hash,
                    new_hash=None,
                    last_modified=prior.last_modified,
                    size=prior.size,
                )
            )

        manifest = HashManifest(
            version=MANIFEST_VERSION,
            generated_at=iso_from_epoch(self._clock()),
            files=entries,
        )
        try:
            await write_json_atomic(self._manifest_path, manifest_to_dict(manifest))
        except OSError as error:
            logger.warning("Failed to save hash manifest %s: %s", self._manifest_path, error)
        return ChangeDetectionResult(
            changes=tuple(changes),
            stats=_count_changes(changes),
            manifest=manifest,
        )

    async def files_needing_analysis(self, current_items: Iterable[QueueItem]) -> list[QueueItem]:
        """Items with no stored result yet."""
        output: list[QueueItem] = []
        for item in current_items:
            if not await self._results.has_result(item.relative_path):
                output.append(item)
        return output

    async def outdated_results(self, changes: Iterable[ChangeRecord]) -> list[str]:
        """Relative paths whose stored result is invalidated by a change."""
        output: list[str] = []
        for change in changes:
            if change.change_type == "added":
                continue
            if await self._results.has_result(change.relative_path):
                output.append(change.relative_path)
        return output

    async def cleanup_obsolete_results(self, relative_paths: Iterable[str]) -> int:
        """Delete result and metadata files; returns the number of results removed."""
        cleaned = 0
        for relative_path in relative_paths:
            if await self._results.delete(relative_path):
                cleaned += 1
        if cleaned:
            logger.info("Removed %d obsolete analysis results", cleaned)
        return cleaned

    async def coverage_summary(self) -> CoverageSummary:
        manifest = await self.load_manifest()
        if manifest is None:
            return CoverageSummary(
                last_scan=None,
                total_tracked_files=0,
                files_with_analysis=0,
                coverage_percentage=0,
            )
        tracked = len(manifest.files)
        with_analysis = sum(1 for entry in manifest.files.values() if entry.has_analysis)
        coverage = round(with_analysis / tracked * 100) if tracked else 0
        return CoverageSummary(
            last_scan=manifest.generated_at,
            total_tracked_files=tracked,
            files_with_analysis=with_analysis,
            coverage_percentage=coverage,
        )

    async def reset_manifest(self) -> None:
        await remove_quietly(self._manifest_path)

    def _relative_to_root(self, path: str) -> str:
        try:
            return Path(path).relative_to(self._repo_root).as_posix()
        except ValueError:
            return Path(path).as_posix()


def _count_changes(changes: list[ChangeRecord]) -> ChangeStats:
    added = sum(1 for change in changes if change.change_type == "added")
    modified = sum(1 for change in changes if change.change_type == "modified")
    deleted = sum(1 for change in changes if change.change_type == "deleted")
    return ChangeStats(
        added=added,
        modified=modified,
        deleted=deleted,
        total_changes=len(changes),
    )
