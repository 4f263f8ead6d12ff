"""Typed models for hash manifests and change records."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

ChangeType = Literal["added", "modified", "deleted"]

MANIFEST_VERSION = "1.0"


@dataclass(slots=True, frozen=True)
class ManifestEntry:
    """Hash and analysis state of one tracked file."""

    hash: str
    size: int
    last_modified: str
    has_analysis: bool


@dataclass(slots=True, frozen=True)
class HashManifest:
    """Per-file content hashes from the most recent completed scan."""

    version: str
    generated_at: str
    files: dict[str, ManifestEntry] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class ChangeRecord:
    """One detected difference between two manifests."""

    path: str
    relative_path: str
    change_type: ChangeType
    old_hash: str | None
    new_hash: str | None
    last_modified: str
    size: int


@dataclass(slots=True, frozen=True)
class ChangeStats:
    """Change counts by type."""

    added: int
    modified: int
    deleted: int
    total_changes: int


@dataclass(slots=True, frozen=True)
class ChangeDetectionResult:
    """Outcome of one detection pass."""

    changes: tuple[ChangeRecord, ...]
    stats: ChangeStats
    manifest: HashManifest


@dataclass(slots=True, frozen=True)
class CoverageSummary:
    """Analysis coverage derived from the stored manifest."""

    last_scan: str | None
    total_tracked_files: int
    files_with_analysis: int
    coverage_percentage: int


def manifest_to_dict(manifest: HashManifest) -> dict[str, object]:
    return {
        "version": manifest.version,
        "generated_at": manifest.generated_at,
        "files": {
            path: {
                "hash": entry.hash,
                "size": entry.size,
                "last_modified": entry.last_modified,
                "has_analysis": entry.has_analysis,
            }
            for path, entry in sorted(manifest.files.items())
        },
    }


def manifest_from_dict(payload: dict[str, object]) -> HashManifest | None:
    """Parse a persisted manifest; malformed entries are dropped, a malformed shell is None."""
    version = payload.get("version")
    generated_at = payload.get("generated_at")
    files = payload.get("files")
    if not isinstance(version, str) or not isinstance(generated_at, str):
        return None
    if not isinstance(files, dict):
        return None
    entries: dict[str, ManifestEntry] = {}
    for path, raw in files.items():
        if not isinstance(path, str) or not isinstance(raw, dict):
            continue
        digest = raw.get("hash")
        size = raw.get("size")
        last_modified = raw.get("last_modified")
        has_analysis = raw.get("has_analysis")
        if not isinstance(digest, str) or not isinstance(size, int):
            continue
        if not isinstance(last_modified, str) or not isinstance(has_analysis, bool):
            continue
        entries[path] = ManifestEntry(
            hash=digest,
            size=size,
            last_modified=last_modified,
            has_analysis=has_analysis,
        )
    return HashManifest(version=version, generated_at=generated_at, files=entries)
