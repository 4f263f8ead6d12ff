"""Repository walk, ignore rules and work-item construction."""

from __future__ import annotations

import logging
import stat as stat_module
import time
from collections.abc import Iterable
from dataclasses import asdict, dataclass
from pathlib import Path

import aiofiles
import aiofiles.os
import pathspec

from crystal_mcp.config import (
    DEFAULT_BINARY_SNIFF_BYTES,
    DEFAULT_EXCLUDE_PATTERNS,
    DEFAULT_MAX_FILE_BYTES,
    ScanConfig,
)
from crystal_mcp.scan.classify import (
    calculate_priority,
    classify_category,
    estimate_tokens,
    file_type_tag,
)
from crystal_mcp.scan.models import QueueItem

logger = logging.getLogger(__name__)

GITIGNORE_FILE_NAME = ".gitignore"


@dataclass(slots=True, frozen=True)
class ScanProfile:
    """Deterministic diagnostics for one scan pass."""

    total_candidates: int
    excluded_by_pattern: int
    oversized_skipped: int
    binary_skipped: int
    vanished_skipped: int
    queued: int
    total_seconds: float


@dataclass(slots=True)
class _ScanCounters:
    total_candidates: int = 0
    excluded_by_pattern: int = 0
    oversized_skipped: int = 0
    binary_skipped: int = 0
    vanished_skipped: int = 0


def build_ignore_spec(
    patterns: Iterable[str],
    gitignore_lines: Iterable[str] = (),
) -> pathspec.GitIgnoreSpec:
    """Compile exclusion patterns with gitignore semantics."""
    lines: list[str] = []
    for raw in (*patterns, *gitignore_lines):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        lines.append(line)
    return pathspec.GitIgnoreSpec.from_lines(lines)


async def read_ignore_file(path: Path) -> list[str]:
    """Read gitignore-style lines; a missing or unreadable file yields no rules."""
    try:
        async with aiofiles.open(path, "r", encoding="utf-8", errors="ignore") as handle:
            content = await handle.read()
    except OSError:
        return []
    return [
        line.strip()
        for line in content.splitlines()
        if line.strip() and not line.strip().startswith("#")
    ]


def data_dir_pattern(repo_root: Path, data_dir: Path | None) -> str | None:
    """Return an anchored pattern excluding the state directory when it sits under root."""
    if data_dir is None:
        return None
    try:
        relative = data_dir.resolve().relative_to(repo_root.resolve()).as_posix()
    except ValueError:
        return None
    if relative in ("", "."):
        return None
    return f"/{relative}/"


async def is_binary_file(path: Path, sniff_bytes: int = DEFAULT_BINARY_SNIFF_BYTES) -> bool:
    """Treat a file as binary when its leading bytes contain a NUL byte."""
    async with aiofiles.open(path, "rb") as handle:
        sample = await handle.read(sniff_bytes)
    return b"\x00" in sample


async def scan_repository(
    repo_root: Path,
    exclude_patterns: Iterable[str] = (),
    config: ScanConfig | None = None,
    data_dir: Path | None = None,
    profile: dict[str, object] | None = None,
) -> list[QueueItem]:
    """Walk the repository and return work items by descending priority.

    Exclusions are the union of the configured defaults, ``exclude_patterns``,
    the repository ``.gitignore`` (when enabled) and the state directory.
    Oversized and binary files are skipped. Ties keep discovery order.
    """
    started = time.perf_counter()
    root = repo_root.resolve()
    max_file_bytes = config.max_file_bytes if config else DEFAULT_MAX_FILE_BYTES
    sniff_bytes = config.binary_sniff_bytes if config else DEFAULT_BINARY_SNIFF_BYTES
    default_patterns = config.exclude_patterns if config else DEFAULT_EXCLUDE_PATTERNS
    respect_gitignore = config.respect_gitignore if config else True

    patterns = [*default_patterns, *exclude_patterns]
    own_dir = data_dir_pattern(root, data_dir)
    if own_dir is not None:
        patterns.append(own_dir)
    gitignore_lines: list[str] = []
    if respect_gitignore:
        gitignore_lines = await read_ignore_file(root / GITIGNORE_FILE_NAME)
    spec = build_ignore_spec(patterns, gitignore_lines)

    counters = _ScanCounters()
    items: list[QueueItem] = []
    stack: list[Path] = [root]
    while stack:
        current = stack.pop()
        try:
            names = sorted(await aiofiles.os.listdir(current))
        except OSError:
            continue
        subdirectories: list[Path] = []
        for name in names:
            full_path = current / name
            relative = full_path.relative_to(root).as_posix()
            try:
                info = await aiofiles.os.stat(full_path, follow_symlinks=False)
            except OSError:
                counters.vanished_skipped += 1
                continue
            if stat_module.S_ISDIR(info.st_mode):
                if spec.match_file(f"{relative}/"):
                    continue
                subdirectories.append(full_path)
                continue
            if not stat_module.S_ISREG(info.st_mode):
                continue
            counters.total_candidates += 1
            if spec.match_file(relative):
                counters.excluded_by_pattern += 1
                continue
            if info.st_size > max_file_bytes:
                counters.oversized_skipped += 1
                continue
            try:
                binary = await is_binary_file(full_path, sniff_bytes)
            except OSError:
                counters.vanished_skipped += 1
                continue
            if binary:
                counters.binary_skipped += 1
                continue
            items.append(build_queue_item(full_path, relative, info.st_size, info.st_mtime))
        stack.extend(reversed(subdirectories))

    # sorted() is stable, so equal priorities keep walk order
    ordered = sorted(items, key=lambda item: -item.priority)
    if profile is not None:
        payload = ScanProfile(
            total_candidates=counters.total_candidates,
            excluded_by_pattern=counters.excluded_by_pattern,
            oversized_skipped=counters.oversized_skipped,
            binary_skipped=counters.binary_skipped,
            vanished_skipped=counters.vanished_skipped,
            queued=len(ordered),
            total_seconds=time.perf_counter() - started,
        )
        profile.update(asdict(payload))
    logger.debug("Scanned %s: %d items queued", root, len(ordered))
    return ordered


def build_queue_item(full_path: Path, relative_path: str, size: int, mtime: float) -> QueueItem:
    """Classify and score one discovered file."""
    category = classify_category(relative_path)
    return QueueItem(
        path=str(full_path),
        relative_path=relative_path,
        size=size,
        priority=calculate_priority(relative_path, size, category),
        file_type=file_type_tag(relative_path),
        estimated_tokens=estimate_tokens(size, category),
        category=category,
        last_modified=mtime,
    )
