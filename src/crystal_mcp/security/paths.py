"""Resolve caller-supplied paths inside one repository root."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Final

WINDOWS_ABSOLUTE_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[a-zA-Z]:[\\/]")


class PathBlockedError(Exception):
    """Raised when a requested path points outside the repository."""

    def __init__(self, reason: str, hint: str) -> None:
        super().__init__(reason)
        self.reason = reason
        self.hint = hint


def _split_input(candidate: str) -> tuple[str, bool]:
    normalized = candidate.strip().replace("\\", "/")
    is_absolute = normalized.startswith("/") or bool(WINDOWS_ABSOLUTE_PATTERN.match(normalized))
    return normalized, is_absolute


def resolve_repo_path(repo_root: Path, candidate: str) -> Path:
    """Resolve ``candidate`` (relative or absolute) and require it to stay under ``repo_root``."""
    root = repo_root.resolve()
    normalized, is_absolute = _split_input(candidate)
    if not normalized:
        raise PathBlockedError(
            reason="Path is empty.",
            hint="Provide a repository-relative path such as 'src/app.ts'.",
        )

    if is_absolute:
        resolved = Path(normalized).resolve(strict=False)
        if not resolved.is_relative_to(root):
            raise PathBlockedError(
                reason="Absolute path is outside the repository root.",
                hint="Use a path located under the initialized repository.",
            )
        return resolved

    parts = [part for part in normalized.split("/") if part not in ("", ".")]
    if ".." in parts:
        raise PathBlockedError(
            reason="Path traversal is blocked.",
            hint="Remove '..' segments and use a repository-relative path.",
        )
    resolved = (root / Path(*parts)).resolve(strict=False)
    if not resolved.is_relative_to(root):
        raise PathBlockedError(
            reason="Resolved path escapes the repository root.",
            hint="Use a path located under the initialized repository.",
        )
    return resolved


def relative_repo_path(repo_root: Path, candidate: str) -> str:
    """POSIX relative form of a path accepted by :func:`resolve_repo_path`."""
    resolved = resolve_repo_path(repo_root, candidate)
    relative = resolved.relative_to(repo_root.resolve()).as_posix()
    if relative in ("", "."):
        raise PathBlockedError(
            reason="Path names the repository root, not a file.",
            hint="Provide the path of a file inside the repository.",
        )
    return relative
