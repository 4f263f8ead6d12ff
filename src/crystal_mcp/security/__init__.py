"""Repository-scoped path safety."""

from .paths import PathBlockedError, relative_repo_path, resolve_repo_path

__all__ = ["PathBlockedError", "relative_repo_path", "resolve_repo_path"]
