"""Analysis result storage boundary."""

from .store import ResultStore, flatten_relative_path

__all__ = ["ResultStore", "flatten_relative_path"]
