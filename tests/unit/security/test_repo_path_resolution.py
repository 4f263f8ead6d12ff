from __future__ import annotations

from pathlib import Path

import pytest

from crystal_mcp.security import PathBlockedError, relative_repo_path, resolve_repo_path


def test_path_traversal_is_blocked(tmp_path: Path) -> None:
    with pytest.raises(PathBlockedError) as error:
        resolve_repo_path(repo_root=tmp_path, candidate="../outside.txt")

    assert error.value.reason == "Path traversal is blocked."


def test_absolute_path_outside_root_is_blocked(tmp_path: Path) -> None:
    outside = tmp_path.parent / "outside.txt"

    with pytest.raises(PathBlockedError) as error:
        resolve_repo_path(repo_root=tmp_path, candidate=str(outside))

    assert error.value.reason == "Absolute path is outside the repository root."


def test_relative_form_normalizes_separators_and_absolute_input(tmp_path: Path) -> None:
    absolute = tmp_path / "src" / "app.py"

    assert relative_repo_path(tmp_path, "src\\app.py") == "src/app.py"
    assert relative_repo_path(tmp_path, "./src/app.py") == "src/app.py"
    assert relative_repo_path(tmp_path, str(absolute)) == "src/app.py"


def test_root_itself_is_not_a_file_path(tmp_path: Path) -> None:
    with pytest.raises(PathBlockedError):
        relative_repo_path(tmp_path, ".")
    with pytest.raises(PathBlockedError):
        relative_repo_path(tmp_path, "")
