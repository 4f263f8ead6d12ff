from __future__ import annotations

import json
from pathlib import Path

import pytest

from crystal_mcp.changes import MANIFEST_FILE_NAME, ChangeDetector
from crystal_mcp.results import ResultStore
from crystal_mcp.scan import scan_repository


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _detector(root: Path) -> tuple[ChangeDetector, ResultStore, Path]:
    data_dir = root / ".context-crystal"
    results = ResultStore(data_dir)
    return ChangeDetector(root, data_dir, results), results, data_dir


async def _scan(root: Path) -> list:
    return await scan_repository(root, data_dir=root / ".context-crystal")


@pytest.mark.asyncio
async def test_first_pass_reports_every_file_as_added(tmp_path: Path) -> None:
    _write(tmp_path / "src" / "app.py", "print('v1')\n")
    _write(tmp_path / "README.md", "# Readme\n")
    detector, _, data_dir = _detector(tmp_path)

    result = await detector.detect_changes(await _scan(tmp_path))

    assert sorted(change.relative_path for change in result.changes) == [
        "README.md",
        "src/app.py",
    ]
    assert {change.change_type for change in result.changes} == {"added"}
    assert all(change.old_hash is None for change in result.changes)
    assert result.stats.added == 2
    assert result.stats.total_changes == 2
    assert (data_dir / MANIFEST_FILE_NAME).exists()


@pytest.mark.asyncio
async def test_unchanged_rescan_reports_nothing(tmp_path: Path) -> None:
    _write(tmp_path / "src" / "app.py", "print('v1')\n")
    detector, _, _ = _detector(tmp_path)
    await detector.detect_changes(await _scan(tmp_path))

    second = await detector.detect_changes(await _scan(tmp_path))

    assert second.changes == ()
    assert second.stats.total_changes == 0


@pytest.mark.asyncio
async def test_content_change_is_modified_with_both_hashes(tmp_path: Path) -> None:
    target = tmp_path / "src" / "app.py"
    _write(target, "print('v1')\n")
    detector, _, _ = _detector(tmp_path)
    first = await detector.detect_changes(await _scan(tmp_path))
    original_hash = first.manifest.files[str(target.resolve())].hash

    _write(target, "print('v2')\n")
    second = await detector.detect_changes(await _scan(tmp_path))

    assert len(second.changes) == 1
    change = second.changes[0]
    assert change.change_type == "modified"
    assert change.relative_path == "src/app.py"
    assert change.old_hash == original_hash
    assert change.new_hash is not None
    assert change.new_hash != original_hash


@pytest.mark.asyncio
async def test_deletions_only_reported_for_analyzed_files(tmp_path: Path) -> None:
    _write(tmp_path / "analyzed.py", "a = 1\n")
    _write(tmp_path / "never.py", "b = 2\n")
    detector, results, _ = _detector(tmp_path)
    _write(results.result_path("analyzed.py"), "# analyzed\n")
    await detector.detect_changes(await _scan(tmp_path))

    (tmp_path / "analyzed.py").unlink()
    (tmp_path / "never.py").unlink()
    result = await detector.detect_changes(await _scan(tmp_path))

    assert [(c.relative_path, c.change_type) for c in result.changes] == [
        ("analyzed.py", "deleted")
    ]
    assert result.changes[0].new_hash is None
    assert result.stats.deleted == 1


@pytest.mark.asyncio
async def test_manifest_is_rewritten_even_without_changes(tmp_path: Path) -> None:
    _write(tmp_path / "app.py", "a = 1\n")
    clock_values = iter([1_700_000_000.0, 1_700_000_500.0])
    data_dir = tmp_path / ".context-crystal"
    results = ResultStore(data_dir)
    detector = ChangeDetector(tmp_path, data_dir, results, clock=lambda: next(clock_values))
    await detector.detect_changes(await _scan(tmp_path))
    first = json.loads((data_dir / MANIFEST_FILE_NAME).read_text(encoding="utf-8"))

    _write(results.result_path("app.py"), "# app\n")
    await detector.detect_changes(await _scan(tmp_path))
    second = json.loads((data_dir / MANIFEST_FILE_NAME).read_text(encoding="utf-8"))

    assert first["version"] == "1.0"
    assert first["generated_at"] != second["generated_at"]
    entry = second["files"][str((tmp_path / "app.py").resolve())]
    assert entry["has_analysis"] is True


@pytest.mark.asyncio
async def test_corrupt_manifest_is_treated_as_no_prior_state(tmp_path: Path) -> None:
    _write(tmp_path / "app.py", "a = 1\n")
    detector, _, data_dir = _detector(tmp_path)
    _write(data_dir / MANIFEST_FILE_NAME, "{not json")

    result = await detector.detect_changes(await _scan(tmp_path))

    assert [change.change_type for change in result.changes] == ["added"]
