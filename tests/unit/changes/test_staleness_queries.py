from __future__ import annotations

from pathlib import Path

import pytest

from crystal_mcp.changes import ChangeDetector
from crystal_mcp.results import ResultStore
from crystal_mcp.scan import scan_repository


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


@pytest.mark.asyncio
async def test_files_needing_analysis_and_outdated_results(tmp_path: Path) -> None:
    data_dir = tmp_path / ".context-crystal"
    results = ResultStore(data_dir)
    detector = ChangeDetector(tmp_path, data_dir, results)
    _write(tmp_path / "done.py", "a = 1\n")
    _write(tmp_path / "todo.py", "b = 2\n")
    _write(results.result_path("done.py"), "# done\n")
    items = await scan_repository(tmp_path, data_dir=data_dir)
    await detector.detect_changes(items)

    needing = await detector.files_needing_analysis(items)
    assert [item.relative_path for item in needing] == ["todo.py"]

    _write(tmp_path / "done.py", "a = 2\n")
    _write(tmp_path / "todo.py", "b = 3\n")
    changes = (await detector.detect_changes(await scan_repository(tmp_path, data_dir=data_dir))).changes

    assert await detector.outdated_results(changes) == ["done.py"]


@pytest.mark.asyncio
async def test_cleanup_removes_results_and_tolerates_missing(tmp_path: Path) -> None:
    data_dir = tmp_path / ".context-crystal"
    results = ResultStore(data_dir)
    detector = ChangeDetector(tmp_path, data_dir, results)
    _write(results.result_path("src/gone.py"), "# gone\n")
    _write(results.metadata_path("src/gone.py"), "{}")

    removed = await detector.cleanup_obsolete_results(["src/gone.py", "src/never.py"])

    assert removed == 1
    assert not results.result_path("src/gone.py").exists()
    assert not results.metadata_path("src/gone.py").exists()


@pytest.mark.asyncio
async def test_coverage_summary_reads_manifest(tmp_path: Path) -> None:
    data_dir = tmp_path / ".context-crystal"
    results = ResultStore(data_dir)
    detector = ChangeDetector(tmp_path, data_dir, results)

    empty = await detector.coverage_summary()
    assert empty.last_scan is None
    assert empty.total_tracked_files == 0
    assert empty.coverage_percentage == 0

    for name in ("a.py", "b.py", "c.py"):
        _write(tmp_path / name, f"{name} = 1\n")
    _write(results.result_path("a.py"), "# a\n")
    await detector.detect_changes(await scan_repository(tmp_path, data_dir=data_dir))

    summary = await detector.coverage_summary()
    assert summary.total_tracked_files == 3
    assert summary.files_with_analysis == 1
    assert summary.coverage_percentage == 33
    assert summary.last_scan is not None

    await detector.reset_manifest()
    assert (await detector.coverage_summary()).total_tracked_files == 0
