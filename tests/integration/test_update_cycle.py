from __future__ import annotations

import os
from pathlib import Path

import pytest

from crystal_mcp.changes import detector as detector_module
from crystal_mcp.config import load_effective_config
from crystal_mcp.coordinator import Coordinator
from crystal_mcp.errors import NotInitializedError


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _three_file_repo(root: Path) -> None:
    _write(root / "a.config.json", "x" * 80)
    _write(root / "controllers" / "b.ts", "y" * 2000)
    _write(root / "c.test.ts", "z" * 500)


def _record_result(coordinator: Coordinator, relative_path: str) -> None:
    _write(coordinator.results.result_path(relative_path), f"# {relative_path}\n")


@pytest.mark.asyncio
async def test_initialize_seeds_queue_and_manifest(tmp_path: Path) -> None:
    _three_file_repo(tmp_path)
    coordinator = Coordinator(load_effective_config(tmp_path))

    result = await coordinator.initialize(["*.log"])

    assert result.scanned_files == 3
    assert result.queued_files == 3
    assert result.recovered is False
    assert result.claim_timeout_seconds == 900
    assert result.changes_detected == 3
    assert coordinator.detector.manifest_path.exists()
    status = await coordinator.status()
    assert status["initialized"] is True
    assert status["exclude_patterns"] == ["*.log"]


@pytest.mark.asyncio
async def test_queue_operations_require_initialize(tmp_path: Path) -> None:
    coordinator = Coordinator(load_effective_config(tmp_path))

    with pytest.raises(NotInitializedError):
        await coordinator.next_item()
    with pytest.raises(NotInitializedError):
        coordinator.progress()


@pytest.mark.asyncio
async def test_update_queues_added_and_modified_files(tmp_path: Path) -> None:
    _three_file_repo(tmp_path)
    coordinator = Coordinator(load_effective_config(tmp_path))
    await coordinator.initialize()

    _write(tmp_path / "controllers" / "b.ts", "w" * 2100)
    _write(tmp_path / "src" / "new.py", "n" * 300)
    result = await coordinator.update()

    assert set(result.queued_paths) == {"controllers/b.ts", "src/new.py"}
    assert result.summary.files_scanned == 4
    assert result.summary.changes_detected == 2
    assert result.summary.results_added == 1
    assert result.summary.results_updated == 1
    assert result.summary.results_removed == 0
    assert coordinator.progress().total_files == 2


@pytest.mark.asyncio
async def test_update_include_unanalyzed_and_force(tmp_path: Path) -> None:
    _three_file_repo(tmp_path)
    coordinator = Coordinator(load_effective_config(tmp_path))
    await coordinator.initialize()
    os.utime(tmp_path / "a.config.json", (1_000_000, 1_000_000))
    _record_result(coordinator, "a.config.json")

    plain = await coordinator.update()
    assert plain.queued_paths == ()

    unanalyzed = await coordinator.update(include_unanalyzed=True)
    assert set(unanalyzed.queued_paths) == {"controllers/b.ts", "c.test.ts"}

    forced = await coordinator.update(force=True)
    assert set(forced.queued_paths) == {"a.config.json", "controllers/b.ts", "c.test.ts"}
    assert coordinator.progress().total_files == 3


@pytest.mark.asyncio
async def test_update_cleans_results_of_deleted_files(tmp_path: Path) -> None:
    _three_file_repo(tmp_path)
    coordinator = Coordinator(load_effective_config(tmp_path))
    await coordinator.initialize()
    _record_result(coordinator, "c.test.ts")
    await coordinator.update()

    (tmp_path / "c.test.ts").unlink()
    result = await coordinator.update(cleanup_deleted=True)

    assert [(c.relative_path, c.change_type) for c in result.changes] == [("c.test.ts", "deleted")]
    assert result.outdated_results == ("c.test.ts",)
    assert result.summary.results_removed == 1
    assert not coordinator.results.result_path("c.test.ts").exists()


@pytest.mark.asyncio
async def test_update_status_and_report(tmp_path: Path) -> None:
    _three_file_repo(tmp_path)
    coordinator = Coordinator(load_effective_config(tmp_path))
    await coordinator.initialize()

    status = await coordinator.update_status()
    assert status.needs_update is True
    assert status.total_files == 3
    assert status.coverage_percentage == 0
    assert status.estimated_outdated == 3

    for path in ("a.config.json", "controllers/b.ts", "c.test.ts"):
        _record_result(coordinator, path)
    await coordinator.detect_changes()
    covered = await coordinator.update_status()
    assert covered.needs_update is False
    assert covered.coverage_percentage == 100

    report = await coordinator.update_report()
    assert report.startswith("# Update Report")
    assert "- Coverage: 100%" in report
    assert "up to date" in report


@pytest.mark.asyncio
async def test_cleanup_and_freshness_by_path(tmp_path: Path) -> None:
    _three_file_repo(tmp_path)
    coordinator = Coordinator(load_effective_config(tmp_path))
    os.utime(tmp_path / "c.test.ts", (1_000_000, 1_000_000))
    _record_result(coordinator, "c.test.ts")

    fresh = await coordinator.freshness("c.test.ts")
    assert fresh.is_fresh is True
    missing = await coordinator.freshness("a.config.json")
    assert missing.is_fresh is False
    assert missing.reason == "No analysis result exists for this file."

    assert await coordinator.cleanup(["c.test.ts", "a.config.json"]) == 1
    assert not coordinator.results.result_path("c.test.ts").exists()


@pytest.mark.asyncio
async def test_update_keeps_result_of_file_that_cannot_be_hashed(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _three_file_repo(tmp_path)
    coordinator = Coordinator(load_effective_config(tmp_path))
    await coordinator.initialize()
    _record_result(coordinator, "c.test.ts")
    await coordinator.update()

    async def denied(path: Path) -> str:
        raise PermissionError(13, "Permission denied", str(path))

    monkeypatch.setattr(detector_module, "sha256_file", denied)
    result = await coordinator.update(cleanup_deleted=True)

    assert result.changes == ()
    assert result.summary.results_removed == 0
    assert coordinator.results.result_path("c.test.ts").exists()
