from __future__ import annotations

from pathlib import Path

import aiofiles.os
import pytest

from crystal_mcp.scan import discovery as discovery_module
from crystal_mcp.scan import scan_repository


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


@pytest.mark.asyncio
async def test_file_removed_after_listing_is_skipped(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _write(tmp_path / "kept.py", "k = 1\n")
    real_listdir = aiofiles.os.listdir

    async def listdir_with_ghost(path: object) -> list[str]:
        names = await real_listdir(path)
        if Path(str(path)) == tmp_path.resolve():
            names.append("ghost.py")
        return names

    monkeypatch.setattr(aiofiles.os, "listdir", listdir_with_ghost)
    profile: dict[str, object] = {}

    items = await scan_repository(tmp_path, profile=profile)

    assert [item.relative_path for item in items] == ["kept.py"]
    assert profile["vanished_skipped"] == 1


@pytest.mark.asyncio
async def test_file_unreadable_during_binary_check_is_skipped(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _write(tmp_path / "locked.py", "l = 1\n")
    _write(tmp_path / "open.py", "o = 1\n")
    real_is_binary = discovery_module.is_binary_file

    async def guarded(path: Path, sniff_bytes: int = 512) -> bool:
        if path.name == "locked.py":
            raise PermissionError(13, "Permission denied", str(path))
        return await real_is_binary(path, sniff_bytes)

    monkeypatch.setattr(discovery_module, "is_binary_file", guarded)
    profile: dict[str, object] = {}

    items = await scan_repository(tmp_path, profile=profile)

    assert [item.relative_path for item in items] == ["open.py"]
    assert profile["vanished_skipped"] == 1
