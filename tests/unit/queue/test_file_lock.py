from __future__ import annotations

import asyncio
import os
import time
from pathlib import Path

import pytest

from crystal_mcp.queue import FileLock


@pytest.mark.asyncio
async def test_lock_file_exists_only_while_held(tmp_path: Path) -> None:
    lock = FileLock(tmp_path / "state.json.lock")

    async with lock.held():
        assert lock.path.exists()

    assert not lock.path.exists()


@pytest.mark.asyncio
async def test_second_holder_waits_for_release(tmp_path: Path) -> None:
    path = tmp_path / "state.json.lock"
    first = FileLock(path)
    second = FileLock(path)
    order: list[str] = []

    await first.acquire()

    async def contender() -> None:
        async with second.held():
            order.append("second")

    task = asyncio.create_task(contender())
    await asyncio.sleep(0.1)
    order.append("first-release")
    await first.release()
    await asyncio.wait_for(task, timeout=5)

    assert order == ["first-release", "second"]


@pytest.mark.asyncio
async def test_stale_lock_is_broken(tmp_path: Path) -> None:
    path = tmp_path / "state.json.lock"
    path.write_text("12345 0.000\n", encoding="utf-8")
    old = time.time() - 60
    os.utime(path, (old, old))
    lock = FileLock(path, stale_after=10.0)

    acquired = await asyncio.wait_for(lock.acquire(), timeout=5)

    assert acquired is True
    await lock.release()
    assert not path.exists()
