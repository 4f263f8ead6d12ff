"""Time-boxed claims shared between worker processes.

Claims live in one JSON file mapping relative path -> lease start (ms since
epoch). Every read-modify-write of that file happens while holding a lock
file created with exclusive-create semantics, so two processes can never both
observe a path as unclaimed and claim it.

A claim is live while ``now_ms - claimed_at_ms < timeout_seconds * 1000``.
Expired claims are treated as absent and swept on the next transaction; this
is the only recovery path for workers that exit without finishing.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from pathlib import Path

import aiofiles
import aiofiles.os

from crystal_mcp.config import DEFAULT_CLAIM_TIMEOUT_SECONDS, DEFAULT_LOCK_STALE_SECONDS
from crystal_mcp.persist import file_mtime, read_json_object, remove_quietly, write_json_atomic

logger = logging.getLogger(__name__)

CLAIMS_FILE_NAME = "file-claims.json"
TIMEOUT_FILE_NAME = "crystallization_timeout.txt"
LOCK_SUFFIX = ".lock"
_LOCK_POLL_SECONDS = 0.02


def now_ms(clock: Callable[[], float]) -> int:
    """Current time of ``clock`` (epoch seconds) in whole milliseconds."""
    return int(clock() * 1000)


def is_claim_live(now_ms: int, claimed_at_ms: int, timeout_seconds: int) -> bool:
    """Return True while a claim is inside its lease window."""
    return now_ms - claimed_at_ms < timeout_seconds * 1000


def expired_claims(claims: dict[str, int], now_ms: int, timeout_seconds: int) -> list[str]:
    """Paths whose claims have run past the timeout, in sorted order."""
    return sorted(
        path
        for path, claimed_at in claims.items()
        if not is_claim_live(now_ms, claimed_at, timeout_seconds)
    )


def sweep_expired(claims: dict[str, int], now_ms: int, timeout_seconds: int) -> list[str]:
    """Remove expired claims in place and return the released paths."""
    released = expired_claims(claims, now_ms, timeout_seconds)
    for path in released:
        del claims[path]
    return released


async def read_claim_timeout(
    data_dir: Path, default_seconds: int = DEFAULT_CLAIM_TIMEOUT_SECONDS
) -> int:
    """Read the claim timeout in seconds, creating the file with the default if absent.

    An existing file is never overwritten; unreadable or invalid content falls
    back to ``default_seconds``.
    """
    path = data_dir / TIMEOUT_FILE_NAME
    try:
        async with aiofiles.open(path, "r", encoding="utf-8") as handle:
            raw = (await handle.read()).strip()
    except FileNotFoundError:
        await _create_timeout_file(path, default_seconds)
        return default_seconds
    except OSError as error:
        logger.warning("Could not read claim timeout %s: %s", path, error)
        return default_seconds
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid claim timeout %r in %s; using %ds", raw, path, default_seconds)
        return default_seconds
    if value < 1:
        logger.warning("Non-positive claim timeout in %s; using %ds", path, default_seconds)
        return default_seconds
    return value


async def _create_timeout_file(path: Path, seconds: int) -> None:
    try:
        await aiofiles.os.makedirs(path.parent, exist_ok=True)
        async with aiofiles.open(path, "x", encoding="utf-8") as handle:
            await handle.write(f"{seconds}\n")
    except FileExistsError:
        return
    except OSError as error:
        logger.warning("Could not create claim timeout file %s: %s", path, error)


class FileLock:
    """Cross-process mutex backed by an exclusively created lock file.

    A lock file older than ``stale_after`` seconds is assumed to belong to a
    crashed holder and is removed.
    """

    def __init__(self, path: Path, stale_after: float = DEFAULT_LOCK_STALE_SECONDS) -> None:
        self._path = path
        self._stale_after = stale_after
        self._held = False

    @property
    def path(self) -> Path:
        return self._path

    async def acquire(self) -> bool:
        """Block until the lock is held; False means the lock file could not be created."""
        try:
            await aiofiles.os.makedirs(self._path.parent, exist_ok=True)
        except OSError as error:
            logger.warning("Proceeding without lock %s: %s", self._path, error)
            return False
        while True:
            try:
                async with aiofiles.open(self._path, "x", encoding="utf-8") as handle:
                    await handle.write(f"{os.getpid()} {time.time():.3f}\n")
            except FileExistsError:
                if await self._break_if_stale():
                    continue
                await asyncio.sleep(_LOCK_POLL_SECONDS)
                continue
            except OSError as error:
                logger.warning("Proceeding without lock %s: %s", self._path, error)
                return False
            self._held = True
            return True

    async def release(self) -> None:
        if not self._held:
            return
        self._held = False
        await remove_quietly(self._path)

    async def _break_if_stale(self) -> bool:
        modified = await file_mtime(self._path)
        if modified is None:
            return True
        if time.time() - modified <= self._stale_after:
            return False
        logger.warning("Breaking stale lock %s", self._path)
        await remove_quietly(self._path)
        return True

    @asynccontextmanager
    async def held(self) -> AsyncIterator[None]:
        await self.acquire()
        try:
            yield
        finally:
            await self.release()


class ClaimStore:
    """Lease table persisted in ``file-claims.json``."""

    def __init__(
        self,
        data_dir: Path,
        timeout_seconds: int,
        clock: Callable[[], float] = time.time,
        lock_stale_seconds: float = DEFAULT_LOCK_STALE_SECONDS,
    ) -> None:
        self._path = data_dir / CLAIMS_FILE_NAME
        self._lock = FileLock(data_dir / f"{CLAIMS_FILE_NAME}{LOCK_SUFFIX}", lock_stale_seconds)
        self._timeout_seconds = timeout_seconds
        self._clock = clock

    @property
    def path(self) -> Path:
        return self._path

    @property
    def timeout_seconds(self) -> int:
        return self._timeout_seconds

    def now_ms(self) -> int:
        return now_ms(self._clock)

    def is_live(self, claims: dict[str, int], relative_path: str) -> bool:
        claimed_at = claims.get(relative_path)
        if claimed_at is None:
            return False
        return is_claim_live(self.now_ms(), claimed_at, self._timeout_seconds)

    async def load(self) -> dict[str, int]:
        """Read the claim table; a missing or corrupt file is an empty table."""
        payload = await read_json_object(self._path)
        if payload is None:
            return {}
        claims: dict[str, int] = {}
        for path, claimed_at in payload.items():
            if isinstance(claimed_at, bool):
                continue
            if isinstance(claimed_at, (int, float)):
                claims[path] = int(claimed_at)
        return claims

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[dict[str, int]]:
        """Yield the swept claim table under the lock and persist it if it changed."""
        async with self._lock.held():
            claims = await self.load()
            before = dict(claims)
            released = sweep_expired(claims, self.now_ms(), self._timeout_seconds)
            if released:
                logger.info("Released %d expired claims: %s", len(released), ", ".join(released))
            yield claims
            if claims != before:
                await self._save(claims)

    async def release(self, relative_path: str) -> bool:
        """Drop one claim; returns False when the path held no claim."""
        async with self.transaction() as claims:
            if relative_path not in claims:
                return False
            del claims[relative_path]
            return True

    async def _save(self, claims: dict[str, int]) -> None:
        try:
            await write_json_atomic(self._path, dict(sorted(claims.items())))
        except OSError as error:
            logger.warning("Failed to save claims %s: %s", self._path, error)
