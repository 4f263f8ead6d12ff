"""Durable, lease-protected work queue for one repository."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

from crystal_mcp.config import (
    DEFAULT_CLAIM_TIMEOUT_SECONDS,
    DEFAULT_LOCK_STALE_SECONDS,
    DEFAULT_SESSION_FRESHNESS_HOURS,
)
from crystal_mcp.errors import QueueNotInitializedError
from crystal_mcp.persist import (
    epoch_from_iso,
    iso_from_epoch,
    read_json_object,
    remove_quietly,
    write_json_atomic,
)
from crystal_mcp.queue.claims import LOCK_SUFFIX, ClaimStore, FileLock, read_claim_timeout
from crystal_mcp.queue.models import (
    CategoryProgress,
    QueueProgress,
    QueueSnapshot,
    SessionInfo,
    snapshot_from_dict,
    snapshot_to_dict,
)
from crystal_mcp.results import ResultStore
from crystal_mcp.scan.models import FILE_CATEGORIES, QueueItem

logger = logging.getLogger(__name__)

SNAPSHOT_FILE_NAME = "processing-queue.json"


@dataclass(slots=True)
class QueueState:
    """In-memory session state owned by one QueueManager.

    ``pending`` holds items not yet handed out. ``leased`` holds items whose
    path carries a live claim, whether handed out here or claimed by another
    process; they return to ``pending`` when the claim disappears.
    """

    session_id: str
    start_time: float
    exclude_patterns: tuple[str, ...]
    pending: deque[QueueItem] = field(default_factory=deque)
    leased: dict[str, QueueItem] = field(default_factory=dict)
    processed: set[str] = field(default_factory=set)
    processed_by_category: dict[str, int] = field(default_factory=dict)
    current: str | None = None


class QueueManager:
    """Hands out scanned items one at a time and records completion."""

    def __init__(
        self,
        repo_root: Path,
        data_dir: Path,
        results: ResultStore,
        clock: Callable[[], float] = time.time,
        default_claim_timeout_seconds: int = DEFAULT_CLAIM_TIMEOUT_SECONDS,
        session_freshness_hours: int = DEFAULT_SESSION_FRESHNESS_HOURS,
        lock_stale_seconds: float = DEFAULT_LOCK_STALE_SECONDS,
    ) -> None:
        self._repo_root = repo_root.resolve()
        self._data_dir = data_dir
        self._snapshot_path = data_dir / SNAPSHOT_FILE_NAME
        self._snapshot_lock = FileLock(
            data_dir / f"{SNAPSHOT_FILE_NAME}{LOCK_SUFFIX}", lock_stale_seconds
        )
        self._results = results
        self._clock = clock
        self._default_claim_timeout = default_claim_timeout_seconds
        self._freshness_seconds = session_freshness_hours * 60 * 60
        self._lock_stale_seconds = lock_stale_seconds
        self._dispatch_lock = asyncio.Lock()
        self._claims: ClaimStore | None = None
        self._state: QueueState | None = None
        self._recovered = False

    @property
    def snapshot_path(self) -> Path:
        return self._snapshot_path

    @property
    def initialized(self) -> bool:
        return self._state is not None

    @property
    def recovered(self) -> bool:
        """True when the last initialize resumed a persisted session."""
        return self._recovered

    @property
    def claim_timeout_seconds(self) -> int:
        return self._require_claims("claim_timeout_seconds").timeout_seconds

    async def initialize(
        self,
        items: Iterable[QueueItem],
        exclude_patterns: Iterable[str] = (),
        *,
        recover: bool = True,
        skip_fresh: bool = True,
    ) -> int:
        """Resume the previous session when possible, else seed a fresh one.

        Returns the number of items queued.
        """
        timeout = await read_claim_timeout(self._data_dir, self._default_claim_timeout)
        self._claims = ClaimStore(
            self._data_dir,
            timeout_seconds=timeout,
            clock=self._clock,
            lock_stale_seconds=self._lock_stale_seconds,
        )
        patterns = tuple(exclude_patterns)
        state = await self._try_recover(patterns) if recover else None
        self._recovered = state is not None
        if state is None:
            state = await self._seed(items, patterns, skip_fresh)
        self._state = state
        await self._persist()
        return len(state.pending)

    async def next_item(self) -> QueueItem | None:
        """Claim and return the next available item, or None when nothing is available."""
        state = self._require_state("next_item")
        claims_store = self._require_claims("next_item")
        async with self._dispatch_lock:
            await self._merge_external_progress(state)
            chosen: QueueItem | None = None
            async with claims_store.transaction() as claims:
                self._requeue_unclaimed(state, claims)
                while state.pending:
                    item = state.pending.popleft()
                    path = item.relative_path
                    if path in state.processed:
                        continue
                    if path in claims:
                        state.leased[path] = item
                        continue
                    claims[path] = claims_store.now_ms()
                    state.leased[path] = item
                    chosen = item
                    break
            state.current = chosen.relative_path if chosen is not None else None
            await self._persist()
            return chosen

    async def mark_processed(self, path: str) -> None:
        """Record completion of ``path`` (relative or absolute) and release its claim."""
        state = self._require_state("mark_processed")
        claims_store = self._require_claims("mark_processed")
        relative_path = self.to_relative_path(path)
        async with self._dispatch_lock:
            item = state.leased.pop(relative_path, None)
            if item is None:
                item = self._remove_pending(state, relative_path)
            if relative_path not in state.processed:
                state.processed.add(relative_path)
                if item is not None:
                    _increment(state.processed_by_category, item.category)
            released = await claims_store.release(relative_path)
            if not released:
                logger.info("No claim held for %s; release is a no-op", relative_path)
            if state.current == relative_path:
                state.current = None
            await self._persist()

    def progress(self) -> QueueProgress:
        """Counts, percentage, category breakdown and ETA for the session."""
        state = self._require_state("progress")
        outstanding = self._outstanding_items(state)
        processed = len(state.processed)
        total = processed + len(outstanding)
        totals: dict[str, int] = {}
        for item in outstanding:
            _increment(totals, item.category)
        by_category: dict[str, CategoryProgress] = {}
        for category in FILE_CATEGORIES:
            done = state.processed_by_category.get(category, 0)
            count = totals.get(category, 0) + done
            if count:
                by_category[category] = CategoryProgress(total=count, processed=done)

        now = self._clock()
        eta_seconds: float | None = None
        eta_timestamp: str | None = None
        if processed > 0:
            average = max(0.0, now - state.start_time) / processed
            eta_seconds = round(average * len(outstanding), 3)
            eta_timestamp = iso_from_epoch(now + eta_seconds)
        return QueueProgress(
            session_id=state.session_id,
            total_files=total,
            processed_files=processed,
            remaining_files=len(state.pending),
            in_flight_files=len(state.leased),
            completion_percentage=round(processed / total * 100) if total else 0,
            current_file=state.current,
            start_time=iso_from_epoch(state.start_time),
            remaining_estimated_tokens=sum(item.estimated_tokens for item in outstanding),
            files_by_category=by_category,
            estimated_seconds_remaining=eta_seconds,
            estimated_completion_time=eta_timestamp,
        )

    def session_info(self) -> SessionInfo:
        state = self._require_state("session_info")
        return SessionInfo(
            session_id=state.session_id,
            repo_path=str(self._repo_root),
            start_time=iso_from_epoch(state.start_time),
            claim_timeout_seconds=self._require_claims("session_info").timeout_seconds,
        )

    def remaining_count(self) -> int:
        return len(self._outstanding_items(self._require_state("remaining_count")))

    def processed_count(self) -> int:
        return len(self._require_state("processed_count").processed)

    async def clear_session(self) -> None:
        """Delete the persisted snapshot so the next initialize starts fresh."""
        if await remove_quietly(self._snapshot_path):
            logger.info("Cleared queue session at %s", self._snapshot_path)

    def to_relative_path(self, path: str) -> str:
        """Normalize an absolute path under the root, or a relative one, to POSIX relative form."""
        candidate = Path(path)
        if candidate.is_absolute():
            try:
                return candidate.resolve().relative_to(self._repo_root).as_posix()
            except ValueError:
                return candidate.as_posix()
        return path.replace("\\", "/").removeprefix("./")

    async def _try_recover(self, exclude_patterns: tuple[str, ...]) -> QueueState | None:
        payload = await read_json_object(self._snapshot_path)
        if payload is None:
            return None
        snapshot = snapshot_from_dict(payload)
        if snapshot is None:
            logger.info("Queue snapshot %s is malformed; starting fresh", self._snapshot_path)
            return None
        last_activity = epoch_from_iso(snapshot.last_activity)
        if last_activity is None or self._clock() - last_activity > self._freshness_seconds:
            logger.info("Queue session %s is stale; starting fresh", snapshot.session_id)
            return None
        if sorted(snapshot.exclude_patterns) != sorted(exclude_patterns):
            logger.info("Exclude patterns changed since session %s; starting fresh", snapshot.session_id)
            return None
        if snapshot.repo_path != str(self._repo_root):
            logger.info("Queue snapshot belongs to %s; starting fresh", snapshot.repo_path)
            return None

        processed = set(snapshot.processed_files)
        pending: deque[QueueItem] = deque()
        seen: set[str] = set()
        dropped_fresh = 0
        for item in snapshot.remaining_queue:
            if item.relative_path in processed or item.relative_path in seen:
                continue
            seen.add(item.relative_path)
            if await self._results.is_fresh(item):
                dropped_fresh += 1
                continue
            pending.append(item)
        start_time = epoch_from_iso(snapshot.start_time)
        logger.info(
            "Recovered session %s with %d processed and %d remaining files (%d already fresh)",
            snapshot.session_id,
            len(processed),
            len(pending),
            dropped_fresh,
        )
        return QueueState(
            session_id=snapshot.session_id,
            start_time=start_time if start_time is not None else self._clock(),
            exclude_patterns=exclude_patterns,
            pending=pending,
            processed=processed,
            processed_by_category=dict(snapshot.processed_by_category),
        )

    async def _seed(
        self,
        items: Iterable[QueueItem],
        exclude_patterns: tuple[str, ...],
        skip_fresh: bool,
    ) -> QueueState:
        pending: deque[QueueItem] = deque()
        seen: set[str] = set()
        for item in items:
            if item.relative_path in seen:
                continue
            seen.add(item.relative_path)
            if skip_fresh and await self._results.is_fresh(item):
                continue
            pending.append(item)
        session_id = str(uuid.uuid4())
        logger.info("Started queue session %s with %d files", session_id, len(pending))
        return QueueState(
            session_id=session_id,
            start_time=self._clock(),
            exclude_patterns=exclude_patterns,
            pending=pending,
        )

    def _requeue_unclaimed(self, state: QueueState, claims: dict[str, int]) -> None:
        """Return leased items whose claim expired or was released to the queue head."""
        returning = [
            item
            for path, item in state.leased.items()
            if path not in claims and path not in state.processed
        ]
        if not returning:
            return
        for item in returning:
            del state.leased[item.relative_path]
        returning.sort(key=lambda item: -item.priority)
        state.pending.extendleft(reversed(returning))

    async def _merge_external_progress(self, state: QueueState) -> None:
        """Adopt paths another process of the same session has completed."""
        payload = await read_json_object(self._snapshot_path)
        if payload is None:
            return
        snapshot = snapshot_from_dict(payload)
        if snapshot is None or snapshot.session_id != state.session_id:
            return
        for path in snapshot.processed_files:
            if path in state.processed:
                continue
            item = state.leased.pop(path, None) or self._remove_pending(state, path)
            state.processed.add(path)
            if item is not None:
                _increment(state.processed_by_category, item.category)

    async def _persist(self) -> None:
        """Best-effort snapshot write; failures are logged, memory stays authoritative."""
        state = self._state
        if state is None:
            return
        try:
            async with self._snapshot_lock.held():
                await self._merge_external_progress(state)
                snapshot = self._build_snapshot(state)
                await write_json_atomic(self._snapshot_path, snapshot_to_dict(snapshot))
        except OSError as error:
            logger.warning("Failed to save queue state %s: %s", self._snapshot_path, error)

    def _build_snapshot(self, state: QueueState) -> QueueSnapshot:
        outstanding = self._outstanding_items(state)
        return QueueSnapshot(
            session_id=state.session_id,
            repo_path=str(self._repo_root),
            total_files=len(outstanding) + len(state.processed),
            processed_files=tuple(sorted(state.processed)),
            remaining_queue=tuple(outstanding),
            start_time=iso_from_epoch(state.start_time),
            last_activity=iso_from_epoch(self._clock()),
            exclude_patterns=state.exclude_patterns,
            processed_by_category=dict(state.processed_by_category),
        )

    @staticmethod
    def _outstanding_items(state: QueueState) -> list[QueueItem]:
        """Leased then pending items, excluding anything already processed."""
        output: list[QueueItem] = []
        seen: set[str] = set()
        for item in (*state.leased.values(), *state.pending):
            path = item.relative_path
            if path in state.processed or path in seen:
                continue
            seen.add(path)
            output.append(item)
        return output

    @staticmethod
    def _remove_pending(state: QueueState, relative_path: str) -> QueueItem | None:
        for item in state.pending:
            if item.relative_path == relative_path:
                state.pending.remove(item)
                return item
        return None

    def _require_state(self, operation: str) -> QueueState:
        if self._state is None:
            raise QueueNotInitializedError(operation=operation)
        return self._state

    def _require_claims(self, operation: str) -> ClaimStore:
        if self._claims is None:
            raise QueueNotInitializedError(operation=operation)
        return self._claims


def _increment(counter: dict[str, int], key: str) -> None:
    counter[key] = counter.get(key, 0) + 1
