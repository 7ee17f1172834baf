from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncResult:
    scheduled: int
    cancelled: int
    scheduled_by_section: dict[str, int] = field(default_factory=dict)


class SyncFailed(RuntimeError):
    """Raised to callers that asked for a visible sync."""


SyncFunction = Callable[[], Awaitable[SyncResult]]


class SyncCoalescer:
    """Serializes schedule syncs: one in flight, at most one trailing re-run.

    Requests that arrive while a sync is running set a flag instead of
    starting a second sync; the running driver performs a single re-run once
    the current sync finishes. After ``close()`` results are discarded and no
    further re-runs start.
    """

    def __init__(self, sync_fn: SyncFunction) -> None:
        self._sync_fn = sync_fn
        self._in_flight: Optional[asyncio.Task] = None
        self._queued = False
        self._alive = True
        self.completed_runs = 0

    @property
    def syncing(self) -> bool:
        return self._in_flight is not None

    @property
    def alive(self) -> bool:
        return self._alive

    def close(self) -> None:
        self._alive = False
        self._queued = False

    async def request(self, visible: bool = False) -> Optional[SyncResult]:
        if not self._alive:
            return None
        if self._in_flight is not None:
            if visible:
                return await self._join(self._in_flight)
            self._queued = True
            logger.debug("Sync already running; queued a trailing re-run")
            return None
        return await self._drive(visible)

    async def _join(self, task: asyncio.Task) -> Optional[SyncResult]:
        try:
            result = await task
        except Exception as exc:
            raise SyncFailed(f"Sync failed: {exc}") from exc
        return result if self._alive else None

    async def _drive(self, visible: bool) -> Optional[SyncResult]:
        result, error = await self._run_once()
        while self._queued and self._alive:
            self._queued = False
            logger.info("Running coalesced trailing sync")
            await self._run_once()

        if not self._alive:
            logger.debug("Discarding sync result for a closed owner")
            return None
        if error is not None:
            if visible:
                raise SyncFailed(f"Sync failed: {error}") from error
            return None
        return result

    async def _run_once(self) -> tuple[Optional[SyncResult], Optional[Exception]]:
        task = asyncio.ensure_future(self._sync_fn())
        self._in_flight = task
        try:
            result = await task
        except Exception as exc:
            logger.exception("Notification schedule sync failed")
            return None, exc
        finally:
            self._in_flight = None
        self.completed_runs += 1
        logger.info(
            "Notification schedules synced: %d scheduled, %d cancelled",
            result.scheduled,
            result.cancelled,
        )
        return result, None
