from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from chartsync.common.logging import log_event
from chartsync.errors import NetworkError

logger = logging.getLogger(__name__)

# Floor for the retry backoff base so a zero drain delay does not spin.
MIN_RETRY_DELAY_S = 0.05

SyncOperation = Callable[[], Awaitable[None]]


@dataclass(slots=True)
class PendingWrite:
    op: SyncOperation
    label: str
    attempts: int = 0


class SyncQueue:
    """
    Ordered queue of pending remote writes for one user.

    Semantics:
    - Writes apply strictly in enqueue order, one at a time.
    - `queue_sync` schedules a drain `delay_s` later when online and idle, so a
      burst of edits is flushed by one drain.
    - A failing write stays at the head and aborts the rest of the cycle. While
      online, a retry drain is scheduled with exponential backoff capped at
      `max_retry_delay_s`. After `max_attempts` failed drains the write is dropped.
    - Each write runs under `timeout_s`.
    """

    def __init__(
        self,
        *,
        delay_s: float = 0.1,
        max_attempts: int = 5,
        max_retry_delay_s: float = 30.0,
        timeout_s: float = 15.0,
        online: bool = True,
    ) -> None:
        self._delay_s = max(0.0, float(delay_s))
        self._max_attempts = max(1, int(max_attempts))
        self._max_retry_delay_s = max(0.0, float(max_retry_delay_s))
        self._timeout_s = float(timeout_s)
        self._pending: deque[PendingWrite] = deque()
        self._online = bool(online)
        self._syncing = False
        self._closed = False
        self._scheduled: Optional[asyncio.Task[None]] = None

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    @property
    def is_online(self) -> bool:
        return self._online

    def pending_labels(self) -> list[str]:
        return [w.label for w in self._pending]

    def queue_sync(self, op: SyncOperation, *, label: str = "write") -> None:
        if self._closed:
            logger.warning("sync_queue closed; dropping write label=%s", label)
            return
        self._pending.append(PendingWrite(op=op, label=label))
        self._schedule_drain()

    def set_online(self, online: bool) -> None:
        was_online = self._online
        self._online = bool(online)
        if self._online and not was_online:
            log_event(logger, "sync.online", pending=len(self._pending))
            self._schedule_drain()

    def _schedule_drain(self, delay_s: Optional[float] = None) -> None:
        if self._closed or not self._online or self._syncing or not self._pending:
            return
        if self._scheduled is not None and not self._scheduled.done():
            return
        delay = self._delay_s if delay_s is None else delay_s
        self._scheduled = asyncio.get_running_loop().create_task(self._drain_later(delay))

    def retry_delay(self, attempts: int) -> float:
        base = max(self._delay_s, MIN_RETRY_DELAY_S)
        return min(self._max_retry_delay_s, base * (2 ** max(0, attempts)))

    def _schedule_retry(self) -> None:
        if not self._pending:
            return
        if self._scheduled is asyncio.current_task():
            self._scheduled = None
        delay = self.retry_delay(self._pending[0].attempts)
        logger.debug("sync retry in %.2fs label=%s", delay, self._pending[0].label)
        self._schedule_drain(delay)

    async def _drain_later(self, delay_s: float) -> None:
        await asyncio.sleep(delay_s)
        try:
            await self.sync()
        except NetworkError:
            # Already logged by sync(), which also scheduled the retry.
            logger.debug("background drain aborted", exc_info=True)

    async def sync(self) -> None:
        """
        Drain the queue FIFO. Raises NetworkError on the first failing write.
        """
        if self._syncing:
            return
        self._syncing = True
        applied = 0
        failed = False
        try:
            while self._pending and not self._closed:
                item = self._pending[0]
                try:
                    await asyncio.wait_for(item.op(), timeout=self._timeout_s)
                except Exception as e:
                    failed = True
                    item.attempts += 1
                    if item.attempts >= self._max_attempts:
                        self._discard(item)
                        log_event(
                            logger,
                            "sync.write_dropped",
                            severity="ERROR",
                            label=item.label,
                            attempts=item.attempts,
                            error=repr(e),
                        )
                    else:
                        log_event(
                            logger,
                            "sync.drain_failed",
                            severity="WARNING",
                            label=item.label,
                            attempts=item.attempts,
                            remaining=len(self._pending),
                            error=repr(e),
                        )
                    raise NetworkError("Sync failed", e) from e
                self._discard(item)
                applied += 1
            if applied:
                log_event(logger, "sync.drained", severity="DEBUG", applied=applied)
        finally:
            self._syncing = False
            if failed:
                self._schedule_retry()

    async def flush(self) -> None:
        """
        Wait for a scheduled or running drain, then drain what is left.
        """
        task = self._scheduled
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)
        await self.sync()

    def _discard(self, item: PendingWrite) -> None:
        if self._pending and self._pending[0] is item:
            self._pending.popleft()

    def close(self) -> int:
        """
        Cancel any scheduled drain and drop pending writes. Returns the number dropped.
        """
        self._closed = True
        if self._scheduled is not None and not self._scheduled.done():
            self._scheduled.cancel()
        self._scheduled = None
        dropped = len(self._pending)
        self._pending.clear()
        if dropped:
            logger.warning("sync_queue closed with %d pending writes", dropped)
        return dropped
