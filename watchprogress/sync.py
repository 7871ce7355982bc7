import asyncio
import logging
from typing import List, Optional, Set

import httpx

from .clients.progress_client import ProgressAPIClient
from .config import settings
from .errors import ProgressAPIError
from .intervals import merge_intervals, progress_percentage, summarize
from .models import Notice, NoticeKind, ProgressPayload, ProgressRecord, WatchedInterval
from .notify import LoggingNotifier, Notifier

logger = logging.getLogger(__name__)

class SyncClient:
    """
    Debounced persistence of watch progress for one piece of content.

    Raw segments wait in `pending` until a save that carried them succeeds.
    Every request carries the full merged set, so the server can merge
    duplicated or reordered deliveries without harm.
    """

    def __init__(
        self,
        content_id: str,
        api: Optional[ProgressAPIClient] = None,
        notifier: Optional[Notifier] = None,
        debounce_seconds: Optional[float] = None,
    ):
        self.content_id = content_id
        self.api = api or ProgressAPIClient()
        self.notifier = notifier or LoggingNotifier()
        self.debounce_seconds = settings.SAVE_DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds

        # Last authoritative state (or optimistic state before the first save)
        self.merged: List[WatchedInterval] = []
        self.progress_percentage = 0.0
        self.last_known_position = 0.0
        self.duration = 0.0

        self.pending: List[WatchedInterval] = []
        self._dirty = False
        self._timer: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()

    async def load(self) -> ProgressRecord:
        record = await self.api.get_progress(self.content_id)
        self._apply(record)
        logger.info(f"Loaded progress for {self.content_id}: {record.progress_percentage:.1f}% at {record.last_known_position:.1f}s")
        return record

    def schedule_persist(
        self,
        merged_so_far: List[WatchedInterval],
        raw_pending_segments: List[WatchedInterval],
        last_position: float,
        duration: float,
    ):
        """Record the latest state and (re)start the trailing debounce timer."""
        if merged_so_far:
            self.merged = merge_intervals(list(self.merged) + list(merged_so_far))
        self.pending.extend(raw_pending_segments)
        self.last_known_position = max(last_position, 0.0)
        if duration > 0:
            self.duration = duration
        self._dirty = True
        self._cancel_timer()
        self._timer = asyncio.create_task(self._fire_after(self.debounce_seconds))

    def flush_nowait(self):
        """Skip the remaining debounce window and send now in the background."""
        self._cancel_timer()
        self._spawn_send()

    async def flush(self) -> Optional[ProgressRecord]:
        self._cancel_timer()
        return await self._send()

    async def close(self):
        """Best-effort final flush. A lost save here is tolerated."""
        self._cancel_timer()
        if self._dirty or self.pending:
            await self._send()
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        await self.api.aclose()

    def optimistic_state(self):
        """Returns (merged, total_unique_seconds, percentage) including unsent segments."""
        return summarize(list(self.merged) + list(self.pending), self.duration)

    async def _fire_after(self, delay: float):
        await asyncio.sleep(delay)
        self._timer = None
        # Sent from its own task so that a later reschedule cannot cancel an in-flight request
        self._spawn_send()

    def _spawn_send(self):
        task = asyncio.create_task(self._send())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    def _cancel_timer(self):
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _send(self) -> Optional[ProgressRecord]:
        batch = list(self.pending)
        merged, total, percentage = summarize(list(self.merged) + batch, self.duration)
        payload = ProgressPayload(
            merged_intervals=merged,
            total_unique_watched_seconds=float(total),
            last_known_position=float(self.last_known_position),
            progress_percentage=float(percentage),
            content_duration=float(self.duration),
        )
        self._dirty = False

        try:
            record = await self.api.save_progress(self.content_id, payload)
        except (httpx.HTTPError, ProgressAPIError) as e:
            # Keep the segments; the next natural event schedules another attempt
            self._dirty = True
            if isinstance(e, ProgressAPIError) and not e.retryable:
                logger.error(f"Progress save for {self.content_id} rejected: {e}")
            else:
                logger.warning(f"Progress save for {self.content_id} failed, {len(self.pending)} segments kept: {e}")
            self.notifier.notify(Notice(
                kind=NoticeKind.SAVE_FAILED,
                title="Failed to save progress",
                message="Your progress could not be saved. It will be retried shortly.",
            ))
            return None

        sent = {id(segment) for segment in batch}
        self.pending = [segment for segment in self.pending if id(segment) not in sent]
        self._apply(record)
        return record

    def _apply(self, record: ProgressRecord):
        # Union with what we already had: a slow response to an older request must not shrink local state
        self.merged = merge_intervals(list(record.merged_intervals) + list(self.merged))
        if record.content_duration > self.duration:
            self.duration = record.content_duration
        self.progress_percentage = max(record.progress_percentage, progress_percentage(self.merged, self.duration))
        self.last_known_position = record.last_known_position
