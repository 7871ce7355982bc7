import asyncio
import logging
from typing import Optional

import httpx

from .clients.progress_client import ProgressAPIClient
from .config import settings
from .engine import PlayerController, SegmentTracker, TransitionResult
from .errors import ProgressAPIError
from .intervals import contiguous_prefix_end, format_time
from .models import Ended, Notice, NoticeKind, PlayerEvent, TimeObserved
from .notify import LoggingNotifier, Notifier
from .sync import SyncClient

logger = logging.getLogger(__name__)

class ViewingSession:
    """
    One viewer watching one piece of content.

    Owns the tracker and the sync client, feeds player events through the
    tracker and hands closed segments to the sync client. Use as an async
    context manager, or call start() and close() yourself.
    """

    def __init__(
        self,
        content_id: str,
        player: PlayerController,
        api: Optional[ProgressAPIClient] = None,
        notifier: Optional[Notifier] = None,
        tracker: Optional[SegmentTracker] = None,
        sync: Optional[SyncClient] = None,
        poll_interval: Optional[float] = None,
    ):
        self.content_id = content_id
        self.player = player
        self.notifier = notifier or LoggingNotifier()
        self.tracker = tracker or SegmentTracker(player=player, notifier=self.notifier)
        self.sync = sync or SyncClient(content_id, api=api, notifier=self.notifier)
        self.poll_interval = settings.POSITION_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        self.running = False
        self._poll_task: Optional[asyncio.Task] = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def start(self):
        self.running = True
        try:
            await self.sync.load()
        except (httpx.HTTPError, ProgressAPIError) as e:
            logger.error(f"Failed to load progress for {self.content_id}: {e}")
            self.notifier.notify(Notice(
                kind=NoticeKind.LOAD_FAILED,
                title="Failed to load progress",
                message="Starting without saved progress.",
            ))

        # Sequential viewing: only the run watched from the very start counts as continuous
        continuous = contiguous_prefix_end(self.sync.merged, self.tracker.forward_tolerance)
        resume_at = min(self.sync.last_known_position, continuous + self.tracker.forward_tolerance)
        # Resuming up to tolerance past the run is a permitted seek, so it counts as reached
        self.tracker.restore(max(continuous, resume_at), observed_time=resume_at)
        if self.sync.duration > 0:
            self.tracker.state.duration = self.sync.duration

        if resume_at > settings.RESUME_MIN_POSITION_SECONDS:
            self.player.seek_to(resume_at)
            self.notifier.notify(Notice(
                kind=NoticeKind.RESUMED,
                title="Resuming video",
                message=f"Resuming from {format_time(resume_at)}",
            ))

        if self.poll_interval > 0:
            self._poll_task = asyncio.create_task(self._poll_position())

    def dispatch(self, event: PlayerEvent) -> TransitionResult:
        """Run one event through the tracker and schedule persistence when it asks for it."""
        result = self.tracker.handle(event)
        if result.persist:
            self._schedule_persist()
            if isinstance(event, Ended):
                self.sync.flush_nowait()
        return result

    def last_observed_time(self) -> float:
        return self.tracker.state.last_observed_time

    async def close(self):
        self.running = False
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        result = self.tracker.teardown()
        if result.emitted:
            self._schedule_persist()
        await self.sync.close()

    def _schedule_persist(self):
        raw = self.tracker.drain_segments()
        # The open segment is sent as a checkpoint; merging makes the later full segment harmless
        open_segment = self.tracker.open_segment()
        if open_segment is not None:
            raw.append(open_segment)
        self.sync.schedule_persist(
            self.sync.merged,
            raw,
            self.tracker.state.last_observed_time,
            self.tracker.state.duration,
        )

    async def _poll_position(self):
        """Feed TimeObserved for players that do not push time updates."""
        while self.running:
            await asyncio.sleep(self.poll_interval)
            if not self.tracker.state.is_playing:
                continue
            try:
                position = self.player.current_time()
            except Exception as e:
                logger.warning(f"Could not read player position: {e}")
                continue
            self.dispatch(TimeObserved(at=position))
