import logging
from enum import Enum
from typing import List, Optional, Protocol

from pydantic import BaseModel, Field

from .config import settings
from .intervals import format_time
from .models import (
    BufferingStarted, DurationChanged, Ended, Notice, NoticeKind, Pause, Play, PlayerEvent,
    SeekRequested, TimeObserved, TrackerState, WatchedInterval,
)
from .notify import LoggingNotifier, Notifier

logger = logging.getLogger(__name__)

class PlayerController(Protocol):
    """Commands the tracker and session may issue to the media player."""
    def seek_to(self, seconds: float) -> None: ...
    def play(self) -> None: ...
    def pause(self) -> None: ...
    def current_time(self) -> float: ...

class TrackerPhase(str, Enum):
    IDLE = "idle"
    WATCHING = "watching"

class TransitionResult(BaseModel):
    emitted: List[WatchedInterval] = Field(default_factory=list)
    rejected_seek: bool = False
    persist: bool = False

class SegmentTracker:
    """
    Turns player lifecycle events into raw watched segments.

    Two phases: Idle and Watching(segment_start). Every transition runs to
    completion synchronously. Closed segments collect in pending_segments
    until the owner drains them.

    Forward seeks past last_continuous_position + forward_tolerance are
    refused and the player is sent back. Segment ends are capped at that
    same ceiling so that a jump the player never reported earns no credit.
    """

    def __init__(
        self,
        player: Optional[PlayerController] = None,
        notifier: Optional[Notifier] = None,
        forward_tolerance: Optional[float] = None,
        periodic_save_seconds: Optional[float] = None,
    ):
        self.player = player
        self.notifier = notifier or LoggingNotifier()
        self.forward_tolerance = settings.SEEK_FORWARD_TOLERANCE_SECONDS if forward_tolerance is None else forward_tolerance
        self.periodic_save_seconds = settings.PERIODIC_SAVE_SECONDS if periodic_save_seconds is None else periodic_save_seconds
        # Largest gap between two ticks still treated as uninterrupted playback
        self.max_tick_gap = self.forward_tolerance + settings.POSITION_POLL_INTERVAL_SECONDS
        self.state = TrackerState()
        self.pending_segments: List[WatchedInterval] = []
        self._last_periodic_mark = 0.0

    @property
    def phase(self) -> TrackerPhase:
        return TrackerPhase.IDLE if self.state.active_segment_start is None else TrackerPhase.WATCHING

    @property
    def allowed_ceiling(self) -> float:
        return self.state.last_continuous_position + self.forward_tolerance

    def restore(self, continuous_position: float, observed_time: Optional[float] = None):
        """Seed a new session from saved progress. The only place the continuous position may move backwards."""
        self.state = TrackerState(
            last_continuous_position=max(continuous_position, 0.0),
            last_observed_time=max(observed_time if observed_time is not None else continuous_position, 0.0),
            duration=self.state.duration,
        )
        self._last_periodic_mark = self.state.last_observed_time

    def handle(self, event: PlayerEvent) -> TransitionResult:
        handler = getattr(self, f"_on_{event.kind}")
        return handler(event)

    def drain_segments(self) -> List[WatchedInterval]:
        drained = self.pending_segments
        self.pending_segments = []
        return drained

    def open_segment(self) -> Optional[WatchedInterval]:
        """The active segment up to the last observed time, without closing it."""
        start = self.state.active_segment_start
        if start is None:
            return None
        end = min(self.state.last_observed_time, self.allowed_ceiling)
        if end <= start:
            return None
        return WatchedInterval(start=start, end=end)

    def teardown(self) -> TransitionResult:
        """Session end. Equivalent to a pause at the last observed time."""
        return self._on_pause(Pause(at=self.state.last_observed_time))

    # Transitions

    def _on_play(self, event: Play) -> TransitionResult:
        result = TransitionResult()
        if self.state.active_segment_start is not None:
            # Resume while already watching: an interruption went unreported
            self._close_segment(self.state.last_observed_time, result)
        self.state.active_segment_start = event.at
        self.state.is_playing = True
        return result

    def _on_pause(self, event: Pause) -> TransitionResult:
        result = TransitionResult()
        if self.state.active_segment_start is not None:
            self._close_segment(event.at, result)
            result.persist = True
        self.state.is_playing = False
        return result

    def _on_buffering_started(self, event: BufferingStarted) -> TransitionResult:
        # The event may already carry the post-seek position, so close at the last observed time
        result = TransitionResult()
        if self.state.active_segment_start is not None:
            self._close_segment(self.state.last_observed_time, result)
            result.persist = True
        self.state.is_playing = False
        return result

    def _on_ended(self, event: Ended) -> TransitionResult:
        result = TransitionResult(persist=True)
        if self.state.active_segment_start is not None:
            end = self.state.last_observed_time
            if self.state.duration > 0:
                end = min(end, self.state.duration)
            self._close_segment(end, result)
        self.state.is_playing = False
        return result

    def _on_seek_requested(self, event: SeekRequested) -> TransitionResult:
        result = TransitionResult(persist=True)
        was_watching = self.state.active_segment_start is not None
        ceiling = self.allowed_ceiling

        if event.target > ceiling:
            resume_at = self.state.last_continuous_position
            logger.info(f"Rejected forward seek to {event.target:.1f}s (ceiling {ceiling:.1f}s), returning to {resume_at:.1f}s")
            # Capped at the continuous position so a refused skip cannot widen the ceiling
            self._close_segment(self.state.last_observed_time, result, cap=resume_at)
            result.rejected_seek = True
            if self.player is not None:
                self.player.seek_to(resume_at)
            self.notifier.notify(Notice(
                kind=NoticeKind.SKIP_REJECTED,
                title="Cannot skip forward",
                message=f"Please watch the content sequentially from {format_time(resume_at)}",
            ))
            self.state.last_observed_time = resume_at
            if was_watching:
                self.state.active_segment_start = resume_at
            return result

        self._close_segment(self.state.last_observed_time, result)
        # An accepted forward seek is within tolerance, so the target counts as reached
        self._advance(event.target)
        self.state.last_observed_time = event.target
        self._last_periodic_mark = event.target
        if was_watching:
            self.state.active_segment_start = event.target
        return result

    def _on_time_observed(self, event: TimeObserved) -> TransitionResult:
        result = TransitionResult()
        previous = self.state.last_observed_time
        self.state.last_observed_time = event.at
        if self.state.active_segment_start is None:
            return result

        # A late tick that follows credited playback is still continuous viewing
        continued = previous <= self.state.last_continuous_position and 0 < event.at - previous <= self.max_tick_gap
        if event.at <= self.allowed_ceiling or continued:
            self._advance(event.at)
        if abs(event.at - self._last_periodic_mark) >= self.periodic_save_seconds:
            self._last_periodic_mark = event.at
            result.persist = True
        return result

    def _on_duration_changed(self, event: DurationChanged) -> TransitionResult:
        if event.duration > 0:
            self.state.duration = event.duration
        return TransitionResult()

    # Helpers

    def _advance(self, position: float):
        if position > self.state.last_continuous_position:
            self.state.last_continuous_position = position

    def _close_segment(self, end: float, result: TransitionResult, cap: Optional[float] = None):
        start = self.state.active_segment_start
        self.state.active_segment_start = None
        if start is None:
            return
        end = min(end, self.allowed_ceiling if cap is None else cap)
        if end <= start:
            logger.debug(f"Discarding empty segment start={start:.2f} end={end:.2f}")
            return
        segment = WatchedInterval(start=start, end=end)
        self.pending_segments.append(segment)
        result.emitted.append(segment)
        self._advance(end)
        logger.debug(f"Closed segment [{start:.2f}, {end:.2f}]")
