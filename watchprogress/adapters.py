"""Adapters from vendor player callbacks to PlayerEvent.

Each adapter takes a `dispatch` callable (normally ViewingSession.dispatch)
and exposes callbacks shaped like the player it wraps.
"""

import logging
from typing import Any, Callable, Dict, Optional

from .config import settings
from .engine import TransitionResult
from .models import (
    BufferingStarted, DurationChanged, Ended, Pause, Play, PlayerEvent, SeekRequested, TimeObserved,
)

logger = logging.getLogger(__name__)

Dispatch = Callable[[PlayerEvent], TransitionResult]


class MediaElementAdapter:
    """Generic video element: every callback reports the element's currentTime."""

    def __init__(self, dispatch: Dispatch):
        self.dispatch = dispatch

    def on_loaded_metadata(self, duration: float):
        return self.dispatch(DurationChanged(duration=duration))

    def on_play(self, current_time: float):
        return self.dispatch(Play(at=current_time))

    def on_pause(self, current_time: float):
        return self.dispatch(Pause(at=current_time))

    def on_seeking(self, current_time: float):
        return self.dispatch(SeekRequested(target=current_time))

    def on_waiting(self, current_time: float):
        return self.dispatch(BufferingStarted(at=current_time))

    def on_time_update(self, current_time: float):
        return self.dispatch(TimeObserved(at=current_time))

    def on_ended(self, current_time: float):
        return self.dispatch(Ended(at=current_time))


class ProgressCallbackAdapter:
    """
    Wrapper players that report position through a periodic progress callback.

    Play/pause/buffer callbacks carry no position, so the last reported one is
    used. Such players may also move the playhead without a seek callback;
    a forward jump larger than `jump_threshold` between two progress reports
    is dispatched as a seek request so the viewing policy can refuse it.
    """

    def __init__(self, dispatch: Dispatch, jump_threshold: Optional[float] = None):
        self.dispatch = dispatch
        if jump_threshold is None:
            jump_threshold = settings.SEEK_FORWARD_TOLERANCE_SECONDS + settings.POSITION_POLL_INTERVAL_SECONDS
        self.jump_threshold = jump_threshold
        self.position = 0.0
        self._last_reported: Optional[float] = None

    def on_progress(self, state: Dict[str, Any]):
        played = state.get("playedSeconds")
        if played is None:
            return None
        played = float(played)

        previous = self._last_reported
        self._last_reported = played
        self.position = played
        if previous is not None and played - previous > self.jump_threshold:
            logger.debug(f"Unreported jump {previous:.1f}s -> {played:.1f}s")
            result = self.dispatch(SeekRequested(target=played))
            if result.rejected_seek:
                # The player is being sent back; this report is no longer true
                self._last_reported = None
                return result
        return self.dispatch(TimeObserved(at=played))

    def on_duration(self, duration: float):
        return self.dispatch(DurationChanged(duration=duration))

    def on_play(self):
        return self.dispatch(Play(at=self.position))

    def on_pause(self):
        return self.dispatch(Pause(at=self.position))

    def on_buffer(self):
        return self.dispatch(BufferingStarted(at=self.position))

    def on_seek(self, seconds: float):
        self.position = seconds
        self._last_reported = seconds
        return self.dispatch(SeekRequested(target=seconds))

    def on_ended(self):
        return self.dispatch(Ended(at=self.position))


class StateChangeAdapter:
    """
    Native SDK players with a single state-change callback and no time updates.

    The session polls the position in the meantime. A pause reported after
    a seek carries the new position, so pauses are closed at the last
    polled time when `observed_time` is provided.
    """

    UNSTARTED = -1
    ENDED = 0
    PLAYING = 1
    PAUSED = 2
    BUFFERING = 3
    CUED = 5

    def __init__(self, dispatch: Dispatch, observed_time: Optional[Callable[[], float]] = None):
        self.dispatch = dispatch
        self.observed_time = observed_time

    def on_ready(self, duration: float):
        if duration and duration > 0:
            return self.dispatch(DurationChanged(duration=duration))
        return None

    def on_state_change(self, state: int, current_time: float):
        if state == self.PLAYING:
            return self.dispatch(Play(at=current_time))
        if state == self.PAUSED:
            at = self.observed_time() if self.observed_time is not None else current_time
            return self.dispatch(Pause(at=at))
        if state == self.BUFFERING:
            return self.dispatch(BufferingStarted(at=current_time))
        if state == self.ENDED:
            return self.dispatch(Ended(at=current_time))
        logger.debug(f"Ignoring player state {state}")
        return None
