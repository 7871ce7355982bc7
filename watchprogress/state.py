import json
import logging
import os
import time
import fcntl
import threading
from pathlib import Path
from typing import Iterable, Optional
from pydantic import ValidationError
from .models import ProgressRecord, StoreState, WatchedInterval
from .intervals import summarize
from .config import settings

logger = logging.getLogger(__name__)

class ProgressStore:
    """
    Server-side progress records, one per (subject, content) pair.

    Writes merge instead of overwrite, so repeated, duplicated or racing
    saves for the same key all converge on the union of what was sent.
    """

    def __init__(self, path: str, persist_enabled: Optional[bool] = None):
        self.path = Path(path)
        self.state = StoreState()
        self.read_only = False
        self.persist_enabled = settings.PERSIST_ENABLED if persist_enabled is None else persist_enabled
        self._lock = threading.Lock()
        self._load()

    @staticmethod
    def key(subject_id: str, content_id: str) -> str:
        return f"{subject_id}:{content_id}"

    def _load(self):
        if not self.path.exists():
            logger.info(f"No progress store found at {self.path}, creating new.")
            return

        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
                self.state = StoreState.model_validate(data)
            logger.info(f"Loaded {len(self.state.records)} progress records from {self.path}")
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"Failed to load progress store: {e}. Starting fresh.", exc_info=True)

    def save(self):
        if not self.persist_enabled or self.read_only:
            return

        tmp_path = self.path.with_suffix('.tmp')
        try:
            # Atomic write pattern with locking
            with open(tmp_path, 'w') as f:
                try:
                    fcntl.flock(f, fcntl.LOCK_EX | fcntl.LOCK_NB)
                except BlockingIOError:
                    logger.warning("Could not acquire lock for progress store save. Skipping save cycle.")
                    return

                try:
                    json.dump(self.state.model_dump(mode="json"), f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                finally:
                    fcntl.flock(f, fcntl.LOCK_UN)

            os.rename(tmp_path, self.path)

        except OSError as e:
            logger.error(f"Failed to save progress store to {self.path}: {e}")
            # Keep serving from memory, but stop writing for this run
            self.read_only = True

    def get(self, subject_id: str, content_id: str) -> ProgressRecord:
        """Stored record, or a zeroed one if this viewer never saved progress for the content."""
        with self._lock:
            record = self.state.records.get(self.key(subject_id, content_id))
            if record is None:
                return ProgressRecord(subject_id=subject_id, content_id=content_id)
            return record.model_copy(deep=True)

    def upsert_merge(
        self,
        subject_id: str,
        content_id: str,
        incoming_intervals: Iterable[WatchedInterval],
        incoming_last_position: float,
        incoming_duration: float,
    ) -> ProgressRecord:
        """
        Merge incoming intervals into the stored record and return the result.

        Derived numbers are recomputed from the merged set rather than taken
        from the request:
        - duration is the largest one ever reported, so a short estimate never shrinks it
        - percentage and total come from the merged intervals
        - position is the furthest of the stored and incoming ones, kept inside what has been watched
        """
        key = self.key(subject_id, content_id)
        with self._lock:
            existing = self.state.records.get(key)
            stored = list(existing.merged_intervals) if existing else []
            duration = max(existing.content_duration if existing else 0.0, incoming_duration, 0.0)

            merged, total, percentage = summarize(stored + list(incoming_intervals), duration)

            position = max(existing.last_known_position if existing else 0.0, incoming_last_position, 0.0)
            furthest = merged[-1].end if merged else 0.0
            position = min(position, furthest)
            if duration > 0:
                position = min(position, duration)

            record = ProgressRecord(
                subject_id=subject_id,
                content_id=content_id,
                merged_intervals=merged,
                total_unique_watched_seconds=total,
                last_known_position=position,
                progress_percentage=percentage,
                content_duration=duration,
                updated_at=time.time(),
            )
            self.state.records[key] = record
            self.save()
            logger.debug(f"Merged progress for {key}: {len(stored)} stored intervals -> {len(merged)}, {percentage:.1f}%")
            return record.model_copy(deep=True)
