from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, model_validator
from pydantic.alias_generators import to_camel

class WireModel(BaseModel):
    """Base for models that travel over HTTP: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, allow_inf_nan=False)

class WatchedInterval(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    start: float = Field(ge=0)
    end: float

    @model_validator(mode="before")
    @classmethod
    def _from_pair(cls, data):
        # Older clients send [start, end] pairs
        if isinstance(data, (list, tuple)):
            if len(data) != 2:
                raise ValueError("interval pair must have exactly two elements")
            return {"start": data[0], "end": data[1]}
        return data

    @model_validator(mode="after")
    def _check_order(self):
        if self.end <= self.start:
            raise ValueError(f"interval end {self.end} must be greater than start {self.start}")
        return self

class ProgressRecord(WireModel):
    subject_id: str
    content_id: str
    merged_intervals: List[WatchedInterval] = Field(default_factory=list)
    total_unique_watched_seconds: float = 0.0
    last_known_position: float = 0.0
    progress_percentage: float = 0.0
    content_duration: float = 0.0
    updated_at: float = 0.0

class ProgressPayload(WireModel):
    """POST body. Numbers are strict: strings and booleans are rejected."""
    merged_intervals: List[WatchedInterval]
    total_unique_watched_seconds: StrictFloat = Field(ge=0)
    last_known_position: StrictFloat = Field(ge=0)
    progress_percentage: StrictFloat = Field(ge=0, le=100)
    content_duration: StrictFloat = Field(ge=0)

class StoreState(BaseModel):
    records: Dict[str, ProgressRecord] = Field(default_factory=dict)

class TrackerState(BaseModel):
    active_segment_start: Optional[float] = None
    last_observed_time: float = 0.0
    last_continuous_position: float = 0.0
    is_playing: bool = False
    duration: float = 0.0

# Player events

class Play(BaseModel):
    kind: Literal["play"] = "play"
    at: float

class Pause(BaseModel):
    kind: Literal["pause"] = "pause"
    at: float

class SeekRequested(BaseModel):
    kind: Literal["seek_requested"] = "seek_requested"
    target: float

class BufferingStarted(BaseModel):
    kind: Literal["buffering_started"] = "buffering_started"
    at: float

class Ended(BaseModel):
    kind: Literal["ended"] = "ended"
    at: float

class TimeObserved(BaseModel):
    kind: Literal["time_observed"] = "time_observed"
    at: float

class DurationChanged(BaseModel):
    kind: Literal["duration_changed"] = "duration_changed"
    duration: float

PlayerEvent = Annotated[
    Union[Play, Pause, SeekRequested, BufferingStarted, Ended, TimeObserved, DurationChanged],
    Field(discriminator="kind"),
]

class NoticeKind(str, Enum):
    SAVE_FAILED = "save_failed"
    SKIP_REJECTED = "skip_rejected"
    RESUMED = "resumed"
    LOAD_FAILED = "load_failed"

class Notice(BaseModel):
    kind: NoticeKind
    title: str
    message: str = ""
