from typing import Iterable, List, Tuple

from .models import WatchedInterval


def merge_intervals(intervals: Iterable[WatchedInterval]) -> List[WatchedInterval]:
    """Merge overlapping or touching intervals into a new sorted list. Inputs are not mutated."""
    ordered = sorted(
        (iv for iv in intervals if iv.end > iv.start),
        key=lambda iv: (iv.start, iv.end),
    )
    if not ordered:
        return []

    merged: List[WatchedInterval] = []
    start, end = ordered[0].start, ordered[0].end
    for iv in ordered[1:]:
        # A shared boundary second counts as watched either way, so touching intervals fuse
        if iv.start <= end:
            end = max(end, iv.end)
        else:
            merged.append(WatchedInterval(start=start, end=end))
            start, end = iv.start, iv.end
    merged.append(WatchedInterval(start=start, end=end))
    return merged


def total_watched_seconds(merged: Iterable[WatchedInterval]) -> float:
    """Sum of interval lengths. Only meaningful on an already merged set."""
    return sum(iv.end - iv.start for iv in merged)


def progress_percentage(merged: Iterable[WatchedInterval], duration: float) -> float:
    """Completion percentage clamped to [0, 100]; 0 while duration is unknown."""
    if duration <= 0:
        return 0.0
    percentage = 100.0 * total_watched_seconds(merged) / duration
    return min(max(percentage, 0.0), 100.0)


def summarize(intervals: Iterable[WatchedInterval], duration: float) -> Tuple[List[WatchedInterval], float, float]:
    """Returns (merged, total_unique_seconds, percentage) for raw intervals."""
    merged = merge_intervals(intervals)
    return merged, total_watched_seconds(merged), progress_percentage(merged, duration)


def contiguous_prefix_end(merged: List[WatchedInterval], tolerance: float = 0.0) -> float:
    """End of the watched run from the start of the content, bridging gaps no wider than tolerance."""
    end = 0.0
    for iv in merged:
        if iv.start - end > tolerance:
            break
        end = max(end, iv.end)
    return end


def format_time(seconds: float) -> str:
    """Format seconds as H:MM:SS if hours>0 else M:SS."""
    total = max(int(seconds), 0)
    hours = total // 3600
    minutes = (total % 3600) // 60
    secs = total % 60
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"
